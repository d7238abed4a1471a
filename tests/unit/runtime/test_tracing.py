"""Unit tests for LangSmith tracing configuration."""

import logging

from manowarAgent.config.settings import ObservabilitySettings
from manowarAgent.runtime.tracing import configure_tracing, tracing_env


def _settings(**overrides):
    values = {"langsmith_project": None, "langsmith_api_key": None, "tracing_enabled": False, "log_dir": None}
    values.update(overrides)
    return ObservabilitySettings(**values)


def test_disabled_tracing_exports_nothing():
    environ = {}
    assert configure_tracing(_settings(), environ) is False
    assert environ == {}


def test_enabled_tracing_exports_both_name_styles():
    environ = {}
    settings = _settings(langsmith_project="manowar", langsmith_api_key="ls-key", tracing_enabled=True)

    assert configure_tracing(settings, environ) is True
    assert environ == {
        "LANGSMITH_PROJECT": "manowar",
        "LANGCHAIN_PROJECT": "manowar",
        "LANGSMITH_API_KEY": "ls-key",
        "LANGCHAIN_API_KEY": "ls-key",
        "LANGSMITH_TRACING": "true",
        "LANGCHAIN_TRACING_V2": "true",
    }


def test_enabled_without_key_warns(caplog):
    with caplog.at_level(logging.WARNING, logger="manowar.tracing"):
        sent = configure_tracing(_settings(tracing_enabled=True), {})

    assert sent is False
    assert "no API key" in caplog.text


def test_project_alone_does_not_turn_tracing_on():
    env = tracing_env(_settings(langsmith_project="manowar"))
    assert "LANGSMITH_TRACING" not in env
    assert env["LANGCHAIN_PROJECT"] == "manowar"
