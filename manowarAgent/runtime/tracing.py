"""LangSmith tracing for orchestration runs."""

from __future__ import annotations

import logging
import os
from typing import Dict, MutableMapping, Optional

from manowarAgent.config.settings import ObservabilitySettings

LOGGER = logging.getLogger("manowar.tracing")

# langsmith reads the LANGSMITH_* names, older langchain-core the LANGCHAIN_* ones
_ENV_NAMES = {
    "project": ("LANGSMITH_PROJECT", "LANGCHAIN_PROJECT"),
    "api_key": ("LANGSMITH_API_KEY", "LANGCHAIN_API_KEY"),
    "tracing": ("LANGSMITH_TRACING", "LANGCHAIN_TRACING_V2"),
}


def tracing_env(settings: ObservabilitySettings) -> Dict[str, str]:
    """Environment variables that route run traces to LangSmith."""
    values = {
        "project": settings.langsmith_project,
        "api_key": settings.langsmith_api_key,
        "tracing": "true" if settings.tracing_enabled else None,
    }
    env: Dict[str, str] = {}
    for key, value in values.items():
        if value:
            for name in _ENV_NAMES[key]:
                env[name] = value
    return env


def configure_tracing(
    settings: ObservabilitySettings, environ: Optional[MutableMapping[str, str]] = None
) -> bool:
    """Export tracing variables; returns whether traces will be sent."""
    target = os.environ if environ is None else environ
    target.update(tracing_env(settings))

    if not settings.tracing_enabled:
        return False
    if not settings.langsmith_api_key:
        LOGGER.warning("LangSmith tracing enabled but no API key configured, traces will be dropped")
        return False
    LOGGER.info(f"LangSmith tracing on (project: {settings.langsmith_project or 'default'})")
    return True
