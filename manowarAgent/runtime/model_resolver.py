"""Coordinator model wiring using environment-derived settings.

The resolver pattern allows lazy instantiation of the coordinator model and
supports dependency injection for testing: tests pass their own resolver that
returns a scripted chat model.
"""

from __future__ import annotations

from typing import Dict, Optional, Protocol, TypedDict

from langchain_openai import ChatOpenAI

from manowarAgent.utils.error_handler import ConfigurationError


class ModelResolver(Protocol):
    """Callable that returns a LangChain-compatible chat model supporting ``bind_tools``."""

    def __call__(self, model_id: str):
        ...


class ModelConfig(TypedDict):
    id: Optional[str]
    api_key: Optional[str]
    base_url: Optional[str]
    temperature: float


def resolve_coordinator_config(settings, override_model: Optional[str] = None) -> ModelConfig:
    """Coordinator model config; a workflow's ``coordinator_model`` wins over settings."""
    models = settings.models
    return {
        "id": override_model or models.coordinator,
        "api_key": models.coordinator_api_key,
        "base_url": models.coordinator_base_url,
        "temperature": models.coordinator_temperature,
    }


def _chat_kwargs(config: ModelConfig) -> Dict[str, object]:
    if not config["id"]:
        raise ConfigurationError("协调者模型未配置", user_message="Coordinator model id is missing")
    if not config["api_key"]:
        raise ConfigurationError(
            f"缺少模型 {config['id']} 的 API Key，请在 .env 中配置。",
            user_message=f"Missing API key for coordinator model {config['id']}",
        )
    kwargs: Dict[str, object] = {
        "model": config["id"],
        "api_key": config["api_key"],
        "temperature": config["temperature"],
    }
    if config["base_url"]:
        kwargs["base_url"] = config["base_url"]
    return kwargs


def build_model_resolver(config: ModelConfig) -> ModelResolver:
    """Construct a resolver that returns ChatOpenAI-compatible clients.

    Credentials are checked eagerly so a misconfigured run fails before any
    step executes.

    Raises:
        ConfigurationError: model id or API key missing
    """
    kwargs = _chat_kwargs(config)

    def resolver(model_id: str):
        try:
            return ChatOpenAI(**{**kwargs, "model": model_id})
        except Exception as e:
            raise ConfigurationError(f"无法创建模型 {model_id}: {e}") from e

    return resolver
