"""Environment-bound configuration objects.

This module provides Pydantic BaseSettings-based configuration loading from .env files.
All settings classes automatically load from environment variables with support for
multiple alias names (e.g., MANOWAR_COORDINATOR_MODEL and COORDINATOR_MODEL both work).

Example:
    from manowarAgent.config.settings import get_settings

    settings = get_settings()  # Cached singleton
    threshold = settings.context.cleanup_threshold
    cap = settings.governance.max_round_trips
"""

from __future__ import annotations

from functools import lru_cache
from typing import Literal, Optional

from dotenv import load_dotenv
from pydantic import AliasChoices, BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


load_dotenv()


class ModelRoutingSettings(BaseSettings):
    """Model identifiers and credentials for the orchestration roles.

    - coordinator: the model that reasons over the goal and emits tool calls
    - summarizer: the model used by the memory curator before a wipe
    - evaluator: the model scoring each loop in continuous mode
    """

    coordinator: Optional[str] = Field(
        default="minimax/minimax-m2.1",
        validation_alias=AliasChoices("MANOWAR_COORDINATOR_MODEL", "COORDINATOR_MODEL"),
    )
    coordinator_api_key: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("MANOWAR_COORDINATOR_API_KEY", "OPENROUTER_API_KEY", "OPENAI_API_KEY"),
    )
    coordinator_base_url: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("MANOWAR_COORDINATOR_BASE_URL", "OPENROUTER_BASE_URL"),
    )
    coordinator_temperature: float = Field(default=0.3, ge=0.0, le=2.0)

    summarizer: str = Field(
        default="moonshotai/kimi-k2-thinking",
        validation_alias=AliasChoices("MANOWAR_SUMMARIZER_MODEL", "SUMMARIZER_MODEL"),
    )
    evaluator: str = Field(
        default="moonshotai/kimi-k2-thinking",
        validation_alias=AliasChoices("MANOWAR_EVALUATOR_MODEL", "EVALUATOR_MODEL"),
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )


class GovernanceSettings(BaseSettings):
    """Runtime governance and control settings.

    - max_round_trips: coordinating ⇄ executing-tools round trips per loop
    - max_coordinator_retries: retries after a failed coordinator call
    - max_loops: loops in continuous mode (1 = single pass)
    - step_timeout_seconds: timeout for model calls inside a step
    - checkpoint_timeout_seconds: timeout for one checkpoint write/read
    """

    max_round_trips: int = Field(default=10, ge=1, le=200, alias="MAX_ROUND_TRIPS")
    max_coordinator_retries: int = Field(default=2, ge=0, le=10, alias="MAX_COORDINATOR_RETRIES")
    max_loops: int = Field(default=1, ge=1, le=100, alias="MAX_LOOPS")
    step_timeout_seconds: float = Field(default=120.0, gt=0, alias="STEP_TIMEOUT_SECONDS")
    checkpoint_timeout_seconds: float = Field(default=10.0, gt=0, alias="CHECKPOINT_TIMEOUT_SECONDS")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )


class ContextSettings(BaseSettings):
    """Context window accounting.

    - cleanup_threshold: percent of the effective window that triggers a wipe
    - effective_window_ratio: usable share of the advertised context length
    - default_context_window: conservative window used when a model is unknown
    - model_spec_ttl_seconds: lifetime of a cached model spec
    """

    cleanup_threshold: float = Field(default=80.0, gt=0, le=100, alias="CLEANUP_THRESHOLD")
    effective_window_ratio: float = Field(default=0.70, gt=0, le=1.0, alias="EFFECTIVE_WINDOW_RATIO")
    default_context_window: int = Field(default=32_000, ge=1024, alias="DEFAULT_CONTEXT_WINDOW")
    model_spec_ttl_seconds: float = Field(default=600.0, ge=0, alias="MODEL_SPEC_TTL_SECONDS")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )


class ServiceSettings(BaseSettings):
    """Collaborator endpoints and HTTP timeouts."""

    lambda_api_url: str = Field(default="https://api.compose.market", alias="LAMBDA_API_URL")
    mcp_url: str = Field(default="https://mcp.compose.market", alias="MCP_URL")
    http_timeout_seconds: float = Field(default=60.0, gt=0, alias="HTTP_TIMEOUT_SECONDS")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )


class PersistenceSettings(BaseSettings):
    """Checkpoint storage.

    backend: memory (process-scoped), file (one JSON file per checkpoint)
    or sqlite (one row per checkpoint).
    """

    checkpoint_backend: Literal["memory", "file", "sqlite"] = Field(default="file", alias="CHECKPOINT_BACKEND")
    checkpoint_path: str = Field(default="data/checkpoints", alias="CHECKPOINT_PATH")
    max_runs_per_workflow: int = Field(default=100, ge=1, alias="MAX_RUNS_PER_WORKFLOW")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )


class ObservabilitySettings(BaseSettings):
    """Tracing and logging configuration."""

    langsmith_project: Optional[str] = Field(default=None, alias="LANGCHAIN_PROJECT")
    langsmith_api_key: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("LANGCHAIN_API_KEY", "LANGSMITH_API_KEY")
    )
    tracing_enabled: bool = Field(default=False, alias="LANGCHAIN_TRACING_V2")

    log_dir: Optional[str] = Field(default="logs", alias="LOG_DIR")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )


class PricingSettings(BaseModel):
    """Per-call prices in USDC wei (6 decimals)."""

    orchestration: int = 10_000  # $0.01 per run
    agent_step: int = 5_000      # $0.005 per delegation
    inference: int = 5_000       # $0.005 per coordinator call
    tool_call: int = 1_000       # $0.001 per tool call


class Settings(BaseSettings):
    """Root application settings loaded from .env file.

    Use get_settings() to obtain a cached singleton instance.
    """

    environment: str = Field(default="dev", alias="APP_ENV")
    models: ModelRoutingSettings = Field(default_factory=ModelRoutingSettings)
    governance: GovernanceSettings = Field(default_factory=GovernanceSettings)
    context: ContextSettings = Field(default_factory=ContextSettings)
    services: ServiceSettings = Field(default_factory=ServiceSettings)
    persistence: PersistenceSettings = Field(default_factory=PersistenceSettings)
    observability: ObservabilitySettings = Field(default_factory=ObservabilitySettings)
    pricing: PricingSettings = Field(default_factory=PricingSettings)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        validate_assignment=True,
        case_sensitive=False,
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached singleton Settings instance."""
    return Settings()
