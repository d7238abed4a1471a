"""Model context-window specs with TTL caching."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Tuple

from manowarAgent.clients.registry import ModelSpecClient
from manowarAgent.utils.error_handler import ExternalCallError

LOGGER = logging.getLogger("manowar.context.model_specs")


# Advertised context length by provider, used when the spec service has no entry
PROVIDER_DEFAULTS: Dict[str, int] = {
    "openai": 400_000,
    "anthropic": 200_000,
    "google": 1_000_000,
    "nvidia": 128_000,
    "minimax": 4_000_000,
    "moonshotai": 256_000,
    "nex-agi": 164_000,
    "allenai": 128_000,
    "arcee-ai": 128_000,
    "asi-cloud": 128_000,
    "huggingface": 32_768,
}

_PREFIX_PROVIDERS = (
    ("gpt", "openai"),
    ("o1", "openai"),
    ("o3", "openai"),
    ("claude", "anthropic"),
    ("gemini", "google"),
    ("kimi", "moonshotai"),
    ("moonshot", "moonshotai"),
)


@dataclass(frozen=True, slots=True)
class ModelSpec:
    model_id: str
    context_length: int
    effective_window: int
    source: str
    max_completion_tokens: Optional[int] = None


def infer_provider(model_id: str) -> Optional[str]:
    """Provider from ``provider/model`` ids or a well-known name prefix."""
    if "/" in model_id:
        return model_id.split("/", 1)[0].lower()
    lowered = model_id.lower()
    for prefix, provider in _PREFIX_PROVIDERS:
        if lowered.startswith(prefix):
            return provider
    return None


class ModelSpecCache:
    """Resolves effective windows through the spec service, cached per model.

    Resolution order: cached entry → ``GET /models/{id}`` → provider default →
    ``default_context_window``. Entries expire after ``ttl_seconds``.
    """

    def __init__(
        self,
        client: Optional[ModelSpecClient] = None,
        *,
        ttl_seconds: float = 600.0,
        effective_window_ratio: float = 0.70,
        default_context_window: int = 32_000,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._client = client
        self.ttl_seconds = ttl_seconds
        self.effective_window_ratio = effective_window_ratio
        self.default_context_window = default_context_window
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: Dict[str, Tuple[ModelSpec, Optional[float]]] = {}

    @classmethod
    def from_settings(cls, settings, client: Optional[ModelSpecClient] = None) -> "ModelSpecCache":
        ctx = settings.context
        return cls(
            client,
            ttl_seconds=ctx.model_spec_ttl_seconds,
            effective_window_ratio=ctx.effective_window_ratio,
            default_context_window=ctx.default_context_window,
        )

    def _effective(self, context_length: int) -> int:
        return max(1, int(round(context_length * self.effective_window_ratio)))

    def prime(self, model_id: str, *, effective_window: int, context_length: Optional[int] = None) -> ModelSpec:
        """Pin a spec that never expires (static deployments and tests)."""
        spec = ModelSpec(
            model_id=model_id,
            context_length=context_length or effective_window,
            effective_window=effective_window,
            source="pinned",
        )
        with self._lock:
            self._entries[model_id] = (spec, None)
        return spec

    def invalidate(self, model_id: Optional[str] = None) -> None:
        """Forget one model, or every fetched spec when ``model_id`` is omitted (pinned specs stay)."""
        with self._lock:
            if model_id is None:
                self._entries = {k: v for k, v in self._entries.items() if v[1] is None}
            else:
                self._entries.pop(model_id, None)

    def _cached(self, model_id: str) -> Optional[ModelSpec]:
        with self._lock:
            entry = self._entries.get(model_id)
            if entry is None:
                return None
            spec, expires_at = entry
            if expires_at is not None and expires_at <= self._clock():
                del self._entries[model_id]
                return None
            return spec

    def _store(self, spec: ModelSpec) -> ModelSpec:
        with self._lock:
            self._entries[spec.model_id] = (spec, self._clock() + self.ttl_seconds)
        return spec

    def fallback_spec(self, model_id: str) -> ModelSpec:
        provider = infer_provider(model_id)
        if provider in PROVIDER_DEFAULTS:
            length = PROVIDER_DEFAULTS[provider]
            source = provider
        else:
            length = self.default_context_window
            source = "default"
        return ModelSpec(
            model_id=model_id,
            context_length=length,
            effective_window=self._effective(length),
            source=source,
        )

    async def resolve(self, model_id: str) -> ModelSpec:
        cached = self._cached(model_id)
        if cached is not None:
            return cached

        body = None
        if self._client is not None:
            try:
                body = await self._client.fetch(model_id)
            except ExternalCallError as e:
                LOGGER.warning(f"Model spec lookup failed for {model_id}: {e}")

        if body:
            raw_length = body.get("contextLength") or body.get("context_length") or body.get("contextWindow")
            try:
                length = int(raw_length) if raw_length else 0
            except (TypeError, ValueError):
                length = 0
            if length > 0:
                max_completion = body.get("maxCompletionTokens")
                return self._store(ModelSpec(
                    model_id=model_id,
                    context_length=length,
                    effective_window=self._effective(length),
                    source=str(body.get("source") or "registry"),
                    max_completion_tokens=int(max_completion) if isinstance(max_completion, int) else None,
                ))

        spec = self.fallback_spec(model_id)
        LOGGER.info(f"Using {spec.source} context window for {model_id}: {spec.effective_window}")
        return self._store(spec)

    async def effective_window(self, model_id: str) -> int:
        return (await self.resolve(model_id)).effective_window
