"""Inference collaborator used by the summarizer and the evaluator."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Sequence

from manowarAgent.clients.base import ServiceClient
from manowarAgent.utils.error_handler import ModelInvocationError


@dataclass(slots=True)
class InferenceResult:
    """Plain completion result; duck-types as a chat response for the ledger."""
    content: str
    model: str
    response_metadata: Dict[str, Any] = field(default_factory=dict)


def _extract_content(body: Mapping[str, Any]) -> str:
    content = body.get("content")
    if isinstance(content, str):
        return content
    choices = body.get("choices")
    if isinstance(choices, list) and choices:
        message = choices[0].get("message") or {}
        text = message.get("content")
        if isinstance(text, str):
            return text
    raise ModelInvocationError("inference response carried no content")


class InferenceClient(ServiceClient):
    """``POST /api/inference {model, messages[], temperature} → {content}``"""

    error_cls = ModelInvocationError
    service_name = "inference"

    async def complete(
        self,
        model: str,
        messages: Sequence[Mapping[str, str]],
        *,
        temperature: float = 0.3,
    ) -> InferenceResult:
        payload = {
            "model": model,
            "messages": [dict(m) for m in messages],
            "temperature": temperature,
        }
        body = await self._request("POST", "/api/inference", json=payload)
        if not isinstance(body, Mapping):
            raise ModelInvocationError("inference response is not an object")
        return InferenceResult(content=_extract_content(body), model=model, response_metadata=dict(body))


def chat_payload(system: str, user: str) -> List[Dict[str, str]]:
    return [{"role": "system", "content": system}, {"role": "user", "content": user}]
