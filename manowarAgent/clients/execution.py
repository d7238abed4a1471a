"""Tool execution and sub-agent delegation collaborators."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional
from urllib.parse import quote

from manowarAgent.clients.base import ServiceClient
from manowarAgent.utils.error_handler import AgentDelegationError, ToolExecutionError


class ToolClient(ServiceClient):
    """``POST /tool/{id} {args} → {result} | {error}``"""

    error_cls = ToolExecutionError
    service_name = "tool"

    async def execute(self, tool_id: str, args: Mapping[str, Any]) -> Any:
        body = await self._request("POST", f"/tool/{quote(tool_id, safe='')}", json={"args": dict(args)})
        if isinstance(body, Mapping):
            if body.get("error"):
                raise ToolExecutionError(f"tool {tool_id} reported: {body['error']}", user_message=str(body["error"]))
            if "result" in body:
                return body["result"]
        return body


@dataclass(slots=True)
class AgentReply:
    messages: List[Dict[str, Any]]
    multimodal_output: Optional[Dict[str, Any]] = None
    raw: Dict[str, Any] = field(default_factory=dict)

    @property
    def content(self) -> str:
        """Text of the last assistant message, or empty."""
        for message in reversed(self.messages):
            if message.get("role") in ("assistant", "ai", None) and isinstance(message.get("content"), str):
                return message["content"]
        return ""


class AgentClient(ServiceClient):
    """``POST /agent/{id}/chat {message, threadId} → {messages[], multimodalOutput?}``"""

    error_cls = AgentDelegationError
    service_name = "agent"

    async def chat(self, agent_id: str, message: str, thread_id: str) -> AgentReply:
        body = await self._request(
            "POST",
            f"/agent/{quote(agent_id, safe='')}/chat",
            json={"message": message, "threadId": thread_id},
        )
        if not isinstance(body, Mapping):
            raise AgentDelegationError(f"agent {agent_id} returned a non-object body")
        if body.get("error"):
            raise AgentDelegationError(f"agent {agent_id} reported: {body['error']}", user_message=str(body["error"]))

        messages = body.get("messages")
        if not isinstance(messages, list):
            # some agents answer with a single output field
            output = body.get("output") or body.get("content") or ""
            messages = [{"role": "assistant", "content": str(output)}]
        multimodal = body.get("multimodalOutput")
        return AgentReply(
            messages=[m for m in messages if isinstance(m, Mapping)],
            multimodal_output=multimodal if isinstance(multimodal, Mapping) else None,
            raw=dict(body),
        )
