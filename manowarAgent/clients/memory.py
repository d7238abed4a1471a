"""Long-term memory collaborator."""

from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional, Sequence

from manowarAgent.clients.base import ServiceClient


class MemoryClient(ServiceClient):
    """``POST /memory/add`` and ``POST /memory/search``."""

    service_name = "memory"

    async def add(
        self,
        messages: Sequence[Mapping[str, str]],
        *,
        agent_id: str,
        run_id: Optional[str] = None,
        metadata: Optional[Mapping[str, Any]] = None,
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "messages": [dict(m) for m in messages],
            "agentId": agent_id,
            "metadata": dict(metadata or {}),
        }
        if run_id:
            payload["runId"] = run_id
        body = await self._request("POST", "/memory/add", json=payload)
        return body if isinstance(body, dict) else {}

    async def search(
        self,
        query: str,
        *,
        agent_id: str,
        run_id: Optional[str] = None,
        filters: Optional[Mapping[str, Any]] = None,
        limit: int = 5,
    ) -> List[Dict[str, Any]]:
        payload: Dict[str, Any] = {
            "query": query,
            "agentId": agent_id,
            "filters": dict(filters or {}),
            "limit": limit,
        }
        if run_id:
            payload["runId"] = run_id
        body = await self._request("POST", "/memory/search", json=payload)
        memories = body.get("memories") if isinstance(body, Mapping) else body
        if not isinstance(memories, list):
            return []
        return [m for m in memories if isinstance(m, dict)]
