"""Model-spec and tool-registry collaborators."""

from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional
from urllib.parse import quote

from manowarAgent.clients.base import ServiceClient


class ModelSpecClient(ServiceClient):
    """``GET /models/{id} → {contextLength, ...}``; unknown models yield None."""

    service_name = "model-specs"

    async def fetch(self, model_id: str) -> Optional[Dict[str, Any]]:
        body = await self._request("GET", f"/models/{quote(model_id, safe='/')}", allow_not_found=True)
        if not isinstance(body, Mapping) or not body:
            return None
        return dict(body)


class RegistryClient(ServiceClient):
    """``GET /registry/search?q=&limit= → {servers[]}``"""

    service_name = "registry"

    async def search(self, query: str, limit: int = 20) -> List[Dict[str, Any]]:
        body = await self._request("GET", "/registry/search", params={"q": query, "limit": limit})
        servers = body.get("servers") if isinstance(body, Mapping) else body
        if not isinstance(servers, list):
            return []
        return [s for s in servers if isinstance(s, dict)]
