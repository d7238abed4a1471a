"""Shared httpx plumbing for collaborator clients."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Type

import httpx

from manowarAgent.utils.error_handler import CallTimeoutError, ExternalCallError

LOGGER = logging.getLogger("manowar.clients")


class ServiceClient:
    """Thin async JSON client around ``httpx.AsyncClient``.

    A client passed in is borrowed (tests inject one built on
    ``httpx.MockTransport``); otherwise one is created lazily and owned.
    """

    error_cls: Type[ExternalCallError] = ExternalCallError
    service_name = "service"

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 60.0,
        client: Optional[httpx.AsyncClient] = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client = client
        self._owns_client = client is None
        self._headers = {"Content-Type": "application/json", **(headers or {})}

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        params: Optional[Dict[str, Any]] = None,
        allow_not_found: bool = False,
    ) -> Any:
        url = f"{self.base_url}{path}"
        try:
            response = await self._http().request(
                method, url, json=json, params=params, headers=self._headers, timeout=self.timeout
            )
        except httpx.TimeoutException as e:
            raise CallTimeoutError(
                f"{self.service_name} {method} {path} timed out after {self.timeout}s",
                user_message=f"请求超时（{self.timeout}秒）",
            ) from e
        except httpx.HTTPError as e:
            raise self.error_cls(f"{self.service_name} {method} {path} failed: {e}") from e

        if allow_not_found and response.status_code == 404:
            return None
        if response.is_error:
            raise self.error_cls(
                f"{self.service_name} {method} {path} returned HTTP {response.status_code}: {response.text[:200]}",
                user_message=f"HTTP 错误: {response.status_code}",
            )
        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            raise self.error_cls(f"{self.service_name} {method} {path} returned non-JSON body") from e
