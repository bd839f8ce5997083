from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional, Protocol
from urllib.parse import quote

import requests

from planner_cache import settings
from planner_cache.errors import RemoteOperationFailed

log = logging.getLogger("planner_api.remote")


class RemoteDataClient(Protocol):
    """The three backend verbs the sync engine replays pending operations through."""

    async def create_direct(self, store: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        ...

    async def update_direct(self, store: str, item_id: Any, payload: Dict[str, Any]) -> Dict[str, Any]:
        ...

    async def delete_direct(self, store: str, item_id: Any) -> None:
        ...


class RestRemoteDataClient:
    """JSON-over-HTTP backend client.

    ``POST {base}/{store}`` creates, ``PATCH {base}/{store}/{id}`` updates and
    ``DELETE {base}/{store}/{id}`` deletes. Creation sends the client-side id
    so a retried create can be recognised by the backend. A 404 on delete
    counts as success. Blocking HTTP runs in a worker thread.
    """

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        timeout_s: float | None = None,
    ) -> None:
        self.base_url = (base_url or settings.API_BASE_URL).rstrip("/")
        self.api_key = settings.API_KEY if api_key is None else api_key
        self.timeout_s = settings.API_TIMEOUT_S if timeout_s is None else float(timeout_s)

    def _url(self, store: str, item_id: Any = None) -> str:
        url = f"{self.base_url}/{quote(store, safe='')}"
        if item_id is not None:
            url = f"{url}/{quote(str(item_id), safe='')}"
        return url

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
            headers["apikey"] = self.api_key
        return headers

    def _request(self, method: str, url: str, payload: Optional[Dict[str, Any]] = None) -> Any:
        try:
            resp = requests.request(method, url, json=payload, headers=self._headers(), timeout=self.timeout_s)
        except requests.RequestException as exc:
            raise RemoteOperationFailed(f"{method} {url} failed: {exc}") from exc

        if method == "DELETE" and resp.status_code == 404:
            log.info("Remote record already gone: %s", url)
            return None
        if resp.status_code >= 400:
            raise RemoteOperationFailed(
                f"{method} {url} returned HTTP {resp.status_code}: {resp.text[:200]}",
                status_code=resp.status_code,
            )
        if resp.status_code == 204 or not resp.content:
            return None
        try:
            return resp.json()
        except ValueError:
            return None

    @staticmethod
    def _single(body: Any, fallback: Dict[str, Any]) -> Dict[str, Any]:
        # Some backends answer with a one-element list of rows.
        if isinstance(body, list):
            body = body[0] if body else None
        return body if isinstance(body, dict) else dict(fallback)

    async def create_direct(self, store: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        body = await asyncio.to_thread(self._request, "POST", self._url(store), payload)
        return self._single(body, payload)

    async def update_direct(self, store: str, item_id: Any, payload: Dict[str, Any]) -> Dict[str, Any]:
        body = await asyncio.to_thread(self._request, "PATCH", self._url(store, item_id), payload)
        return self._single(body, payload)

    async def delete_direct(self, store: str, item_id: Any) -> None:
        await asyncio.to_thread(self._request, "DELETE", self._url(store, item_id))
