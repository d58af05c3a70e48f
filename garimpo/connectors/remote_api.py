"""Remote catalog store: async client for the products REST endpoint.

Endpoint contract::

    GET    {url}            -> [row, ...]   ordered by createdAt desc
    POST   {url}   row      -> {"status": "success"}   (REPLACE by id)
    DELETE {url}?id=<id>    -> {"status": "deleted"}

A JSON body carrying an ``error`` key is a fault even with HTTP 200.
"""

from __future__ import annotations

import asyncio
import logging
import random
from typing import Any, Dict, List, Optional

import httpx

from garimpo.config import RemoteConfig
from garimpo.config_remote import RemoteCredentials

logger = logging.getLogger(__name__)

_RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}


class RemoteStoreError(RuntimeError):
    pass


class RemoteApiClient:
    def __init__(
        self,
        creds: RemoteCredentials,
        cfg: Optional[RemoteConfig] = None,
        *,
        session: httpx.AsyncClient | None = None,
    ) -> None:
        self.cfg = cfg or RemoteConfig()
        self.url = creds.url
        headers = {"Content-Type": "application/json"}
        if creds.api_key:
            headers["Authorization"] = f"Bearer {creds.api_key}"
            headers["apikey"] = creds.api_key
        self.headers = headers
        self.session = session or httpx.AsyncClient(timeout=self.cfg.timeout_seconds)

    async def close(self) -> None:
        await self.session.aclose()

    # ── Public API ────────────────────────────────────────────────────────────

    async def fetch_all(self) -> List[Dict[str, Any]]:
        data = await self._request("GET", self.url)
        if isinstance(data, dict) and isinstance(data.get("data"), list):
            data = data["data"]
        if not isinstance(data, list):
            raise RemoteStoreError(f"expected a JSON array of rows, got {type(data).__name__}")
        return data

    async def upsert_row(self, row: Dict[str, Any]) -> None:
        await self._request("POST", self.url, json=row)

    async def delete_row(self, record_id: str) -> None:
        await self._request("DELETE", self.url, params={"id": record_id})

    # ── Private helpers ───────────────────────────────────────────────────────

    async def _request(self, method: str, url: str, **kwargs) -> Any:
        delay = self.cfg.backoff_base_seconds
        attempts = self.cfg.max_retries + 1
        for attempt in range(attempts):
            try:
                response = await self.session.request(method, url, headers=self.headers, **kwargs)
            except httpx.TransportError as exc:
                if attempt + 1 >= attempts:
                    raise RemoteStoreError(f"{method} {url} failed: {exc}") from exc
                logger.debug("%s %s transport error (%s); retrying", method, url, exc)
            else:
                if response.status_code in _RETRYABLE_STATUS_CODES and attempt + 1 < attempts:
                    logger.debug("%s %s returned %s; retrying", method, url, response.status_code)
                else:
                    return self._parse(method, url, response)
            await asyncio.sleep(delay + random.uniform(0, delay))
            delay *= 2
        raise RemoteStoreError(f"{method} {url} failed after {attempts} attempts")

    @staticmethod
    def _parse(method: str, url: str, response: httpx.Response) -> Any:
        if response.status_code >= 400:
            raise RemoteStoreError(f"{method} {url} returned HTTP {response.status_code}")
        if not response.content:
            return None
        try:
            body = response.json()
        except ValueError as exc:
            raise RemoteStoreError(f"{method} {url} returned a non-JSON body") from exc
        if isinstance(body, dict) and body.get("error"):
            raise RemoteStoreError(f"{method} {url} reported: {body['error']}")
        return body
