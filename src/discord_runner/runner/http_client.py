"""
runner/http_client.py — HTTP Transport

HttpTransport capability over a shared httpx.AsyncClient.
"""

from __future__ import annotations

from typing import Optional

import httpx

from discord_runner.exceptions import TransportError
from discord_runner.gateway.http_api import HttpRequest, HttpResponse
from discord_runner.observability.logger import get_logger

log = get_logger(__name__)


class HttpxTransport:
    def __init__(
        self,
        timeout: float = 15.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self._client = client or httpx.AsyncClient(timeout=timeout, follow_redirects=False)

    async def request(self, request: HttpRequest) -> HttpResponse:
        try:
            resp = await self._client.request(
                request.method,
                request.url,
                headers=request.headers,
                content=request.body or None,
                params=request.params or None,
            )
        except httpx.HTTPError as e:
            log.warning("http.request_failed", method=request.method, url=request.url, error=str(e))
            raise TransportError(None, f"{request.method} {request.url} failed: {e}") from e

        log.debug("http.response", method=request.method, url=request.url, status=resp.status_code)
        return HttpResponse(
            status=resp.status_code,
            headers=dict(resp.headers),
            body=resp.content,
        )

    async def aclose(self) -> None:
        await self._client.aclose()
