"""HTTP transport seam for the fetch cascade.

The cascade only needs "GET this URL with these headers and this timeout";
keeping that behind a tiny protocol lets tests swap in a scripted transport.
"""

from __future__ import annotations

import asyncio
from typing import Dict, Optional, Protocol

import aiohttp

from .models import HttpResponse


class Transport(Protocol):
    async def get(self, url: str, *, headers: Dict[str, str], timeout: float) -> HttpResponse: ...


class AiohttpTransport:
    """Default transport backed by one shared ``aiohttp.ClientSession``.

    Redirects are followed and the post-redirect URL is reported as
    ``final_url``. Network failures propagate as ``aiohttp.ClientError`` or
    ``asyncio.TimeoutError``.
    """

    def __init__(self, session: Optional[aiohttp.ClientSession] = None, *, max_redirects: int = 10) -> None:
        self._session = session
        self._owns_session = session is None
        self._max_redirects = max_redirects
        self._session_lock = asyncio.Lock()

    async def _ensure_session(self) -> aiohttp.ClientSession:
        async with self._session_lock:
            if self._session is None or self._session.closed:
                self._session = aiohttp.ClientSession()
                self._owns_session = True
            return self._session

    async def get(self, url: str, *, headers: Dict[str, str], timeout: float) -> HttpResponse:
        session = await self._ensure_session()
        async with session.get(
            url,
            headers=headers,
            timeout=aiohttp.ClientTimeout(total=timeout),
            allow_redirects=True,
            max_redirects=self._max_redirects,
        ) as resp:
            body = await resp.read()
            content_type = resp.headers.get("Content-Type", "text/html").split(";")[0].strip().lower()
            return HttpResponse(
                status=resp.status,
                body=body,
                content_type=content_type or "text/html",
                final_url=str(resp.url),
                headers={key: value for key, value in resp.headers.items()},
            )

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    async def __aenter__(self) -> "AiohttpTransport":
        await self._ensure_session()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()


__all__ = ["AiohttpTransport", "Transport"]
