"""Archival fallbacks used once live access and alternate URLs are exhausted.

Each source implements the same small capability: given the original URL,
return an :class:`AcquiredDocument` or ``None``. A missing snapshot is not an
error; sources log and return ``None`` so the cascade moves on.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
from typing import TYPE_CHECKING, Any, Dict, Optional, Protocol
from urllib.parse import quote

import aiohttp

from .models import AcquiredDocument, FetchAttempt
from .policy_config import (
    ARCHIVE_AVAILABILITY_TIMEOUT_SECONDS,
    ARCHIVE_MIN_BYTES,
    ARCHIVE_TIMEOUT_SECONDS,
    CACHE_MIRROR_ENDPOINT,
    WAYBACK_AVAILABILITY_ENDPOINT,
    WAYBACK_CDX_ENDPOINT,
    WAYBACK_SNAPSHOT_TEMPLATE,
)
from .policy_utils import domain_from_url

if TYPE_CHECKING:  # pragma: no cover - typing only
    from .rate_limiter import RateLimiter
    from .transport import Transport

logger = logging.getLogger(__name__)

_RE_WAYBACK_TOOLBAR = re.compile(
    r"<!-- BEGIN WAYBACK TOOLBAR INSERT -->.*?<!-- END WAYBACK TOOLBAR INSERT -->", re.I | re.S
)
_RE_ARCHIVE_SCRIPT = re.compile(r"<script[^>]*archive\.org[^>]*>.*?</script>", re.I | re.S)
_RE_ARCHIVE_LINK = re.compile(r"<link[^>]*archive\.org[^>]*>", re.I)
_RE_MIRROR_HEADER = re.compile(r'<div[^>]*id="bN015htcoyT__google-cache-hdr"[^>]*>.*?</div>', re.I | re.S)
_RE_MIRROR_STYLE = re.compile(r"<style[^>]*>(?:(?!</style>).)*?google-cache.*?</style>", re.I | re.S)

_NETWORK_ERRORS = (aiohttp.ClientError, asyncio.TimeoutError, OSError)


class ArchivalSource(Protocol):
    name: str
    min_length: int

    async def fetch(self, url: str, transport: "Transport", headers: Dict[str, str]) -> Optional[AcquiredDocument]: ...


def strip_wayback_markup(html: str) -> str:
    """Remove the Wayback toolbar plus archive.org scripts and stylesheets."""

    html = _RE_WAYBACK_TOOLBAR.sub("", html or "")
    html = _RE_ARCHIVE_SCRIPT.sub("", html)
    return _RE_ARCHIVE_LINK.sub("", html)


def strip_mirror_markup(html: str) -> str:
    """Remove the cache-mirror banner and its injected styles."""

    html = _RE_MIRROR_HEADER.sub("", html or "")
    return _RE_MIRROR_STYLE.sub("", html)


def _select_wayback_timestamp(candidates: Any) -> Optional[str]:
    """Extract the first valid timestamp from a CDX response payload."""

    if not isinstance(candidates, list):
        return None
    # First row is a header; iterate over remaining rows until we find a valid stamp
    for row in candidates[1:]:
        if not isinstance(row, list) or not row:
            continue
        stamp = str(row[0]).strip()
        if stamp:
            return stamp
    return None


def _closest_snapshot(payload: Any) -> Optional[Dict[str, str]]:
    if not isinstance(payload, dict):
        return None
    closest = (payload.get("archived_snapshots") or {}).get("closest") or {}
    if not closest.get("available") or not closest.get("url"):
        return None
    return {"url": str(closest["url"]), "timestamp": str(closest.get("timestamp") or "")}


def _decode(body: bytes) -> str:
    return body.decode("utf-8", "ignore") if body else ""


class _BaseSource:
    name = "archive"
    min_length = ARCHIVE_MIN_BYTES

    def __init__(self, *, timeout: float = ARCHIVE_TIMEOUT_SECONDS, limiter: Optional["RateLimiter"] = None) -> None:
        self.timeout = timeout
        self.limiter = limiter

    async def _get(self, transport: "Transport", url: str, headers: Dict[str, str], timeout: float):
        if self.limiter is not None:
            await self.limiter.await_turn(domain_from_url(url))
        return await transport.get(url, headers=headers, timeout=timeout)


class CacheMirrorSource(_BaseSource):
    """Search-engine cache mirror of the live page."""

    name = "cache_mirror"

    def mirror_url(self, url: str) -> str:
        return CACHE_MIRROR_ENDPOINT + quote(url, safe="")

    async def fetch(self, url: str, transport: "Transport", headers: Dict[str, str]) -> Optional[AcquiredDocument]:
        mirror_url = self.mirror_url(url)
        attempt = FetchAttempt(url=mirror_url, strategy=self.name)
        try:
            resp = await self._get(transport, mirror_url, headers, self.timeout)
        except _NETWORK_ERRORS as exc:
            logger.debug("Cache mirror unreachable for %s: %s", url, exc)
            return None
        attempt.status = resp.status
        if resp.status != 200:
            logger.debug("Cache mirror returned %s for %s", resp.status, url)
            return None
        text = strip_mirror_markup(_decode(resp.body))
        if len(text) <= self.min_length:
            logger.debug("Cache mirror body too short for %s (%d chars)", url, len(text))
            return None
        attempt.outcome = "ok"
        return AcquiredDocument(
            body=text.encode("utf-8"),
            content_type=resp.content_type or "text/html",
            final_url=url,
            strategy=self.name,
            attempts=[attempt],
            metadata={"via": self.name, "mirror_url": mirror_url},
        )


class WaybackSource(_BaseSource):
    """Internet Archive snapshot: availability check, then the closest capture."""

    name = "wayback"

    def __init__(
        self,
        *,
        timeout: float = ARCHIVE_TIMEOUT_SECONDS,
        availability_timeout: float = ARCHIVE_AVAILABILITY_TIMEOUT_SECONDS,
        limiter: Optional["RateLimiter"] = None,
    ) -> None:
        super().__init__(timeout=timeout, limiter=limiter)
        self.availability_timeout = availability_timeout

    async def _json(self, transport: "Transport", url: str, headers: Dict[str, str]) -> Any:
        try:
            resp = await self._get(transport, url, headers, self.availability_timeout)
        except _NETWORK_ERRORS as exc:
            logger.debug("Wayback lookup failed (%s): %s", url, exc)
            return None
        if resp.status != 200:
            return None
        try:
            return json.loads(_decode(resp.body))
        except ValueError:
            return None

    async def locate_snapshot(self, url: str, transport: "Transport", headers: Dict[str, str]) -> Optional[Dict[str, str]]:
        payload = await self._json(transport, WAYBACK_AVAILABILITY_ENDPOINT + quote(url, safe=""), headers)
        snapshot = _closest_snapshot(payload)
        if snapshot:
            return snapshot
        cdx_url = (
            f"{WAYBACK_CDX_ENDPOINT}{quote(url, safe='')}"
            "&output=json&limit=1&filter=statuscode:200&collapse=digest"
        )
        timestamp = _select_wayback_timestamp(await self._json(transport, cdx_url, headers))
        if not timestamp:
            return None
        return {"url": WAYBACK_SNAPSHOT_TEMPLATE.format(timestamp=timestamp, url=url), "timestamp": timestamp}

    async def fetch(self, url: str, transport: "Transport", headers: Dict[str, str]) -> Optional[AcquiredDocument]:
        snapshot = await self.locate_snapshot(url, transport, headers)
        if not snapshot:
            logger.info("No archived snapshot available for %s", url)
            return None
        attempt = FetchAttempt(url=snapshot["url"], strategy=self.name)
        try:
            resp = await self._get(transport, snapshot["url"], headers, self.timeout)
        except _NETWORK_ERRORS as exc:
            logger.info("Archived snapshot fetch failed for %s: %s", url, exc)
            return None
        attempt.status = resp.status
        if resp.status != 200:
            logger.info("Archived snapshot returned %s for %s", resp.status, url)
            return None
        text = strip_wayback_markup(_decode(resp.body))
        if len(text) <= self.min_length:
            logger.info("Archived snapshot too short for %s (%d chars)", url, len(text))
            return None
        attempt.outcome = "ok"
        return AcquiredDocument(
            body=text.encode("utf-8"),
            content_type=resp.content_type or "text/html",
            final_url=url,
            strategy=self.name,
            attempts=[attempt],
            metadata={
                "via": self.name,
                "wayback_url": snapshot["url"],
                "wayback_timestamp": snapshot["timestamp"],
            },
        )


__all__ = [
    "ArchivalSource",
    "CacheMirrorSource",
    "WaybackSource",
    "strip_mirror_markup",
    "strip_wayback_markup",
]
