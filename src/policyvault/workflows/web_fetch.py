from __future__ import annotations

import asyncio
import logging
import os
import random
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

import aiohttp

from .alternate_urls import DEFAULT_URL_TRANSFORMS, UrlTransform, english_locale_variants, is_localized_url, iter_alternates
from .archive_sources import ArchivalSource, CacheMirrorSource, WaybackSource
from .auth_wall_detector import detect_auth_wall, is_blocked_url
from .errors import (
    AllStrategiesExhausted,
    AuthWallDetected,
    FetchError,
    Forbidden,
    HttpStatusError,
    NetworkFetchError,
    RateLimitExceeded,
    ServerError,
    most_informative,
)
from .models import AcquiredDocument, FetchAttempt, HttpResponse
from .policy_config import (
    AGGRESSIVE_ANTIBOT_DOMAINS,
    ALTERNATE_MIN_BYTES,
    ARCHIVE_TIMEOUT_SECONDS,
    BROWSER_HEADERS,
    DEFAULT_FALLBACK_AGENTS,
    MAX_BACKOFF_SECONDS,
    MAX_RETRIES,
    REQUEST_TIMEOUT_SECONDS,
    SERVER_ERROR_BACKOFF_SECONDS,
    USER_AGENTS,
)
from .policy_utils import as_bool, domain_from_url, safe_float, safe_int
from .rate_limiter import RateLimiter, compute_backoff
from .transport import AiohttpTransport, Transport

logger = logging.getLogger(__name__)

Sleeper = Callable[[float], Awaitable[None]]

_NETWORK_ERRORS = (aiohttp.ClientError, asyncio.TimeoutError, OSError)


@dataclass
class FetchConfig:
    """Configuration parameters for the acquisition cascade."""

    timeout: float = REQUEST_TIMEOUT_SECONDS
    archive_timeout: float = ARCHIVE_TIMEOUT_SECONDS
    max_retries: int = MAX_RETRIES
    server_error_backoff: float = SERVER_ERROR_BACKOFF_SECONDS
    max_backoff: float = MAX_BACKOFF_SECONDS
    user_agents: Tuple[str, ...] = USER_AGENTS
    fallback_agents: int = DEFAULT_FALLBACK_AGENTS
    aggressive_domains: Tuple[str, ...] = tuple(sorted(AGGRESSIVE_ANTIBOT_DOMAINS))
    alternate_min_bytes: int = ALTERNATE_MIN_BYTES
    enable_cache_mirror: bool = True
    enable_wayback: bool = True
    extra_headers: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_env(cls) -> "FetchConfig":
        cfg = cls()
        cfg.timeout = safe_float(os.getenv("POLICYVAULT_TIMEOUT"), cfg.timeout) or cfg.timeout
        cfg.archive_timeout = safe_float(os.getenv("POLICYVAULT_ARCHIVE_TIMEOUT"), cfg.archive_timeout) or cfg.archive_timeout
        retries = safe_int(os.getenv("POLICYVAULT_MAX_RETRIES"), cfg.max_retries)
        cfg.max_retries = max(0, retries if retries is not None else cfg.max_retries)
        cfg.enable_cache_mirror = as_bool(os.getenv("POLICYVAULT_ENABLE_CACHE_MIRROR"), cfg.enable_cache_mirror)
        cfg.enable_wayback = as_bool(os.getenv("POLICYVAULT_ENABLE_WAYBACK"), cfg.enable_wayback)
        return cfg


def _is_html(content_type: str, body: bytes) -> bool:
    ct = (content_type or "").lower()
    if "html" in ct or "xml" in ct:
        return True
    if "pdf" in ct or body[:4] == b"%PDF":
        return False
    head = body[:512].lstrip().lower()
    return head.startswith(b"<!doctype html") or head.startswith(b"<html") or b"<body" in head


def _is_textual(content_type: str, body: bytes) -> bool:
    if "pdf" in (content_type or "").lower() or body[:4] == b"%PDF":
        return False
    return True


def _text_head(body: bytes, limit: int = 5000) -> str:
    return body[: limit * 4].decode("utf-8", "ignore")[:limit]


class FetchCascade:
    """Acquire raw policy bytes through increasingly desperate strategies.

    Order: blocklist check, UA rotation with per-UA retries, English-locale
    recovery, auth-wall scan, alternate URL transforms, archival sources.
    Every strategy is tried serially; the rate limiter is consulted before
    each primary request.
    """

    def __init__(
        self,
        config: Optional[FetchConfig] = None,
        *,
        transport: Optional[Transport] = None,
        limiter: Optional[RateLimiter] = None,
        url_transforms: Optional[Sequence[UrlTransform]] = None,
        archival_sources: Optional[Sequence[ArchivalSource]] = None,
        sleep: Optional[Sleeper] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.config = config or FetchConfig.from_env()
        self.transport: Transport = transport if transport is not None else AiohttpTransport()
        self.limiter = limiter or RateLimiter()
        self.url_transforms: Tuple[UrlTransform, ...] = tuple(
            DEFAULT_URL_TRANSFORMS if url_transforms is None else url_transforms
        )
        if archival_sources is None:
            sources: List[ArchivalSource] = []
            if self.config.enable_cache_mirror:
                sources.append(CacheMirrorSource(timeout=self.config.archive_timeout, limiter=self.limiter))
            if self.config.enable_wayback:
                sources.append(WaybackSource(timeout=self.config.archive_timeout, limiter=self.limiter))
            archival_sources = sources
        self.archival_sources: Tuple[ArchivalSource, ...] = tuple(archival_sources)
        self._sleep: Sleeper = sleep or asyncio.sleep
        self._rng = rng or random.Random()

    # ------------------------------------------------------------------ helpers
    def user_agents_for(self, domain: str) -> Tuple[str, ...]:
        agents = self.config.user_agents
        if not agents:
            return ()
        if any(domain == d or domain.endswith("." + d) for d in self.config.aggressive_domains):
            return agents
        return agents[: 1 + max(0, self.config.fallback_agents)]

    def headers_for(self, user_agent: str) -> Dict[str, str]:
        headers = dict(BROWSER_HEADERS)
        headers.update(self.config.extra_headers)
        headers["User-Agent"] = user_agent
        return headers

    async def close(self) -> None:
        closer = getattr(self.transport, "close", None)
        if closer is not None:
            await closer()

    # ------------------------------------------------------------------ public
    async def acquire(self, url: str) -> AcquiredDocument:
        """Return ``AcquiredDocument`` for ``url`` or raise a typed ``FetchError``."""

        attempts: List[FetchAttempt] = []
        errors: List[FetchError] = []

        try:
            return await self._acquire_direct(url, attempts, strategy="direct")
        except AuthWallDetected:
            raise
        except FetchError as exc:
            errors.append(exc)
            logger.info("Direct fetch failed for %s (%s); trying alternates", url, exc)

        for name, candidate in iter_alternates(url, self.url_transforms):
            try:
                doc = await self._acquire_direct(candidate, attempts, strategy=f"alternate:{name}")
            except FetchError as exc:
                if not isinstance(exc, AuthWallDetected):
                    errors.append(exc)
                logger.debug("Alternate %s failed for %s: %s", name, candidate, exc)
                continue
            if len(doc.body) > self.config.alternate_min_bytes:
                logger.info("Recovered %s via alternate %s (%s)", url, name, candidate)
                doc.metadata.setdefault("alternate_url", candidate)
                doc.metadata.setdefault("requested_url", url)
                return doc
            logger.debug("Alternate %s body too small (%d bytes)", name, len(doc.body))

        headers = self.headers_for(self.config.user_agents[0]) if self.config.user_agents else dict(BROWSER_HEADERS)
        for source in self.archival_sources:
            started = time.monotonic()
            try:
                doc = await source.fetch(url, self.transport, headers)
            except _NETWORK_ERRORS as exc:
                logger.info("Archival source %s failed for %s: %s", source.name, url, exc)
                doc = None
            attempts.append(
                FetchAttempt(
                    url=url,
                    strategy=source.name,
                    outcome="ok" if doc is not None else "miss",
                    elapsed=time.monotonic() - started,
                )
            )
            if doc is None:
                continue
            if len(doc.body) <= getattr(source, "min_length", 0):
                logger.info("Archival source %s returned too little for %s", source.name, url)
                continue
            logger.info("Recovered %s from archival source %s", url, source.name)
            doc.attempts = attempts + list(doc.attempts)
            return doc

        cause = most_informative(errors)
        logger.warning("All strategies exhausted for %s (cause: %s)", url, cause)
        raise AllStrategiesExhausted(url, cause=cause, attempts=attempts)

    # ------------------------------------------------------------------ direct
    async def _acquire_direct(self, url: str, attempts: List[FetchAttempt], *, strategy: str) -> AcquiredDocument:
        blocked = is_blocked_url(url)
        if blocked:
            raise AuthWallDetected(
                f"Refusing authentication URL {url} (matched {blocked!r})",
                url=url,
                reason="blocked_url_pattern",
            )

        domain = domain_from_url(url)
        last_error: Optional[FetchError] = None
        response: Optional[HttpResponse] = None
        used_agent: Optional[str] = None
        for index, agent in enumerate(self.user_agents_for(domain)):
            try:
                response = await self._fetch_with_user_agent(url, agent, attempts, strategy=strategy)
                used_agent = agent
                break
            except AuthWallDetected:
                raise
            except Forbidden as exc:
                last_error = exc
                logger.debug("403 for %s with UA #%d; rotating", url, index)
                await self._sleep(self._rng.uniform(0.5, 1.0))
            except HttpStatusError as exc:
                last_error = exc
                break
            except FetchError as exc:
                last_error = exc
        if response is None:
            raise last_error or NetworkFetchError(f"No user agents configured for {url}", url=url)

        final_url = response.final_url or url
        body = response.body
        content_type = response.content_type
        metadata: Dict[str, object] = {"status": response.status}

        if _is_html(content_type, body) and is_localized_url(final_url):
            recovered = await self._recover_english(final_url, used_agent or "", attempts, strategy=strategy)
            if recovered is not None:
                metadata["locale_redirect_from"] = final_url
                response = recovered
                final_url = recovered.final_url
                body = recovered.body
                content_type = recovered.content_type
            else:
                logger.warning("Kept localized content for %s (no English variant)", final_url)
                metadata["localized_content"] = True

        return AcquiredDocument(
            body=body,
            content_type=content_type,
            final_url=final_url,
            strategy=strategy,
            user_agent=used_agent,
            attempts=attempts,
            metadata=metadata,
        )

    def _check_auth_wall(self, url: str, content_type: str, body: bytes, status: Optional[int] = None) -> None:
        head = _text_head(body) if body and _is_textual(content_type, body) else ""
        report = detect_auth_wall(url, status, head)
        if report["verdict"] != "likely":
            return
        indicators = report["indicators"]
        blocked = indicators.get("blocked_url_pattern")
        if blocked:
            raise AuthWallDetected(
                f"Redirected to authentication URL {url} (matched {blocked!r})",
                url=url,
                status=status,
                reason="blocked_url_pattern",
            )
        fingerprint = indicators["login_fingerprint"]
        logger.warning("Login page detected at %s (%s)", url, fingerprint)
        raise AuthWallDetected(
            f"Login page detected at {url} ({fingerprint})",
            url=url,
            status=status,
            reason=fingerprint,
        )

    async def _recover_english(
        self,
        localized_url: str,
        agent: str,
        attempts: List[FetchAttempt],
        *,
        strategy: str,
    ) -> Optional[HttpResponse]:
        for variant in english_locale_variants(localized_url):
            try:
                resp = await self._fetch_with_user_agent(variant, agent, attempts, strategy=f"{strategy}:locale")
            except FetchError as exc:
                logger.debug("English variant %s failed: %s", variant, exc)
                continue
            landed = resp.final_url or variant
            if is_localized_url(landed):
                logger.debug("English variant %s redirected back to %s", variant, landed)
                continue
            logger.info("Recovered English content for %s at %s", localized_url, landed)
            return resp
        return None

    async def _fetch_with_user_agent(
        self,
        url: str,
        agent: str,
        attempts: List[FetchAttempt],
        *,
        strategy: str,
    ) -> HttpResponse:
        domain = domain_from_url(url)
        headers = self.headers_for(agent)
        max_retries = max(0, self.config.max_retries)
        for attempt in range(max_retries + 1):
            await self.limiter.await_turn(domain)
            record = FetchAttempt(url=url, strategy=strategy, user_agent=agent)
            attempts.append(record)
            started = time.monotonic()
            try:
                resp = await self.transport.get(url, headers=headers, timeout=self.config.timeout)
            except _NETWORK_ERRORS as exc:
                record.elapsed = time.monotonic() - started
                record.outcome = "network_error"
                record.error = f"{type(exc).__name__}: {exc}"
                if attempt < max_retries:
                    await self._sleep(self.config.server_error_backoff * (2 ** attempt))
                    continue
                raise NetworkFetchError(f"Network failure fetching {url}: {record.error}", url=url) from exc
            record.elapsed = time.monotonic() - started
            record.status = resp.status
            status = resp.status

            # Login fingerprints terminate regardless of status, 5xx and 429 included.
            self._check_auth_wall(resp.final_url or url, resp.content_type, resp.body, status=status)

            if status == 429:
                record.outcome = "rate_limited"
                retry_after = self.limiter.report_rate_limited(domain, resp.header("Retry-After"))
                if attempt < max_retries:
                    delay = compute_backoff(retry_after, attempt, self.config.max_backoff)
                    await self._sleep(delay + self._rng.uniform(0.0, 1.0))
                    continue
                raise RateLimitExceeded(
                    f"Rate limited by {domain} after {attempt + 1} attempts",
                    url=url,
                    retry_after=retry_after,
                )
            if 500 <= status < 600:
                record.outcome = "server_error"
                if attempt < max_retries:
                    await self._sleep(self.config.server_error_backoff * (2 ** attempt))
                    continue
                raise ServerError(f"Server error {status} from {url}", url=url, status=status)

            if status in (401, 403):
                record.outcome = "forbidden"
                raise Forbidden(f"Access forbidden ({status}) for {url}", url=url, status=status)
            if status >= 400:
                record.outcome = "http_error"
                raise HttpStatusError(f"HTTP {status} for {url}", url=url, status=status)
            record.outcome = "ok"
            if not resp.final_url:
                resp.final_url = url
            return resp
        raise NetworkFetchError(f"Retry budget exhausted for {url}", url=url)


__all__ = ["FetchCascade", "FetchConfig"]
