"""Content-addressed, TTL-aware cache of policy versions."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional

from .errors import ExtractionError, FetchError
from .hashing import content_hash, word_count
from .models import PolicyVersion
from .policy_config import CACHE_TTL_DAYS, DEFAULT_HISTORY_LIMIT, MAX_STORED_TEXT_CHARS
from .policy_utils import clean_domain, env_float, utc_now
from .version_store import VersionStore, new_id

logger = logging.getLogger(__name__)

# Called with (source_url, document_type); returns the live text, or an object
# exposing ``normalized_text`` that is handed back on a "changed" check.
FetchText = Callable[[str, str], Awaitable[Any]]


@dataclass
class CacheCheck:
    is_cached: bool
    is_up_to_date: bool
    version: Optional[PolicyVersion] = None
    live_hash: Optional[str] = None
    reason: str = ""
    live: Any = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "is_cached": self.is_cached,
            "is_up_to_date": self.is_up_to_date,
            "version": self.version.to_dict() if self.version else None,
            "live_hash": self.live_hash,
            "reason": self.reason,
        }


class VersionCache:
    """Freshness checks and idempotent saves over a :class:`VersionStore`.

    ``fetch_text`` is the live re-acquisition hook (acquire + extract) used to
    revalidate versions older than the TTL; the cache never touches the
    network for versions younger than the TTL. When live content diverges the
    hook result rides along on ``CacheCheck.live`` so callers need not fetch
    the same page twice.
    """

    def __init__(
        self,
        store: VersionStore,
        *,
        fetch_text: Optional[FetchText] = None,
        ttl: Optional[timedelta] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.store = store
        self.fetch_text = fetch_text
        if ttl is None:
            ttl = timedelta(days=env_float("POLICYVAULT_CACHE_TTL_DAYS", CACHE_TTL_DAYS))
        self.ttl = ttl
        self._clock = clock

    def is_fresh(self, version: PolicyVersion) -> bool:
        return self._clock() - version.analyzed_at < self.ttl

    async def check_cache(self, domain: str, document_type: str) -> CacheCheck:
        domain = clean_domain(domain)
        version = self.store.get_latest_version(domain, document_type)
        if version is None:
            return CacheCheck(is_cached=False, is_up_to_date=False, reason="miss")
        if self.is_fresh(version):
            return CacheCheck(is_cached=True, is_up_to_date=True, version=version, reason="fresh")
        if self.fetch_text is None:
            return CacheCheck(is_cached=True, is_up_to_date=False, version=version, reason="stale")

        try:
            live = await self.fetch_text(version.source_url, document_type)
        except (FetchError, ExtractionError) as exc:
            logger.warning("Revalidation failed for %s/%s: %s", domain, document_type, exc)
            return CacheCheck(
                is_cached=True,
                is_up_to_date=False,
                version=version,
                reason=f"revalidation_failed: {exc}",
            )
        live_text = live if isinstance(live, str) else live.normalized_text
        live_hash = content_hash((live_text or "")[:MAX_STORED_TEXT_CHARS])
        if live_hash == version.content_hash:
            logger.debug("Stale version for %s/%s still matches live content", domain, document_type)
            return CacheCheck(is_cached=True, is_up_to_date=True, version=version, live_hash=live_hash, reason="unchanged")
        logger.info("Live content for %s/%s diverged from stored version", domain, document_type)
        return CacheCheck(is_cached=True, is_up_to_date=False, version=version, live_hash=live_hash, reason="changed", live=live)

    def save_version(
        self,
        domain: str,
        document_type: str,
        url: str,
        text: str,
        structured_analysis: Optional[Dict[str, Any]] = None,
        score: Optional[int] = None,
        *,
        title: Optional[str] = None,
    ) -> str:
        """Upsert on (domain, type, hash); identical normalized text returns the existing id."""

        stored_text = (text or "")[:MAX_STORED_TEXT_CHARS]
        record = PolicyVersion(
            id=new_id("ver"),
            domain=clean_domain(domain),
            document_type=document_type,
            source_url=url,
            content_hash=content_hash(stored_text),
            normalized_text=stored_text,
            structured_analysis=dict(structured_analysis or {}),
            score=score,
            word_count=word_count(stored_text),
            analyzed_at=self._clock(),
            title=title,
        )
        saved = self.store.upsert_version(record)
        if saved.id != record.id:
            logger.debug("Identical content for %s/%s; reusing version %s", record.domain, document_type, saved.id)
        return saved.id

    def list_versions(self, domain: str, document_type: str, limit: int = DEFAULT_HISTORY_LIMIT) -> List[PolicyVersion]:
        return self.store.list_versions(clean_domain(domain), document_type, limit)

    def get_version_by_id(self, version_id: str) -> PolicyVersion:
        return self.store.get_version_by_id(version_id)

    def get_latest_version(self, domain: str, document_type: str) -> Optional[PolicyVersion]:
        return self.store.get_latest_version(clean_domain(domain), document_type)


__all__ = ["CacheCheck", "VersionCache"]
