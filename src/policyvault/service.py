"""Consumer-facing facade over the acquisition, cache, diff and monitor components."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

from .workflows.change_monitor import Analyzer, ChangeMonitor, RecheckResult, run_analyzer
from .workflows.diff_engine import DiffEngine, VersionDiff
from .workflows.extractor import ContentExtractor
from .workflows.models import AcquiredDocument, ChangeRecord, ExtractedDocument, PolicyVersion
from .workflows.policy_config import DEFAULT_DB_PATH, DEFAULT_HISTORY_LIMIT
from .workflows.policy_utils import clean_domain
from .workflows.rate_limiter import RateLimiter
from .workflows.sqlite_store import SqliteVersionStore
from .workflows.transport import AiohttpTransport
from .workflows.version_cache import CacheCheck, VersionCache
from .workflows.version_store import InMemoryVersionStore, VersionStore
from .workflows.web_fetch import FetchCascade, FetchConfig

logger = logging.getLogger(__name__)


@dataclass
class LiveDocument:
    """A revalidation fetch, kept so a changed page is not acquired twice."""

    acquired: AcquiredDocument
    extracted: ExtractedDocument

    @property
    def normalized_text(self) -> str:
        return self.extracted.normalized_text


@dataclass
class DocumentResult:
    version: PolicyVersion
    from_cache: bool
    acquired: Optional[AcquiredDocument] = None
    extracted: Optional[ExtractedDocument] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "from_cache": self.from_cache,
            "version": self.version.to_dict(),
        }
        if self.acquired is not None:
            payload["acquisition"] = self.acquired.to_dict()
        if self.extracted is not None:
            payload["extraction"] = self.extracted.to_dict()
        return payload


class PolicyService:
    """Wires cascade, extractor, cache, diff engine and monitor together."""

    def __init__(
        self,
        store: VersionStore,
        cascade: FetchCascade,
        *,
        extractor: Optional[ContentExtractor] = None,
        analyzer: Optional[Analyzer] = None,
        cache: Optional[VersionCache] = None,
        monitor: Optional[ChangeMonitor] = None,
    ) -> None:
        self.store = store
        self.cascade = cascade
        self.extractor = extractor or ContentExtractor()
        self.analyzer = analyzer
        self.cache = cache or VersionCache(store, fetch_text=self._fetch_live)
        self.diff_engine = DiffEngine(store)
        self.monitor = monitor or ChangeMonitor(self.cache, cascade, self.extractor, analyzer=analyzer)

    async def __aenter__(self) -> "PolicyService":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def close(self) -> None:
        await self.cascade.close()

    async def _fetch_live(self, url: str, document_type: str) -> LiveDocument:
        acquired, extracted = await self.extract_url(url, document_type)
        return LiveDocument(acquired, extracted)

    # ------------------------------------------------------------------ core operations
    async def acquire(self, url: str) -> AcquiredDocument:
        return await self.cascade.acquire(url)

    async def check_cache(self, domain: str, document_type: str) -> CacheCheck:
        return await self.cache.check_cache(domain, document_type)

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
        return self.cache.save_version(domain, document_type, url, text, structured_analysis, score, title=title)

    def compare_versions(self, version_id_a: str, version_id_b: str) -> VersionDiff:
        return self.diff_engine.compare(version_id_a, version_id_b)

    def compare_change(self, record: ChangeRecord) -> VersionDiff:
        return self.diff_engine.compare_change(record)

    async def recheck(self, domain: str, document_type: str) -> RecheckResult:
        return await self.monitor.recheck(domain, document_type)

    async def recheck_all(self, pairs: Iterable[Tuple[str, str]], delay: Optional[float] = None) -> List[RecheckResult]:
        return await self.monitor.recheck_all(pairs, delay=delay)

    # ------------------------------------------------------------------ conveniences
    async def extract_url(self, url: str, document_type: Optional[str] = None) -> Tuple[AcquiredDocument, ExtractedDocument]:
        acquired = await self.cascade.acquire(url)
        extracted = self.extractor.extract(
            acquired.body, acquired.content_type, acquired.final_url or url, document_type
        )
        return acquired, extracted

    async def get_document(self, domain: str, document_type: str, url: str, *, force: bool = False) -> DocumentResult:
        """Return the cached version when fresh or unchanged, else fetch, analyze and save."""

        live: Optional[LiveDocument] = None
        if not force:
            check = await self.cache.check_cache(domain, document_type)
            if check.is_up_to_date and check.version is not None:
                logger.debug("Serving %s/%s from cache (%s)", domain, document_type, check.reason)
                return DocumentResult(version=check.version, from_cache=True)
            if isinstance(check.live, LiveDocument):
                live = check.live

        if live is not None:
            logger.debug("Reusing revalidation fetch for %s/%s", domain, document_type)
            acquired, extracted = live.acquired, live.extracted
        else:
            acquired, extracted = await self.extract_url(url, document_type)
        analysis: Dict[str, Any] = {}
        score: Optional[int] = None
        if self.analyzer is not None:
            result = await run_analyzer(self.analyzer, extracted.normalized_text)
            analysis = dict(result.structured_findings or {})
            score = result.score
        version_id = self.cache.save_version(
            domain,
            document_type,
            acquired.final_url or url,
            extracted.normalized_text,
            analysis,
            score,
            title=extracted.title,
        )
        version = self.cache.get_version_by_id(version_id)
        return DocumentResult(version=version, from_cache=False, acquired=acquired, extracted=extracted)

    def list_versions(self, domain: str, document_type: str, limit: int = DEFAULT_HISTORY_LIMIT) -> List[PolicyVersion]:
        return self.cache.list_versions(domain, document_type, limit)

    def pending_changes(self, domain: Optional[str] = None) -> List[ChangeRecord]:
        return self.monitor.pending_changes(domain)

    def acknowledge(self, domain: str, document_type: str) -> int:
        return self.monitor.acknowledge(clean_domain(domain), document_type)


def resolve_db_path(path: Optional[Union[str, Path]] = None) -> Path:
    if path:
        return Path(path)
    return Path(os.getenv("POLICYVAULT_DB_PATH") or DEFAULT_DB_PATH)


def build_service(
    *,
    db_path: Optional[Union[str, Path]] = None,
    in_memory: bool = False,
    analyzer: Optional[Analyzer] = None,
    config: Optional[FetchConfig] = None,
) -> PolicyService:
    """Build a service from environment configuration (SQLite store, shared limiter, aiohttp)."""

    store: VersionStore = InMemoryVersionStore() if in_memory else SqliteVersionStore(resolve_db_path(db_path))
    limiter = RateLimiter()
    cascade = FetchCascade(config or FetchConfig.from_env(), transport=AiohttpTransport(), limiter=limiter)
    return PolicyService(store, cascade, analyzer=analyzer)


__all__ = ["DocumentResult", "LiveDocument", "PolicyService", "build_service", "resolve_db_path"]
