"""Periodic re-acquisition of stored policies and change-record bookkeeping."""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Tuple, Union

from ..core.keys import K_CATEGORY, K_KEY_FINDINGS, K_SCORE, K_SEVERITY
from .errors import AnalysisError, PolicyVaultError
from .extractor import ContentExtractor
from .hashing import content_hash
from .models import AnalysisResult, ChangeRecord, ExtractedDocument
from .policy_config import (
    HIGH_SEVERITY_CATEGORIES,
    HIGH_SEVERITY_LEVELS,
    MAX_STORED_TEXT_CHARS,
    RECHECK_DELAY_SECONDS,
)
from .policy_utils import clean_domain, default_policy_url, env_float, utc_now
from .version_cache import VersionCache
from .version_store import new_id
from .web_fetch import FetchCascade

logger = logging.getLogger(__name__)

Analyzer = Callable[[str], Union[AnalysisResult, Awaitable[AnalysisResult]]]
UrlResolver = Callable[[str, str], Optional[str]]

# Older analyses used a different category vocabulary.
LEGACY_CATEGORY_MAP: Dict[str, str] = {
    "THREAT": "CONCERNING",
    "WARNING": "NOTABLE",
    "CAUTION": "ATTENTION",
    "NORMAL": "STANDARD",
    "GOOD": "POSITIVE",
    "BRILLIANT": "EXCELLENT",
}

CHANGE_NEW_POLICY = "new_policy"
CHANGE_CONTENT = "content_changed"
CHANGE_SCORE = "score_changed"


async def run_analyzer(analyzer: Analyzer, text: str) -> AnalysisResult:
    """Call a sync or async analyzer and return its result.

    Anything the analyzer raises surfaces as :class:`AnalysisError` so batch
    callers can capture it per item.
    """

    try:
        result = analyzer(text)
        if inspect.isawaitable(result):
            result = await result
    except PolicyVaultError:
        raise
    except Exception as exc:
        raise AnalysisError(f"Analyzer failed: {type(exc).__name__}: {exc}") from exc
    return result


def normalize_category(value: Any) -> str:
    label = str(value or "").strip().upper()
    return LEGACY_CATEGORY_MAP.get(label, label)


def is_high_severity(finding: Any) -> bool:
    if isinstance(finding, dict):
        category = normalize_category(finding.get(K_CATEGORY))
        severity = str(finding.get(K_SEVERITY) or "").strip().upper()
        return category in HIGH_SEVERITY_CATEGORIES or severity in HIGH_SEVERITY_LEVELS
    if isinstance(finding, str):
        lowered = finding.lower()
        return "threat" in lowered or "concerning" in lowered
    return False


def count_high_severity(analysis: Optional[Dict[str, Any]]) -> int:
    findings = (analysis or {}).get(K_KEY_FINDINGS) or []
    if not isinstance(findings, list):
        return 0
    return sum(1 for finding in findings if is_high_severity(finding))


def build_change_summary(
    old_analysis: Optional[Dict[str, Any]],
    new_analysis: Optional[Dict[str, Any]],
    old_score: Optional[int] = None,
    new_score: Optional[int] = None,
) -> str:
    """Deterministic one-line description of what moved between two analyses."""

    parts: List[str] = []
    if old_score is not None and new_score is not None and old_score != new_score:
        diff = new_score - old_score
        direction = "improved" if diff > 0 else "decreased"
        parts.append(f"Score {direction} by {abs(diff)} points ({old_score} → {new_score})")

    old_high = count_high_severity(old_analysis)
    new_high = count_high_severity(new_analysis)
    if new_high > old_high:
        parts.append(f"{new_high - old_high} new high-severity finding(s) detected")
    elif old_high > new_high:
        parts.append(f"{old_high - new_high} high-severity finding(s) resolved")

    if not parts:
        parts.append("Policy content has been updated")
    return ". ".join(parts)


@dataclass
class RecheckResult:
    domain: str
    document_type: str
    has_changes: bool = False
    new_version_id: Optional[str] = None
    change_record: Optional[ChangeRecord] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "domain": self.domain,
            "document_type": self.document_type,
            "has_changes": self.has_changes,
            "new_version_id": self.new_version_id,
            "change_record": self.change_record.to_dict() if self.change_record else None,
            "error": self.error,
        }


class ChangeMonitor:
    """Force live re-acquisition and record real changes against the last version.

    Unchanged checks write nothing, so the previous-analysis snapshot on a
    change record is only taken when a change is actually detected.
    """

    def __init__(
        self,
        cache: VersionCache,
        cascade: FetchCascade,
        extractor: Optional[ContentExtractor] = None,
        *,
        analyzer: Optional[Analyzer] = None,
        url_resolver: UrlResolver = default_policy_url,
        sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
        clock: Callable[[], datetime] = utc_now,
        delay: Optional[float] = None,
    ) -> None:
        self.cache = cache
        self.cascade = cascade
        self.extractor = extractor or ContentExtractor()
        self.analyzer = analyzer
        self.url_resolver = url_resolver
        self._sleep = sleep or asyncio.sleep
        self._clock = clock
        self.delay = env_float("POLICYVAULT_RECHECK_DELAY", RECHECK_DELAY_SECONDS) if delay is None else delay

    @property
    def store(self):
        return self.cache.store

    async def fetch_document(self, url: str, document_type: Optional[str] = None) -> Tuple[str, ExtractedDocument]:
        """Acquire and extract one URL; returns ``(final_url, extracted)``."""

        acquired = await self.cascade.acquire(url)
        final_url = acquired.final_url or url
        extracted = self.extractor.extract(acquired.body, acquired.content_type, final_url, document_type)
        return final_url, extracted

    def resolve_url(self, domain: str, document_type: str) -> Optional[str]:
        latest = self.cache.get_latest_version(domain, document_type)
        if latest is not None and latest.source_url:
            return latest.source_url
        return self.url_resolver(domain, document_type)

    async def recheck(self, domain: str, document_type: str) -> RecheckResult:
        domain = clean_domain(domain)
        previous = self.cache.get_latest_version(domain, document_type)
        url = self.resolve_url(domain, document_type)
        if not url:
            raise PolicyVaultError(f"No URL known for {domain}/{document_type}")

        final_url, extracted = await self.fetch_document(url, document_type)
        text = extracted.normalized_text[:MAX_STORED_TEXT_CHARS]

        if self.analyzer is not None:
            analysis_result = await run_analyzer(self.analyzer, text)
            analysis = dict(analysis_result.structured_findings or {})
            score = analysis_result.score
        elif previous is not None:
            analysis = dict(previous.structured_analysis or {})
            score = previous.score
        else:
            analysis, score = {}, None

        if previous is None:
            version_id = self.cache.save_version(
                domain, document_type, final_url, text, analysis, score, title=extracted.title
            )
            record = self._record_change(
                domain,
                document_type,
                previous_version_id=None,
                current_version_id=version_id,
                score_delta=None,
                summary="New policy tracked",
                change_type=CHANGE_NEW_POLICY,
                previous_analysis=None,
            )
            logger.info("First version stored for %s/%s (%s)", domain, document_type, version_id)
            return RecheckResult(domain, document_type, True, version_id, record)

        hash_changed = content_hash(text) != previous.content_hash
        score_changed = score != previous.score
        if not (hash_changed or score_changed):
            logger.debug("No change for %s/%s", domain, document_type)
            return RecheckResult(domain, document_type, False, None)

        version_id = self.cache.save_version(
            domain, document_type, final_url, text, analysis, score, title=extracted.title
        )
        snapshot = dict(previous.structured_analysis or {})
        snapshot.setdefault(K_SCORE, previous.score)
        score_delta = None
        if score is not None and previous.score is not None:
            score_delta = score - previous.score
        record = self._record_change(
            domain,
            document_type,
            previous_version_id=previous.id,
            current_version_id=version_id,
            score_delta=score_delta,
            summary=build_change_summary(previous.structured_analysis, analysis, previous.score, score),
            change_type=CHANGE_SCORE if score_changed else CHANGE_CONTENT,
            previous_analysis=snapshot,
        )
        logger.info("Change detected for %s/%s: %s", domain, document_type, record.summary)
        return RecheckResult(domain, document_type, True, version_id, record)

    def _record_change(self, domain: str, document_type: str, **fields: Any) -> ChangeRecord:
        record = ChangeRecord(
            id=new_id("chg"),
            domain=domain,
            document_type=document_type,
            detected_at=self._clock(),
            **fields,
        )
        return self.store.add_change_record(record)

    async def recheck_all(
        self,
        pairs: Iterable[Tuple[str, str]],
        delay: Optional[float] = None,
    ) -> List[RecheckResult]:
        """Recheck sequentially with a fixed pause between items; failures do not stop the batch."""

        pause = self.delay if delay is None else delay
        results: List[RecheckResult] = []
        for index, (domain, document_type) in enumerate(pairs):
            if index and pause > 0:
                await self._sleep(pause)
            try:
                result = await self.recheck(domain, document_type)
            except PolicyVaultError as exc:
                logger.warning("Recheck failed for %s/%s: %s", domain, document_type, exc)
                result = RecheckResult(clean_domain(domain), document_type, error=str(exc))
            results.append(result)
        return results

    def pending_changes(self, domain: Optional[str] = None, document_type: Optional[str] = None) -> List[ChangeRecord]:
        return self.store.list_change_records(
            clean_domain(domain) if domain else None,
            document_type,
            include_dismissed=False,
        )

    def acknowledge(self, domain: str, document_type: str) -> int:
        dismissed = self.store.dismiss_change_records(clean_domain(domain), document_type)
        logger.debug("Dismissed %d change record(s) for %s/%s", dismissed, domain, document_type)
        return dismissed


__all__ = [
    "Analyzer",
    "ChangeMonitor",
    "LEGACY_CATEGORY_MAP",
    "RecheckResult",
    "build_change_summary",
    "count_high_severity",
    "is_high_severity",
    "normalize_category",
    "run_analyzer",
]
