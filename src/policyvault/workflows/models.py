"""Record types shared by the cascade, the version cache and the change monitor."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Dict, List, Optional

from .policy_utils import isoformat_z


@dataclass
class DomainRateState:
    """Per-domain politeness state. Times are clock seconds, not wall time."""

    domain: str
    last_request_at: Optional[float] = None
    backoff_until: float = 0.0
    window_started_at: float = 0.0
    window_count: int = 0
    rate_limited_count: int = 0

    def copy(self) -> "DomainRateState":
        return replace(self)


@dataclass
class FetchAttempt:
    """One (URL, user-agent, outcome) tuple observed while acquiring a document."""

    url: str
    strategy: str
    user_agent: Optional[str] = None
    status: Optional[int] = None
    outcome: str = "pending"
    error: Optional[str] = None
    elapsed: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "url": self.url,
            "strategy": self.strategy,
            "status": self.status,
            "outcome": self.outcome,
            "elapsed": round(self.elapsed, 3),
        }
        if self.user_agent:
            payload["user_agent"] = self.user_agent
        if self.error:
            payload["error"] = self.error
        return payload


@dataclass
class HttpResponse:
    status: int
    body: bytes
    content_type: str = "text/html"
    final_url: str = ""
    headers: Dict[str, str] = field(default_factory=dict)

    def header(self, name: str) -> Optional[str]:
        lowered = name.lower()
        for key, value in self.headers.items():
            if key.lower() == lowered:
                return value
        return None


@dataclass
class AcquiredDocument:
    """Raw bytes for a URL plus how they were obtained."""

    body: bytes
    content_type: str
    final_url: str
    strategy: str = "direct"
    user_agent: Optional[str] = None
    attempts: List[FetchAttempt] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        payload = {
            "final_url": self.final_url,
            "content_type": self.content_type,
            "bytes": len(self.body),
            "strategy": self.strategy,
            "attempts": [attempt.to_dict() for attempt in self.attempts],
        }
        if self.user_agent:
            payload["user_agent"] = self.user_agent
        if self.metadata:
            payload.update(self.metadata)
        return payload


@dataclass
class ExtractedDocument:
    title: str
    normalized_text: str
    length: int
    format: str = "html"
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "length": self.length,
            "format": self.format,
            **self.metadata,
        }


@dataclass
class AnalysisResult:
    """What the external analysis collaborator hands back for a policy text."""

    score: Optional[int]
    structured_findings: Dict[str, Any] = field(default_factory=dict)


@dataclass
class PolicyVersion:
    id: str
    domain: str
    document_type: str
    source_url: str
    content_hash: str
    normalized_text: str
    structured_analysis: Dict[str, Any]
    score: Optional[int]
    word_count: int
    analyzed_at: datetime
    title: Optional[str] = None

    def to_dict(self, include_text: bool = False) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "id": self.id,
            "domain": self.domain,
            "document_type": self.document_type,
            "source_url": self.source_url,
            "content_hash": self.content_hash,
            "score": self.score,
            "word_count": self.word_count,
            "analyzed_at": isoformat_z(self.analyzed_at),
            "title": self.title,
            "structured_analysis": self.structured_analysis,
        }
        if include_text:
            payload["normalized_text"] = self.normalized_text
        return payload


@dataclass
class ChangeRecord:
    id: str
    domain: str
    document_type: str
    previous_version_id: Optional[str]
    current_version_id: str
    detected_at: datetime
    score_delta: Optional[int]
    summary: str
    change_type: str = "content_changed"
    previous_analysis: Optional[Dict[str, Any]] = None
    dismissed: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "domain": self.domain,
            "document_type": self.document_type,
            "previous_version_id": self.previous_version_id,
            "current_version_id": self.current_version_id,
            "detected_at": isoformat_z(self.detected_at),
            "score_delta": self.score_delta,
            "summary": self.summary,
            "change_type": self.change_type,
            "previous_analysis": self.previous_analysis,
            "dismissed": self.dismissed,
        }


__all__ = [
    "AcquiredDocument",
    "AnalysisResult",
    "ChangeRecord",
    "DomainRateState",
    "ExtractedDocument",
    "FetchAttempt",
    "HttpResponse",
    "PolicyVersion",
]
