"""Persistence contracts for policy versions and change records.

The concrete engine is pluggable; :class:`InMemoryVersionStore` is the
reference implementation and ``sqlite_store.SqliteVersionStore`` the durable one.
"""

from __future__ import annotations

import threading
import uuid
from dataclasses import replace
from typing import Dict, List, Optional, Protocol, Tuple

from .errors import VersionNotFound
from .models import ChangeRecord, PolicyVersion


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex}"


class VersionStore(Protocol):
    def get_latest_version(self, domain: str, document_type: str) -> Optional[PolicyVersion]: ...

    def upsert_version(self, record: PolicyVersion) -> PolicyVersion:
        """Insert, or on a (domain, document_type, content_hash) conflict refresh
        analysis/score/analyzed_at on the existing row and return it."""
        ...

    def list_versions(self, domain: str, document_type: str, limit: int = 20) -> List[PolicyVersion]: ...

    def get_version_by_id(self, version_id: str) -> PolicyVersion: ...

    def add_change_record(self, record: ChangeRecord) -> ChangeRecord: ...

    def list_change_records(
        self,
        domain: Optional[str] = None,
        document_type: Optional[str] = None,
        include_dismissed: bool = False,
    ) -> List[ChangeRecord]: ...

    def dismiss_change_records(self, domain: str, document_type: str) -> int: ...


class InMemoryVersionStore:
    """Dict-backed store; the conflict-key upsert is atomic under one lock."""

    def __init__(self) -> None:
        self._versions: Dict[str, PolicyVersion] = {}
        self._by_key: Dict[Tuple[str, str, str], str] = {}
        self._changes: Dict[str, ChangeRecord] = {}
        self._order: Dict[str, int] = {}
        self._counter = 0
        self._lock = threading.Lock()

    def get_latest_version(self, domain: str, document_type: str) -> Optional[PolicyVersion]:
        versions = self.list_versions(domain, document_type, limit=1)
        return versions[0] if versions else None

    def upsert_version(self, record: PolicyVersion) -> PolicyVersion:
        key = (record.domain, record.document_type, record.content_hash)
        with self._lock:
            existing_id = self._by_key.get(key)
            if existing_id is not None:
                existing = self._versions[existing_id]
                refreshed = replace(
                    existing,
                    structured_analysis=dict(record.structured_analysis or {}),
                    score=record.score,
                    analyzed_at=record.analyzed_at,
                    source_url=record.source_url or existing.source_url,
                    title=record.title or existing.title,
                )
                self._versions[existing_id] = refreshed
                self._touch(existing_id)
                return replace(refreshed)
            self._versions[record.id] = replace(record)
            self._by_key[key] = record.id
            self._touch(record.id)
            return replace(record)

    def _touch(self, version_id: str) -> None:
        self._counter += 1
        self._order[version_id] = self._counter

    def list_versions(self, domain: str, document_type: str, limit: int = 20) -> List[PolicyVersion]:
        with self._lock:
            matches = [
                replace(v)
                for v in self._versions.values()
                if v.domain == domain and v.document_type == document_type
            ]
            order = dict(self._order)
        matches.sort(key=lambda v: (v.analyzed_at, order.get(v.id, 0)), reverse=True)
        return matches[: max(0, limit)] if limit is not None else matches

    def get_version_by_id(self, version_id: str) -> PolicyVersion:
        with self._lock:
            version = self._versions.get(version_id)
        if version is None:
            raise VersionNotFound(f"Version not found: {version_id}")
        return replace(version)

    def add_change_record(self, record: ChangeRecord) -> ChangeRecord:
        with self._lock:
            self._changes[record.id] = replace(record)
        return record

    def list_change_records(
        self,
        domain: Optional[str] = None,
        document_type: Optional[str] = None,
        include_dismissed: bool = False,
    ) -> List[ChangeRecord]:
        with self._lock:
            records = [replace(r) for r in self._changes.values()]
        out = [
            r
            for r in records
            if (domain is None or r.domain == domain)
            and (document_type is None or r.document_type == document_type)
            and (include_dismissed or not r.dismissed)
        ]
        out.sort(key=lambda r: r.detected_at, reverse=True)
        return out

    def dismiss_change_records(self, domain: str, document_type: str) -> int:
        count = 0
        with self._lock:
            for record_id, record in list(self._changes.items()):
                if record.domain == domain and record.document_type == document_type and not record.dismissed:
                    self._changes[record_id] = replace(record, dismissed=True)
                    count += 1
        return count


__all__ = ["InMemoryVersionStore", "VersionStore", "new_id"]
