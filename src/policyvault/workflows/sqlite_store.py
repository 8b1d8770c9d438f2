"""SQLite-backed version store."""

from __future__ import annotations

import json
import sqlite3
from contextlib import contextmanager
from datetime import timezone
from pathlib import Path
from typing import Any, Iterator, List, Optional, Tuple, Union

from .errors import PersistenceError, VersionNotFound
from .models import ChangeRecord, PolicyVersion
from .policy_utils import parse_iso

_SCHEMA = """
PRAGMA journal_mode=WAL;

CREATE TABLE IF NOT EXISTS policy_versions (
    id TEXT PRIMARY KEY,
    domain TEXT NOT NULL,
    document_type TEXT NOT NULL,
    source_url TEXT NOT NULL,
    content_hash TEXT NOT NULL,
    normalized_text TEXT NOT NULL,
    structured_analysis_json TEXT,
    score INTEGER,
    word_count INTEGER NOT NULL,
    analyzed_at TEXT NOT NULL,
    title TEXT,
    UNIQUE(domain, document_type, content_hash)
);
CREATE INDEX IF NOT EXISTS idx_versions_lookup ON policy_versions(domain, document_type, analyzed_at);

CREATE TABLE IF NOT EXISTS change_records (
    id TEXT PRIMARY KEY,
    domain TEXT NOT NULL,
    document_type TEXT NOT NULL,
    previous_version_id TEXT,
    current_version_id TEXT NOT NULL,
    detected_at TEXT NOT NULL,
    score_delta INTEGER,
    summary TEXT NOT NULL,
    change_type TEXT NOT NULL,
    previous_analysis_json TEXT,
    dismissed INTEGER NOT NULL DEFAULT 0
);
CREATE INDEX IF NOT EXISTS idx_changes_lookup ON change_records(domain, document_type, dismissed);
"""

_UPSERT_VERSION = """
INSERT INTO policy_versions (
    id, domain, document_type, source_url, content_hash, normalized_text,
    structured_analysis_json, score, word_count, analyzed_at, title
) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
ON CONFLICT(domain, document_type, content_hash) DO UPDATE SET
    structured_analysis_json = excluded.structured_analysis_json,
    score = excluded.score,
    analyzed_at = excluded.analyzed_at,
    source_url = COALESCE(NULLIF(excluded.source_url, ''), policy_versions.source_url),
    title = COALESCE(excluded.title, policy_versions.title)
"""


def _to_iso(value) -> str:
    return value.astimezone(timezone.utc).isoformat()


def _loads(raw: Optional[str]) -> Any:
    if not raw:
        return None
    try:
        return json.loads(raw)
    except ValueError:
        return None


def _row_to_version(row: sqlite3.Row) -> PolicyVersion:
    return PolicyVersion(
        id=row["id"],
        domain=row["domain"],
        document_type=row["document_type"],
        source_url=row["source_url"],
        content_hash=row["content_hash"],
        normalized_text=row["normalized_text"],
        structured_analysis=_loads(row["structured_analysis_json"]) or {},
        score=row["score"],
        word_count=row["word_count"],
        analyzed_at=parse_iso(row["analyzed_at"]),
        title=row["title"],
    )


def _row_to_change(row: sqlite3.Row) -> ChangeRecord:
    return ChangeRecord(
        id=row["id"],
        domain=row["domain"],
        document_type=row["document_type"],
        previous_version_id=row["previous_version_id"],
        current_version_id=row["current_version_id"],
        detected_at=parse_iso(row["detected_at"]),
        score_delta=row["score_delta"],
        summary=row["summary"],
        change_type=row["change_type"],
        previous_analysis=_loads(row["previous_analysis_json"]),
        dismissed=bool(row["dismissed"]),
    )


class SqliteVersionStore:
    def __init__(self, path: Union[str, Path]) -> None:
        self._path = Path(path)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._initialize()

    @property
    def path(self) -> Path:
        return self._path

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._path)
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def _session(self) -> Iterator[sqlite3.Connection]:
        try:
            conn = self._connect()
        except sqlite3.Error as exc:
            raise PersistenceError(f"Cannot open version store {self._path}: {exc}") from exc
        try:
            with conn:
                yield conn
        except sqlite3.Error as exc:
            raise PersistenceError(f"Version store error ({self._path}): {exc}") from exc
        finally:
            conn.close()

    def _initialize(self) -> None:
        with self._session() as conn:
            conn.executescript(_SCHEMA)

    def _fetch_one(self, sql: str, params: Tuple[Any, ...]) -> Optional[sqlite3.Row]:
        with self._session() as conn:
            return conn.execute(sql, params).fetchone()

    def _fetch_all(self, sql: str, params: Tuple[Any, ...]) -> List[sqlite3.Row]:
        with self._session() as conn:
            return list(conn.execute(sql, params).fetchall())

    # ------------------------------------------------------------------ versions
    def get_latest_version(self, domain: str, document_type: str) -> Optional[PolicyVersion]:
        row = self._fetch_one(
            "SELECT * FROM policy_versions WHERE domain = ? AND document_type = ? "
            "ORDER BY analyzed_at DESC, rowid DESC LIMIT 1",
            (domain, document_type),
        )
        return _row_to_version(row) if row else None

    def upsert_version(self, record: PolicyVersion) -> PolicyVersion:
        with self._session() as conn:
            conn.execute(
                _UPSERT_VERSION,
                (
                    record.id,
                    record.domain,
                    record.document_type,
                    record.source_url,
                    record.content_hash,
                    record.normalized_text,
                    json.dumps(record.structured_analysis or {}, ensure_ascii=False),
                    record.score,
                    record.word_count,
                    _to_iso(record.analyzed_at),
                    record.title,
                ),
            )
            row = conn.execute(
                "SELECT * FROM policy_versions WHERE domain = ? AND document_type = ? AND content_hash = ?",
                (record.domain, record.document_type, record.content_hash),
            ).fetchone()
        if row is None:
            raise PersistenceError(f"Upsert did not persist version for {record.domain}/{record.document_type}")
        return _row_to_version(row)

    def list_versions(self, domain: str, document_type: str, limit: int = 20) -> List[PolicyVersion]:
        rows = self._fetch_all(
            "SELECT * FROM policy_versions WHERE domain = ? AND document_type = ? "
            "ORDER BY analyzed_at DESC, rowid DESC LIMIT ?",
            (domain, document_type, int(limit)),
        )
        return [_row_to_version(row) for row in rows]

    def get_version_by_id(self, version_id: str) -> PolicyVersion:
        row = self._fetch_one("SELECT * FROM policy_versions WHERE id = ?", (version_id,))
        if row is None:
            raise VersionNotFound(f"Version not found: {version_id}")
        return _row_to_version(row)

    # ------------------------------------------------------------------ change records
    def add_change_record(self, record: ChangeRecord) -> ChangeRecord:
        with self._session() as conn:
            conn.execute(
                "INSERT INTO change_records (id, domain, document_type, previous_version_id, "
                "current_version_id, detected_at, score_delta, summary, change_type, "
                "previous_analysis_json, dismissed) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    record.id,
                    record.domain,
                    record.document_type,
                    record.previous_version_id,
                    record.current_version_id,
                    _to_iso(record.detected_at),
                    record.score_delta,
                    record.summary,
                    record.change_type,
                    json.dumps(record.previous_analysis, ensure_ascii=False)
                    if record.previous_analysis is not None
                    else None,
                    1 if record.dismissed else 0,
                ),
            )
        return record

    def list_change_records(
        self,
        domain: Optional[str] = None,
        document_type: Optional[str] = None,
        include_dismissed: bool = False,
    ) -> List[ChangeRecord]:
        clauses: List[str] = []
        params: List[Any] = []
        if domain is not None:
            clauses.append("domain = ?")
            params.append(domain)
        if document_type is not None:
            clauses.append("document_type = ?")
            params.append(document_type)
        if not include_dismissed:
            clauses.append("dismissed = 0")
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = self._fetch_all(
            f"SELECT * FROM change_records {where} ORDER BY detected_at DESC, rowid DESC",
            tuple(params),
        )
        return [_row_to_change(row) for row in rows]

    def dismiss_change_records(self, domain: str, document_type: str) -> int:
        with self._session() as conn:
            cur = conn.execute(
                "UPDATE change_records SET dismissed = 1 WHERE domain = ? AND document_type = ? AND dismissed = 0",
                (domain, document_type),
            )
            return cur.rowcount


__all__ = ["SqliteVersionStore"]
