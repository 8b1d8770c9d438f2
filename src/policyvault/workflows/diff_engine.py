"""Paragraph- and field-level comparison of two stored policy versions."""

from __future__ import annotations

import re
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional, Sequence, Set, Tuple

from ..core.keys import K_SCORE
from .errors import VersionNotFound
from .hashing import stable_json_dumps
from .models import ChangeRecord, PolicyVersion
from .policy_config import DIFF_ANALYSIS_KEYS
from .version_store import VersionStore

_RE_PARAGRAPH_BREAK = re.compile(r"\n\s*\n")


@dataclass
class FieldChange:
    key: str
    changed: bool
    old: Any = None
    new: Any = None

    def to_dict(self) -> Dict[str, Any]:
        return {"key": self.key, "changed": self.changed, "old": self.old, "new": self.new}


@dataclass
class VersionDiff:
    old_version: PolicyVersion
    new_version: PolicyVersion
    added: List[str] = field(default_factory=list)
    removed: List[str] = field(default_factory=list)
    unchanged: int = 0
    field_changes: List[FieldChange] = field(default_factory=list)
    score_delta: Optional[int] = None
    word_count_delta: int = 0

    @property
    def has_changes(self) -> bool:
        return bool(self.added or self.removed or any(fc.changed for fc in self.field_changes))

    def changed_fields(self) -> List[str]:
        return [fc.key for fc in self.field_changes if fc.changed]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "old_version": self.old_version.to_dict(),
            "new_version": self.new_version.to_dict(),
            "added": list(self.added),
            "removed": list(self.removed),
            "unchanged": self.unchanged,
            "field_changes": [fc.to_dict() for fc in self.field_changes],
            "score_delta": self.score_delta,
            "word_count_delta": self.word_count_delta,
            "has_changes": self.has_changes,
        }


def split_paragraphs(text: str) -> List[str]:
    return [p.strip() for p in _RE_PARAGRAPH_BREAK.split(text or "") if p.strip()]


def _paragraph_key(paragraph: str) -> str:
    return paragraph.casefold().strip()


def paragraph_diff(old_text: str, new_text: str) -> Tuple[List[str], List[str], int]:
    """Set-membership diff over blank-line separated paragraphs.

    Returns ``(added, removed, unchanged)`` where ``unchanged`` counts new
    paragraphs already present in the old text. Reordering is not a change.
    """

    old_paragraphs = split_paragraphs(old_text)
    new_paragraphs = split_paragraphs(new_text)
    old_keys: Set[str] = {_paragraph_key(p) for p in old_paragraphs}
    new_keys: Set[str] = {_paragraph_key(p) for p in new_paragraphs}

    added = [p for p in new_paragraphs if _paragraph_key(p) not in old_keys]
    removed = [p for p in old_paragraphs if _paragraph_key(p) not in new_keys]
    unchanged = sum(1 for p in new_paragraphs if _paragraph_key(p) in old_keys)
    return added, removed, unchanged


def _analysis_value(version: PolicyVersion, key: str) -> Any:
    analysis = version.structured_analysis or {}
    if key == K_SCORE and analysis.get(K_SCORE) is None:
        return version.score
    return analysis.get(key)


def field_diff(
    old_version: PolicyVersion,
    new_version: PolicyVersion,
    keys: Sequence[str] = DIFF_ANALYSIS_KEYS,
) -> List[FieldChange]:
    changes: List[FieldChange] = []
    for key in keys:
        old_value = _analysis_value(old_version, key)
        new_value = _analysis_value(new_version, key)
        changed = stable_json_dumps(old_value) != stable_json_dumps(new_value)
        changes.append(FieldChange(key=key, changed=changed, old=old_value, new=new_value))
    return changes


def snapshot_version(version: PolicyVersion, snapshot: Dict[str, Any]) -> PolicyVersion:
    """Return ``version`` carrying the analysis and score captured in ``snapshot``."""

    return replace(version, structured_analysis=dict(snapshot), score=snapshot.get(K_SCORE))


def diff_versions(first: PolicyVersion, second: PolicyVersion) -> VersionDiff:
    """Diff two versions, oldest first by ``analyzed_at`` whatever the argument order."""

    if first.analyzed_at <= second.analyzed_at:
        return _build_diff(first, second)
    return _build_diff(second, first)


def _build_diff(old_version: PolicyVersion, new_version: PolicyVersion) -> VersionDiff:
    added, removed, unchanged = paragraph_diff(old_version.normalized_text, new_version.normalized_text)
    score_delta = None
    if old_version.score is not None and new_version.score is not None:
        score_delta = new_version.score - old_version.score
    return VersionDiff(
        old_version=old_version,
        new_version=new_version,
        added=added,
        removed=removed,
        unchanged=unchanged,
        field_changes=field_diff(old_version, new_version),
        score_delta=score_delta,
        word_count_delta=new_version.word_count - old_version.word_count,
    )


class DiffEngine:
    def __init__(self, store: VersionStore) -> None:
        self.store = store

    def compare(self, version_id_a: str, version_id_b: str) -> VersionDiff:
        first = self.store.get_version_by_id(version_id_a)
        second = self.store.get_version_by_id(version_id_b)
        return diff_versions(first, second)

    def compare_change(self, record: ChangeRecord) -> VersionDiff:
        """Diff the two sides of a change record.

        The old side is rebuilt from ``record.previous_analysis``. A score-only
        change re-analyzes identical text, so both ids name the same stored row
        and only the snapshot still holds the earlier analysis.
        """

        if not record.previous_version_id:
            raise VersionNotFound(f"Change record {record.id} has no previous version")
        current = self.store.get_version_by_id(record.current_version_id)
        if record.previous_version_id == record.current_version_id:
            previous = current
        else:
            previous = self.store.get_version_by_id(record.previous_version_id)
        if record.previous_analysis is not None:
            previous = snapshot_version(previous, record.previous_analysis)
        return _build_diff(previous, current)


__all__ = [
    "DiffEngine",
    "FieldChange",
    "VersionDiff",
    "diff_versions",
    "field_diff",
    "paragraph_diff",
    "snapshot_version",
    "split_paragraphs",
]
