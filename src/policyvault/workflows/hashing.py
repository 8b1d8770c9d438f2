"""Content hashing helpers for change detection and version keys."""

from __future__ import annotations

import hashlib
import json
import re
from datetime import datetime

_RE_WHITESPACE = re.compile(r"\s+")


def normalize_for_hash(text: str) -> str:
    """Case-fold, collapse whitespace runs and trim. Idempotent."""
    return _RE_WHITESPACE.sub(" ", (text or "").casefold()).strip()


def sha256_text(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def content_hash(text: str) -> str:
    """Fingerprint of normalized text; markup, case and spacing changes do not register."""
    return sha256_text(normalize_for_hash(text))


def word_count(text: str) -> int:
    return len((text or "").split())


def stable_json_dumps(payload: object) -> str:
    """Dump JSON with stable ordering for structural comparison."""
    return json.dumps(
        payload,
        ensure_ascii=True,
        sort_keys=True,
        separators=(",", ":"),
        default=_json_default,
    )


def _json_default(value: object) -> str:
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


__all__ = [
    "content_hash",
    "normalize_for_hash",
    "sha256_text",
    "stable_json_dumps",
    "word_count",
]
