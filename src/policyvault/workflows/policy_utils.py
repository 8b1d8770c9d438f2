"""Shared helper functions used by the policyvault workflows."""

from __future__ import annotations

import importlib.util
import os
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

from .policy_config import DOCUMENT_TYPES


def idna_normalize(host: str) -> str:
    """Return a lowercase, IDNA-normalized host name."""

    h = (host or "").strip().rstrip(".").lower()
    if not h:
        return ""
    try:
        h = h.encode("idna").decode("ascii")
    except Exception:
        pass
    return h


def clean_domain(domain: str) -> str:
    """Normalize a domain key: lowercase, IDNA, and no ``www.`` prefix.

    Accepts bare hosts as well as full URLs so callers can pass either.
    """

    raw = (domain or "").strip()
    if "://" in raw:
        raw = urlparse(raw).hostname or ""
    d = idna_normalize(raw.split("/")[0].split(":")[0])
    if d.startswith("www."):
        d = d[4:]
    return d


def domain_from_url(url: str) -> str:
    try:
        return clean_domain(urlparse(url).hostname or "")
    except Exception:
        return ""


def document_label(document_type: Optional[str]) -> str:
    entry = DOCUMENT_TYPES.get((document_type or "").lower())
    if not entry:
        return "Privacy Policy"
    return entry["label"][0]


def default_policy_url(domain: str, document_type: str) -> Optional[str]:
    """Build the conventional policy URL for a domain/type pair."""

    entry = DOCUMENT_TYPES.get((document_type or "").lower())
    host = clean_domain(domain)
    if not entry or not host:
        return None
    return f"https://{host}{entry['paths'][0]}"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def isoformat_z(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def parse_iso(value: Any) -> datetime:
    """Parse an ISO-8601 timestamp (``Z`` suffix allowed) into an aware datetime."""

    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    raw = str(value or "").strip()
    if raw.endswith("Z"):
        raw = raw[:-1] + "+00:00"
    parsed = datetime.fromisoformat(raw)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def as_bool(value: Optional[str], default: bool = False) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if not normalized:
        return default
    return normalized not in {"0", "false", "off", "no"}


def safe_int(value: Optional[str], default: Optional[int] = None) -> Optional[int]:
    if value is None:
        return default
    try:
        cleaned = value.strip()
        if not cleaned:
            return default
        return int(cleaned)
    except Exception:
        return default


def safe_float(value: Optional[str], default: Optional[float] = None) -> Optional[float]:
    if value is None:
        return default
    try:
        cleaned = value.strip()
        if not cleaned:
            return default
        return float(cleaned)
    except Exception:
        return default


def env_float(name: str, default: float) -> float:
    value = safe_float(os.getenv(name), default)
    return default if value is None else value


def collect_environment_warnings() -> List[Dict[str, str]]:
    """Return non-fatal environment problems worth surfacing in doctor output."""

    warnings: List[Dict[str, str]] = []
    for name in ("POLICYVAULT_MIN_INTERVAL_MS", "POLICYVAULT_MAX_RETRIES", "POLICYVAULT_CACHE_TTL_DAYS"):
        raw = os.getenv(name)
        if raw is not None and safe_float(raw) is None:
            warnings.append(
                {
                    "code": "invalid_number",
                    "message": f"{name}={raw!r} is not numeric; the default is used instead.",
                    "remedy": f"Unset {name} or set it to a number.",
                }
            )
    min_interval = safe_float(os.getenv("POLICYVAULT_MIN_INTERVAL_MS"))
    if min_interval is not None and min_interval < 1000:
        warnings.append(
            {
                "code": "aggressive_spacing",
                "message": "Per-domain spacing below 1000ms risks being classified as abusive traffic.",
                "remedy": "Raise POLICYVAULT_MIN_INTERVAL_MS to 1000 or more.",
            }
        )
    if importlib.util.find_spec("fitz") is None:
        warnings.append(
            {
                "code": "pymupdf_missing",
                "message": "PyMuPDF is not importable; PDF policies cannot be extracted.",
                "remedy": "pip install pymupdf",
            }
        )
    return warnings


__all__ = [
    "as_bool",
    "clean_domain",
    "collect_environment_warnings",
    "default_policy_url",
    "document_label",
    "domain_from_url",
    "env_float",
    "idna_normalize",
    "isoformat_z",
    "parse_iso",
    "safe_float",
    "safe_int",
    "utc_now",
]
