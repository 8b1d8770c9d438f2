from __future__ import annotations

import importlib.util
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from .policy_config import CACHE_TTL_DAYS, DEFAULT_DB_PATH
from .policy_utils import as_bool, collect_environment_warnings, safe_float


_SECRET_TOKENS = ("key", "token", "secret", "password", "pass")


def _is_secret_name(name: str) -> bool:
    lowered = (name or "").lower()
    return any(token in lowered for token in _SECRET_TOKENS)


def redact_value(value: str, keep: int = 4) -> str:
    raw = (value or "").strip()
    if not raw:
        return ""
    if len(raw) <= keep * 2:
        return "*" * len(raw)
    return f"{raw[:keep]}...{raw[-keep:]}"


def _redacted_env_value(name: str, value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    return redact_value(value) if _is_secret_name(name) else value


def _module_available(name: str) -> bool:
    try:
        return importlib.util.find_spec(name) is not None
    except (ImportError, ValueError):
        return False


def _check_writable(path: Path) -> bool:
    try:
        if path.exists():
            return os.access(path, os.W_OK)
        parent = path.parent
        while not parent.exists() and parent != parent.parent:
            parent = parent.parent
        return os.access(parent, os.W_OK)
    except OSError:
        return False


def build_doctor_report(*, db_path: Optional[Path] = None) -> Dict[str, Any]:
    report: Dict[str, Any] = {
        "generated_at": datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z"),
        "ok": True,
        "checks": [],
        "environment_warnings": collect_environment_warnings(),
    }

    def add_check(
        name: str,
        status: bool,
        *,
        detail: Optional[str] = None,
        remedy: Optional[str] = None,
        level: str = "warn",
        value: Optional[str] = None,
    ) -> None:
        entry = {
            "name": name,
            "status": "ok" if status else "missing",
            "level": level,
            "detail": detail,
        }
        if remedy:
            entry["remedy"] = remedy
        if value is not None:
            entry["value"] = _redacted_env_value(name, value)
        report["checks"].append(entry)
        if not status and level == "warn":
            report["ok"] = False

    store_path = Path(os.getenv("POLICYVAULT_DB_PATH") or db_path or DEFAULT_DB_PATH)
    add_check(
        "POLICYVAULT_DB_PATH",
        _check_writable(store_path),
        detail=str(store_path),
        remedy="Create the directory or set POLICYVAULT_DB_PATH to a writable location.",
        level="warn",
    )

    pdf_ok = _module_available("fitz") or _module_available("pymupdf")
    add_check(
        "pymupdf",
        pdf_ok,
        detail="PDF extraction enabled" if pdf_ok else "PDF extraction disabled",
        remedy="pip install pymupdf",
        level="warn",
    )

    trafilatura_ok = _module_available("trafilatura")
    add_check(
        "trafilatura",
        trafilatura_ok,
        detail="Main-text recovery enabled" if trafilatura_ok else "Main-text recovery disabled",
        remedy="pip install trafilatura",
        level="warn",
    )

    readability_ok = _module_available("readability")
    add_check(
        "readability-lxml",
        readability_ok,
        detail="Readability fallback enabled" if readability_ok else "Readability fallback disabled",
        remedy="pip install readability-lxml",
        level="info",
    )

    mirror_on = as_bool(os.getenv("POLICYVAULT_ENABLE_CACHE_MIRROR"), True)
    wayback_on = as_bool(os.getenv("POLICYVAULT_ENABLE_WAYBACK"), True)
    add_check(
        "archival_sources",
        mirror_on or wayback_on,
        detail=f"cache_mirror={'on' if mirror_on else 'off'} wayback={'on' if wayback_on else 'off'}",
        remedy="Set POLICYVAULT_ENABLE_CACHE_MIRROR=1 or POLICYVAULT_ENABLE_WAYBACK=1 to keep archival fallbacks.",
        level="info",
    )

    ttl_raw = os.getenv("POLICYVAULT_CACHE_TTL_DAYS")
    ttl = safe_float(ttl_raw, CACHE_TTL_DAYS)
    add_check(
        "POLICYVAULT_CACHE_TTL_DAYS",
        ttl is not None and ttl > 0,
        detail=f"Cached versions revalidate after {ttl} day(s)" if ttl else "TTL disabled; every check revalidates",
        remedy="Set POLICYVAULT_CACHE_TTL_DAYS to a positive number.",
        level="info",
        value=ttl_raw,
    )

    return report


def format_doctor_report(report: Dict[str, Any]) -> str:
    lines: List[str] = []
    lines.append("policyvault doctor")
    lines.append(f"Generated: {report.get('generated_at')}")
    lines.append("Values are redacted where applicable.")
    lines.append("")
    for check in report.get("checks", []):
        name = check.get("name", "check")
        status = check.get("status", "unknown")
        level = check.get("level", "info")
        detail = check.get("detail")
        value = check.get("value")
        label = f"{name}: {status}"
        if value:
            label = f"{label} ({value})"
        lines.append(f"- [{level}] {label}")
        if detail:
            lines.append(f"  detail: {detail}")
        remedy = check.get("remedy")
        if remedy:
            lines.append(f"  remedy: {remedy}")
    warnings = report.get("environment_warnings") or []
    if warnings:
        lines.append("")
        lines.append("Environment warnings:")
        for warning in warnings:
            code = warning.get("code", "warning")
            message = warning.get("message", "")
            remedy = warning.get("remedy", "")
            lines.append(f"- {code}: {message}")
            if remedy:
                lines.append(f"  remedy: {remedy}")
    return "\n".join(lines).rstrip() + "\n"


__all__ = ["build_doctor_report", "format_doctor_report", "redact_value"]
