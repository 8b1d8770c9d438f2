"""Authentication-wall detection for fetched policy pages."""

from __future__ import annotations

import re
from typing import Any, Dict, List, Optional

from .policy_config import BLOCKED_URL_PATTERNS, LOGIN_PAGE_FINGERPRINTS, LOGIN_SCAN_CHARS

_RE_PASSWORD_INPUT = re.compile(r"<input\b[^>]*\btype\s*=\s*[\"']?password\b", re.I)
_RE_LOGIN_FORM_ACTION = re.compile(r"<form\b[^>]*\baction\s*=\s*[\"'][^\"']*(?:login|signin|sign-in|auth)", re.I)


def is_blocked_url(url: str) -> Optional[str]:
    """Return the blocklist pattern matched by ``url`` (login/SSO/OAuth routes)."""

    lowered = (url or "").lower()
    for pattern in BLOCKED_URL_PATTERNS:
        if pattern in lowered:
            return pattern
    return None


def _head(html: str, limit: int) -> str:
    return (html or "")[:limit].lower()


def detect_login_page(html: str, limit: int = LOGIN_SCAN_CHARS) -> Optional[str]:
    """Return the first login fingerprint found in the first ``limit`` characters."""

    head = _head(html, limit)
    if not head:
        return None
    for fingerprint in LOGIN_PAGE_FINGERPRINTS:
        if fingerprint in head:
            return fingerprint
    if _RE_PASSWORD_INPUT.search(head):
        return "password_input"
    return None


def detect_auth_wall(url: str, status: Optional[int], html: str) -> Dict[str, Any]:
    """Return structured auth-wall indicators for a fetched page."""

    indicators: Dict[str, Any] = {}
    blocked = is_blocked_url(url)
    if blocked:
        indicators["blocked_url_pattern"] = blocked
    fingerprint = detect_login_page(html)
    if fingerprint:
        indicators["login_fingerprint"] = fingerprint
    head = _head(html, LOGIN_SCAN_CHARS)
    hints: List[str] = []
    if head and _RE_LOGIN_FORM_ACTION.search(head):
        hints.append("login_form_action")
    if status in (401, 407):
        hints.append(f"status_{status}")
    if hints:
        indicators["hints"] = hints
    verdict = "likely" if (blocked or fingerprint) else ("maybe" if hints else "unlikely")
    return {
        "url": url,
        "status": status,
        "verdict": verdict,
        "indicators": indicators,
    }


__all__ = ["detect_auth_wall", "detect_login_page", "is_blocked_url"]
