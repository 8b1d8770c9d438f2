"""Alternate-URL strategies and locale helpers for the fetch cascade.

Every transform is a pure, named function from a URL to a candidate URL (or
``None`` when it does not apply). The cascade walks
``DEFAULT_URL_TRANSFORMS`` in order, so adding a heuristic means adding an
entry here rather than another branch in the cascade.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable, Iterable, List, Optional, Tuple
from urllib.parse import urlparse, urlunparse

from .policy_config import ENGLISH_LOCALE_SEGMENTS, LOCALE_PATH_CODES

_LOCALE_PATH_RE = re.compile(
    r"/(?:" + "|".join(re.escape(code) for code in LOCALE_PATH_CODES) + r")/",
    re.I,
)
# First language segment, optionally followed by a region suffix (``/pt-br/``).
_LOCALE_SEGMENT_RE = re.compile(
    r"/(de|fr|es|it|pt|nl|pl|ru|ja|ko|zh|ar|tr|sv|no|da|fi)(-[a-z]{2})?/",
    re.I,
)


@dataclass(frozen=True)
class UrlTransform:
    """A named ``url -> candidate`` rewrite used when direct access fails."""

    name: str
    rewrite: Callable[[str], Optional[str]]

    def apply(self, url: str) -> Optional[str]:
        try:
            candidate = self.rewrite(url)
        except Exception:
            return None
        if not candidate or candidate == url:
            return None
        return candidate


def regex_transform(name: str, pattern: str, replacement: str) -> UrlTransform:
    compiled = re.compile(pattern, re.I)

    def _rewrite(url: str) -> Optional[str]:
        if not compiled.search(url):
            return None
        return compiled.sub(replacement, url, count=1)

    return UrlTransform(name=name, rewrite=_rewrite)


def _strip_query(url: str) -> str:
    p = urlparse(url)
    return urlunparse(p._replace(query="", fragment=""))


def _index_html(url: str) -> Optional[str]:
    base = _strip_query(url)
    path = urlparse(base).path or ""
    if path.endswith((".html", ".htm", ".pdf", ".php")):
        return None
    return base.rstrip("/") + "/index.html"


def _html_suffix(url: str) -> Optional[str]:
    base = _strip_query(url)
    path = urlparse(base).path or ""
    trimmed = path.rstrip("/")
    if not trimmed or trimmed.rsplit("/", 1)[-1].count("."):
        return None
    return base.rstrip("/") + ".html"


def toggle_trailing_slash(u: str) -> str:
    """Return the same URL with trailing slash toggled.

    - If path ends with a slash (and is not root), remove it.
    - Otherwise append a slash to non-empty path.
    """
    try:
        p = urlparse(u)
        path = p.path or ""
        if path.endswith("/") and len(path) > 1:
            path = path.rstrip("/")
        elif not path.endswith("/") and len(path) >= 1:
            path = path + "/"
        else:
            return u
        return urlunparse(p._replace(path=path))
    except Exception:
        return u


DEFAULT_URL_TRANSFORMS: Tuple[UrlTransform, ...] = (
    # Locale swaps
    regex_transform("de_to_en", r"/de/", "/en/"),
    regex_transform("de_to_global", r"/de/", "/global/"),
    regex_transform("de_to_us", r"/de/", "/us/"),
    regex_transform("fr_to_en", r"/fr/", "/en/"),
    regex_transform("es_to_en", r"/es/", "/en/"),
    # Common policy locations
    regex_transform("legal_privacy", r"/privacy/?$", "/legal/privacy"),
    regex_transform("about_privacy", r"/privacy/?$", "/about/privacy"),
    regex_transform("privacy_policy_slug", r"/privacy/?$", "/privacy-policy"),
    # Suffix variants
    UrlTransform("index_html", _index_html),
    UrlTransform("html_suffix", _html_suffix),
    UrlTransform("toggle_trailing_slash", toggle_trailing_slash),
)


def iter_alternates(url: str, transforms: Iterable[UrlTransform] = DEFAULT_URL_TRANSFORMS) -> List[Tuple[str, str]]:
    """Return ``(transform_name, candidate)`` pairs, deduplicated, in strategy order."""

    seen = {url}
    out: List[Tuple[str, str]] = []
    for transform in transforms:
        candidate = transform.apply(url)
        if not candidate or candidate in seen:
            continue
        seen.add(candidate)
        out.append((transform.name, candidate))
    return out


def is_localized_url(url: str) -> bool:
    """True when the URL path carries a non-English locale segment."""

    try:
        path = urlparse(url).path or ""
    except Exception:
        return False
    if not path.endswith("/"):
        path = path + "/"
    return bool(_LOCALE_PATH_RE.search(path))


def english_locale_variants(url: str) -> List[str]:
    """Swap the first locale segment for each English segment (``/en/`` first)."""

    p = urlparse(url)
    path = p.path or ""
    suffixed = path if path.endswith("/") else path + "/"
    if not _LOCALE_SEGMENT_RE.search(suffixed):
        return []
    variants: List[str] = []
    for segment in ENGLISH_LOCALE_SEGMENTS:
        swapped = _LOCALE_SEGMENT_RE.sub(segment, suffixed, count=1)
        if not path.endswith("/"):
            swapped = swapped[:-1]
        candidate = urlunparse(p._replace(path=swapped))
        if candidate != url and candidate not in variants:
            variants.append(candidate)
    return variants


__all__ = [
    "DEFAULT_URL_TRANSFORMS",
    "UrlTransform",
    "english_locale_variants",
    "is_localized_url",
    "iter_alternates",
    "regex_transform",
    "toggle_trailing_slash",
]
