"""HTML and text normalization helpers for policy extraction.

Deterministic and provider-agnostic: decoding, mojibake repair, non-content
pruning and whitespace canonicalization shared by the extractor and the
recovery strategies.
"""

from __future__ import annotations

import re
import unicodedata
from typing import Iterable, Mapping, Optional

import ftfy
from bs4 import BeautifulSoup
from charset_normalizer import from_bytes
from lxml.html.clean import Cleaner

from .policy_config import NON_CONTENT_SELECTORS

try:  # readability-lxml
    from readability import Document  # type: ignore
except Exception:  # pragma: no cover - optional dependency
    Document = None  # type: ignore

__all__ = [
    "clean_policy_markup",
    "collapse_blank_lines",
    "decode_bytes_auto",
    "drop_empty_containers",
    "minimal_text_fix",
    "normalize_pdf_text",
    "readability_extract_text_robust",
    "repair_markup",
    "strip_non_content",
]

_ZERO_WIDTH = {0x200B, 0x200C, 0x200D, 0x2060, 0xFEFF}
_REMOVE = {0x00, 0x0B, 0x0C}
_C1_TO_SPACE = {cp: " " for cp in range(0x80, 0xA0)}
_TRANSLATE = {**{cp: None for cp in _ZERO_WIDTH | _REMOVE}, **_C1_TO_SPACE}

_RE_BLANK_RUNS = re.compile(r"\n\s*\n(?:\s*\n)+")
_RE_TRAILING_WS = re.compile(r"[ \t]+\n")
_RE_INLINE_WS = re.compile(r"[ \t]+")

# Policy pages: scripts, navigation chrome, embeds and consent overlays go.
_POLICY_CLEANER = Cleaner(
    scripts=True,
    javascript=True,
    style=True,
    links=False,
    forms=False,
    frames=True,
    embedded=True,
    kill_tags={"noscript", "script", "iframe", "style", "nav", "footer", "object", "embed"},
    safe_attrs_only=False,
    remove_unknown_tags=False,
)

_EMPTY_CONTAINERS = ("div", "span", "p")


def decode_bytes_auto(body: bytes, headers: Optional[Mapping[str, str]] = None) -> str:
    """Decode HTTP bytes using charset header hints with charset-normalizer fallback."""

    enc = None
    if headers:
        ct = headers.get("content-type", "") or headers.get("Content-Type", "")
        match = re.search(r"charset=([^\s;]+)", ct, re.I)
        if match:
            enc = match.group(1).strip(' "\'').lower()
    if enc:
        try:
            return body.decode(enc, errors="replace")
        except LookupError:
            pass
    try:
        return body.decode("utf-8")
    except UnicodeDecodeError:
        pass
    result = from_bytes(body).best()
    if result is None:
        return body.decode("utf-8", errors="replace")
    return str(result)


def minimal_text_fix(text: str) -> str:
    """Fix mojibake and strip zero-width/control noise without collapsing structure."""

    if not text:
        return ""
    normalized = unicodedata.normalize("NFC", text)
    fixed = ftfy.fix_text(normalized, normalization="NFC")
    return fixed.translate(_TRANSLATE)


def repair_markup(html: str) -> str:
    """Repair malformed markup by parsing/re-serializing with tolerant parsers."""

    for parser in ("html5lib", "lxml", "html.parser"):
        try:
            return str(BeautifulSoup(html, parser))
        except Exception:
            continue
    return html


def clean_policy_markup(html: str) -> str:
    """Drop scripts, styles, frames, embeds and navigation chrome via lxml's Cleaner."""

    if not html or not html.strip():
        return html or ""
    try:
        return _POLICY_CLEANER.clean_html(html)
    except Exception:
        return html


def strip_non_content(soup: BeautifulSoup, selectors: Iterable[str] = NON_CONTENT_SELECTORS) -> int:
    """Decompose non-content elements in place; returns how many nodes were removed."""

    removed = 0
    for selector in selectors:
        try:
            nodes = soup.select(selector)
        except Exception:
            continue
        for node in nodes:
            if node.decomposed:
                continue
            node.decompose()
            removed += 1
    return removed


def drop_empty_containers(soup: BeautifulSoup) -> int:
    """Remove div/span/p elements holding neither text nor media, innermost first."""

    removed = 0
    for node in reversed(soup.find_all(list(_EMPTY_CONTAINERS))):
        if node.decomposed:
            continue
        if node.get_text(strip=True):
            continue
        if node.find(["img", "table", "ul", "ol"]):
            continue
        node.decompose()
        removed += 1
    return removed


def collapse_blank_lines(text: str) -> str:
    """Canonical markdown spacing: trimmed lines, at most one blank line between blocks."""

    if not text:
        return ""
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    text = _RE_TRAILING_WS.sub("\n", text)
    text = _RE_BLANK_RUNS.sub("\n\n", text)
    return text.strip()


def normalize_pdf_text(text: str) -> str:
    """PDF text canonicalization: LF newlines, single blank lines, single spaces."""

    if not text:
        return ""
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    text = re.sub(r"\n{3,}", "\n\n", text)
    text = _RE_INLINE_WS.sub(" ", text)
    return text.strip()


def _readability_extract_text(html: str) -> str:
    if Document is None:
        return ""
    # Strip control chars (0x00-0x1F except newlines/tabs) that break readability's XML parser.
    html = html.translate({i: None for i in range(0x20) if i not in (0x09, 0x0A, 0x0D)})
    if not html:
        return ""
    doc = Document(html)
    snippet = doc.summary(html_partial=True)
    return BeautifulSoup(snippet, "lxml").get_text("\n", strip=True) or ""


def readability_extract_text_robust(html: str) -> str:
    """Run Readability with staged fallbacks to avoid crashes on malformed HTML."""

    if not html:
        return ""

    def _attempt(payload: str) -> str:
        if not payload:
            return ""
        try:
            return _readability_extract_text(payload)
        except Exception:
            return ""

    text = _attempt(html)
    if text:
        return text

    fixed = minimal_text_fix(html)
    repaired = repair_markup(fixed)
    text = _attempt(clean_policy_markup(repaired))
    if text:
        return text

    # Last resort: concatenated paragraph text.
    soup = BeautifulSoup(repaired, "lxml")
    paras = []
    for node in soup.find_all(["p", "li"])[:800]:
        txt = node.get_text(" ", strip=True)
        if txt:
            paras.append(txt)
    return "\n\n".join(paras).strip()
