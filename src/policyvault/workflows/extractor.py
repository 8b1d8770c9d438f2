"""Turn acquired bytes into normalized policy text (markdown for HTML, plain for PDF)."""

from __future__ import annotations

import logging
import warnings
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union
from urllib.parse import urlparse

try:  # Prefer classic fitz alias; fall back to pymupdf if needed
    import fitz  # type: ignore
except ImportError:  # pragma: no cover - environment-specific
    import pymupdf as fitz  # type: ignore
from bs4 import BeautifulSoup, XMLParsedAsHTMLWarning  # type: ignore
from markdownify import markdownify

from .content_recovery import DEFAULT_RECOVERY_STRATEGIES, ContentRecoveryStrategy, looks_like_hydration_payload
from .errors import ContentTooShort, ContentValidationFailed, ExtractionError
from .html_normalize import (
    collapse_blank_lines,
    decode_bytes_auto,
    drop_empty_containers,
    minimal_text_fix,
    normalize_pdf_text,
    strip_non_content,
)
from .models import ExtractedDocument
from .policy_config import (
    CONTENT_CANDIDATE_MIN_CHARS,
    CONTENT_SELECTORS,
    DEFAULT_TITLE,
    GENERIC_MIN_CHARS,
    MARKDOWN_MIN_CHARS,
    PDF_MIN_CHARS,
    POLICY_INDICATOR_TERMS,
    POLICY_URL_INDICATORS,
    POLICY_URL_MIN_CHARS,
)
from .policy_utils import document_label

warnings.filterwarnings("ignore", category=XMLParsedAsHTMLWarning)

logger = logging.getLogger(__name__)


def is_policy_url(url: Optional[str]) -> bool:
    """True when the URL itself strongly indicates a policy document."""

    if not url:
        return False
    try:
        parsed = urlparse(url)
        target = f"{parsed.path}?{parsed.query}".lower()
    except Exception:
        target = url.lower()
    return any(indicator in target for indicator in POLICY_URL_INDICATORS)


def find_policy_terms(text: str, terms: Sequence[str] = POLICY_INDICATOR_TERMS) -> List[str]:
    lowered = (text or "").lower()
    return [term for term in terms if term in lowered]


def is_pdf_payload(body: bytes, content_type: str, url: Optional[str]) -> bool:
    if "pdf" in (content_type or "").lower():
        return True
    if body[:5] == b"%PDF-":
        return True
    return bool(url) and urlparse(url).path.lower().endswith(".pdf")


def extract_title(soup: BeautifulSoup, default: str = DEFAULT_TITLE) -> str:
    if soup.title and soup.title.get_text(strip=True):
        return soup.title.get_text(" ", strip=True)
    og = soup.find("meta", attrs={"property": "og:title"})
    if og and (og.get("content") or "").strip():
        return og["content"].strip()
    h1 = soup.find("h1")
    if h1 and h1.get_text(strip=True):
        return h1.get_text(" ", strip=True)
    return default


def select_content_node(soup: BeautifulSoup, selectors: Sequence[str] = CONTENT_SELECTORS) -> Tuple[Any, str]:
    """Return ``(node, selector)`` for the first container with enough text, else the body."""

    for selector in selectors:
        try:
            nodes = soup.select(selector)
        except Exception:
            continue
        for node in nodes:
            if len(node.get_text(" ", strip=True)) > CONTENT_CANDIDATE_MIN_CHARS:
                return node, selector
    body = soup.body or soup
    return body, "body"


def html_to_markdown(fragment: str) -> str:
    markdown = markdownify(fragment, heading_style="ATX", bullets="-", strip=["img", "a"])
    return collapse_blank_lines(markdown)


def extract_pdf_text(raw_bytes: bytes, url: str) -> Tuple[str, Dict[str, Any]]:
    try:
        doc = fitz.open(stream=raw_bytes, filetype="pdf")
    except Exception as exc:
        raise ExtractionError(f"PDF open failed for {url}: {exc}", url=url) from exc
    metadata: Dict[str, Any] = {}
    try:
        if bool(getattr(doc, "needs_pass", False)):
            metadata.update({"pdf_encrypted": True, "pdf_password_protected": True})
            return "", metadata

        text_parts: List[str] = []
        for page in doc:
            page_text = page.get_text("text") or ""
            if page_text.strip():
                text_parts.append(page_text.strip())
        full_text = "\n\n".join(text_parts)

        if not full_text.strip():
            # Try to recover text via words extraction first
            word_text = []
            for page in doc:
                words = page.get_text("words") or []
                if not words:
                    continue
                ordered = sorted(words, key=lambda w: (w[3], w[0]))
                builder: List[str] = []
                last_y = None
                for x0, y0, x1, y1, word, *_ in ordered:
                    if last_y is not None and abs(y0 - last_y) > 2.5:
                        builder.append("\n")
                    builder.append(word)
                    builder.append(" ")
                    last_y = y0
                text = "".join(builder).strip()
                if text:
                    word_text.append(text)
            if word_text:
                full_text = "\n\n".join(word_text)
                metadata["pdf_words_fallback"] = True

        metadata.update({"pdf_pages": doc.page_count, "pdf_characters": len(full_text)})
        return full_text, metadata
    finally:
        doc.close()


class ContentExtractor:
    """Format dispatch plus readable-content heuristics and policy validity gates."""

    def __init__(self, recovery_strategies: Optional[Sequence[ContentRecoveryStrategy]] = None) -> None:
        self.recovery_strategies: Tuple[ContentRecoveryStrategy, ...] = tuple(
            DEFAULT_RECOVERY_STRATEGIES if recovery_strategies is None else recovery_strategies
        )

    def extract(
        self,
        body: Union[bytes, str],
        content_type: str = "text/html",
        url: str = "",
        document_type: Optional[str] = None,
    ) -> ExtractedDocument:
        raw = body.encode("utf-8") if isinstance(body, str) else (body or b"")
        if not raw.strip():
            raise ContentTooShort(f"Empty document for {url}", url=url, length=0, minimum=1)
        if is_pdf_payload(raw, content_type, url):
            return self._extract_pdf(raw, url, document_type)
        return self._extract_html(raw, content_type, url, document_type)

    # ------------------------------------------------------------------ PDF
    def _extract_pdf(self, raw: bytes, url: str, document_type: Optional[str]) -> ExtractedDocument:
        text, metadata = extract_pdf_text(raw, url)
        if metadata.get("pdf_password_protected"):
            raise ContentTooShort(f"PDF is password protected: {url}", url=url, length=0, minimum=PDF_MIN_CHARS)
        text = normalize_pdf_text(text)
        if len(text) < PDF_MIN_CHARS:
            raise ContentTooShort(
                f"PDF text too short for {url} ({len(text)} < {PDF_MIN_CHARS})",
                url=url,
                length=len(text),
                minimum=PDF_MIN_CHARS,
            )
        self._validate(text, url)
        title = f"{document_label(document_type)} (PDF)"
        return ExtractedDocument(title=title, normalized_text=text, length=len(text), format="pdf", metadata=metadata)

    # ------------------------------------------------------------------ HTML
    def _extract_html(self, raw: bytes, content_type: str, url: str, document_type: Optional[str]) -> ExtractedDocument:
        html = minimal_text_fix(decode_bytes_auto(raw, {"content-type": content_type or ""}))
        metadata: Dict[str, Any] = {}
        default_title = document_label(document_type) if document_type else DEFAULT_TITLE

        if "html" not in (content_type or "").lower() and "<" not in html[:2048]:
            text = collapse_blank_lines(html)
            title = default_title
            markdown = text
            metadata["content_selector"] = "plain_text"
        else:
            soup = BeautifulSoup(html, "lxml")
            title = extract_title(soup, default_title)
            metadata["removed_nodes"] = strip_non_content(soup)
            drop_empty_containers(soup)
            node, selector = select_content_node(soup)
            metadata["content_selector"] = selector
            text = node.get_text("\n", strip=True)
            markdown = html_to_markdown(str(node))

        policy_url = is_policy_url(url)
        minimum = POLICY_URL_MIN_CHARS if policy_url else GENERIC_MIN_CHARS

        recovered_by: List[str] = []
        for strategy in self.recovery_strategies:
            if not (looks_like_hydration_payload(text) or len(text) < minimum):
                break
            recovered = strategy.recover(text, html, url)
            if recovered:
                text = recovered
                markdown = collapse_blank_lines(recovered)
                recovered_by.append(strategy.name)
        if recovered_by:
            metadata["recovered_by"] = recovered_by
            logger.info("Content recovery applied for %s: %s", url, ", ".join(recovered_by))

        if len(text) < minimum:
            raise ContentTooShort(
                f"Extracted text too short for {url} ({len(text)} < {minimum})",
                url=url,
                length=len(text),
                minimum=minimum,
            )
        if not policy_url and len(markdown) < MARKDOWN_MIN_CHARS:
            raise ContentTooShort(
                f"Markdown too short for {url} ({len(markdown)} < {MARKDOWN_MIN_CHARS})",
                url=url,
                length=len(markdown),
                minimum=MARKDOWN_MIN_CHARS,
            )
        metadata["policy_terms"] = self._validate(markdown, url)
        return ExtractedDocument(
            title=title,
            normalized_text=markdown,
            length=len(markdown),
            format="html",
            metadata=metadata,
        )

    def _validate(self, text: str, url: str) -> List[str]:
        terms = find_policy_terms(text)
        if not terms and not is_policy_url(url):
            raise ContentValidationFailed(
                f"Content at {url} does not look like a policy document",
                url=url,
            )
        return terms


__all__ = [
    "ContentExtractor",
    "extract_pdf_text",
    "extract_title",
    "find_policy_terms",
    "html_to_markdown",
    "is_pdf_payload",
    "is_policy_url",
    "select_content_node",
]
