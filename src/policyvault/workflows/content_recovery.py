"""Content recovery strategies for pages whose primary extraction is unusable.

These heuristics are fragile string matching by nature, so they live behind
one small interface and run only after the main extraction path.
"""

from __future__ import annotations

import logging
from typing import Optional, Protocol, Sequence, Tuple

import trafilatura

from .html_normalize import collapse_blank_lines, readability_extract_text_robust
from .policy_config import RECOVERY_ANCHOR_WINDOW, RECOVERY_LEAD_CHARS

logger = logging.getLogger(__name__)

PRIMARY_ANCHOR = "what is the privacy policy"
ANCHOR_PHRASES: Tuple[str, ...] = (
    "we collect",
    "privacy policy",
    "your information",
    "personal data",
)


class ContentRecoveryStrategy(Protocol):
    name: str

    def recover(self, text: str, html: str, url: Optional[str] = None) -> Optional[str]: ...


def looks_like_hydration_payload(text: str) -> bool:
    """SPA pages sometimes render their JSON bootstrap payload as body text."""

    stripped = (text or "").lstrip()
    return stripped.startswith('{"require"') or '{"require":' in stripped or stripped.startswith("{")


class HydrationPayloadRecovery:
    """Slice readable policy prose out of a JSON-looking hydration blob."""

    name = "hydration_payload"

    def __init__(
        self,
        anchors: Sequence[str] = ANCHOR_PHRASES,
        *,
        window: int = RECOVERY_ANCHOR_WINDOW,
        lead: int = RECOVERY_LEAD_CHARS,
    ) -> None:
        self.anchors = tuple(anchors)
        self.window = window
        self.lead = lead

    def recover(self, text: str, html: str, url: Optional[str] = None) -> Optional[str]:
        if not looks_like_hydration_payload(text):
            return None
        lowered = text.lower()
        start = lowered.find(PRIMARY_ANCHOR)
        if start < 0:
            for anchor in self.anchors:
                idx = lowered.find(anchor)
                if 0 < idx < self.window:
                    start = max(0, idx - self.lead)
                    break
        if start < 0:
            return None
        recovered = text[start:].strip()
        logger.debug("Recovered %d chars from hydration payload (%s)", len(recovered), url)
        return recovered or None


class ReadabilityRecovery:
    """Main-text extraction via trafilatura, then staged readability fallbacks."""

    name = "readability"

    def recover(self, text: str, html: str, url: Optional[str] = None) -> Optional[str]:
        if not html:
            return None
        extracted: Optional[str] = None
        try:
            extracted = trafilatura.extract(
                html,
                url=url,
                output_format="markdown",
                include_comments=False,
                include_tables=True,
                favor_recall=True,
            )
        except Exception:  # pragma: no cover - trafilatura internal
            extracted = None
        if not extracted:
            extracted = readability_extract_text_robust(html)
        extracted = collapse_blank_lines(extracted or "")
        if len(extracted) <= len((text or "").strip()):
            return None
        return extracted


DEFAULT_RECOVERY_STRATEGIES: Tuple[ContentRecoveryStrategy, ...] = (
    HydrationPayloadRecovery(),
    ReadabilityRecovery(),
)


__all__ = [
    "ANCHOR_PHRASES",
    "ContentRecoveryStrategy",
    "DEFAULT_RECOVERY_STRATEGIES",
    "HydrationPayloadRecovery",
    "ReadabilityRecovery",
    "looks_like_hydration_payload",
]
