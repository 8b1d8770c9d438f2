"""policyvault defaults (headers, user agents, patterns, policy vocabulary).

Centralizes static defaults so the fetch and extraction modules have no
embedded magic strings. Runtime knobs are read from ``POLICYVAULT_*``
environment variables by the components that own them.
"""

from __future__ import annotations

from pathlib import Path
from typing import Dict, Tuple

from ..core.keys import K_DATA_COLLECTED, K_SCORE, K_SUMMARY, K_THIRD_PARTY_SHARING, K_USER_RIGHTS

# Paths (project-relative)
DEFAULT_DB_PATH = Path("run") / "policyvault.sqlite3"

# Freshness / persistence
CACHE_TTL_DAYS = 7
MAX_STORED_TEXT_CHARS = 500_000
DEFAULT_HISTORY_LIMIT = 20

# Politeness
MIN_INTERVAL_SECONDS = 1.0
MAX_JITTER_SECONDS = 0.5
BURST_LIMIT = 5
BURST_WINDOW_SECONDS = 15.0
RATE_LIMIT_COOLDOWN_SECONDS = 30.0
RETRY_AFTER_DEFAULT_SECONDS = 5.0
RETRY_AFTER_MIN_SECONDS = 1.0
RETRY_AFTER_MAX_SECONDS = 60.0
MAX_BACKOFF_SECONDS = 60.0
SERVER_ERROR_BACKOFF_SECONDS = 2.0
RECHECK_DELAY_SECONDS = 1.0

# Cascade
MAX_RETRIES = 3
REQUEST_TIMEOUT_SECONDS = 15.0
ARCHIVE_TIMEOUT_SECONDS = 15.0
ARCHIVE_AVAILABILITY_TIMEOUT_SECONDS = 10.0
ALTERNATE_MIN_BYTES = 1000
ARCHIVE_MIN_BYTES = 500
LOGIN_SCAN_CHARS = 5000

USER_AGENTS: Tuple[str, ...] = (
    # Chrome on Windows (primary)
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    # Chrome on macOS
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    # Firefox on Windows
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:121.0) Gecko/20100101 Firefox/121.0",
    # Safari on macOS
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.2 Safari/605.1.15",
    # Edge on Windows
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36 Edg/120.0.0.0",
)
DEFAULT_FALLBACK_AGENTS = 3

# Hosts that reject anything short of full UA rotation
AGGRESSIVE_ANTIBOT_DOMAINS = {
    "bhphotovideo.com",
    "bestbuy.com",
    "walmart.com",
    "target.com",
    "homedepot.com",
}

BROWSER_HEADERS: Dict[str, str] = {
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/avif,image/webp,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.9",
    "Accept-Encoding": "gzip, deflate",
    "Cache-Control": "no-cache",
    "Pragma": "no-cache",
    "Sec-Fetch-Dest": "document",
    "Sec-Fetch-Mode": "navigate",
    "Sec-Fetch-Site": "none",
    "Sec-Fetch-User": "?1",
    "Upgrade-Insecure-Requests": "1",
}

# Authentication walls
BLOCKED_URL_PATTERNS: Tuple[str, ...] = (
    "/login",
    "/signin",
    "/sign-in",
    "/authenticate",
    "/auth/",
    "accounts.google.com",
    "/oauth",
    "/sso/",
    "login.php",
    "?next=",
    "returnurl=",
    "redirect_uri=",
    "/challenge/",
    "/checkpoint/",
)

LOGIN_PAGE_FINGERPRINTS: Tuple[str, ...] = (
    '<input type="password"',
    "sign in to continue",
    "log in to continue",
    "please log in",
    "login required",
    "authentication required",
    "enter your password",
)

# Locale handling
LOCALE_PATH_CODES: Tuple[str, ...] = (
    "de", "de-de", "fr", "fr-fr", "es", "es-es", "it", "it-it", "pt", "pt-br",
    "nl", "pl", "ru", "ja", "ko", "zh", "ar", "tr", "sv", "no", "da", "fi",
)
ENGLISH_LOCALE_SEGMENTS: Tuple[str, ...] = ("/en/", "/us/", "/en-us/")

# Archival mirrors
CACHE_MIRROR_ENDPOINT = "https://webcache.googleusercontent.com/search?q=cache:"
WAYBACK_AVAILABILITY_ENDPOINT = "https://archive.org/wayback/available?url="
WAYBACK_CDX_ENDPOINT = "https://web.archive.org/cdx/search/cdx?url="
WAYBACK_SNAPSHOT_TEMPLATE = "https://web.archive.org/web/{timestamp}/{url}"

# Extraction
NON_CONTENT_SELECTORS: Tuple[str, ...] = (
    "script", "style", "noscript", "meta", "link", "svg", "iframe", "object",
    "embed", "nav", "header", "footer", "aside", ".nav", ".header", ".footer",
    ".sidebar", ".menu", ".advertisement", ".ad", ".social-share",
    ".cookie-banner", ".popup",
)
CONTENT_SELECTORS: Tuple[str, ...] = (
    "main",
    "article",
    '[role="main"]',
    ".content",
    ".main-content",
    "#content",
    "#main",
    ".post-content",
    ".entry-content",
    ".article-content",
    ".policy-content",
    ".privacy-policy",
)
CONTENT_CANDIDATE_MIN_CHARS = 200
POLICY_URL_MIN_CHARS = 100
GENERIC_MIN_CHARS = 200
MARKDOWN_MIN_CHARS = 300
PDF_MIN_CHARS = 100
RECOVERY_ANCHOR_WINDOW = 1000
RECOVERY_LEAD_CHARS = 100
DEFAULT_TITLE = "Privacy Policy"

POLICY_URL_INDICATORS: Tuple[str, ...] = (
    "/privacy",
    "/datenschutz",
    "/confidentialite",
    "/privacidad",
    "privacy-policy",
    "data-protection",
    "/privacybeleid",
    "/informativa-privacy",
    "/privacidade",
)

POLICY_INDICATOR_TERMS: Tuple[str, ...] = (
    # English
    "privacy",
    "personal data",
    "personal information",
    "information we collect",
    "data protection",
    "gdpr",
    "cookies",
    "terms of service",
    # German
    "datenschutz",
    "personenbezogene daten",
    "dsgvo",
    "personendaten",
    # French
    "confidentialité",
    "confidentialite",
    "données personnelles",
    "donnees personnelles",
    "rgpd",
    # Spanish
    "privacidad",
    "datos personales",
    "protección de datos",
    "proteccion de datos",
    # Dutch
    "privacyverklaring",
    "persoonsgegevens",
    "gegevensbescherming",
    # Italian
    "informativa sulla privacy",
    "dati personali",
    "protezione dei dati",
    # Portuguese
    "privacidade",
    "dados pessoais",
    "proteção de dados",
)

# Document types
DOCUMENT_TYPES: Dict[str, Dict[str, Tuple[str, ...]]] = {
    "privacy": {
        "label": ("Privacy Policy",),
        "paths": ("/privacy", "/privacy-policy", "/legal/privacy", "/privacy.html"),
        "keywords": ("privacy", "data protection", "personal data"),
    },
    "terms": {
        "label": ("Terms of Service",),
        "paths": ("/terms", "/terms-of-service", "/legal/terms", "/tos"),
        "keywords": ("terms", "conditions", "agreement"),
    },
    "cookies": {
        "label": ("Cookie Policy",),
        "paths": ("/cookies", "/cookie-policy", "/legal/cookies"),
        "keywords": ("cookie", "tracking", "consent"),
    },
    "security": {
        "label": ("Security Policy",),
        "paths": ("/security", "/trust", "/legal/security"),
        "keywords": ("security", "encryption", "vulnerability"),
    },
}

# Structured analysis fields compared by the diff engine
DIFF_ANALYSIS_KEYS: Tuple[str, ...] = (
    K_SUMMARY,
    K_SCORE,
    K_DATA_COLLECTED,
    K_THIRD_PARTY_SHARING,
    K_USER_RIGHTS,
)

HIGH_SEVERITY_CATEGORIES = {"CONCERNING"}
HIGH_SEVERITY_LEVELS = {"HIGH", "CRITICAL"}
