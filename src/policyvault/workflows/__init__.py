"""High-level exports for the policyvault workflows."""

from .change_monitor import ChangeMonitor, RecheckResult, build_change_summary
from .diff_engine import DiffEngine, VersionDiff, paragraph_diff
from .errors import (
    AllStrategiesExhausted,
    AnalysisError,
    AuthWallDetected,
    ContentTooShort,
    ContentValidationFailed,
    ExtractionError,
    FetchError,
    PersistenceError,
    PolicyVaultError,
    VersionNotFound,
)
from .extractor import ContentExtractor
from .hashing import content_hash
from .models import AcquiredDocument, AnalysisResult, ChangeRecord, ExtractedDocument, PolicyVersion
from .rate_limiter import RateLimiter
from .sqlite_store import SqliteVersionStore
from .version_cache import CacheCheck, VersionCache
from .version_store import InMemoryVersionStore, VersionStore
from .web_fetch import FetchCascade, FetchConfig

__all__ = [
    "AcquiredDocument",
    "AllStrategiesExhausted",
    "AnalysisError",
    "AnalysisResult",
    "AuthWallDetected",
    "CacheCheck",
    "ChangeMonitor",
    "ChangeRecord",
    "ContentExtractor",
    "ContentTooShort",
    "ContentValidationFailed",
    "DiffEngine",
    "ExtractedDocument",
    "ExtractionError",
    "FetchCascade",
    "FetchConfig",
    "FetchError",
    "InMemoryVersionStore",
    "PersistenceError",
    "PolicyVaultError",
    "PolicyVersion",
    "RateLimiter",
    "RecheckResult",
    "SqliteVersionStore",
    "VersionCache",
    "VersionDiff",
    "VersionNotFound",
    "VersionStore",
    "build_change_summary",
    "content_hash",
    "paragraph_diff",
]
