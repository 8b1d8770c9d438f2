"""Typed failures raised by the fetch, extraction and persistence layers."""

from __future__ import annotations

from typing import TYPE_CHECKING, List, Optional

if TYPE_CHECKING:  # pragma: no cover - typing only
    from .models import FetchAttempt

GUIDANCE_BLOCKED = (
    "The site blocked or refused automated access. Try again later, "
    "or paste the policy text manually."
)
GUIDANCE_TRANSIENT = "Temporary failure while fetching the document. Retry shortly."

KIND_BLOCKED = "blocked"
KIND_TRANSIENT = "transient"


class PolicyVaultError(Exception):
    """Base class for every error raised by policyvault."""


class FetchError(PolicyVaultError):
    kind = KIND_TRANSIENT

    def __init__(self, message: str, *, url: Optional[str] = None, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.url = url
        self.status = status

    @property
    def user_guidance(self) -> str:
        return GUIDANCE_BLOCKED if self.kind == KIND_BLOCKED else GUIDANCE_TRANSIENT


class AuthWallDetected(FetchError):
    """Login page or blocklisted path. Terminal, never retried."""

    kind = KIND_BLOCKED

    def __init__(self, message: str, *, url: Optional[str] = None, status: Optional[int] = None, reason: str = "") -> None:
        super().__init__(message, url=url, status=status)
        self.reason = reason


class Forbidden(FetchError):
    kind = KIND_BLOCKED


class RateLimitExceeded(FetchError):
    kind = KIND_BLOCKED

    def __init__(
        self,
        message: str,
        *,
        url: Optional[str] = None,
        status: Optional[int] = 429,
        retry_after: Optional[float] = None,
    ) -> None:
        super().__init__(message, url=url, status=status)
        self.retry_after = retry_after


class ServerError(FetchError):
    pass


class NetworkFetchError(FetchError):
    pass


class HttpStatusError(FetchError):
    pass


# Most informative first when several strategies failed for different reasons.
_CAUSE_PRIORITY = (Forbidden, AuthWallDetected, RateLimitExceeded, ServerError, HttpStatusError, NetworkFetchError)


def most_informative(errors: List[FetchError]) -> Optional[FetchError]:
    """Pick the error that best explains a failed cascade (blocked beats network)."""

    for cls in _CAUSE_PRIORITY:
        for err in errors:
            if isinstance(err, cls):
                return err
    return errors[-1] if errors else None


class AllStrategiesExhausted(FetchError):
    def __init__(
        self,
        url: str,
        *,
        cause: Optional[FetchError] = None,
        attempts: Optional[List["FetchAttempt"]] = None,
    ) -> None:
        if cause is not None and cause.status == 403:
            message = f"Access forbidden for {url}; the site blocks automated access, try later"
        elif cause is not None:
            message = f"All fetch strategies failed for {url}: {cause}"
        else:
            message = f"All fetch strategies failed for {url}"
        super().__init__(message, url=url, status=cause.status if cause is not None else None)
        self.cause = cause
        self.attempts = list(attempts or [])

    @property
    def kind(self) -> str:  # type: ignore[override]
        return self.cause.kind if self.cause is not None else KIND_TRANSIENT


class ExtractionError(PolicyVaultError):
    def __init__(self, message: str, *, url: Optional[str] = None) -> None:
        super().__init__(message)
        self.url = url


class ContentTooShort(ExtractionError):
    def __init__(self, message: str, *, url: Optional[str] = None, length: int = 0, minimum: int = 0) -> None:
        super().__init__(message, url=url)
        self.length = length
        self.minimum = minimum


class ContentValidationFailed(ExtractionError):
    pass


class AnalysisError(PolicyVaultError):
    """The external analyzer raised while scoring a policy text."""


class PersistenceError(PolicyVaultError):
    pass


class VersionNotFound(PersistenceError):
    pass


__all__ = [
    "AllStrategiesExhausted",
    "AnalysisError",
    "AuthWallDetected",
    "ContentTooShort",
    "ContentValidationFailed",
    "ExtractionError",
    "FetchError",
    "Forbidden",
    "GUIDANCE_BLOCKED",
    "GUIDANCE_TRANSIENT",
    "HttpStatusError",
    "KIND_BLOCKED",
    "KIND_TRANSIENT",
    "NetworkFetchError",
    "PersistenceError",
    "PolicyVaultError",
    "RateLimitExceeded",
    "ServerError",
    "VersionNotFound",
    "most_informative",
]
