"""Hand-written fakes shared by the policyvault tests."""

from __future__ import annotations

import random
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional, Tuple, Union

from policyvault.workflows.models import AcquiredDocument, HttpResponse
from policyvault.workflows.rate_limiter import RateLimiter
from policyvault.workflows.web_fetch import FetchCascade, FetchConfig

POLICY_PARAGRAPHS = [
    "# Privacy Policy",
    "This privacy policy explains which personal data we collect when you use the service.",
    "We collect your name, email address and usage information to operate the service and to keep it secure.",
    "We share personal data with processors that host our infrastructure under written agreements.",
    "You can request access to, correction of, or deletion of your personal data at any time by contacting us.",
]
POLICY_TEXT = "\n\n".join(POLICY_PARAGRAPHS)


def policy_html(title: str = "Privacy Policy", extra: str = "", lang_note: str = "") -> str:
    paragraphs = "".join(f"<p>{p}</p>" for p in POLICY_PARAGRAPHS[1:])
    filler = "<p>" + ("Data protection matters to us. " * 30) + "</p>"
    return (
        f"<html><head><title>{title}</title></head><body>"
        "<nav><a href='/'>Home</a><a href='/about'>About</a></nav>"
        f"<main><h1>{title}</h1>{lang_note}{paragraphs}{filler}{extra}</main>"
        "<footer>Copyright Example Inc.</footer>"
        "</body></html>"
    )


class FakeClock:
    """Monotonic clock whose ``sleep`` just advances time."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += max(0.0, seconds)


class FakeWallClock:
    def __init__(self, start: Optional[datetime] = None) -> None:
        self.now = start or datetime(2025, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


Route = Union[HttpResponse, Exception, Callable[[str, Dict[str, str]], HttpResponse]]


class FakeTransport:
    """URL-keyed transport. Unknown URLs answer 404 unless a default is set."""

    def __init__(
        self,
        routes: Optional[Dict[str, Union[Route, List[Route]]]] = None,
        default: Optional[Route] = None,
        clock: Optional[FakeClock] = None,
    ) -> None:
        self.routes: Dict[str, Union[Route, List[Route]]] = dict(routes or {})
        self.default = default
        self.clock = clock
        self.calls: List[Tuple[str, Dict[str, str], Optional[float]]] = []
        self.closed = False

    async def get(self, url: str, *, headers: Dict[str, str], timeout: float) -> HttpResponse:
        self.calls.append((url, dict(headers), self.clock() if self.clock else None))
        route = self.routes.get(url, self.default)
        if isinstance(route, list):
            route = route.pop(0) if len(route) > 1 else route[0]
        if route is None:
            return HttpResponse(status=404, body=b"not found", final_url=url)
        if isinstance(route, Exception):
            raise route
        if callable(route):
            return route(url, headers)
        if not route.final_url:
            return HttpResponse(
                status=route.status,
                body=route.body,
                content_type=route.content_type,
                final_url=url,
                headers=dict(route.headers),
            )
        return route

    async def close(self) -> None:
        self.closed = True

    def urls(self) -> List[str]:
        return [url for url, _, _ in self.calls]


def ok(body: Union[str, bytes], *, final_url: str = "", content_type: str = "text/html", headers=None) -> HttpResponse:
    raw = body.encode("utf-8") if isinstance(body, str) else body
    return HttpResponse(status=200, body=raw, content_type=content_type, final_url=final_url, headers=dict(headers or {}))


def status(code: int, body: str = "", *, headers=None) -> HttpResponse:
    return HttpResponse(status=code, body=body.encode("utf-8"), headers=dict(headers or {}))


class StaticArchive:
    """Archival source returning a canned document."""

    def __init__(self, name: str, body: Optional[str], min_length: int = 500) -> None:
        self.name = name
        self.body = body
        self.min_length = min_length
        self.calls: List[str] = []

    async def fetch(self, url, transport, headers) -> Optional[AcquiredDocument]:
        self.calls.append(url)
        if self.body is None:
            return None
        return AcquiredDocument(
            body=self.body.encode("utf-8"),
            content_type="text/html",
            final_url=url,
            strategy=self.name,
        )


def make_cascade(
    transport: FakeTransport,
    *,
    clock: Optional[FakeClock] = None,
    archival_sources=None,
    url_transforms=None,
    max_retries: int = 1,
    min_interval: float = 1.0,
) -> FetchCascade:
    clock = clock or FakeClock()
    limiter = RateLimiter(
        min_interval=min_interval,
        max_jitter=0.0,
        clock=clock,
        sleep=clock.sleep,
    )
    config = FetchConfig(max_retries=max_retries)
    return FetchCascade(
        config,
        transport=transport,
        limiter=limiter,
        archival_sources=[] if archival_sources is None else archival_sources,
        url_transforms=url_transforms,
        sleep=clock.sleep,
        rng=random.Random(7),
    )
