"""Rate-limited HTTP fetcher for external filing sources."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass

import httpx

from sec13f_collector.config import FetcherSettings
from sec13f_collector.errors import FetchError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_MIN_INTERVAL_SECONDS = 0.1
DEFAULT_SERVICE_CLASS = "sec"


@dataclass(slots=True, frozen=True)
class FetchTarget:
    """One outbound request: where to go and which rate-limit budget it spends."""

    url: str
    service_class: str = DEFAULT_SERVICE_CLASS
    entity_key: str | None = None
    document_path: str | None = None


@dataclass(slots=True)
class FetchResult:
    """Successful fetch response."""

    target: FetchTarget
    status_code: int
    content: bytes
    content_type: str
    elapsed_ms: int

    @property
    def text(self) -> str:
        return self.content.decode("utf-8", errors="replace")


class RateLimitClock:
    """Spaces request starts at least ``min_interval_seconds`` apart.

    The lock is held while waiting, so concurrent callers are serialized and
    each observes the previous caller's start time.
    """

    def __init__(
        self,
        *,
        min_interval_seconds: float,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.min_interval_seconds = max(0.0, min_interval_seconds)
        self._clock = clock
        self._sleep = sleep
        self._lock = threading.Lock()
        self._last_start: float | None = None

    def wait_turn(self) -> float:
        """Block until the next request may start; return its start timestamp."""

        with self._lock:
            now = self._clock()
            if self._last_start is not None:
                earliest = self._last_start + self.min_interval_seconds
                while now < earliest:
                    self._sleep(earliest - now)
                    now = self._clock()
            self._last_start = now
            return now


class RateLimitedFetcher:
    """httpx client wrapper that never retries and enforces per-service spacing."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        user_agent: str,
        min_interval_seconds: float = DEFAULT_MIN_INTERVAL_SECONDS,
        service_intervals: dict[str, float] | None = None,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        transport: httpx.BaseTransport | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.min_interval_seconds = min_interval_seconds
        self._service_intervals = dict(service_intervals or {})
        self._clock = clock
        self._sleep = sleep
        self._clocks: dict[str, RateLimitClock] = {}
        self._clocks_lock = threading.Lock()
        self._client = httpx.Client(
            timeout=httpx.Timeout(timeout_seconds, connect=10.0),
            headers={
                "User-Agent": user_agent,
                "Accept-Encoding": "gzip, deflate",
                "Accept": "application/json, */*",
            },
            transport=transport or httpx.HTTPTransport(retries=0),
            follow_redirects=True,
        )

    @classmethod
    def from_settings(
        cls,
        settings: FetcherSettings,
        *,
        transport: httpx.BaseTransport | None = None,
    ) -> RateLimitedFetcher:
        return cls(
            user_agent=settings.user_agent,
            min_interval_seconds=settings.min_request_interval_ms / 1000.0,
            timeout_seconds=settings.request_timeout_seconds,
            transport=transport,
        )

    def clock_for(self, service_class: str) -> RateLimitClock:
        """Shared rate-limit clock of one service class."""

        with self._clocks_lock:
            clock = self._clocks.get(service_class)
            if clock is None:
                clock = RateLimitClock(
                    min_interval_seconds=self._service_intervals.get(
                        service_class,
                        self.min_interval_seconds,
                    ),
                    clock=self._clock,
                    sleep=self._sleep,
                )
                self._clocks[service_class] = clock
            return clock

    def fetch(self, target: FetchTarget) -> FetchResult:
        """Fetch one target; raise FetchError on transport failure or non-2xx status."""

        self.clock_for(target.service_class).wait_turn()
        started = time.monotonic()
        try:
            response = self._client.get(target.url)
        except httpx.TimeoutException as exc:
            logger.warning("Timeout fetching %s", target.url)
            raise FetchError(f"Timeout fetching {target.url}", url=target.url) from exc
        except httpx.HTTPError as exc:
            logger.warning("HTTP error fetching %s: %s", target.url, exc)
            raise FetchError(
                f"HTTP error fetching {target.url}: {exc}",
                url=target.url,
            ) from exc

        elapsed_ms = int((time.monotonic() - started) * 1000)
        logger.debug(
            "Fetched %s status=%s elapsed_ms=%s",
            target.url,
            response.status_code,
            elapsed_ms,
        )
        if not response.is_success:
            logger.warning("HTTP %s fetching %s", response.status_code, target.url)
            raise FetchError(
                f"HTTP {response.status_code} fetching {target.url}",
                url=target.url,
                status_code=response.status_code,
            )
        return FetchResult(
            target=target,
            status_code=response.status_code,
            content=response.content,
            content_type=response.headers.get("content-type", ""),
            elapsed_ms=elapsed_ms,
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> RateLimitedFetcher:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()
