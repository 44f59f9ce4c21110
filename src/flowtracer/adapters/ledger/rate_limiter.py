import time
from typing import Callable, Optional, TypeVar

from flowtracer.core.enums import CrawlEvent
from flowtracer.core.errors import RetryExhaustedError
from flowtracer.core.events import EventSink

T = TypeVar("T")


class SimpleRateLimiter:
    def __init__(self, requests_per_sec: float, clock: Callable[[], float] = time.monotonic,
                 sleep: Callable[[float], None] = time.sleep) -> None:
        if requests_per_sec <= 0:
            raise ValueError("requests_per_sec must be > 0")
        self._min_interval = 1.0 / requests_per_sec
        self._last_ts: Optional[float] = None
        self._clock = clock
        self._sleep = sleep

    def wait(self) -> None:
        if self._last_ts is not None:
            sleep_for = self._min_interval - (self._clock() - self._last_ts)
            if sleep_for > 0:
                self._sleep(sleep_for)
        self._last_ts = self._clock()


class RetryPolicy:
    """
    Retry wrapper for a single network call.

    Delay before retry n is base_ms * 2**(n-1): 500ms, 1000ms, 2000ms ... with the
    default base. No jitter. After max_retries failed attempts the call raises
    RetryExhaustedError.
    """

    def __init__(
        self,
        max_retries: int = 3,
        base_ms: int = 500,
        events: Optional[EventSink] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if max_retries <= 0:
            raise ValueError("max_retries must be > 0")
        self.max_retries = max_retries
        self.base_ms = base_ms
        self._events = events or EventSink()
        self._sleep = sleep

    def delay_ms(self, attempt: int) -> int:
        return self.base_ms * (2 ** (attempt - 1))

    def call(self, fn: Callable[[], T], label: str = "rpc") -> T:
        attempt = 0
        while True:
            try:
                return fn()
            except Exception as e:
                attempt += 1
                if attempt >= self.max_retries:
                    self._events.emit(
                        CrawlEvent.FATAL_CALL_ERROR,
                        label=label,
                        attempts=attempt,
                        error=str(e),
                    )
                    raise RetryExhaustedError(label, attempt, e) from e

                delay = self.delay_ms(attempt)
                self._events.emit(
                    CrawlEvent.RETRY_WARNING,
                    label=label,
                    attempt=attempt,
                    delay_ms=delay,
                    error=str(e),
                )
                self._sleep(delay / 1000.0)
