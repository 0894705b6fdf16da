"""Rate Limiter - sliding-window throttle shared by provider clients."""

import time
from collections import defaultdict, deque
from threading import Lock
from typing import Callable, Optional


class RateLimiter:
    """Thread-safe sliding-window rate limiter keyed by endpoint."""

    def __init__(
        self,
        max_calls: int = 60,
        time_window: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize rate limiter.

        Args:
            max_calls: Maximum number of calls allowed in time_window
            time_window: Window length in seconds
            clock: Time source (monotonic seconds)
            sleep: Sleep function used while waiting for a free slot
        """
        self.max_calls = max_calls
        self.time_window = time_window
        self._clock = clock
        self._sleep = sleep
        self._calls: dict[str, deque] = defaultdict(deque)
        self._lock = Lock()

    def _prune(self, endpoint: str, now: float) -> deque:
        calls = self._calls[endpoint]
        while calls and now - calls[0] >= self.time_window:
            calls.popleft()
        return calls

    def acquire(self, endpoint: str = "default") -> float:
        """
        Block until a call to ``endpoint`` is allowed, then record it.

        Returns:
            Total seconds spent waiting
        """
        waited = 0.0
        while True:
            with self._lock:
                now = self._clock()
                calls = self._prune(endpoint, now)
                if len(calls) < self.max_calls:
                    calls.append(now)
                    return waited
                wait_time = calls[0] + self.time_window - now
            # Sleep outside the lock so other endpoints are not blocked
            wait_time = max(wait_time, 0.01)
            self._sleep(wait_time)
            waited += wait_time

    def can_proceed(self, endpoint: str = "default") -> bool:
        """True if a call could be made right now without waiting."""
        with self._lock:
            return len(self._prune(endpoint, self._clock())) < self.max_calls

    def reset(self, endpoint: Optional[str] = None) -> None:
        """Forget recorded calls for one endpoint, or all of them."""
        with self._lock:
            if endpoint:
                self._calls.pop(endpoint, None)
            else:
                self._calls.clear()


# Global rate limiters for provider APIs
_replicate_limiter: Optional[RateLimiter] = None
_speech_limiter: Optional[RateLimiter] = None


def get_replicate_limiter(max_calls: int = 60, time_window: float = 60.0) -> RateLimiter:
    """Get or create the Replicate API rate limiter."""
    global _replicate_limiter
    if _replicate_limiter is None:
        _replicate_limiter = RateLimiter(max_calls=max_calls, time_window=time_window)
    return _replicate_limiter


def get_speech_limiter(max_calls: int = 100, time_window: float = 60.0) -> RateLimiter:
    """Get or create the speech-synthesis rate limiter (OpenAI / ElevenLabs)."""
    global _speech_limiter
    if _speech_limiter is None:
        _speech_limiter = RateLimiter(max_calls=max_calls, time_window=time_window)
    return _speech_limiter
