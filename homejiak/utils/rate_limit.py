import math
import threading
import time
from typing import Dict, Optional, Tuple

from homejiak.exceptions import RateLimitError


class RateLimiter:
    """Fixed-window request counter keyed by caller.

    Each key gets ``max_requests`` hits per window; the window starts with the
    first hit and resets once it has elapsed. Finished windows are swept on
    write once per ``window_seconds``, so idle callers do not pile up.
    """

    def __init__(self, window_seconds: float = 60.0, max_requests: int = 100, clock=time.monotonic):
        self.window_seconds = window_seconds
        self.max_requests = max_requests
        self._clock = clock
        self._windows: Dict[str, Tuple[float, int]] = {}
        self._next_sweep = clock() + window_seconds
        self._lock = threading.Lock()

    @staticmethod
    def build_key(procedure: str, user_id: Optional[str] = None, ip_address: Optional[str] = None) -> str:
        return f"{procedure}:{user_id or ip_address or 'anonymous'}"

    def _sweep(self, now: float):
        finished = [key for key, (reset_at, _) in self._windows.items() if reset_at <= now]
        for key in finished:
            del self._windows[key]
        self._next_sweep = now + self.window_seconds

    def hit(self, key: str) -> Tuple[bool, int, float]:
        """Record one request.

        Args:
            key: Caller key

        Returns:
            Tuple of (allowed, remaining, seconds until reset)
        """
        now = self._clock()
        with self._lock:
            if now >= self._next_sweep:
                self._sweep(now)

            reset_at, count = self._windows.get(key, (0.0, 0))
            if now >= reset_at:
                reset_at, count = now + self.window_seconds, 0

            if count >= self.max_requests:
                return False, 0, reset_at - now

            count += 1
            self._windows[key] = (reset_at, count)
            return True, self.max_requests - count, reset_at - now

    def check(self, key: str):
        """Record one request and raise when the key is over its limit.

        Raises:
            RateLimitError with a retry hint in seconds
        """
        allowed, _, retry_after = self.hit(key)
        if not allowed:
            seconds = max(1, math.ceil(retry_after))
            raise RateLimitError(
                f"Rate limit exceeded. Try again in {seconds} seconds.",
                details={'retry_after': seconds}
            )

    def reset(self, key: Optional[str] = None):
        with self._lock:
            if key is None:
                self._windows.clear()
            else:
                self._windows.pop(key, None)

    def __len__(self):
        with self._lock:
            return len(self._windows)
