"""
Process-local counters: fixed-window rate limits and the per-user cap on
concurrent bulk operations.

Both live in memory and reset on restart; a multi-instance deployment needs
a shared store behind the same interface.
"""

import threading
import time
from typing import Callable, Dict, Tuple

from ..errors import CapacityExceeded, RateLimited

class RateLimiter:
    """Fixed-window request counter keyed by an arbitrary identifier."""

    def __init__(self, limit: int, window_seconds: int = 60, name: str = 'requests',
                 clock: Callable[[], float] = time.time):
        self.limit = limit
        self.window_seconds = window_seconds
        self.name = name
        self._clock = clock
        self._windows: Dict[str, Tuple[int, float]] = {}
        self._next_sweep = clock() + window_seconds
        self._lock = threading.Lock()

    def __len__(self):
        return len(self._windows)

    def hit(self, key: str) -> Dict[str, str]:
        """
        Count one request for key.

        Returns:
            The X-RateLimit-* headers describing the current window

        Raises:
            RateLimited: when the window is already full
        """
        now = self._clock()
        with self._lock:
            if now >= self._next_sweep:
                self._sweep(now)
            count, reset_at = self._windows.get(key, (0, now + self.window_seconds))
            if now >= reset_at:
                count, reset_at = 0, now + self.window_seconds

            headers = {
                'X-RateLimit-Limit': str(self.limit),
                'X-RateLimit-Reset': str(int(reset_at)),
            }

            if count >= self.limit:
                headers['X-RateLimit-Remaining'] = '0'
                headers['Retry-After'] = str(max(1, int(reset_at - now)))
                raise RateLimited(
                    f'Too many {self.name}. Please try again later.',
                    headers=headers,
                    payload={'retryAfter': int(reset_at - now) + 1}
                )

            count += 1
            self._windows[key] = (count, reset_at)
            headers['X-RateLimit-Remaining'] = str(self.limit - count)
            return headers

    def _sweep(self, now: float):
        """Forget keys whose window has closed; called with the lock held."""
        expired = [key for key, (_, reset_at) in self._windows.items() if now >= reset_at]
        for key in expired:
            del self._windows[key]
        self._next_sweep = now + self.window_seconds

    def reset(self):
        with self._lock:
            self._windows.clear()

class BulkOperationTracker:
    """Counts in-flight bulk operations per user and refuses to exceed the cap."""

    def __init__(self, max_concurrent: int):
        self.max_concurrent = max_concurrent
        self._active: Dict[str, int] = {}
        self._lock = threading.Lock()

    def active(self, user_id: str) -> int:
        with self._lock:
            return self._active.get(user_id, 0)

    def acquire(self, user_id: str):
        """
        Register a new operation for user_id.

        Raises:
            CapacityExceeded: (409) when the user already has max_concurrent running
        """
        with self._lock:
            current = self._active.get(user_id, 0)
            if current >= self.max_concurrent:
                raise CapacityExceeded(
                    f'You have {current} bulk operations in progress. '
                    'Please wait for one to complete before starting another.',
                    payload={
                        'currentOperations': current,
                        'maxAllowed': self.max_concurrent,
                        'suggestion': 'Large uploads take a while to process. Please be patient.'
                    },
                    status_code=409
                )
            self._active[user_id] = current + 1

    def release(self, user_id: str):
        with self._lock:
            remaining = self._active.get(user_id, 0) - 1
            if remaining > 0:
                self._active[user_id] = remaining
            else:
                self._active.pop(user_id, None)

    def reset(self):
        with self._lock:
            self._active.clear()
