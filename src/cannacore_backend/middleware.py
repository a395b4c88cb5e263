import time
from threading import Lock
from typing import Callable, Dict, Tuple

from fastapi import Request

from .errors import RateLimited


class RateLimiter:
    """
    Simple in-memory rate limiter using a fixed window algorithm.
    Tracks requests per client identifier within a time window.
    """
    def __init__(self, max_requests: int = 10, window_seconds: float = 15 * 60, clock: Callable[[], float] = time.time):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        # identifier -> (count, window_start_time)
        self.requests: Dict[str, Tuple[int, float]] = {}
        self._lock = Lock()

    def is_allowed(self, identifier: str) -> bool:
        now = self._clock()
        with self._lock:
            count, start_time = self.requests.get(identifier, (0, now))

            if now - start_time > self.window_seconds:
                # New window
                self.requests[identifier] = (1, now)
                return True

            if count >= self.max_requests:
                return False

            self.requests[identifier] = (count + 1, start_time)
            return True

    def cleanup(self):
        """Cleanup old entries to prevent memory leak"""
        now = self._clock()
        with self._lock:
            keys_to_delete = [k for k, v in self.requests.items() if now - v[1] > self.window_seconds]
            for k in keys_to_delete:
                del self.requests[k]

    async def __call__(self, request: Request) -> None:
        """FastAPI dependency form: raise RateLimited when the client is over quota."""
        identifier = request.client.host if request.client else "unknown"
        if not self.is_allowed(identifier):
            raise RateLimited("Too many requests from this IP, please try again later.")
