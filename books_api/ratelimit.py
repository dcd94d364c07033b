import time
from collections import deque

from fastapi import Request, status
from fastapi.responses import JSONResponse


class SlidingWindowLimiter:
    def __init__(self, max_requests: int, window_seconds: int):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.buckets: dict[str, deque[float]] = {}
        self._last_sweep = time.monotonic()

    def allow(self, key: str) -> bool:
        now = time.monotonic()
        window_start = now - self.window_seconds
        if now - self._last_sweep >= self.window_seconds:
            self._sweep(window_start)
            self._last_sweep = now

        bucket = self.buckets.setdefault(key, deque())
        while bucket and bucket[0] < window_start:
            bucket.popleft()
        if len(bucket) >= self.max_requests:
            return False
        bucket.append(now)
        return True

    def _sweep(self, window_start: float) -> None:
        # drop clients with no request inside the current window
        for key in [key for key, bucket in self.buckets.items() if not bucket or bucket[-1] < window_start]:
            del self.buckets[key]


def rate_limit_middleware(limiter: SlidingWindowLimiter):
    async def middleware(request: Request, call_next):
        key = request.client.host if request.client else "unknown"
        if not limiter.allow(key):
            return JSONResponse(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                content={"error": "Rate limit exceeded"},
            )
        return await call_next(request)

    return middleware
