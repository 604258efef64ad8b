from __future__ import annotations

import logging
import time
from collections import defaultdict, deque
from typing import Deque, Dict

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse

from settings import SETTINGS

logger = logging.getLogger(__name__)

# health probes are never throttled
EXEMPT_PATHS = {"/health"}


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Sliding one-minute window per client address. Zero or less disables it."""

    def __init__(self, app, requests_per_minute: int | None = None) -> None:
        super().__init__(app)
        self.requests_per_minute = SETTINGS.rate_limit_per_minute if requests_per_minute is None else requests_per_minute
        self._hits: Dict[str, Deque[float]] = defaultdict(deque)

    async def dispatch(self, request: Request, call_next):
        if self.requests_per_minute <= 0 or request.url.path in EXEMPT_PATHS:
            return await call_next(request)
        ip = request.client.host if request.client else "unknown"
        now = time.time()
        bucket = self._hits[ip]
        while bucket and now - bucket[0] > 60:
            bucket.popleft()
        if len(bucket) >= self.requests_per_minute:
            logger.warning("rate_limited", extra={"client": ip, "path": request.url.path})
            return JSONResponse({"detail": "rate_limited"}, status_code=429)
        bucket.append(now)
        return await call_next(request)
