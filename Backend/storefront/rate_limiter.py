"""
Rate limiting for public, unauthenticated endpoints.

The public feedback form is the only write a visitor can make without an
account, so it is limited per client IP:

- POST /s/{slug}/feedback: FEEDBACK_RATE_LIMIT requests per 10 minutes per IP

Usage:
    from .rate_limiter import rate_limit_dependency

    @router.post("/feedback", dependencies=[Depends(rate_limit_dependency(5, 600))])
    async def submit(...):
        ...
"""

import logging
import time
from collections import defaultdict
from typing import Dict, List, Optional, Tuple

from fastapi import HTTPException, Request, status

logger = logging.getLogger(__name__)


# ────────────────────────────────────────────────────────────────
# In-Memory Sliding Window
# ────────────────────────────────────────────────────────────────

class RateLimiter:
    """
    In-memory sliding window limiter keyed by (client IP, endpoint).

    State lives in the process; several workers each keep their own window.
    """

    def __init__(self, cleanup_interval: int = 300, retention_seconds: int = 3600):
        # {(ip, endpoint): [timestamp, ...]}
        self.hits: Dict[Tuple[str, str], List[float]] = defaultdict(list)
        self.cleanup_interval = cleanup_interval
        self.retention_seconds = retention_seconds
        self.last_cleanup = time.time()

    @staticmethod
    def client_ip(request: Request) -> str:
        # First hop of X-Forwarded-For when behind a proxy
        forwarded = request.headers.get("X-Forwarded-For")
        if forwarded:
            return forwarded.split(",")[0].strip()
        if request.client:
            return request.client.host
        return "unknown"

    def _prune(self, now: float) -> None:
        if now - self.last_cleanup < self.cleanup_interval:
            return
        cutoff = now - self.retention_seconds
        for key in list(self.hits):
            self.hits[key] = [ts for ts in self.hits[key] if ts > cutoff]
            if not self.hits[key]:
                del self.hits[key]
        self.last_cleanup = now
        logger.debug(f"Rate limiter cleanup: {len(self.hits)} keys tracked")

    def hit(
        self,
        ip: str,
        endpoint: str,
        max_requests: int,
        window_seconds: int,
        now: Optional[float] = None,
    ) -> Tuple[bool, int]:
        """
        Record a request if it fits in the window.

        Returns:
            (allowed, retry_after_seconds); retry_after is 0 when allowed
        """
        now = time.time() if now is None else now
        self._prune(now)

        key = (ip, endpoint)
        window = [ts for ts in self.hits[key] if ts > now - window_seconds]
        self.hits[key] = window

        if len(window) >= max_requests:
            retry_after = max(1, int(min(window) + window_seconds - now))
            return False, retry_after

        window.append(now)
        return True, 0

    def clear(self, ip: Optional[str] = None) -> None:
        if ip is None:
            self.hits.clear()
            return
        for key in [k for k in self.hits if k[0] == ip]:
            del self.hits[key]


_rate_limiter = RateLimiter()


# ────────────────────────────────────────────────────────────────
# FastAPI Dependency
# ────────────────────────────────────────────────────────────────

def rate_limit_dependency(max_requests: int, window_seconds: int = 60):
    """
    Create a rate limit dependency for FastAPI routes.

    Raises:
        HTTPException 429: With a Retry-After header once the IP is over the limit
    """
    async def dependency(request: Request) -> None:
        ip = _rate_limiter.client_ip(request)
        endpoint = request.url.path
        allowed, retry_after = _rate_limiter.hit(ip, endpoint, max_requests, window_seconds)
        if allowed:
            return None

        logger.warning(
            f"[RATE_LIMIT] Blocked {ip} on {endpoint}: "
            f"{max_requests} per {window_seconds}s exceeded"
        )
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail=f"Too many requests. Limit: {max_requests} per {window_seconds}s",
            headers={"Retry-After": str(retry_after)},
        )

    return dependency


def clear_rate_limits(ip_address: Optional[str] = None) -> None:
    """Clear limits for one IP, or for everyone when ip_address is None."""
    _rate_limiter.clear(ip_address)
    logger.info(f"Cleared rate limits for {ip_address or 'all IPs'}")
