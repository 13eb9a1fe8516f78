"""
Fixed-window rate limiting backed by the ``limits`` library.

Counters live in the storage named by ``RATE_LIMIT_STORAGE_URL`` (Redis in
production). Each bucket/identifier pair gets its own window; the
X-RateLimit-* headers come from the window stats after the hit.
"""

import logging
import time
from dataclasses import dataclass
from typing import Dict, Optional

from fastapi import HTTPException, Request, Response
from limits import RateLimitItem, RateLimitItemPerSecond
from limits.storage import storage_from_string
from limits.strategies import FixedWindowRateLimiter

from config import config
from utils.prometheus import RATE_LIMITED

logger = logging.getLogger("zee_index.rate_limit")

storage = storage_from_string(config.RATE_LIMIT_STORAGE_URL)
limiter = FixedWindowRateLimiter(storage)


@dataclass(frozen=True)
class RateLimitRule:
    max_requests: int
    window_seconds: int

    def item(self) -> RateLimitItem:
        return RateLimitItemPerSecond(self.max_requests, self.window_seconds, namespace="ratelimit")


RULES: Dict[str, RateLimitRule] = {
    "general": RateLimitRule(100, 10),
    "download": RateLimitRule(50, 60),
    "admin": RateLimitRule(100, 10),
    "auth": RateLimitRule(10, 60),
}


@dataclass
class RateLimitResult:
    success: bool
    limit: int
    remaining: int
    reset: int  # epoch milliseconds

    def headers(self) -> Dict[str, str]:
        return {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(self.reset),
        }


def client_ip(request: Request) -> str:
    forwarded_for = request.headers.get("x-forwarded-for")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()
    if request.client and request.client.host:
        return request.client.host
    return "127.0.0.1"


def check_rate_limit(bucket: str, identifier: str) -> RateLimitResult:
    rule = RULES[bucket]
    item = rule.item()

    try:
        allowed = limiter.hit(item, bucket, identifier)
        reset_time, remaining = limiter.get_window_stats(item, bucket, identifier)
    except Exception as e:
        logger.warning(f"Rate limiter unavailable, allowing request: {e}")
        return RateLimitResult(True, rule.max_requests, rule.max_requests,
                               int((time.time() + rule.window_seconds) * 1000))

    return RateLimitResult(
        success=allowed,
        limit=rule.max_requests,
        remaining=max(0, remaining),
        reset=int(reset_time * 1000),
    )


def enforce_rate_limit(request: Request, bucket: str, response: Optional[Response] = None,
                       identifier: Optional[str] = None) -> RateLimitResult:
    """Raise 429 when the caller is over the limit; copy the headers onto ``response``."""
    result = check_rate_limit(bucket, identifier or client_ip(request))
    if response is not None:
        response.headers.update(result.headers())
    if not result.success:
        RATE_LIMITED.labels(bucket=bucket).inc()
        raise HTTPException(status_code=429, detail="Too many requests", headers=result.headers())
    return result


def rate_limit(bucket: str):
    """Dependency factory: ``Depends(rate_limit("download"))``."""
    def _dependency(request: Request, response: Response) -> RateLimitResult:
        return enforce_rate_limit(request, bucket, response)

    return _dependency


def get_rate_limit_stats() -> Dict[str, Dict[str, int]]:
    return {
        name: {"maxRequests": rule.max_requests, "windowMs": rule.window_seconds * 1000}
        for name, rule in RULES.items()
    }
