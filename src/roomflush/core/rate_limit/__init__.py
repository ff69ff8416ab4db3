"""Rate limiting for persistence flushes."""

from roomflush.core.rate_limit.limiter import FlushRateLimiter

__all__ = ["FlushRateLimiter"]
