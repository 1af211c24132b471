"""Redis client for request rate limiting"""
import logging
import time
import uuid
from typing import Optional, Tuple

import redis

from app.core.config import settings

logger = logging.getLogger(__name__)

# Lazy initialization - no connection at import time
_client = None

# Rate limit tiers: name -> (settings attr for max requests, settings attr for window seconds)
RATE_LIMIT_TIERS = {
    "strict": ("RATE_LIMIT_STRICT_REQUESTS", "RATE_LIMIT_STRICT_WINDOW"),
    "webhook": ("RATE_LIMIT_WEBHOOK_REQUESTS", "RATE_LIMIT_WEBHOOK_WINDOW"),
}


def get_redis_client():
    """Get or create Redis client (lazy initialization)

    Returns None when REDIS_URL is not configured, which disables rate limiting.
    This prevents connection attempts during import, allowing mocks to be applied first.
    """
    global _client
    if not settings.REDIS_URL:
        return None
    if _client is None:
        _client = redis.from_url(settings.REDIS_URL, decode_responses=True)
    return _client


def sliding_window_hit(identifier: str, max_requests: int, window: int) -> Tuple[bool, int]:
    """Record a request in a sliding window and report whether it is allowed.

    Each key is a sorted set of request timestamps. Entries older than the window are
    trimmed, the current request is added, and the remaining cardinality is the count.

    Returns:
        (allowed, retry_after_seconds)
    """
    client = get_redis_client()
    if client is None:
        return True, 0

    key = f"ratelimit:{identifier}"
    now = time.time()
    member = f"{now}:{uuid.uuid4().hex[:8]}"

    pipe = client.pipeline()
    pipe.zremrangebyscore(key, 0, now - window)
    pipe.zadd(key, {member: now})
    pipe.zcard(key)
    pipe.zrange(key, 0, 0, withscores=True)
    pipe.expire(key, window)
    _, _, count, oldest, _ = pipe.execute()

    if count <= max_requests:
        return True, 0

    # Rejected requests do not consume quota
    client.zrem(key, member)
    oldest_score = oldest[0][1] if oldest else now
    retry_after = max(1, int(oldest_score + window - now) + 1)
    return False, retry_after


def check_rate_limit(identifier: str, tier: str = "strict") -> Tuple[bool, Optional[int]]:
    """Check if request is within rate limit using Redis.

    Fails open: Redis errors are logged and the request is allowed.

    Returns:
        (allowed, retry_after_seconds or None)
    """
    requests_attr, window_attr = RATE_LIMIT_TIERS[tier]
    max_requests = getattr(settings, requests_attr)
    window = getattr(settings, window_attr)

    try:
        allowed, retry_after = sliding_window_hit(f"{tier}:{identifier}", max_requests, window)
    except redis.RedisError as e:
        logger.warning(f"Rate limit check failed for tier {tier}: {e}")
        return True, None

    return allowed, (retry_after or None)
