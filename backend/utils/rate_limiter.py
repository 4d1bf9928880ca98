"""Rate limiting for inbound webhooks and other unauthenticated endpoints"""
from datetime import datetime, timedelta, timezone
from typing import Optional
import logging

logger = logging.getLogger(__name__)

class RateLimiter:
    def __init__(self):
        # In-memory rate limiting (per process)
        self.attempts = {}

    async def check_rate_limit(
        self,
        key: str,
        max_attempts: int,
        window_minutes: int
    ) -> tuple[bool, Optional[int]]:
        """
        Check if rate limit is exceeded.

        Returns:
            (allowed: bool, retry_after_seconds: Optional[int])
        """
        now = datetime.now(timezone.utc)

        # Clean old entries
        if key in self.attempts:
            self.attempts[key] = [
                timestamp for timestamp in self.attempts[key]
                if now - timestamp < timedelta(minutes=window_minutes)
            ]
        else:
            self.attempts[key] = []

        # Check limit
        if len(self.attempts[key]) >= max_attempts:
            oldest = min(self.attempts[key])
            wait_until = oldest + timedelta(minutes=window_minutes)
            wait_seconds = max(int((wait_until - now).total_seconds()), 1)
            logger.warning(f"Rate limit exceeded for {key}")
            return False, wait_seconds

        # Record attempt
        self.attempts[key].append(now)
        return True, None

    def reset(self, key: Optional[str] = None):
        if key is None:
            self.attempts.clear()
        else:
            self.attempts.pop(key, None)

# Webhook deliveries: gateways retry in bursts, so the window is generous
WEBHOOK_MAX_ATTEMPTS = 100
WEBHOOK_WINDOW_MINUTES = 1

rate_limiter = RateLimiter()
