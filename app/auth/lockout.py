"""Failed-login tracking per email.

Counts live in Redis under ``login_attempts:{email}`` so every API worker sees
the same number. When Redis is down the tracker keeps per-process timestamps
instead, which is enough for a single dev or test process.
"""
import time
from datetime import timedelta

import structlog

from app.config import settings
from app.utils.log_mask import mask_email
from app.utils.timeutil import utcnow

logger = structlog.get_logger()

MAX_FAILED_LOGINS = 5
LOCKOUT_WINDOW = timedelta(minutes=15)
REDIS_RETRY_SECONDS = 60


class LoginLockout:
    def __init__(
        self,
        max_attempts: int = MAX_FAILED_LOGINS,
        window: timedelta = LOCKOUT_WINDOW,
        max_tracked_emails: int = 10000,
    ):
        self.max_attempts = max_attempts
        self.window = window
        self.max_tracked_emails = max_tracked_emails
        self._failures: dict[str, list] = {}
        self._redis = None
        self._redis_down_until = 0.0

    async def _client(self):
        if time.monotonic() < self._redis_down_until:
            return None
        if self._redis is None:
            try:
                import redis.asyncio as aioredis
                client = aioredis.from_url(settings.REDIS_URL, decode_responses=True, socket_connect_timeout=2)
                await client.ping()
            except Exception:
                self._redis_down_until = time.monotonic() + REDIS_RETRY_SECONDS
                logger.debug("login_lockout_using_memory")
                return None
            self._redis = client
        return self._redis

    @staticmethod
    def _key(email: str) -> str:
        return f"login_attempts:{email}"

    def _recent(self, email: str) -> list:
        cutoff = utcnow() - self.window
        recent = [t for t in self._failures.get(email, []) if t > cutoff]
        if recent:
            self._failures[email] = recent
        else:
            self._failures.pop(email, None)
        return recent

    def _evict(self) -> None:
        overflow = len(self._failures) - self.max_tracked_emails
        if overflow <= 0:
            return
        # Oldest last failure goes first
        for email in sorted(self._failures, key=lambda e: self._failures[e][-1])[:overflow]:
            del self._failures[email]

    async def is_locked(self, email: str) -> bool:
        client = await self._client()
        if client is not None:
            try:
                count = await client.get(self._key(email))
                return count is not None and int(count) >= self.max_attempts
            except Exception as e:
                logger.warning("login_lockout_redis_error", error=str(e))
        return len(self._recent(email)) >= self.max_attempts

    async def record_failure(self, email: str) -> None:
        client = await self._client()
        if client is not None:
            try:
                pipe = client.pipeline()
                pipe.incr(self._key(email))
                pipe.expire(self._key(email), int(self.window.total_seconds()))
                await pipe.execute()
                return
            except Exception as e:
                logger.warning("login_lockout_redis_error", error=str(e))
        self._failures.setdefault(email, []).append(utcnow())
        self._evict()
        if len(self._recent(email)) == self.max_attempts:
            logger.warning("login_locked_out", email=mask_email(email))

    async def clear(self, email: str) -> None:
        self._failures.pop(email, None)
        client = await self._client()
        if client is not None:
            try:
                await client.delete(self._key(email))
            except Exception as e:
                logger.warning("login_lockout_redis_error", error=str(e))


login_lockout = LoginLockout()
