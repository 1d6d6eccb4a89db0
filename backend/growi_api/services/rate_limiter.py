"""Redis-backed attempt counters for login throttling."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from redis import Redis
from redis.exceptions import RedisError

from growi_api.config import settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    remaining_attempts: int
    reset_time: datetime  # aware, UTC


class RedisRateLimiter:
    """
    Fixed-window attempt counter stored in Redis.

    The window starts with the first attempt: the TTL is only set when the
    counter is created, so later attempts do not extend it. When Redis is
    unreachable the limiter fails open and lets the request through.
    """

    def __init__(
        self,
        client: Optional[Redis] = None,
        *,
        max_attempts: Optional[int] = None,
        window_seconds: Optional[int] = None,
    ) -> None:
        self._client = client
        self.max_attempts = max_attempts or settings.LOGIN_RATE_LIMIT_MAX
        self.window_seconds = window_seconds or settings.LOGIN_RATE_LIMIT_WINDOW_SECONDS

    @property
    def client(self) -> Redis:
        if self._client is None:
            # from_url does not connect until the first command
            self._client = Redis.from_url(
                settings.REDIS_URL,
                decode_responses=True,
                socket_timeout=settings.REDIS_SOCKET_TIMEOUT,
                socket_connect_timeout=settings.REDIS_SOCKET_TIMEOUT,
            )
        return self._client

    @staticmethod
    def build_key(identifier: str, client_ip: str) -> str:
        return f"rate_limit:{identifier}:{client_ip}"

    def _open_result(self) -> RateLimitResult:
        return RateLimitResult(
            allowed=True,
            remaining_attempts=self.max_attempts,
            reset_time=datetime.now(timezone.utc) + timedelta(seconds=self.window_seconds),
        )

    def check_and_increment(self, key: str) -> RateLimitResult:
        try:
            attempts = int(self.client.incr(key))
            if attempts == 1:
                self.client.expire(key, self.window_seconds)
                ttl = self.window_seconds
            else:
                ttl = int(self.client.ttl(key))
                if ttl < 0:
                    # Counter lost its expiry; start a fresh window.
                    self.client.expire(key, self.window_seconds)
                    ttl = self.window_seconds
        except RedisError as exc:
            logger.error(f"Rate limit check failed for {key}, allowing request: {exc}")
            return self._open_result()

        reset_time = datetime.now(timezone.utc) + timedelta(seconds=ttl)
        if attempts > self.max_attempts:
            return RateLimitResult(allowed=False, remaining_attempts=0, reset_time=reset_time)

        return RateLimitResult(
            allowed=True,
            remaining_attempts=max(0, self.max_attempts - attempts),
            reset_time=reset_time,
        )

    def reset(self, key: str) -> None:
        try:
            self.client.delete(key)
        except RedisError as exc:
            logger.error(f"Failed to reset rate limit for {key}: {exc}")

    def ping(self) -> bool:
        try:
            return bool(self.client.ping())
        except RedisError:
            return False


rate_limiter = RedisRateLimiter()
