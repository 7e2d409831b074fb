"""Per-record Redis locks guarding the gateway call."""

from contextlib import contextmanager
from typing import Iterator

import redis

from pushrelay.common.logging import logger


class RecordLock:
    """Non-blocking lock per dispatch record id.

    If Redis cannot be reached the lock is treated as held, so dispatch goes
    on and the status compare-and-swap still prevents a second terminal write.
    """

    def __init__(self, client: redis.Redis, ttl_seconds: int = 60, prefix: str = "dispatch-lock") -> None:
        self.client = client
        self.ttl_seconds = ttl_seconds
        self.prefix = prefix

    @classmethod
    def from_url(cls, url: str, ttl_seconds: int = 60) -> "RecordLock":
        return cls(redis.Redis.from_url(url, decode_responses=True), ttl_seconds=ttl_seconds)

    @contextmanager
    def hold(self, record_id: str) -> Iterator[bool]:
        lock = self.client.lock(f"{self.prefix}:{record_id}", timeout=self.ttl_seconds, blocking=False)
        try:
            acquired = lock.acquire(blocking=False)
        except redis.RedisError as exc:
            logger.warning("dispatch_lock_unavailable record_id=%s error=%s", record_id, exc)
            yield True
            return
        try:
            yield acquired
        finally:
            if acquired:
                try:
                    lock.release()
                except redis.RedisError as exc:
                    # Expired under us; the status guard already decided the write.
                    logger.warning("dispatch_lock_release_failed record_id=%s error=%s", record_id, exc)
