"""Per-record Redis lock semantics, against a stand-in client."""

import redis

from pushrelay.common.locks import RecordLock


class StubLock:
    def __init__(self, acquired=True, acquire_error=None, release_error=None):
        self.acquired = acquired
        self.acquire_error = acquire_error
        self.release_error = release_error
        self.released = False

    def acquire(self, blocking=True):
        if self.acquire_error is not None:
            raise self.acquire_error
        return self.acquired

    def release(self):
        if self.release_error is not None:
            raise self.release_error
        self.released = True


class StubRedis:
    def __init__(self, lock):
        self._lock = lock
        self.requested = []

    def lock(self, name, timeout=None, blocking=True):
        self.requested.append((name, timeout))
        return self._lock


def test_acquired_lock_is_released():
    stub = StubLock(acquired=True)
    client = StubRedis(stub)

    with RecordLock(client, ttl_seconds=30).hold("rec-1") as acquired:
        assert acquired is True
        assert stub.released is False

    assert stub.released is True
    assert client.requested == [("dispatch-lock:rec-1", 30)]


def test_contended_lock_reports_not_acquired():
    stub = StubLock(acquired=False)

    with RecordLock(StubRedis(stub)).hold("rec-1") as acquired:
        assert acquired is False
    assert stub.released is False


def test_redis_outage_lets_dispatch_proceed():
    stub = StubLock(acquire_error=redis.ConnectionError("refused"))

    with RecordLock(StubRedis(stub)).hold("rec-1") as acquired:
        assert acquired is True


def test_expired_lock_release_is_tolerated():
    stub = StubLock(release_error=redis.exceptions.LockNotOwnedError("expired"))

    with RecordLock(StubRedis(stub)).hold("rec-1") as acquired:
        assert acquired is True
