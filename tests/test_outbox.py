"""Publish side of the insertion-event feed and the consumer commit order."""

import asyncio
import json
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest
from sqlalchemy import select

from pushrelay.common import events
from pushrelay.common.events import EventEnvelope, consume_forever
from pushrelay.common.models import OutboxEvent
from pushrelay.common.outbox import claim_outbox_batch
from pushrelay.common.store import DISPATCH_CREATED
from pushrelay.services.dispatcher.watcher import OutboxWatcher


class FlakyBus:
    """Fails the first `failures` publishes, then accepts everything."""

    def __init__(self, failures: int = 1) -> None:
        self.failures = failures
        self.published = []

    async def publish(self, topic, event):
        if self.failures:
            self.failures -= 1
            raise ConnectionError("broker unavailable")
        self.published.append((topic, event))


def outbox_rows(session_factory) -> dict[str, OutboxEvent]:
    with session_factory() as db:
        return {row.aggregate_id: row for row in db.execute(select(OutboxEvent)).scalars()}


def test_failed_publish_is_requeued_then_sent(store, session_factory):
    """One row fails and goes back to PENDING; the next poll publishes it."""

    ids = {store.insert("tok1", "Hi", "there").id, store.insert("tok2", "Yo", "again").id}
    bus = FlakyBus(failures=1)
    watcher = OutboxWatcher(session_factory, None, topic=DISPATCH_CREATED, group_id="g", kafka=bus)

    assert asyncio.run(watcher.publish_pending()) == 1
    rows = outbox_rows(session_factory)
    assert sorted(row.status for row in rows.values()) == ["PENDING", "SENT"]
    requeued = next(row for row in rows.values() if row.status == "PENDING")
    assert requeued.sent_at is None

    assert asyncio.run(watcher.publish_pending()) == 1
    assert {row.status for row in outbox_rows(session_factory).values()} == {"SENT"}
    assert {event.aggregate_id for _, event in bus.published} == ids
    assert {topic for topic, _ in bus.published} == {DISPATCH_CREATED}

    assert asyncio.run(watcher.publish_pending()) == 0


def test_claim_reclaims_only_stale_processing_rows(session_factory):
    now = datetime.now(timezone.utc)

    def add(aggregate_id, status, sent_at=None):
        envelope = EventEnvelope(event_type=DISPATCH_CREATED, aggregate_id=aggregate_id)
        return OutboxEvent(
            aggregate_id=aggregate_id,
            event_type=DISPATCH_CREATED,
            topic=DISPATCH_CREATED,
            payload=envelope.model_dump(),
            status=status,
            sent_at=sent_at,
        )

    with session_factory() as db:
        db.add_all(
            [
                add("pending", "PENDING"),
                add("stale", "PROCESSING", now - timedelta(seconds=60)),
                add("fresh", "PROCESSING", now - timedelta(seconds=5)),
                add("done", "SENT", now - timedelta(seconds=60)),
            ]
        )
        db.commit()

    with session_factory() as db:
        claimed = claim_outbox_batch(db, limit=10, processing_timeout_seconds=30)
        db.commit()

    assert {row["payload"]["aggregate_id"] for row in claimed} == {"pending", "stale"}
    rows = outbox_rows(session_factory)
    assert rows["pending"].status == "PROCESSING"
    assert rows["stale"].status == "PROCESSING"
    assert rows["fresh"].status == "PROCESSING"
    assert rows["done"].status == "SENT"


class ScriptedConsumer:
    """Hands out prepared batches, then stops the loop."""

    def __init__(self, batches, log):
        self.batches = list(batches)
        self.log = log

    async def getmany(self, timeout_ms=0, max_records=None):
        if not self.batches:
            raise asyncio.CancelledError()
        return self.batches.pop(0)

    async def commit(self):
        self.log.append("commit")

    async def stop(self):
        self.log.append("stop")


def raw_event(aggregate_id: str, offset: int):
    value = json.dumps(EventEnvelope(event_type=DISPATCH_CREATED, aggregate_id=aggregate_id).model_dump()).encode()
    return SimpleNamespace(value=value, offset=offset)


def test_offsets_commit_after_whole_batch_is_handled(monkeypatch):
    """Commit follows every handler in the batch, including failing ones; empty polls commit nothing."""

    log = []
    consumer = ScriptedConsumer([{"tp0": [raw_event("a", 0), raw_event("b", 1)]}, {}], log)

    async def fake_make_consumer(topic, group_id):
        return consumer

    async def handler(event):
        log.append(f"handled:{event.aggregate_id}")
        if event.aggregate_id == "b":
            raise RuntimeError("dispatch failed")

    monkeypatch.setattr(events, "make_consumer", fake_make_consumer)

    with pytest.raises(asyncio.CancelledError):
        asyncio.run(consume_forever(DISPATCH_CREATED, "g", handler))

    assert log == ["handled:a", "handled:b", "commit", "stop"]
