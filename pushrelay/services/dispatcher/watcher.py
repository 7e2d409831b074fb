"""Outbox watcher: publishes insertion events and consumes them into the dispatcher."""

import asyncio

from pushrelay.common.events import EventEnvelope, KafkaBus, consume_forever
from pushrelay.common.logging import logger
from pushrelay.common.outbox import (
    claim_outbox_batch,
    mark_outbox_sent,
    requeue_outbox_event,
    update_outbox_backlog_metrics,
)
from pushrelay.common.store import DISPATCH_CREATED
from pushrelay.services.dispatcher.service import DispatcherService


class OutboxWatcher:
    """Feeds every inserted dispatch record to the dispatcher once per event."""

    def __init__(
        self,
        session_factory,
        dispatcher: DispatcherService,
        topic: str,
        group_id: str,
        poll_interval_seconds: float = 0.5,
        kafka: KafkaBus | None = None,
        service_name: str = "dispatcher",
    ) -> None:
        self.session_factory = session_factory
        self.dispatcher = dispatcher
        self.topic = topic
        self.group_id = group_id
        self.poll_interval_seconds = poll_interval_seconds
        self.kafka = kafka or KafkaBus()
        self.service_name = service_name

    async def handle_created(self, event: EventEnvelope) -> None:
        """Invoke the dispatcher for the record named by one insertion event."""

        if event.event_type != DISPATCH_CREATED:
            logger.info("event ignored event_type=%s event_id=%s", event.event_type, event.event_id)
            return
        try:
            status = await self.dispatcher.dispatch(event.aggregate_id)
        except Exception:
            # The event counts as handled; the record is left for retention.
            logger.exception("dispatch invocation failed record_id=%s", event.aggregate_id)
            return
        logger.info("dispatch handled record_id=%s status=%s", event.aggregate_id, status)

    async def publish_pending(self) -> int:
        """Publish one claimed batch of insertion events; returns rows published."""

        with self.session_factory() as db:
            rows = claim_outbox_batch(db, limit=100)
            update_outbox_backlog_metrics(db, self.service_name)
            db.commit()
        published = 0
        for row in rows:
            try:
                await self.kafka.publish(row["topic"], EventEnvelope(**row["payload"]))
                with self.session_factory() as db:
                    mark_outbox_sent(db, row["id"])
                    update_outbox_backlog_metrics(db, self.service_name)
                    db.commit()
                published += 1
            except Exception as exc:
                logger.exception("outbox publish failed event_id=%s: %s", row["id"], exc)
                with self.session_factory() as db:
                    requeue_outbox_event(db, row["id"])
                    update_outbox_backlog_metrics(db, self.service_name)
                    db.commit()
        return published

    async def outbox_publisher(self) -> None:
        """Continuously publish insertion events from the outbox table."""

        while True:
            try:
                await self.publish_pending()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.error("outbox_poll_error error=%s", exc)
            await asyncio.sleep(self.poll_interval_seconds)

    async def start_consumers(self) -> None:
        """Consume insertion events for the dispatch topic."""

        await consume_forever(self.topic, self.group_id, self.handle_created)
