"""Kafka envelope + producer/consumer helpers for the dispatch work queue.

Insertion events for dispatch records travel through Kafka so the watcher can
consume them as an explicit queue. Offsets are committed only after every
message of a fetched batch went through its handler, which makes delivery
at-least-once.
"""

import asyncio
import json
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable
from uuid import uuid4

from aiokafka import AIOKafkaConsumer, AIOKafkaProducer
from pydantic import BaseModel, Field

from pushrelay.common.config import settings
from pushrelay.common.logging import dispatch_id_ctx, event_id_ctx, logger, trace_id_ctx
from pushrelay.common.metrics import event_queue_delay_seconds


class EventEnvelope(BaseModel):
    """Canonical event shape sent across Kafka topics."""

    event_id: str = Field(default_factory=lambda: str(uuid4()))
    event_type: str
    aggregate_id: str
    occurred_at: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    trace_id: str = Field(default_factory=lambda: str(uuid4()))
    payload: dict[str, Any] = Field(default_factory=dict)


EventHandler = Callable[[EventEnvelope], Awaitable[Any]]


class KafkaBus:
    """Lazy Kafka producer wrapper used by the outbox publisher."""

    def __init__(self) -> None:
        self._producer: AIOKafkaProducer | None = None

    async def producer(self) -> AIOKafkaProducer:
        if self._producer is None:
            self._producer = AIOKafkaProducer(bootstrap_servers=settings.kafka_bootstrap_servers)
            await self._producer.start()
        return self._producer

    async def publish(self, topic: str, event: EventEnvelope) -> None:
        producer = await self.producer()
        await producer.send_and_wait(
            topic,
            json.dumps(event.model_dump()).encode("utf-8"),
            key=event.aggregate_id.encode("utf-8"),
        )

    async def close(self) -> None:
        if self._producer:
            await self._producer.stop()
            self._producer = None


async def make_consumer(topic: str, group_id: str) -> AIOKafkaConsumer:
    """Create a configured Kafka consumer for one topic/group."""

    consumer = AIOKafkaConsumer(
        topic,
        bootstrap_servers=settings.kafka_bootstrap_servers,
        group_id=group_id,
        auto_offset_reset="earliest",
        enable_auto_commit=False,
    )
    await consumer.start()
    return consumer


async def handle_message(topic: str, group_id: str, raw: bytes, handler: EventHandler) -> bool:
    """Decode one raw message and run `handler` inside its log context.

    Returns False when decoding or the handler failed. Failures are logged and
    never raised, so one bad event cannot stall the partition.
    """

    try:
        event = EventEnvelope(**json.loads(raw.decode("utf-8")))
    except Exception as exc:
        logger.error("event_decode_error topic=%s group=%s error=%s", topic, group_id, exc)
        return False

    try:
        occurred_at = datetime.fromisoformat(event.occurred_at.replace("Z", "+00:00"))
        if occurred_at.tzinfo is None:
            occurred_at = occurred_at.replace(tzinfo=timezone.utc)
        delay_seconds = max(0.0, (datetime.now(timezone.utc) - occurred_at).total_seconds())
        event_queue_delay_seconds.labels(service=settings.service_name, topic=topic).observe(delay_seconds)
    except ValueError:
        logger.warning("event_occurred_at_unparseable topic=%s event_id=%s", topic, event.event_id)

    trace_token = trace_id_ctx.set(event.trace_id)
    event_token = event_id_ctx.set(event.event_id)
    dispatch_token = dispatch_id_ctx.set(event.aggregate_id)
    try:
        logger.info(
            "event_received topic=%s group=%s event_type=%s aggregate_id=%s",
            topic,
            group_id,
            event.event_type,
            event.aggregate_id,
        )
        await handler(event)
        return True
    except Exception as exc:
        logger.error(
            "handler_error topic=%s group=%s event_id=%s error=%s",
            topic,
            group_id,
            event.event_id,
            exc,
        )
        return False
    finally:
        trace_id_ctx.reset(trace_token)
        event_id_ctx.reset(event_token)
        dispatch_id_ctx.reset(dispatch_token)


async def consume_forever(topic: str, group_id: str, handler: EventHandler) -> None:
    """Continuously consume one topic and pass parsed envelopes to `handler`.

    Errors in individual messages are logged and processing continues; the
    consumer is rebuilt after connection-level errors.
    """

    while True:
        consumer = None
        try:
            consumer = await make_consumer(topic, group_id)
            while True:
                results = await consumer.getmany(timeout_ms=500, max_records=50)
                for _, messages in results.items():
                    for msg in messages:
                        await handle_message(topic, group_id, msg.value, handler)
                if results:
                    await consumer.commit()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.error("consumer_loop_error topic=%s group=%s error=%s", topic, group_id, exc)
            await asyncio.sleep(2)
        finally:
            if consumer is not None:
                await consumer.stop()
            await asyncio.sleep(0)
