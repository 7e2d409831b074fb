"""Dispatch record store.

Insert, point read, guarded terminal update and bounded expiry delete over
`dispatch_records`. Inserting a record also writes its insertion event to the
outbox in the same transaction, which is what the watcher subscribes to.
"""

from datetime import datetime
from typing import Any

from sqlalchemy import delete, select, update

from pushrelay.common.events import EventEnvelope
from pushrelay.common.models import DispatchRecord, OutboxEvent
from pushrelay.common.state_machine import PENDING, validate_transition


DISPATCH_CREATED = "dispatch.created"


class DispatchStore:
    """Session-scoped access to dispatch records for API, dispatcher and sweeper."""

    def __init__(self, session_factory, topic: str = DISPATCH_CREATED) -> None:
        self.session_factory = session_factory
        self.topic = topic

    def insert(
        self,
        target: str,
        title: str,
        body: str,
        data: dict[str, str] | None = None,
        platform_options: dict[str, Any] | None = None,
        trace_id: str | None = None,
    ) -> DispatchRecord:
        """Create a `PENDING` record and enqueue its insertion event."""

        with self.session_factory() as db:
            record = DispatchRecord(
                target=target,
                title=title,
                body=body,
                data=dict(data or {}),
                platform_options=platform_options or None,
                status=PENDING,
            )
            db.add(record)
            db.flush()
            envelope = EventEnvelope(event_type=DISPATCH_CREATED, aggregate_id=record.id, payload={})
            if trace_id:
                envelope.trace_id = trace_id
            db.add(
                OutboxEvent(
                    aggregate_id=record.id,
                    event_type=DISPATCH_CREATED,
                    topic=self.topic,
                    payload=envelope.model_dump(),
                )
            )
            db.commit()
            return record

    def get(self, record_id: str) -> DispatchRecord | None:
        with self.session_factory() as db:
            return db.get(DispatchRecord, record_id)

    def complete(
        self,
        record_id: str,
        status: str,
        processed_at: datetime,
        gateway_message_id: str | None = None,
        error_detail: str | None = None,
        error_code: str | None = None,
    ) -> bool:
        """Write the terminal status, only if the record is still `PENDING`.

        Returns False when another invocation already moved the record out of
        `PENDING`; that write is left untouched.
        """

        validate_transition(PENDING, status)
        with self.session_factory() as db:
            result = db.execute(
                update(DispatchRecord)
                .where(DispatchRecord.id == record_id, DispatchRecord.status == PENDING)
                .values(
                    status=status,
                    processed_at=processed_at,
                    gateway_message_id=gateway_message_id,
                    error_detail=error_detail,
                    error_code=error_code,
                )
            )
            db.commit()
            return result.rowcount == 1

    def list_expired(self, cutoff: datetime, limit: int) -> list[str]:
        """Ids of up to `limit` records created before `cutoff`, any status."""

        with self.session_factory() as db:
            rows = db.execute(
                select(DispatchRecord.id).where(DispatchRecord.created_at < cutoff).limit(limit)
            ).scalars()
            return list(rows)

    def delete_batch(self, record_ids: list[str]) -> int:
        """Delete the given records in a single transaction."""

        with self.session_factory() as db:
            result = db.execute(delete(DispatchRecord).where(DispatchRecord.id.in_(record_ids)))
            db.commit()
            return result.rowcount
