"""Dispatcher: turns one pending dispatch record into a push and records the outcome.

Every completed invocation on a `PENDING` record ends with exactly one
terminal write. Gateway failures are stored on the record, never raised.
Idempotency is layered: a status guard before sending, a per-record Redis
lock around the send, and a compare-and-swap on the terminal write.
"""

from contextlib import nullcontext
from datetime import datetime, timezone

from pushrelay.common.logging import dispatch_id_ctx, logger
from pushrelay.common.metrics import (
    dispatch_e2e_seconds,
    dispatch_failed_total,
    dispatch_sent_total,
    dispatch_skipped_total,
    gateway_send_seconds,
)
from pushrelay.common.state_machine import FAILED, PENDING, SENT
from pushrelay.common.store import DispatchStore
from pushrelay.common.tracing import dispatch_span
from pushrelay.services.dispatcher.gateway import GatewayError, PushGateway, translate_error
from pushrelay.services.dispatcher.schemas import NotificationPayload, PlatformOptions


def default_platform_options(settings) -> PlatformOptions:
    return PlatformOptions(
        channel_id=settings.fcm_default_channel_id,
        sound=settings.fcm_default_sound,
        priority=settings.fcm_default_priority,
        badge=settings.fcm_default_badge,
    )


class DispatcherService:
    """Delivers dispatch records through a push gateway."""

    def __init__(
        self,
        store: DispatchStore,
        gateway: PushGateway,
        defaults: PlatformOptions,
        locks=None,
        service_name: str = "dispatcher",
    ) -> None:
        self.store = store
        self.gateway = gateway
        self.defaults = defaults
        self.locks = locks
        self.service_name = service_name

    def _skip(self, record_id: str, reason: str) -> None:
        logger.info("dispatch skipped record_id=%s reason=%s", record_id, reason)
        dispatch_skipped_total.labels(service=self.service_name, reason=reason).inc()

    def build_request(self, record) -> tuple[NotificationPayload, PlatformOptions]:
        """Gateway payload and effective platform options for one record."""

        payload = NotificationPayload(title=record.title, body=record.body, data=record.data or {})
        overrides = PlatformOptions(**(record.platform_options or {}))
        return payload, overrides.merged_over(self.defaults)

    def _observe_terminal_e2e(self, record, terminal_state: str) -> None:
        created_at = record.created_at
        if created_at is None:
            return
        if created_at.tzinfo is None:
            created_at = created_at.replace(tzinfo=timezone.utc)
        elapsed = max(0.0, (datetime.now(timezone.utc) - created_at).total_seconds())
        dispatch_e2e_seconds.labels(service=self.service_name, terminal_state=terminal_state).observe(elapsed)

    async def dispatch(self, record_id: str) -> str | None:
        """Send one record if it is still `PENDING`.

        Returns the record's status after the call, or None when the record is
        missing or its terminal write could not be stored.
        """

        token = dispatch_id_ctx.set(record_id)
        try:
            record = self.store.get(record_id)
            if record is None:
                self._skip(record_id, "missing")
                return None
            if record.status != PENDING:
                self._skip(record_id, "already_processed")
                return record.status

            lock = self.locks.hold(record_id) if self.locks is not None else nullcontext(True)
            with lock as acquired:
                if not acquired:
                    self._skip(record_id, "in_flight")
                    return PENDING
                # Another holder may have finished between the first read and the lock.
                record = self.store.get(record_id)
                if record is None:
                    self._skip(record_id, "missing")
                    return None
                if record.status != PENDING:
                    self._skip(record_id, "already_processed")
                    return record.status
                return await self._send_and_record(record)
        finally:
            dispatch_id_ctx.reset(token)

    async def _send_and_record(self, record) -> str | None:
        status = FAILED
        fields: dict = {}
        try:
            payload, options = self.build_request(record)
            logger.info(
                "dispatch sending record_id=%s channel_id=%s priority=%s",
                record.id,
                options.channel_id,
                options.priority,
            )
            timer = gateway_send_seconds.labels(service=self.service_name).time()
            with dispatch_span("push_gateway.send", record.id), timer:
                message_id = await self.gateway.send(record.target, payload, options)
            status = SENT
            fields = {"gateway_message_id": message_id}
        except Exception as exc:
            error = exc if isinstance(exc, GatewayError) else translate_error(exc)
            logger.warning(
                "dispatch failed record_id=%s error_type=%s error_code=%s error=%s",
                record.id,
                type(error).__name__,
                error.code,
                error,
            )
            fields = {"error_detail": str(error), "error_code": error.code}

        try:
            written = self.store.complete(
                record.id,
                status,
                processed_at=datetime.now(timezone.utc),
                **fields,
            )
        except Exception as exc:
            # Not retried: the record stays PENDING until retention removes it.
            logger.exception("dispatch terminal write failed record_id=%s status=%s: %s", record.id, status, exc)
            return None

        if not written:
            logger.warning("dispatch terminal write lost race record_id=%s status=%s", record.id, status)
            current = self.store.get(record.id)
            return current.status if current is not None else None

        if status == SENT:
            dispatch_sent_total.labels(service=self.service_name).inc()
            logger.info("dispatch sent record_id=%s gateway_message_id=%s", record.id, fields["gateway_message_id"])
        else:
            dispatch_failed_total.labels(service=self.service_name, error_code=fields["error_code"]).inc()
        self._observe_terminal_e2e(record, status)
        return status
