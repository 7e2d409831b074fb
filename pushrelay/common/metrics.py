"""Prometheus metric definitions shared across relay services."""

from prometheus_client import Counter, Gauge, Histogram, generate_latest
from starlette.responses import Response


dispatch_requests_total = Counter("dispatch_requests_total", "Dispatch records accepted", ["service"])
dispatch_sent_total = Counter("dispatch_sent_total", "Dispatch records delivered to the gateway", ["service"])
dispatch_failed_total = Counter(
    "dispatch_failed_total",
    "Dispatch records marked failed",
    ["service", "error_code"],
)
dispatch_skipped_total = Counter(
    "dispatch_skipped_total",
    "Dispatch invocations skipped by the idempotency guard",
    ["service", "reason"],
)
gateway_send_seconds = Histogram("gateway_send_seconds", "Push gateway send latency seconds", ["service"])
dispatch_e2e_seconds = Histogram(
    "dispatch_e2e_seconds",
    "Seconds from record creation to terminal status",
    ["service", "terminal_state"],
)
event_queue_delay_seconds = Histogram(
    "event_queue_delay_seconds",
    "Event queue delay seconds between occurred_at and consume time",
    ["service", "topic"],
)
outbox_pending_total = Gauge(
    "outbox_pending_total",
    "Current count of insertion events not yet published",
    ["service"],
)
outbox_oldest_pending_age_seconds = Gauge(
    "outbox_oldest_pending_age_seconds",
    "Age in seconds of the oldest unpublished insertion event",
    ["service"],
)
sweeper_runs_total = Counter("sweeper_runs_total", "Retention sweeper runs", ["service", "result"])
sweeper_deleted_total = Counter("sweeper_deleted_total", "Dispatch records deleted by retention", ["service"])


def metrics_response() -> Response:
    """Expose all registered Prometheus metrics in text format."""

    return Response(content=generate_latest(), media_type="text/plain")
