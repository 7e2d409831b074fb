"""JSON logs for the relay services.

Every line carries the service name and the trace, event and dispatch ids of
the work in hand. The consumer loop and the dispatcher set those ids in
context variables, so log calls never pass them explicitly.
"""

import logging
import sys
from contextvars import ContextVar

from pythonjsonlogger.json import JsonFormatter

from pushrelay.common.config import settings


trace_id_ctx: ContextVar[str] = ContextVar("trace_id", default="")
event_id_ctx: ContextVar[str] = ContextVar("event_id", default="")
dispatch_id_ctx: ContextVar[str] = ContextVar("dispatch_id", default="")

# Client libraries that log every poll/request at INFO.
NOISY_LOGGERS = ("aiokafka", "kafka", "urllib3", "google.auth")


class DispatchContextFilter(logging.Filter):
    """Stamp each record with the service name and current correlation ids."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.service_name = settings.service_name
        record.trace_id = trace_id_ctx.get()
        record.event_id = event_id_ctx.get()
        record.dispatch_id = dispatch_id_ctx.get()
        return True


def configure_logging() -> None:
    """Send JSON lines to stdout; call once per process at startup."""

    context_filter = DispatchContextFilter()
    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(context_filter)
    handler.setFormatter(
        JsonFormatter("%(asctime)s %(levelname)s %(service_name)s %(trace_id)s %(event_id)s %(dispatch_id)s %(message)s")
    )

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(settings.log_level)
    root.addFilter(context_filter)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


logger = logging.getLogger("pushrelay")
