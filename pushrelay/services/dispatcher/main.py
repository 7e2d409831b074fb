"""Dispatcher service: intake API, outbox watcher and diagnostic endpoint."""

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from uuid import uuid4

from fastapi import FastAPI, Header, HTTPException

from pushrelay.common.config import settings
from pushrelay.common.db import SessionLocal
from pushrelay.common.locks import RecordLock
from pushrelay.common.logging import configure_logging, dispatch_id_ctx, logger, trace_id_ctx
from pushrelay.common.metrics import dispatch_requests_total, metrics_response
from pushrelay.common.startup import log_startup_config
from pushrelay.common.store import DispatchStore
from pushrelay.common.tracing import instrument_app, setup_tracing
from pushrelay.services.dispatcher.gateway import FcmGateway
from pushrelay.services.dispatcher.schemas import DispatchCreateRequest, DispatchResponse
from pushrelay.services.dispatcher.service import DispatcherService, default_platform_options
from pushrelay.services.dispatcher.watcher import OutboxWatcher

configure_logging()
setup_tracing(settings.service_name)
log_startup_config(
    settings.service_name,
    [
        "SERVICE_NAME",
        "POSTGRES_DSN",
        "KAFKA_BOOTSTRAP_SERVERS",
        "REDIS_URL",
        "DISPATCH_TOPIC",
        "FIREBASE_CREDENTIALS_PATH",
    ],
)
store = DispatchStore(SessionLocal, topic=settings.dispatch_topic)
gateway = FcmGateway(settings.firebase_credentials_path, timeout_seconds=settings.gateway_send_timeout_seconds)
dispatcher = DispatcherService(
    store,
    gateway,
    default_platform_options(settings),
    locks=RecordLock.from_url(settings.redis_url, ttl_seconds=settings.dispatch_lock_ttl_seconds),
    service_name=settings.service_name,
)
watcher = OutboxWatcher(
    SessionLocal,
    dispatcher,
    topic=settings.dispatch_topic,
    group_id=settings.dispatch_consumer_group,
    poll_interval_seconds=settings.outbox_poll_interval_seconds,
    service_name=settings.service_name,
)

AVAILABLE_OPERATIONS = [
    "dispatch - sends a push notification for each newly inserted dispatch record",
    "sweep - deletes dispatch records older than the retention window daily",
]


@asynccontextmanager
async def lifespan(_: FastAPI):
    """Initialise Firebase, then run outbox publisher + dispatch consumer with app lifecycle."""

    # Bad credentials fail startup instead of failing every record.
    gateway.ensure_app()

    publisher_task = asyncio.create_task(watcher.outbox_publisher())
    consumer_task = asyncio.create_task(watcher.start_consumers())
    yield
    publisher_task.cancel()
    consumer_task.cancel()
    await watcher.kafka.close()


app = FastAPI(title="Push Relay Dispatcher", lifespan=lifespan)
instrument_app(app)


@app.post("/internal/dispatches", response_model=DispatchResponse)
def create_dispatch(req: DispatchCreateRequest, x_trace_id: str | None = Header(default=None)):
    """Insert a `PENDING` dispatch record; delivery happens asynchronously."""

    trace_id = x_trace_id or str(uuid4())
    trace_id_ctx.set(trace_id)
    dispatch_requests_total.labels(service=settings.service_name).inc()
    options = req.platform_options.model_dump(exclude_none=True) if req.platform_options else None
    record = store.insert(
        target=req.target,
        title=req.payload.title,
        body=req.payload.body,
        data=req.payload.data,
        platform_options=options,
        trace_id=trace_id,
    )
    dispatch_id_ctx.set(record.id)
    logger.info("dispatch accepted record_id=%s", record.id)
    return DispatchResponse.from_record(record)


@app.get("/dispatches/{record_id}", response_model=DispatchResponse)
def get_dispatch(record_id: str):
    """Fetch current status for one dispatch record."""

    record = store.get(record_id)
    if record is None:
        raise HTTPException(status_code=404, detail="dispatch not found")
    return DispatchResponse.from_record(record)


@app.get("/diagnostics")
def diagnostics():
    """Deployment check listing the relay's operations."""

    return {
        "status": "success",
        "message": "Push relay is deployed and working",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "functions": AVAILABLE_OPERATIONS,
    }


@app.get("/health")
def health():
    """Container health probe endpoint."""

    return {"ok": True}


@app.get("/metrics")
def metrics():
    """Prometheus scrape endpoint."""

    return metrics_response()
