"""Sweeper service lifecycle: daily retention schedule plus probes."""

import asyncio
from contextlib import asynccontextmanager

from fastapi import FastAPI

from pushrelay.common.config import settings
from pushrelay.common.db import SessionLocal
from pushrelay.common.logging import configure_logging
from pushrelay.common.metrics import metrics_response
from pushrelay.common.startup import log_startup_config
from pushrelay.common.store import DispatchStore
from pushrelay.common.tracing import instrument_app, setup_tracing
from pushrelay.services.sweeper.service import RetentionSweeper

configure_logging()
setup_tracing(settings.service_name)
log_startup_config(
    settings.service_name,
    ["SERVICE_NAME", "POSTGRES_DSN", "RETENTION_DAYS", "SWEEP_BATCH_LIMIT", "SWEEP_HOUR_UTC"],
)
sweeper = RetentionSweeper(
    DispatchStore(SessionLocal),
    retention_days=settings.retention_days,
    batch_limit=settings.sweep_batch_limit,
    run_hour_utc=settings.sweep_hour_utc,
    service_name=settings.service_name,
)


@asynccontextmanager
async def lifespan(_: FastAPI):
    """Run the daily sweep schedule with app lifecycle."""

    schedule_task = asyncio.create_task(sweeper.run_schedule())
    yield
    schedule_task.cancel()


app = FastAPI(title="Push Relay Sweeper", lifespan=lifespan)
instrument_app(app)


@app.get("/health")
def health():
    """Container health probe endpoint."""

    return {"ok": True}


@app.get("/metrics")
def metrics():
    """Prometheus scrape endpoint."""

    return metrics_response()
