"""Retention sweeper for dispatch records.

Once a day, deletes up to one batch of records older than the retention
window, whatever their status. It does not drain: leftovers wait for the next
run.
"""

import asyncio
from datetime import datetime, timedelta, timezone

from pushrelay.common.logging import logger
from pushrelay.common.metrics import sweeper_deleted_total, sweeper_runs_total
from pushrelay.common.store import DispatchStore


def next_run_at(now: datetime, hour_utc: int = 0) -> datetime:
    """First `hour_utc`:00 UTC strictly after `now`."""

    now = now.astimezone(timezone.utc)
    candidate = now.replace(hour=hour_utc, minute=0, second=0, microsecond=0)
    if candidate <= now:
        candidate += timedelta(days=1)
    return candidate


class RetentionSweeper:
    """Deletes expired dispatch records in bounded batches."""

    def __init__(
        self,
        store: DispatchStore,
        retention_days: int = 7,
        batch_limit: int = 500,
        run_hour_utc: int = 0,
        service_name: str = "sweeper",
    ) -> None:
        if not 0 <= run_hour_utc <= 23:
            raise ValueError(f"run_hour_utc must be within 0..23, got {run_hour_utc}")
        self.store = store
        self.retention = timedelta(days=retention_days)
        self.batch_limit = batch_limit
        self.run_hour_utc = run_hour_utc
        self.service_name = service_name

    def sweep(self, now: datetime | None = None) -> int:
        """Run one sweep and return the number of records deleted.

        Errors are logged and end the run with 0; the next run sees the same
        expired set again.
        """

        now = now or datetime.now(timezone.utc)
        cutoff = now - self.retention
        logger.info("sweep started cutoff=%s batch_limit=%s", cutoff.isoformat(), self.batch_limit)
        try:
            expired_ids = self.store.list_expired(cutoff, self.batch_limit)
            if not expired_ids:
                logger.info("sweep found no expired records")
                sweeper_runs_total.labels(service=self.service_name, result="empty").inc()
                return 0
            deleted = self.store.delete_batch(expired_ids)
        except Exception as exc:
            logger.exception("sweep failed cutoff=%s: %s", cutoff.isoformat(), exc)
            sweeper_runs_total.labels(service=self.service_name, result="error").inc()
            return 0

        sweeper_deleted_total.labels(service=self.service_name).inc(deleted)
        sweeper_runs_total.labels(service=self.service_name, result="deleted").inc()
        logger.info("sweep deleted count=%s", deleted)
        return deleted

    async def run_schedule(self) -> None:
        """Sleep until the next daily run time, sweep, repeat."""

        while True:
            now = datetime.now(timezone.utc)
            run_at = next_run_at(now, self.run_hour_utc)
            logger.info("sweep scheduled run_at=%s", run_at.isoformat())
            await asyncio.sleep((run_at - now).total_seconds())
            await asyncio.to_thread(self.sweep)
