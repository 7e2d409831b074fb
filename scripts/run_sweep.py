"""Run one retention sweep, for hosts that trigger it from an external cron."""

import argparse

from pushrelay.common.config import settings
from pushrelay.common.db import SessionLocal
from pushrelay.common.logging import configure_logging
from pushrelay.common.store import DispatchStore
from pushrelay.services.sweeper.service import RetentionSweeper


def main() -> None:
    """CLI entrypoint; exits 0 whether or not anything was deleted."""

    parser = argparse.ArgumentParser(description="Delete dispatch records older than the retention window.")
    parser.add_argument("--retention-days", type=int, default=settings.retention_days)
    parser.add_argument("--batch-limit", type=int, default=settings.sweep_batch_limit)
    args = parser.parse_args()

    configure_logging()
    sweeper = RetentionSweeper(
        DispatchStore(SessionLocal),
        retention_days=args.retention_days,
        batch_limit=args.batch_limit,
        service_name=settings.service_name,
    )
    deleted = sweeper.sweep()
    print(f"Deleted {deleted} expired dispatch records")


if __name__ == "__main__":
    main()
