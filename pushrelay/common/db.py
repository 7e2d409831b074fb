"""Engine and session factory for the dispatch store.

The dispatcher and sweeper services share one database; each process opens a
single engine from `POSTGRES_DSN`.
"""

from sqlalchemy import create_engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker

from pushrelay.common.config import settings


engine = create_engine(settings.postgres_dsn, pool_pre_ping=True)
# Store methods hand records back after their session has closed.
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)


class Base(DeclarativeBase):
    """Declarative base for dispatch records and outbox events."""
