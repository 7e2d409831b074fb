"""Shared fixtures: in-memory store and fakes for the gateway boundary."""

import os

os.environ.setdefault("POSTGRES_DSN", "sqlite+pysqlite://")

from datetime import datetime, timezone  # noqa: E402

import pytest  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from pushrelay.common.db import Base  # noqa: E402
from pushrelay.common.models import DispatchRecord  # noqa: E402
from pushrelay.common.state_machine import PENDING  # noqa: E402
from pushrelay.common.store import DispatchStore  # noqa: E402


class FakeGateway:
    """Records send calls; returns a fixed id or raises a configured error."""

    def __init__(self, message_id: str = "msg-123", error: Exception | None = None) -> None:
        self.message_id = message_id
        self.error = error
        self.calls = []

    async def send(self, target, payload, options):
        self.calls.append((target, payload, options))
        if self.error is not None:
            raise self.error
        return self.message_id


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite+pysqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)
    engine.dispose()


@pytest.fixture
def store(session_factory):
    return DispatchStore(session_factory)


@pytest.fixture
def make_record(session_factory):
    """Insert a record directly, with a chosen creation time and status."""

    def _make(created_at: datetime | None = None, status: str = PENDING, **fields) -> str:
        with session_factory() as db:
            record = DispatchRecord(
                target=fields.pop("target", "tok1"),
                title=fields.pop("title", "Hi"),
                body=fields.pop("body", "there"),
                data=fields.pop("data", {}),
                status=status,
                created_at=created_at or datetime.now(timezone.utc),
                **fields,
            )
            db.add(record)
            db.commit()
            return record.id

    return _make
