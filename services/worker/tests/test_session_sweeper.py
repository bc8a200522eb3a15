from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest
from sqlalchemy import Column, DateTime, MetaData, String, Table, create_engine, select
from sqlalchemy.pool import StaticPool

from cwa_worker.config import Settings
from cwa_worker.main import sweep_once

metadata = MetaData()
user_sessions = Table(
    "user_sessions",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("status", String(32), nullable=False),
    Column("expires_at", DateTime(timezone=True), nullable=False),
    Column("updated_at", DateTime(timezone=True)),
)


@pytest.fixture
def engine():
    db_engine = create_engine(
        "sqlite+pysqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    metadata.create_all(db_engine)
    yield db_engine
    db_engine.dispose()


def _insert(engine, *, status: str, expires_at: datetime) -> str:
    session_id = str(uuid4())
    with engine.begin() as conn:
        conn.execute(user_sessions.insert().values(id=session_id, status=status, expires_at=expires_at))
    return session_id


def _status(engine, session_id: str) -> str:
    with engine.connect() as conn:
        return conn.execute(select(user_sessions.c.status).where(user_sessions.c.id == session_id)).scalar_one()


def test_sweep_marks_only_expired_active_sessions(engine):
    now = datetime.now(timezone.utc)
    expired = _insert(engine, status="active", expires_at=now - timedelta(minutes=5))
    fresh = _insert(engine, status="active", expires_at=now + timedelta(hours=1))
    terminated = _insert(engine, status="terminated", expires_at=now - timedelta(minutes=5))

    assert sweep_once(engine, now=now) == 1

    assert _status(engine, expired) == "expired"
    assert _status(engine, fresh) == "active"
    assert _status(engine, terminated) == "terminated"


def test_sweep_is_repeatable(engine):
    now = datetime.now(timezone.utc)
    _insert(engine, status="active", expires_at=now - timedelta(seconds=1))

    assert sweep_once(engine, now=now) == 1
    assert sweep_once(engine, now=now) == 0


def test_settings_reject_non_positive_interval():
    with pytest.raises(ValueError):
        Settings(sweep_interval_seconds=0)
