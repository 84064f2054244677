import os
import sys
from datetime import datetime, timedelta, timezone

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# the app must never reach for the MySQL default while testing
os.environ.setdefault("DATABASE_URL", "sqlite://")
sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from database import get_db  # noqa: E402
from main import app  # noqa: E402
from models.scan_record import ScanRecord, new_scan_id  # noqa: E402
from routes.checkin import get_clock, get_settings  # noqa: E402
from utils.checkin_config import CheckinSettings  # noqa: E402
from utils.checkin_guard import CheckinGuard  # noqa: E402
from utils.ledger_store import LedgerStore  # noqa: E402
from utils.undo_coordinator import UndoCoordinator  # noqa: E402

T0 = datetime(2026, 5, 1, 18, 0, 0, tzinfo=timezone.utc)
UNDO_WINDOW = timedelta(seconds=300)


class FakeClock:
    def __init__(self, start: datetime = T0):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def at(self, seconds: float) -> datetime:
        """Moves the clock to T0 + seconds."""
        self.now = T0 + timedelta(seconds=seconds)
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def session_local():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    ScanRecord.__table__.create(bind=engine, checkfirst=True)
    testing_session_local = sessionmaker(
        autocommit=False, autoflush=False, expire_on_commit=False, bind=engine
    )
    yield testing_session_local
    engine.dispose()


@pytest.fixture
def db(session_local):
    with session_local() as session:
        yield session


@pytest.fixture
def store(db):
    return LedgerStore(db)


@pytest.fixture
def guard(store, clock):
    return CheckinGuard(store, clock=clock)


@pytest.fixture
def coordinator(store, clock):
    return UndoCoordinator(store, UNDO_WINDOW, clock=clock)


@pytest.fixture
def make_record():
    def _make(ticket_id="T1", event_id="E1", scanned_by="O1", scanned_at=T0, **extra):
        fields = dict(
            id=new_scan_id(),
            ticket_id=ticket_id,
            ticket_code=f"CODE-{ticket_id}".upper(),
            event_id=event_id,
            event_title="Summer Festival",
            participant_name="Ada Lovelace",
            scanned_by=scanned_by,
            scanned_by_name=f"Operator {scanned_by}",
            scanned_at=scanned_at,
            can_undo=True,
        )
        fields.update(extra)
        return ScanRecord(**fields)

    return _make


@pytest.fixture
def scan(guard):
    """Checks a ticket in through the guard with sensible defaults."""

    def _scan(ticket_id="T1", event_id="E1", operator="O1", now=None, **extra):
        return guard.scan(
            ticket_id=ticket_id,
            ticket_code=extra.pop("ticket_code", f"code-{ticket_id}"),
            event_id=event_id,
            event_title=extra.pop("event_title", "Summer Festival"),
            participant_name=extra.pop("participant_name", "Ada Lovelace"),
            scanned_by=operator,
            scanned_by_name=extra.pop("scanned_by_name", f"Operator {operator}"),
            now=now,
            **extra,
        )

    return _scan


@pytest.fixture
def test_settings():
    return CheckinSettings(
        database_url="sqlite://",
        undo_window=UNDO_WINDOW,
        storage_timeout=5.0,
        feed_page_size=50,
        feed_max_page_size=200,
        log_level="INFO",
    )


@pytest.fixture
def api_overrides(session_local, clock, test_settings):
    def override_get_db():
        session = session_local()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_clock] = lambda: clock
    app.dependency_overrides[get_settings] = lambda: test_settings
    yield
    app.dependency_overrides.clear()


@pytest.fixture
def client(api_overrides):
    from fastapi.testclient import TestClient

    with TestClient(app) as test_client:
        yield test_client


@pytest_asyncio.fixture
async def async_client(api_overrides):
    """Async client over ASGITransport."""
    transport = ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
