"""
Several request handlers racing on one ticket, each with its own connection,
against a file-backed SQLite database. Correctness comes from the table's
constraints alone; no lock is shared between the threads.
"""

from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta

import pytest
from sqlalchemy.orm import sessionmaker

from conftest import T0, UNDO_WINDOW
from database import make_engine
from models.scan_record import ScanRecord
from utils.checkin_errors import AlreadyCheckedInError, NotUndoableError, UndoRejection
from utils.checkin_guard import CheckinGuard
from utils.ledger_store import LedgerStore
from utils.undo_coordinator import UndoCoordinator

WORKERS = 8


@pytest.fixture
def file_session_local(tmp_path):
    engine = make_engine(f"sqlite:///{tmp_path / 'ledger.db'}", storage_timeout=30)
    ScanRecord.__table__.create(bind=engine, checkfirst=True)
    yield sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)
    engine.dispose()


def _race(session_local, action):
    barrier = threading.Barrier(WORKERS)

    def worker(index):
        with session_local() as session:
            store = LedgerStore(session)
            barrier.wait()
            try:
                return "ok", action(store, index)
            except (AlreadyCheckedInError, NotUndoableError) as exc:
                return "rejected", exc

    with ThreadPoolExecutor(max_workers=WORKERS) as pool:
        return list(pool.map(worker, range(WORKERS)))


def _scan(store, index):
    return CheckinGuard(store, clock=lambda: T0).scan(
        ticket_id="T1",
        ticket_code="RACE-1",
        event_id="E1",
        event_title="Summer Festival",
        participant_name="Ada Lovelace",
        scanned_by=f"O{index}",
        scanned_by_name=f"Operator {index}",
    )


def test_concurrent_scans_admit_exactly_one(file_session_local):
    results = _race(file_session_local, _scan)

    winners = [value for status, value in results if status == "ok"]
    losers = [value for status, value in results if status == "rejected"]
    assert len(winners) == 1
    assert len(losers) == WORKERS - 1
    assert all(isinstance(err, AlreadyCheckedInError) for err in losers)
    assert all(err.existing.id == winners[0].id for err in losers)

    with file_session_local() as session:
        assert len(list(LedgerStore(session).list_by_event("E1"))) == 1


def test_concurrent_undos_reverse_exactly_once(file_session_local):
    with file_session_local() as session:
        _scan(LedgerStore(session), 0)

    def undo(store, index):
        coordinator = UndoCoordinator(store, UNDO_WINDOW, clock=lambda: T0 + timedelta(seconds=5))
        return coordinator.undo(f"O{index}", ticket_id="T1")

    results = _race(file_session_local, undo)

    winners = [value for status, value in results if status == "ok"]
    losers = [value for status, value in results if status == "rejected"]
    assert len(winners) == 1
    assert all(err.reason is UndoRejection.ALREADY_UNDONE for err in losers)

    with file_session_local() as session:
        record = LedgerStore(session).find_latest_by_ticket("T1")
    assert record.undone_by == winners[0].undone_by


def test_scan_after_concurrent_undo_gets_fresh_record(file_session_local):
    with file_session_local() as session:
        store = LedgerStore(session)
        first = _scan(store, 0)
        UndoCoordinator(store, UNDO_WINDOW, clock=lambda: T0 + timedelta(seconds=1)).undo("O0", ticket_id="T1")

    results = _race(file_session_local, _scan)

    winners = [value for status, value in results if status == "ok"]
    assert len(winners) == 1
    assert winners[0].id != first.id
