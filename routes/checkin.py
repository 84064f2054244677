from __future__ import annotations

from datetime import datetime
from typing import Any, Callable, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session

from database import get_db
from models.scan_record import ScanRecord
from models.types import utc_now
from utils.checkin_config import CheckinSettings, settings as default_settings
from utils.checkin_errors import AlreadyCheckedInError, NotUndoableError, StorageUnavailableError
from utils.checkin_guard import CheckinGuard
from utils.ledger_store import LedgerStore
from utils.scan_feed import ScanFeedService
from utils.undo_coordinator import UndoCoordinator

router = APIRouter(prefix="/api/v1/checkin", tags=["Check-in"])


class ScanIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    ticket_id: str = Field(..., alias="ticketId", min_length=1, max_length=64)
    ticket_code: str = Field(..., alias="ticketCode", min_length=1, max_length=64)
    event_id: str = Field(..., alias="eventId", min_length=1, max_length=64)
    event_title: str = Field(..., alias="eventTitle", min_length=1, max_length=255)
    participant_name: str = Field(..., alias="participantName", min_length=1, max_length=255)
    participant_id: Optional[str] = Field(default=None, alias="participantId", max_length=64)
    scanned_by: str = Field(..., alias="scannedBy", min_length=1, max_length=64)
    scanned_by_name: str = Field(..., alias="scannedByName", min_length=1, max_length=255)


class UndoIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    undone_by: str = Field(..., alias="undoneBy", min_length=1, max_length=64)
    ticket_id: Optional[str] = Field(default=None, alias="ticketId", max_length=64)
    scan_record_id: Optional[str] = Field(default=None, alias="scanRecordId", max_length=32)


# -------------------------------------------------------------------------
# 🔹 Dependencies (overridable in tests)
# -------------------------------------------------------------------------
def get_settings() -> CheckinSettings:
    return default_settings


def get_clock() -> Callable[[], datetime]:
    return utc_now


def get_store(db: Session = Depends(get_db)) -> LedgerStore:
    return LedgerStore(db)


def _serialize(record: Optional[ScanRecord], conf: CheckinSettings, clock: Callable[[], datetime]):
    if record is None:
        return None
    return record.to_dict(clock(), conf.undo_window)


def _storage_error(exc: StorageUnavailableError) -> HTTPException:
    return HTTPException(
        status_code=503,
        detail={
            "error": exc.code,
            "message": str(exc),
            "operation": exc.operation,
            "outcomeUnknown": exc.outcome_unknown,
        },
    )


# -------------------------------------------------------------------------
# 🔹 Writes
# -------------------------------------------------------------------------
@router.post("/scans", status_code=201)
def scan_ticket(
    payload: ScanIn,
    store: LedgerStore = Depends(get_store),
    conf: CheckinSettings = Depends(get_settings),
    clock: Callable[[], datetime] = Depends(get_clock),
) -> Dict[str, Any]:
    guard = CheckinGuard(store, clock=clock)
    try:
        record = guard.scan(
            ticket_id=payload.ticket_id,
            ticket_code=payload.ticket_code,
            event_id=payload.event_id,
            event_title=payload.event_title,
            participant_name=payload.participant_name,
            participant_id=payload.participant_id,
            scanned_by=payload.scanned_by,
            scanned_by_name=payload.scanned_by_name,
        )
    except AlreadyCheckedInError as exc:
        raise HTTPException(
            status_code=409,
            detail={
                "error": exc.code,
                "message": str(exc),
                "existing": _serialize(exc.existing, conf, clock),
            },
        )
    except StorageUnavailableError as exc:
        raise _storage_error(exc)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail={"error": "invalid_request", "message": str(exc)})
    return _serialize(record, conf, clock)


@router.post("/undo")
def undo_scan(
    payload: UndoIn,
    store: LedgerStore = Depends(get_store),
    conf: CheckinSettings = Depends(get_settings),
    clock: Callable[[], datetime] = Depends(get_clock),
) -> Dict[str, Any]:
    coordinator = UndoCoordinator(store, conf.undo_window, clock=clock)
    try:
        record = coordinator.undo(
            undone_by=payload.undone_by,
            ticket_id=payload.ticket_id,
            scan_record_id=payload.scan_record_id,
        )
    except NotUndoableError as exc:
        raise HTTPException(
            status_code=409,
            detail={
                "error": exc.code,
                "reason": exc.reason.value,
                "message": str(exc),
                "record": _serialize(exc.record, conf, clock),
            },
        )
    except StorageUnavailableError as exc:
        raise _storage_error(exc)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail={"error": "invalid_request", "message": str(exc)})
    return _serialize(record, conf, clock)


# -------------------------------------------------------------------------
# 🔹 Reads
# -------------------------------------------------------------------------
@router.get("/tickets/{ticket_id}/active")
def get_active_scan(
    ticket_id: str,
    store: LedgerStore = Depends(get_store),
    conf: CheckinSettings = Depends(get_settings),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    try:
        record = store.find_active_by_ticket(ticket_id)
    except StorageUnavailableError as exc:
        raise _storage_error(exc)
    if not record:
        raise HTTPException(status_code=404, detail="Ticket not checked in")
    return _serialize(record, conf, clock)


@router.get("/tickets/code/{ticket_code}/active")
def get_active_scan_by_code(
    ticket_code: str,
    store: LedgerStore = Depends(get_store),
    conf: CheckinSettings = Depends(get_settings),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    try:
        record = store.find_active_by_code(ticket_code)
    except StorageUnavailableError as exc:
        raise _storage_error(exc)
    if not record:
        raise HTTPException(status_code=404, detail="Ticket not checked in")
    return _serialize(record, conf, clock)


@router.get("/events/{event_id}/scans")
def event_scans(
    event_id: str,
    limit: Optional[int] = None,
    before: Optional[datetime] = None,
    before_id: Optional[str] = Query(default=None, alias="beforeId", max_length=32),
    store: LedgerStore = Depends(get_store),
    conf: CheckinSettings = Depends(get_settings),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    feed = ScanFeedService(store, conf.undo_window, clock=clock)
    try:
        return feed.event_feed(
            event_id, before=before, limit=conf.clamp_page_size(limit), before_id=before_id
        )
    except StorageUnavailableError as exc:
        raise _storage_error(exc)


@router.get("/operators/{operator_id}/scans")
def operator_scans(
    operator_id: str,
    limit: Optional[int] = None,
    before: Optional[datetime] = None,
    before_id: Optional[str] = Query(default=None, alias="beforeId", max_length=32),
    store: LedgerStore = Depends(get_store),
    conf: CheckinSettings = Depends(get_settings),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    feed = ScanFeedService(store, conf.undo_window, clock=clock)
    try:
        return feed.operator_feed(
            operator_id, before=before, limit=conf.clamp_page_size(limit), before_id=before_id
        )
    except StorageUnavailableError as exc:
        raise _storage_error(exc)


@router.get("/events/{event_id}/stats")
def event_stats(
    event_id: str,
    store: LedgerStore = Depends(get_store),
    conf: CheckinSettings = Depends(get_settings),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    feed = ScanFeedService(store, conf.undo_window, clock=clock)
    try:
        return feed.event_stats(event_id)
    except StorageUnavailableError as exc:
        raise _storage_error(exc)
