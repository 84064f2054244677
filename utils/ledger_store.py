# =============================================================================
# 📒 utils/ledger_store.py
# -----------------------------------------------------------------------------
# Storage access for scan records. Every write is a single conditional
# statement; the one-active-record-per-ticket rule lives in the database
# (uq_scan_records_active_ticket), never in process memory.
# =============================================================================

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Any, Dict, Iterator, Optional

from sqlalchemy import and_, case, func, or_, select, update
from sqlalchemy.exc import DisconnectionError, IntegrityError, InterfaceError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.orm import Session
from sqlalchemy.sql import Select

from models.scan_record import ScanRecord
from models.types import as_utc, utc_now
from utils.checkin_errors import ConflictError, NotUndoableError, StorageUnavailableError, UndoRejection

logger = logging.getLogger(__name__)

ACTIVE_TICKET_CONSTRAINT = "uq_scan_records_active_ticket"

_UNAVAILABLE_ERRORS = (OperationalError, InterfaceError, DisconnectionError, PoolTimeoutError)


def _is_active_ticket_violation(exc: IntegrityError) -> bool:
    # MySQL/PostgreSQL name the constraint, SQLite names the column
    message = str(exc.orig)
    return ACTIVE_TICKET_CONSTRAINT in message or "active_ticket_id" in message


class ScanFeed:
    """
    Lazy, restartable sequence of scan records, newest first.

    Every iteration runs the query again and streams rows in batches,
    so a feed can be walked more than once and never loads a whole event.
    """

    def __init__(self, store: "LedgerStore", statement: Select, operation: str, batch_size: int = 100):
        self._store = store
        self._statement = statement
        self._operation = operation
        self._batch_size = batch_size

    def __iter__(self) -> Iterator[ScanRecord]:
        statement = self._statement.execution_options(
            yield_per=self._batch_size,
            populate_existing=True,
        )
        with self._store.storage_call(self._operation):
            result = self._store.db.execute(statement)
            for record in result.scalars():
                yield record


class LedgerStore:
    def __init__(self, db: Session, batch_size: int = 100):
        self.db = db
        self.batch_size = batch_size

    # ---------------------------------------------------------------------
    # 🔹 Error mapping
    # ---------------------------------------------------------------------
    @contextmanager
    def storage_call(self, operation: str, write: bool = False):
        try:
            yield
        except _UNAVAILABLE_ERRORS as exc:
            self.db.rollback()
            logger.error(f"🛑 Storage unavailable during {operation}: {exc}")
            raise StorageUnavailableError(operation, outcome_unknown=write) from exc

    def _first(self, statement: Select, operation: str) -> Optional[ScanRecord]:
        statement = statement.execution_options(populate_existing=True)
        with self.storage_call(operation):
            return self.db.execute(statement).scalars().first()

    # ---------------------------------------------------------------------
    # 🔹 Writes
    # ---------------------------------------------------------------------
    def append(self, record: ScanRecord) -> str:
        """
        Conditional insert: fails with ConflictError when the ticket already
        has an active record. The unique index decides, not a prior read.
        """
        if record.undone_at is None:
            record.active_ticket_id = record.ticket_id

        with self.storage_call("append", write=True):
            self.db.add(record)
            try:
                self.db.commit()
            except IntegrityError as exc:
                self.db.rollback()
                if _is_active_ticket_violation(exc):
                    raise ConflictError(record.ticket_id) from exc
                raise

        logger.info(f"🎫 Scan {record.id} stored for ticket {record.ticket_id}")
        return record.id

    def mark_undone(
        self,
        record_id: str,
        undone_by: str,
        at: datetime,
        undo_window: timedelta,
    ) -> ScanRecord:
        """
        Conditional update: only an active, still-undoable record inside its
        window is reversed. A losing caller gets NotUndoableError with the
        reason found after the update affected no row.
        """
        at = as_utc(at)
        statement = (
            update(ScanRecord)
            .where(
                ScanRecord.id == record_id,
                ScanRecord.undone_at.is_(None),
                ScanRecord.can_undo.is_(True),
                ScanRecord.scanned_at > at - undo_window,
            )
            .values(
                undone_at=at,
                undone_by=undone_by,
                can_undo=False,
                active_ticket_id=None,
                updated_at=utc_now(),
            )
            .execution_options(synchronize_session=False)
        )

        with self.storage_call("mark_undone", write=True):
            affected = self.db.execute(statement).rowcount
            if affected:
                self.db.commit()
            else:
                # end the transaction so the re-read is not served from an old snapshot
                self.db.rollback()

        record = self.get(record_id)
        if not affected:
            raise NotUndoableError(self._rejection_for(record), record)

        logger.info(f"↩️ Scan {record_id} undone by {undone_by}")
        return record

    @staticmethod
    def _rejection_for(record: Optional[ScanRecord]) -> UndoRejection:
        if record is None:
            return UndoRejection.NO_ACTIVE_SCAN
        if record.undone_at is not None:
            return UndoRejection.ALREADY_UNDONE
        return UndoRejection.WINDOW_EXPIRED

    def expire_undo_flags(self, undo_window: timedelta, now: Optional[datetime] = None) -> int:
        """Clears the stored can_undo flag of active records past their window."""
        now = as_utc(now or utc_now())
        statement = (
            update(ScanRecord)
            .where(
                ScanRecord.undone_at.is_(None),
                ScanRecord.can_undo.is_(True),
                ScanRecord.scanned_at <= now - undo_window,
            )
            .values(can_undo=False, updated_at=utc_now())
            .execution_options(synchronize_session=False)
        )
        with self.storage_call("expire_undo_flags", write=True):
            affected = self.db.execute(statement).rowcount
            self.db.commit()

        if affected:
            logger.info(f"⏱️ Undo window closed for {affected} scan(s)")
        return affected

    # ---------------------------------------------------------------------
    # 🔹 Point lookups
    # ---------------------------------------------------------------------
    def get(self, record_id: str) -> Optional[ScanRecord]:
        return self._first(select(ScanRecord).where(ScanRecord.id == record_id), "get")

    def find_active_by_ticket(self, ticket_id: str) -> Optional[ScanRecord]:
        return self._first(
            select(ScanRecord).where(ScanRecord.active_ticket_id == ticket_id.strip()),
            "find_active_by_ticket",
        )

    def find_active_by_code(self, ticket_code: str) -> Optional[ScanRecord]:
        statement = (
            select(ScanRecord)
            .where(
                ScanRecord.ticket_code == ticket_code.strip().upper(),
                ScanRecord.undone_at.is_(None),
            )
            .order_by(ScanRecord.scanned_at.desc())
            .limit(1)
        )
        return self._first(statement, "find_active_by_code")

    def find_latest_by_ticket(self, ticket_id: str) -> Optional[ScanRecord]:
        statement = (
            select(ScanRecord)
            .where(ScanRecord.ticket_id == ticket_id.strip())
            .order_by(ScanRecord.scanned_at.desc(), ScanRecord.id.desc())
            .limit(1)
        )
        return self._first(statement, "find_latest_by_ticket")

    # ---------------------------------------------------------------------
    # 🔹 Range queries
    # ---------------------------------------------------------------------
    def _feed(
        self,
        criterion,
        before: Optional[datetime],
        before_id: Optional[str],
        limit: Optional[int],
        operation: str,
    ) -> ScanFeed:
        statement = select(ScanRecord).where(criterion)
        if before is not None:
            before = as_utc(before)
            if before_id:
                # keyset on (scanned_at, id), same order as the ORDER BY below
                statement = statement.where(
                    or_(
                        ScanRecord.scanned_at < before,
                        and_(ScanRecord.scanned_at == before, ScanRecord.id < before_id),
                    )
                )
            else:
                statement = statement.where(ScanRecord.scanned_at < before)
        statement = statement.order_by(ScanRecord.scanned_at.desc(), ScanRecord.id.desc())
        if limit is not None:
            statement = statement.limit(limit)
        return ScanFeed(self, statement, operation, batch_size=self.batch_size)

    def list_by_event(
        self,
        event_id: str,
        before: Optional[datetime] = None,
        limit: Optional[int] = None,
        before_id: Optional[str] = None,
    ) -> ScanFeed:
        return self._feed(ScanRecord.event_id == event_id, before, before_id, limit, "list_by_event")

    def list_by_operator(
        self,
        scanned_by: str,
        before: Optional[datetime] = None,
        limit: Optional[int] = None,
        before_id: Optional[str] = None,
    ) -> ScanFeed:
        return self._feed(ScanRecord.scanned_by == scanned_by, before, before_id, limit, "list_by_operator")

    def count_by_event(self, event_id: str) -> Dict[str, Any]:
        statement = select(
            func.count(ScanRecord.id),
            func.coalesce(func.sum(case((ScanRecord.undone_at.is_(None), 1), else_=0)), 0),
            func.count(func.distinct(ScanRecord.scanned_by)),
            func.max(ScanRecord.scanned_at),
        ).where(ScanRecord.event_id == event_id)

        with self.storage_call("count_by_event"):
            total, active, operators, last_scan = self.db.execute(statement).one()

        total = int(total or 0)
        active = int(active or 0)
        return {
            "total": total,
            "active": active,
            "undone": total - active,
            "operators": int(operators or 0),
            "last_scanned_at": as_utc(last_scan) if isinstance(last_scan, datetime) else last_scan,
        }
