from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Callable, Optional

from models.scan_record import ScanRecord
from models.types import as_utc, utc_now
from utils.checkin_errors import NotUndoableError, UndoRejection
from utils.ledger_store import LedgerStore

logger = logging.getLogger(__name__)


class UndoCoordinator:
    """
    Reverses the active scan of a ticket once, inside the undo window.

    Only the active record can be reversed; it is always the ticket's most
    recent scan. The reversal itself is one conditional update, so two
    concurrent undo requests cannot both succeed.
    """

    def __init__(
        self,
        store: LedgerStore,
        undo_window: timedelta,
        clock: Callable[[], datetime] = utc_now,
    ):
        if undo_window <= timedelta(0):
            raise ValueError("undo_window must be positive")
        self.store = store
        self.undo_window = undo_window
        self.clock = clock

    def _resolve(self, ticket_id: Optional[str], scan_record_id: Optional[str]) -> ScanRecord:
        if scan_record_id:
            record = self.store.get(scan_record_id)
            if record is None:
                raise NotUndoableError(UndoRejection.NO_ACTIVE_SCAN)
            if ticket_id and record.ticket_id != ticket_id:
                raise ValueError(f"Scan {scan_record_id} does not belong to ticket {ticket_id}")
            if not record.is_active:
                raise NotUndoableError(UndoRejection.ALREADY_UNDONE, record)
            return record

        record = self.store.find_active_by_ticket(ticket_id)
        if record is not None:
            return record

        latest = self.store.find_latest_by_ticket(ticket_id)
        if latest is not None and not latest.is_active:
            raise NotUndoableError(UndoRejection.ALREADY_UNDONE, latest)
        raise NotUndoableError(UndoRejection.NO_ACTIVE_SCAN)

    def undo(
        self,
        undone_by: str,
        ticket_id: Optional[str] = None,
        scan_record_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> ScanRecord:
        undone_by = str(undone_by or "").strip()
        if not undone_by:
            raise ValueError("'undone_by' is required to undo a scan")
        # same trimming as the guard applies on scan
        ticket_id = str(ticket_id or "").strip() or None
        scan_record_id = str(scan_record_id or "").strip() or None
        if not ticket_id and not scan_record_id:
            raise ValueError("Either 'ticket_id' or 'scan_record_id' is required")

        now = as_utc(now or self.clock())
        try:
            target = self._resolve(ticket_id, scan_record_id)
            if not target.is_undoable(now, self.undo_window):
                raise NotUndoableError(UndoRejection.WINDOW_EXPIRED, target)

            # a clock behind the scan time must not produce undone_at < scanned_at
            undone_at = max(now, target.scanned_at)
            record = self.store.mark_undone(target.id, undone_by, undone_at, self.undo_window)
        except NotUndoableError as exc:
            logger.info(
                f"🚫 Undo rejected ({exc.reason.value}) for "
                f"{'scan ' + scan_record_id if scan_record_id else 'ticket ' + str(ticket_id)} by {undone_by}"
            )
            raise

        logger.info(f"↩️ Ticket {record.ticket_id} is free again (scan {record.id} undone by {undone_by})")
        return record
