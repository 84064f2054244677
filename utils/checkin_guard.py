from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Optional

from models.scan_record import ScanRecord, new_scan_id
from models.types import as_utc, utc_now
from utils.checkin_errors import AlreadyCheckedInError, ConflictError
from utils.ledger_store import LedgerStore

logger = logging.getLogger(__name__)


def _required(name: str, value: Optional[str]) -> str:
    cleaned = str(value or "").strip()
    if not cleaned:
        raise ValueError(f"'{name}' is required for a check-in")
    return cleaned


def _optional(value: Optional[str]) -> Optional[str]:
    cleaned = str(value or "").strip()
    return cleaned or None


class CheckinGuard:
    """
    Admits or rejects a scan attempt.

    The admit decision is the conditional insert itself: two concurrent
    scans of one ticket race on the store's unique index and exactly one
    wins. The loser is reported, never retried.
    """

    def __init__(self, store: LedgerStore, clock: Callable[[], datetime] = utc_now):
        self.store = store
        self.clock = clock

    def scan(
        self,
        ticket_id: str,
        ticket_code: str,
        event_id: str,
        event_title: str,
        participant_name: str,
        scanned_by: str,
        scanned_by_name: str,
        participant_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> ScanRecord:
        ticket_id = _required("ticket_id", ticket_id)
        record = ScanRecord(
            id=new_scan_id(),
            ticket_id=ticket_id,
            ticket_code=_required("ticket_code", ticket_code).upper(),
            event_id=_required("event_id", event_id),
            event_title=_required("event_title", event_title),
            participant_name=_required("participant_name", participant_name),
            participant_id=_optional(participant_id),
            scanned_by=_required("scanned_by", scanned_by),
            scanned_by_name=_required("scanned_by_name", scanned_by_name),
            scanned_at=as_utc(now or self.clock()),
            can_undo=True,
        )

        try:
            self.store.append(record)
        except ConflictError as exc:
            existing = self.store.find_active_by_ticket(ticket_id)
            logger.warning(
                f"⚠️ Duplicate scan rejected for ticket {ticket_id} "
                f"(operator {record.scanned_by}, existing {existing.id if existing else 'n/a'})"
            )
            raise AlreadyCheckedInError(ticket_id, existing) from exc

        logger.info(f"✅ Ticket {ticket_id} checked in for event {record.event_id} by {record.scanned_by}")
        return record
