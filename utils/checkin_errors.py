from __future__ import annotations

import enum
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from models.scan_record import ScanRecord


class CheckinError(Exception):
    """Base class for every rejection raised by the check-in ledger."""

    code = "checkin_error"


class ConflictError(CheckinError):
    """The store refused a second active record for the same ticket."""

    code = "conflict"

    def __init__(self, ticket_id: str):
        self.ticket_id = ticket_id
        super().__init__(f"Ticket {ticket_id} already has an active scan record")


class AlreadyCheckedInError(CheckinError):
    code = "already_checked_in"

    def __init__(self, ticket_id: str, existing: Optional["ScanRecord"]):
        self.ticket_id = ticket_id
        self.existing = existing
        if existing is not None:
            message = (
                f"Ticket {ticket_id} was already scanned at {existing.scanned_at.isoformat()} "
                f"by {existing.scanned_by_name}"
            )
        else:
            message = f"Ticket {ticket_id} was already scanned"
        super().__init__(message)


class UndoRejection(str, enum.Enum):
    NO_ACTIVE_SCAN = "no_active_scan"
    ALREADY_UNDONE = "already_undone"
    WINDOW_EXPIRED = "window_expired"


_UNDO_MESSAGES = {
    UndoRejection.NO_ACTIVE_SCAN: "There is no scan to undo for this ticket",
    UndoRejection.ALREADY_UNDONE: "This scan has already been undone",
    UndoRejection.WINDOW_EXPIRED: "The undo window for this scan has expired",
}


class NotUndoableError(CheckinError):
    code = "not_undoable"

    def __init__(self, reason: UndoRejection, record: Optional["ScanRecord"] = None):
        self.reason = UndoRejection(reason)
        self.record = record
        super().__init__(_UNDO_MESSAGES[self.reason])


class StorageUnavailableError(CheckinError):
    """
    The store did not answer within the timeout.

    For writes the outcome is unknown: the caller must re-query the active
    record for the ticket before trying again.
    """

    code = "storage_unavailable"

    def __init__(self, operation: str, outcome_unknown: bool = False):
        self.operation = operation
        self.outcome_unknown = outcome_unknown
        hint = "; re-check the ticket before retrying" if outcome_unknown else ""
        super().__init__(f"Storage unavailable during {operation}{hint}")
