# =============================================================================
# 🎫 models/scan_record.py
# -----------------------------------------------------------------------------
# One check-in event per row. Rows are never deleted; the only mutation is
# the one-time undo (undone_at / undone_by / can_undo / active_ticket_id).
# =============================================================================

from __future__ import annotations

import uuid
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from sqlalchemy import Boolean, CheckConstraint, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from database import Base
from models.types import UTCDateTime, exact_key, utc_now


def new_scan_id() -> str:
    return uuid.uuid4().hex


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


class ScanRecord(Base):
    __tablename__ = "scan_records"
    __table_args__ = (
        # NULLs never collide in a unique index: reversed rows free the ticket
        UniqueConstraint("active_ticket_id", name="uq_scan_records_active_ticket"),
        CheckConstraint(
            "undone_at IS NULL OR undone_at >= scanned_at",
            name="ck_scan_records_undo_after_scan",
        ),
        Index("ix_scan_records_ticket_scanned", "ticket_id", "scanned_at"),
        Index("ix_scan_records_event_scanned", "event_id", "scanned_at"),
        Index("ix_scan_records_operator_scanned", "scanned_by", "scanned_at"),
        {
            "mysql_engine": "InnoDB",
            "mysql_charset": "utf8mb4",
            "mysql_collate": "utf8mb4_unicode_ci",
        },
    )

    # ---------------------------------------------------------------------
    # 🔹 Identity
    # ---------------------------------------------------------------------
    id: Mapped[str] = mapped_column(exact_key(32), primary_key=True, default=new_scan_id)

    # ---------------------------------------------------------------------
    # 🔹 Ticket & event (snapshots taken at scan time)
    # ---------------------------------------------------------------------
    ticket_id: Mapped[str] = mapped_column(exact_key(), nullable=False)
    ticket_code: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    event_id: Mapped[str] = mapped_column(exact_key(), nullable=False)
    event_title: Mapped[str] = mapped_column(String(255), nullable=False)

    participant_name: Mapped[str] = mapped_column(String(255), nullable=False)
    participant_id: Mapped[Optional[str]] = mapped_column(exact_key())

    # ---------------------------------------------------------------------
    # 🔹 Operator
    # ---------------------------------------------------------------------
    scanned_by: Mapped[str] = mapped_column(exact_key(), nullable=False)
    scanned_by_name: Mapped[str] = mapped_column(String(255), nullable=False)
    scanned_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, default=utc_now)

    # ---------------------------------------------------------------------
    # 🔹 Undo state
    # ---------------------------------------------------------------------
    can_undo: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    undone_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime())
    undone_by: Mapped[Optional[str]] = mapped_column(exact_key())

    # ticket_id while the scan is active, NULL once reversed
    active_ticket_id: Mapped[Optional[str]] = mapped_column(exact_key())

    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), nullable=False, default=utc_now, onupdate=utc_now
    )

    # ---------------------------------------------------------------------
    # 🔹 Derived state
    # ---------------------------------------------------------------------
    @property
    def is_active(self) -> bool:
        return self.undone_at is None

    def undo_deadline(self, undo_window: timedelta) -> datetime:
        return self.scanned_at + undo_window

    def is_undoable(self, now: datetime, undo_window: timedelta) -> bool:
        return self.is_active and self.can_undo and now < self.undo_deadline(undo_window)

    def to_dict(self, now: datetime, undo_window: timedelta) -> Dict[str, Any]:
        return {
            "id": self.id,
            "ticketId": self.ticket_id,
            "ticketCode": self.ticket_code,
            "eventId": self.event_id,
            "eventTitle": self.event_title,
            "participantName": self.participant_name,
            "participantId": self.participant_id,
            "scannedBy": self.scanned_by,
            "scannedByName": self.scanned_by_name,
            "scannedAt": _iso(self.scanned_at),
            "canUndo": self.is_undoable(now, undo_window),
            "undoDeadline": _iso(self.undo_deadline(undo_window)) if self.is_active else None,
            "undoneAt": _iso(self.undone_at),
            "undoneBy": self.undone_by,
        }

    def __repr__(self) -> str:
        return (
            f"<ScanRecord(id={self.id}, ticket_id={self.ticket_id}, event_id={self.event_id}, "
            f"scanned_by={self.scanned_by}, scanned_at={self.scanned_at}, undone_at={self.undone_at})>"
        )
