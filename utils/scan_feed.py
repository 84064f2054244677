"""
Read-side projections over the scan ledger.

Nothing here writes or locks. On a replicated store the feeds may lag the
primary by the replication delay; a record just written by the guard can be
missing from a feed read a moment later.

Pages are keyed on (scannedAt, id): pass ``nextBefore`` and ``nextBeforeId``
back to get the following page.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from models.types import utc_now
from utils.ledger_store import LedgerStore, ScanFeed


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


class ScanFeedService:
    def __init__(
        self,
        store: LedgerStore,
        undo_window: timedelta,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.undo_window = undo_window
        self.clock = clock

    def _page(self, feed: ScanFeed, limit: Optional[int]) -> Dict[str, Any]:
        now = self.clock()
        items: List[Dict[str, Any]] = [r.to_dict(now, self.undo_window) for r in feed]
        has_more = limit is not None and len(items) == limit
        return {
            "items": items,
            "count": len(items),
            "nextBefore": items[-1]["scannedAt"] if has_more else None,
            "nextBeforeId": items[-1]["id"] if has_more else None,
        }

    def event_feed(
        self,
        event_id: str,
        before: Optional[datetime] = None,
        limit: Optional[int] = None,
        before_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        feed = self.store.list_by_event(event_id, before=before, limit=limit, before_id=before_id)
        return self._page(feed, limit)

    def operator_feed(
        self,
        scanned_by: str,
        before: Optional[datetime] = None,
        limit: Optional[int] = None,
        before_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        feed = self.store.list_by_operator(scanned_by, before=before, limit=limit, before_id=before_id)
        return self._page(feed, limit)

    def event_stats(self, event_id: str) -> Dict[str, Any]:
        counts = self.store.count_by_event(event_id)
        return {
            "eventId": event_id,
            "totalScans": counts["total"],
            "checkedIn": counts["active"],
            "undoneScans": counts["undone"],
            "operators": counts["operators"],
            "lastScannedAt": _iso(counts["last_scanned_at"]),
        }
