#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Script: expire_undo_flags.py
Description:
    Clears the stored can_undo flag of every active scan whose undo window has
    elapsed. Meant for a cron job; the API already derives canUndo from the
    scan time, so running late never reopens an expired undo.
"""

import logging
import os
import sys
import time
from typing import Optional

# ─────────────────────────────────────────────
# 🧩 Project path
# ─────────────────────────────────────────────
BASE_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
sys.path.append(BASE_DIR)

# ─────────────────────────────────────────────
# 📦 Internal imports
# ─────────────────────────────────────────────
from sqlalchemy.orm import Session  # noqa: E402

from database import SessionLocal  # noqa: E402
from utils.checkin_config import settings  # noqa: E402
from utils.checkin_errors import StorageUnavailableError  # noqa: E402
from utils.ledger_store import LedgerStore  # noqa: E402

logger = logging.getLogger("expire_undo_flags")


def expire_undo_flags(session: Optional[Session] = None) -> int:
    own_session = session is None
    session = session or SessionLocal()
    start = time.time()
    try:
        expired = LedgerStore(session).expire_undo_flags(settings.undo_window)
    finally:
        if own_session:
            session.close()
    logger.info(f"⏱️ {expired} scan(s) closed for undo in {time.time() - start:.2f}s")
    return expired


# ─────────────────────────────────────────────
# 🚀 Main
# ─────────────────────────────────────────────
if __name__ == "__main__":
    logging.basicConfig(level=settings.log_level, format="%(asctime)s [%(levelname)s] %(message)s")
    try:
        expire_undo_flags()
    except StorageUnavailableError as exc:
        logger.error(f"❌ {exc}")
        sys.exit(1)
