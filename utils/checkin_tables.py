from __future__ import annotations

import logging

from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from models.scan_record import ScanRecord

logger = logging.getLogger(__name__)


def ensure_checkin_tables(engine: Engine) -> bool:
    """Creates scan_records with its indexes and constraints (idempotent)."""
    try:
        ScanRecord.__table__.create(bind=engine, checkfirst=True)
    except SQLAlchemyError as exc:
        logger.warning(f"⚠️ Could not create scan_records automatically: {exc}")
        return False
    logger.info("✅ scan_records table checked/created.")
    return True
