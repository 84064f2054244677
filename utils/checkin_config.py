from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import timedelta
from urllib.parse import quote_plus

from dotenv import load_dotenv

# .env is optional, real environment variables always win
load_dotenv()


def _read_float(name: str, default: float) -> float:
    raw = str(os.getenv(name, "") or "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number, got {raw!r}") from exc


def _read_int(name: str, default: int) -> int:
    raw = str(os.getenv(name, "") or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from exc


def build_database_url() -> str:
    """
    DATABASE_URL wins; otherwise the classic MySQL parameters are assembled
    into a PyMySQL URL.
    """
    explicit = str(os.getenv("DATABASE_URL", "") or "").strip()
    if explicit:
        return explicit

    user = os.getenv("MYSQL_USER", "root")
    password = quote_plus(os.getenv("MYSQL_PASS", ""))
    host = os.getenv("MYSQL_HOST", "localhost")
    port = os.getenv("MYSQL_PORT", "3306")
    name = os.getenv("MYSQL_DB", "checkin_ledger")
    return f"mysql+pymysql://{user}:{password}@{host}:{port}/{name}?charset=utf8mb4"


@dataclass(frozen=True)
class CheckinSettings:
    database_url: str
    undo_window: timedelta
    storage_timeout: float
    feed_page_size: int
    feed_max_page_size: int
    log_level: str

    def clamp_page_size(self, limit: int | None) -> int:
        if limit is None:
            return self.feed_page_size
        return max(1, min(int(limit), self.feed_max_page_size))


def load_settings() -> CheckinSettings:
    undo_seconds = _read_float("CHECKIN_UNDO_WINDOW_SECONDS", 300.0)
    if undo_seconds <= 0:
        raise ValueError("CHECKIN_UNDO_WINDOW_SECONDS must be greater than 0")

    storage_timeout = _read_float("CHECKIN_STORAGE_TIMEOUT_SECONDS", 5.0)
    if storage_timeout <= 0:
        raise ValueError("CHECKIN_STORAGE_TIMEOUT_SECONDS must be greater than 0")

    page_size = _read_int("CHECKIN_FEED_PAGE_SIZE", 50)
    max_page_size = _read_int("CHECKIN_FEED_MAX_PAGE_SIZE", 200)
    if page_size < 1 or max_page_size < page_size:
        raise ValueError("CHECKIN_FEED_PAGE_SIZE must be >= 1 and <= CHECKIN_FEED_MAX_PAGE_SIZE")

    return CheckinSettings(
        database_url=build_database_url(),
        undo_window=timedelta(seconds=undo_seconds),
        storage_timeout=storage_timeout,
        feed_page_size=page_size,
        feed_max_page_size=max_page_size,
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
    )


settings = load_settings()
