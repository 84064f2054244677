# models/types.py
from datetime import datetime, timezone

from sqlalchemy import String
from sqlalchemy.dialects import mysql
from sqlalchemy.types import DateTime, TypeDecorator


def utc_now() -> datetime:
    """Current UTC time, timezone-aware."""
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def exact_key(length: int = 64):
    """
    Opaque identifier column. On MySQL the table collation would fold case and
    trailing spaces, so keys are compared byte for byte there.
    """
    return String(length).with_variant(mysql.VARCHAR(length, collation="utf8mb4_bin"), "mysql")


class UTCDateTime(TypeDecorator):
    """
    Timezone-aware UTC timestamps on every dialect.

    SQLite and MySQL drop tzinfo; values are normalised to UTC on the way in
    and tagged as UTC on the way out, so range comparisons in SQL stay
    consistent across backends. MySQL keeps microseconds (DATETIME(6)).
    """
    impl = DateTime(timezone=True)
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "mysql":
            return dialect.type_descriptor(mysql.DATETIME(fsp=6))
        return dialect.type_descriptor(self.impl)

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        value = as_utc(value)
        if dialect.name == "postgresql":
            return value
        return value.replace(tzinfo=None)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return as_utc(value)
