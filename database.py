# =============================================================================
# 🗄️ database.py
# -----------------------------------------------------------------------------
# SQLAlchemy configuration for the check-in ledger
# MySQL (PyMySQL) by default, any SQLAlchemy URL via DATABASE_URL
# -----------------------------------------------------------------------------

from typing import Any, Dict

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import sessionmaker, declarative_base

from utils.checkin_config import settings


def engine_options(url: str, storage_timeout: float) -> Dict[str, Any]:
    """
    Driver and pool options so that no storage call waits longer than
    the configured timeout.
    """
    backend = make_url(url).get_backend_name()
    timeout = int(max(1, round(storage_timeout)))

    if backend == "sqlite":
        # sqlite3 waits up to `timeout` seconds on a locked database
        return {"connect_args": {"check_same_thread": False, "timeout": storage_timeout}}

    options: Dict[str, Any] = {
        # pool_pre_ping detects dropped connections
        # pool_recycle keeps MySQL connections fresh
        "pool_pre_ping": True,
        "pool_recycle": 280,
        "pool_timeout": storage_timeout,
    }
    if backend == "mysql":
        options["connect_args"] = {
            "connect_timeout": timeout,
            "read_timeout": timeout,
            "write_timeout": timeout,
        }
    elif backend == "postgresql":
        options["connect_args"] = {"connect_timeout": timeout}
    return options


def make_engine(url: str, storage_timeout: float) -> Engine:
    return create_engine(url, **engine_options(url, storage_timeout))


# 🔹 Engine
engine = make_engine(settings.database_url, settings.storage_timeout)

# 🔹 SessionFactory, one session per request
SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    expire_on_commit=False,
    bind=engine,
)

# 🔹 Base class for all models
Base = declarative_base()


# 🔹 Dependency for FastAPI
def get_db():
    """
    Opens a new database session per request and closes it afterwards.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
