from __future__ import annotations

from datetime import timedelta

import pytest

from utils.checkin_config import build_database_url, load_settings


@pytest.fixture
def clean_env(monkeypatch):
    for name in (
        "DATABASE_URL",
        "MYSQL_USER",
        "MYSQL_PASS",
        "MYSQL_HOST",
        "MYSQL_PORT",
        "MYSQL_DB",
        "CHECKIN_UNDO_WINDOW_SECONDS",
        "CHECKIN_STORAGE_TIMEOUT_SECONDS",
        "CHECKIN_FEED_PAGE_SIZE",
        "CHECKIN_FEED_MAX_PAGE_SIZE",
        "LOG_LEVEL",
    ):
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


def test_defaults(clean_env):
    conf = load_settings()

    assert conf.undo_window == timedelta(seconds=300)
    assert conf.storage_timeout == 5.0
    assert conf.feed_page_size == 50
    assert conf.feed_max_page_size == 200
    assert conf.log_level == "INFO"
    assert conf.database_url.startswith("mysql+pymysql://root:@localhost:3306/checkin_ledger")


def test_mysql_password_is_escaped(clean_env):
    clean_env.setenv("MYSQL_PASS", "p@ss#word")
    assert "p%40ss%23word@" in build_database_url()


def test_database_url_wins(clean_env):
    clean_env.setenv("DATABASE_URL", "sqlite:///ledger.db")
    clean_env.setenv("MYSQL_HOST", "db.internal")
    assert load_settings().database_url == "sqlite:///ledger.db"


def test_overrides(clean_env):
    clean_env.setenv("CHECKIN_UNDO_WINDOW_SECONDS", "90")
    clean_env.setenv("CHECKIN_STORAGE_TIMEOUT_SECONDS", "2.5")
    clean_env.setenv("CHECKIN_FEED_PAGE_SIZE", "10")
    clean_env.setenv("LOG_LEVEL", "debug")

    conf = load_settings()

    assert conf.undo_window == timedelta(seconds=90)
    assert conf.storage_timeout == 2.5
    assert conf.feed_page_size == 10
    assert conf.log_level == "DEBUG"


@pytest.mark.parametrize(
    "name, value",
    [
        ("CHECKIN_UNDO_WINDOW_SECONDS", "0"),
        ("CHECKIN_UNDO_WINDOW_SECONDS", "five minutes"),
        ("CHECKIN_STORAGE_TIMEOUT_SECONDS", "-1"),
        ("CHECKIN_FEED_PAGE_SIZE", "500"),
    ],
)
def test_invalid_values_fail_fast(clean_env, name, value):
    clean_env.setenv(name, value)
    with pytest.raises(ValueError):
        load_settings()


def test_page_size_is_clamped(clean_env):
    conf = load_settings()
    assert conf.clamp_page_size(None) == 50
    assert conf.clamp_page_size(0) == 1
    assert conf.clamp_page_size(10_000) == 200
