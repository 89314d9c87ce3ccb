from __future__ import annotations

from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, text

import app.main as main_module
from app.config import settings
from app.db.migration_check import (
    assert_db_is_up_to_date,
    ensure_schema,
    get_alembic_head_revision,
    get_current_db_revision,
    maybe_create_schema,
)
from app.main import app


@pytest.fixture
def sqlite_engine(tmp_path: Path):
    db_path = tmp_path / "migration-check.db"
    engine = create_engine(f"sqlite+pysqlite:///{db_path}")
    try:
        yield engine
    finally:
        engine.dispose()


@pytest.fixture
def startup_engine(monkeypatch, sqlite_engine):
    monkeypatch.setattr(main_module, "engine", sqlite_engine)
    monkeypatch.setattr(settings, "enable_test_auth_bypass", False)
    return sqlite_engine


def _stamp(engine, revision: str) -> None:
    with engine.begin() as connection:
        connection.execute(text("CREATE TABLE alembic_version (version_num VARCHAR(32) NOT NULL)"))
        connection.execute(
            text("INSERT INTO alembic_version (version_num) VALUES (:rev)"), {"rev": revision}
        )


def _has_table(engine, name: str) -> bool:
    with engine.begin() as connection:
        found = connection.execute(
            text("SELECT name FROM sqlite_master WHERE type='table' AND name=:name"),
            {"name": name},
        ).scalar_one_or_none()
    return found == name


def test_head_revision_is_the_delivery_tables_migration():
    assert get_alembic_head_revision() == "20261001_0001"


def test_assert_db_is_up_to_date_fails_when_alembic_version_missing(sqlite_engine):
    with pytest.raises(RuntimeError, match="Database schema at no revision"):
        assert_db_is_up_to_date(sqlite_engine)


def test_assert_db_is_up_to_date_passes_at_head(sqlite_engine):
    head = get_alembic_head_revision()
    _stamp(sqlite_engine, head)

    assert get_current_db_revision(sqlite_engine) == head
    assert_db_is_up_to_date(sqlite_engine)


def test_maybe_create_schema_creates_tables_when_enabled(sqlite_engine, monkeypatch):
    monkeypatch.setattr(settings, "auto_create_schema", True)
    monkeypatch.setattr(settings, "app_mode", "development")

    maybe_create_schema(sqlite_engine)

    for table in ("orders", "delivery_companies", "delivery_events"):
        assert _has_table(sqlite_engine, table)


def test_maybe_create_schema_refuses_production(sqlite_engine, monkeypatch):
    monkeypatch.setattr(settings, "auto_create_schema", True)
    monkeypatch.setattr(settings, "app_mode", "production")

    with pytest.raises(RuntimeError, match="AUTO_CREATE_SCHEMA"):
        maybe_create_schema(sqlite_engine)


def test_ensure_schema_skips_creation_when_disabled(sqlite_engine, monkeypatch):
    monkeypatch.setattr(settings, "auto_create_schema", False)
    monkeypatch.setattr(settings, "app_mode", "pilot")

    ensure_schema(sqlite_engine)

    assert not _has_table(sqlite_engine, "orders")


def test_app_startup_fails_fast_in_production_when_revision_missing(startup_engine, monkeypatch):
    monkeypatch.setattr(settings, "app_mode", "production")
    monkeypatch.setattr(settings, "auto_create_schema", False)

    with pytest.raises(RuntimeError, match="alembic upgrade head"):
        with TestClient(app):
            pass


def test_app_startup_auto_creates_outside_production(startup_engine, monkeypatch):
    monkeypatch.setattr(settings, "app_mode", "development")
    monkeypatch.setattr(settings, "auto_create_schema", True)

    with TestClient(app):
        pass

    assert _has_table(startup_engine, "orders")


def test_app_startup_passes_when_db_at_head(startup_engine, monkeypatch):
    _stamp(startup_engine, get_alembic_head_revision())
    monkeypatch.setattr(settings, "app_mode", "production")
    monkeypatch.setattr(settings, "auto_create_schema", False)

    with TestClient(app):
        pass
