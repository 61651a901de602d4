from __future__ import annotations

from collections.abc import Generator
from pathlib import Path

import pytest
from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlmodel import SQLModel, create_engine

from orgscope.infra import db
from orgscope.infra.cache import admin_scope_cache, role_statement_cache


@pytest.fixture()
def engine(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Generator[Engine, None, None]:
    db_path = tmp_path / "orgscope_test.db"
    test_engine = create_engine(
        f"sqlite:///{db_path}",
        connect_args={"check_same_thread": False},
    )

    @event.listens_for(test_engine, "connect")
    def _enable_foreign_keys(dbapi_connection: object, _connection_record: object) -> None:
        cursor = dbapi_connection.cursor()  # type: ignore[attr-defined]
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    SQLModel.metadata.create_all(test_engine)
    monkeypatch.setattr(db, "engine", test_engine)
    yield test_engine
    test_engine.dispose()


@pytest.fixture(autouse=True)
def _reset_caches() -> Generator[None, None, None]:
    admin_scope_cache.clear()
    role_statement_cache.clear()
    yield
    admin_scope_cache.clear()
    role_statement_cache.clear()
