from __future__ import annotations

import logging
import os
from collections.abc import Generator

from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, create_engine

logger = logging.getLogger(__name__)

DATABASE_URL = os.getenv(
    "DATABASE_URL",
    "postgresql+psycopg://orgscope:orgscope@db:5432/orgscope",
)

engine = create_engine(DATABASE_URL, pool_pre_ping=True)


def get_engine() -> Engine:
    return engine


def open_session() -> Session:
    """Unit-of-work session whose rows stay readable after commit.

    Services return ORM rows to routers once the session is closed, so
    attributes are not expired on commit.
    """
    return Session(get_engine(), expire_on_commit=False)


def get_session() -> Generator[Session, None, None]:
    with open_session() as session:
        yield session


def check_db_ready() -> bool:
    try:
        with get_engine().connect() as conn:
            conn.execute(text("SELECT 1"))
    except SQLAlchemyError:
        logger.warning("database readiness check failed", exc_info=True)
        return False
    return True
