"""Test configuration and fixtures."""

from pathlib import Path
from typing import Callable, Generator, List

import pytest
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Connection
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from schema_sentinel.config import Settings
from schema_sentinel.db.base import Base
from schema_sentinel.db import models  # noqa: F401

SHOP_SCHEMA = [
    "CREATE TABLE customers (id INTEGER PRIMARY KEY, name TEXT, email TEXT)",
    "CREATE TABLE orders (id INTEGER PRIMARY KEY, customer_id INTEGER, total INTEGER)",
    "INSERT INTO customers (id, name, email) VALUES "
    "(1, 'Ada', 'ada@example.com'), (2, 'Bob', 'bob@example.com'), "
    "(3, 'Bobby', 'bob@example.com')",
    "INSERT INTO orders (id, customer_id, total) VALUES "
    "(1, 1, 10), (2, 2, 20), (3, 7, 30), (4, 8, 40), (5, 9, 50), (6, NULL, 60)",
]


@pytest.fixture
def ledger_engine():
    """Fresh in-memory run ledger shared across threads."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(ledger_engine) -> sessionmaker:
    return sessionmaker(bind=ledger_engine, autoflush=False)


@pytest.fixture
def db_session(session_factory) -> Generator[Session, None, None]:
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def settings() -> Settings:
    """Settings with short timeouts and no collaborator key."""
    return Settings(
        completion_api_key=None,
        run_timeout_seconds=60,
        introspection_timeout_seconds=30,
        module_timeout_seconds=30,
        fix_generation_timeout_seconds=30,
    )


@pytest.fixture
def make_target(tmp_path: Path) -> Callable[[List[str]], str]:
    """Build a file-backed SQLite target from DDL/DML and return its DSN."""
    counter = {"n": 0}

    def build(statements: List[str]) -> str:
        counter["n"] += 1
        path = tmp_path / f"target_{counter['n']}.db"
        engine = create_engine(f"sqlite:///{path}")
        with engine.begin() as connection:
            for statement in statements:
                connection.execute(text(statement))
        engine.dispose()
        return f"sqlite:///{path}"

    return build


@pytest.fixture
def shop_dsn(make_target) -> str:
    """Customers plus orders with three orphaned customer references."""
    return make_target(SHOP_SCHEMA)


@pytest.fixture
def target_connection() -> Generator[Connection, None, None]:
    """In-memory SQLite connection for module-level tests."""
    engine = create_engine("sqlite://")
    connection = engine.connect()
    yield connection
    connection.close()
    engine.dispose()
