from __future__ import annotations

import os
from contextlib import contextmanager
from typing import Generator

from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlmodel import Session, SQLModel, create_engine
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from .config import Settings


def _is_sqlite(database_url: str) -> bool:
    return database_url.startswith("sqlite")


def _ensure_sqlite_dir(database_url: str) -> None:
    """
    Ensure the parent folder exists for SQLite file-based DB URLs like:
      sqlite:///./data/guin.sqlite
      sqlite:////absolute/path/to/db.sqlite
    """
    if not database_url.startswith("sqlite:///"):
        return

    path = database_url.replace("sqlite:///", "", 1)
    folder = os.path.dirname(path)
    if folder:
        os.makedirs(folder, exist_ok=True)


def _sqlite_pragmas(engine: Engine) -> None:
    @event.listens_for(engine, "connect")
    def _set_sqlite_pragmas(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL;")
        cursor.execute("PRAGMA synchronous=NORMAL;")
        cursor.execute("PRAGMA foreign_keys=ON;")
        cursor.execute("PRAGMA busy_timeout=5000;")
        cursor.close()


def connect(settings: Settings) -> Engine:
    """
    Create the engine for settings.database_url and check it answers.

    - SQLite gets its folder created, pragmas, and check_same_thread=False
      (requests run on the server thread, not the one that created the engine)
    - Raises on an unreachable database; callers treat that as fatal
    """
    database_url = settings.database_url

    if _is_sqlite(database_url):
        _ensure_sqlite_dir(database_url)

    connect_args = {"check_same_thread": False} if _is_sqlite(database_url) else {}

    engine = create_engine(
        database_url,
        echo=False,
        connect_args=connect_args,
        pool_pre_ping=True,
    )

    if _is_sqlite(database_url):
        _sqlite_pragmas(engine)

    # Fail now rather than on the first request.
    with engine.connect():
        pass

    return engine


def register_models() -> None:
    """Import every table model so SQLModel.metadata knows about it."""
    from .models.service_start import ServiceStart  # noqa: F401


def migrate(engine: Engine) -> None:
    """
    Register models, then create missing tables.
    Non-destructive: create_all will not drop or alter existing tables.
    """
    register_models()
    SQLModel.metadata.create_all(engine)


def record_start(engine: Engine, settings: Settings):
    """Write the ServiceStart row for this process."""
    from .models.service_start import ServiceStart

    with session_scope(engine) as session:
        row = ServiceStart(service_name=settings.app_name, port=settings.port)
        session.add(row)
        session.flush()
        session.refresh(row)
        session.expunge(row)
    return row


class DatabaseMiddleware(BaseHTTPMiddleware):
    """Expose the engine on every request as request.state.db."""

    def __init__(self, app, engine: Engine) -> None:
        super().__init__(app)
        self.engine = engine

    async def dispatch(self, request: Request, call_next):
        request.state.db = self.engine
        return await call_next(request)


def get_db(request: Request) -> Generator[Session, None, None]:
    """
    FastAPI dependency:
        def route(db: Session = Depends(get_db)):
            ...
    Uses the engine injected by DatabaseMiddleware; the session is closed
    after each request.
    """
    with Session(request.state.db) as session:
        yield session


@contextmanager
def session_scope(engine: Engine) -> Generator[Session, None, None]:
    """
    Context manager for scripts/jobs that need commit/rollback safety.

    Usage:
        with session_scope(engine) as db:
            db.add(...)
    """
    session = Session(engine)
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
