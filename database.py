import logging
from contextlib import contextmanager
from typing import Iterator, Sequence

from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from config import get_settings
from errors import TransientStorageError


logger = logging.getLogger(__name__)


def _create_engine() -> Engine:
    settings = get_settings()
    connect_args: dict[str, object] = {}
    if settings.database_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    from sqlalchemy import create_engine

    eng = create_engine(settings.database_url, connect_args=connect_args)
    if settings.database_url.startswith("sqlite"):
        event.listen(eng, "connect", _enable_sqlite_pragmas)
    return eng


def _enable_sqlite_pragmas(dbapi_conn, _record):
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL;")
    cursor.execute("PRAGMA foreign_keys=ON;")
    cursor.close()


engine = _create_engine()
SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


class Base(DeclarativeBase):
    pass


def commit(session: Session) -> None:
    try:
        session.commit()
    except OperationalError as exc:
        session.rollback()
        raise TransientStorageError(str(exc)) from exc


def commit_in_chunks(session: Session, rows: Sequence[object], chunk_size: int) -> int:
    """Add and commit rows in sequential chunks of at most chunk_size.

    A failing chunk is rolled back on its own; chunks committed before it stay
    committed, so callers must be able to retry idempotently.
    """
    if chunk_size <= 0:
        raise ValueError("chunk_size must be positive")
    committed = 0
    for start in range(0, len(rows), chunk_size):
        chunk = rows[start : start + chunk_size]
        session.add_all(chunk)
        commit(session)
        committed += len(chunk)
        logger.debug(f"chunk_committed: size={len(chunk)} total={committed}")
    return committed


@contextmanager
def session_scope() -> Iterator[Session]:
    session: Session = SessionLocal()
    try:
        yield session
        commit(session)
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
