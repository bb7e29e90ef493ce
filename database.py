from contextlib import contextmanager
from typing import Iterator, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from config import get_settings


def create_ledger_engine(
    database_url: str, *, timeout_secs: Optional[float] = None, **kwargs
) -> Engine:
    """Build an engine whose every round trip fails after ``timeout_secs``.

    SQLite gets its busy timeout through the driver; PostgreSQL gets a
    server-side ``statement_timeout`` and a bounded wait for a pooled
    connection.
    """
    if timeout_secs is None:
        timeout_secs = get_settings().db_timeout_secs
    connect_args: dict[str, object] = dict(kwargs.pop("connect_args", {}))
    if database_url.startswith("sqlite"):
        connect_args.setdefault("check_same_thread", False)
        connect_args.setdefault("timeout", timeout_secs)
    elif database_url.startswith("postgresql"):
        timeout_ms = int(timeout_secs * 1000)
        connect_args.setdefault("options", f"-c statement_timeout={timeout_ms}")
        connect_args.setdefault("connect_timeout", max(1, int(timeout_secs)))
        kwargs.setdefault("pool_timeout", timeout_secs)

    eng = create_engine(database_url, connect_args=connect_args, **kwargs)
    if database_url.startswith("sqlite"):
        event.listen(eng, "connect", _enable_sqlite_pragmas)
    return eng


def _enable_sqlite_pragmas(dbapi_conn, _record):
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL;")
    cursor.execute("PRAGMA foreign_keys=ON;")
    cursor.close()


engine = create_ledger_engine(get_settings().database_url)
SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


class Base(DeclarativeBase):
    pass


@contextmanager
def session_scope() -> Iterator[Session]:
    session: Session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
