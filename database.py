from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from config import get_settings


def build_engine(database_url: str, busy_timeout: Optional[float] = None) -> Engine:
    """Create an engine; SQLite connections get WAL and foreign keys.

    SQLite transactions open with BEGIN IMMEDIATE, so the first read of a
    unit of work already holds the write lock and a balance loaded inside it
    cannot be changed underneath.
    """
    connect_args: dict[str, object] = {}
    is_sqlite = database_url.startswith("sqlite")
    if is_sqlite:
        connect_args["check_same_thread"] = False
        if busy_timeout is not None:
            connect_args["timeout"] = busy_timeout
    eng = create_engine(database_url, connect_args=connect_args)
    if is_sqlite:
        if ":memory:" not in database_url:
            event.listen(eng, "connect", _enable_sqlite_pragmas)
        event.listen(eng, "connect", _disable_pysqlite_transactions)
        event.listen(eng, "begin", _begin_immediate)
    return eng


def _enable_sqlite_pragmas(dbapi_conn, _record):
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL;")
    cursor.execute("PRAGMA foreign_keys=ON;")
    cursor.close()


def _disable_pysqlite_transactions(dbapi_conn, _record):
    # the driver would otherwise defer BEGIN until the first write
    dbapi_conn.isolation_level = None


def _begin_immediate(conn):
    conn.exec_driver_sql("BEGIN IMMEDIATE")


engine = build_engine(get_settings().database_url)
SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


class Base(DeclarativeBase):
    pass


@contextmanager
def session_scope(factory: Optional[sessionmaker] = None) -> Iterator[Session]:
    session: Session = (factory or SessionLocal)()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def run_migrations(database_url: Optional[str] = None) -> None:
    """Upgrade the schema to the latest alembic revision."""
    from alembic import command
    from alembic.config import Config

    script_location = Path(__file__).resolve().parent / "alembic"
    cfg = Config()
    cfg.set_main_option("script_location", str(script_location))
    cfg.set_main_option("sqlalchemy.url", database_url or get_settings().database_url)
    command.upgrade(cfg, "head")
