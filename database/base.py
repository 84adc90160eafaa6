from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker, Session
from sqlalchemy.pool import StaticPool
from typing import Generator

from config.settings import settings


Base = declarative_base()


def _enable_sqlite_savepoints(engine: Engine) -> None:
    """pysqlite opens transactions lazily and breaks SAVEPOINT handling.
    Let SQLAlchemy emit BEGIN itself so nested transactions behave like on PostgreSQL.
    """

    @event.listens_for(engine, "connect")
    def _do_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _do_begin(conn):
        conn.exec_driver_sql("BEGIN")


def build_engine(database_url: str, **kwargs) -> Engine:
    """Create an engine for the given URL (SQLite for local/tests, PostgreSQL in production)"""
    if database_url.startswith("sqlite"):
        connect_args = {"check_same_thread": False}
        if ":memory:" in database_url or database_url == "sqlite://":
            kwargs.setdefault("poolclass", StaticPool)
        engine = create_engine(database_url, connect_args=connect_args, **kwargs)
        _enable_sqlite_savepoints(engine)
        return engine

    return create_engine(
        database_url,
        pool_size=settings.DATABASE_POOL_SIZE,
        max_overflow=settings.DATABASE_MAX_OVERFLOW,
        pool_pre_ping=True,
        # A statement that hits the timeout aborts the whole transaction
        connect_args={"options": f"-c statement_timeout={settings.DATABASE_STATEMENT_TIMEOUT_MS}"},
        **kwargs
    )


engine = build_engine(settings.DATABASE_URL)
SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)


def get_db() -> Generator[Session, None, None]:
    """FastAPI dependency: one session per request"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
