"""Database configuration and session management.

The durable store is the only place shared state lives: projects, jobs and
rate-limit records are always re-read from here before acting, never cached
between invocations.
"""

from datetime import datetime, timezone

from sqlalchemy import DateTime, create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool
from sqlalchemy.types import TypeDecorator

from .core.config import settings

DATABASE_URL = settings.database_url


def is_postgresql(url: str = DATABASE_URL) -> bool:
    """Check if the configured database is PostgreSQL."""
    return url.startswith("postgresql")


def build_engine(url: str, storage_timeout_seconds: float) -> Engine:
    """Create an engine with an explicit per-operation storage timeout.

    SQLite gets a busy timeout (lock waits fail instead of hanging);
    PostgreSQL gets ``statement_timeout`` plus the pool knobs from settings.
    In-memory SQLite shares one connection so every session sees the same data.
    """
    if url.startswith("sqlite"):
        kwargs: dict = {
            "connect_args": {"check_same_thread": False, "timeout": storage_timeout_seconds},
        }
        if ":memory:" in url or url in ("sqlite://", "sqlite:///"):
            kwargs["poolclass"] = StaticPool
        eng = create_engine(url, **kwargs)

        @event.listens_for(eng, "connect")
        def _set_sqlite_pragma(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        return eng

    timeout_ms = int(storage_timeout_seconds * 1000)
    return create_engine(
        url,
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
        pool_timeout=settings.db_pool_timeout,
        pool_recycle=settings.db_pool_recycle,
        pool_pre_ping=True,
        connect_args={"options": f"-c statement_timeout={timeout_ms}"},
    )


engine = build_engine(DATABASE_URL, settings.storage_timeout_seconds)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


class UTCDateTime(TypeDecorator):
    """Timezone-aware UTC datetimes on every backend.

    SQLite drops tzinfo on the way back; scheduling math compares stored
    timestamps against an aware ``now``, so values are normalised to UTC
    on write and re-stamped as UTC on read.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        if value.tzinfo is None:
            raise ValueError(f"Naive datetime not allowed: {value!r}")
        return value.astimezone(timezone.utc)

    def process_result_value(self, value, dialect):
        if value is None:
            return value
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def init_db(bind: Engine = engine) -> None:
    """Create all tables that do not exist yet."""
    from . import models  # noqa: F401  (registers mappers on Base)

    Base.metadata.create_all(bind=bind)


def get_db():
    """Dependency for FastAPI routes to get database session.

    Rolls back the transaction on unhandled exceptions so that the
    connection is returned to the pool in a clean state.
    """
    db = SessionLocal()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
