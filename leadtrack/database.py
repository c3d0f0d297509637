"""
Database engine, session factory and the local-time clock.

SQLite for local dev, Postgres in production. The schema itself is owned by
Alembic; tests build it with Base.metadata.create_all().

Every timestamp the engine writes is a naive datetime in LOCAL_TIMEZONE, so
"which day did this lead arrive" is the same question in SQL and in Python.
"""
from datetime import datetime, date
from zoneinfo import ZoneInfo

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, DeclarativeBase

from leadtrack.config import DATABASE_URL, LOCAL_TIMEZONE


class Base(DeclarativeBase):
    pass


# Railway injects postgres:// but SQLAlchemy 2.x requires postgresql://
url = DATABASE_URL.replace('postgres://', 'postgresql://', 1)

if url.startswith('sqlite'):
    engine = create_engine(url, connect_args={'check_same_thread': False})
else:
    engine = create_engine(url, pool_pre_ping=True, pool_size=5, max_overflow=10)

SessionLocal = sessionmaker(bind=engine)

LOCAL_TZ = ZoneInfo(LOCAL_TIMEZONE)


def get_session():
    """Return a new DB session."""
    return SessionLocal()


def local_now() -> datetime:
    """Current wall-clock time in LOCAL_TIMEZONE, tz-stripped for storage."""
    return datetime.now(LOCAL_TZ).replace(tzinfo=None)


def local_today() -> date:
    return local_now().date()
