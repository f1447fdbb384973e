"""
Database configuration and connection management.

This module provides:
- SQLAlchemy engine and session management
- Connection pooling with sane defaults (SQLite for tests)
- The two entitlement projections and the outcome ledger
"""
from typing import Optional
from contextlib import contextmanager
from sqlalchemy import create_engine, MetaData, Table, Column, Integer, String, DateTime, Boolean, Text, Index, false, inspect
from sqlalchemy.engine import Engine
from sqlalchemy.pool import QueuePool, StaticPool
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.sql import func
import os

from curlara.core.config import settings

# SQLAlchemy metadata for table definitions
metadata = MetaData()

# Connection pooling configuration
POOL_SIZE = 10
MAX_OVERFLOW = 20
POOL_TIMEOUT = 30
POOL_RECYCLE = 3600  # Recycle connections after 1 hour

# Global engine and session factory
_engine = None
_SessionLocal = None


def get_database_url() -> Optional[str]:
    """
    Get the database URL from settings or environment.

    For testing, use TEST_DATABASE_URL if available.
    """
    test_url = os.getenv("TEST_DATABASE_URL")
    if test_url:
        return test_url

    return settings.DATABASE_URL


def build_engine(url: str) -> Engine:
    if url.startswith("sqlite"):
        return create_engine(
            url,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
    return create_engine(
        url,
        poolclass=QueuePool,
        pool_size=POOL_SIZE,
        max_overflow=MAX_OVERFLOW,
        pool_timeout=POOL_TIMEOUT,
        pool_recycle=POOL_RECYCLE,
        pool_pre_ping=True,
        echo=False,
    )


def init_engine(database_url: Optional[str] = None):
    """
    Initialize the SQLAlchemy engine.

    Args:
        database_url: Optional override for DATABASE_URL
    """
    global _engine, _SessionLocal

    url = database_url or get_database_url()

    if not url:
        raise ValueError(
            "DATABASE_URL is not configured. "
            "Set DATABASE_URL in environment or .env file."
        )

    _engine = build_engine(url)
    _SessionLocal = sessionmaker(
        autocommit=False,
        autoflush=False,
        bind=_engine
    )

    return _engine


def set_engine(engine: Optional[Engine]) -> None:
    """Swap the process engine (tests inject an in-memory SQLite engine)."""
    global _engine, _SessionLocal
    _engine = engine
    _SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine) if engine is not None else None


def get_engine():
    """Get the current SQLAlchemy engine."""
    global _engine
    if _engine is None:
        init_engine()
    return _engine


def get_session_factory():
    """Get the session factory."""
    global _SessionLocal
    if _SessionLocal is None:
        init_engine()
    return _SessionLocal


@contextmanager
def get_db_session(engine: Optional[Engine] = None):
    """
    Context manager for database sessions.

    Usage:
        with get_db_session() as session:
            session.execute(...)
    """
    if engine is not None:
        session = Session(bind=engine, autoflush=False)
    else:
        session = get_session_factory()()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def create_all_tables(engine: Optional[Engine] = None):
    """
    Create all tables defined in metadata.

    This is idempotent - tables that already exist will not be recreated.
    """
    metadata.create_all(bind=engine or get_engine())


def present_tables(engine: Optional[Engine] = None) -> list[str]:
    return sorted(inspect(engine or get_engine()).get_table_names())


# Projection A: the profile row created at registration.
user_profiles = Table(
    'user_profiles',
    metadata,
    Column('id', String(100), primary_key=True),
    Column('email', String(320), nullable=True, unique=True),
    Column('name', Text, nullable=True),
    Column('has_paid', Boolean, nullable=False, server_default=false()),
    Column('is_subscriber', Boolean, nullable=False, server_default=false()),
    Column('subscription_end_date', DateTime(timezone=True), nullable=True),
    Column('stripe_customer_id', String(100), nullable=True),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Index('idx_user_profiles_email', 'email'),
)

# Projection B: read by the access gate on every protected request.
users = Table(
    'users',
    metadata,
    Column('id', String(100), primary_key=True),
    Column('email', String(320), nullable=True),
    Column('has_paid', Boolean, nullable=False, server_default=false()),
    Index('idx_users_email', 'email'),
)

# Reconciliation outcomes; not a dedup store, replays are reapplied.
payment_event_outcomes = Table(
    'payment_event_outcomes',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('event_id', String(255), nullable=True, index=True),
    Column('event_type', String(100), nullable=True),
    Column('source', String(50), nullable=False),  # webhook | confirmation | verification
    Column('subject_id', String(100), nullable=True, index=True),
    Column('outcome', String(50), nullable=False),  # entitled | partial | ignored | unresolved | failed
    Column('profile_updated', Boolean, nullable=False, server_default=false()),
    Column('access_updated', Boolean, nullable=False, server_default=false()),
    Column('needs_follow_up', Boolean, nullable=False, server_default=false(), index=True),
    Column('detail', Text, nullable=True),
    Column('recorded_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Index('idx_payment_event_outcomes_follow_up', 'needs_follow_up', 'recorded_at'),
)

PROJECTION_TABLES = ("user_profiles", "users")
