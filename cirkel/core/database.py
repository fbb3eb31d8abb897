"""
Database configuration and connection management.

This module provides:
- SQLAlchemy engine and session management
- Connection pooling with sane defaults
- Test database support (in-memory SQLite)
- Table definitions for every collection the service owns
"""
from datetime import datetime, timezone
from typing import Optional
from contextlib import contextmanager
from sqlalchemy import (
    create_engine,
    MetaData,
    Table,
    Column,
    Integer,
    BigInteger,
    String,
    DateTime,
    Boolean,
    Text,
    Index,
    ForeignKey,
    PrimaryKeyConstraint,
    text,
)
from sqlalchemy.pool import QueuePool, StaticPool
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.sql import func
import logging
import os

from cirkel.core.config import settings


logger = logging.getLogger(__name__)

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

    return os.getenv("DATABASE_URL") or settings.DATABASE_URL


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

    if url.startswith("sqlite"):
        # One shared connection so in-memory databases survive across sessions
        _engine = create_engine(
            url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
            echo=False,
        )
    else:
        _engine = create_engine(
            url,
            poolclass=QueuePool,
            pool_size=POOL_SIZE,
            max_overflow=MAX_OVERFLOW,
            pool_timeout=POOL_TIMEOUT,
            pool_recycle=POOL_RECYCLE,
            echo=False,  # Set to True for SQL query logging
        )

    _SessionLocal = sessionmaker(
        autocommit=False,
        autoflush=False,
        bind=_engine
    )

    return _engine


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
def get_db_session():
    """
    Context manager for database sessions.

    Everything executed inside one block commits together or not at all.

    Usage:
        with get_db_session() as session:
            session.execute(...)
    """
    SessionLocal = get_session_factory()
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


@contextmanager
def session_scope(session: Optional[Session] = None):
    """
    Join the caller's transaction when a session is passed, otherwise open one.

    Lets a service function run standalone or as one step of a larger
    all-or-nothing write.
    """
    if session is not None:
        yield session
        return
    with get_db_session() as own_session:
        yield own_session


def create_all_tables():
    """
    Create all tables defined in metadata.

    This is idempotent - tables that already exist will not be recreated.
    """
    engine = get_engine()
    metadata.create_all(bind=engine)


def truncate_all_tables():
    """Delete every row, children first. Used between tests."""
    engine = get_engine()
    with engine.begin() as conn:
        for table in reversed(metadata.sorted_tables):
            conn.execute(table.delete())


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; every stored timestamp is UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def check_connection() -> bool:
    """
    Check if database connection is available.

    Returns:
        True if connection successful, False otherwise
    """
    try:
        engine = get_engine()
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.warning(f"Database connection check failed: {e}")
        return False


# Users: profile row plus the denormalized follow counters
users = Table(
    'app_users',
    metadata,
    Column('user_id', String(100), primary_key=True),
    Column('display_name', Text, nullable=True),
    Column('status', String(50), nullable=False, server_default='active'),
    Column('followers_count', Integer, nullable=False, server_default='0'),
    Column('following_count', Integer, nullable=False, server_default='0'),
    Column('last_notification_read_at', DateTime(timezone=True), nullable=True),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Index('idx_users_created_at', 'created_at'),
)

# Entitlement ledger: one record per user, written only by the ledger
entitlements = Table(
    'entitlements',
    metadata,
    Column('user_id', String(100), ForeignKey('app_users.user_id', ondelete='CASCADE'), primary_key=True),
    Column('active', Boolean, nullable=False, default=False),
    Column('plan', String(20), nullable=True),  # monthly | yearly
    Column('started_at', DateTime(timezone=True), nullable=True),
    Column('expires_at', DateTime(timezone=True), nullable=True),
    Column('auto_renew', Boolean, nullable=False, default=False),
    Column('storage_total_bytes', BigInteger, nullable=False),
    Column('storage_used_bytes', BigInteger, nullable=False, default=0),
    Column('projects_max', Integer, nullable=False),
    Column('projects_current', Integer, nullable=False, default=0),
    Column('updated_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Index('idx_entitlements_active_expires', 'active', 'expires_at'),
)

# Idempotency keys (webhook dedup markers live here under scope "webhook.<provider>")
idempotency_keys = Table(
    'idempotency_keys',
    metadata,
    Column('key', String(255), primary_key=True),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('scope', String(100), nullable=True, index=True),
    Index('idx_idempotency_keys_scope_created', 'scope', 'created_at'),
)

# Follow edges, keyed by the ordered pair
follow_edges = Table(
    'follow_edges',
    metadata,
    Column('follower_id', String(100), ForeignKey('app_users.user_id', ondelete='CASCADE'), nullable=False),
    Column('following_id', String(100), ForeignKey('app_users.user_id', ondelete='CASCADE'), nullable=False),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    PrimaryKeyConstraint('follower_id', 'following_id', name='pk_follow_edges'),
    Index('idx_follow_edges_following', 'following_id', 'created_at'),
)

# Project join requests: status pending -> read -> accepted | rejected
join_requests = Table(
    'join_requests',
    metadata,
    Column('id', String(100), primary_key=True),
    Column('project_id', String(100), nullable=False, index=True),
    Column('project_owner_id', String(100), nullable=False),
    Column('requester_id', String(100), nullable=False),
    Column('message', Text, nullable=True),
    Column('status', String(20), nullable=False, server_default='pending'),
    Column('created_at', DateTime(timezone=True), nullable=False),
    Column('updated_at', DateTime(timezone=True), nullable=False),
    Index('idx_join_requests_owner_status', 'project_owner_id', 'status'),
    Index('idx_join_requests_requester_status', 'requester_id', 'status'),
)

# Per-participant unread counters for each conversation
conversation_participants = Table(
    'conversation_participants',
    metadata,
    Column('conversation_id', String(100), nullable=False),
    Column('user_id', String(100), nullable=False),
    Column('unread_count', Integer, nullable=False, server_default='0'),
    Column('last_message_at', DateTime(timezone=True), nullable=True),
    Column('last_read_at', DateTime(timezone=True), nullable=True),
    PrimaryKeyConstraint('conversation_id', 'user_id', name='pk_conversation_participants'),
    Index('idx_conversation_participants_user', 'user_id', 'unread_count'),
)
