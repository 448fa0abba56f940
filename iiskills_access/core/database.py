"""
Engine, sessions and table definitions for the access store.

- One process-wide engine, created lazily from DATABASE_URL
  (TEST_DATABASE_URL wins when set).
- Sessions are transactional scopes: commit on success, rollback on error.
  Components take a SessionScope so tests can bind them to their own engine.
- In-memory SQLite shares one connection (StaticPool); servers use QueuePool.
"""
import logging
import os
from contextlib import contextmanager
from typing import Callable, ContextManager, Iterator, Optional

from sqlalchemy import create_engine, MetaData, Table, Column, Integer, String, DateTime, Boolean, JSON, Text, Index, UniqueConstraint, true
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import QueuePool, StaticPool
from sqlalchemy.sql import func

from iiskills_access.core.config import settings

logger = logging.getLogger("iiskills.database")

metadata = MetaData()

# QueuePool sizing for server databases
POOL_SIZE = 10
MAX_OVERFLOW = 20
POOL_TIMEOUT = 30
POOL_RECYCLE = 3600

_engine: Optional[Engine] = None
_SessionLocal: Optional[sessionmaker] = None

SessionScope = Callable[[], ContextManager[Session]]


def get_database_url() -> Optional[str]:
    return os.getenv("TEST_DATABASE_URL") or settings.DATABASE_URL


def _is_memory_sqlite(url: str) -> bool:
    return url.startswith("sqlite") and (":memory:" in url or url.rstrip("/") == "sqlite:")


def build_engine(url: str) -> Engine:
    if _is_memory_sqlite(url):
        return create_engine(url, poolclass=StaticPool, connect_args={"check_same_thread": False})
    if url.startswith("sqlite"):
        return create_engine(url, connect_args={"check_same_thread": False})
    return create_engine(
        url,
        poolclass=QueuePool,
        pool_size=POOL_SIZE,
        max_overflow=MAX_OVERFLOW,
        pool_timeout=POOL_TIMEOUT,
        pool_recycle=POOL_RECYCLE,
        pool_pre_ping=True,
    )


def _new_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_engine(database_url: Optional[str] = None) -> Engine:
    """Create the process-wide engine and session factory.

    Raises:
        ValueError: no database URL configured
    """
    global _engine, _SessionLocal

    url = database_url or get_database_url()
    if not url:
        raise ValueError("DATABASE_URL is not configured. Set it in the environment or .env file.")

    _engine = build_engine(url)
    _SessionLocal = _new_session_factory(_engine)
    logger.info(f"Database engine initialized ({_engine.dialect.name})")
    return _engine


def get_engine() -> Engine:
    if _engine is None:
        init_engine()
    return _engine


def get_session_factory() -> sessionmaker:
    if _SessionLocal is None:
        init_engine()
    return _SessionLocal


@contextmanager
def _transaction(factory: sessionmaker) -> Iterator[Session]:
    session = factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def make_session_scope(engine: Engine) -> SessionScope:
    """A get_db_session equivalent bound to ``engine``."""
    factory = _new_session_factory(engine)

    def session_scope():
        return _transaction(factory)

    return session_scope


def get_db_session() -> ContextManager[Session]:
    """
    Transactional session on the process-wide engine.

    Usage:
        with get_db_session() as session:
            session.execute(...)
    """
    return _transaction(get_session_factory())


def create_all_tables(engine: Optional[Engine] = None) -> None:
    """Create missing tables; existing tables are left untouched."""
    metadata.create_all(bind=engine or get_engine())


# One row per (user_id, app_id); is_active flips on revoke/expiry and back on re-grant
user_app_access = Table(
    'user_app_access',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('user_id', String(100), nullable=False),
    Column('app_id', String(100), nullable=False),
    Column('granted_via', String(20), nullable=False),
    Column('payment_id', String(100), nullable=True),
    Column('is_active', Boolean, nullable=False, server_default=true()),
    Column('access_granted_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('expires_at', DateTime(timezone=True), nullable=True),
    Column('revoked_at', DateTime(timezone=True), nullable=True),
    Column('revoke_reason', String(100), nullable=True),
    Column('updated_at', DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False),
    UniqueConstraint('user_id', 'app_id', name='uq_user_app_access_user_app'),
    # Stats queries filter on active rows per app
    Index('idx_user_app_access_app_active', 'app_id', 'is_active'),
    Index('idx_user_app_access_user_active', 'user_id', 'is_active'),
)

# External payments record; only bundle_apps/updated_at are written here
payments = Table(
    'payments',
    metadata,
    Column('id', String(100), primary_key=True),
    Column('user_id', String(100), nullable=True, index=True),
    Column('app_id', String(100), nullable=True),
    Column('bundle_apps', JSON, nullable=True),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('updated_at', DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False),
)

# Admin audit log for manual grants/revokes
access_admin_audit = Table(
    'access_admin_audit',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('actor', String(100), nullable=False),
    Column('action', String(100), nullable=False),  # "admin_grant", "admin_revoke"
    Column('target_user_id', String(100), nullable=True),
    Column('target_app_id', String(100), nullable=True),
    Column('payload_json', Text, nullable=True),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Index('idx_access_admin_audit_user_id', 'target_user_id'),
    Index('idx_access_admin_audit_created_at', 'created_at'),
)
