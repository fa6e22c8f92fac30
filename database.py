"""
Database Configuration and Session Management
============================================

This module provides the main database engine, session factory, and table creation
functionality for the LinguaLink settlement engine.
"""

import logging
from contextlib import contextmanager
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import QueuePool, StaticPool
from config import Config
from models import Base

logger = logging.getLogger(__name__)

if not Config.DATABASE_URL:
    raise ValueError("DATABASE_URL environment variable is required")

IS_SQLITE = Config.DATABASE_URL.startswith("sqlite")

if IS_SQLITE:
    # Single shared connection so every session sees the same in-memory schema
    engine = create_engine(
        Config.DATABASE_URL,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
        echo=Config.DATABASE_ECHO,
    )

    @event.listens_for(engine, "connect")
    def _disable_pysqlite_transactions(dbapi_connection, connection_record):
        # pysqlite emits its own BEGIN; hand transaction control to SQLAlchemy so SAVEPOINT works
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")
else:
    engine = create_engine(
        Config.DATABASE_URL,
        poolclass=QueuePool,
        pool_size=Config.DATABASE_POOL_SIZE,
        max_overflow=Config.DATABASE_MAX_OVERFLOW,
        pool_pre_ping=True,    # Validate connections before use
        pool_recycle=3600,     # Recycle connections every hour
        pool_timeout=30,       # Wait max 30 seconds for connection during bursts
        echo=Config.DATABASE_ECHO,
        connect_args={
            "connect_timeout": 10,
            "application_name": "lingualink_settlement",
        },
    )

SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)


def create_tables() -> bool:
    """Create all database tables if they don't exist"""
    logger.info("🏗️ Creating database tables (if they don't exist)...")
    Base.metadata.create_all(bind=engine, checkfirst=True)
    logger.info(f"✅ Database schema verified: {len(Base.metadata.tables)} tables available")
    return True


def get_session() -> Session:
    """Get a new database session"""
    return SessionLocal()


@contextmanager
def managed_session():
    """Sync context manager for database sessions"""
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception as e:
        session.rollback()
        logger.error(f"Database session error: {e}")
        raise
    finally:
        session.close()
