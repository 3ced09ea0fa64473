"""
Database connection management for GigSight.

Builds a single SQLAlchemy engine from configuration and hands out
short-lived sessions. Each analysis run opens its own sessions, so
concurrent workers never share ORM state.
"""

import logging
from typing import Optional, Dict, Any
from contextlib import contextmanager
from sqlalchemy import create_engine, Engine, text
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool
from .models import Base

logger = logging.getLogger(__name__)

_engine: Optional[Engine] = None
_session_factory: Optional[sessionmaker] = None


def configure_database(config: Dict[str, Any]) -> None:
    """
    Configure the database connection.

    Args:
        config: GigSight configuration dictionary
    """
    global _engine, _session_factory

    db_config = config.get('database', {})
    url = db_config.get('url', 'sqlite:///gigsight.db')

    engine_kwargs: Dict[str, Any] = {'echo': db_config.get('echo', False)}
    if url.startswith('sqlite'):
        engine_kwargs['connect_args'] = {'check_same_thread': False}
        if url in ('sqlite://', 'sqlite:///:memory:'):
            # One shared connection so every session sees the same in-memory DB
            engine_kwargs['poolclass'] = StaticPool
    else:
        engine_kwargs['pool_pre_ping'] = True
        engine_kwargs['pool_timeout'] = db_config.get('pool_timeout', 30)

    try:
        _engine = create_engine(url, **engine_kwargs)
        _session_factory = sessionmaker(bind=_engine, expire_on_commit=False)
        logger.info(f"Database configured ({_engine.url.get_backend_name()})")

        if db_config.get('auto_init', True):
            init_database()

    except Exception as e:
        logger.error(f"Failed to configure database: {e}")
        _engine = None
        _session_factory = None
        raise


def get_engine() -> Optional[Engine]:
    """Get the SQLAlchemy engine instance."""
    return _engine


def get_session_factory() -> Optional[sessionmaker]:
    """Get the session factory."""
    return _session_factory


@contextmanager
def get_session():
    """
    Context manager for database sessions.

    Yields:
        Session: SQLAlchemy session

    Usage:
        with get_session() as session:
            session.add(media)
    """
    if not _session_factory:
        raise RuntimeError("Database not configured. Call configure_database() first.")

    session: Session = _session_factory()
    try:
        yield session
        session.commit()
    except Exception as e:
        session.rollback()
        logger.error(f"Database session error: {e}")
        raise
    finally:
        session.close()


def init_database() -> None:
    """
    Initialize database schema by creating all tables.
    """
    if not _engine:
        raise RuntimeError("Database engine not available")

    Base.metadata.create_all(_engine)
    logger.info("Database schema initialized successfully")


def drop_database() -> None:
    """
    Drop all database tables. USE WITH CAUTION!
    """
    if not _engine:
        raise RuntimeError("Database engine not available")

    Base.metadata.drop_all(_engine)
    logger.warning("Database schema dropped successfully")


def is_database_available() -> bool:
    """
    Check if database is configured and available.

    Returns:
        bool: True if database is available
    """
    if not _engine:
        return False

    try:
        with _engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception:
        return False
