"""Database connection management utilities."""
import logging
from contextlib import contextmanager
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from config.settings import settings
import os

logger = logging.getLogger(__name__)

# Global engine and session factory
_engine = None
_session_factory = None


def create_db_engine(db_url: str):
    """Create an engine with pool settings appropriate for the backend."""
    is_production = os.getenv('FLASK_ENV') == 'production'

    if 'sqlite' in db_url:
        # SQLite doesn't support pool_size/max_overflow parameters
        engine_kwargs = {
            "connect_args": {"check_same_thread": False},
            "echo": False,
        }
        if db_url in ("sqlite://", "sqlite:///:memory:"):
            # One shared connection, otherwise every checkout sees an empty database
            engine_kwargs["poolclass"] = StaticPool
        engine = create_engine(db_url, **engine_kwargs)
        logger.info("Database engine initialized (SQLite)")
        return engine

    if is_production:
        # Scanner + API workers share the pool; keep it small
        engine = create_engine(
            db_url,
            pool_size=3,
            max_overflow=2,
            pool_pre_ping=True,  # Verify connections before using (prevents stale connections)
            pool_recycle=300,
            pool_timeout=10,  # Wait max 10 seconds for a connection
            connect_args={
                "connect_timeout": 10,
                "options": "-c statement_timeout=30000"  # 30 second statement timeout
            },
            echo=False
        )
        logger.info(f"Database engine initialized for production with pool_size={engine.pool.size()}")
        return engine

    engine = create_engine(
        db_url,
        pool_size=5,
        max_overflow=10,
        pool_pre_ping=True,
        pool_recycle=3600,
        echo=False,
    )
    logger.info("Database engine initialized for development with connection pooling")
    return engine


def get_engine():
    """Get or create the global database engine."""
    global _engine
    if _engine is None:
        _engine = create_db_engine(settings.agent.database_url)
    return _engine


def get_session_factory():
    """Get or create the global session factory."""
    global _session_factory
    if _session_factory is None:
        _session_factory = sessionmaker(bind=get_engine(), expire_on_commit=False)
    return _session_factory


def close_session(session):
    """Close a database session properly."""
    try:
        session.close()
    except Exception as e:
        logger.warning(f"Error closing session: {e}")


@contextmanager
def session_scope(session_factory=None):
    """Provide a transactional scope around a series of operations.

    Usage:
        with session_scope() as session:
            # use session here
            # automatically commits on success, rolls back on error
    """
    factory = session_factory or get_session_factory()
    session = factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        close_session(session)


def init_database(engine=None):
    """Create all tables registered on Base.metadata."""
    from src.models import Base

    engine = engine or get_engine()
    Base.metadata.create_all(engine)
    logger.info("Database tables created/verified")
    return True


def cleanup_connections():
    """Clean up database connections (useful for worker shutdown)."""
    global _engine, _session_factory

    _session_factory = None

    if _engine is not None:
        try:
            _engine.dispose()
            logger.info("Database engine disposed successfully")
        except Exception as e:
            logger.warning(f"Error disposing database engine: {e}")
        finally:
            _engine = None
