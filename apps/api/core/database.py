"""
Database connection management with connection pooling.

PostgreSQL in production (pooled), SQLite for local development and tests.
"""
from sqlalchemy import create_engine, event, text
from sqlalchemy.orm import declarative_base
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import QueuePool, StaticPool
from core.config import settings
import logging
import time

logger = logging.getLogger(__name__)

DATABASE_URL = settings.database_url


def _engine_kwargs(url: str) -> dict:
    if url.startswith("sqlite"):
        kwargs = {
            "connect_args": {"check_same_thread": False},
            "echo": settings.DEBUG,
        }
        # In-memory databases live inside a single connection
        if url in ("sqlite://", "sqlite:///:memory:") or "mode=memory" in url:
            kwargs["poolclass"] = StaticPool
        return kwargs
    return {
        "poolclass": QueuePool,
        "pool_size": settings.DB_POOL_SIZE,  # Number of connections to maintain
        "max_overflow": settings.DB_MAX_OVERFLOW,  # Additional connections beyond pool_size
        "pool_timeout": settings.DB_POOL_TIMEOUT,  # Seconds to wait for connection
        "pool_recycle": settings.DB_POOL_RECYCLE,  # Recycle connections after this many seconds
        "pool_pre_ping": True,  # Verify connections before using
        "echo": settings.DEBUG,  # Log SQL queries in debug mode
    }


engine = create_engine(DATABASE_URL, **_engine_kwargs(DATABASE_URL))

# Session factory
SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
    expire_on_commit=False,  # Prevent lazy loading issues
)

Base = declarative_base()


@event.listens_for(engine, "connect")
def on_connect(dbapi_conn, connection_record):
    """Set connection-level settings."""
    if engine.dialect.name == "sqlite":
        # Let SQLAlchemy own BEGIN/SAVEPOINT; pysqlite's implicit transactions break savepoints
        dbapi_conn.isolation_level = None
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()
    logger.debug("New database connection established")


@event.listens_for(engine, "begin")
def on_begin(conn):
    if engine.dialect.name == "sqlite":
        conn.exec_driver_sql("BEGIN")


def get_db() -> Session:
    """
    Dependency for FastAPI to get database session.

    This function ensures:
    - Connection is properly acquired from pool
    - Connection is returned to pool after request
    - Transactions are properly managed
    - Connection health is verified with retry logic
    """
    db = None
    max_retries = 3
    retry_delay = 0.1  # 100ms initial delay

    for attempt in range(max_retries):
        try:
            db = SessionLocal()
            db.execute(text("SELECT 1"))
            break
        except Exception as e:
            if db:
                db.close()
            if attempt == max_retries - 1:
                logger.error(f"Failed to establish database connection after {max_retries} attempts: {e}")
                raise
            logger.warning(f"Database connection attempt {attempt + 1} failed, retrying...")
            time.sleep(retry_delay * (2 ** attempt))  # Exponential backoff

    try:
        yield db
        db.commit()
    except Exception as e:
        db.rollback()
        # Only log actual database errors, not HTTP exceptions
        from fastapi import HTTPException
        if not isinstance(e, HTTPException):
            logger.error(f"Database transaction error: {e}")
        raise
    finally:
        if db:
            db.close()


def get_db_sync() -> Session:
    """
    Session for scripts (seed data, maintenance) outside a request.

    Does NOT auto-commit or auto-rollback; the caller owns the transaction
    and must close the session.
    """
    return SessionLocal()


def init_db() -> None:
    """Create all tables that do not exist yet."""
    import models  # noqa: F401  (registers mappers on Base.metadata)

    Base.metadata.create_all(bind=engine)
    logger.info("Database schema ready")


def check_db_connection() -> bool:
    """
    Check if database connection is healthy.

    Returns:
        True if connection is healthy, False otherwise
    """
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.error(f"Database connection check failed: {e}")
        return False
