"""
Database connection and session management.

Only used when ``STORE_BACKEND=sql``; the in-memory store never touches it.
"""
from pathlib import Path
from typing import Optional

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, declarative_base
from sqlalchemy.pool import StaticPool

from chatroom.core.config import Settings, get_settings
from chatroom.core.logging import get_logger

logger = get_logger(__name__)

# Create base class for models
Base = declarative_base()

# Engine and session factory (initialized lazily)
_engine = None
_SessionLocal = None


def create_db_engine(database_url: str, echo: bool = False) -> Engine:
    """Build an engine, applying the SQLite specific tweaks."""
    connect_args = {}
    engine_kwargs = {}

    if database_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False

        if database_url in ("sqlite://", "sqlite:///:memory:"):
            # One shared connection, otherwise every session sees an empty database
            engine_kwargs["poolclass"] = StaticPool
        else:
            # Extract file path from sqlite:///./path/to/db.db and ensure directory exists
            db_path = database_url.replace("sqlite:///", "")
            if db_path.startswith("./"):
                db_path = db_path[2:]
            db_dir = Path(db_path).parent
            if db_dir and not db_dir.exists():
                db_dir.mkdir(parents=True, exist_ok=True)
                logger.info(f"Created database directory: {db_dir}")

    engine = create_engine(
        database_url,
        connect_args=connect_args,
        echo=echo,
        pool_pre_ping=True,
        **engine_kwargs,
    )

    if database_url.startswith("sqlite"):
        @event.listens_for(engine, "connect")
        def set_sqlite_pragma(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    logger.info("Database engine created", extra={"extra_data": {"database_url": database_url}})
    return engine


def get_engine(settings: Optional[Settings] = None) -> Engine:
    """Get or create the process wide database engine."""
    global _engine
    if _engine is None:
        settings = settings or get_settings()
        _engine = create_db_engine(settings.database_url, echo=settings.debug)
    return _engine


def get_session_factory(engine: Optional[Engine] = None) -> sessionmaker:
    """Get or create the session factory."""
    global _SessionLocal
    if engine is not None:
        return sessionmaker(autocommit=False, autoflush=False, bind=engine, expire_on_commit=False)
    if _SessionLocal is None:
        _SessionLocal = sessionmaker(
            autocommit=False,
            autoflush=False,
            bind=get_engine(),
            expire_on_commit=False,
        )
    return _SessionLocal


def init_db(engine: Optional[Engine] = None) -> None:
    """Initialize database tables."""
    from chatroom.models import message, user  # noqa: F401 - Import to register models

    engine = engine or get_engine()
    Base.metadata.create_all(bind=engine)
    logger.info("Database tables created")


def check_db_connection(engine: Optional[Engine] = None) -> bool:
    """Check if database is reachable."""
    try:
        engine = engine or get_engine()
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.error(f"Database connection check failed: {e}")
        return False
