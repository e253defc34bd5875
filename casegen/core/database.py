import tempfile
from pathlib import Path
from typing import Generator

import structlog
from sqlalchemy import create_engine
from sqlalchemy.engine import make_url
from sqlalchemy.orm import sessionmaker, Session

from casegen.config.settings import settings
from casegen.models.database import Base

logger = structlog.get_logger()


def _create_engine_from_url(db_url: str):
    connect_args = {"check_same_thread": False} if db_url.startswith("sqlite") else {}
    return create_engine(db_url, connect_args=connect_args)


def resolve_database_url(original_url: str) -> str:
    """Make sure a sqlite database directory exists and is writable.

    Falls back to a file in the system temp dir when the configured
    location cannot be written, so a fresh deploy never dies with
    "unable to open database file".
    """
    url = make_url(original_url)
    if not (url.drivername.startswith("sqlite") and url.database and url.database != ":memory:"):
        return original_url

    db_path = Path(url.database)
    if not db_path.is_absolute():
        db_path = (Path.cwd() / db_path).resolve()
    logger.info("Resolved sqlite path", resolved=str(db_path), original=original_url)

    try:
        db_path.parent.mkdir(parents=True, exist_ok=True)
        probe = db_path.parent / ".writable_test"
        probe.write_text("ok")
        probe.unlink()
        return original_url
    except OSError as e:
        fallback = f"sqlite:///{(Path(tempfile.gettempdir()) / 'casegen_fallback.db').as_posix()}"
        logger.error("Configured sqlite path not writable; falling back to temp file",
                     error=str(e), path=str(db_path), fallback=fallback)
        return fallback


engine = _create_engine_from_url(resolve_database_url(settings.database_url))

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_database() -> Generator[Session, None, None]:
    """Dependency to get database session"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def create_tables():
    """Create all database tables"""
    try:
        Base.metadata.create_all(bind=engine)
        logger.info("Database tables created successfully")
    except Exception as e:
        logger.error("Failed to create database tables", error=str(e))
        raise
