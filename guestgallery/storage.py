import logging
from typing import Generator

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.orm import sessionmaker, Session, declarative_base

from guestgallery.config import settings

logger = logging.getLogger(__name__)

REQUIRED_TABLES = ("albums", "msisdn_bindings", "media")


def _engine_options(url: str) -> dict:
    # Pipelines hand sessions to threadpool workers
    if url.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False}}
    return {"pool_pre_ping": True}


engine = create_engine(settings.DATABASE_URL, echo=False, **_engine_options(settings.DATABASE_URL))

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def init_db() -> None:
    """
    Create the albums, msisdn_bindings and media tables if missing.
    Runs from the application lifespan.
    """
    # Registers the mapped classes on Base.metadata
    from guestgallery import models  # noqa: F401

    try:
        Base.metadata.create_all(bind=engine)
    except Exception as e:
        logger.error(f"Database init failed for {engine.url.render_as_string(hide_password=True)}: {e}")
        raise
    logger.info("Database ready")


def get_db() -> Generator[Session, None, None]:
    """FastAPI dependency yielding a request-scoped session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def check_db_health() -> bool:
    """
    True when the database answers and every required table exists.
    """
    try:
        with SessionLocal() as db:
            db.execute(text("SELECT 1"))
        missing = set(REQUIRED_TABLES) - set(inspect(engine).get_table_names())
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        return False

    if missing:
        logger.error(f"Database schema not applied: missing tables {sorted(missing)}")
        return False
    return True
