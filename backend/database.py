"""
SQLAlchemy engine and sessions for the SQL snapshot backend
Only imported when STORAGE_TYPE selects the database adapter or by init_database.py
"""

from sqlalchemy import create_engine, inspect
from sqlalchemy.orm import declarative_base, sessionmaker
import logging

from config import Config

logger = logging.getLogger(__name__)


def build_engine(url: str = Config.DATABASE_URL):
    """SQLite is shared across FastAPI worker threads; server databases get a pool"""
    if url.startswith("sqlite"):
        return create_engine(url, connect_args={"check_same_thread": False}, echo=False)
    return create_engine(
        url,
        pool_size=10,
        max_overflow=20,
        pool_pre_ping=True,  # Verify connections before using
        echo=False
    )


engine = build_engine()
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


def init_db(bind=None):
    """Create the snapshot table if it is missing"""
    import models  # noqa: F401  registers SnapshotRecord on Base.metadata

    bind = bind or engine
    try:
        Base.metadata.create_all(bind=bind)
        logger.info(f"✓ Snapshot tables ready: {', '.join(inspect(bind).get_table_names())}")
    except Exception as e:
        logger.error(f"✗ Failed to create snapshot tables: {e}")
        raise


def drop_tables(bind=None):
    """Drop every simulator table (use with caution!)"""
    import models  # noqa: F401

    Base.metadata.drop_all(bind=bind or engine)
    logger.warning("⚠ Snapshot tables dropped")
