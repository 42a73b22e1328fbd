"""Database session management"""

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from commitments_engine.config import settings


def build_engine(database_url: str | None = None) -> Engine:
    """Create an engine; pooling options only apply to server databases"""
    url = database_url or settings.database_url
    if url.startswith("sqlite"):
        return create_engine(url, connect_args={"check_same_thread": False})
    # Recycle after 1 hour to avoid stale connections
    return create_engine(
        url,
        pool_pre_ping=True,
        pool_size=10,
        max_overflow=10,
        pool_recycle=3600,
    )


engine = build_engine()

# One session per job run; see jobs/runner.py
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
