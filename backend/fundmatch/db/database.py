"""
Database connection and session management.
"""

from typing import Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker
from fundmatch.core.config import settings

# SQLAlchemy 2.0+ supports both psycopg (v3) and psycopg2
# Convert postgresql:// to postgresql+psycopg:// if psycopg is available
database_url = settings.DATABASE_URL
if database_url.startswith("postgresql://") and not database_url.startswith("postgresql+psycopg"):
    try:
        import psycopg  # noqa: F401
        database_url = database_url.replace("postgresql://", "postgresql+psycopg://", 1)
    except ImportError:
        # Fall back to psycopg2 if psycopg not available
        pass

if database_url.startswith("sqlite"):
    # SQLite sessions may be shared with worker threads (explanation timeouts)
    engine = create_engine(database_url, connect_args={"check_same_thread": False})
else:
    engine = create_engine(
        database_url,
        pool_pre_ping=True,
        pool_size=10,
        max_overflow=20,
    )

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    """Yield a session and close it once the caller is done."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db(bind: Optional[Engine] = None) -> None:
    """Create the eligibility and match score tables if they do not exist."""
    # Import registers the models on Base.metadata
    from fundmatch.db import models  # noqa: F401
    Base.metadata.create_all(bind=bind or engine)
