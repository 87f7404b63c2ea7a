"""
Database connection and initialization utilities.
"""

import logging
from typing import Generator, Optional
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool
from deliverease.config import settings

logger = logging.getLogger(__name__)

DATABASE_URL = settings.database_url


def make_engine(url: str = DATABASE_URL, echo: Optional[bool] = None) -> Engine:
    """Create an engine; SQLite gets thread-sharing and, in memory, a single connection."""
    connect_args = {}
    kwargs = {}
    if url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
        if ":memory:" in url or url == "sqlite://":
            kwargs["poolclass"] = StaticPool
    return create_engine(
        url,
        connect_args=connect_args,
        echo=settings.db_echo if echo is None else echo,
        **kwargs,
    )


engine = make_engine()

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db(bind: Optional[Engine] = None):
    """Initialize database - create all tables."""
    from deliverease.db.models import Base
    Base.metadata.create_all(bind=bind or engine)
    logger.info(f"Database initialized at: {(bind or engine).url}")


def get_session() -> Session:
    """Get a new database session."""
    return SessionLocal()


def get_db() -> Generator[Session, None, None]:
    """
    Dependency for getting database session.

    Example:
        @app.get("/...")
        def handler(db: Session = Depends(get_db)):
            ...
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
