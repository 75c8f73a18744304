"""Database base configuration."""
from datetime import datetime
from sqlalchemy import create_engine, Column, DateTime
from sqlalchemy.engine import Engine
from sqlalchemy.ext.declarative import declared_attr
from sqlalchemy.orm import DeclarativeBase, sessionmaker
from sqlalchemy.pool import StaticPool

from wa_governor.core.config import settings


class Base(DeclarativeBase):
    """Base class for all governor tables."""

    @declared_attr
    def __tablename__(cls) -> str:
        """Generate table name from class name."""
        return cls.__name__.lower()

    # Common columns for all tables
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


def create_db_engine(url: str) -> Engine:
    """Engine for a SQLAlchemy URL.

    SQLite sessions are shared across the batch worker threads, so the
    same-thread check is off; an in-memory database keeps a single connection
    or every session would see its own empty database.
    """
    if url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in url:
            kwargs["poolclass"] = StaticPool
        return create_engine(url, echo=False, **kwargs)
    return create_engine(url, pool_pre_ping=True, pool_recycle=300, echo=False)


engine = create_db_engine(settings.DATABASE_URL)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
