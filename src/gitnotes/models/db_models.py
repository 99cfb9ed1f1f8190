"""SQLAlchemy database models for the deleted-note and draft registries."""
import datetime
from typing import Optional

from sqlalchemy import (Column, DateTime, Integer, String, Text,
                        UniqueConstraint, create_engine, event)
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import QueuePool, StaticPool

from gitnotes.config import config

# Create base class for SQLAlchemy models
Base = declarative_base()


def _utc_now() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


class DBDeletedNote(Base):
    """Database model for a deleted note (tombstone)."""
    __tablename__ = "deleted_notes"
    id = Column(Integer, primary_key=True, autoincrement=True)
    owner = Column(String(255), nullable=False, index=True)
    notebook = Column(String(255), nullable=False)
    title = Column(String(255), nullable=False)
    last_ref = Column(String(64), nullable=True)
    content = Column(Text, nullable=False, default="")
    deleted_at = Column(DateTime, default=_utc_now, nullable=False)

    def __repr__(self) -> str:
        """Return string representation of the tombstone."""
        return (
            f"<DeletedNote(id={self.id}, owner='{self.owner}', "
            f"notebook='{self.notebook}', title='{self.title}')>"
        )


class DBDraftNote(Base):
    """Database model for an unsaved draft."""
    __tablename__ = "draft_notes"
    id = Column(Integer, primary_key=True, autoincrement=True)
    owner = Column(String(255), nullable=False, index=True)
    notebook = Column(String(255), nullable=False)
    title = Column(String(255), nullable=False)
    content = Column(Text, nullable=False, default="")
    updated_at = Column(DateTime, default=_utc_now, nullable=False)

    # One draft per note key
    __table_args__ = (
        UniqueConstraint('owner', 'notebook', 'title', name='unique_draft_key'),
    )

    def __repr__(self) -> str:
        """Return string representation of the draft."""
        return (
            f"<Draft(owner='{self.owner}', notebook='{self.notebook}', "
            f"title='{self.title}')>"
        )


def init_db(db_url: Optional[str] = None) -> Engine:
    """Create the registry engine and tables.

    File databases get SQLite's crash-resilience settings:
    - WAL (Write-Ahead Logging) mode for atomic writes
    - NORMAL synchronous mode
    - QueuePool with pre-ping to detect stale connections

    In-memory databases use a StaticPool so every session shares the one
    connection that holds the data.
    """
    url = db_url or config.get_db_url()

    if ":memory:" in url:
        engine = create_engine(
            url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    else:
        engine = create_engine(
            url,
            poolclass=QueuePool,
            pool_size=5,
            max_overflow=10,
            pool_timeout=30,
            pool_recycle=3600,
            pool_pre_ping=True,
        )

        @event.listens_for(engine, "connect")
        def set_sqlite_pragma(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA synchronous=NORMAL")
            cursor.close()

    Base.metadata.create_all(engine)
    return engine


def get_session_factory(engine: Optional[Engine] = None):
    """Get a session factory for the database."""
    if engine is None:
        engine = init_db()
    return sessionmaker(bind=engine, expire_on_commit=False)
