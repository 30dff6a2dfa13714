"""Database connection and table definitions."""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from sqlalchemy import Boolean, Column, DateTime, Float, Index, String, Text
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import declarative_base

from app.config import get_settings

Base = declarative_base()


class LicenseTable(Base):
    """Issued license keys."""

    __tablename__ = "licenses"

    key = Column(String(40), primary_key=True)
    mentor_id = Column(String(32), nullable=False)
    ea_id = Column(String(64), nullable=False)
    user_id = Column(String(64), nullable=True)
    active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("idx_licenses_mentor", "mentor_id"),
    )


class MentorTable(Base):
    """Registered mentors."""

    __tablename__ = "mentors"

    mentor_id = Column(String(32), primary_key=True)
    name = Column(String(200), nullable=False)
    email = Column(String(320), nullable=False, unique=True)
    active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False)


class StudentTable(Base):
    """Students: one per license, bound to an execution account."""

    __tablename__ = "students"

    license_key = Column(String(40), primary_key=True)
    mentor_id = Column(String(32), nullable=False)
    ea_id = Column(String(64), nullable=False)
    account_number = Column(String(64), nullable=False)
    server = Column(String(200), nullable=False)
    broker = Column(String(200), nullable=False, default="Unknown")
    account_ref = Column(String(100), nullable=True)
    status = Column(String(10), nullable=False, default="pending")
    registered_at = Column(DateTime(timezone=True), nullable=False)
    last_heartbeat = Column(DateTime(timezone=True), nullable=True)
    last_reported_connected = Column(Boolean, nullable=True)

    __table_args__ = (
        Index("idx_students_mentor_status", "mentor_id", "status"),
    )


class SignalTable(Base):
    """Retained signal history (bounded like the in-memory log)."""

    __tablename__ = "signals"

    id = Column(String(20), primary_key=True)
    mentor_id = Column(String(32), nullable=False)
    ea_id = Column(String(64), nullable=False)
    direction = Column(String(4), nullable=False)  # BUY | SELL
    symbol = Column(String(32), nullable=False)
    entry_price = Column(Float, nullable=True)
    stop_loss = Column(Float, nullable=False)
    take_profit = Column(Float, nullable=False)
    size = Column(Float, nullable=True)
    comment = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("idx_signals_mentor", "mentor_id"),
        Index("idx_signals_ea", "ea_id"),
    )


class Database:
    """Database connection manager."""

    def __init__(self, database_url: str | None = None):
        settings = get_settings()
        url = database_url or settings.database_url

        # Convert postgresql:// to postgresql+asyncpg://
        if url.startswith("postgresql://"):
            url = url.replace("postgresql://", "postgresql+asyncpg://", 1)

        # The relay writes one row per mutation; a small pool is plenty.
        self.engine = create_async_engine(
            url,
            echo=settings.debug,
            pool_size=5,
            max_overflow=10,
            pool_pre_ping=True,    # Validate before use
            pool_recycle=3600,     # Recycle every hour
            pool_timeout=30,
            connect_args={
                "timeout": 10,
                "command_timeout": 30,
            },
        )
        self.session_factory = async_sessionmaker(
            self.engine, class_=AsyncSession, expire_on_commit=False
        )

    async def create_tables(self) -> None:
        """Create all tables."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """Get a database session."""
        async with self.session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def close(self) -> None:
        """Close database connection."""
        await self.engine.dispose()


# Global database instance
_db: Database | None = None


def get_database() -> Database:
    """Get the global database instance."""
    global _db
    if _db is None:
        _db = Database()
    return _db


async def init_database() -> Database:
    """Initialize the database and create tables."""
    db = get_database()
    await db.create_tables()
    return db
