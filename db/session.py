"""
db/session.py — Database Connection & Session Management
=========================================================
Handles the async database connection using SQLAlchemy.
Only the "database" registry backend (core/registry.py) talks to it;
it calls init_db() from its connect().
"""

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase
from config import settings
import logging

logger = logging.getLogger("bharatid.db")

# Convert standard postgres:// URL to async postgresql+asyncpg://
DATABASE_URL = settings.DATABASE_URL.replace(
    "postgresql://", "postgresql+asyncpg://"
)


def create_engine(url: str = DATABASE_URL) -> AsyncEngine:
    """Async engine; pool sizing only applies to server databases, not SQLite."""
    pool_options = {}
    if not url.startswith("sqlite"):
        pool_options = {
            "pool_size": settings.DB_POOL_SIZE,
            "max_overflow": settings.DB_MAX_OVERFLOW,
        }
    return create_async_engine(
        url,
        echo=settings.DEBUG,   # logs all SQL in debug mode
        **pool_options,
    )


def create_session_factory(bind: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(
        bind=bind,
        class_=AsyncSession,
        expire_on_commit=False,
    )


engine = create_engine()
AsyncSessionLocal = create_session_factory(engine)


class Base(DeclarativeBase):
    """Base class all database models inherit from."""
    pass


async def init_db(bind: AsyncEngine = engine):
    """Create all tables on startup if they don't exist."""
    from db.models import (  # noqa: F401, import triggers table registration
        DIDDocumentRecord, CredentialRevocation, AuditLog
    )
    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables created / verified.")
