"""
Pantry CRM Database Configuration
Lazily built async engine for PostgreSQL/Supabase, or SQLite in development
"""

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import create_async_engine, AsyncEngine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import StaticPool
from typing import Any, AsyncGenerator, Dict, Optional
import structlog

from .config import settings

logger = structlog.get_logger()


class Base(DeclarativeBase):
    """Base class for all database models"""
    pass


_engine: Optional[AsyncEngine] = None
_session_factory: Optional[async_sessionmaker] = None


def engine_options(database_url: str, echo: bool = False) -> Dict[str, Any]:
    """Pool options suited to the database behind ``database_url``"""
    url = make_url(database_url)
    options: Dict[str, Any] = {"echo": echo}

    if url.get_backend_name() == "sqlite":
        # An in-memory database lives only as long as its one connection
        if url.database in (None, "", ":memory:"):
            options["poolclass"] = StaticPool
        return options

    options.update(
        pool_pre_ping=True,
        pool_recycle=settings.database_pool_recycle,
        pool_size=settings.database_pool_size,
        max_overflow=settings.database_max_overflow,
    )
    return options


def build_engine(database_url: Optional[str] = None, echo: Optional[bool] = None) -> AsyncEngine:
    database_url = database_url or settings.database_url
    echo = settings.debug if echo is None else echo
    return create_async_engine(database_url, **engine_options(database_url, echo))


def get_engine() -> AsyncEngine:
    """Process-wide engine, created on first use"""
    global _engine
    if _engine is None:
        _engine = build_engine()
        logger.info("Database engine created", backend=_engine.url.get_backend_name())
    return _engine


def get_session_factory() -> async_sessionmaker:
    global _session_factory
    if _session_factory is None:
        _session_factory = async_sessionmaker(
            get_engine(),
            class_=AsyncSession,
            expire_on_commit=False
        )
    return _session_factory


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Dependency to get database session"""
    async with get_session_factory()() as session:
        try:
            yield session
        except Exception as e:
            logger.error("Database session error", error=str(e))
            await session.rollback()
            raise


async def init_db():
    """Initialize database tables"""
    async with get_engine().begin() as conn:
        # Import all models to register them
        from ..models import organizations, products, opportunities  # noqa: F401

        await conn.run_sync(Base.metadata.create_all)
        logger.info("Database tables created/verified")


async def close_db():
    """Dispose the engine; the next use builds a fresh one"""
    global _engine, _session_factory
    if _engine is None:
        return
    await _engine.dispose()
    _engine = None
    _session_factory = None
    logger.info("Database connections closed")
