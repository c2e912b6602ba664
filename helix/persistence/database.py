from __future__ import annotations

from collections.abc import AsyncGenerator, Callable
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from pathlib import Path

from loguru import logger
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from config import get_settings
from helix.persistence.models import Base

SessionScope = Callable[[], AbstractAsyncContextManager[AsyncSession]]


def _get_async_url(url: str) -> str:
    """Convert sync database URLs to their async driver equivalents."""
    if url.startswith(("postgresql+asyncpg://", "sqlite+aiosqlite://")):
        return url
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+asyncpg://", 1)
    if url.startswith("sqlite://"):
        return url.replace("sqlite://", "sqlite+aiosqlite://", 1)
    return url


def create_engine_for(url: str, echo: bool = False) -> AsyncEngine:
    """Create an async engine for url."""
    async_url = _get_async_url(url)
    parsed = make_url(async_url)

    if parsed.get_backend_name() == "sqlite":
        if parsed.database and parsed.database != ":memory:":
            Path(parsed.database).parent.mkdir(parents=True, exist_ok=True)
        # Connections are opened per session so the engine is usable from any event loop
        return create_async_engine(async_url, echo=echo, poolclass=NullPool)

    return create_async_engine(async_url, echo=echo, pool_pre_ping=True)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        autoflush=False,
        expire_on_commit=False,
    )


def make_session_scope(factory: async_sessionmaker[AsyncSession]) -> SessionScope:
    """Build an async transactional scope bound to factory."""

    @asynccontextmanager
    async def scope() -> AsyncGenerator[AsyncSession, None]:
        async with factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:  # Intentionally broad - rollback on any error before re-raising
                await session.rollback()
                raise

    return scope


async def init_db(engine: AsyncEngine | None = None) -> None:
    """Initialize database tables."""
    engine = engine or get_async_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables initialized")


# ========================================
# Default engine (lazy initialization)
# ========================================

_async_engine: AsyncEngine | None = None
_AsyncSessionLocal: async_sessionmaker[AsyncSession] | None = None


def get_async_engine() -> AsyncEngine:
    """Get or create the engine for settings.database_url."""
    global _async_engine
    if _async_engine is None:
        settings = get_settings()
        _async_engine = create_engine_for(settings.database_url, echo=settings.log_level == "DEBUG")
    return _async_engine


def _get_async_session_factory() -> async_sessionmaker[AsyncSession]:
    global _AsyncSessionLocal
    if _AsyncSessionLocal is None:
        _AsyncSessionLocal = create_session_factory(get_async_engine())
    return _AsyncSessionLocal


def reset_engine() -> None:
    """Forget the default engine so the next use picks up current settings."""
    global _async_engine, _AsyncSessionLocal
    _async_engine = None
    _AsyncSessionLocal = None


@asynccontextmanager
async def async_session_scope() -> AsyncGenerator[AsyncSession, None]:
    """Provide an async transactional scope around a series of operations."""
    factory = _get_async_session_factory()
    async with factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:  # Intentionally broad - rollback on any error before re-raising
            await session.rollback()
            raise
