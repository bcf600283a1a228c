"""Database connection and session management."""

from collections.abc import AsyncGenerator

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from object_camp.config import settings
from object_camp.models import Base

engine = create_async_engine(
    settings.database_url,
    echo=settings.database_echo,
)

async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Dependency for getting async database sessions."""
    async with async_session_factory() as session:
        yield session


async def create_schema(target: AsyncEngine) -> None:
    """Create all tables on the given engine."""
    async with target.begin() as conn:
        if conn.dialect.name == "postgresql":
            # Enable pgvector extension (required for VECTOR columns)
            await conn.execute(text("CREATE EXTENSION IF NOT EXISTS vector"))
        await conn.run_sync(Base.metadata.create_all)


async def init_db() -> None:
    """Initialize database tables."""
    await create_schema(engine)
