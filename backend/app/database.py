"""Database engine, session factory and declarative base."""
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.orm import declarative_base
from app.config import settings

engine = create_async_engine(settings.DATABASE_URL, echo=settings.DEBUG)

AsyncSessionLocal = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
Base = declarative_base()


async def get_db():
    """FastAPI dependency yielding a request-scoped session."""
    async with AsyncSessionLocal() as session:
        yield session


async def init_db():
    """Create any missing tables."""
    import app.models  # noqa: F401 – registers tables with Base

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
