from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from coursecert.core.config import settings
from coursecert.db.base import Base


def build_engine(url: str | None = None, echo: bool | None = None) -> AsyncEngine:
    return create_async_engine(
        url or settings.database_url,
        echo=settings.db_echo if echo is None else echo,
        pool_pre_ping=True,
    )


def build_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind, expire_on_commit=False)


engine = build_engine()
async_session_factory = build_session_factory(engine)


async def create_schema(bind: AsyncEngine = engine) -> None:
    # Importing the models registers their tables on Base.metadata
    from coursecert.db import models  # noqa: F401

    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
