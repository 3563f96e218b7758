from collections.abc import AsyncGenerator
from datetime import datetime, timezone
import logging
from typing import Optional

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass


def utcnow() -> datetime:
    # Naive UTC everywhere; SQLite and PostgreSQL compare these the same way.
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Database:
    """Owns the engine and session factory; opened and closed by the app lifespan."""

    def __init__(self, url: str, echo: bool = False):
        self.url = url
        self.echo = echo
        self.engine: Optional[AsyncEngine] = None
        self.session_maker: Optional[async_sessionmaker[AsyncSession]] = None

    @property
    def is_sqlite(self) -> bool:
        return self.url.startswith("sqlite")

    async def open(self) -> None:
        if self.engine is not None:
            return
        kwargs = {"echo": self.echo}
        if not self.is_sqlite:
            kwargs.update(pool_pre_ping=True, pool_recycle=300)
        self.engine = create_async_engine(self.url, **kwargs)
        self.session_maker = async_sessionmaker(self.engine, expire_on_commit=False)
        logger.info("Database engine opened (%s)", self.engine.url.render_as_string(hide_password=True))

    async def close(self) -> None:
        if self.engine is None:
            return
        await self.engine.dispose()
        self.engine = None
        self.session_maker = None
        logger.info("Database engine closed")

    async def create_all(self) -> None:
        from db import models  # noqa: F401  (registers every table on Base.metadata)

        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    def session(self) -> AsyncSession:
        if self.session_maker is None:
            raise RuntimeError("Database is not open")
        return self.session_maker()


async def get_async_session(request: Request) -> AsyncGenerator[AsyncSession, None]:
    database: Database = request.app.state.database
    async with database.session() as session:
        yield session
