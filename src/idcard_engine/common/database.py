"""Async database manager for IDCard-Engine (single-DB)."""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from idcard_engine.common.config import IdCardSettings, get_settings
from idcard_engine.common.models import Base

# Import all model modules so Base.metadata is complete for create_all().
import idcard_engine.admins.models  # noqa: F401
import idcard_engine.students.models  # noqa: F401
import idcard_engine.payments.models  # noqa: F401
import idcard_engine.audit.models  # noqa: F401


class DatabaseManager:
    """Manages a single async database engine."""

    def __init__(self, settings: IdCardSettings | None = None):
        self._settings = settings or get_settings()
        self.engine: AsyncEngine | None = None
        self._session_factory: async_sessionmaker[AsyncSession] | None = None

    async def init(self) -> None:
        url = self._settings.db_url
        connect_args = {}
        if url.startswith("sqlite"):
            # Bounded wait on a locked database instead of blocking forever.
            connect_args["timeout"] = self._settings.external_timeout
        self.engine = create_async_engine(url, echo=False, connect_args=connect_args)
        self._session_factory = async_sessionmaker(
            self.engine, expire_on_commit=False
        )

    @asynccontextmanager
    async def get_session(self) -> AsyncGenerator[AsyncSession, None]:
        if self._session_factory is None:
            raise RuntimeError("DatabaseManager not initialized — call init() first")
        async with self._session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def create_all(self) -> None:
        if self.engine is None:
            raise RuntimeError("DatabaseManager not initialized — call init() first")
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def close(self) -> None:
        if self.engine:
            await self.engine.dispose()
            self.engine = None
            self._session_factory = None
