from __future__ import annotations

from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncGenerator

from loguru import logger
from sqlalchemy import event
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from deepscribe.domain.errors import StorageError
from deepscribe.storage.base import Base, import_all_models

_db_service: "DatabaseService | None" = None


def _build_sqlite_url(db_path: Path) -> str:
    resolved = db_path.resolve()
    return f"sqlite+aiosqlite:///{resolved.as_posix()}"


class DatabaseService:
    def __init__(self, db_url: str):
        self.db_url = db_url
        self.engine: AsyncEngine = create_async_engine(db_url, future=True)
        self._sessionmaker = async_sessionmaker(self.engine, expire_on_commit=False)

        @event.listens_for(self.engine.sync_engine, "connect")
        def _enable_foreign_keys(dbapi_connection, _connection_record) -> None:
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON;")
            cursor.close()

    @classmethod
    def for_path(cls, db_path: Path) -> "DatabaseService":
        db_path.parent.mkdir(parents=True, exist_ok=True)
        return cls(_build_sqlite_url(db_path))

    async def init_models(self) -> None:
        import_all_models()
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    @asynccontextmanager
    async def with_session(self) -> AsyncGenerator[AsyncSession, None]:
        async with self._sessionmaker() as session:
            yield session

    @asynccontextmanager
    async def session_scope(self) -> AsyncGenerator[AsyncSession, None]:
        """Commits on success, rolls back on any error.

        SQLAlchemy errors are re-raised as StorageError so callers only see
        the generic internal failure kind.
        """

        async with self.with_session() as session:
            try:
                yield session
                await session.commit()
            except SQLAlchemyError as exc:
                logger.exception("Database error during the session scope.")
                await session.rollback()
                raise StorageError("Database error") from exc
            except Exception:
                await session.rollback()
                raise

    async def dispose(self) -> None:
        await self.engine.dispose()


async def init_db_service(db_path: Path) -> DatabaseService:
    global _db_service
    if _db_service is None:
        service = DatabaseService.for_path(db_path)
        await service.init_models()
        _db_service = service
    return _db_service


def get_db_service() -> DatabaseService:
    if _db_service is None:
        raise RuntimeError("Database service not initialized. Call init_db_service() first.")
    return _db_service


async def shutdown_db_service() -> None:
    global _db_service
    if _db_service is None:
        return
    await _db_service.dispose()
    _db_service = None


@asynccontextmanager
async def session_scope() -> AsyncGenerator[AsyncSession, None]:
    """Session scope bound to the process-wide database service."""

    async with get_db_service().session_scope() as session:
        yield session
