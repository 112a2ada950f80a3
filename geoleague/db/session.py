"""Async-движок SQLAlchemy, фабрика сессий и транзакционные помощники."""

import logging
from collections.abc import AsyncGenerator

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from geoleague.core.config import settings
from geoleague.core.errors import StoreUnavailable

logger = logging.getLogger(__name__)

engine = create_async_engine(settings.database_url, pool_pre_ping=True)
SessionLocal = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async with SessionLocal() as session:
        yield session


async def init_database() -> None:
    # Создаем таблицы без Alembic (локальный запуск и тесты).
    from geoleague.db.base import Base

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def commit_or_raise(db: AsyncSession) -> None:
    """Коммитит транзакцию; транзиентные сбои хранилища превращает в StoreUnavailable."""
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise
    except SQLAlchemyError as exc:
        await db.rollback()
        logger.error("Commit failed: %s", exc)
        raise StoreUnavailable("Store is unavailable, try again later") from exc
