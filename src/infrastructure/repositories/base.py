# src/infrastructure/repositories/base.py
"""
Base Repository
Shared lookups and committed writes for the pipeline's ORM models
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Generic, Optional, Type, TypeVar, cast

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import InstrumentedAttribute

logger = logging.getLogger(__name__)

ModelType = TypeVar("ModelType")


class BaseRepository(Generic[ModelType]):
    """
    Repository over one model class

    Subclasses bind the model:

        class PostRepository(BaseRepository[Post]):
            def __init__(self, session: AsyncSession):
                super().__init__(session, Post)

    Writes commit immediately; a failed write is rolled back, logged and
    re-raised unchanged.
    """

    def __init__(self, session: AsyncSession, model: Type[ModelType]):
        self.session = session
        self.model = model

    @property
    def model_name(self) -> str:
        return self.model.__name__

    def _id_col(self) -> InstrumentedAttribute:
        return cast(InstrumentedAttribute, getattr(self.model, "id"))

    def _filtered(self, query, filters: dict):
        for key, value in filters.items():
            if not hasattr(self.model, key):
                raise AttributeError(f"{self.model_name} has no column '{key}'")
            query = query.where(getattr(self.model, key) == value)
        return query

    @asynccontextmanager
    async def _write(self, action: str) -> AsyncIterator[None]:
        """Commit on exit, roll back and re-raise on error"""
        try:
            yield
            await self.session.commit()
        except Exception as e:
            await self.session.rollback()
            logger.error(f"❌ Failed to {action} {self.model_name}: {e}")
            raise

    # ========================================================================
    # Reads
    # ========================================================================

    async def get_by_id(self, id: str) -> Optional[ModelType]:
        """Fresh copy of one row, or None"""
        result = await self.session.get(self.model, id, populate_existing=True)
        return cast(Optional[ModelType], result)

    async def find_one_by(self, **filters) -> Optional[ModelType]:
        """First row matching all column == value filters"""
        query = self._filtered(select(self.model), filters).limit(1)
        result = await self.session.execute(query)
        return result.scalars().first()

    async def count(self, **filters) -> int:
        query = self._filtered(select(func.count()).select_from(self.model), filters)
        result = await self.session.execute(query)
        return int(result.scalar_one_or_none() or 0)

    # ========================================================================
    # Writes
    # ========================================================================

    async def create(self, **values) -> ModelType:
        instance: ModelType = cast(Any, self.model)(**values)

        async with self._write("create"):
            self.session.add(instance)

        await self.session.refresh(instance)
        logger.debug(f"Created {self.model_name}: {getattr(instance, 'id', 'N/A')}")
        return instance

    async def update(self, id: str, **values) -> Optional[ModelType]:
        """Apply column values to one row and return its refreshed state"""
        async with self._write("update"):
            await self.session.execute(
                update(self.model).where(self._id_col() == id).values(**values)
            )

        return await self.get_by_id(id)
