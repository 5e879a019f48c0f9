# src/infrastructure/repositories/post_repository.py
"""
Post Repository
Read-only lookups used for analysis prerequisites
"""

from typing import Optional
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession
import logging

from .base import BaseRepository
from src.app.models import ConnectedPlatform, Post

logger = logging.getLogger(__name__)


class PostRepository(BaseRepository[Post]):
    """Repository for Post and ConnectedPlatform lookups"""

    def __init__(self, session: AsyncSession):
        super().__init__(session, Post)

    async def get_owned(self, post_id: str, user_id: str) -> Optional[Post]:
        """Post if it exists and belongs to the user, else None"""
        try:
            result = await self.session.execute(
                select(Post).where(Post.id == post_id).where(Post.user_id == user_id)
            )
            return result.scalar_one_or_none()
        except Exception as e:
            logger.error(f"❌ Failed to get owned post: {e}")
            raise

    async def count_connected_platforms(self, user_id: str) -> int:
        """Active platform connections for a user"""
        try:
            result = await self.session.execute(
                select(func.count())
                .select_from(ConnectedPlatform)
                .where(ConnectedPlatform.user_id == user_id)
                .where(ConnectedPlatform.is_active.is_(True))
            )
            return int(result.scalar_one_or_none() or 0)
        except Exception as e:
            logger.error(f"❌ Failed to count connected platforms: {e}")
            raise
