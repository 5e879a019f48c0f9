# src/infrastructure/repositories/comment_repository.py
"""
Comment Repository
Comment loading for analysis and write-back of filter flags
"""

from typing import Dict, List, Optional, Sequence, Tuple
from sqlalchemy import select, func, update, asc
from sqlalchemy.ext.asyncio import AsyncSession
import logging

from .base import BaseRepository
from src.app.models import Comment
from src.domain.models import CommentRecord

logger = logging.getLogger(__name__)

FilterFlags = Dict[str, Tuple[bool, Optional[str]]]


def to_record(comment: Comment) -> CommentRecord:
    """ORM row to pipeline value object"""
    return CommentRecord(
        id=comment.id,
        text=comment.text or "",
        author_name=comment.author_name or "",
        published_at=comment.published_at,
        like_count=comment.like_count or 0,
        is_filtered=bool(comment.is_filtered),
        filter_reason=comment.filter_reason,
    )


class CommentRepository(BaseRepository[Comment]):
    """
    Repository for Comment operations
    """

    def __init__(self, session: AsyncSession):
        """Initialize comment repository"""
        super().__init__(session, Comment)

    # ========================================================================
    # Comment Retrieval Methods
    # ========================================================================

    async def get_by_ids(self, comment_ids: Sequence[str]) -> List[Comment]:
        """
        Get comments by ID, in the order the IDs were given

        Unknown IDs are skipped.
        """
        if not comment_ids:
            return []

        try:
            result = await self.session.execute(
                select(Comment).where(Comment.id.in_(list(comment_ids)))
            )
            by_id = {c.id: c for c in result.scalars().all()}
            return [by_id[cid] for cid in dict.fromkeys(comment_ids) if cid in by_id]
        except Exception as e:
            logger.error(f"❌ Failed to get comments by IDs: {e}")
            raise

    async def get_valid_by_post(self, post_id: str) -> List[Comment]:
        """
        Get unfiltered comments for a post in publish order

        Args:
            post_id: Post ID

        Returns:
            List of comments not flagged by a previous filter run
        """
        try:
            result = await self.session.execute(
                select(Comment)
                .where(Comment.post_id == post_id)
                .where(Comment.is_filtered.is_(False))
                .order_by(asc(Comment.published_at), asc(Comment.created_at))
            )
            return list(result.scalars().all())
        except Exception as e:
            logger.error(f"❌ Failed to get valid comments for post: {e}")
            raise

    async def count_by_post(self, post_id: str) -> int:
        return await self.count(post_id=post_id)

    async def count_valid_by_post(self, post_id: str) -> int:
        try:
            result = await self.session.execute(
                select(func.count())
                .select_from(Comment)
                .where(Comment.post_id == post_id)
                .where(Comment.is_filtered.is_(False))
            )
            return int(result.scalar_one_or_none() or 0)
        except Exception as e:
            logger.error(f"❌ Failed to count valid comments: {e}")
            raise

    # ========================================================================
    # Filter Flags
    # ========================================================================

    async def apply_filter_flags(self, flags: FilterFlags, commit: bool = True) -> int:
        """
        Write is_filtered / filter_reason for many comments

        Args:
            flags: comment_id -> (is_filtered, filter_reason)
            commit: Commit immediately; pass False to join an outer transaction

        Returns:
            Number of comments updated
        """
        try:
            for comment_id, (is_filtered, reason) in flags.items():
                await self.session.execute(
                    update(Comment)
                    .where(Comment.id == comment_id)
                    .values(is_filtered=is_filtered, filter_reason=reason)
                )
            if commit:
                await self.session.commit()

            logger.debug(f"Applied filter flags to {len(flags)} comments")
            return len(flags)
        except Exception as e:
            if commit:
                await self.session.rollback()
            logger.error(f"❌ Failed to apply filter flags: {e}")
            raise
