# tests/unit/test_repositories.py
"""
Unit Tests for comment, post and analysis result repositories
"""

from datetime import datetime, timedelta
from unittest.mock import AsyncMock, Mock

import pytest

from src.app.models import AnalysisResult
from src.infrastructure.repositories import (
    AnalysisResultRepository,
    CommentRepository,
    PostRepository,
)
from src.infrastructure.repositories.comment_repository import to_record
from src.services.exceptions import TransactionError

NOW = datetime(2024, 6, 1, 12, 0, 0)


class TestCommentRepository:
    @pytest.mark.asyncio
    async def test_get_by_ids_keeps_requested_order(self, db_session, sample_post):
        repo = CommentRepository(db_session)

        comments = await repo.get_by_ids(["comment_3", "missing", "comment_1", "comment_3"])

        assert [c.id for c in comments] == ["comment_3", "comment_1"]

    @pytest.mark.asyncio
    async def test_valid_comments_in_publish_order(self, db_session, sample_post):
        repo = CommentRepository(db_session)
        await repo.apply_filter_flags({"comment_2": (True, "duplicate")})

        comments = await repo.get_valid_by_post(sample_post.id)

        assert [c.id for c in comments] == ["comment_0", "comment_1", "comment_3", "comment_4", "comment_5"]
        assert await repo.count_by_post(sample_post.id) == 6
        assert await repo.count_valid_by_post(sample_post.id) == 5

    @pytest.mark.asyncio
    async def test_to_record(self, db_session, sample_post):
        comment = await CommentRepository(db_session).get_by_id("comment_2")

        record = to_record(comment)

        assert record.id == "comment_2"
        assert record.like_count == 2
        assert record.is_filtered is False
        assert record.author_name == "viewer2"


class TestPostRepository:
    @pytest.mark.asyncio
    async def test_ownership(self, db_session, sample_post):
        repo = PostRepository(db_session)

        assert (await repo.get_owned(sample_post.id, "user_1")).title == "Editing Tutorial"
        assert await repo.get_owned(sample_post.id, "user_2") is None

    @pytest.mark.asyncio
    async def test_connected_platforms(self, db_session, sample_post):
        repo = PostRepository(db_session)

        assert await repo.count_connected_platforms("user_1") == 1
        assert await repo.count_connected_platforms("user_2") == 0


class TestAnalysisResultRepository:
    @pytest.mark.asyncio
    async def test_latest_and_retention(self, db_session, sample_post):
        # Setup
        repo = AnalysisResultRepository(db_session)
        for days_ago in (10, 1):
            db_session.add(
                AnalysisResult(
                    post_id=sample_post.id,
                    user_id="user_1",
                    summary=f"{days_ago} days old",
                    analyzed_at=NOW - timedelta(days=days_ago),
                )
            )
        await db_session.commit()

        # Test & Assert
        latest = await repo.get_latest_for_post(sample_post.id)
        assert latest.summary == "1 days old"
        assert await repo.count_since(NOW - timedelta(days=2)) == 1

        assert await repo.delete_older_than(NOW - timedelta(days=7)) == 1
        assert await repo.count() == 1

    @pytest.mark.asyncio
    async def test_save_failure_rolls_back(self):
        session = AsyncMock()
        session.execute.side_effect = RuntimeError("database is locked")
        repo = AnalysisResultRepository(session)

        with pytest.raises(TransactionError) as exc_info:
            await repo.save_outcome(Mock(post_id="post_1", job_id="job_1"), analyzed_at=NOW)

        assert exc_info.value.details == {"job_id": "job_1"}
        session.rollback.assert_awaited_once()
