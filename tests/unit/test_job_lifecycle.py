# tests/unit/test_job_lifecycle.py
"""
Unit Tests for JobLifecycle transitions
"""

from datetime import datetime, timedelta

import pytest
import pytest_asyncio

from src.app.models import JobStatus
from src.infrastructure.repositories.analysis_job_repository import AnalysisJobRepository
from src.services.exceptions import (
    InvalidJobStateError,
    JobNotFoundError,
    RetryLimitExceededError,
)
from src.services.job_lifecycle import JobLifecycle

NOW = datetime(2024, 6, 1, 12, 0, 0)


@pytest_asyncio.fixture
async def lifecycle(db_session):
    return JobLifecycle(AnalysisJobRepository(db_session), max_retries=2, now=lambda: NOW)


class TestCreate:
    @pytest.mark.asyncio
    async def test_new_job_is_pending(self, lifecycle):
        job = await lifecycle.create("post_1", "user_1")

        assert job.status == JobStatus.PENDING
        assert job.progress == 0.0
        assert job.current_step == 0
        assert job.total_steps == 5
        assert job.retry_count == 0
        assert job.max_retries == 2
        assert job.created_at == NOW

    @pytest.mark.asyncio
    async def test_comment_subset_is_stored(self, lifecycle):
        job = await lifecycle.create("post_1", "user_1", comment_ids=["c1", "c2"])

        assert job.comment_ids == ["c1", "c2"]
        assert job.to_dict()["comment_ids"] == ["c1", "c2"]
        assert (await lifecycle.create("post_1", "user_1")).comment_ids is None


class TestProgress:
    @pytest.mark.asyncio
    async def test_running_stamps_started_once(self, lifecycle):
        # Setup
        job = await lifecycle.create("post_1", "user_1")

        # Test
        await lifecycle.update_progress(job.id, 10, 1, "Filtering", status=JobStatus.RUNNING)
        lifecycle._now = lambda: NOW + timedelta(minutes=5)
        updated = await lifecycle.update_progress(
            job.id, 40, 2, "Sentiment", status=JobStatus.RUNNING
        )

        # Assert
        assert updated.started_at == NOW
        assert updated.progress == 40.0
        assert updated.current_step == 2
        assert updated.step_description == "Sentiment"

    @pytest.mark.asyncio
    async def test_completed_stamps_completed_at(self, lifecycle):
        job = await lifecycle.create("post_1", "user_1")

        updated = await lifecycle.update_progress(
            job.id, 100, 5, "Done", status=JobStatus.COMPLETED
        )

        assert updated.status == JobStatus.COMPLETED
        assert updated.completed_at == NOW
        assert updated.is_completed

    @pytest.mark.asyncio
    async def test_duration_reported_once_finished(self, lifecycle):
        # Setup
        job = await lifecycle.create("post_1", "user_1")
        await lifecycle.update_progress(job.id, 10, 1, "Filtering", status=JobStatus.RUNNING)
        assert (await lifecycle.get(job.id)).to_dict()["duration_seconds"] is None

        # Test
        lifecycle._now = lambda: NOW + timedelta(seconds=90)
        updated = await lifecycle.update_progress(
            job.id, 100, 5, "Done", status=JobStatus.COMPLETED
        )

        # Assert
        assert updated.to_dict()["duration_seconds"] == 90.0

    @pytest.mark.asyncio
    async def test_progress_is_clamped(self, lifecycle):
        job = await lifecycle.create("post_1", "user_1")

        updated = await lifecycle.update_progress(job.id, 140, 5, "Over")

        assert updated.progress == 100.0
        assert updated.status == JobStatus.PENDING

    @pytest.mark.asyncio
    async def test_unknown_job(self, lifecycle):
        with pytest.raises(JobNotFoundError):
            await lifecycle.update_progress("missing", 10, 1, "x")


class TestRetry:
    @pytest.mark.asyncio
    async def test_failed_job_returns_to_pending(self, lifecycle):
        # Setup
        job = await lifecycle.create("post_1", "user_1")
        await lifecycle.update_progress(job.id, 40, 2, "Sentiment", status=JobStatus.RUNNING)
        await lifecycle.mark_failed(job.id, "provider down")

        # Test
        retried = await lifecycle.retry(job.id)

        # Assert
        assert retried.status == JobStatus.PENDING
        assert retried.retry_count == 1
        assert retried.progress == 0.0
        assert retried.current_step == 0
        assert retried.error_message is None
        assert retried.started_at is None
        assert retried.completed_at is None

    @pytest.mark.asyncio
    async def test_retry_limit(self, lifecycle):
        job = await lifecycle.create("post_1", "user_1")

        for _ in range(2):
            await lifecycle.mark_failed(job.id, "boom")
            await lifecycle.retry(job.id)
        await lifecycle.mark_failed(job.id, "boom")

        with pytest.raises(RetryLimitExceededError):
            await lifecycle.retry(job.id)

        job = await lifecycle.get(job.id)
        assert job.retry_count == 2
        assert job.can_retry is False

    @pytest.mark.asyncio
    async def test_only_failed_jobs_retry(self, lifecycle):
        job = await lifecycle.create("post_1", "user_1")

        with pytest.raises(InvalidJobStateError):
            await lifecycle.retry(job.id)

    @pytest.mark.asyncio
    async def test_unknown_job(self, lifecycle):
        with pytest.raises(JobNotFoundError):
            await lifecycle.retry("missing")


class TestCancel:
    @pytest.mark.asyncio
    async def test_cancel_is_idempotent(self, lifecycle):
        job = await lifecycle.create("post_1", "user_1")

        first = await lifecycle.cancel(job.id)
        second = await lifecycle.cancel(job.id)

        assert first.status == JobStatus.CANCELLED
        assert second.status == JobStatus.CANCELLED
        assert await lifecycle.is_cancelled(job.id)

    @pytest.mark.asyncio
    async def test_cancel_overrides_completed(self, lifecycle):
        job = await lifecycle.create("post_1", "user_1")
        await lifecycle.update_progress(job.id, 100, 5, "Done", status=JobStatus.COMPLETED)

        cancelled = await lifecycle.cancel(job.id)

        assert cancelled.status == JobStatus.CANCELLED
        assert cancelled.completed_at == NOW


class TestQueries:
    @pytest.mark.asyncio
    async def test_queue_stats(self, lifecycle):
        first = await lifecycle.create("post_1", "user_1")
        await lifecycle.create("post_2", "user_1")
        await lifecycle.mark_failed(first.id, "boom")

        stats = await lifecycle.get_queue_stats()

        assert stats["PENDING"] == 1
        assert stats["FAILED"] == 1
        assert stats["RUNNING"] == 0
        assert stats["total"] == 2

    @pytest.mark.asyncio
    async def test_user_jobs_newest_first(self, lifecycle):
        first = await lifecycle.create("post_1", "user_1")
        lifecycle._now = lambda: NOW + timedelta(minutes=1)
        second = await lifecycle.create("post_2", "user_1")
        await lifecycle.create("post_3", "user_2")

        jobs = await lifecycle.get_user_jobs("user_1")

        assert [j.id for j in jobs] == [second.id, first.id]

    @pytest.mark.asyncio
    async def test_cleanup_finished(self, lifecycle):
        old = await lifecycle.create("post_1", "user_1")
        await lifecycle.mark_failed(old.id, "boom")
        pending = await lifecycle.create("post_2", "user_1")

        lifecycle._now = lambda: NOW + timedelta(days=8)
        deleted = await lifecycle.cleanup_finished(older_than_days=7)

        assert deleted == 1
        assert await lifecycle.get(old.id) is None
        assert await lifecycle.get(pending.id) is not None
