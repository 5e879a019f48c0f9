# src/services/job_lifecycle.py
"""
Job Lifecycle
State machine for analysis jobs.

    PENDING -> RUNNING -> COMPLETED | FAILED
    FAILED  -> PENDING            (bounded retry)
    any     -> CANCELLED          (forced, idempotent)

Job records are only mutated through these transitions.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Sequence

from src.app.models import TOTAL_PIPELINE_STEPS, AnalysisJob, JobStatus
from src.domain.interfaces import IAnalysisJobRepository
from src.services.exceptions import (
    InvalidJobStateError,
    JobNotFoundError,
    RetryLimitExceededError,
)

logger = logging.getLogger(__name__)


class JobLifecycle:
    """
    Create, advance, fail, retry and cancel analysis jobs

    Usage:
        lifecycle = JobLifecycle(AnalysisJobRepository(session))
        job = await lifecycle.create(post_id, user_id)
    """

    def __init__(
        self,
        job_repo: IAnalysisJobRepository,
        max_retries: int = 3,
        now: Callable[[], datetime] = datetime.utcnow,
    ):
        self.job_repo = job_repo
        self.max_retries = max_retries
        self._now = now

    async def _require(self, job_id: str) -> AnalysisJob:
        job = await self.job_repo.get_by_id(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    # ========================================================================
    # Transitions
    # ========================================================================

    async def create(
        self, post_id: str, user_id: str, comment_ids: Optional[Sequence[str]] = None
    ) -> AnalysisJob:
        """Create a PENDING job with zeroed counters"""
        job = await self.job_repo.create(
            post_id=post_id,
            user_id=user_id,
            comment_ids=list(comment_ids) if comment_ids else None,
            status=JobStatus.PENDING,
            progress=0.0,
            total_steps=TOTAL_PIPELINE_STEPS,
            current_step=0,
            step_description=None,
            error_message=None,
            retry_count=0,
            max_retries=self.max_retries,
            created_at=self._now(),
        )
        logger.info(f"🆕 Created analysis job {job.id} for post {post_id}")
        return job

    async def update_progress(
        self,
        job_id: str,
        progress: float,
        current_step: int,
        description: str,
        status: Optional[JobStatus] = None,
    ) -> AnalysisJob:
        """
        Record progress, optionally moving the job to a new status

        RUNNING stamps started_at the first time; COMPLETED stamps completed_at.
        """
        job = await self._require(job_id)

        values: Dict[str, Any] = {
            "progress": max(0.0, min(100.0, float(progress))),
            "current_step": current_step,
            "step_description": description,
        }
        if status is not None:
            values["status"] = status
            if status == JobStatus.RUNNING and job.started_at is None:
                values["started_at"] = self._now()
            elif status == JobStatus.COMPLETED:
                values["completed_at"] = self._now()

        updated = await self.job_repo.update(job_id, **values)
        logger.debug(f"Job {job_id}: {values['progress']:.0f}% - {description}")
        return updated

    async def mark_failed(self, job_id: str, message: str) -> AnalysisJob:
        await self._require(job_id)
        updated = await self.job_repo.update(
            job_id,
            status=JobStatus.FAILED,
            error_message=message,
            completed_at=self._now(),
        )
        logger.error(f"❌ Job {job_id} failed: {message}")
        return updated

    async def retry(self, job_id: str) -> AnalysisJob:
        """
        Move a FAILED job back to PENDING

        Raises:
            JobNotFoundError: Unknown job
            InvalidJobStateError: Job is not FAILED
            RetryLimitExceededError: retry_count already at max_retries
        """
        job = await self._require(job_id)

        if job.status != JobStatus.FAILED:
            raise InvalidJobStateError(
                "Only failed jobs can be retried",
                details={"job_id": job_id, "status": job.status.value},
            )
        if job.retry_count >= job.max_retries:
            raise RetryLimitExceededError(job_id, job.max_retries)

        updated = await self.job_repo.update(
            job_id,
            status=JobStatus.PENDING,
            retry_count=job.retry_count + 1,
            progress=0.0,
            current_step=0,
            step_description=None,
            error_message=None,
            started_at=None,
            completed_at=None,
        )
        logger.info(f"🔄 Job {job_id} queued for retry {updated.retry_count}/{job.max_retries}")
        return updated

    async def cancel(self, job_id: str) -> AnalysisJob:
        """Force CANCELLED regardless of current state"""
        job = await self._require(job_id)
        if job.status == JobStatus.CANCELLED:
            return job

        updated = await self.job_repo.update(
            job_id,
            status=JobStatus.CANCELLED,
            completed_at=job.completed_at or self._now(),
        )
        logger.info(f"🛑 Job {job_id} cancelled")
        return updated

    # ========================================================================
    # Queries
    # ========================================================================

    async def get(self, job_id: str) -> Optional[AnalysisJob]:
        return await self.job_repo.get_by_id(job_id)

    async def is_cancelled(self, job_id: str) -> bool:
        job = await self._require(job_id)
        return job.status == JobStatus.CANCELLED

    async def get_user_jobs(self, user_id: str, limit: int = 20) -> List[AnalysisJob]:
        return await self.job_repo.list_by_user(user_id, limit=limit)

    async def get_queue_stats(self) -> Dict[str, int]:
        """Job counts per status plus a total"""
        counts = await self.job_repo.count_by_status()
        counts["total"] = sum(counts.values())
        return counts

    async def cleanup_finished(self, older_than_days: int = 7) -> int:
        """Delete terminal jobs that completed more than N days ago"""
        cutoff = self._now() - timedelta(days=older_than_days)
        return await self.job_repo.delete_finished_before(cutoff)
