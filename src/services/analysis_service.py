# src/services/analysis_service.py
"""
Analysis Service
Caller-facing facade for comment analysis.

Handles:
- Submission throttling per client identity
- Prerequisite validation and the freshness cache
- Job creation and dispatch
- Status, results, cancel and retry
- Periodic maintenance and system statistics
"""

import asyncio
import logging
from collections import OrderedDict
from datetime import datetime, timedelta
from typing import Any, AsyncContextManager, Callable, Dict, List, Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from src.app.config import Config, get_config
from src.infrastructure.clients.rate_limiter import AttemptStore
from src.infrastructure.repositories.analysis_result_repository import AnalysisResultRepository
from src.infrastructure.repositories.comment_repository import CommentRepository
from src.infrastructure.repositories.post_repository import PostRepository
from src.infrastructure.tasks.dispatch import JobDispatcher, JobHandle, JobOutcome, JobRequest
from src.services.exceptions import (
    JobNotFoundError,
    ResourceNotFoundError,
    TooManyRequestsError,
    ValidationError,
)
from src.services.pipeline_orchestrator import PIPELINE_STEPS, PipelineOrchestrator

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], AsyncContextManager[AsyncSession]]
PipelineFactory = Callable[[AsyncSession], PipelineOrchestrator]

FINISHED_JOB_RETENTION_DAYS = 7
MAX_TRACKED_HANDLES = 256


class AnalysisService:
    """
    Comment analysis operations

    Every call opens its own session; running a job happens wherever the
    dispatcher sends it.

    Usage:
        service = AnalysisService(db_manager.session, build_pipeline, dispatcher, attempts)
        started = await service.start_analysis(post_id, user_id)
        status = await service.get_job_status(started["job_id"])
    """

    def __init__(
        self,
        session_factory: SessionFactory,
        pipeline_factory: PipelineFactory,
        dispatcher: JobDispatcher,
        attempt_store: AttemptStore,
        config: Optional[Config] = None,
        now: Callable[[], datetime] = datetime.utcnow,
    ):
        self.session_factory = session_factory
        self.pipeline_factory = pipeline_factory
        self.dispatcher = dispatcher
        self.attempt_store = attempt_store
        self.config = config or get_config()
        self._now = now
        self._handles: "OrderedDict[str, JobHandle]" = OrderedDict()

    # ========================================================================
    # Submission
    # ========================================================================

    async def start_analysis(
        self,
        post_id: str,
        user_id: str,
        client_id: Optional[str] = None,
        comment_ids: Optional[Sequence[str]] = None,
        skip_validation: bool = False,
        estimate_only: bool = False,
    ) -> Dict[str, Any]:
        """
        Validate, check the cache, estimate and enqueue an analysis

        Args:
            post_id: Post to analyze
            user_id: Requesting user
            client_id: Throttling identity (defaults to user_id)
            comment_ids: Optional subset of comments
            skip_validation: Skip prerequisite checks
            estimate_only: Return the estimate without creating a job

        Returns:
            {"job_id", "estimated_time", "validation", "cached", "result_id"}

        Raises:
            TooManyRequestsError: Client exceeded its submission allowance
            ValidationError: Prerequisites not met (messages in `errors`)
        """
        await self._check_attempts(client_id or user_id)

        async with self.session_factory() as session:
            pipeline = self.pipeline_factory(session)

            validation: Dict[str, Any] = {"valid": True, "errors": []}
            if not skip_validation:
                validation = await pipeline.validate_analysis_prerequisites(post_id, user_id)
                if not validation["valid"]:
                    logger.warning(
                        f"⚠️ Analysis prerequisites failed for post {post_id}: "
                        f"{validation['errors']}"
                    )
                    raise ValidationError(
                        "Analysis prerequisites not met", errors=validation["errors"]
                    )

            cached = await pipeline.get_fresh_result(post_id)
            if cached is not None:
                logger.info(f"♻️ Fresh analysis exists for post {post_id}: {cached.id}")
                return {
                    "job_id": None,
                    "estimated_time": 0.0,
                    "validation": validation,
                    "cached": True,
                    "result_id": cached.id,
                }

            if comment_ids:
                comment_count = len(comment_ids)
            else:
                comment_count = await pipeline.comment_repo.count_valid_by_post(post_id)
            estimated_time = pipeline.estimate_analysis_time(comment_count)

        response: Dict[str, Any] = {
            "job_id": None,
            "estimated_time": estimated_time,
            "validation": validation,
            "cached": False,
            "result_id": None,
        }
        if estimate_only:
            return response

        response["job_id"] = await self.enqueue(post_id, user_id, comment_ids)
        return response

    async def enqueue(
        self,
        content_id: str,
        user_id: str,
        comment_ids: Optional[Sequence[str]] = None,
    ) -> str:
        """Create a PENDING job and hand it to the dispatcher"""
        async with self.session_factory() as session:
            pipeline = self.pipeline_factory(session)
            job = await pipeline.lifecycle.create(content_id, user_id, comment_ids)

        await self._submit(
            JobRequest(
                job_id=job.id,
                post_id=content_id,
                user_id=user_id,
                comment_ids=list(comment_ids) if comment_ids else None,
            )
        )
        return job.id

    async def wait_for_job(self, job_id: str, timeout: Optional[float] = None) -> JobOutcome:
        """Block until a job submitted by this service finishes"""
        handle = self._handles.get(job_id)
        if handle is None:
            raise JobNotFoundError(job_id)

        outcome = await self.dispatcher.wait(handle, timeout=timeout)
        self._handles.pop(job_id, None)
        return outcome

    async def _submit(self, request: JobRequest) -> JobHandle:
        handle = await self.dispatcher.submit(request)
        self._handles[request.job_id] = handle
        self._handles.move_to_end(request.job_id)
        while len(self._handles) > MAX_TRACKED_HANDLES:
            self._handles.popitem(last=False)
        logger.info(f"📨 Job {request.job_id} dispatched (task {handle.task_id})")
        return handle

    async def _check_attempts(self, client_id: str) -> None:
        """Store calls may hit Redis, so they run off the event loop"""
        attempts = await asyncio.to_thread(self.attempt_store.record, client_id)
        limit = self.config.security.max_analysis_attempts

        if attempts > limit:
            retry_after = await asyncio.to_thread(self.attempt_store.ttl, client_id)
            logger.warning(f"🚫 Client {client_id} exceeded {limit} analysis attempts")
            raise TooManyRequestsError(client_id, retry_after=retry_after)

    # ========================================================================
    # Job Queries & Control
    # ========================================================================

    async def get_job_status(self, job_id: str) -> Dict[str, Any]:
        async with self.session_factory() as session:
            status = await self.pipeline_factory(session).get_pipeline_status(job_id)

        if status is None:
            raise JobNotFoundError(job_id)
        return status

    async def get_analysis_results(self, job_id: str) -> Dict[str, Any]:
        """
        Stored analysis for a job, with post metadata

        Raises:
            ResourceNotFoundError: No result is linked to the job
        """
        async with self.session_factory() as session:
            result = await AnalysisResultRepository(session).get_by_job(job_id)
            if result is None:
                raise ResourceNotFoundError(
                    "AnalysisResult", job_id, message="Analysis results not found"
                )

            post = await PostRepository(session).get_by_id(result.post_id)
            data = result.to_dict()
            data["post"] = (
                {"title": post.title, "platform": post.platform, "url": post.url}
                if post is not None
                else None
            )
            return data

    async def cancel_analysis(self, job_id: str) -> Dict[str, Any]:
        async with self.session_factory() as session:
            job = await self.pipeline_factory(session).lifecycle.cancel(job_id)
            return job.to_dict()

    async def retry_analysis(self, job_id: str) -> Dict[str, Any]:
        """
        Reset a FAILED job to PENDING and dispatch it again

        Raises:
            JobNotFoundError, InvalidJobStateError, RetryLimitExceededError
        """
        async with self.session_factory() as session:
            job = await self.pipeline_factory(session).lifecycle.retry(job_id)
            data = job.to_dict()

        await self._submit(
            JobRequest(
                job_id=job_id,
                post_id=data["post_id"],
                user_id=data["user_id"],
                comment_ids=data["comment_ids"],
            )
        )
        return data

    async def get_user_jobs(self, user_id: str, limit: int = 20) -> List[Dict[str, Any]]:
        async with self.session_factory() as session:
            jobs = await self.pipeline_factory(session).lifecycle.get_user_jobs(user_id, limit)
            return [job.to_dict() for job in jobs]

    # ========================================================================
    # Maintenance & Stats
    # ========================================================================

    async def perform_maintenance(self) -> Dict[str, Any]:
        """
        Delete finished jobs, expired results and stale attempt entries

        Each step runs even if an earlier one failed; failures are
        reported in `errors`.
        """
        errors: List[str] = []
        jobs_deleted = 0
        results_deleted = 0
        attempts_expired = 0

        async with self.session_factory() as session:
            pipeline = self.pipeline_factory(session)

            try:
                jobs_deleted = await pipeline.lifecycle.cleanup_finished(
                    FINISHED_JOB_RETENTION_DAYS
                )
            except Exception as e:
                logger.error(f"❌ Job cleanup failed: {e}")
                errors.append(f"Job cleanup failed: {e}")

            try:
                cutoff = self._now() - timedelta(days=self.config.pipeline.result_retention_days)
                results_deleted = await pipeline.result_repo.delete_older_than(cutoff)
            except Exception as e:
                logger.error(f"❌ Result cleanup failed: {e}")
                errors.append(f"Result cleanup failed: {e}")

        cleanup = getattr(self.attempt_store, "cleanup", None)
        if cleanup is not None:
            attempts_expired = cleanup()

        logger.info(
            f"🧹 Maintenance done: {jobs_deleted} jobs, {results_deleted} results, "
            f"{attempts_expired} attempt entries"
        )
        return {
            "jobs_deleted": jobs_deleted,
            "results_deleted": results_deleted,
            "attempts_expired": attempts_expired,
            "errors": errors,
        }

    async def get_system_stats(self) -> Dict[str, Any]:
        async with self.session_factory() as session:
            pipeline = self.pipeline_factory(session)
            queue = await pipeline.lifecycle.get_queue_stats()

            result_repo = AnalysisResultRepository(session)
            database = {
                "total_posts": await PostRepository(session).count(),
                "total_comments": await CommentRepository(session).count(),
                "total_analyses": await result_repo.count(),
                "recent_analyses": await result_repo.count_since(
                    self._now() - timedelta(hours=24)
                ),
            }

        return {
            "queue": queue,
            "pipeline": {
                "steps": [step.name for step in PIPELINE_STEPS],
                "dispatcher": type(self.dispatcher).__name__,
                "cache_ttl_hours": self.config.pipeline.cache_ttl_hours,
            },
            "database": database,
        }
