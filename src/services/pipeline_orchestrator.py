# src/services/pipeline_orchestrator.py
"""
Pipeline Orchestrator
Runs one analysis job through the five pipeline stages.

    preprocessing -> sentiment -> themes -> summary -> saving

Features:
- Freshness cache: a result younger than the TTL is reused without running stages
- Weighted progress reported before each step
- Cooperative cancellation checked between steps
- Any stage failure marks the job FAILED and re-raises the original error
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Sequence

from src.app.config import PipelineSettings
from src.app.models import TOTAL_PIPELINE_STEPS, AnalysisResult, JobStatus
from src.domain.models import (
    AnalysisOutcome,
    CommentRecord,
    SentimentBreakdown,
    SummaryInput,
)
from src.infrastructure.repositories.comment_repository import to_record
from src.services.comment_filter import CommentFilter
from src.services.exceptions import JobCancelledError, ValidationError
from src.services.job_lifecycle import JobLifecycle
from src.services.sentiment_stage import SentimentStage
from src.services.summary_stage import SummaryStage
from src.services.theme_stage import ThemeStage

logger = logging.getLogger(__name__)

CACHED_RESULT_DESCRIPTION = "Used cached analysis result"


@dataclass(frozen=True)
class PipelineStep:
    name: str
    weight: float
    description: str


PIPELINE_STEPS = (
    PipelineStep("preprocessing", 0.20, "Preprocessing comments and filtering spam"),
    PipelineStep("sentiment", 0.30, "Analyzing sentiment and emotions"),
    PipelineStep("themes", 0.30, "Extracting themes and keywords"),
    PipelineStep("summary", 0.15, "Generating summary and insights"),
    PipelineStep("saving", 0.05, "Saving results to database"),
)

STEP_WEIGHTS = tuple(step.weight for step in PIPELINE_STEPS)


def calculate_progress(step_index: int) -> int:
    """Progress reported before step `step_index` (0-based) starts"""
    return round(sum(STEP_WEIGHTS[:step_index]) * 100)


class PipelineOrchestrator:
    """
    Sequence the analysis stages for one job

    Usage:
        orchestrator = PipelineOrchestrator(lifecycle, comments, results, posts,
                                            comment_filter, sentiment, themes, summary)
        result_id = await orchestrator.run(job_id, post_id, user_id)
    """

    def __init__(
        self,
        lifecycle: JobLifecycle,
        comment_repo,
        result_repo,
        post_repo,
        comment_filter: CommentFilter,
        sentiment_stage: SentimentStage,
        theme_stage: ThemeStage,
        summary_stage: SummaryStage,
        settings: Optional[PipelineSettings] = None,
        now: Callable[[], datetime] = datetime.utcnow,
    ):
        self.lifecycle = lifecycle
        self.comment_repo = comment_repo
        self.result_repo = result_repo
        self.post_repo = post_repo
        self.comment_filter = comment_filter
        self.sentiment_stage = sentiment_stage
        self.theme_stage = theme_stage
        self.summary_stage = summary_stage
        self.settings = settings or PipelineSettings()
        self._now = now

    @property
    def cache_ttl(self) -> timedelta:
        return timedelta(hours=self.settings.cache_ttl_hours)

    # ========================================================================
    # Pipeline Execution
    # ========================================================================

    async def run(
        self,
        job_id: str,
        post_id: str,
        user_id: str,
        comment_ids: Optional[Sequence[str]] = None,
    ) -> Optional[str]:
        """
        Execute the full pipeline for a job

        Args:
            job_id: Job to drive
            post_id: Post whose comments are analyzed
            user_id: Requesting user
            comment_ids: Specific comments (default: all unfiltered comments of the post)

        Returns:
            ID of the stored (or reused) AnalysisResult, None if the job was cancelled

        Raises:
            Exception: Whatever a stage raised, after the job is marked FAILED
        """
        logger.info(f"🚀 Starting analysis job {job_id} for post {post_id}")

        try:
            cached_id = await self._use_cached_result(job_id, post_id)
            if cached_id is not None:
                return cached_id

            comments = await self._load_comments(post_id, comment_ids)

            await self._enter_step(job_id, 0)
            filter_result = self.comment_filter.filter(comments)
            filtered = filter_result.filtered_comments

            await self._enter_step(job_id, 1)
            sentiment = await self.sentiment_stage.analyze_batch(filtered)

            await self._enter_step(job_id, 2)
            themes = self.theme_stage.analyze_themes(filtered, sentiment.results)

            await self._enter_step(job_id, 3)
            distribution = sentiment.summary.sentiment_distribution
            breakdown = SentimentBreakdown(
                positive=distribution.get("positive", 0.0),
                negative=distribution.get("negative", 0.0),
                neutral=distribution.get("neutral", 0.0),
            )
            summary = await self.summary_stage.generate_summary(
                SummaryInput(
                    sentiment_breakdown=breakdown,
                    themes=themes.themes,
                    keywords=themes.keywords,
                    total_comments=len(comments),
                    filtered_comments=filter_result.removed_count,
                )
            )

            await self._enter_step(job_id, 4)
            outcome = AnalysisOutcome(
                post_id=post_id,
                user_id=user_id,
                job_id=job_id,
                filter_result=filter_result,
                sentiment=sentiment,
                themes=themes,
                summary=summary,
                sentiment_breakdown=breakdown,
                total_comments=len(comments),
                comments=comments,
            )
            record = await self.result_repo.save_outcome(outcome, analyzed_at=self._now())

            logger.info(f"✅ Analysis job {job_id} completed (result {record.id})")
            return record.id

        except JobCancelledError:
            logger.info(f"🛑 Analysis job {job_id} stopped after cancellation")
            return None

        except Exception as e:
            message = str(e) or e.__class__.__name__
            logger.error(f"❌ Analysis job {job_id} failed: {message}")
            try:
                await self.lifecycle.mark_failed(job_id, message)
            except Exception as mark_error:
                logger.error(f"❌ Could not mark job {job_id} as failed: {mark_error}")
            raise

    async def get_fresh_result(self, post_id: str) -> Optional[AnalysisResult]:
        """Latest result for the post if it is younger than the cache TTL"""
        cached = await self.result_repo.get_latest_for_post(post_id)
        if cached is None:
            return None

        if cached.age_seconds(self._now()) >= self.cache_ttl.total_seconds():
            logger.debug(f"Cached result {cached.id} for post {post_id} is stale")
            return None
        return cached

    async def _use_cached_result(self, job_id: str, post_id: str) -> Optional[str]:
        cached = await self.get_fresh_result(post_id)
        if cached is None:
            return None

        await self.result_repo.relink_to_job(cached.id, job_id)
        await self.lifecycle.update_progress(
            job_id,
            100,
            TOTAL_PIPELINE_STEPS,
            CACHED_RESULT_DESCRIPTION,
            status=JobStatus.COMPLETED,
        )
        logger.info(f"♻️ Job {job_id} reused cached result {cached.id}")
        return cached.id

    async def _load_comments(
        self, post_id: str, comment_ids: Optional[Sequence[str]]
    ) -> List[CommentRecord]:
        if comment_ids:
            rows = await self.comment_repo.get_by_ids(comment_ids)
        else:
            rows = await self.comment_repo.get_valid_by_post(post_id)

        if not rows:
            raise ValidationError("No comments found for analysis")
        return [to_record(row) for row in rows]

    async def _enter_step(self, job_id: str, index: int) -> None:
        """Check for cancellation, then report progress for the step about to run"""
        if await self.lifecycle.is_cancelled(job_id):
            raise JobCancelledError(job_id)

        step = PIPELINE_STEPS[index]
        await self.lifecycle.update_progress(
            job_id,
            calculate_progress(index),
            index + 1,
            step.description,
            status=JobStatus.RUNNING,
        )

    # ========================================================================
    # Pre-flight & Status
    # ========================================================================

    async def validate_analysis_prerequisites(self, post_id: str, user_id: str) -> Dict[str, Any]:
        """
        Collect every reason the post cannot be analyzed yet

        Returns:
            {"valid": bool, "errors": [messages]}
        """
        errors: List[str] = []

        post = await self.post_repo.get_owned(post_id, user_id)
        if post is None:
            errors.append("Post not found or access denied")
        else:
            if await self.comment_repo.count_by_post(post_id) == 0:
                errors.append("Post has no comments to analyze")
            if await self.comment_repo.count_valid_by_post(post_id) < self.settings.min_valid_comments:
                errors.append(
                    f"Post needs at least {self.settings.min_valid_comments} valid comments "
                    f"for meaningful analysis"
                )

        if await self.post_repo.count_connected_platforms(user_id) == 0:
            errors.append("User has no connected social media platforms")

        return {"valid": not errors, "errors": errors}

    def estimate_analysis_time(self, comment_count: int) -> float:
        """Estimated seconds: base + per-comment, capped"""
        estimate = (
            self.settings.estimate_base_seconds
            + comment_count * self.settings.estimate_per_comment_seconds
        )
        return min(estimate, self.settings.estimate_max_seconds)

    async def get_pipeline_status(self, job_id: str) -> Optional[Dict[str, Any]]:
        """Job fields plus step layout and the result ID once available"""
        job = await self.lifecycle.get(job_id)
        if job is None:
            return None

        result = await self.result_repo.get_by_job(job_id)
        status = job.to_dict()
        status["steps"] = [
            {"name": step.name, "weight": step.weight, "description": step.description}
            for step in PIPELINE_STEPS
        ]
        status["result_id"] = result.id if result is not None else None
        return status
