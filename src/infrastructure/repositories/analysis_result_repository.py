# src/infrastructure/repositories/analysis_result_repository.py
"""
Analysis Result Repository
Persists the aggregate analysis with its children and completes the job
in the same transaction.
"""

from datetime import datetime
from typing import Optional
from sqlalchemy import select, update, desc, func
from sqlalchemy.ext.asyncio import AsyncSession
import logging

from .base import BaseRepository
from .comment_repository import CommentRepository
from src.app.models import (
    AnalysisJob,
    AnalysisResult,
    EmotionRecord,
    JobStatus,
    KeywordRecord,
    SentimentBreakdownRecord,
    ThemeRecord,
)
from src.domain.models import AnalysisOutcome
from src.services.exceptions import JobCancelledError, TransactionError

logger = logging.getLogger(__name__)

COMPLETED_DESCRIPTION = "Analysis completed"


class AnalysisResultRepository(BaseRepository[AnalysisResult]):
    """Repository for AnalysisResult aggregates"""

    def __init__(self, session: AsyncSession):
        super().__init__(session, AnalysisResult)

    # ========================================================================
    # Retrieval
    # ========================================================================

    async def get_latest_for_post(self, post_id: str) -> Optional[AnalysisResult]:
        """Most recently analyzed result for a post"""
        try:
            result = await self.session.execute(
                select(AnalysisResult)
                .where(AnalysisResult.post_id == post_id)
                .order_by(desc(AnalysisResult.analyzed_at))
                .limit(1)
            )
            return result.scalars().first()
        except Exception as e:
            logger.error(f"❌ Failed to get latest result for post: {e}")
            raise

    async def get_by_job(self, job_id: str) -> Optional[AnalysisResult]:
        return await self.find_one_by(job_id=job_id)

    async def count_since(self, cutoff: datetime) -> int:
        try:
            result = await self.session.execute(
                select(func.count())
                .select_from(AnalysisResult)
                .where(AnalysisResult.analyzed_at >= cutoff)
            )
            return int(result.scalar_one() or 0)
        except Exception as e:
            logger.error(f"❌ Failed to count recent results: {e}")
            raise

    # ========================================================================
    # Writes
    # ========================================================================

    async def relink_to_job(self, result_id: str, job_id: str) -> None:
        """Point a cached result at the job that reused it"""
        try:
            await self.session.execute(
                update(AnalysisResult)
                .where(AnalysisResult.id == result_id)
                .values(job_id=job_id)
            )
            await self.session.commit()
            logger.info(f"🔗 Result {result_id} relinked to job {job_id}")
        except Exception as e:
            await self.session.rollback()
            logger.error(f"❌ Failed to relink result: {e}")
            raise

    async def save_outcome(self, outcome: AnalysisOutcome, analyzed_at: datetime) -> AnalysisResult:
        """
        Persist the analysis aggregate in one transaction

        Replaces any earlier result for the post, writes breakdown,
        emotions, themes and keywords, updates comment filter flags and
        marks the job COMPLETED. Nothing is written if the job was
        cancelled meanwhile.

        Raises:
            JobCancelledError: The job is CANCELLED or missing
            TransactionError: When anything in the transaction fails
        """
        try:
            previous = await self.session.execute(
                select(AnalysisResult).where(AnalysisResult.post_id == outcome.post_id)
            )
            for stale in previous.scalars().all():
                await self.session.delete(stale)

            record = self._build_record(outcome, analyzed_at)
            self.session.add(record)

            await CommentRepository(self.session).apply_filter_flags(
                {c.id: (c.is_filtered, c.filter_reason) for c in outcome.comments},
                commit=False,
            )

            completed = await self.session.execute(
                update(AnalysisJob)
                .where(AnalysisJob.id == outcome.job_id)
                .where(AnalysisJob.status != JobStatus.CANCELLED)
                .values(
                    status=JobStatus.COMPLETED,
                    progress=100.0,
                    current_step=AnalysisJob.total_steps,
                    step_description=COMPLETED_DESCRIPTION,
                    completed_at=analyzed_at,
                )
            )
            if completed.rowcount == 0:
                raise JobCancelledError(outcome.job_id)

            await self.session.commit()
            await self.session.refresh(record)

            logger.info(
                f"💾 Saved analysis result {record.id} for post {outcome.post_id} "
                f"({len(outcome.themes.themes)} themes, {len(outcome.themes.keywords)} keywords)"
            )
            return record

        except JobCancelledError:
            await self.session.rollback()
            logger.info(f"🛑 Result for job {outcome.job_id} discarded, job was cancelled")
            raise

        except Exception as e:
            await self.session.rollback()
            logger.error(f"❌ Failed to save analysis results: {e}")
            raise TransactionError(
                "Failed to save analysis results", details={"job_id": outcome.job_id}
            ) from e

    async def delete_older_than(self, cutoff: datetime) -> int:
        """
        Delete results analyzed before the cutoff (children cascade)

        Returns:
            Number of deleted results
        """
        try:
            result = await self.session.execute(
                select(AnalysisResult).where(AnalysisResult.analyzed_at < cutoff)
            )
            expired = list(result.scalars().all())
            for record in expired:
                await self.session.delete(record)
            await self.session.commit()

            if expired:
                logger.info(f"🧹 Deleted {len(expired)} expired analysis results")
            return len(expired)
        except Exception as e:
            await self.session.rollback()
            logger.error(f"❌ Failed to delete expired results: {e}")
            raise

    # ========================================================================
    # Helpers
    # ========================================================================

    @staticmethod
    def _build_record(outcome: AnalysisOutcome, analyzed_at: datetime) -> AnalysisResult:
        breakdown = outcome.sentiment_breakdown
        summary = outcome.summary

        record = AnalysisResult(
            post_id=outcome.post_id,
            user_id=outcome.user_id,
            job_id=outcome.job_id,
            total_comments=outcome.total_comments,
            filtered_comments=outcome.filtered_out,
            summary=summary.summary,
            summary_quality=summary.quality_score,
            analyzed_at=analyzed_at,
        )

        record.sentiment_breakdown = SentimentBreakdownRecord(
            positive=breakdown.positive,
            negative=breakdown.negative,
            neutral=breakdown.neutral,
            confidence_score=outcome.sentiment.summary.average_confidence,
        )
        record.emotions = [
            EmotionRecord(name=e.name, percentage=e.prevalence, description=e.description)
            for e in summary.emotions
        ]
        record.themes = [
            ThemeRecord(
                name=theme.name,
                frequency=theme.frequency,
                sentiment=theme.sentiment,
                coherence_score=theme.coherence_score,
                keywords=list(theme.keywords),
                example_comments=[c.text for c in theme.representative_comments],
            )
            for theme in outcome.themes.themes
        ]
        record.keywords = [
            KeywordRecord(
                word=k.word,
                frequency=k.frequency,
                sentiment=k.sentiment,
                tfidf_score=k.tfidf_score,
                contexts=list(k.contexts),
            )
            for k in outcome.themes.keywords
        ]
        return record
