# src/infrastructure/repositories/analysis_job_repository.py
"""
Analysis Job Repository
Storage for job records; state transitions live in JobLifecycle
"""

from datetime import datetime
from typing import Dict, List
from sqlalchemy import select, func, delete, desc
from sqlalchemy.ext.asyncio import AsyncSession
import logging

from .base import BaseRepository
from src.app.models import AnalysisJob, JobStatus

logger = logging.getLogger(__name__)

FINISHED_STATUSES = (JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED)


class AnalysisJobRepository(BaseRepository[AnalysisJob]):
    """Repository for AnalysisJob records"""

    def __init__(self, session: AsyncSession):
        super().__init__(session, AnalysisJob)

    async def list_by_user(self, user_id: str, limit: int = 20) -> List[AnalysisJob]:
        """Most recent jobs first"""
        try:
            result = await self.session.execute(
                select(AnalysisJob)
                .where(AnalysisJob.user_id == user_id)
                .order_by(desc(AnalysisJob.created_at))
                .limit(limit)
            )
            return list(result.scalars().all())
        except Exception as e:
            logger.error(f"❌ Failed to list jobs for user: {e}")
            raise

    async def count_by_status(self) -> Dict[str, int]:
        """
        Job counts per status

        Returns:
            Mapping with every JobStatus value, zero when absent
        """
        try:
            result = await self.session.execute(
                select(AnalysisJob.status, func.count()).group_by(AnalysisJob.status)
            )
            counts = {status.value: 0 for status in JobStatus}
            for status, count in result.all():
                counts[JobStatus(status).value] = int(count)
            return counts
        except Exception as e:
            logger.error(f"❌ Failed to count jobs by status: {e}")
            raise

    async def delete_finished_before(self, cutoff: datetime) -> int:
        """
        Delete terminal jobs completed before the cutoff

        Returns:
            Number of deleted jobs
        """
        try:
            result = await self.session.execute(
                delete(AnalysisJob)
                .where(AnalysisJob.status.in_(FINISHED_STATUSES))
                .where(AnalysisJob.completed_at < cutoff)
            )
            await self.session.commit()

            deleted = int(result.rowcount or 0)
            if deleted:
                logger.info(f"🧹 Deleted {deleted} finished analysis jobs")
            return deleted
        except Exception as e:
            await self.session.rollback()
            logger.error(f"❌ Failed to delete finished jobs: {e}")
            raise
