# src/infrastructure/tasks/analysis_tasks.py
"""
Analysis Background Tasks
Celery worker entry point for comment analysis jobs
"""

import logging
from typing import Any, Dict, List, Optional

from src.infrastructure.tasks.celery_app import celery_app
from src.infrastructure.tasks.dispatch import JobRequest, outcome_from_run

logger = logging.getLogger(__name__)


@celery_app.task(
    bind=True,
    name="tasks.analysis.run_comment_analysis",
    queue="analysis",
)
def run_comment_analysis(
    self,
    job_id: str,
    post_id: str,
    user_id: str,
    comment_ids: Optional[List[str]] = None,
) -> Dict[str, Any]:
    """
    Run the analysis pipeline for one job

    The job record carries status and progress; retrying a failed job
    goes through JobLifecycle.retry, not Celery's retry mechanism.

    Args:
        job_id: Analysis job to drive
        post_id: Post whose comments are analyzed
        user_id: Requesting user
        comment_ids: Optional subset of comments

    Returns:
        JobOutcome as a dict
    """
    from src.app.dependencies import run_analysis_job

    request = JobRequest(
        job_id=job_id,
        post_id=post_id,
        user_id=user_id,
        comment_ids=comment_ids,
    )

    logger.info(f"🧠 Worker task {self.request.id} running job {job_id}")

    try:
        result_id = self.run_async(lambda: run_analysis_job(request))
    except Exception as e:
        logger.error(f"❌ Job {job_id} failed in worker: {e}")
        raise

    return outcome_from_run(request, result_id).to_dict()
