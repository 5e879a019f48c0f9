# src/infrastructure/tasks/scheduled_tasks.py
"""
Scheduled Background Tasks
Periodic maintenance run by Celery Beat (see build_beat_schedule)
"""

import logging
from datetime import datetime
from typing import Any, Dict

from src.infrastructure.tasks.celery_app import MAINTENANCE_TASK, celery_app

logger = logging.getLogger(__name__)


@celery_app.task(bind=True, name=MAINTENANCE_TASK)
def perform_maintenance(self) -> Dict[str, Any]:
    """
    Delete finished jobs and expired analysis results

    Returns:
        Maintenance report
    """
    from src.app.dependencies import get_analysis_service

    logger.info("🧹 Running analysis maintenance...")
    report = self.run_async(lambda: get_analysis_service().perform_maintenance())
    report["performed_at"] = datetime.utcnow().isoformat()

    if report["errors"]:
        logger.warning(f"⚠️ Maintenance finished with errors: {report['errors']}")
    else:
        logger.info("✅ Maintenance complete")

    return report
