"""
Background Tasks Package
Job dispatch plus the Celery worker and beat tasks

The Celery app is not imported here; workers load it explicitly:
    celery -A src.infrastructure.tasks.celery_app worker -Q analysis,default
"""

from src.infrastructure.tasks.dispatch import (
    CeleryDispatcher,
    InProcessDispatcher,
    JobDispatcher,
    JobHandle,
    JobOutcome,
    JobRequest,
)

__all__ = [
    "CeleryDispatcher",
    "InProcessDispatcher",
    "JobDispatcher",
    "JobHandle",
    "JobOutcome",
    "JobRequest",
]
