# src/infrastructure/tasks/celery_app.py
"""
Celery Application Factory
Creates and configures the Celery app that runs analysis jobs on workers
"""

import asyncio
import logging
from datetime import timedelta
from typing import Any, Awaitable, Callable, Dict

from celery import Celery, Task
from celery.signals import task_failure, task_postrun, task_prerun
from kombu import Exchange, Queue

from src.app.config import get_config

logger = logging.getLogger(__name__)

MAINTENANCE_TASK = "tasks.scheduled.perform_maintenance"
TASK_MODULES = [
    "src.infrastructure.tasks.analysis_tasks",
    "src.infrastructure.tasks.scheduled_tasks",
]


class PipelineTask(Task):
    """
    Base task for work that runs on the async database stack

    Every call gets a fresh event loop, so the pooled engine is disposed
    before the loop closes.
    """

    def run_async(self, coro_factory: Callable[[], Awaitable[Any]]) -> Any:
        from src.app.database import db_manager

        async def _run() -> Any:
            try:
                return await coro_factory()
            finally:
                await db_manager.dispose()

        return asyncio.run(_run())


def create_celery_app(app_name: str = "comment_insight") -> Celery:
    """
    Create and configure Celery application

    Args:
        app_name: Application name for Celery

    Returns:
        Configured Celery instance
    """
    config = get_config()
    celery_config = config.celery

    celery_app = Celery(
        app_name,
        broker=celery_config.broker_url,
        backend=celery_config.result_backend,
        task_cls=PipelineTask,
        include=TASK_MODULES,
    )

    celery_app.conf.update(
        # Serialization
        task_serializer=celery_config.task_serializer,
        result_serializer=celery_config.result_serializer,
        accept_content=celery_config.accept_content,
        # Task execution
        task_track_started=celery_config.task_track_started,
        task_time_limit=celery_config.task_time_limit,
        task_soft_time_limit=celery_config.task_soft_time_limit,
        task_acks_late=celery_config.task_acks_late,
        task_reject_on_worker_lost=celery_config.task_reject_on_worker_lost,
        # Result backend
        result_expires=celery_config.result_expires,
        # Worker settings
        worker_concurrency=celery_config.worker_concurrency,
        worker_prefetch_multiplier=celery_config.worker_prefetch_multiplier,
        worker_max_tasks_per_child=celery_config.worker_max_tasks_per_child,
        # Logging
        worker_hijack_root_logger=celery_config.worker_hijack_root_logger,
        worker_log_format=celery_config.worker_log_format,
        # Timezone
        timezone="UTC",
        enable_utc=True,
        # Task routing
        task_default_queue=celery_config.task_default_queue,
        task_routes=celery_config.task_routes,
        # Beat
        beat_schedule=build_beat_schedule(celery_config.maintenance_interval_hours),
    )

    default_exchange = Exchange("default", type="direct")

    celery_app.conf.task_queues = (
        Queue("default", exchange=default_exchange, routing_key="default", priority=5),
        Queue("analysis", exchange=default_exchange, routing_key="analysis", priority=7),
    )

    logger.info(f"✅ Celery app initialized: {app_name}")
    logger.info(f"📡 Broker: {celery_config.broker_url}")
    logger.info(f"🔄 Worker concurrency: {celery_config.worker_concurrency}")

    return celery_app


def build_beat_schedule(interval_hours: int) -> Dict[str, Dict[str, Any]]:
    """Periodic maintenance: expired results and finished jobs"""
    return {
        "analysis-maintenance": {
            "task": MAINTENANCE_TASK,
            "schedule": timedelta(hours=interval_hours),
            "options": {"queue": "default"},
        },
    }


# Create global Celery instance
celery_app = create_celery_app()


# ============================================================================
# Signal Handlers
# ============================================================================


@task_prerun.connect
def task_prerun_handler(sender=None, task_id=None, task=None, **extra):
    logger.info(f"🚀 Task started: {task.name} [ID: {task_id}]")


@task_postrun.connect
def task_postrun_handler(sender=None, task_id=None, task=None, state=None, **extra):
    logger.info(f"✅ Task finished: {task.name} [ID: {task_id}] state={state}")


@task_failure.connect
def task_failure_handler(sender=None, task_id=None, exception=None, **kwargs):
    logger.error(f"❌ Task failed: {sender.name} [ID: {task_id}]: {exception}")

