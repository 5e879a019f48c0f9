# src/app/dependencies.py
"""
Service Dependency Wiring
Builds repositories, stages, orchestrator and the analysis service from config
"""

import logging
from functools import lru_cache, partial
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from src.app.config import Config, get_config
from src.app.database import db_manager
from src.domain.interfaces import TextGenerator
from src.infrastructure.clients.gemini_client import create_text_generator
from src.infrastructure.clients.rate_limiter import AttemptStore, create_attempt_store
from src.infrastructure.repositories import (
    AnalysisJobRepository,
    AnalysisResultRepository,
    CommentRepository,
    PostRepository,
)
from src.infrastructure.tasks.dispatch import (
    CeleryDispatcher,
    InProcessDispatcher,
    JobDispatcher,
    JobRequest,
)
from src.services.analysis_service import AnalysisService
from src.services.comment_filter import CommentFilter
from src.services.exceptions import ConfigurationError
from src.services.job_lifecycle import JobLifecycle
from src.services.pipeline_orchestrator import PipelineOrchestrator
from src.services.sentiment_stage import SentimentStage
from src.services.summary_stage import SummaryStage
from src.services.theme_stage import ThemeStage

logger = logging.getLogger(__name__)


# ============================================================================
# Pipeline Factories
# ============================================================================


def build_text_generator(config: Optional[Config] = None) -> Optional[TextGenerator]:
    """
    Gemini client, or None when no API key is configured

    Without a generator the sentiment and summary stages use their
    lexicon and template fallbacks.
    """
    config = config or get_config()
    try:
        return create_text_generator(config.llm)
    except ConfigurationError as e:
        logger.warning(f"⚠️ Text generation disabled: {e}")
        return None


def build_orchestrator(
    session: AsyncSession,
    generator: Optional[TextGenerator] = None,
    config: Optional[Config] = None,
) -> PipelineOrchestrator:
    """Wire one orchestrator onto a session"""
    config = config or get_config()

    return PipelineOrchestrator(
        lifecycle=JobLifecycle(
            AnalysisJobRepository(session),
            max_retries=config.pipeline.max_job_retries,
        ),
        comment_repo=CommentRepository(session),
        result_repo=AnalysisResultRepository(session),
        post_repo=PostRepository(session),
        comment_filter=CommentFilter(config.filter),
        sentiment_stage=SentimentStage(generator, config.sentiment, config.llm),
        theme_stage=ThemeStage(config.theme),
        summary_stage=SummaryStage(generator, config.summary, config.llm),
        settings=config.pipeline,
    )


async def run_analysis_job(request: JobRequest) -> Optional[str]:
    """
    Run one job end to end in a fresh session

    Used by both the in-process dispatcher and the Celery worker task.

    Returns:
        Result ID, or None if the job was cancelled
    """
    config = get_config()
    generator = build_text_generator(config)

    try:
        async with db_manager.session() as session:
            orchestrator = build_orchestrator(session, generator, config)
            return await orchestrator.run(
                request.job_id,
                request.post_id,
                request.user_id,
                comment_ids=request.comment_ids,
            )
    finally:
        aclose = getattr(generator, "aclose", None)
        if aclose is not None:
            await aclose()


# ============================================================================
# Service Factories
# ============================================================================


def create_dispatcher(config: Optional[Config] = None) -> JobDispatcher:
    config = config or get_config()

    if config.pipeline.dispatcher == "celery":
        from src.infrastructure.tasks.analysis_tasks import run_comment_analysis

        return CeleryDispatcher(task=run_comment_analysis)

    return InProcessDispatcher(
        run_analysis_job, max_concurrent=config.pipeline.max_concurrent_jobs
    )


@lru_cache()
def get_attempt_store() -> AttemptStore:
    """
    Get or create the submission attempt store (Singleton)
    """
    config = get_config()
    return create_attempt_store(config.cache, config.security.attempt_window_seconds)


@lru_cache()
def get_analysis_service() -> AnalysisService:
    """
    Get or create the analysis service (Singleton)

    The facade never runs stages itself, so its orchestrators carry no
    text generator.
    """
    config = get_config()

    return AnalysisService(
        session_factory=db_manager.session,
        pipeline_factory=partial(build_orchestrator, generator=None, config=config),
        dispatcher=create_dispatcher(config),
        attempt_store=get_attempt_store(),
        config=config,
    )
