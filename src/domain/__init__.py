# src/domain/__init__.py
"""
Domain layer: pipeline value objects and the protocols stages depend on.

ORM classes live in src.app.models; repositories in
src.infrastructure.repositories implement the protocols below.
"""
from .interfaces import (  # re-export for convenience
    TextGenerator,
    IAnalysisJobRepository,
    IAnalysisResultRepository,
    ICommentRepository,
)
from .models import (
    Sentiment,
    CommentRecord,
    FilterResult,
    SentimentResult,
    ThemeCluster,
    KeywordData,
    GeneratedSummary,
    AnalysisOutcome,
)

__all__ = [
    "TextGenerator",
    "IAnalysisJobRepository",
    "IAnalysisResultRepository",
    "ICommentRepository",
    "Sentiment",
    "CommentRecord",
    "FilterResult",
    "SentimentResult",
    "ThemeCluster",
    "KeywordData",
    "GeneratedSummary",
    "AnalysisOutcome",
]
