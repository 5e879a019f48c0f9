# src/infrastructure/repositories/__init__.py
"""
Repository Layer
Data access patterns for all entities
"""

from .base import BaseRepository
from .post_repository import PostRepository
from .comment_repository import CommentRepository
from .analysis_job_repository import AnalysisJobRepository
from .analysis_result_repository import AnalysisResultRepository

__all__ = [
    "BaseRepository",
    "PostRepository",
    "CommentRepository",
    "AnalysisJobRepository",
    "AnalysisResultRepository",
]
