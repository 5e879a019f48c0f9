"""
ORM Models
"""

from .base import Base, generate_uuid
from .content import Post, ConnectedPlatform, Comment
from .analysis import (
    TOTAL_PIPELINE_STEPS,
    JobStatus,
    AnalysisJob,
    AnalysisResult,
    SentimentBreakdownRecord,
    EmotionRecord,
    ThemeRecord,
    KeywordRecord,
)

__all__ = [
    "Base",
    "generate_uuid",
    "Post",
    "ConnectedPlatform",
    "Comment",
    "TOTAL_PIPELINE_STEPS",
    "JobStatus",
    "AnalysisJob",
    "AnalysisResult",
    "SentimentBreakdownRecord",
    "EmotionRecord",
    "ThemeRecord",
    "KeywordRecord",
]
