# src/app/models/analysis.py
"""
Analysis Models
Job tracking and the persisted aggregate analysis result
"""

from datetime import datetime
from typing import Optional
import enum

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Enum as SQLEnum,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import relationship

from src.app.models.base import Base, generate_uuid
from src.domain.models import Sentiment

TOTAL_PIPELINE_STEPS = 5


class JobStatus(str, enum.Enum):
    """Analysis job lifecycle status"""

    PENDING = "PENDING"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


# ============================================================================
# Job Tracking
# ============================================================================


class AnalysisJob(Base):
    """
    Analysis job record

    Mutated only through JobLifecycle transitions.
    """

    __tablename__ = "analysis_jobs"
    __table_args__ = {"extend_existing": True}

    id = Column(String(36), primary_key=True, default=generate_uuid)
    post_id = Column(String(36), nullable=False, index=True, comment="Analyzed post")
    user_id = Column(String(100), nullable=False, index=True, comment="Requesting user")
    comment_ids = Column(JSON, comment="Requested comment subset, null for all valid comments")

    status = Column(
        SQLEnum(JobStatus),
        nullable=False,
        default=JobStatus.PENDING,
        index=True,
        comment="Current job status",
    )
    progress = Column(Float, nullable=False, default=0.0, comment="Progress (0-100)")
    total_steps = Column(Integer, nullable=False, default=TOTAL_PIPELINE_STEPS)
    current_step = Column(Integer, nullable=False, default=0)
    step_description = Column(String(255), comment="Human readable step")
    error_message = Column(Text, comment="Error message if failed")

    # Retry tracking
    retry_count = Column(Integer, nullable=False, default=0)
    max_retries = Column(Integer, nullable=False, default=3)

    # Timing
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    started_at = Column(DateTime)
    completed_at = Column(DateTime)

    def __repr__(self):
        return f"<AnalysisJob(id={self.id}, status={self.status}, progress={self.progress})>"

    @property
    def is_completed(self) -> bool:
        """Check if job is in terminal state"""
        return self.status in (
            JobStatus.COMPLETED,
            JobStatus.FAILED,
            JobStatus.CANCELLED,
        )

    @property
    def can_retry(self) -> bool:
        """Failed jobs can be retried until max_retries is reached"""
        return self.status == JobStatus.FAILED and self.retry_count < self.max_retries

    @property
    def duration_seconds(self) -> Optional[float]:
        """Wall-clock duration once the job finished"""
        if self.started_at and self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None

    def to_dict(self) -> dict:
        """Convert model to dictionary"""
        return {
            "id": self.id,
            "post_id": self.post_id,
            "user_id": self.user_id,
            "comment_ids": self.comment_ids,
            "status": self.status.value if self.status else None,
            "progress": self.progress,
            "current_step": self.current_step,
            "total_steps": self.total_steps,
            "step_description": self.step_description,
            "error_message": self.error_message,
            "retry_count": self.retry_count,
            "max_retries": self.max_retries,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_seconds": self.duration_seconds,
        }


# ============================================================================
# Aggregate Result
# ============================================================================


class AnalysisResult(Base):
    """Persisted analysis for one post"""

    __tablename__ = "analysis_results"
    __table_args__ = {"extend_existing": True}

    id = Column(String(36), primary_key=True, default=generate_uuid)
    post_id = Column(String(36), nullable=False, index=True)
    user_id = Column(String(100), nullable=False, index=True)
    job_id = Column(
        String(36),
        ForeignKey("analysis_jobs.id", ondelete="SET NULL"),
        index=True,
        comment="Job that produced or last reused this result",
    )

    total_comments = Column(Integer, nullable=False, default=0)
    filtered_comments = Column(Integer, nullable=False, default=0)
    summary = Column(Text, nullable=False, default="")
    summary_quality = Column(Float, comment="Summary quality score")
    analyzed_at = Column(
        DateTime, nullable=False, default=datetime.utcnow, index=True
    )

    sentiment_breakdown = relationship(
        "SentimentBreakdownRecord",
        back_populates="result",
        uselist=False,
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    emotions = relationship(
        "EmotionRecord",
        back_populates="result",
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    themes = relationship(
        "ThemeRecord",
        back_populates="result",
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    keywords = relationship(
        "KeywordRecord",
        back_populates="result",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    def __repr__(self):
        return f"<AnalysisResult(id={self.id}, post={self.post_id})>"

    def age_seconds(self, now: datetime) -> float:
        return (now - self.analyzed_at).total_seconds()

    def to_dict(self) -> dict:
        """Convert model to dictionary"""
        breakdown = self.sentiment_breakdown
        return {
            "id": self.id,
            "post_id": self.post_id,
            "job_id": self.job_id,
            "total_comments": self.total_comments,
            "filtered_comments": self.filtered_comments,
            "summary": self.summary,
            "summary_quality": self.summary_quality,
            "analyzed_at": self.analyzed_at.isoformat(),
            "sentiment_breakdown": breakdown.to_dict() if breakdown else None,
            "emotions": [e.to_dict() for e in self.emotions],
            "themes": [t.to_dict() for t in self.themes],
            "keywords": [k.to_dict() for k in self.keywords],
        }


class SentimentBreakdownRecord(Base):
    __tablename__ = "sentiment_breakdowns"
    __table_args__ = {"extend_existing": True}

    id = Column(String(36), primary_key=True, default=generate_uuid)
    result_id = Column(
        String(36),
        ForeignKey("analysis_results.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    positive = Column(Float, nullable=False, default=0.0, comment="Share (0-1)")
    negative = Column(Float, nullable=False, default=0.0, comment="Share (0-1)")
    neutral = Column(Float, nullable=False, default=0.0, comment="Share (0-1)")
    confidence_score = Column(Float, nullable=False, default=0.0)

    result = relationship("AnalysisResult", back_populates="sentiment_breakdown")

    def to_dict(self) -> dict:
        return {
            "positive": self.positive,
            "negative": self.negative,
            "neutral": self.neutral,
            "confidence_score": self.confidence_score,
        }


class EmotionRecord(Base):
    __tablename__ = "emotions"
    __table_args__ = {"extend_existing": True}

    id = Column(String(36), primary_key=True, default=generate_uuid)
    result_id = Column(
        String(36),
        ForeignKey("analysis_results.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name = Column(String(50), nullable=False)
    percentage = Column(Float, nullable=False, default=0.0)
    description = Column(String(255))

    result = relationship("AnalysisResult", back_populates="emotions")

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "percentage": self.percentage,
            "description": self.description,
        }


class ThemeRecord(Base):
    __tablename__ = "themes"
    __table_args__ = {"extend_existing": True}

    id = Column(String(36), primary_key=True, default=generate_uuid)
    result_id = Column(
        String(36),
        ForeignKey("analysis_results.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name = Column(String(255), nullable=False)
    frequency = Column(Integer, nullable=False, default=0)
    sentiment = Column(SQLEnum(Sentiment), nullable=False, default=Sentiment.NEUTRAL)
    coherence_score = Column(Float, nullable=False, default=0.0)
    keywords = Column(JSON, default=list)
    example_comments = Column(JSON, default=list, comment="Representative comment texts")

    result = relationship("AnalysisResult", back_populates="themes")

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "frequency": self.frequency,
            "sentiment": self.sentiment.value if self.sentiment else None,
            "coherence_score": self.coherence_score,
            "keywords": self.keywords or [],
            "example_comments": self.example_comments or [],
        }


class KeywordRecord(Base):
    __tablename__ = "keywords"
    __table_args__ = {"extend_existing": True}

    id = Column(String(36), primary_key=True, default=generate_uuid)
    result_id = Column(
        String(36),
        ForeignKey("analysis_results.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    word = Column(String(100), nullable=False)
    frequency = Column(Integer, nullable=False, default=0)
    sentiment = Column(SQLEnum(Sentiment), nullable=False, default=Sentiment.NEUTRAL)
    tfidf_score = Column(Float, nullable=False, default=0.0)
    contexts = Column(JSON, default=list)

    result = relationship("AnalysisResult", back_populates="keywords")

    def to_dict(self) -> dict:
        return {
            "word": self.word,
            "frequency": self.frequency,
            "sentiment": self.sentiment.value if self.sentiment else None,
            "tfidf_score": self.tfidf_score,
            "contexts": self.contexts or [],
        }
