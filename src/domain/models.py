# src/domain/models.py
"""
Pipeline Value Objects
Dataclasses passed between the analysis stages.

These are not DB models. The orchestrator converts ORM rows into
`CommentRecord` before the stages run and persists the final
`AnalysisOutcome` through the result repository.
"""
from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple


class Sentiment(str, enum.Enum):
    """Sentiment label shared by stages and ORM columns"""

    POSITIVE = "POSITIVE"
    NEGATIVE = "NEGATIVE"
    NEUTRAL = "NEUTRAL"


# ============================================================================
# Comments & Filtering
# ============================================================================


@dataclass
class CommentRecord:
    """A fetched comment. Only the filter flags change after fetch."""

    id: str
    text: str
    author_name: str = ""
    published_at: Optional[datetime] = None
    like_count: int = 0
    is_filtered: bool = False
    filter_reason: Optional[str] = None


@dataclass
class FilterStats:
    total: int = 0
    spam: int = 0
    toxic: int = 0
    duplicate: int = 0
    filtered: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            "total": self.total,
            "spam": self.spam,
            "toxic": self.toxic,
            "duplicate": self.duplicate,
            "filtered": self.filtered,
        }


@dataclass
class FilterResult:
    """Partition of a comment batch into clean, spam, toxic and duplicate"""

    filtered_comments: List[CommentRecord] = field(default_factory=list)
    spam_comments: List[CommentRecord] = field(default_factory=list)
    toxic_comments: List[CommentRecord] = field(default_factory=list)
    duplicate_count: int = 0
    stats: FilterStats = field(default_factory=FilterStats)

    @property
    def removed_count(self) -> int:
        """Comments excluded from analysis for any reason"""
        return self.stats.spam + self.stats.toxic + self.stats.duplicate


# ============================================================================
# Sentiment
# ============================================================================


@dataclass
class EmotionScore:
    name: str
    score: float


@dataclass
class SentimentResult:
    sentiment: Sentiment
    confidence: float
    emotions: List[EmotionScore] = field(default_factory=list)
    is_fallback: bool = False


@dataclass
class SentimentSummary:
    total_analyzed: int = 0
    average_confidence: float = 0.0
    sentiment_distribution: Dict[str, float] = field(
        default_factory=lambda: {"positive": 0.0, "negative": 0.0, "neutral": 0.0}
    )


@dataclass
class BatchSentimentResult:
    results: List[SentimentResult]
    summary: SentimentSummary
    processing_metrics: Optional[Dict[str, Any]] = None


@dataclass
class ValidationReport:
    """Advisory quality report (never raised)"""

    is_valid: bool
    issues: List[str] = field(default_factory=list)
    quality_score: float = 1.0
    recommendations: List[str] = field(default_factory=list)


# ============================================================================
# Themes & Keywords
# ============================================================================


@dataclass
class KeywordData:
    word: str
    frequency: int
    sentiment: Sentiment
    contexts: List[str]
    tfidf_score: float
    sentiment_score: float


@dataclass
class ThemeCluster:
    id: str
    name: str
    comments: List[CommentRecord]
    sentiment: Sentiment
    representative_comments: List[CommentRecord]
    keywords: List[str]
    coherence_score: float

    @property
    def frequency(self) -> int:
        return len(self.comments)


@dataclass
class ThemeSummary:
    total_themes: int = 0
    total_keywords: int = 0
    average_coherence: float = 0.0
    dominant_sentiment: Sentiment = Sentiment.NEUTRAL


@dataclass
class ThemeAnalysisResult:
    themes: List[ThemeCluster] = field(default_factory=list)
    keywords: List[KeywordData] = field(default_factory=list)
    summary: ThemeSummary = field(default_factory=ThemeSummary)


# ============================================================================
# Summary
# ============================================================================


@dataclass
class SentimentBreakdown:
    """Sentiment shares as fractions in [0, 1]"""

    positive: float = 0.0
    negative: float = 0.0
    neutral: float = 0.0

    def as_percentages(self) -> Tuple[int, int, int]:
        return (
            round(self.positive * 100),
            round(self.negative * 100),
            round(self.neutral * 100),
        )


@dataclass
class SummaryInput:
    sentiment_breakdown: SentimentBreakdown
    themes: List[ThemeCluster]
    keywords: List[KeywordData]
    total_comments: int
    filtered_comments: int

    @property
    def valid_comments(self) -> int:
        """Comments that survived filtering"""
        return self.total_comments - self.filtered_comments


@dataclass
class EmotionAnalysis:
    name: str
    prevalence: float
    description: str
    representative_comments: List[str] = field(default_factory=list)


@dataclass
class GeneratedSummary:
    summary: str
    emotions: List[EmotionAnalysis]
    key_insights: List[str]
    recommendations: List[str]
    quality_score: float
    word_count: int
    is_fallback: bool = False


@dataclass
class SummaryValidation:
    is_valid: bool
    issues: List[str]
    quality_score: float
    recommendations: List[str]
    word_count: int
    is_within_range: bool
    target_range: Tuple[int, int]

    @property
    def length_check(self) -> Dict[str, Any]:
        return {
            "word_count": self.word_count,
            "is_within_range": self.is_within_range,
            "target_range": list(self.target_range),
        }


# ============================================================================
# Pipeline Aggregate
# ============================================================================


@dataclass
class AnalysisOutcome:
    """Everything the persistence step writes for one content item"""

    post_id: str
    user_id: str
    job_id: str
    filter_result: FilterResult
    sentiment: BatchSentimentResult
    themes: ThemeAnalysisResult
    summary: GeneratedSummary
    sentiment_breakdown: SentimentBreakdown
    total_comments: int
    comments: List[CommentRecord] = field(default_factory=list)

    @property
    def filtered_out(self) -> int:
        return self.filter_result.removed_count


__all__ = [
    "Sentiment",
    "CommentRecord",
    "FilterStats",
    "FilterResult",
    "EmotionScore",
    "SentimentResult",
    "SentimentSummary",
    "BatchSentimentResult",
    "ValidationReport",
    "KeywordData",
    "ThemeCluster",
    "ThemeSummary",
    "ThemeAnalysisResult",
    "SentimentBreakdown",
    "SummaryInput",
    "EmotionAnalysis",
    "GeneratedSummary",
    "SummaryValidation",
    "AnalysisOutcome",
]
