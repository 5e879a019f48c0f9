# src/services/sentiment_stage.py
"""
Sentiment Stage
Batched sentiment and emotion classification through the text generator,
with a lexicon fallback whenever the provider output is unusable.

Guarantee: analyze_batch returns exactly one SentimentResult per input
comment, aligned by position, even when every provider call fails.
"""

import asyncio
import json
import logging
import random
import time
from typing import Any, Callable, Dict, List, Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field, ValidationError as PydanticValidationError

from src.app.config import LLMSettings, SentimentSettings
from src.domain.interfaces import TextGenerator
from src.domain.models import (
    BatchSentimentResult,
    CommentRecord,
    EmotionScore,
    Sentiment,
    SentimentResult,
    SentimentSummary,
    ValidationReport,
)
from src.services.retry import RetryExhaustedError, RetryPolicy, SleepFn, execute_with_retry

logger = logging.getLogger(__name__)


VALID_EMOTIONS = frozenset(
    {"joy", "anger", "sadness", "fear", "surprise", "disgust", "trust", "anticipation"}
)
MAX_EMOTIONS = 3
DEFAULT_CONFIDENCE = 0.5

POSITIVE_WORDS = ("good", "great", "awesome", "love", "like", "amazing", "excellent", "fantastic", "wonderful")
NEGATIVE_WORDS = ("bad", "hate", "terrible", "awful", "horrible", "disgusting", "stupid", "worst")

BATCH_PROMPT_TEMPLATE = """You are an expert sentiment analysis AI. Analyze the sentiment and emotions of the following comments with high accuracy.

For each comment, provide:
1. Sentiment: POSITIVE, NEGATIVE, or NEUTRAL (neutral only for truly ambiguous content)
2. Confidence: A score from 0.0 to 1.0 (only use high confidence for clear sentiment)
3. Emotions: Up to 3 primary emotions with scores from this list: joy, anger, sadness, fear, surprise, disgust, trust, anticipation

Guidelines:
- Consider context, sarcasm, and implied meaning
- Account for emojis and internet slang
- Be consistent across similar comments

Comments to analyze:
{comments}

Respond with one JSON object per line in this exact format:
{{"commentIndex": 1, "sentiment": "POSITIVE", "confidence": 0.85, "emotions": [{{"name": "joy", "score": 0.8}}]}}

No additional text or formatting."""


# ============================================================================
# Provider Output Schema
# ============================================================================


class EmotionLine(BaseModel):
    name: Optional[str] = None
    score: Optional[float] = None


class SentimentLine(BaseModel):
    """One JSON line of the batch response"""

    model_config = ConfigDict(populate_by_name=True)

    comment_index: int = Field(alias="commentIndex")
    sentiment: str
    confidence: Optional[float] = None
    emotions: List[EmotionLine] = Field(default_factory=list)


def _clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


def normalize_sentiment(label: str) -> Sentiment:
    """Map a provider label onto Sentiment, unknown labels become NEUTRAL"""
    try:
        return Sentiment(label.strip().upper())
    except ValueError:
        return Sentiment.NEUTRAL


def normalize_emotions(emotions: Sequence[EmotionLine]) -> List[EmotionScore]:
    """Keep known emotions, clamp scores, sort descending and keep the top 3"""
    normalized = [
        EmotionScore(name=e.name.lower(), score=_clamp(e.score or 0.0))
        for e in emotions
        if e.name and e.name.lower() in VALID_EMOTIONS
    ]
    normalized.sort(key=lambda e: e.score, reverse=True)
    return normalized[:MAX_EMOTIONS]


def fallback_result(text: str) -> SentimentResult:
    """
    Lexicon-based sentiment used when provider output is unavailable

    Ties or no lexicon hits give NEUTRAL with confidence 0.3.
    """
    lowered = text.lower()
    positive = sum(1 for word in POSITIVE_WORDS if word in lowered)
    negative = sum(1 for word in NEGATIVE_WORDS if word in lowered)

    if positive > negative:
        confidence = min(0.6, 0.3 + positive * 0.1)
        return SentimentResult(
            Sentiment.POSITIVE, confidence, [EmotionScore("joy", confidence)], is_fallback=True
        )
    if negative > positive:
        confidence = min(0.6, 0.3 + negative * 0.1)
        return SentimentResult(
            Sentiment.NEGATIVE, confidence, [EmotionScore("anger", confidence)], is_fallback=True
        )
    return SentimentResult(Sentiment.NEUTRAL, 0.3, [], is_fallback=True)


def summarize_results(results: Sequence[SentimentResult]) -> SentimentSummary:
    """Total, mean confidence and class distribution as fractions"""
    if not results:
        return SentimentSummary()

    total = len(results)
    counts = {"positive": 0, "negative": 0, "neutral": 0}
    for result in results:
        counts[result.sentiment.value.lower()] += 1

    return SentimentSummary(
        total_analyzed=total,
        average_confidence=sum(r.confidence for r in results) / total,
        sentiment_distribution={key: value / total for key, value in counts.items()},
    )


# ============================================================================
# Stage
# ============================================================================


class SentimentStage:
    """
    Sentiment analysis over filtered comments

    Usage:
        stage = SentimentStage(generator)
        batch = await stage.analyze_batch(comments)
    """

    def __init__(
        self,
        generator: Optional[TextGenerator],
        settings: Optional[SentimentSettings] = None,
        llm_settings: Optional[LLMSettings] = None,
        sleep: SleepFn = asyncio.sleep,
        random_fn: Callable[[], float] = random.random,
        clock: Callable[[], float] = time.perf_counter,
    ):
        """
        Args:
            generator: Text generator (None forces lexicon fallback)
            settings: Batching and retry settings
            llm_settings: Temperature and token limits for requests
            sleep: Awaitable sleep for backoff and inter-batch delays
            random_fn: Jitter source
            clock: Timer used for processing metrics
        """
        self.generator = generator
        settings = settings or SentimentSettings()
        llm_settings = llm_settings or LLMSettings()

        self.batch_size = settings.batch_size
        self.max_retries = settings.max_retries
        self.retry_delay = settings.retry_delay_seconds
        self.rate_limit_multiplier = settings.rate_limit_multiplier
        self.request_timeout = settings.request_timeout_seconds
        self.inter_batch_delay = settings.inter_batch_delay_seconds
        self.confidence_threshold = settings.confidence_threshold
        self.temperature = llm_settings.sentiment_temperature
        self.max_output_tokens = llm_settings.sentiment_max_output_tokens

        self._sleep = sleep
        self._random = random_fn
        self._clock = clock

    @property
    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self.max_retries,
            base_delay=self.retry_delay,
            rate_limit_multiplier=self.rate_limit_multiplier,
            timeout=self.request_timeout,
        )

    # ========================================================================
    # Public API
    # ========================================================================

    async def analyze_batch(self, comments: Sequence[CommentRecord]) -> BatchSentimentResult:
        """
        Analyze sentiment for all comments in batches

        Args:
            comments: Filtered comments

        Returns:
            BatchSentimentResult with one result per comment and a summary
        """
        if not comments:
            return BatchSentimentResult(results=[], summary=SentimentSummary())

        results: List[SentimentResult] = []

        for start in range(0, len(comments), self.batch_size):
            batch = list(comments[start : start + self.batch_size])
            results.extend(await self._process_batch(batch))

            if start + self.batch_size < len(comments):
                await self._sleep(self.inter_batch_delay)

        logger.info(f"💬 Sentiment analyzed for {len(results)} comments")
        return BatchSentimentResult(results=results, summary=summarize_results(results))

    async def analyze_single_comment(self, comment: CommentRecord) -> SentimentResult:
        batch = await self.analyze_batch([comment])
        return batch.results[0]

    async def analyze_batch_advanced(
        self,
        comments: Sequence[CommentRecord],
        confidence_threshold: Optional[float] = None,
        retry_low_confidence: bool = True,
        enable_validation: bool = True,
    ) -> BatchSentimentResult:
        """
        Batch analysis plus single-comment re-runs for low-confidence results

        A re-run replaces the original result only when its confidence is
        higher. Processing metrics and the whole-run validation report are
        attached to the returned result.
        """
        started = self._clock()
        threshold = self.confidence_threshold if confidence_threshold is None else confidence_threshold

        batch = await self.analyze_batch(comments)
        results = list(batch.results)
        retry_count = 0

        if retry_low_confidence:
            low_confidence = [i for i, r in enumerate(results) if r.confidence < threshold]
            if low_confidence:
                logger.info(f"🔁 Retrying {len(low_confidence)} low confidence results")

            for index in low_confidence:
                retried = await self.analyze_single_comment(comments[index])
                if retried.confidence > results[index].confidence:
                    results[index] = retried
                    retry_count += 1

        validation = self.validate_results(results) if enable_validation else None
        batch_count = -(-len(comments) // self.batch_size) if comments else 0

        metrics: Dict[str, Any] = {
            "total_processing_time": self._clock() - started,
            "batch_count": batch_count,
            "retry_count": retry_count,
            "fallback_count": sum(1 for r in results if r.is_fallback),
        }
        if validation is not None:
            metrics["validation"] = {
                "is_valid": validation.is_valid,
                "issues": validation.issues,
                "quality_score": validation.quality_score,
                "recommendations": validation.recommendations,
            }

        return BatchSentimentResult(
            results=results,
            summary=summarize_results(results),
            processing_metrics=metrics,
        )

    def validate_batch_results(
        self, results: Sequence[SentimentResult], expected_count: int
    ) -> ValidationReport:
        """Advisory quality check for one batch of provider results"""
        issues: List[str] = []
        recommendations: List[str] = []
        score = 1.0

        if len(results) != expected_count:
            issues.append(f"Result count mismatch: expected {expected_count}, got {len(results)}")
            score -= 0.5

        if results:
            total = len(results)
            avg_confidence = sum(r.confidence for r in results) / total
            low_confidence = sum(1 for r in results if r.confidence < 0.3)

            if avg_confidence < 0.5:
                issues.append(f"Low average confidence: {avg_confidence:.2f}")
                recommendations.append("Consider more specific prompts or better preprocessing")
                score -= 0.2

            if low_confidence > total * 0.4:
                issues.append(f"{low_confidence} results have very low confidence (<0.3)")
                recommendations.append("Review low-confidence results manually")
                score -= 0.1

            top_share = max(self._class_counts(results).values()) / total
            if top_share > 0.95:
                issues.append(f"Extremely skewed sentiment distribution: {top_share:.2f}")
                recommendations.append("Verify comment diversity and analysis accuracy")
                score -= 0.15

            without_emotions = sum(1 for r in results if not r.emotions)
            if without_emotions > total * 0.3:
                issues.append(f"{without_emotions} results missing emotion data")
                recommendations.append("Improve emotion detection in prompts")
                score -= 0.1

        return ValidationReport(
            is_valid=not issues,
            issues=issues,
            quality_score=max(0.0, score),
            recommendations=recommendations,
        )

    def validate_results(self, results: Sequence[SentimentResult]) -> ValidationReport:
        """
        Whole-run quality review

        The final score is scaled by the average confidence.
        """
        if not results:
            return ValidationReport(
                is_valid=False,
                issues=["No results to validate"],
                quality_score=0.0,
                recommendations=["Ensure comments are provided for analysis"],
            )

        issues: List[str] = []
        recommendations: List[str] = []
        score = 1.0
        total = len(results)

        if sum(1 for r in results if r.confidence < 0.3) / total > 0.5:
            issues.append("More than 50% of results have low confidence scores")
            recommendations.append("Consider improving comment preprocessing")
            score -= 0.3

        if max(self._class_counts(results).values()) / total > 0.9:
            issues.append("Sentiment distribution is highly skewed")
            recommendations.append("Review comment diversity and analysis methodology")
            score -= 0.2

        if sum(1 for r in results if not r.emotions) > total * 0.3:
            issues.append("More than 30% of results lack emotion data")
            recommendations.append("Enhance emotion detection in analysis prompts")
            score -= 0.1

        emotion_scores = [e.score for r in results for e in r.emotions]
        if not emotion_scores or sum(emotion_scores) / len(emotion_scores) < 0.3:
            issues.append("Emotion scores are consistently low")
            recommendations.append("Review emotion detection thresholds")
            score -= 0.05

        average_confidence = sum(r.confidence for r in results) / total
        score = max(0.0, score * average_confidence)

        if score < 0.7:
            recommendations.append("Consider manual review of results")
        if score < 0.5:
            recommendations.append("Results may need reprocessing")

        return ValidationReport(
            is_valid=not issues,
            issues=issues,
            quality_score=score,
            recommendations=recommendations,
        )

    def get_processing_stats(self) -> Dict[str, Any]:
        return {
            "batch_size": self.batch_size,
            "max_retries": self.max_retries,
            "retry_delay": self.retry_delay,
        }

    def update_processing_config(
        self,
        batch_size: Optional[int] = None,
        max_retries: Optional[int] = None,
        retry_delay: Optional[float] = None,
    ) -> None:
        """Apply updates that fall inside their allowed bounds, ignore the rest"""
        if batch_size is not None and 1 <= batch_size <= 50:
            self.batch_size = batch_size
        if max_retries is not None and 1 <= max_retries <= 10:
            self.max_retries = max_retries
        if retry_delay is not None and 0.1 <= retry_delay <= 10.0:
            self.retry_delay = retry_delay

    # ========================================================================
    # Batch Processing
    # ========================================================================

    def build_prompt(self, comments: Sequence[CommentRecord]) -> str:
        listing = "\n".join(f'{i}. "{c.text}"' for i, c in enumerate(comments, start=1))
        return BATCH_PROMPT_TEMPLATE.format(comments=listing)

    async def _process_batch(self, comments: List[CommentRecord]) -> List[SentimentResult]:
        if self.generator is None:
            return [fallback_result(c.text) for c in comments]

        prompt = self.build_prompt(comments)

        async def attempt() -> str:
            return await self.generator.generate(
                prompt,
                temperature=self.temperature,
                max_output_tokens=self.max_output_tokens,
            )

        started = self._clock()
        try:
            text = await execute_with_retry(
                attempt, self.retry_policy, sleep=self._sleep, random_fn=self._random
            )
        except RetryExhaustedError as e:
            logger.error(
                f"❌ Sentiment batch of {len(comments)} failed, using fallback: {e.last_error}"
            )
            return [fallback_result(c.text) for c in comments]

        logger.debug(
            f"Batch processed in {self._clock() - started:.2f}s for {len(comments)} comments"
        )

        results = self.parse_response(text, comments)
        report = self.validate_batch_results(results, len(comments))
        if not report.is_valid and report.quality_score < 0.5:
            logger.warning(
                f"⚠️ Low quality sentiment batch (score={report.quality_score:.2f}): {report.issues}"
            )
        return results

    def parse_response(
        self, text: str, comments: Sequence[CommentRecord]
    ) -> List[SentimentResult]:
        """
        Parse one-JSON-object-per-line output into position-aligned results

        Malformed, out-of-range or schema-violating lines are skipped;
        positions left empty get the lexicon fallback.
        """
        slots: List[Optional[SentimentResult]] = [None] * len(comments)

        for raw_line in text.strip().splitlines():
            line = raw_line.strip()
            if not line:
                continue

            try:
                parsed = SentimentLine.model_validate(json.loads(line))
            except (ValueError, PydanticValidationError) as e:
                logger.debug(f"Skipping unparseable sentiment line {line[:80]!r}: {e}")
                continue

            index = parsed.comment_index - 1
            if not 0 <= index < len(comments):
                continue

            confidence = DEFAULT_CONFIDENCE if parsed.confidence is None else parsed.confidence
            slots[index] = SentimentResult(
                sentiment=normalize_sentiment(parsed.sentiment),
                confidence=_clamp(confidence),
                emotions=normalize_emotions(parsed.emotions),
            )

        missing = sum(1 for slot in slots if slot is None)
        if missing:
            logger.warning(f"⚠️ {missing} comments missing from provider output, using fallback")

        return [
            slot if slot is not None else fallback_result(comments[i].text)
            for i, slot in enumerate(slots)
        ]

    @staticmethod
    def _class_counts(results: Sequence[SentimentResult]) -> Dict[Sentiment, int]:
        counts = {s: 0 for s in Sentiment}
        for result in results:
            counts[result.sentiment] += 1
        return counts
