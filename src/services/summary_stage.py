# src/services/summary_stage.py
"""
Summary Stage
Narrative synthesis of sentiment and themes through the text generator,
with derived emotions, insights and recommendations.

Falls back to a template summary once retries are exhausted, so callers
always receive a GeneratedSummary.
"""

import asyncio
import logging
import math
import random
import re
from typing import Any, Callable, Dict, List, Optional, Tuple

from src.app.config import LLMSettings, SummarySettings
from src.domain.interfaces import TextGenerator
from src.domain.models import (
    EmotionAnalysis,
    GeneratedSummary,
    Sentiment,
    SummaryInput,
    SummaryValidation,
    ThemeCluster,
)
from src.services.exceptions import AnalysisError
from src.services.retry import RetryExhaustedError, RetryPolicy, SleepFn, execute_with_retry

logger = logging.getLogger(__name__)


EMPTY_SUMMARY_TEXT = (
    "No comments available for analysis. Consider encouraging audience engagement "
    "through questions or calls-to-action."
)
MIN_RESPONSE_LENGTH = 10
MAX_EMOTIONS = 3
MAX_INSIGHTS = 4
MAX_RECOMMENDATIONS = 3
FALLBACK_QUALITY = 0.4
EMPTY_QUALITY = 0.5

ANGER_TERMS = ("angry", "anger", "hate", "terrible", "awful", "furious", "worst", "annoying")

EMOTION_DESCRIPTIONS = {
    "joy": "Positive excitement and happiness",
    "anger": "Strong negative reaction and frustration",
    "sadness": "Disappointment and unmet expectations",
    "trust": "Calm, matter-of-fact engagement with the content",
}

_MARKDOWN = re.compile(r"[*_`#]")
_WHITESPACE = re.compile(r"\s+")
_SENTENCE_JOIN = re.compile(r"([.!?])\s*([a-z])")

SUMMARY_PROMPT_TEMPLATE = """You are an expert content analyst. Generate a concise, insightful summary of audience sentiment based on the following comment analysis data.

ANALYSIS DATA:
- Total Comments Analyzed: {valid_comments}
- Sentiment Distribution: {positive}% positive, {negative}% negative, {neutral}% neutral
- Top Themes: {themes}
- Key Keywords: {keywords}

REQUIREMENTS:
1. Write exactly 3-5 sentences ({min_words}-{max_words} words)
2. Start with overall sentiment assessment
3. Highlight the most significant themes or patterns
4. Mention specific audience reactions or concerns
5. Use professional, actionable language
6. Focus on insights that help content creators understand their audience

Generate the summary now:"""


class LowQualitySummaryError(AnalysisError):
    """Generated summary failed validation before the final attempt"""

    code = "LOW_QUALITY_SUMMARY"


def clean_summary_text(text: str) -> str:
    """Strip markdown, collapse whitespace, capitalize and terminate the text"""
    cleaned = _WHITESPACE.sub(" ", _MARKDOWN.sub("", text)).strip()
    cleaned = _SENTENCE_JOIN.sub(r"\1 \2", cleaned)

    if cleaned:
        cleaned = cleaned[0].upper() + cleaned[1:]
        if cleaned[-1] not in ".!?":
            cleaned += "."
    return cleaned


def count_words(text: str) -> int:
    return len(text.split())


class SummaryStage:
    """
    Generate the narrative summary for one analysis

    Usage:
        stage = SummaryStage(generator)
        summary = await stage.generate_summary(summary_input)
    """

    def __init__(
        self,
        generator: Optional[TextGenerator],
        settings: Optional[SummarySettings] = None,
        llm_settings: Optional[LLMSettings] = None,
        sleep: SleepFn = asyncio.sleep,
        random_fn: Callable[[], float] = random.random,
    ):
        self.generator = generator
        settings = settings or SummarySettings()
        llm_settings = llm_settings or LLMSettings()

        self.max_retries = settings.max_retries
        self.retry_delay = settings.retry_delay_seconds
        self.request_timeout = settings.request_timeout_seconds
        self.target_word_range: Tuple[int, int] = settings.target_word_range
        self.min_quality_score = settings.min_quality_score
        self.temperature = llm_settings.summary_temperature
        self.max_output_tokens = llm_settings.summary_max_output_tokens

        self._sleep = sleep
        self._random = random_fn

    # ========================================================================
    # Public API
    # ========================================================================

    async def generate_summary(self, data: SummaryInput) -> GeneratedSummary:
        """
        Generate summary, emotions, insights and recommendations

        Args:
            data: Sentiment breakdown, themes, keywords and comment counts

        Returns:
            GeneratedSummary (template fallback after exhausted retries)
        """
        if data.valid_comments <= 0:
            return self.create_empty_summary()

        if self.generator is None:
            return self.generate_fallback_summary(data, "no text generator configured")

        prompt = self.build_prompt(data)
        policy = RetryPolicy(
            max_attempts=self.max_retries,
            base_delay=self.retry_delay,
            timeout=self.request_timeout,
        )
        attempts = 0

        async def attempt() -> GeneratedSummary:
            nonlocal attempts
            attempts += 1

            text = await self.generator.generate(
                prompt,
                temperature=self.temperature,
                max_output_tokens=self.max_output_tokens,
            )
            if not text or len(text.strip()) < MIN_RESPONSE_LENGTH:
                raise AnalysisError("Empty or invalid summary response")

            result = self._assemble(clean_summary_text(text), data)
            validation = self.validate_summary(result, data)
            result.quality_score = validation.quality_score

            if not validation.is_valid and attempts < self.max_retries:
                raise LowQualitySummaryError(
                    f"Summary quality below threshold ({validation.quality_score:.2f})"
                )
            return result

        try:
            summary = await execute_with_retry(
                attempt, policy, sleep=self._sleep, random_fn=self._random
            )
        except RetryExhaustedError as e:
            return self.generate_fallback_summary(data, str(e.last_error))

        logger.info(
            f"📝 Summary generated ({summary.word_count} words, "
            f"quality={summary.quality_score:.2f})"
        )
        return summary

    def validate_summary(self, summary: GeneratedSummary, data: SummaryInput) -> SummaryValidation:
        """Score a summary against length, content and derived-field checks"""
        issues: List[str] = []
        recommendations: List[str] = []
        score = 1.0
        low, high = self.target_word_range
        word_count = summary.word_count
        within_range = low <= word_count <= high

        if word_count < low:
            issues.append(f"Summary too short: {word_count} words (minimum {low})")
            recommendations.append("Expand summary with more specific insights")
            score -= 0.2
        elif word_count > high:
            issues.append(f"Summary too long: {word_count} words (maximum {high})")
            recommendations.append("Condense summary to focus on key points")
            score -= 0.1

        if len(summary.summary) < 50:
            issues.append("Summary content appears too brief")
            score -= 0.3

        if "%" not in summary.summary and data.total_comments > 0:
            issues.append("Summary lacks specific percentage data")
            recommendations.append("Include specific sentiment percentages")
            score -= 0.1

        if not summary.emotions and data.total_comments > 5:
            issues.append("No emotions detected despite sufficient comment volume")
            score -= 0.15

        if sum(e.prevalence for e in summary.emotions) > 100:
            issues.append("Emotion prevalence percentages exceed 100%")
            score -= 0.2

        if not summary.key_insights:
            issues.append("No key insights generated")
            score -= 0.1

        if not summary.recommendations and data.total_comments > 0:
            issues.append("No actionable recommendations provided")
            score -= 0.1

        score = max(0.0, min(1.0, score))
        return SummaryValidation(
            is_valid=not issues and score >= self.min_quality_score,
            issues=issues,
            quality_score=score,
            recommendations=recommendations,
            word_count=word_count,
            is_within_range=within_range,
            target_range=self.target_word_range,
        )

    def create_empty_summary(self) -> GeneratedSummary:
        return GeneratedSummary(
            summary=EMPTY_SUMMARY_TEXT,
            emotions=[],
            key_insights=["No comment data available for analysis"],
            recommendations=[
                "Encourage audience engagement",
                "Ask questions in your content",
                "Use calls-to-action to prompt responses",
            ],
            quality_score=EMPTY_QUALITY,
            word_count=count_words(EMPTY_SUMMARY_TEXT),
        )

    def generate_fallback_summary(
        self, data: SummaryInput, error_message: Optional[str] = None
    ) -> GeneratedSummary:
        """Template summary built only from the numbers"""
        if data.valid_comments <= 0:
            return self.create_empty_summary()

        breakdown = data.sentiment_breakdown
        positive, negative, neutral = breakdown.as_percentages()
        tone = self._overall_tone(data)
        top_theme = data.themes[0].name if data.themes else "general discussion"

        text = (
            f"The audience response shows {tone} sentiment with {positive}% positive, "
            f"{negative}% negative, and {neutral}% neutral reactions across "
            f"{data.valid_comments} comments. The most prominent theme is \"{top_theme}\" "
            f"which indicates key areas of audience interest. This analysis provides "
            f"insights into how your content resonates with viewers."
        )

        emotions: List[EmotionAnalysis] = []
        if breakdown.positive > 0.3:
            emotions.append(EmotionAnalysis("joy", float(positive), EMOTION_DESCRIPTIONS["joy"]))
        if breakdown.negative > 0.2:
            emotions.append(
                EmotionAnalysis("sadness", float(negative), EMOTION_DESCRIPTIONS["sadness"])
            )

        logger.warning(f"⚠️ Using fallback summary: {error_message}")

        return GeneratedSummary(
            summary=text,
            emotions=emotions[:MAX_EMOTIONS],
            key_insights=[
                f"{tone.capitalize()} audience sentiment detected",
                f"\"{top_theme}\" is the primary discussion topic",
            ],
            recommendations=[
                "Continue creating similar content" if tone == "positive" else "Address audience concerns",
                "Monitor comment patterns for content optimization",
            ],
            quality_score=FALLBACK_QUALITY,
            word_count=count_words(text),
            is_fallback=True,
        )

    def get_configuration(self) -> Dict[str, Any]:
        return {
            "max_retries": self.max_retries,
            "retry_delay": self.retry_delay,
            "target_word_range": list(self.target_word_range),
            "min_quality_score": self.min_quality_score,
        }

    def update_configuration(
        self,
        target_word_range: Optional[Tuple[int, int]] = None,
        min_quality_score: Optional[float] = None,
        max_retries: Optional[int] = None,
    ) -> None:
        """Apply updates that fall inside their allowed bounds, ignore the rest"""
        if target_word_range is not None:
            low, high = target_word_range
            if 0 < low < high:
                self.target_word_range = (low, high)
        if min_quality_score is not None and 0 <= min_quality_score <= 1:
            self.min_quality_score = min_quality_score
        if max_retries is not None and 1 <= max_retries <= 10:
            self.max_retries = max_retries

    # ========================================================================
    # Prompt & Derived Fields
    # ========================================================================

    def build_prompt(self, data: SummaryInput) -> str:
        positive, negative, neutral = data.sentiment_breakdown.as_percentages()
        themes = ", ".join(
            f'"{t.name}" ({t.frequency} comments, {t.sentiment.value.lower()} sentiment)'
            for t in data.themes[:3]
        )
        keywords = ", ".join(k.word for k in data.keywords[:5])

        return SUMMARY_PROMPT_TEMPLATE.format(
            valid_comments=data.valid_comments,
            positive=positive,
            negative=negative,
            neutral=neutral,
            themes=themes or "none identified",
            keywords=keywords or "none identified",
            min_words=self.target_word_range[0],
            max_words=self.target_word_range[1],
        )

    def _assemble(self, text: str, data: SummaryInput) -> GeneratedSummary:
        return GeneratedSummary(
            summary=text,
            emotions=self.analyze_emotions(data),
            key_insights=self.key_insights(data),
            recommendations=self.recommendations(data),
            quality_score=0.0,
            word_count=count_words(text),
        )

    @staticmethod
    def infer_emotion(theme: ThemeCluster) -> str:
        if theme.sentiment == Sentiment.POSITIVE:
            return "joy"
        if theme.sentiment == Sentiment.NEGATIVE:
            keywords = " ".join(theme.keywords).lower()
            return "anger" if any(term in keywords for term in ANGER_TERMS) else "sadness"
        return "trust"

    def analyze_emotions(self, data: SummaryInput) -> List[EmotionAnalysis]:
        """Top 3 emotions inferred from theme sentiment, prevalence in percent"""
        valid = data.valid_comments
        if valid <= 0:
            return []

        counts: Dict[str, int] = {}
        samples: Dict[str, List[str]] = {}
        for theme in data.themes:
            name = self.infer_emotion(theme)
            counts[name] = counts.get(name, 0) + theme.frequency
            samples.setdefault(name, []).extend(
                c.text for c in theme.representative_comments[:2]
            )

        emotions = [
            EmotionAnalysis(
                name=name,
                prevalence=round(count / valid * 100, 1),
                description=EMOTION_DESCRIPTIONS[name],
                representative_comments=samples[name][:3],
            )
            for name, count in counts.items()
        ]
        emotions.sort(key=lambda e: e.prevalence, reverse=True)
        emotions = emotions[:MAX_EMOTIONS]

        total = sum(e.prevalence for e in emotions)
        if total > 100:
            scale = 100 / total
            for emotion in emotions:
                emotion.prevalence = math.floor(emotion.prevalence * scale * 10) / 10
        return emotions

    def key_insights(self, data: SummaryInput) -> List[str]:
        breakdown = data.sentiment_breakdown
        positive, negative, neutral = breakdown.as_percentages()
        insights: List[str] = []

        if breakdown.positive > 0.6:
            insights.append(f"Strong positive reception with {positive}% positive sentiment")
        elif breakdown.negative > 0.4:
            insights.append(
                f"Significant negative feedback requiring attention ({negative}% negative)"
            )
        elif breakdown.neutral > 0.5:
            insights.append(f"Mixed audience reaction with {neutral}% neutral responses")
        else:
            insights.append(
                f"Balanced audience reaction: {positive}% positive, {negative}% negative, "
                f"{neutral}% neutral"
            )

        valid = max(data.valid_comments, 1)
        for theme in data.themes[:2]:
            share = round(theme.frequency / valid * 100)
            insights.append(
                f"\"{theme.name}\" draws {theme.sentiment.value.lower()} sentiment "
                f"({share}% of comments)"
            )

        if data.filtered_comments > data.total_comments * 0.2:
            insights.append(
                f"High spam/toxic content filtered ({data.filtered_comments} comments removed)"
            )
        elif data.filtered_comments > 0:
            insights.append(f"{data.filtered_comments} low-quality comments were filtered out")

        return insights[:MAX_INSIGHTS]

    def recommendations(self, data: SummaryInput) -> List[str]:
        breakdown = data.sentiment_breakdown
        recommendations: List[str] = []

        if breakdown.positive > 0.7:
            recommendations.append("Leverage this positive momentum by creating similar content")
        elif breakdown.negative > 0.4:
            recommendations.append("Address the concerns raised in negative feedback")
        else:
            recommendations.append("Build on the topics your audience responds to most")

        negative_themes = [t for t in data.themes if t.sentiment == Sentiment.NEGATIVE]
        if negative_themes:
            worst = max(negative_themes, key=lambda t: t.frequency)
            recommendations.append(f"Address concerns about \"{worst.name}\" in future content")
        elif data.themes:
            scattered = min(data.themes, key=lambda t: t.coherence_score)
            recommendations.append(
                f"Clarify your message on \"{scattered.name}\" where reactions are scattered"
            )

        if data.valid_comments < 10:
            recommendations.append(
                "Encourage more audience engagement through questions or calls-to-action"
            )
        elif data.filtered_comments > data.total_comments * 0.3:
            recommendations.append(
                "Consider moderating comments more actively to improve discussion quality"
            )
        else:
            recommendations.append("Reply to top comments to keep the discussion active")

        return recommendations[:MAX_RECOMMENDATIONS]

    @staticmethod
    def _overall_tone(data: SummaryInput) -> str:
        breakdown = data.sentiment_breakdown
        if breakdown.positive > 0.5:
            return "positive"
        if breakdown.negative > 0.4:
            return "negative"
        if breakdown.neutral > 0.5:
            return "neutral"
        return "mixed"
