# tests/unit/test_sentiment_stage.py
"""
Unit Tests for SentimentStage
"""

import json

import pytest

from src.app.config import SentimentSettings
from src.domain.models import EmotionScore, Sentiment, SentimentResult
from src.services.exceptions import ExternalServiceError
from src.services.sentiment_stage import (
    EmotionLine,
    SentimentStage,
    fallback_result,
    normalize_emotions,
    normalize_sentiment,
    summarize_results,
)
from tests.conftest import FakeGenerator, make_comments, no_sleep


def line(index, sentiment, confidence=0.9, emotions=None) -> str:
    return json.dumps(
        {
            "commentIndex": index,
            "sentiment": sentiment,
            "confidence": confidence,
            "emotions": emotions if emotions is not None else [{"name": "joy", "score": 0.8}],
        }
    )


def make_stage(generator, **settings) -> SentimentStage:
    return SentimentStage(
        generator,
        settings=SentimentSettings(**settings),
        sleep=no_sleep,
        random_fn=lambda: 0.0,
    )


class TestNormalization:
    def test_unknown_label_becomes_neutral(self):
        assert normalize_sentiment(" positive ") == Sentiment.POSITIVE
        assert normalize_sentiment("mixed") == Sentiment.NEUTRAL

    def test_emotions_filtered_clamped_and_capped(self):
        emotions = normalize_emotions(
            [
                EmotionLine(name="Joy", score=1.5),
                EmotionLine(name="boredom", score=0.9),
                EmotionLine(name="trust", score=0.4),
                EmotionLine(name="fear", score=0.1),
                EmotionLine(name="surprise", score=0.6),
            ]
        )

        assert [e.name for e in emotions] == ["joy", "surprise", "trust"]
        assert emotions[0].score == 1.0


class TestFallback:
    def test_positive_lexicon(self):
        result = fallback_result("I love this, it's great")

        assert result.sentiment == Sentiment.POSITIVE
        assert result.confidence == pytest.approx(0.5)
        assert result.emotions[0].name == "joy"
        assert result.is_fallback

    def test_negative_lexicon(self):
        result = fallback_result("This is terrible and awful")

        assert result.sentiment == Sentiment.NEGATIVE
        assert result.emotions[0].name == "anger"

    def test_no_hits_is_neutral(self):
        result = fallback_result("Nothing special here")

        assert result.sentiment == Sentiment.NEUTRAL
        assert result.confidence == 0.3
        assert result.emotions == []


class TestAnalyzeBatch:
    @pytest.mark.asyncio
    async def test_parses_provider_lines(self):
        # Setup
        comments = make_comments(["Loved it", "Hated it"])
        generator = FakeGenerator(
            ["\n".join([line(1, "POSITIVE", 0.9), line(2, "negative", 0.8, [])])]
        )
        stage = make_stage(generator)

        # Test
        batch = await stage.analyze_batch(comments)

        # Assert
        assert [r.sentiment for r in batch.results] == [Sentiment.POSITIVE, Sentiment.NEGATIVE]
        assert not any(r.is_fallback for r in batch.results)
        assert batch.summary.total_analyzed == 2
        assert batch.summary.sentiment_distribution["positive"] == 0.5
        assert '1. "Loved it"' in generator.prompts[0]

    @pytest.mark.asyncio
    async def test_missing_and_malformed_lines_fall_back(self):
        comments = make_comments(["first comment", "second comment is great", "third"])
        response = "\n".join(
            [line(1, "NEUTRAL", 0.7), "not json at all", line(9, "POSITIVE"), '{"sentiment": "x"}']
        )
        stage = make_stage(FakeGenerator([response]))

        batch = await stage.analyze_batch(comments)

        assert len(batch.results) == 3
        assert batch.results[0].is_fallback is False
        assert batch.results[1].is_fallback is True
        assert batch.results[1].sentiment == Sentiment.POSITIVE
        assert batch.results[2].is_fallback is True

    @pytest.mark.asyncio
    async def test_missing_confidence_defaults(self):
        comments = make_comments(["only comment"])
        response = json.dumps({"commentIndex": 1, "sentiment": "POSITIVE"})
        stage = make_stage(FakeGenerator([response]))

        batch = await stage.analyze_batch(comments)

        assert batch.results[0].confidence == 0.5

    @pytest.mark.asyncio
    async def test_provider_failure_yields_one_result_per_comment(self):
        comments = make_comments(["good stuff", "bad stuff", "meh"])
        error = ExternalServiceError("gemini", "HTTP 400", status_code=400, retryable=False)
        stage = make_stage(FakeGenerator([error]))

        batch = await stage.analyze_batch(comments)

        assert len(batch.results) == 3
        assert all(r.is_fallback for r in batch.results)

    @pytest.mark.asyncio
    async def test_retries_transient_errors(self):
        comments = make_comments(["good"])
        generator = FakeGenerator(
            [ExternalServiceError("gemini", "HTTP 503", status_code=503), line(1, "POSITIVE")]
        )
        stage = make_stage(generator)

        batch = await stage.analyze_batch(comments)

        assert len(generator.prompts) == 2
        assert batch.results[0].is_fallback is False

    @pytest.mark.asyncio
    async def test_quota_message_is_retried_with_rate_limit_delay(self):
        # Setup
        slept = []

        async def record_sleep(seconds):
            slept.append(seconds)

        quota = RuntimeError("Quota exceeded for this project, rate limit hit")
        generator = FakeGenerator([quota, quota, quota])
        stage = SentimentStage(
            generator,
            settings=SentimentSettings(max_retries=3, retry_delay_seconds=1.0),
            sleep=record_sleep,
            random_fn=lambda: 0.0,
        )

        # Test
        batch = await stage.analyze_batch(make_comments(["great tutorial"]))

        # Assert
        assert len(generator.prompts) == 3
        assert slept == [5.0, 10.0]
        assert batch.results[0].is_fallback is True

    @pytest.mark.asyncio
    async def test_without_generator_uses_lexicon(self):
        stage = make_stage(None)

        batch = await stage.analyze_batch(make_comments(["amazing", "worst ever"]))

        assert [r.sentiment for r in batch.results] == [Sentiment.POSITIVE, Sentiment.NEGATIVE]

    @pytest.mark.asyncio
    async def test_splits_into_batches_with_delay(self):
        # Setup
        slept = []

        async def record_sleep(seconds):
            slept.append(seconds)

        comments = make_comments(["one", "two", "three"])
        generator = FakeGenerator(
            ["\n".join([line(1, "POSITIVE"), line(2, "POSITIVE")]), line(1, "NEGATIVE")]
        )
        stage = SentimentStage(
            generator,
            settings=SentimentSettings(batch_size=2, inter_batch_delay_seconds=0.25),
            sleep=record_sleep,
        )

        # Test
        batch = await stage.analyze_batch(comments)

        # Assert
        assert len(generator.prompts) == 2
        assert slept == [0.25]
        assert batch.results[2].sentiment == Sentiment.NEGATIVE

    @pytest.mark.asyncio
    async def test_empty_input(self):
        batch = await make_stage(FakeGenerator()).analyze_batch([])

        assert batch.results == []
        assert batch.summary.total_analyzed == 0


class TestAdvanced:
    @pytest.mark.asyncio
    async def test_low_confidence_rerun_replaces_when_better(self):
        # Setup
        comments = make_comments(["unclear one", "clear one"])
        generator = FakeGenerator(
            [
                "\n".join([line(1, "NEUTRAL", 0.2), line(2, "POSITIVE", 0.9)]),
                line(1, "POSITIVE", 0.85),
            ]
        )
        stage = make_stage(generator)

        # Test
        batch = await stage.analyze_batch_advanced(comments)

        # Assert
        assert batch.results[0].sentiment == Sentiment.POSITIVE
        assert batch.processing_metrics["retry_count"] == 1
        assert batch.processing_metrics["batch_count"] == 1
        assert batch.processing_metrics["fallback_count"] == 0
        assert "validation" in batch.processing_metrics

    @pytest.mark.asyncio
    async def test_worse_rerun_is_discarded(self):
        comments = make_comments(["unclear one"])
        generator = FakeGenerator([line(1, "NEUTRAL", 0.4), line(1, "NEGATIVE", 0.1)])
        stage = make_stage(generator)

        batch = await stage.analyze_batch_advanced(comments)

        assert batch.results[0].sentiment == Sentiment.NEUTRAL
        assert batch.processing_metrics["retry_count"] == 0

    @pytest.mark.asyncio
    async def test_validation_can_be_disabled(self):
        stage = make_stage(None)

        batch = await stage.analyze_batch_advanced(
            make_comments(["great"]), retry_low_confidence=False, enable_validation=False
        )

        assert "validation" not in batch.processing_metrics
        assert batch.processing_metrics["fallback_count"] == 1


class TestValidation:
    def test_no_results(self):
        report = make_stage(None).validate_results([])

        assert report.is_valid is False
        assert report.quality_score == 0.0

    def test_healthy_results(self):
        results = [
            SentimentResult(Sentiment.POSITIVE, 0.9, [EmotionScore("joy", 0.8)]),
            SentimentResult(Sentiment.NEGATIVE, 0.9, [EmotionScore("anger", 0.7)]),
        ]

        report = make_stage(None).validate_results(results)

        assert report.is_valid is True
        assert report.quality_score == pytest.approx(0.9)

    def test_batch_count_mismatch(self):
        results = [SentimentResult(Sentiment.POSITIVE, 0.9, [EmotionScore("joy", 0.8)])]

        report = make_stage(None).validate_batch_results(results, expected_count=2)

        assert report.is_valid is False
        assert any("mismatch" in issue for issue in report.issues)


class TestProcessingConfig:
    def test_out_of_range_updates_are_ignored(self):
        stage = make_stage(None)

        stage.update_processing_config(batch_size=100, max_retries=5, retry_delay=0.01)

        stats = stage.get_processing_stats()
        assert stats["batch_size"] == 10
        assert stats["max_retries"] == 5
        assert stats["retry_delay"] == 1.0


def test_summary_distribution_fractions():
    results = [fallback_result("great"), fallback_result("awful"), fallback_result("ok")]

    summary = summarize_results(results)

    assert summary.total_analyzed == 3
    assert summary.sentiment_distribution == pytest.approx(
        {"positive": 1 / 3, "negative": 1 / 3, "neutral": 1 / 3}
    )
