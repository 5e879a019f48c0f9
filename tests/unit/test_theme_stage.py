# tests/unit/test_theme_stage.py
"""
Unit Tests for ThemeStage
"""

import pytest

from src.app.config import ThemeSettings
from src.domain.models import Sentiment, SentimentResult
from src.services.theme_stage import FALLBACK_THEME_NAME, ThemeStage, majority_sentiment
from tests.conftest import make_comments


def labels(*sentiments):
    return [SentimentResult(s, 0.9) for s in sentiments]


@pytest.fixture
def tutorial_sentiments():
    return labels(*([Sentiment.POSITIVE] * 4 + [Sentiment.NEGATIVE] * 2))


class TestEndToEnd:
    """Six comments: four about tutorial quality, two about editing"""

    def test_two_themes_found(self, tutorial_comments, tutorial_sentiments):
        # Test
        result = ThemeStage().analyze_themes(tutorial_comments, tutorial_sentiments)

        # Assert
        assert result.summary.total_themes == 2
        tutorial, editing = result.themes

        assert tutorial.frequency == 4
        assert "tutorial" in tutorial.keywords
        assert "helpful" in tutorial.keywords
        assert tutorial.sentiment == Sentiment.POSITIVE

        assert editing.frequency == 2
        assert editing.name == "Video & Editing"
        assert editing.sentiment == Sentiment.NEGATIVE

    def test_keywords_exclude_stop_words_and_short_tokens(
        self, tutorial_comments, tutorial_sentiments
    ):
        result = ThemeStage().analyze_themes(tutorial_comments, tutorial_sentiments)

        words = [k.word for k in result.keywords]
        assert set(words) == {"tutorial", "helpful", "clear", "video", "editing"}
        assert not {"the", "and", "is"} & set(words)
        assert all(len(word) > 2 for word in words)

    def test_keyword_scores_and_contexts(self, tutorial_comments, tutorial_sentiments):
        result = ThemeStage().analyze_themes(tutorial_comments, tutorial_sentiments)

        scores = [k.tfidf_score for k in result.keywords]
        assert scores == sorted(scores, reverse=True)

        tutorial = next(k for k in result.keywords if k.word == "tutorial")
        assert tutorial.frequency == 4
        assert tutorial.sentiment == Sentiment.POSITIVE
        assert tutorial.sentiment_score == 1.0
        assert tutorial.contexts[0] == "tutorial helpful clear"

    def test_coherence_and_representatives(self, tutorial_comments, tutorial_sentiments):
        result = ThemeStage().analyze_themes(tutorial_comments, tutorial_sentiments)

        tutorial, editing = result.themes
        assert tutorial.coherence_score == pytest.approx(0.425)
        assert editing.coherence_score == pytest.approx(2 / 7)
        # c1 and c2 are equally central, c2 has more likes
        assert [c.id for c in tutorial.representative_comments] == ["c0", "c3", "c2"]
        assert result.summary.dominant_sentiment == Sentiment.POSITIVE

    def test_deterministic(self, tutorial_comments, tutorial_sentiments):
        stage = ThemeStage()

        first = stage.analyze_themes(tutorial_comments, tutorial_sentiments)
        second = stage.analyze_themes(tutorial_comments, tutorial_sentiments)

        assert [t.name for t in first.themes] == [t.name for t in second.themes]
        assert [k.word for k in first.keywords] == [k.word for k in second.keywords]


class TestEdgeCases:
    def test_empty_input(self):
        result = ThemeStage().analyze_themes([], [])

        assert result.themes == []
        assert result.summary.total_themes == 0
        assert result.summary.dominant_sentiment == Sentiment.NEUTRAL

    def test_terms_in_every_comment_score_zero(self):
        comments = make_comments(["great editing", "editing great"])

        result = ThemeStage().analyze_themes(comments, [])

        assert result.keywords == []
        assert result.themes[0].name == FALLBACK_THEME_NAME

    def test_missing_sentiments_count_as_neutral(self):
        comments = make_comments(["editing tips", "editing tricks"])

        result = ThemeStage().analyze_themes(comments, labels(Sentiment.POSITIVE))

        # one POSITIVE and one NEUTRAL tie
        assert result.themes[0].sentiment == Sentiment.NEUTRAL

    def test_singleton_clusters_are_dropped_by_default(self):
        comments = make_comments(["editing tips", "gardening advice"])

        result = ThemeStage().analyze_themes(comments, [])

        assert result.themes == []

    def test_singleton_coherence(self):
        comments = make_comments(["editing tips"])
        stage = ThemeStage(ThemeSettings(min_cluster_size=1))

        result = stage.analyze_themes(comments, [])

        assert result.themes[0].coherence_score == 1.0
        assert [c.id for c in result.themes[0].representative_comments] == ["c0"]

    def test_max_clusters_cap(self):
        comments = make_comments(["alpha beta", "gamma delta", "epsilon zeta"])
        stage = ThemeStage(ThemeSettings(min_cluster_size=1, max_clusters=2))

        result = stage.analyze_themes(comments, [])

        assert len(result.themes) == 2


class TestMajoritySentiment:
    def test_clear_winner(self):
        assert (
            majority_sentiment([Sentiment.NEGATIVE, Sentiment.NEGATIVE, Sentiment.POSITIVE])
            == Sentiment.NEGATIVE
        )

    def test_tie_is_neutral(self):
        assert majority_sentiment([Sentiment.NEGATIVE, Sentiment.POSITIVE]) == Sentiment.NEUTRAL

    def test_empty_is_neutral(self):
        assert majority_sentiment([]) == Sentiment.NEUTRAL


class TestConfiguredRun:
    def test_overrides_apply_once(self, tutorial_comments, tutorial_sentiments):
        # Setup
        stage = ThemeStage()

        # Test
        result = stage.analyze_themes_with_config(
            tutorial_comments, tutorial_sentiments, min_cluster_size=3
        )

        # Assert
        assert len(result.themes) == 1
        assert stage.settings.min_cluster_size == 2

    def test_overrides_are_clamped(self, tutorial_comments, tutorial_sentiments):
        stage = ThemeStage()

        result = stage.analyze_themes_with_config(
            tutorial_comments, tutorial_sentiments, similarity_threshold=5.0, max_keywords=1
        )

        # threshold clamps to 0.9 so nothing clusters; keyword cap clamps up to 10
        assert result.themes == []
        assert len(result.keywords) == 5

    def test_configuration_snapshot(self):
        config = ThemeStage().get_configuration()

        assert config["similarity_threshold"] == 0.15
        assert config["stop_words_count"] > 0
