# src/services/theme_stage.py
"""
Theme Stage
TF-IDF keyword extraction and greedy Jaccard-threshold clustering.

Pure CPU work: no external calls, deterministic for identical input.
"""

import logging
import math
from collections import Counter
from typing import Any, Dict, Iterable, List, Optional, Sequence

from src.app.config import ThemeSettings
from src.domain.models import (
    CommentRecord,
    KeywordData,
    Sentiment,
    SentimentResult,
    ThemeAnalysisResult,
    ThemeCluster,
    ThemeSummary,
)
from src.services.text_normalizer import STOP_WORDS, jaccard_similarity, tokenize

logger = logging.getLogger(__name__)

FALLBACK_THEME_NAME = "Miscellaneous Discussion"
MAX_CONTEXTS = 5
MAX_REPRESENTATIVES = 3
MAX_THEME_KEYWORDS = 5
CONTEXT_BEFORE = 2
CONTEXT_AFTER = 2


def majority_sentiment(sentiments: Iterable[Sentiment]) -> Sentiment:
    """Most frequent label; an empty input or a tie for first gives NEUTRAL"""
    counts = Counter(sentiments)
    if not counts:
        return Sentiment.NEUTRAL

    top = max(counts.values())
    leaders = [s for s, count in counts.items() if count == top]
    return leaders[0] if len(leaders) == 1 else Sentiment.NEUTRAL


class ThemeStage:
    """
    Cluster comments into themes and extract keywords

    Usage:
        result = ThemeStage().analyze_themes(comments, sentiment_results)
    """

    def __init__(self, settings: Optional[ThemeSettings] = None):
        self.settings = settings or ThemeSettings()

    # ========================================================================
    # Public API
    # ========================================================================

    def analyze_themes(
        self,
        comments: Sequence[CommentRecord],
        sentiment_results: Sequence[SentimentResult],
    ) -> ThemeAnalysisResult:
        """
        Extract keywords and theme clusters

        Args:
            comments: Filtered comments
            sentiment_results: Position-aligned results; missing ones count as NEUTRAL

        Returns:
            ThemeAnalysisResult
        """
        if not comments:
            return ThemeAnalysisResult()

        sentiments = [
            sentiment_results[i].sentiment if i < len(sentiment_results) else Sentiment.NEUTRAL
            for i in range(len(comments))
        ]
        tokens = [tokenize(comment.text) for comment in comments]
        token_sets = [set(t) for t in tokens]

        keywords = self.extract_keywords(tokens, sentiments)
        matrix = self.similarity_matrix(token_sets)
        clusters = self.cluster(matrix)

        themes = [
            self._build_theme(n, members, comments, sentiments, token_sets, matrix, keywords)
            for n, members in enumerate(clusters, start=1)
        ]

        summary = ThemeSummary(
            total_themes=len(themes),
            total_keywords=len(keywords),
            average_coherence=(
                sum(t.coherence_score for t in themes) / len(themes) if themes else 0.0
            ),
            dominant_sentiment=majority_sentiment(sentiments),
        )

        logger.info(
            f"🏷️ Found {summary.total_themes} themes and {summary.total_keywords} keywords "
            f"in {len(comments)} comments"
        )
        return ThemeAnalysisResult(themes=themes, keywords=keywords, summary=summary)

    def analyze_themes_with_config(
        self,
        comments: Sequence[CommentRecord],
        sentiment_results: Sequence[SentimentResult],
        min_cluster_size: Optional[int] = None,
        max_clusters: Optional[int] = None,
        similarity_threshold: Optional[float] = None,
        max_keywords: Optional[int] = None,
    ) -> ThemeAnalysisResult:
        """Run once with clamped overrides; this stage's own settings stay untouched"""
        updates: Dict[str, Any] = {}
        if min_cluster_size is not None:
            updates["min_cluster_size"] = max(1, min_cluster_size)
        if max_clusters is not None:
            updates["max_clusters"] = max(1, min(20, max_clusters))
        if similarity_threshold is not None:
            updates["similarity_threshold"] = max(0.1, min(0.9, similarity_threshold))
        if max_keywords is not None:
            updates["max_keywords"] = max(10, min(100, max_keywords))

        overridden = ThemeStage(self.settings.model_copy(update=updates))
        return overridden.analyze_themes(comments, sentiment_results)

    def get_configuration(self) -> Dict[str, Any]:
        return {
            "min_cluster_size": self.settings.min_cluster_size,
            "max_clusters": self.settings.max_clusters,
            "similarity_threshold": self.settings.similarity_threshold,
            "min_keyword_frequency": self.settings.min_keyword_frequency,
            "max_keywords": self.settings.max_keywords,
            "stop_words_count": len(STOP_WORDS),
        }

    # ========================================================================
    # Keywords
    # ========================================================================

    def extract_keywords(
        self, tokens: Sequence[List[str]], sentiments: Sequence[Sentiment]
    ) -> List[KeywordData]:
        """
        TF-IDF keywords over the token lists of all comments

        tf = term total / corpus token count, idf = log(docs / doc freq).
        Terms below the minimum frequency or with a zero score are dropped.
        """
        corpus_size = sum(len(t) for t in tokens)
        if corpus_size == 0:
            return []

        total_docs = len(tokens)
        term_totals: Counter = Counter()
        doc_freq: Counter = Counter()
        term_docs: Dict[str, List[int]] = {}
        contexts: Dict[str, List[str]] = {}

        for doc_index, doc_tokens in enumerate(tokens):
            term_totals.update(doc_tokens)
            for term in dict.fromkeys(doc_tokens):
                doc_freq[term] += 1
                term_docs.setdefault(term, []).append(doc_index)

            for position, term in enumerate(doc_tokens):
                seen = contexts.setdefault(term, [])
                if len(seen) >= MAX_CONTEXTS:
                    continue
                window = doc_tokens[max(0, position - CONTEXT_BEFORE) : position + CONTEXT_AFTER + 1]
                context = " ".join(window)
                if context not in seen:
                    seen.append(context)

        keywords: List[KeywordData] = []
        for term, total in term_totals.items():
            if total < self.settings.min_keyword_frequency or len(term) <= 2:
                continue

            tfidf = (total / corpus_size) * math.log(total_docs / doc_freq[term])
            if tfidf <= 0:
                continue

            term_sentiments = [sentiments[i] for i in term_docs[term]]
            dominant = majority_sentiment(term_sentiments)
            agreement = sum(1 for s in term_sentiments if s == dominant) / len(term_sentiments)

            keywords.append(
                KeywordData(
                    word=term,
                    frequency=total,
                    sentiment=dominant,
                    contexts=contexts[term],
                    tfidf_score=tfidf,
                    sentiment_score=agreement,
                )
            )

        keywords.sort(key=lambda k: k.tfidf_score, reverse=True)
        return keywords[: self.settings.max_keywords]

    # ========================================================================
    # Clustering
    # ========================================================================

    @staticmethod
    def similarity_matrix(token_sets: Sequence[set]) -> List[List[float]]:
        """Symmetric pairwise Jaccard matrix with 1.0 on the diagonal"""
        size = len(token_sets)
        matrix = [[0.0] * size for _ in range(size)]
        for i in range(size):
            matrix[i][i] = 1.0
            for j in range(i + 1, size):
                score = jaccard_similarity(token_sets[i], token_sets[j])
                matrix[i][j] = score
                matrix[j][i] = score
        return matrix

    def cluster(self, matrix: Sequence[Sequence[float]]) -> List[List[int]]:
        """
        Greedy threshold clustering

        Each comment joins the first cluster whose average similarity to it
        exceeds the threshold, else starts a new cluster while under the cap.
        Returns member index lists, largest first, undersized ones removed.
        """
        threshold = self.settings.similarity_threshold
        clusters: List[List[int]] = []

        for index in range(len(matrix)):
            for members in clusters:
                average = sum(matrix[index][m] for m in members) / len(members)
                if average > threshold:
                    members.append(index)
                    break
            else:
                if len(clusters) < self.settings.max_clusters:
                    clusters.append([index])

        kept = [c for c in clusters if len(c) >= self.settings.min_cluster_size]
        kept.sort(key=len, reverse=True)
        return kept

    # ========================================================================
    # Theme Metadata
    # ========================================================================

    def _build_theme(
        self,
        number: int,
        members: List[int],
        comments: Sequence[CommentRecord],
        sentiments: Sequence[Sentiment],
        token_sets: Sequence[set],
        matrix: Sequence[Sequence[float]],
        keywords: Sequence[KeywordData],
    ) -> ThemeCluster:
        cluster_tokens = set().union(*(token_sets[m] for m in members))
        theme_keywords = [k.word for k in keywords if k.word in cluster_tokens][:MAX_THEME_KEYWORDS]

        return ThemeCluster(
            id=f"theme_{number}",
            name=self.theme_name(theme_keywords),
            comments=[comments[m] for m in members],
            sentiment=majority_sentiment(sentiments[m] for m in members),
            representative_comments=[
                comments[m] for m in self.representatives(members, comments, matrix)
            ],
            keywords=theme_keywords,
            coherence_score=self.coherence(members, matrix),
        )

    @staticmethod
    def theme_name(theme_keywords: Sequence[str]) -> str:
        if not theme_keywords:
            return FALLBACK_THEME_NAME
        return " & ".join(word.title() for word in theme_keywords[:2])

    @staticmethod
    def coherence(members: Sequence[int], matrix: Sequence[Sequence[float]]) -> float:
        """Mean pairwise similarity, 1.0 for a singleton"""
        if len(members) < 2:
            return 1.0

        pairs = [
            matrix[a][b]
            for i, a in enumerate(members)
            for b in members[i + 1 :]
        ]
        return sum(pairs) / len(pairs)

    @staticmethod
    def representatives(
        members: Sequence[int],
        comments: Sequence[CommentRecord],
        matrix: Sequence[Sequence[float]],
    ) -> List[int]:
        """Members most similar to the rest; ties go to more likes, then earlier"""
        if len(members) == 1:
            return list(members)

        def centrality(member: int) -> float:
            others = [matrix[member][o] for o in members if o != member]
            return sum(others) / len(others)

        ranked = sorted(
            members,
            key=lambda m: (-centrality(m), -comments[m].like_count, m),
        )
        return ranked[:MAX_REPRESENTATIVES]
