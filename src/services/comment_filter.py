# src/services/comment_filter.py
"""
Comment Filter
Rule-based spam, toxicity and near-duplicate detection.

Every comment lands in exactly one bucket: spam, toxic, duplicate or
filtered (clean). Checks run in that order and the first match wins.
"""

import logging
import re
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

from src.app.config import FilterSettings
from src.domain.models import CommentRecord, FilterResult, FilterStats
from src.services.text_normalizer import (
    clean_text,
    jaccard_similarity,
    normalize,
    normalize_for_comparison,
)

logger = logging.getLogger(__name__)


SPAM_KEYWORDS: Tuple[str, ...] = (
    "subscribe",
    "follow me",
    "check out my",
    "click here",
    "free money",
    "make money fast",
    "work from home",
    "get rich quick",
    "buy now",
    "limited time",
    "act now",
    "call now",
    "visit my channel",
)

TOXIC_KEYWORDS: Tuple[str, ...] = (
    "hate",
    "stupid",
    "idiot",
    "moron",
    "loser",
    "pathetic",
    "disgusting",
    "trash",
    "garbage",
    "worthless",
    "useless",
    "kill yourself",
    "you are worthless",
    "die",
)

DUPLICATE_REASON = "duplicate"

_CHAR_REPETITION = re.compile(r"(.)\1{4,}")
_URL = re.compile(
    r"(https?://\S+|www\.\S+|\b[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}\b)", re.IGNORECASE
)
_EMOJI = re.compile(
    "[\U0001F600-\U0001F64F\U0001F300-\U0001F5FF\U0001F680-\U0001F6FF"
    "\U0001F1E0-\U0001F1FF\U00002600-\U000026FF\U00002700-\U000027BF"
    "\U0001F900-\U0001F9FF]"
)
_PROFANITY = (
    re.compile(r"\*{3,}"),
    re.compile(r"@#\$%"),
    re.compile(r"f\*+k"),
    re.compile(r"\b\w*\*+\w*\b"),
)
_HATE_SPEECH = (
    re.compile(r"you (should|need to|must) (die|kill yourself)"),
    re.compile(r"i hate you"),
    re.compile(r"go (die|kill yourself)"),
)


class CommentFilter:
    """
    Partition comments into clean, spam, toxic and duplicate buckets

    Usage:
        result = CommentFilter().filter(comments)
        result.filtered_comments  # safe to analyze
    """

    def __init__(
        self,
        settings: Optional[FilterSettings] = None,
        spam_keywords: Iterable[str] = SPAM_KEYWORDS,
        toxic_keywords: Iterable[str] = TOXIC_KEYWORDS,
    ):
        self.settings = settings or FilterSettings()
        self.spam_keywords = [k.lower() for k in spam_keywords]
        self.toxic_keywords = [k.lower() for k in toxic_keywords]

    # ========================================================================
    # Public API
    # ========================================================================

    def filter(self, comments: Sequence[CommentRecord]) -> FilterResult:
        """
        Classify every comment and set its is_filtered / filter_reason flags

        Args:
            comments: Comments in fetch order

        Returns:
            FilterResult with buckets and stats
        """
        result = FilterResult(stats=FilterStats(total=len(comments)))
        kept_token_sets: List[Set[str]] = []
        kept_texts: Set[str] = set()

        for comment in comments:
            spam_reason = self.detect_spam(comment.text)
            if spam_reason:
                self._mark(comment, spam_reason)
                result.spam_comments.append(comment)
                continue

            toxic_reason = self.detect_toxicity(comment.text)
            if toxic_reason:
                self._mark(comment, toxic_reason)
                result.toxic_comments.append(comment)
                continue

            comparable = normalize_for_comparison(comment.text)
            tokens = set(normalize(comment.text).split())
            if self._is_duplicate(comparable, tokens, kept_texts, kept_token_sets):
                self._mark(comment, DUPLICATE_REASON)
                result.duplicate_count += 1
                continue

            comment.is_filtered = False
            comment.filter_reason = None
            kept_texts.add(comparable)
            kept_token_sets.append(tokens)
            result.filtered_comments.append(comment)

        result.stats.spam = len(result.spam_comments)
        result.stats.toxic = len(result.toxic_comments)
        result.stats.duplicate = result.duplicate_count
        result.stats.filtered = len(result.filtered_comments)

        logger.info(
            f"🧹 Filtered {result.stats.total} comments: "
            f"{result.stats.filtered} kept, {result.stats.spam} spam, "
            f"{result.stats.toxic} toxic, {result.stats.duplicate} duplicate"
        )
        return result

    def detect_spam(self, text: str) -> Optional[str]:
        """
        Return the first spam reason for a comment, or None

        Reasons: too_short, too_long, excessive_caps, spam_keywords,
        excessive_repetition, contains_urls, excessive_emojis
        """
        cleaned = clean_text(text)
        lowered = normalize_for_comparison(text)

        if len(cleaned) < self.settings.min_comment_length:
            return "too_short"
        if len(cleaned) > self.settings.max_comment_length:
            return "too_long"
        if (
            len(cleaned) >= self.settings.caps_min_length
            and self._caps_ratio(cleaned) > self.settings.caps_ratio_threshold
        ):
            return "excessive_caps"
        if any(keyword in lowered for keyword in self.spam_keywords):
            return "spam_keywords"
        if self._has_excessive_repetition(lowered):
            return "excessive_repetition"
        if _URL.search(cleaned):
            return "contains_urls"
        if self._has_excessive_emojis(text):
            return "excessive_emojis"
        return None

    def detect_toxicity(self, text: str) -> Optional[str]:
        """Return the first toxicity reason for a comment, or None"""
        lowered = normalize_for_comparison(text)

        if any(keyword in lowered for keyword in self.toxic_keywords):
            return "toxic_keywords"
        if any(pattern.search(lowered) for pattern in _PROFANITY):
            return "excessive_profanity"
        if any(pattern.search(lowered) for pattern in _HATE_SPEECH):
            return "hate_speech_patterns"
        return None

    def get_filter_stats(self, result: FilterResult) -> Dict[str, float]:
        """Bucket sizes as percentages of the input"""
        total = result.stats.total
        if total == 0:
            return {"spam": 0.0, "toxic": 0.0, "duplicate": 0.0, "filtered": 0.0}

        return {
            "spam": round(result.stats.spam / total * 100, 1),
            "toxic": round(result.stats.toxic / total * 100, 1),
            "duplicate": round(result.stats.duplicate / total * 100, 1),
            "filtered": round(result.stats.filtered / total * 100, 1),
        }

    # ========================================================================
    # Heuristics
    # ========================================================================

    @staticmethod
    def _mark(comment: CommentRecord, reason: str) -> None:
        comment.is_filtered = True
        comment.filter_reason = reason

    @staticmethod
    def _caps_ratio(text: str) -> float:
        letters = [c for c in text if c.isascii() and c.isalpha()]
        if not letters:
            return 0.0
        upper = sum(1 for c in letters if c.isupper())
        return upper / len(letters)

    @staticmethod
    def _has_excessive_repetition(text: str) -> bool:
        if _CHAR_REPETITION.search(text):
            return True

        words = text.split()
        if len(words) < 4:
            return False

        counts: Dict[str, int] = {}
        for word in words:
            if len(word) > 2:
                counts[word] = counts.get(word, 0) + 1

        return bool(counts) and max(counts.values()) > len(words) * 0.3

    @staticmethod
    def _has_excessive_emojis(text: str) -> bool:
        stripped = text.strip()
        if not stripped:
            return False
        return len(_EMOJI.findall(stripped)) > len(stripped) * 0.5

    def _is_duplicate(
        self,
        comparable: str,
        tokens: Set[str],
        kept_texts: Set[str],
        kept_token_sets: List[Set[str]],
    ) -> bool:
        if comparable in kept_texts:
            return True
        threshold = self.settings.duplicate_threshold
        return any(
            jaccard_similarity(tokens, seen) >= threshold for seen in kept_token_sets
        )
