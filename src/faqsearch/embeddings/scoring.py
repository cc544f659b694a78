"""
Relevance scoring and keyword extraction for hybrid FAQ search.

The semantic path blends cosine similarity with popularity, helpfulness and
pinning into a single score in [0, 1]. The keyword path has no similarity
signal, so every keyword match gets the same fixed score below typical
semantic scores.
"""

import math
import string
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ..models import KnowledgeEntry

# Fixed score for keyword matches
KEYWORD_MATCH_SCORE = 0.5

MAX_KEYWORDS = 5

STOPWORDS = frozenset({
    "the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for",
    "of", "with", "by", "from", "is", "are", "was", "were", "be", "been",
    "being", "have", "has", "had", "do", "does", "did", "will", "would",
    "could", "should", "may", "might", "must", "can", "this", "that",
    "these", "those", "i", "you", "he", "she", "it", "we", "they",
})


@dataclass(frozen=True)
class RelevanceWeights:
    """
    Weights for the blended relevance score.

    Attributes:
        helpful_weight: Added in full for a 100% helpful ratio
        view_log_factor: Multiplier for ln(views + 1)
        view_boost_cap: Maximum popularity boost
        pin_boost: Added for pinned entries
    """

    helpful_weight: float = 0.10
    view_log_factor: float = 0.05
    view_boost_cap: float = 0.10
    pin_boost: float = 0.15


DEFAULT_WEIGHTS = RelevanceWeights()


def calculate_relevance_score(
    semantic_score: float,
    helpful_ratio: float,
    views: int,
    is_pinned: bool,
    weights: RelevanceWeights = DEFAULT_WEIGHTS,
) -> float:
    """
    Blend semantic similarity with popularity, helpfulness and pinning.

    Args:
        semantic_score: Cosine similarity from the vector index
        helpful_ratio: Helpful votes as a percentage (0-100)
        views: View counter
        is_pinned: Manual boost flag
        weights: Boost weights

    Returns:
        Score clamped to [0, 1]

    Example:
        >>> calculate_relevance_score(0.95, 85, 1250, True)
        1.0
    """
    score = semantic_score

    if helpful_ratio and helpful_ratio > 0:
        score += (helpful_ratio / 100) * weights.helpful_weight

    if views > 0:
        score += min(math.log(views + 1) * weights.view_log_factor, weights.view_boost_cap)

    if is_pinned:
        score += weights.pin_boost

    return min(max(score, 0.0), 1.0)


def extract_keywords(text: str, max_keywords: int = MAX_KEYWORDS) -> list[str]:
    """
    Extract significant tokens from a query for keyword search.

    Lower-cases, splits on whitespace, strips surrounding punctuation, keeps
    tokens longer than 3 characters that aren't stop-words, and returns the
    first max_keywords unique ones in query order.

    Example:
        >>> extract_keywords("How do I reset my password?")
        ['reset', 'password']
    """
    keywords: list[str] = []
    for word in text.lower().split():
        word = word.strip(string.punctuation)
        if len(word) <= 3 or word in STOPWORDS or word in keywords:
            continue
        keywords.append(word)
        if len(keywords) >= max_keywords:
            break
    return keywords


def matches_keywords(entry: "KnowledgeEntry", keywords: list[str]) -> bool:
    """True if the entry's question or answer contains any keyword."""
    question = entry.question.lower()
    answer = entry.answer.lower()
    return any(k in question or k in answer for k in keywords)
