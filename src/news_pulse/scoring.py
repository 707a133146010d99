# src/news_pulse/scoring.py
"""
Scoring and merging functions for the recommendation strategies.

Everything here is pure: the recommenders read the store, hand plain
lists and dicts to these helpers, and turn the output back into results.
Ties are always broken deterministically so the same store state yields
the same ranking.
"""

import math
from collections import Counter
from typing import Iterable, Sequence

from news_pulse.config import RecommendationLimits
from news_pulse.models import Article, BehaviorSnapshot


def score_collaborative_candidates(
    liked_ids: Iterable[str], neighbor_likes: dict[str, list[str]]
) -> dict[str, int]:
    """
    Score articles by how many distinct neighbors liked them.

    Args:
        liked_ids: Articles the target user already likes (never scored)
        neighbor_likes: Dict mapping neighbor user id -> their liked article ids

    Returns:
        Dict mapping article id -> number of neighbors who liked it
    """
    already_liked = set(liked_ids)
    scores: Counter[str] = Counter()
    for liked in neighbor_likes.values():
        # set() so a neighbor counts once per article
        for article_id in set(liked) - already_liked:
            scores[article_id] += 1
    return dict(scores)


def rank_by_score(articles: Iterable[Article], scores: dict[str, int]) -> list[Article]:
    """Sort articles by score descending, then by id ascending."""
    return sorted(articles, key=lambda a: (-scores.get(a.id, 0), a.id))


def top_by_frequency(values: Iterable[str], n: int) -> list[str]:
    """
    The n most frequent values.

    Ties are ordered alphabetically so the result does not depend on the
    order the values were read in.
    """
    counts = Counter(v for v in values if v)
    ranked = sorted(counts.items(), key=lambda kv: (-kv[1], kv[0]))
    return [value for value, _ in ranked[:n]]


def content_preferences(liked_articles: Iterable[Article]) -> tuple[list[str], list[str]]:
    """Top categories and top tags across a user's liked articles."""
    categories: list[str] = []
    tags: list[str] = []
    for article in liked_articles:
        categories.append(article.category)
        tags.extend(set(article.tags))
    return (
        top_by_frequency(categories, RecommendationLimits.TOP_CATEGORIES),
        top_by_frequency(tags, RecommendationLimits.TOP_TAGS),
    )


def fallback_ranking(
    snapshot: BehaviorSnapshot,
    candidates: Sequence[Article],
    limit: int = RecommendationLimits.AI_FALLBACK,
) -> list[str]:
    """
    Rank candidates without the AI service.

    Keeps the candidates whose category the reader has liked at least once,
    in their input order (newest first), and drops the rest.

    Args:
        snapshot: Reader behavior (liked categories drive the filter)
        candidates: Candidate articles in input order
        limit: Maximum number of ids to return

    Returns:
        Ordered article ids, at most ``limit`` of them
    """
    liked = set(snapshot.liked_categories)
    return [a.id for a in candidates if a.category in liked][:limit]


def per_strategy_limit(limit: int, strategies: int) -> int:
    """
    How many results to request from each merged strategy.

    Uses ceiling division, so the strategies together may return more than
    ``limit`` before deduplication and truncation.
    """
    if strategies <= 0:
        raise ValueError("At least one strategy is required")
    return math.ceil(limit / strategies)


def merge_recommendations(result_lists: Iterable[Sequence[Article]], limit: int) -> list[Article]:
    """
    Concatenate strategy results, drop repeated ids and truncate.

    The first occurrence of an article wins, so earlier lists take priority.
    """
    merged: list[Article] = []
    seen_ids: set[str] = set()
    for results in result_lists:
        for article in results:
            if article.id not in seen_ids:
                seen_ids.add(article.id)
                merged.append(article)
    return merged[:limit]
