"""Article recommendation strategies and the merger that combines them."""

import asyncio
import logging
from typing import Sequence

from .ai_service import AIService
from .config import HYBRID_STRATEGIES, MIXED_STRATEGIES, RecommendationLimits
from .db import Database
from .errors import StorageError, UserNotFoundError
from .models import Article, BehaviorSnapshot, RecommendationResult, User
from .scoring import (
    content_preferences,
    merge_recommendations,
    per_strategy_limit,
    rank_by_score,
    score_collaborative_candidates,
)

logger = logging.getLogger(__name__)


def _result(
    articles: list[Article], algorithm: str, breakdown: dict[str, int] | None = None
) -> RecommendationResult:
    return RecommendationResult(
        recommendations=articles,
        count=len(articles),
        algorithm=algorithm,
        breakdown=breakdown,
    )


def check_limit(limit: int) -> int:
    """Reject anything but a positive int result count."""
    if isinstance(limit, bool) or not isinstance(limit, int) or limit < 1:
        raise ValueError(f"limit must be a positive integer, got {limit!r}")
    return limit


class Recommender:
    def __init__(self, db: Database, ai_service: AIService):
        self.db = db
        self.ai_service = ai_service

    async def _read(self, method, *args, **kwargs):
        # Store calls run on a worker thread
        return await asyncio.to_thread(method, *args, **kwargs)

    async def _require_user(self, user_id: str) -> User:
        user = await self._read(self.db.get_user, user_id)
        if user is None:
            raise UserNotFoundError(user_id)
        return user

    async def _recent_fallback(self, limit: int) -> RecommendationResult:
        """Newest active articles, for readers we know nothing useful about."""
        articles = await self._read(self.db.find_active_articles, sort="latest", limit=limit)
        return _result(articles, "recent-fallback")

    # --- Strategies ---

    async def get_collaborative_recommendations(
        self, user_id: str, limit: int = RecommendationLimits.DEFAULT
    ) -> RecommendationResult:
        """Articles liked by readers who share likes with this one."""
        check_limit(limit)
        try:
            await self._require_user(user_id)
            liked_ids = await self._read(self.db.get_liked_article_ids, user_id)
            if not liked_ids:
                return await self._recent_fallback(limit)

            neighbor_likes = await self._read(self.db.find_neighbor_likes, user_id)
            if not neighbor_likes:
                return await self._recent_fallback(limit)

            scores = score_collaborative_candidates(liked_ids, neighbor_likes)
            if not scores:
                return await self._recent_fallback(limit)

            candidates = await self._read(self.db.find_active_articles, ids=list(scores))
            return _result(rank_by_score(candidates, scores)[:limit], "collaborative-filtering")
        except StorageError as e:
            logger.warning(f"Collaborative filtering failed for user {user_id}: {e}")
            return await self._recent_fallback(limit)

    async def get_content_based_recommendations(
        self, user_id: str, limit: int = RecommendationLimits.DEFAULT
    ) -> RecommendationResult:
        """Unseen articles sharing the reader's favourite categories or tags."""
        check_limit(limit)
        try:
            behavior = (await self._require_user(user_id)).behavior
            liked = await self._read(self.db.find_active_articles, ids=behavior.liked_article_ids)
            if not liked:
                return await self._recent_fallback(limit)

            top_categories, top_tags = content_preferences(liked)
            articles = await self._read(
                self.db.find_active_articles,
                exclude_ids=behavior.liked_article_ids + behavior.disliked_article_ids,
                categories=top_categories,
                tags=top_tags,
                sort="latest",
                limit=limit,
            )
            return _result(articles, "content-based")
        except StorageError as e:
            logger.warning(f"Content-based filtering failed for user {user_id}: {e}")
            return await self._recent_fallback(limit)

    async def _behavior_snapshot(self, user: User) -> BehaviorSnapshot:
        behavior = user.behavior
        liked = await self._read(self.db.get_articles, behavior.liked_article_ids)
        disliked = await self._read(self.db.get_articles, behavior.disliked_article_ids)
        return BehaviorSnapshot(
            liked_categories=[a.category for a in liked],
            disliked_categories=[a.category for a in disliked],
            search_queries=[s.query for s in behavior.search_history],
        )

    async def get_ai_recommendations(
        self, user_id: str, limit: int = RecommendationLimits.DEFAULT
    ) -> RecommendationResult:
        """Let the AI service pick from the newest articles."""
        check_limit(limit)
        try:
            user = await self._require_user(user_id)
            snapshot = await self._behavior_snapshot(user)
            candidates = await self._read(
                self.db.find_active_articles,
                sort="latest",
                limit=RecommendationLimits.AI_CANDIDATES,
            )
            ranking = await self.ai_service.rank_articles(snapshot, candidates)

            order = {article_id: i for i, article_id in enumerate(ranking.article_ids)}
            articles = await self._read(self.db.find_active_articles, ids=ranking.article_ids)
            articles.sort(key=lambda a: order[a.id])

            algorithm = "ai-powered" if ranking.source == "ai" else "ai-fallback"
            return _result(articles[:limit], algorithm)
        except StorageError as e:
            logger.warning(f"AI recommendations failed for user {user_id}: {e}")
            return await self._recent_fallback(limit)

    async def get_trending_recommendations(
        self, limit: int = RecommendationLimits.DEFAULT
    ) -> RecommendationResult:
        """Most viewed, then most liked, active articles."""
        check_limit(limit)
        articles = await self._read(self.db.find_active_articles, sort="trending", limit=limit)
        return _result(articles, "trending")

    async def get_category_recommendations(
        self, category: str, limit: int = RecommendationLimits.DEFAULT
    ) -> RecommendationResult:
        check_limit(limit)
        articles = await self._read(
            self.db.find_active_articles, categories=[category], sort="latest", limit=limit
        )
        return _result(articles, "category-based")

    # --- Merging ---

    async def _run_strategy(self, name: str, user_id: str, limit: int) -> RecommendationResult:
        if name == "collaborative":
            return await self.get_collaborative_recommendations(user_id, limit)
        if name == "content_based":
            return await self.get_content_based_recommendations(user_id, limit)
        if name == "ai":
            return await self.get_ai_recommendations(user_id, limit)
        if name == "trending":
            return await self.get_trending_recommendations(limit)
        raise ValueError(f"Unknown recommendation strategy: {name}")

    async def merge_strategies(
        self,
        user_id: str,
        strategies: Sequence[str],
        limit: int,
        algorithm: str,
    ) -> RecommendationResult:
        """
        Run strategies concurrently and merge their results.

        Strategy order is the dedupe priority. A strategy that fails
        contributes nothing instead of failing the request.
        """
        each = per_strategy_limit(check_limit(limit), len(strategies))

        results = await asyncio.gather(
            *(self._run_strategy(name, user_id, each) for name in strategies),
            return_exceptions=True,
        )

        for result in results:
            if isinstance(result, UserNotFoundError):
                raise result

        result_lists: list[list[Article]] = []
        breakdown: dict[str, int] = {}
        for name, result in zip(strategies, results):
            if isinstance(result, Exception):
                logger.warning(f"Strategy {name} failed for user {user_id}: {result}")
                articles = []
            else:
                articles = result.recommendations
            result_lists.append(articles)
            breakdown[name] = len(articles)

        return _result(merge_recommendations(result_lists, limit), algorithm, breakdown)

    async def get_hybrid_recommendations(
        self, user_id: str, limit: int = RecommendationLimits.DEFAULT
    ) -> RecommendationResult:
        return await self.merge_strategies(user_id, HYBRID_STRATEGIES, limit, "hybrid")

    async def get_mixed_recommendations(
        self, user_id: str, limit: int = RecommendationLimits.MIXED
    ) -> RecommendationResult:
        return await self.merge_strategies(user_id, MIXED_STRATEGIES, limit, "mixed")
