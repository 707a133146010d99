"""User behavior and article engagement bookkeeping."""

import logging
from collections import Counter
from datetime import datetime, timezone

from .db import Database
from .errors import ArticleNotFoundError, UserNotFoundError
from .models import Engagement, Preferences, ReadEntry, User, UserStats

logger = logging.getLogger(__name__)


class EngagementService:
    """Applies reader actions to the store.

    Every method here writes. Storage errors propagate: a silently dropped
    write would leave the reader looking at stale state.
    """

    def __init__(self, db: Database):
        self.db = db

    def _require_user(self, user_id: str) -> None:
        if not self.db.user_exists(user_id):
            raise UserNotFoundError(user_id)

    def get_user(self, user_id: str) -> User:
        user = self.db.get_user(user_id)
        if user is None:
            raise UserNotFoundError(user_id)
        return user

    # --- Article engagement ---

    def record_view(self, article_id: str) -> None:
        if not self.db.increment_engagement(article_id, "views"):
            raise ArticleNotFoundError(article_id)

    def record_share(self, article_id: str) -> None:
        if not self.db.increment_engagement(article_id, "shares"):
            raise ArticleNotFoundError(article_id)

    def record_like(self, user_id: str, article_id: str) -> None:
        self._require_user(user_id)
        if not self.db.apply_reaction(user_id, article_id, "like"):
            raise ArticleNotFoundError(article_id)
        logger.info(f"User {user_id} liked article {article_id}")

    def record_dislike(self, user_id: str, article_id: str) -> None:
        self._require_user(user_id)
        if not self.db.apply_reaction(user_id, article_id, "dislike"):
            raise ArticleNotFoundError(article_id)
        logger.info(f"User {user_id} disliked article {article_id}")

    def record_rating(self, user_id: str, article_id: str, rating: int) -> Engagement:
        """Rate an article 1-5 and return its updated engagement."""
        if isinstance(rating, bool) or not isinstance(rating, int) or not 1 <= rating <= 5:
            raise ValueError("Rating must be between 1 and 5")
        self._require_user(user_id)
        if not self.db.apply_rating(user_id, article_id, rating):
            raise ArticleNotFoundError(article_id)
        return self.db.get_engagement(article_id)

    # --- Reader behavior ---

    def record_read(self, user_id: str, article_id: str, time_spent: int | None = None) -> None:
        self._require_user(user_id)
        if self.db.get_article(article_id, include_content=False) is None:
            raise ArticleNotFoundError(article_id)
        self.db.append_read(user_id, article_id, time_spent=time_spent)

    def record_search(self, user_id: str, query: str) -> None:
        query = query.strip()
        if not query:
            raise ValueError("Search query required")
        self._require_user(user_id)
        self.db.append_search(user_id, query)

    def clear_history(self, user_id: str) -> None:
        self._require_user(user_id)
        self.db.clear_behavior(user_id)
        logger.info(f"Cleared behavior history for user {user_id}")

    # --- Profile ---

    def get_preferences(self, user_id: str) -> Preferences:
        return self.get_user(user_id).preferences

    def update_preferences(self, user_id: str, changes: dict) -> Preferences:
        """Merge the given fields into the stored preferences."""
        current = self.get_preferences(user_id)
        updated_data = current.model_dump()
        updated_data.update(changes)
        updated = Preferences(**updated_data)
        self.db.update_preferences(user_id, updated)
        return updated

    def get_read_history(
        self, user_id: str, page: int = 1, limit: int = 20
    ) -> tuple[list[ReadEntry], int]:
        """One page of read history (newest first) and the total entry count."""
        self._require_user(user_id)
        skip = (max(page, 1) - 1) * limit
        return self.db.get_read_history(user_id, limit=limit, skip=skip), self.db.count_read_history(user_id)

    def get_user_stats(self, user_id: str) -> UserStats:
        user = self.get_user(user_id)
        reads = user.behavior.read_history

        articles = {a.id: a for a in self.db.get_articles(r.article_id for r in reads)}
        category_stats = Counter(
            articles[r.article_id].category for r in reads if r.article_id in articles
        )
        total_time = sum(r.time_spent or 0 for r in reads)
        average_time = round(total_time / len(reads)) if reads else 0

        return UserStats(
            total_articles_read=len(reads),
            total_likes=len(user.behavior.liked_article_ids),
            total_dislikes=len(user.behavior.disliked_article_ids),
            total_searches=len(user.behavior.search_history),
            average_reading_time=average_time,
            category_stats=dict(category_stats),
            recent_activity=list(reversed(reads))[:5],
        )

    def export_user_data(self, user_id: str) -> dict:
        user = self.get_user(user_id)
        return {
            "user": {
                "id": user.id,
                "username": user.username,
                "email": user.email,
                "preferences": user.preferences.model_dump(),
                "created_at": user.created_at,
            },
            "behavior": user.behavior.model_dump(),
            "export_date": datetime.now(timezone.utc).isoformat(),
        }
