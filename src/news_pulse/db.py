import functools
import json
import os
import sqlite3
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Literal

from .errors import StorageError
from .models import (
    AIAnalysis,
    Article,
    ArticleMetadata,
    Engagement,
    Preferences,
    ReadEntry,
    SearchEntry,
    Source,
    User,
    UserBehavior,
)

ENGAGEMENT_COUNTERS = ("views", "likes", "dislikes", "shares")

ARTICLE_SORTS = {
    "latest": "a.created_at DESC, a.id ASC",
    "scraped": "a.scraped_at DESC, a.id ASC",
    "trending": "a.views DESC, a.likes DESC, a.created_at DESC, a.id ASC",
    "popular": "a.likes DESC, a.views DESC, a.created_at DESC, a.id ASC",
}

# reaction -> (counter, set to add to, set to remove from)
REACTIONS = {
    "like": ("likes", "liked_articles", "disliked_articles"),
    "dislike": ("dislikes", "disliked_articles", "liked_articles"),
}

_ARTICLE_COLUMNS = """
    a.id, a.title, a.summary, a.url, a.source_json, a.category, a.tags_json,
    a.metadata_json, a.ai_analysis_json, a.views, a.likes, a.dislikes, a.shares,
    a.average_rating, a.total_ratings, a.is_active, a.is_featured,
    a.created_at, a.scraped_at
"""


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _placeholders(values: list) -> str:
    return ", ".join("?" for _ in values)


def _storage_op(func):
    """Surface sqlite failures as StorageError.

    Calls are serialized on the connection lock so worker threads can share
    one connection.
    """

    @functools.wraps(func)
    def wrapper(self, *args, **kwargs):
        try:
            with self._lock:
                return func(self, *args, **kwargs)
        except sqlite3.Error as e:
            raise StorageError(f"{func.__name__} failed: {e}") from e

    return wrapper


class Database:
    """SQLite store for articles, users and their engagement."""

    def __init__(self, db_path: str | None = None):
        if db_path is None:
            db_path = os.getenv("NEWS_PULSE_DB")
        if db_path is None:
            db_dir = Path.home() / ".news-pulse"
            db_dir.mkdir(parents=True, exist_ok=True)
            db_path = str(db_dir / "news_pulse.db")

        self.db_path = db_path
        self._lock = threading.RLock()
        self._init_db()

    @_storage_op
    def _init_db(self):
        """Initialize database tables if they don't exist."""
        self.conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self.conn.execute("PRAGMA foreign_keys = ON")

        self.conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS articles (
                id TEXT PRIMARY KEY,
                title TEXT NOT NULL,
                content TEXT NOT NULL DEFAULT '',
                summary TEXT NOT NULL DEFAULT '',
                url TEXT NOT NULL UNIQUE,
                source_json TEXT NOT NULL DEFAULT '{}',
                source_name TEXT NOT NULL DEFAULT '',
                category TEXT NOT NULL,
                tags_json TEXT NOT NULL DEFAULT '[]',
                metadata_json TEXT NOT NULL DEFAULT '{}',
                ai_analysis_json TEXT NOT NULL DEFAULT '{}',
                views INTEGER NOT NULL DEFAULT 0 CHECK (views >= 0),
                likes INTEGER NOT NULL DEFAULT 0 CHECK (likes >= 0),
                dislikes INTEGER NOT NULL DEFAULT 0 CHECK (dislikes >= 0),
                shares INTEGER NOT NULL DEFAULT 0 CHECK (shares >= 0),
                average_rating REAL NOT NULL DEFAULT 0
                    CHECK (average_rating BETWEEN 0 AND 5),
                total_ratings INTEGER NOT NULL DEFAULT 0 CHECK (total_ratings >= 0),
                is_active INTEGER NOT NULL DEFAULT 1,
                is_featured INTEGER NOT NULL DEFAULT 0,
                created_at TEXT NOT NULL,
                scraped_at TEXT NOT NULL
            );
            CREATE INDEX IF NOT EXISTS idx_articles_category
                ON articles (category, created_at DESC);
            CREATE INDEX IF NOT EXISTS idx_articles_created ON articles (created_at DESC);
            CREATE INDEX IF NOT EXISTS idx_articles_views ON articles (views DESC);
            CREATE INDEX IF NOT EXISTS idx_articles_source ON articles (source_name);

            CREATE TABLE IF NOT EXISTS article_tags (
                article_id TEXT NOT NULL REFERENCES articles (id) ON DELETE CASCADE,
                tag TEXT NOT NULL,
                PRIMARY KEY (article_id, tag)
            );
            CREATE INDEX IF NOT EXISTS idx_article_tags_tag ON article_tags (tag);

            CREATE TABLE IF NOT EXISTS article_topics (
                article_id TEXT NOT NULL REFERENCES articles (id) ON DELETE CASCADE,
                topic TEXT NOT NULL,
                PRIMARY KEY (article_id, topic)
            );

            CREATE TABLE IF NOT EXISTS users (
                id TEXT PRIMARY KEY,
                username TEXT NOT NULL UNIQUE,
                email TEXT NOT NULL UNIQUE,
                preferences_json TEXT NOT NULL DEFAULT '{}',
                is_active INTEGER NOT NULL DEFAULT 1,
                created_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS liked_articles (
                user_id TEXT NOT NULL REFERENCES users (id) ON DELETE CASCADE,
                article_id TEXT NOT NULL,
                PRIMARY KEY (user_id, article_id)
            );
            CREATE INDEX IF NOT EXISTS idx_liked_article ON liked_articles (article_id);

            CREATE TABLE IF NOT EXISTS disliked_articles (
                user_id TEXT NOT NULL REFERENCES users (id) ON DELETE CASCADE,
                article_id TEXT NOT NULL,
                PRIMARY KEY (user_id, article_id)
            );

            CREATE TABLE IF NOT EXISTS read_history (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id TEXT NOT NULL REFERENCES users (id) ON DELETE CASCADE,
                article_id TEXT NOT NULL,
                read_at TEXT NOT NULL,
                time_spent INTEGER,
                rating INTEGER CHECK (rating BETWEEN 1 AND 5)
            );

            CREATE TABLE IF NOT EXISTS search_history (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id TEXT NOT NULL REFERENCES users (id) ON DELETE CASCADE,
                query TEXT NOT NULL,
                searched_at TEXT NOT NULL
            );
            """
        )
        self.conn.commit()

    def close(self):
        with self._lock:
            self.conn.close()

    # --- Articles ---

    def _row_to_article(self, row: sqlite3.Row, include_content: bool = False) -> Article:
        return Article(
            id=row["id"],
            title=row["title"],
            content=row["content"] if include_content else None,
            summary=row["summary"],
            url=row["url"],
            source=Source(**json.loads(row["source_json"])),
            category=row["category"],
            tags=json.loads(row["tags_json"]),
            metadata=ArticleMetadata(**json.loads(row["metadata_json"])),
            ai_analysis=AIAnalysis(**json.loads(row["ai_analysis_json"])),
            engagement=Engagement(
                views=row["views"],
                likes=row["likes"],
                dislikes=row["dislikes"],
                shares=row["shares"],
                average_rating=row["average_rating"],
                total_ratings=row["total_ratings"],
            ),
            is_active=bool(row["is_active"]),
            is_featured=bool(row["is_featured"]),
            created_at=row["created_at"],
            scraped_at=row["scraped_at"],
        )

    @_storage_op
    def create_article(self, article: Article) -> Article:
        """Insert an article and return it with timestamps filled in."""
        created_at = article.created_at or _now()
        stored = article.model_copy(
            update={
                "created_at": created_at,
                "scraped_at": article.scraped_at or created_at,
                "content": article.content or "",
            }
        )
        tags = list(dict.fromkeys(stored.tags))
        if self.conn.execute("SELECT 1 FROM articles WHERE url = ?", (stored.url,)).fetchone():
            raise ValueError(f"Article already exists: {stored.url}")
        with self.conn:
            self.conn.execute(
                """
                INSERT INTO articles (
                    id, title, content, summary, url, source_json, source_name, category,
                    tags_json, metadata_json, ai_analysis_json, views, likes, dislikes,
                    shares, average_rating, total_ratings, is_active, is_featured,
                    created_at, scraped_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    stored.id,
                    stored.title,
                    stored.content,
                    stored.summary,
                    stored.url,
                    stored.source.model_dump_json(),
                    stored.source.name,
                    stored.category,
                    json.dumps(tags),
                    stored.metadata.model_dump_json(),
                    stored.ai_analysis.model_dump_json(),
                    stored.engagement.views,
                    stored.engagement.likes,
                    stored.engagement.dislikes,
                    stored.engagement.shares,
                    stored.engagement.average_rating,
                    stored.engagement.total_ratings,
                    int(stored.is_active),
                    int(stored.is_featured),
                    stored.created_at,
                    stored.scraped_at,
                ),
            )
            self.conn.executemany(
                "INSERT OR IGNORE INTO article_tags (article_id, tag) VALUES (?, ?)",
                [(stored.id, tag) for tag in tags],
            )
            self.conn.executemany(
                "INSERT OR IGNORE INTO article_topics (article_id, topic) VALUES (?, ?)",
                [(stored.id, topic) for topic in stored.ai_analysis.topics],
            )
        return stored.model_copy(update={"tags": tags})

    @_storage_op
    def get_article(self, article_id: str, include_content: bool = True) -> Article | None:
        """Fetch one article regardless of its active flag."""
        columns = _ARTICLE_COLUMNS + (", a.content" if include_content else "")
        row = self.conn.execute(
            f"SELECT {columns} FROM articles a WHERE a.id = ?", (article_id,)
        ).fetchone()
        return self._row_to_article(row, include_content) if row else None

    @_storage_op
    def get_articles(self, article_ids: Iterable[str]) -> list[Article]:
        """Fetch articles (active or not, content omitted) in the order given."""
        ids = list(dict.fromkeys(article_ids))
        if not ids:
            return []
        rows = self.conn.execute(
            f"SELECT {_ARTICLE_COLUMNS} FROM articles a WHERE a.id IN ({_placeholders(ids)})",
            ids,
        ).fetchall()
        by_id = {row["id"]: self._row_to_article(row) for row in rows}
        return [by_id[article_id] for article_id in ids if article_id in by_id]

    @_storage_op
    def deactivate_article(self, article_id: str) -> bool:
        """Soft-delete an article. Returns False if it does not exist."""
        cursor = self.conn.execute("UPDATE articles SET is_active = 0 WHERE id = ?", (article_id,))
        self.conn.commit()
        return cursor.rowcount > 0

    def _active_filter(
        self,
        ids: list[str] | None = None,
        exclude_ids: list[str] | None = None,
        categories: list[str] | None = None,
        tags: list[str] | None = None,
        sources: list[str] | None = None,
        search: str | None = None,
    ) -> tuple[str, list]:
        clauses = ["a.is_active = 1"]
        params: list = []

        if ids is not None:
            if ids:
                clauses.append(f"a.id IN ({_placeholders(ids)})")
                params.extend(ids)
            else:
                clauses.append("0")
        if exclude_ids:
            clauses.append(f"a.id NOT IN ({_placeholders(exclude_ids)})")
            params.extend(exclude_ids)
        if sources:
            clauses.append(f"a.source_name IN ({_placeholders(sources)})")
            params.extend(sources)

        # Category and tag matches widen each other
        matchers = []
        if categories:
            matchers.append(f"a.category IN ({_placeholders(categories)})")
            params.extend(categories)
        if tags:
            matchers.append(
                "EXISTS (SELECT 1 FROM article_tags t WHERE t.article_id = a.id "
                f"AND t.tag IN ({_placeholders(tags)}))"
            )
            params.extend(tags)
        if matchers:
            clauses.append("(" + " OR ".join(matchers) + ")")

        if search:
            escaped = search.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
            pattern = f"%{escaped}%"
            clauses.append(
                """(
                    a.title LIKE ? ESCAPE '\\'
                    OR a.summary LIKE ? ESCAPE '\\'
                    OR a.content LIKE ? ESCAPE '\\'
                    OR EXISTS (SELECT 1 FROM article_tags t
                               WHERE t.article_id = a.id AND t.tag LIKE ? ESCAPE '\\')
                    OR EXISTS (SELECT 1 FROM article_topics p
                               WHERE p.article_id = a.id AND p.topic LIKE ? ESCAPE '\\')
                )"""
            )
            params.extend([pattern] * 5)

        return " AND ".join(clauses), params

    @_storage_op
    def find_active_articles(
        self,
        *,
        ids: list[str] | None = None,
        exclude_ids: list[str] | None = None,
        categories: list[str] | None = None,
        tags: list[str] | None = None,
        sources: list[str] | None = None,
        search: str | None = None,
        sort: str = "latest",
        limit: int | None = None,
        skip: int = 0,
        include_content: bool = False,
    ) -> list[Article]:
        """Query active articles.

        Categories and tags combine with OR (an article matches if either
        does); every other filter narrows the result.
        """
        if sort not in ARTICLE_SORTS:
            raise ValueError(f"Unknown sort {sort!r}, expected one of {sorted(ARTICLE_SORTS)}")
        where, params = self._active_filter(ids, exclude_ids, categories, tags, sources, search)
        columns = _ARTICLE_COLUMNS + (", a.content" if include_content else "")
        rows = self.conn.execute(
            f"""
            SELECT {columns} FROM articles a
            WHERE {where}
            ORDER BY {ARTICLE_SORTS[sort]}
            LIMIT ? OFFSET ?
            """,
            (*params, -1 if limit is None else limit, skip),
        ).fetchall()
        return [self._row_to_article(row, include_content) for row in rows]

    @_storage_op
    def count_active_articles(
        self,
        *,
        ids: list[str] | None = None,
        exclude_ids: list[str] | None = None,
        categories: list[str] | None = None,
        tags: list[str] | None = None,
        sources: list[str] | None = None,
        search: str | None = None,
    ) -> int:
        where, params = self._active_filter(ids, exclude_ids, categories, tags, sources, search)
        row = self.conn.execute(f"SELECT COUNT(*) FROM articles a WHERE {where}", params).fetchone()
        return row[0]

    # --- Engagement ---

    @_storage_op
    def increment_engagement(self, article_id: str, counter: str, amount: int = 1) -> bool:
        """Atomically bump an engagement counter. Returns False if the article is missing."""
        if counter not in ENGAGEMENT_COUNTERS:
            raise ValueError(f"Unknown engagement counter {counter!r}")
        if amount < 0:
            raise ValueError("Engagement counters never decrease")
        cursor = self.conn.execute(
            f"UPDATE articles SET {counter} = {counter} + ? WHERE id = ?",
            (amount, article_id),
        )
        self.conn.commit()
        return cursor.rowcount > 0

    @_storage_op
    def get_engagement(self, article_id: str) -> Engagement | None:
        row = self.conn.execute(
            """SELECT views, likes, dislikes, shares, average_rating, total_ratings
               FROM articles WHERE id = ?""",
            (article_id,),
        ).fetchone()
        return Engagement(**dict(row)) if row else None

    @_storage_op
    def apply_reaction(
        self, user_id: str, article_id: str, reaction: Literal["like", "dislike"]
    ) -> bool:
        """Count a like/dislike and move the article into the matching user set.

        The counter bump, the set insert and the removal from the opposite
        set commit together. Returns False if the article is missing.
        """
        counter, add_to, remove_from = REACTIONS[reaction]
        with self.conn:
            cursor = self.conn.execute(
                f"UPDATE articles SET {counter} = {counter} + 1 WHERE id = ?", (article_id,)
            )
            if cursor.rowcount == 0:
                return False
            self.conn.execute(
                f"INSERT OR IGNORE INTO {add_to} (user_id, article_id) VALUES (?, ?)",
                (user_id, article_id),
            )
            self.conn.execute(
                f"DELETE FROM {remove_from} WHERE user_id = ? AND article_id = ?",
                (user_id, article_id),
            )
        return True

    @_storage_op
    def apply_rating(self, user_id: str, article_id: str, rating: int) -> bool:
        """Fold a rating into the running mean and log it in the read history."""
        with self.conn:
            # Right-hand sides see the pre-update row, so this is one atomic step
            cursor = self.conn.execute(
                """
                UPDATE articles
                SET average_rating = (average_rating * total_ratings + ?) / (total_ratings + 1),
                    total_ratings = total_ratings + 1
                WHERE id = ?
                """,
                (float(rating), article_id),
            )
            if cursor.rowcount == 0:
                return False
            self.conn.execute(
                """INSERT INTO read_history (user_id, article_id, read_at, rating)
                   VALUES (?, ?, ?, ?)""",
                (user_id, article_id, _now(), rating),
            )
        return True

    # --- Users ---

    @_storage_op
    def create_user(self, user: User) -> User:
        taken = self.conn.execute(
            "SELECT 1 FROM users WHERE username = ? OR email = ?",
            (user.username, user.email.lower()),
        ).fetchone()
        if taken:
            raise ValueError("User already exists")
        stored = user.model_copy(update={"created_at": user.created_at or _now()})
        self.conn.execute(
            """INSERT INTO users (id, username, email, preferences_json, is_active, created_at)
               VALUES (?, ?, ?, ?, ?, ?)""",
            (
                stored.id,
                stored.username,
                stored.email.lower(),
                stored.preferences.model_dump_json(),
                int(stored.is_active),
                stored.created_at,
            ),
        )
        self.conn.commit()
        return stored.model_copy(update={"email": stored.email.lower(), "behavior": UserBehavior()})

    @_storage_op
    def get_user(self, user_id: str) -> User | None:
        """Load a user together with their full behavior record."""
        row = self.conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
        if not row:
            return None

        behavior = UserBehavior(
            liked_article_ids=self._user_set(user_id, "liked_articles"),
            disliked_article_ids=self._user_set(user_id, "disliked_articles"),
            read_history=[
                ReadEntry(**dict(r))
                for r in self.conn.execute(
                    """SELECT article_id, read_at, time_spent, rating FROM read_history
                       WHERE user_id = ? ORDER BY id""",
                    (user_id,),
                ).fetchall()
            ],
            search_history=[
                SearchEntry(query=r["query"], timestamp=r["searched_at"])
                for r in self.conn.execute(
                    "SELECT query, searched_at FROM search_history WHERE user_id = ? ORDER BY id",
                    (user_id,),
                ).fetchall()
            ],
        )
        return User(
            id=row["id"],
            username=row["username"],
            email=row["email"],
            preferences=Preferences(**json.loads(row["preferences_json"])),
            behavior=behavior,
            is_active=bool(row["is_active"]),
            created_at=row["created_at"],
        )

    def _user_set(self, user_id: str, table: str) -> list[str]:
        rows = self.conn.execute(
            f"SELECT article_id FROM {table} WHERE user_id = ? ORDER BY rowid", (user_id,)
        ).fetchall()
        return [r["article_id"] for r in rows]

    @_storage_op
    def user_exists(self, user_id: str) -> bool:
        row = self.conn.execute("SELECT 1 FROM users WHERE id = ?", (user_id,)).fetchone()
        return row is not None

    @_storage_op
    def get_liked_article_ids(self, user_id: str) -> list[str]:
        return self._user_set(user_id, "liked_articles")

    @_storage_op
    def get_disliked_article_ids(self, user_id: str) -> list[str]:
        return self._user_set(user_id, "disliked_articles")

    @_storage_op
    def find_neighbor_likes(self, user_id: str) -> dict[str, list[str]]:
        """Return the full liked sets of every other user sharing a like with user_id."""
        rows = self.conn.execute(
            """
            SELECT n.user_id, n.article_id FROM liked_articles n
            WHERE n.user_id IN (
                SELECT DISTINCT other.user_id
                FROM liked_articles other
                JOIN liked_articles mine ON mine.article_id = other.article_id
                WHERE mine.user_id = ? AND other.user_id != ?
            )
            ORDER BY n.user_id, n.rowid
            """,
            (user_id, user_id),
        ).fetchall()
        neighbors: dict[str, list[str]] = {}
        for row in rows:
            neighbors.setdefault(row["user_id"], []).append(row["article_id"])
        return neighbors

    @_storage_op
    def update_preferences(self, user_id: str, preferences: Preferences) -> bool:
        cursor = self.conn.execute(
            "UPDATE users SET preferences_json = ? WHERE id = ?",
            (preferences.model_dump_json(), user_id),
        )
        self.conn.commit()
        return cursor.rowcount > 0

    @_storage_op
    def append_read(
        self,
        user_id: str,
        article_id: str,
        time_spent: int | None = None,
        rating: int | None = None,
    ) -> None:
        self.conn.execute(
            """INSERT INTO read_history (user_id, article_id, read_at, time_spent, rating)
               VALUES (?, ?, ?, ?, ?)""",
            (user_id, article_id, _now(), time_spent, rating),
        )
        self.conn.commit()

    @_storage_op
    def append_search(self, user_id: str, query: str) -> None:
        self.conn.execute(
            "INSERT INTO search_history (user_id, query, searched_at) VALUES (?, ?, ?)",
            (user_id, query, _now()),
        )
        self.conn.commit()

    @_storage_op
    def get_read_history(self, user_id: str, limit: int = 20, skip: int = 0) -> list[ReadEntry]:
        """Read history, most recent first."""
        rows = self.conn.execute(
            """SELECT article_id, read_at, time_spent, rating FROM read_history
               WHERE user_id = ? ORDER BY id DESC LIMIT ? OFFSET ?""",
            (user_id, limit, skip),
        ).fetchall()
        return [ReadEntry(**dict(row)) for row in rows]

    @_storage_op
    def count_read_history(self, user_id: str) -> int:
        row = self.conn.execute(
            "SELECT COUNT(*) FROM read_history WHERE user_id = ?", (user_id,)
        ).fetchone()
        return row[0]

    @_storage_op
    def clear_behavior(self, user_id: str) -> None:
        """Empty liked, disliked, read and search history in one transaction."""
        with self.conn:
            for table in ("liked_articles", "disliked_articles", "read_history", "search_history"):
                self.conn.execute(f"DELETE FROM {table} WHERE user_id = ?", (user_id,))
