import itertools

import pytest

from news_pulse.db import Database
from news_pulse.models import AIAnalysis, Article, Source, User


@pytest.fixture
def temp_db(tmp_path):
    """Create a temporary database for testing."""
    db = Database(str(tmp_path / "test.db"))
    yield db
    db.close()


@pytest.fixture
def make_article(temp_db):
    """Factory storing articles; later calls get later created_at stamps."""
    counter = itertools.count(1)

    def _make(id=None, category="technology", tags=(), is_active=True, topics=(), **fields):
        n = next(counter)
        article = Article(
            id=id or f"art{n:03d}",
            title=fields.pop("title", f"Article {n}"),
            content=fields.pop("content", f"Full text of article {n}."),
            summary=fields.pop("summary", f"Summary {n}"),
            url=fields.pop("url", f"https://news.example.com/{id or n}"),
            source=fields.pop("source", Source(name="Example Wire", domain="example.com")),
            category=category,
            tags=list(tags),
            ai_analysis=AIAnalysis(topics=list(topics)),
            is_active=is_active,
            created_at=fields.pop("created_at", f"2025-01-01T{n // 3600:02d}:{n // 60 % 60:02d}:{n % 60:02d}+00:00"),
            **fields,
        )
        return temp_db.create_article(article)

    return _make


@pytest.fixture
def make_user(temp_db):
    """Factory storing users whose id equals their username."""
    counter = itertools.count(1)

    def _make(username=None, **fields):
        name = username or f"user{next(counter)}"
        return temp_db.create_user(User(id=name, username=name, email=f"{name}@example.com", **fields))

    return _make
