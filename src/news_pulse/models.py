from __future__ import annotations

import uuid
from typing import Literal

from pydantic import BaseModel, Field

Category = Literal[
    "technology",
    "business",
    "politics",
    "sports",
    "entertainment",
    "science",
    "health",
    "world",
]


def new_id() -> str:
    return uuid.uuid4().hex


class Source(BaseModel):
    name: str
    domain: str | None = None
    logo: str | None = None


class ArticleMetadata(BaseModel):
    author: str | None = None
    published_at: str | None = None
    reading_time: int | None = None  # minutes
    word_count: int | None = None
    sentiment: Literal["positive", "negative", "neutral"] = "neutral"
    keywords: list[str] = Field(default_factory=list)


class Sentiment(BaseModel):
    score: float = 0.0
    label: str = "neutral"


class Entity(BaseModel):
    name: str
    type: str = ""
    relevance: float = 0.0


class AIAnalysis(BaseModel):
    summary: str = ""
    key_points: list[str] = Field(default_factory=list)
    sentiment: Sentiment | None = None
    topics: list[str] = Field(default_factory=list)
    entities: list[Entity] = Field(default_factory=list)


class Engagement(BaseModel):
    views: int = Field(default=0, ge=0)
    likes: int = Field(default=0, ge=0)
    dislikes: int = Field(default=0, ge=0)
    shares: int = Field(default=0, ge=0)
    average_rating: float = Field(default=0.0, ge=0, le=5)
    total_ratings: int = Field(default=0, ge=0)


class Article(BaseModel):
    id: str = Field(default_factory=new_id)
    title: str
    content: str | None = None  # None when projected out of list queries
    summary: str = ""
    url: str
    source: Source
    category: Category
    tags: list[str] = Field(default_factory=list)
    metadata: ArticleMetadata = Field(default_factory=ArticleMetadata)
    ai_analysis: AIAnalysis = Field(default_factory=AIAnalysis)
    engagement: Engagement = Field(default_factory=Engagement)
    is_active: bool = True
    is_featured: bool = False
    created_at: str = ""
    scraped_at: str = ""


class ReadEntry(BaseModel):
    article_id: str
    read_at: str = ""
    time_spent: int | None = Field(default=None, ge=0)  # seconds
    rating: int | None = Field(default=None, ge=1, le=5)


class SearchEntry(BaseModel):
    query: str
    timestamp: str = ""


class UserBehavior(BaseModel):
    liked_article_ids: list[str] = Field(default_factory=list)
    disliked_article_ids: list[str] = Field(default_factory=list)
    read_history: list[ReadEntry] = Field(default_factory=list)
    search_history: list[SearchEntry] = Field(default_factory=list)


class Preferences(BaseModel):
    categories: list[Category] = Field(default_factory=list)
    sources: list[str] = Field(default_factory=list)
    language: str = "en"
    reading_time: Literal["quick", "detailed"] = "quick"


class User(BaseModel):
    id: str = Field(default_factory=new_id)
    username: str
    email: str
    preferences: Preferences = Field(default_factory=Preferences)
    behavior: UserBehavior = Field(default_factory=UserBehavior)
    is_active: bool = True
    created_at: str = ""


class BehaviorSnapshot(BaseModel):
    """What the AI ranker gets to know about a reader."""

    liked_categories: list[str] = Field(default_factory=list)  # one entry per liked article
    disliked_categories: list[str] = Field(default_factory=list)
    search_queries: list[str] = Field(default_factory=list)


class RecommendationResult(BaseModel):
    recommendations: list[Article] = Field(default_factory=list)
    count: int = 0
    algorithm: str
    breakdown: dict[str, int] | None = None


class UserStats(BaseModel):
    total_articles_read: int = 0
    total_likes: int = 0
    total_dislikes: int = 0
    total_searches: int = 0
    average_reading_time: int = 0  # seconds, rounded
    category_stats: dict[str, int] = Field(default_factory=dict)
    recent_activity: list[ReadEntry] = Field(default_factory=list)
