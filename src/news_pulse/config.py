# src/news_pulse/config.py
"""
Recommendation System Configuration

LIMITS:
These bound how much of the article corpus a single request reads. Every
recommendation re-reads the store, so the caps keep requests cheap.

- DEFAULT / MIXED: result counts when the caller gives none
- MAX_REQUEST: largest result count a caller may ask for
- AI_CANDIDATES: articles offered to the AI ranker per request
- AI_PROMPT_TITLES: candidates spelled out in the prompt text
- AI_FALLBACK: ids returned by the deterministic fallback ranking
- TOP_CATEGORIES / TOP_TAGS: preference signals kept for content matching
"""

import os


class RecommendationLimits:
    DEFAULT = 10
    MIXED = 15
    MAX_REQUEST = 50

    AI_CANDIDATES = 50
    AI_PROMPT_TITLES = 10
    AI_FALLBACK = 10

    TOP_CATEGORIES = 3
    TOP_TAGS = 5

    FEED_STREAM = 50

    @classmethod
    def validate(cls):
        """Ensure limits are positive and the prompt fits in the candidate pool"""
        for name in (
            "DEFAULT",
            "MIXED",
            "MAX_REQUEST",
            "AI_CANDIDATES",
            "AI_PROMPT_TITLES",
            "AI_FALLBACK",
            "TOP_CATEGORIES",
            "TOP_TAGS",
            "FEED_STREAM",
        ):
            value = getattr(cls, name)
            if not isinstance(value, int) or value <= 0:
                raise AssertionError(f"{name} must be a positive integer, got {value!r}")
        if max(cls.DEFAULT, cls.MIXED) > cls.MAX_REQUEST:
            raise AssertionError(f"Default limits cannot exceed MAX_REQUEST ({cls.MAX_REQUEST})")
        if cls.AI_PROMPT_TITLES > cls.AI_CANDIDATES:
            raise AssertionError(
                f"AI_PROMPT_TITLES ({cls.AI_PROMPT_TITLES}) cannot exceed "
                f"AI_CANDIDATES ({cls.AI_CANDIDATES})"
            )
        return True


# Validate on import
RecommendationLimits.validate()


ARTICLE_CATEGORIES = (
    "technology",
    "business",
    "politics",
    "sports",
    "entertainment",
    "science",
    "health",
    "world",
)

# Strategy order doubles as the dedupe priority when results are merged
HYBRID_STRATEGIES = ("collaborative", "content_based")
MIXED_STRATEGIES = ("collaborative", "content_based", "ai", "trending")

# AI ranking service
DEFAULT_AI_MODEL = "claude-haiku-4-5-20251001"
DEFAULT_AI_TIMEOUT = 15.0  # seconds
AI_MAX_TOKENS = 256


def ai_model() -> str:
    return os.getenv("NEWS_PULSE_AI_MODEL", DEFAULT_AI_MODEL)


def ai_timeout() -> float:
    raw = os.getenv("NEWS_PULSE_AI_TIMEOUT")
    if not raw:
        return DEFAULT_AI_TIMEOUT
    try:
        timeout = float(raw)
    except ValueError:
        raise ValueError(f"NEWS_PULSE_AI_TIMEOUT must be a number, got {raw!r}")
    if timeout <= 0:
        raise ValueError(f"NEWS_PULSE_AI_TIMEOUT must be positive, got {timeout}")
    return timeout


def cors_origins() -> list[str]:
    raw = os.getenv("NEWS_PULSE_CORS_ORIGINS", "http://localhost:3000")
    return [origin.strip() for origin in raw.split(",") if origin.strip()]
