"""AI-delegated article ranking using Claude, with a deterministic fallback."""

import asyncio
import json
import logging
import os
import re
from typing import Literal, Sequence

import anthropic
from pydantic import BaseModel, StrictStr, TypeAdapter, ValidationError

from .config import AI_MAX_TOKENS, RecommendationLimits, ai_model, ai_timeout
from .models import Article, BehaviorSnapshot
from .scoring import fallback_ranking

logger = logging.getLogger(__name__)

RANK_PROMPT = """\
You are a news recommendation engine. Based on the reader's behavior, pick the articles \
from the candidate list that they are most likely to want to read.

<reader_behavior>
Liked categories: {liked}
Disliked categories: {disliked}
Search history: {searches}
</reader_behavior>

<candidate_articles>
{articles}
</candidate_articles>

Consider:
- Category preferences
- Search history patterns
- Avoid disliked categories
- A mix of familiar and new topics

Return ONLY a JSON array of article id strings ordered by relevance, nothing else.

Example: ["4f1c2a9e", "b83d0c71", "e2a9f5d4"]"""

_ID_LIST = TypeAdapter(list[StrictStr])
_ARRAY_RE = re.compile(r"\[.*\]", re.DOTALL)


class RankingOk(BaseModel):
    kind: Literal["ok"] = "ok"
    ids: list[str]


class RankingParseError(BaseModel):
    kind: Literal["parse_error"] = "parse_error"
    reason: str


class Ranking(BaseModel):
    """Article ids in ranked order and where the order came from."""

    article_ids: list[str]
    source: Literal["ai", "fallback"]


def _strip_fences(text: str) -> str:
    """Remove markdown code fences around Claude's response."""
    text = text.strip()
    if text.startswith("```"):
        text = text.split("\n", 1)[1] if "\n" in text else text[3:]
        text = text.rsplit("```", 1)[0]
    return text.strip()


def parse_ranking(text: str) -> RankingOk | RankingParseError:
    """Turn raw model output into a list of ids, or say why it can't be."""
    body = _strip_fences(text or "")
    if not body:
        return RankingParseError(reason="empty response")

    try:
        payload = json.loads(body)
    except json.JSONDecodeError:
        # Models sometimes wrap the array in prose
        match = _ARRAY_RE.search(body)
        if not match:
            return RankingParseError(reason="no JSON array in response")
        try:
            payload = json.loads(match.group(0))
        except json.JSONDecodeError as e:
            return RankingParseError(reason=f"invalid JSON: {e.msg}")

    try:
        ids = _ID_LIST.validate_python(payload)
    except ValidationError:
        return RankingParseError(reason="expected a JSON array of id strings")

    return RankingOk(ids=list(dict.fromkeys(i.strip() for i in ids if i.strip())))


def build_ranking_prompt(snapshot: BehaviorSnapshot, candidates: Sequence[Article]) -> str:
    liked = ", ".join(dict.fromkeys(snapshot.liked_categories)) or "none yet"
    disliked = ", ".join(dict.fromkeys(snapshot.disliked_categories)) or "none"
    searches = ", ".join(snapshot.search_queries) or "none"
    articles = "\n".join(
        f'- id: {a.id} | "{a.title}" ({a.category})'
        for a in candidates[: RecommendationLimits.AI_PROMPT_TITLES]
    )
    return RANK_PROMPT.format(liked=liked, disliked=disliked, searches=searches, articles=articles)


class AIService:
    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        timeout: float | None = None,
    ):
        self.api_key = api_key or os.getenv("ANTHROPIC_API_KEY", "")
        self.model = model or ai_model()
        self.timeout = timeout or ai_timeout()
        self.client = (
            anthropic.AsyncAnthropic(api_key=self.api_key, timeout=self.timeout, max_retries=0)
            if self.api_key
            else None
        )

    @property
    def configured(self) -> bool:
        return self.client is not None

    async def _call_claude(self, prompt: str) -> str:
        response = await self.client.messages.create(
            model=self.model,
            max_tokens=AI_MAX_TOKENS,
            temperature=0.1,
            system="You are a recommendation engine. Return only a JSON array of article IDs.",
            messages=[{"role": "user", "content": prompt}],
        )
        return "".join(block.text for block in response.content if block.type == "text")

    async def rank_articles(
        self, snapshot: BehaviorSnapshot, candidates: Sequence[Article]
    ) -> Ranking:
        """Rank candidates for a reader. Never raises on upstream trouble."""
        candidates = list(candidates[: RecommendationLimits.AI_CANDIDATES])
        fallback = Ranking(article_ids=fallback_ranking(snapshot, candidates), source="fallback")

        if not self.configured:
            logger.info("AI service not configured, using fallback ranking")
            return fallback

        prompt = build_ranking_prompt(snapshot, candidates)
        try:
            text = await asyncio.wait_for(self._call_claude(prompt), timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.warning(f"AI ranking timed out after {self.timeout}s, using fallback ranking")
            return fallback
        except Exception as e:
            logger.warning(f"AI ranking unavailable ({type(e).__name__}: {e}), using fallback ranking")
            return fallback

        parsed = parse_ranking(text)
        if isinstance(parsed, RankingParseError):
            logger.warning(f"Could not parse AI ranking ({parsed.reason}), using fallback ranking")
            return fallback

        return Ranking(article_ids=parsed.ids, source="ai")
