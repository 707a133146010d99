"""News Pulse REST API: FastAPI wrapper around the store, engagement and recommenders."""

import json
import logging
import math
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Literal

from dotenv import load_dotenv

load_dotenv(Path(__file__).resolve().parents[2] / ".env")

from fastapi import Depends, FastAPI, Header, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .ai_service import AIService
from .config import ARTICLE_CATEGORIES, RecommendationLimits, cors_origins
from .db import Database
from .engagement import EngagementService
from .errors import ArticleNotFoundError, NewsPulseError, NotFoundError, StorageError
from .feed_events import ConnectionManager, Refresher, stream_latest_articles
from .models import Article, RecommendationResult, User
from .recommender import Recommender

logger = logging.getLogger(__name__)

MAX_LIMIT = RecommendationLimits.MAX_REQUEST

db: Database
ai_service: AIService
recommender: Recommender
engagement: EngagementService
feed_refresher: Refresher | None = None
connections = ConnectionManager()


def set_feed_refresher(refresher: Refresher | None) -> None:
    """Register the coroutine `fetch_news` awaits to pull fresh articles.

    Ingestion lives outside this service; until it registers a refresher,
    `fetch_news` only sends the cached snapshot.
    """
    global feed_refresher
    feed_refresher = refresher


@asynccontextmanager
async def lifespan(app: FastAPI):
    global db, ai_service, recommender, engagement
    db = Database()
    ai_service = AIService()
    recommender = Recommender(db, ai_service)
    engagement = EngagementService(db)
    if not ai_service.configured:
        logger.warning("ANTHROPIC_API_KEY not set, AI recommendations will use the fallback ranking")
    yield
    db.close()


app = FastAPI(title="News Pulse", version="0.1.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins(),
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError):
    return JSONResponse(status_code=404, content={"error": str(exc)})


@app.exception_handler(StorageError)
async def storage_error_handler(request: Request, exc: StorageError):
    logger.error(f"Storage error on {request.url.path}: {exc}")
    return JSONResponse(status_code=503, content={"error": "Storage unavailable"})


@app.exception_handler(ValueError)
async def value_error_handler(request: Request, exc: ValueError):
    return JSONResponse(status_code=400, content={"error": str(exc)})


async def current_user_id(x_user_id: str = Header(...)) -> str:
    return x_user_id


def _pagination(page: int, limit: int, total: int, returned: int) -> dict:
    skip = (page - 1) * limit
    return {
        "current_page": page,
        "total_pages": math.ceil(total / limit),
        "total_items": total,
        "has_next": skip + returned < total,
        "has_prev": page > 1,
    }


def _check_category(category: str) -> None:
    if category not in ARTICLE_CATEGORIES:
        raise ValueError(f"Unknown category: {category}")


# --- Articles ---


@app.get("/api/news")
async def list_articles(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    category: str | None = None,
    search: str | None = None,
    sort: Literal["latest", "trending", "popular"] = "latest",
):
    categories = None
    if category:
        _check_category(category)
        categories = [category]
    skip = (page - 1) * limit
    articles = db.find_active_articles(
        categories=categories, search=search, sort=sort, limit=limit, skip=skip
    )
    total = db.count_active_articles(categories=categories, search=search)
    return {
        "articles": [a.model_dump() for a in articles],
        "pagination": _pagination(page, limit, total, len(articles)),
    }


@app.post("/api/news", status_code=201)
async def create_article(article: Article):
    stored = db.create_article(article)
    return stored.model_dump()


@app.get("/api/news/search")
async def search_articles(
    q: str = Query(min_length=1),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    x_user_id: str | None = Header(default=None),
):
    skip = (page - 1) * limit
    articles = db.find_active_articles(search=q, sort="latest", limit=limit, skip=skip)
    total = db.count_active_articles(search=q)
    if x_user_id:
        engagement.record_search(x_user_id, q)
    return {
        "articles": [a.model_dump() for a in articles],
        "query": q,
        "pagination": _pagination(page, limit, total, len(articles)),
    }


@app.get("/api/news/trending")
async def trending_articles(limit: int = Query(default=10, ge=1, le=50)):
    articles = db.find_active_articles(sort="trending", limit=limit)
    return {"articles": [a.model_dump() for a in articles]}


@app.get("/api/news/category/{category}")
async def category_articles(
    category: str,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
):
    _check_category(category)
    skip = (page - 1) * limit
    articles = db.find_active_articles(categories=[category], limit=limit, skip=skip)
    total = db.count_active_articles(categories=[category])
    return {
        "articles": [a.model_dump() for a in articles],
        "pagination": _pagination(page, limit, total, len(articles)),
    }


@app.get("/api/news/feed/personalized")
async def personalized_feed(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    user_id: str = Depends(current_user_id),
):
    preferences = engagement.get_preferences(user_id)
    categories = list(preferences.categories) or None
    sources = preferences.sources or None
    skip = (page - 1) * limit
    articles = db.find_active_articles(
        categories=categories, sources=sources, limit=limit, skip=skip
    )
    total = db.count_active_articles(categories=categories, sources=sources)
    return {
        "articles": [a.model_dump() for a in articles],
        "pagination": _pagination(page, limit, total, len(articles)),
    }


@app.get("/api/news/{article_id}")
async def get_article(article_id: str):
    article = db.get_article(article_id)
    if article is None:
        raise ArticleNotFoundError(article_id)
    engagement.record_view(article_id)
    return {"article": article.model_dump()}


# --- Engagement ---


class RatingRequest(BaseModel):
    rating: int = Field(ge=1, le=5)


class ReadRequest(BaseModel):
    time_spent: int | None = Field(default=None, ge=0)


@app.post("/api/news/{article_id}/like")
async def like_article(article_id: str, user_id: str = Depends(current_user_id)):
    engagement.record_like(user_id, article_id)
    return {"message": "Article liked successfully"}


@app.post("/api/news/{article_id}/dislike")
async def dislike_article(article_id: str, user_id: str = Depends(current_user_id)):
    engagement.record_dislike(user_id, article_id)
    return {"message": "Article disliked successfully"}


@app.post("/api/news/{article_id}/rate")
async def rate_article(
    article_id: str, req: RatingRequest, user_id: str = Depends(current_user_id)
):
    updated = engagement.record_rating(user_id, article_id, req.rating)
    return {"message": "Article rated successfully", "engagement": updated.model_dump()}


@app.post("/api/news/{article_id}/share")
async def share_article(article_id: str):
    engagement.record_share(article_id)
    return {"message": "Article shared successfully"}


@app.post("/api/news/{article_id}/read")
async def read_article(article_id: str, req: ReadRequest, user_id: str = Depends(current_user_id)):
    engagement.record_read(user_id, article_id, req.time_spent)
    return {"message": "Read recorded"}


# --- Users ---


class RegisterRequest(BaseModel):
    username: str = Field(min_length=1)
    email: str = Field(min_length=3)


@app.post("/api/users", status_code=201)
async def register_user(req: RegisterRequest):
    user = db.create_user(User(username=req.username.strip(), email=req.email.strip()))
    return {"user": user.model_dump()}


@app.get("/api/users/me")
async def get_profile(user_id: str = Depends(current_user_id)):
    return {"user": engagement.get_user(user_id).model_dump()}


@app.get("/api/users/me/preferences")
async def get_preferences(user_id: str = Depends(current_user_id)):
    return {"preferences": engagement.get_preferences(user_id).model_dump()}


@app.put("/api/users/me/preferences")
async def update_preferences(changes: dict, user_id: str = Depends(current_user_id)):
    updated = engagement.update_preferences(user_id, changes)
    return {"message": "Preferences updated successfully", "preferences": updated.model_dump()}


@app.get("/api/users/me/history")
async def get_history(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    user_id: str = Depends(current_user_id),
):
    entries, total = engagement.get_read_history(user_id, page, limit)
    return {
        "history": [e.model_dump() for e in entries],
        "pagination": _pagination(page, limit, total, len(entries)),
    }


@app.delete("/api/users/me/history")
async def clear_history(user_id: str = Depends(current_user_id)):
    engagement.clear_history(user_id)
    return {"message": "History cleared successfully"}


@app.get("/api/users/me/stats")
async def get_stats(user_id: str = Depends(current_user_id)):
    return {"stats": engagement.get_user_stats(user_id).model_dump()}


@app.get("/api/users/me/export")
async def export_data(user_id: str = Depends(current_user_id)):
    return {"data": engagement.export_user_data(user_id)}


# --- Recommendations ---


def _recommendation_response(result: RecommendationResult) -> dict:
    return result.model_dump(exclude_none=True)


@app.get("/api/recommendations/personalized")
async def ai_recommendations(
    limit: int = Query(default=RecommendationLimits.DEFAULT, ge=1, le=MAX_LIMIT),
    user_id: str = Depends(current_user_id),
):
    return _recommendation_response(await recommender.get_ai_recommendations(user_id, limit))


@app.get("/api/recommendations/collaborative")
async def collaborative_recommendations(
    limit: int = Query(default=RecommendationLimits.DEFAULT, ge=1, le=MAX_LIMIT),
    user_id: str = Depends(current_user_id),
):
    result = await recommender.get_collaborative_recommendations(user_id, limit)
    return _recommendation_response(result)


@app.get("/api/recommendations/content-based")
async def content_based_recommendations(
    limit: int = Query(default=RecommendationLimits.DEFAULT, ge=1, le=MAX_LIMIT),
    user_id: str = Depends(current_user_id),
):
    result = await recommender.get_content_based_recommendations(user_id, limit)
    return _recommendation_response(result)


@app.get("/api/recommendations/trending")
async def trending_recommendations(
    limit: int = Query(default=RecommendationLimits.DEFAULT, ge=1, le=MAX_LIMIT),
):
    return _recommendation_response(await recommender.get_trending_recommendations(limit))


@app.get("/api/recommendations/category/{category}")
async def category_recommendations(
    category: str,
    limit: int = Query(default=RecommendationLimits.DEFAULT, ge=1, le=MAX_LIMIT),
):
    _check_category(category)
    result = await recommender.get_category_recommendations(category, limit)
    return {**_recommendation_response(result), "category": category}


@app.get("/api/recommendations/hybrid")
async def hybrid_recommendations(
    limit: int = Query(default=RecommendationLimits.DEFAULT, ge=1, le=MAX_LIMIT),
    user_id: str = Depends(current_user_id),
):
    return _recommendation_response(await recommender.get_hybrid_recommendations(user_id, limit))


@app.get("/api/recommendations/mixed")
async def mixed_recommendations(
    limit: int = Query(default=RecommendationLimits.MIXED, ge=1, le=MAX_LIMIT),
    user_id: str = Depends(current_user_id),
):
    return _recommendation_response(await recommender.get_mixed_recommendations(user_id, limit))


# --- Real-time channel ---


class RecommendationsEvent(BaseModel):
    strategy: str = "hybrid"
    limit: int = Field(default=RecommendationLimits.DEFAULT, ge=1, le=MAX_LIMIT)


class ArticleEvent(BaseModel):
    article_id: str = Field(min_length=1)
    time_spent: int | None = Field(default=None, ge=0)


class SearchEvent(BaseModel):
    query: str


class PreferencesEvent(BaseModel):
    preferences: dict


async def _recommend(strategy: str, user_id: str, limit: int) -> RecommendationResult:
    if strategy == "collaborative":
        return await recommender.get_collaborative_recommendations(user_id, limit)
    if strategy in ("content", "content-based"):
        return await recommender.get_content_based_recommendations(user_id, limit)
    if strategy in ("ai", "personalized"):
        return await recommender.get_ai_recommendations(user_id, limit)
    if strategy == "trending":
        return await recommender.get_trending_recommendations(limit)
    if strategy == "mixed":
        return await recommender.get_mixed_recommendations(user_id, limit)
    return await recommender.get_hybrid_recommendations(user_id, limit)


async def _handle_message(websocket: WebSocket, user_id: str, message: dict) -> None:
    event = message.get("type")
    data = message.get("data") or {}
    if not isinstance(data, dict):
        raise ValueError("Event data must be a JSON object")

    if event == "fetch_news":
        async for feed_event in stream_latest_articles(db, feed_refresher):
            await websocket.send_json({"type": "news_data", **feed_event.model_dump(mode="json")})

    elif event == "fetch_recommendations":
        req = RecommendationsEvent.model_validate(data)
        result = await _recommend(req.strategy, user_id, req.limit)
        await websocket.send_json(
            {
                "type": "recommendations_data",
                "strategy": req.strategy,
                **result.model_dump(mode="json", exclude_none=True),
            }
        )

    elif event == "article_view":
        req = ArticleEvent.model_validate(data)
        engagement.record_read(user_id, req.article_id, req.time_spent)
        await websocket.send_json({"type": "article_viewed", "article_id": req.article_id})

    elif event == "article_like":
        req = ArticleEvent.model_validate(data)
        engagement.record_like(user_id, req.article_id)
        await connections.broadcast(
            {"type": "article_liked", "article_id": req.article_id, "user_id": user_id}
        )

    elif event == "article_dislike":
        req = ArticleEvent.model_validate(data)
        engagement.record_dislike(user_id, req.article_id)
        await connections.broadcast(
            {"type": "article_disliked", "article_id": req.article_id, "user_id": user_id}
        )

    elif event == "search_query":
        req = SearchEvent.model_validate(data)
        engagement.record_search(user_id, req.query)
        await websocket.send_json({"type": "search_recorded", "query": req.query.strip()})

    elif event == "preferences_update":
        req = PreferencesEvent.model_validate(data)
        updated = engagement.update_preferences(user_id, req.preferences)
        await websocket.send_json(
            {"type": "preferences_updated", "preferences": updated.model_dump(mode="json")}
        )

    else:
        await websocket.send_json({"type": "error", "error": f"Unknown event: {event}"})


@app.websocket("/ws")
async def realtime(websocket: WebSocket, user_id: str):
    if not db.user_exists(user_id):
        await websocket.close(code=1008)
        return

    await connections.connect(websocket)
    logger.info(f"User {user_id} connected")
    try:
        while True:
            try:
                message = await websocket.receive_json()
            except json.JSONDecodeError as e:
                await websocket.send_json(
                    {"type": "error", "event": None, "error": f"Invalid JSON: {e.msg}"}
                )
                continue
            if not isinstance(message, dict):
                await websocket.send_json(
                    {"type": "error", "event": None, "error": "Message must be a JSON object"}
                )
                continue

            try:
                await _handle_message(websocket, user_id, message)
            except (NewsPulseError, KeyError, TypeError, ValueError) as e:
                logger.warning(f"Realtime event {message.get('type')} failed: {e}")
                await websocket.send_json(
                    {"type": "error", "event": message.get("type"), "error": str(e)}
                )
    except WebSocketDisconnect:
        logger.info(f"User {user_id} disconnected")
    finally:
        connections.disconnect(websocket)


if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(level=logging.INFO)
    uvicorn.run(app, host="127.0.0.1", port=8000)
