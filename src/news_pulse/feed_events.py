"""Real-time channel: the latest-articles feed and the set of open connections."""

import logging
from typing import AsyncIterator, Awaitable, Callable, Literal

from fastapi import WebSocket, WebSocketDisconnect
from pydantic import BaseModel, Field

from .config import RecommendationLimits
from .db import Database
from .models import Article

logger = logging.getLogger(__name__)

Refresher = Callable[[], Awaitable[object]]


class FeedEvent(BaseModel):
    kind: Literal["cached", "refreshed", "refresh_failed"]
    articles: list[Article] = Field(default_factory=list)
    error: str | None = None


def _latest(db: Database, limit: int) -> list[Article]:
    return db.find_active_articles(sort="scraped", limit=limit)


async def stream_latest_articles(
    db: Database,
    refresh: Refresher | None = None,
    limit: int = RecommendationLimits.FEED_STREAM,
) -> AsyncIterator[FeedEvent]:
    """
    Yield what the store holds now, then what it holds after a refresh.

    The first event is always ``cached``. If a refresher is given it is
    awaited and a second ``refreshed`` (or ``refresh_failed``) event follows
    on the same stream.
    """
    yield FeedEvent(kind="cached", articles=_latest(db, limit))

    if refresh is None:
        return

    try:
        logger.info("Refreshing article feed...")
        await refresh()
    except Exception as e:
        logger.error(f"Error refreshing article feed: {e}", exc_info=True)
        yield FeedEvent(kind="refresh_failed", error=str(e))
        return

    articles = _latest(db, limit)
    logger.info(f"Article feed refreshed: {len(articles)} articles")
    yield FeedEvent(kind="refreshed", articles=articles)


class ConnectionManager:
    """Open WebSocket connections, for events every reader should see."""

    def __init__(self):
        self.active: set[WebSocket] = set()

    async def connect(self, websocket: WebSocket) -> None:
        await websocket.accept()
        self.active.add(websocket)

    def disconnect(self, websocket: WebSocket) -> None:
        self.active.discard(websocket)

    async def broadcast(self, payload: dict) -> None:
        for websocket in list(self.active):
            try:
                await websocket.send_json(payload)
            except (WebSocketDisconnect, RuntimeError) as e:
                logger.warning(f"Dropping realtime connection after failed send: {e}")
                self.disconnect(websocket)
