#!/usr/bin/env python3
"""News Pulse MCP Server: article recommendations and search as tools."""

import asyncio
import json

from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import TextContent, Tool

from .ai_service import AIService
from .config import RecommendationLimits
from .db import Database
from .engagement import EngagementService
from .recommender import Recommender

db: Database
recommender: Recommender
engagement: EngagementService

# Create MCP server
app = Server("news-pulse")

_LIMIT_SCHEMA = {
    "type": "integer",
    "description": "Maximum number of articles to return",
    "default": RecommendationLimits.DEFAULT,
    "minimum": 1,
    "maximum": RecommendationLimits.MAX_REQUEST,
}


def _limit(arguments: dict) -> int:
    """Read and bounds-check the limit argument."""
    limit = arguments.get("limit", RecommendationLimits.DEFAULT)
    if isinstance(limit, bool) or not isinstance(limit, int):
        raise ValueError(f"limit must be an integer, got {limit!r}")
    if not 1 <= limit <= RecommendationLimits.MAX_REQUEST:
        raise ValueError(f"limit must be between 1 and {RecommendationLimits.MAX_REQUEST}, got {limit}")
    return limit


@app.list_tools()
async def list_tools() -> list[Tool]:
    """List all available tools."""
    return [
        Tool(
            name="recommend_articles",
            description="Get personalized article recommendations for a user",
            inputSchema={
                "type": "object",
                "properties": {
                    "user_id": {"type": "string", "description": "The user ID"},
                    "strategy": {
                        "type": "string",
                        "enum": ["collaborative", "content-based", "ai", "hybrid", "mixed"],
                        "description": "Recommendation strategy",
                        "default": "hybrid",
                    },
                    "limit": _LIMIT_SCHEMA,
                },
                "required": ["user_id"],
            },
        ),
        Tool(
            name="trending_articles",
            description="Most viewed and liked active articles",
            inputSchema={"type": "object", "properties": {"limit": _LIMIT_SCHEMA}},
        ),
        Tool(
            name="search_articles",
            description="Search articles by title, summary, content, tags and topics",
            inputSchema={
                "type": "object",
                "properties": {
                    "query": {"type": "string", "description": "Search text"},
                    "limit": _LIMIT_SCHEMA,
                },
                "required": ["query"],
            },
        ),
        Tool(
            name="get_article",
            description="Get full details for a specific article by ID",
            inputSchema={
                "type": "object",
                "properties": {
                    "article_id": {"type": "string", "description": "The article ID"},
                },
                "required": ["article_id"],
            },
        ),
        Tool(
            name="get_user_stats",
            description="Reading statistics for a user",
            inputSchema={
                "type": "object",
                "properties": {
                    "user_id": {"type": "string", "description": "The user ID"},
                },
                "required": ["user_id"],
            },
        ),
    ]


async def handle_tool(name: str, arguments: dict) -> dict | list:
    """Run a tool and return its JSON-serializable result."""
    if name == "recommend_articles":
        user_id = arguments["user_id"]
        strategy = arguments.get("strategy", "hybrid")
        limit = _limit(arguments)
        if strategy == "collaborative":
            result = await recommender.get_collaborative_recommendations(user_id, limit)
        elif strategy == "content-based":
            result = await recommender.get_content_based_recommendations(user_id, limit)
        elif strategy == "ai":
            result = await recommender.get_ai_recommendations(user_id, limit)
        elif strategy == "mixed":
            result = await recommender.get_mixed_recommendations(user_id, limit)
        else:
            result = await recommender.get_hybrid_recommendations(user_id, limit)
        return result.model_dump(mode="json", exclude_none=True)

    elif name == "trending_articles":
        result = await recommender.get_trending_recommendations(_limit(arguments))
        return result.model_dump(mode="json", exclude_none=True)

    elif name == "search_articles":
        articles = db.find_active_articles(
            search=arguments["query"], limit=_limit(arguments)
        )
        return [a.model_dump(mode="json") for a in articles]

    elif name == "get_article":
        article = db.get_article(arguments["article_id"])
        return article.model_dump(mode="json") if article else {"error": "Article not found"}

    elif name == "get_user_stats":
        return engagement.get_user_stats(arguments["user_id"]).model_dump(mode="json")

    return {"error": f"Unknown tool: {name}"}


@app.call_tool()
async def call_tool(name: str, arguments: dict) -> list[TextContent]:
    """Handle tool calls."""
    try:
        result = await handle_tool(name, arguments)
    except Exception as e:
        result = {"error": str(e)}
    return [TextContent(type="text", text=json.dumps(result, indent=2))]


async def main():
    """Run the MCP server."""
    global db, recommender, engagement
    db = Database()
    recommender = Recommender(db, AIService())
    engagement = EngagementService(db)

    async with stdio_server() as (read_stream, write_stream):
        await app.run(read_stream, write_stream, app.create_initialization_options())


def run():
    asyncio.run(main())


if __name__ == "__main__":
    run()
