"""MCP server for searching personal memos."""
import json
import sys
import time
from pathlib import Path
from typing import Any, List, Optional

# Add project root to Python path for absolute imports
_project_root = Path(__file__).parent.parent
if str(_project_root) not in sys.path:
    sys.path.insert(0, str(_project_root))

from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import Tool, TextContent

from memo_search.ai_client import AIClient
from memo_search.config import get_config
from memo_search.highlight import render_highlight
from memo_search.memo_store import MemoStore, get_memo_store
from memo_search.models import SearchResult, SuggestionSort, TagMatchMode
from memo_search.search import MemoSearchEngine, find_related, hybrid_search, rank_by_embedding
from memo_search.suggestions import SuggestionProvider


SEARCH_MODES = ("text", "tag", "complex", "hybrid")

# Global state
_search_engine: Optional[MemoSearchEngine] = None
_ai_client: Optional[AIClient] = None


def get_search_engine() -> MemoSearchEngine:
    global _search_engine

    if _search_engine is None:
        _search_engine = MemoSearchEngine(get_config().search)

    return _search_engine


def get_ai_client() -> AIClient:
    global _ai_client

    if _ai_client is None:
        _ai_client = AIClient(get_config().ai)

    return _ai_client


async def _get_store() -> MemoStore:
    return await get_memo_store(get_config().db_path)


def _json_response(payload: Any) -> list[TextContent]:
    return [TextContent(
        type="text",
        text=json.dumps(payload, indent=2, ensure_ascii=False)
    )]


def _error(message: str) -> list[TextContent]:
    return [TextContent(type="text", text=f"Error: {message}")]


def _semantic_backend(store: MemoStore, client: AIClient, user_id: str, records: list):
    """Semantic search over stored embeddings, or None when embeddings are unavailable."""
    if not client.enabled:
        return None

    async def semantic_search(query: str, limit: int) -> List[SearchResult]:
        query_embedding = await client.embed(query)
        embeddings = await store.fetch_embeddings(user_id)
        return rank_by_embedding(query_embedding, records, embeddings, limit)

    return semantic_search


async def search_memos_tool(
    query: str,
    mode: str = "complex",
    tag_mode: str = "any",
    fuzzy: Optional[bool] = None,
    max_results: Optional[int] = None,
) -> list[TextContent]:
    """Tool handler for search_memos.

    Args:
        query: Search query (supports tag:/category:/title:/content: clauses)
        mode: One of text, tag, complex, hybrid
        tag_mode: Tag match mode for mode=tag (any, all, exact)
        fuzzy: Enable typo-tolerant matching (defaults to config)
        max_results: Maximum number of results (defaults to config)

    Returns:
        List of TextContent with JSON results
    """
    config = get_config()
    engine = get_search_engine()
    store = await _get_store()
    limit = max_results or config.search.max_results

    started = time.perf_counter()
    records = await store.fetch_records(config.user_id)

    if mode == "text":
        results = engine.enhanced_text_search(records, query, use_fuzzy_search=fuzzy, max_results=limit)
    elif mode == "tag":
        results = engine.enhanced_tag_search(
            records, query, mode=TagMatchMode(tag_mode), fuzzy=True if fuzzy is None else fuzzy
        )[:limit]
    elif mode == "hybrid":
        client = get_ai_client()
        results = await hybrid_search(
            engine,
            records,
            query,
            semantic_search=_semantic_backend(store, client, config.user_id, records),
            limit=limit,
        )
    else:
        results = engine.complex_search(records, query, use_fuzzy_search=fuzzy, max_results=limit)

    execution_time = (time.perf_counter() - started) * 1000
    await store.record_search_history(
        config.user_id,
        query,
        search_type=mode,
        result_count=len(results),
        execution_time=execution_time,
    )

    if not results:
        return [TextContent(
            type="text",
            text=f"No memos found matching query: {query}"
        )]

    return _json_response([result.to_dict() for result in results])


async def get_memo_tool(memo_id: str) -> list[TextContent]:
    """Tool handler for get_memo.

    Opening a memo counts as a view.
    """
    config = get_config()
    store = await _get_store()

    if not await store.increment_view_count(memo_id, config.user_id):
        return _error(f"Memo not found: {memo_id}")

    memo = await store.get_memo(memo_id, config.user_id)
    return _json_response(memo.to_dict())


async def get_related_memos_tool(memo_id: str, limit: int = 5) -> list[TextContent]:
    """Tool handler for get_related_memos."""
    config = get_config()
    store = await _get_store()

    records = await store.fetch_records(config.user_id)
    embeddings = await store.fetch_embeddings(config.user_id)
    related = find_related(memo_id, records, embeddings, limit)

    return _json_response([result.to_dict() for result in related])


async def delete_memo_tool(memo_id: str) -> list[TextContent]:
    """Tool handler for delete_memo."""
    config = get_config()
    store = await _get_store()

    if not await store.delete_memo(memo_id, config.user_id):
        return _error(f"Memo not found: {memo_id}")

    print(f"[Server] Deleted memo {memo_id}", file=sys.stderr)
    return _json_response({"deleted": memo_id})


async def get_suggestions_tool(query: str, sort_by: Optional[str] = None) -> list[TextContent]:
    """Tool handler for get_suggestions."""
    config = get_config()
    store = await _get_store()
    provider = SuggestionProvider(store, config.suggestions)

    suggestions = await provider.get_suggestions(
        query,
        config.user_id,
        sort_by=SuggestionSort(sort_by) if sort_by else None,
    )
    return _json_response([s.to_dict() for s in suggestions])


async def highlight_text_tool(
    query: str,
    text: str,
    snippets: bool = False,
    max_length: int = 500,
) -> list[TextContent]:
    """Tool handler for highlight_text."""
    highlighted = render_highlight(query, text, max_length=max_length, show_snippets=snippets)
    return _json_response({
        "content": highlighted.content,
        "has_matches": highlighted.has_matches,
    })


async def add_memo_tool(content: str) -> list[TextContent]:
    """Tool handler for add_memo.

    Analyzes the memo (tags, category, summary, keywords), embeds it and stores it.
    """
    config = get_config()
    store = await _get_store()
    client = get_ai_client()

    analysis = await client.analyze(content)
    embedding = await client.embed(content)

    memo_id = await store.upsert_memo(
        config.user_id,
        content,
        tags=analysis.tags,
        category=analysis.category,
        summary=analysis.summary,
        keywords=analysis.keywords,
        embedding=embedding or None,
    )
    print(f"[Server] Stored memo {memo_id}", file=sys.stderr)

    memo = await store.get_memo(memo_id, config.user_id)
    return _json_response(memo.to_dict())


async def get_search_history_tool(limit: int = 20) -> list[TextContent]:
    """Tool handler for get_search_history."""
    config = get_config()
    store = await _get_store()

    history = await store.fetch_search_history(config.user_id, limit)
    return _json_response([entry.to_dict() for entry in history])


async def get_popular_queries_tool(days: int = 30, limit: int = 10) -> list[TextContent]:
    """Tool handler for get_popular_queries."""
    config = get_config()
    store = await _get_store()

    popular = await store.popular_queries(config.user_id, days=days, limit=limit)
    return _json_response(popular)


async def clear_search_history_tool(history_id: Optional[int] = None) -> list[TextContent]:
    """Tool handler for clear_search_history."""
    config = get_config()
    store = await _get_store()

    deleted = await store.delete_search_history(config.user_id, history_id)
    return _json_response({"deleted": deleted})


def create_server() -> Server:
    """Create and configure the MCP server.

    Returns:
        Configured Server instance
    """
    server = Server("memo-search-mcp")

    @server.list_tools()
    async def list_tools() -> list[Tool]:
        """List available tools."""
        return [
            Tool(
                name="search_memos",
                description=(
                    "Search memos with typo-tolerant, Japanese-aware matching. Supports "
                    "tag:, category:, title: and content: clauses and \"quoted phrases\". "
                    "Returns ranked memos with matched fields and highlight positions."
                ),
                inputSchema={
                    "type": "object",
                    "properties": {
                        "query": {
                            "type": "string",
                            "description": "Search query"
                        },
                        "mode": {
                            "type": "string",
                            "enum": list(SEARCH_MODES),
                            "description": "Search strategy (default: complex)"
                        },
                        "tag_mode": {
                            "type": "string",
                            "enum": [m.value for m in TagMatchMode],
                            "description": "How tags must match when mode is 'tag' (default: any)"
                        },
                        "fuzzy": {
                            "type": "boolean",
                            "description": "Allow approximate matches"
                        },
                        "max_results": {
                            "type": "integer",
                            "description": "Maximum number of results"
                        }
                    },
                    "required": ["query"]
                }
            ),
            Tool(
                name="get_suggestions",
                description="Autocomplete suggestions for a partially typed query, from search history, tags, categories, keywords and memo content.",
                inputSchema={
                    "type": "object",
                    "properties": {
                        "query": {
                            "type": "string",
                            "description": "Text typed so far (empty for recent searches and popular tags)"
                        },
                        "sort_by": {
                            "type": "string",
                            "enum": [s.value for s in SuggestionSort],
                            "description": "Ordering of the suggestions (default: score)"
                        }
                    },
                    "required": []
                }
            ),
            Tool(
                name="highlight_text",
                description="Mark occurrences of a query in a text with <mark> tags, optionally as snippets.",
                inputSchema={
                    "type": "object",
                    "properties": {
                        "query": {"type": "string", "description": "Query to highlight"},
                        "text": {"type": "string", "description": "Text to highlight in"},
                        "snippets": {
                            "type": "boolean",
                            "description": "Return context snippets around each match instead of the full text"
                        },
                        "max_length": {
                            "type": "integer",
                            "description": "Maximum length of the rendered text (default: 500)"
                        }
                    },
                    "required": ["query", "text"]
                }
            ),
            Tool(
                name="add_memo",
                description="Store a new memo. Tags, category, summary, keywords and an embedding are generated automatically when an API key is configured.",
                inputSchema={
                    "type": "object",
                    "properties": {
                        "content": {"type": "string", "description": "Memo text"}
                    },
                    "required": ["content"]
                }
            ),
            Tool(
                name="get_memo",
                description="Open a memo by ID. Each call counts as a view.",
                inputSchema={
                    "type": "object",
                    "properties": {
                        "memo_id": {"type": "string", "description": "ID of the memo"}
                    },
                    "required": ["memo_id"]
                }
            ),
            Tool(
                name="get_related_memos",
                description="Find memos whose meaning is close to a given memo, using stored embeddings.",
                inputSchema={
                    "type": "object",
                    "properties": {
                        "memo_id": {"type": "string", "description": "ID of the source memo"},
                        "limit": {
                            "type": "integer",
                            "description": "Maximum number of related memos (default: 5)"
                        }
                    },
                    "required": ["memo_id"]
                }
            ),
            Tool(
                name="delete_memo",
                description="Delete a memo by ID.",
                inputSchema={
                    "type": "object",
                    "properties": {
                        "memo_id": {"type": "string", "description": "ID of the memo to delete"}
                    },
                    "required": ["memo_id"]
                }
            ),
            Tool(
                name="get_popular_queries",
                description="Most frequent search queries over a recent period.",
                inputSchema={
                    "type": "object",
                    "properties": {
                        "days": {
                            "type": "integer",
                            "description": "How many days back to count (default: 30)"
                        },
                        "limit": {
                            "type": "integer",
                            "description": "Maximum number of queries (default: 10)"
                        }
                    },
                    "required": []
                }
            ),
            Tool(
                name="get_search_history",
                description="List recent searches, newest first.",
                inputSchema={
                    "type": "object",
                    "properties": {
                        "limit": {
                            "type": "integer",
                            "description": "Maximum number of entries (default: 20)"
                        }
                    },
                    "required": []
                }
            ),
            Tool(
                name="clear_search_history",
                description="Delete one search history entry, or the whole history when no id is given.",
                inputSchema={
                    "type": "object",
                    "properties": {
                        "history_id": {
                            "type": "integer",
                            "description": "ID of the entry to delete"
                        }
                    },
                    "required": []
                }
            ),
        ]

    @server.call_tool()
    async def call_tool(name: str, arguments: Any) -> list[TextContent]:
        """Handle tool calls."""
        arguments = arguments or {}

        if name == "search_memos":
            query = arguments.get("query", "")
            if not query:
                return _error("'query' parameter is required")
            mode = arguments.get("mode", "complex")
            if mode not in SEARCH_MODES:
                return _error(f"'mode' must be one of {', '.join(SEARCH_MODES)}")
            tag_mode = arguments.get("tag_mode", "any")
            if tag_mode not in [m.value for m in TagMatchMode]:
                return _error("'tag_mode' must be one of any, all, exact")
            return await search_memos_tool(
                query,
                mode=mode,
                tag_mode=tag_mode,
                fuzzy=arguments.get("fuzzy"),
                max_results=arguments.get("max_results"),
            )

        elif name == "get_suggestions":
            sort_by = arguments.get("sort_by")
            if sort_by and sort_by not in [s.value for s in SuggestionSort]:
                return _error("'sort_by' must be one of score, frequency, alphabetical, recent")
            return await get_suggestions_tool(arguments.get("query", ""), sort_by)

        elif name == "highlight_text":
            query = arguments.get("query", "")
            text = arguments.get("text", "")
            if not query or not text:
                return _error("'query' and 'text' parameters are required")
            return await highlight_text_tool(
                query,
                text,
                snippets=bool(arguments.get("snippets", False)),
                max_length=arguments.get("max_length", 500),
            )

        elif name == "add_memo":
            content = arguments.get("content", "")
            if not content or not content.strip():
                return _error("'content' parameter is required")
            return await add_memo_tool(content)

        elif name in ("get_memo", "get_related_memos", "delete_memo"):
            memo_id = arguments.get("memo_id", "")
            if not memo_id:
                return _error("'memo_id' parameter is required")
            if name == "get_memo":
                return await get_memo_tool(memo_id)
            if name == "get_related_memos":
                return await get_related_memos_tool(memo_id, arguments.get("limit", 5))
            return await delete_memo_tool(memo_id)

        elif name == "get_popular_queries":
            return await get_popular_queries_tool(
                days=arguments.get("days", 30),
                limit=arguments.get("limit", 10),
            )

        elif name == "get_search_history":
            return await get_search_history_tool(arguments.get("limit", 20))

        elif name == "clear_search_history":
            return await clear_search_history_tool(arguments.get("history_id"))

        else:
            raise ValueError(f"Unknown tool: {name}")

    return server


async def main():
    """Main entry point for the MCP server."""
    server = create_server()

    async with stdio_server() as (read_stream, write_stream):
        initialization_options = server.create_initialization_options()
        await server.run(read_stream, write_stream, initialization_options)
