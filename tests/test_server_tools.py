"""Tests for server tool registration and tool handlers."""
import asyncio
import json
from unittest.mock import AsyncMock, patch

import httpx
import pytest
import pytest_asyncio

from memo_search import server as memo_server
from memo_search.ai_client import AIClient, MemoAnalysis
from memo_search.config import AIConfig, Config, SearchConfig, SuggestionConfig
from memo_search.memo_store import MemoStore
from memo_search.server import create_server


@pytest_asyncio.fixture
async def store(memo_db_path):
    s = MemoStore(memo_db_path)
    await s.initialize()
    yield s
    await s.close()


@pytest.fixture
def test_config():
    return Config(
        search=SearchConfig(),
        suggestions=SuggestionConfig(),
        ai=AIConfig(api_key=None),
        user_id="local",
    )


@pytest.fixture
def patched_server(store, test_config):
    """Point the server's globals at a temporary store and an offline AI client."""
    with patch.object(memo_server, "get_config", return_value=test_config), \
            patch.object(memo_server, "_get_store", AsyncMock(return_value=store)), \
            patch.object(memo_server, "_search_engine", None), \
            patch.object(memo_server, "_ai_client", AIClient(test_config.ai)):
        yield store


def _payload(result):
    return json.loads(result[0].text)


class TestServerTools:
    def test_server_creates(self):
        server = create_server()
        assert server.name == "memo-search-mcp"

    def test_all_tools_registered(self):
        from mcp.types import ListToolsRequest

        server = create_server()

        async def check():
            result = await server.request_handlers[ListToolsRequest](None)
            return result.root.tools

        tools = asyncio.run(check())
        tool_names = [t.name for t in tools]

        expected = [
            "search_memos",
            "get_suggestions",
            "highlight_text",
            "add_memo",
            "get_memo",
            "get_related_memos",
            "delete_memo",
            "get_popular_queries",
            "get_search_history",
            "clear_search_history",
        ]

        assert len(tools) == 10
        for name in expected:
            assert name in tool_names, f"Missing tool: {name}"


@pytest.mark.asyncio
class TestToolHandlers:
    async def test_add_memo_without_api_key(self, patched_server):
        result = await memo_server.add_memo_tool("機械学習について学んだ")
        memo = _payload(result)
        assert memo["content"] == "機械学習について学んだ"
        assert memo["category"] == "General"
        assert memo["tags"] == []

    async def test_add_memo_uses_analysis(self, patched_server):
        analysis = MemoAnalysis(tags=["AI"], category="技術", summary="s", keywords=["機械学習"])
        with patch.object(AIClient, "analyze", AsyncMock(return_value=analysis)):
            memo = _payload(await memo_server.add_memo_tool("機械学習について学んだ"))
        assert memo["tags"] == ["AI"]
        assert memo["category"] == "技術"

    async def test_search_records_history(self, patched_server):
        store = patched_server
        await store.upsert_memo("local", "機械学習について学んだ", tags=["AI"])
        await store.upsert_memo("local", "今日の天気は晴れ", tags=["日記"])

        results = _payload(await memo_server.search_memos_tool("AI", mode="text"))
        assert [r["content"] for r in results] == ["機械学習について学んだ"]
        assert results[0]["matched_fields"] == ["tags"]

        history = await store.fetch_search_history("local")
        assert history[0].query == "AI"
        assert history[0].search_type == "text"
        assert history[0].result_count == 1

    async def test_search_modes(self, patched_server):
        store = patched_server
        await store.upsert_memo("local", "Python tips", tags=["python"], category="技術")

        for mode in ("text", "tag", "complex", "hybrid"):
            results = _payload(await memo_server.search_memos_tool("python", mode=mode))
            assert len(results) == 1, mode

        results = _payload(await memo_server.search_memos_tool("category:技術", mode="complex"))
        assert results[0]["content"] == "Python tips"

    async def test_search_no_results(self, patched_server):
        result = await memo_server.search_memos_tool("nothing", mode="text")
        assert "No memos found" in result[0].text

    async def test_suggestions(self, patched_server):
        store = patched_server
        await store.upsert_memo("local", "Python tips", tags=["python"])
        suggestions = _payload(await memo_server.get_suggestions_tool("pyth"))
        assert "python" in [s["text"] for s in suggestions]

    async def test_highlight(self, patched_server):
        payload = _payload(await memo_server.highlight_text_tool("machine", "I study machine learning"))
        assert payload == {"content": "I study <mark>machine</mark> learning", "has_matches": True}

    async def test_history_and_clear(self, patched_server):
        store = patched_server
        await store.record_search_history("local", "first")
        await store.record_search_history("local", "second")

        history = _payload(await memo_server.get_search_history_tool(limit=1))
        assert [h["query"] for h in history] == ["second"]

        cleared = _payload(await memo_server.clear_search_history_tool())
        assert cleared == {"deleted": 2}
        assert await store.fetch_search_history("local") == []

    async def test_hybrid_search_uses_stored_embeddings(self, patched_server):
        store = patched_server
        weather_id = await store.upsert_memo("local", "今日の天気は晴れ", embedding=[0.0, 1.0])
        python_id = await store.upsert_memo("local", "Python tips", tags=["python"], embedding=[1.0, 0.0])

        requests = []

        def handler(request):
            requests.append(json.loads(request.content))
            return httpx.Response(200, json={"data": [{"embedding": [0.0, 1.0]}]})

        client = AIClient(AIConfig(api_key="k"), transport=httpx.MockTransport(handler))
        with patch.object(memo_server, "_ai_client", client):
            results = _payload(await memo_server.search_memos_tool("python", mode="hybrid"))

        assert requests[0]["input"] == "python"
        assert [r["id"] for r in results] == [weather_id, python_id]
        assert results[0]["search_type"] == "semantic"
        assert results[0]["similarity"] == pytest.approx(1.0)
        # 1.0 * 0.7 + 1.0 * 0.3 for the only semantic hit
        assert results[0]["rank_score"] == pytest.approx(1.0)
        assert results[1]["search_type"] == "text"
        # 0.5 * 0.3 + 1.0 * 0.2 for the only text hit
        assert results[1]["rank_score"] == pytest.approx(0.35)

        history = await store.fetch_search_history("local")
        assert history[0].search_type == "hybrid"
        assert history[0].result_count == 2

    async def test_get_memo_counts_views(self, patched_server):
        store = patched_server
        memo_id = await store.upsert_memo("local", "Python tips")

        await memo_server.get_memo_tool(memo_id)
        memo = _payload(await memo_server.get_memo_tool(memo_id))
        assert memo["id"] == memo_id
        assert memo["view_count"] == 2

    async def test_get_memo_not_found(self, patched_server):
        result = await memo_server.get_memo_tool("missing")
        assert result[0].text == "Error: Memo not found: missing"

    async def test_related_memos(self, patched_server):
        store = patched_server
        source_id = await store.upsert_memo("local", "機械学習について学んだ", embedding=[1.0, 0.0])
        close_id = await store.upsert_memo("local", "machine learning roadmap", embedding=[0.8, 0.6])
        await store.upsert_memo("local", "今日の天気は晴れ", embedding=[0.0, 1.0])
        await store.upsert_memo("local", "no embedding yet")

        related = _payload(await memo_server.get_related_memos_tool(source_id))
        assert [r["id"] for r in related] == [close_id]
        assert related[0]["similarity"] == pytest.approx(0.8)

    async def test_related_memos_without_embedding(self, patched_server):
        store = patched_server
        memo_id = await store.upsert_memo("local", "no embedding yet")
        assert _payload(await memo_server.get_related_memos_tool(memo_id)) == []

    async def test_delete_memo(self, patched_server):
        store = patched_server
        memo_id = await store.upsert_memo("local", "Python tips")

        assert _payload(await memo_server.delete_memo_tool(memo_id)) == {"deleted": memo_id}
        assert await store.get_memo(memo_id, "local") is None

        result = await memo_server.delete_memo_tool(memo_id)
        assert result[0].text.startswith("Error:")

    async def test_popular_queries(self, patched_server):
        store = patched_server
        for query in ["pandas", "AI", "pandas"]:
            await store.record_search_history("local", query)

        popular = _payload(await memo_server.get_popular_queries_tool(limit=1))
        assert popular == [{"query": "pandas", "count": 2}]
