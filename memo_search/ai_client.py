"""Embedding and memo analysis via an OpenAI-compatible HTTP API.

Both calls degrade instead of raising: ``embed`` returns an empty vector and
``analyze`` returns the default analysis, so a memo can always be stored.
"""
import json
import sys
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx

from memo_search.config import AIConfig, get_config


DEFAULT_CATEGORY = "General"
MAX_TAGS = 5
MAX_KEYWORDS = 10

ANALYSIS_PROMPT = """You analyse short personal memos and extract structured information.
Reply with a JSON object with these keys:
- tags: array of at most 5 relevant tags
- category: a single category name, e.g. "Tech", "Study", "Work", "Personal", "Research"
- summary: a concise summary of at most 100 characters
- keywords: array of at most 10 important keywords
Write tags, category, summary and keywords in the language of the memo."""


@dataclass
class MemoAnalysis:
    """Tags and metadata extracted from a memo."""
    tags: List[str] = field(default_factory=list)
    category: str = DEFAULT_CATEGORY
    summary: str = ""
    keywords: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MemoAnalysis":
        """Build an analysis from the model's JSON, tolerating missing or malformed keys."""
        def string_list(value: Any, limit: int) -> List[str]:
            if not isinstance(value, list):
                return []
            return [str(v).strip() for v in value if str(v).strip()][:limit]

        category = data.get("category")
        summary = data.get("summary")
        return cls(
            tags=string_list(data.get("tags"), MAX_TAGS),
            category=category.strip() if isinstance(category, str) and category.strip() else DEFAULT_CATEGORY,
            summary=summary.strip() if isinstance(summary, str) else "",
            keywords=string_list(data.get("keywords"), MAX_KEYWORDS),
        )


class AIClient:
    """Thin async client for the embeddings and chat completions endpoints."""

    def __init__(self, config: Optional[AIConfig] = None, transport: Optional[httpx.AsyncBaseTransport] = None):
        """Initialize the client.

        Args:
            config: API settings (defaults to the global config)
            transport: Optional httpx transport, e.g. a MockTransport in tests
        """
        self.config = config or get_config().ai
        self._transport = transport

    @property
    def enabled(self) -> bool:
        """True when an API key is configured."""
        return bool(self.config.api_key)

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.config.base_url,
            timeout=self.config.request_timeout,
            headers={
                "Authorization": f"Bearer {self.config.api_key}",
                "User-Agent": "MemoSearch/1.0",
            },
            transport=self._transport,
        )

    async def embed(self, text: str) -> List[float]:
        """Embed ``text`` for semantic search.

        Args:
            text: Memo content or search query

        Returns:
            Embedding vector, or an empty list if unavailable
        """
        if not self.enabled:
            return []
        if not text or not text.strip():
            return []

        try:
            async with self._client() as client:
                response = await client.post(
                    "/embeddings",
                    json={"model": self.config.embedding_model, "input": text},
                )
                response.raise_for_status()
                return [float(v) for v in response.json()["data"][0]["embedding"]]

        except httpx.HTTPError as e:
            print(f"[AIClient] HTTP error generating embedding: {e}", file=sys.stderr)
            return []
        except (KeyError, IndexError, TypeError, ValueError) as e:
            print(f"[AIClient] Unexpected embedding response: {e}", file=sys.stderr)
            return []

    async def analyze(self, text: str) -> MemoAnalysis:
        """Extract tags, category, summary and keywords from a memo.

        Args:
            text: Memo content

        Returns:
            The analysis, or the default one when the API is unavailable
        """
        if not self.enabled:
            return MemoAnalysis()
        if not text or not text.strip():
            return MemoAnalysis()

        try:
            async with self._client() as client:
                response = await client.post(
                    "/chat/completions",
                    json={
                        "model": self.config.chat_model,
                        "messages": [
                            {"role": "system", "content": ANALYSIS_PROMPT},
                            {"role": "user", "content": text},
                        ],
                        "response_format": {"type": "json_object"},
                        "temperature": 0.1,
                        "max_tokens": 500,
                    },
                )
                response.raise_for_status()
                message = response.json()["choices"][0]["message"]["content"]
                parsed = json.loads(message or "{}")

        except httpx.HTTPError as e:
            print(f"[AIClient] HTTP error analyzing memo: {e}", file=sys.stderr)
            return MemoAnalysis()
        except (KeyError, IndexError, TypeError, ValueError) as e:
            print(f"[AIClient] Unexpected analysis response: {e}", file=sys.stderr)
            return MemoAnalysis()

        if not isinstance(parsed, dict):
            return MemoAnalysis()
        return MemoAnalysis.from_dict(parsed)
