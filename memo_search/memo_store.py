"""SQLite store for memos and search history."""
import json
import uuid
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

import aiosqlite

from memo_search.models import SearchableRecord, SearchHistoryEntry


# Default database location
DEFAULT_DB_PATH = Path.home() / ".memo-search" / "memos.db"

_JSON_COLUMNS = ("tags", "keywords", "embedding")


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


class MemoStore:
    """Async SQLite store for memos, their embeddings and per-user search history.

    Implements the ``SuggestionSource`` protocol used by the suggestion provider.
    """

    def __init__(self, db_path: Optional[Path] = None):
        """Initialize the memo store.

        Args:
            db_path: Path to SQLite database. Defaults to ~/.memo-search/memos.db
        """
        self.db_path = db_path or DEFAULT_DB_PATH
        self._connection: Optional[aiosqlite.Connection] = None

    async def initialize(self) -> None:
        """Initialize the database, creating tables if needed."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self._connection = await aiosqlite.connect(self.db_path)
        self._connection.row_factory = aiosqlite.Row

        await self._connection.execute("""
            CREATE TABLE IF NOT EXISTS memos (
                id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL,
                content TEXT NOT NULL,
                tags TEXT,
                category TEXT,
                summary TEXT,
                keywords TEXT,
                embedding TEXT,
                view_count INTEGER DEFAULT 0,
                created_at TEXT,
                updated_at TEXT
            )
        """)

        await self._connection.execute("""
            CREATE TABLE IF NOT EXISTS search_history (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id TEXT NOT NULL,
                query TEXT NOT NULL,
                search_type TEXT NOT NULL,
                result_count INTEGER DEFAULT 0,
                execution_time REAL DEFAULT 0,
                executed_at TEXT NOT NULL
            )
        """)

        await self._connection.execute("""
            CREATE INDEX IF NOT EXISTS idx_memos_user ON memos(user_id, updated_at DESC)
        """)
        await self._connection.execute("""
            CREATE INDEX IF NOT EXISTS idx_history_user
            ON search_history(user_id, executed_at DESC)
        """)

        await self._connection.commit()

    async def close(self) -> None:
        """Close the database connection."""
        if self._connection:
            await self._connection.close()
            self._connection = None

    def _require_connection(self) -> aiosqlite.Connection:
        if not self._connection:
            raise RuntimeError("MemoStore not initialized. Call initialize() first.")
        return self._connection

    # ------------------------------------------------------------------
    # Memos
    # ------------------------------------------------------------------

    async def upsert_memo(
        self,
        user_id: str,
        content: str,
        memo_id: Optional[str] = None,
        tags: Optional[List[str]] = None,
        category: Optional[str] = None,
        summary: Optional[str] = None,
        keywords: Optional[List[str]] = None,
        embedding: Optional[List[float]] = None,
    ) -> str:
        """Insert a memo, or update it when ``memo_id`` already exists.

        Analysis fields left as None keep their stored values.

        Args:
            user_id: Owner of the memo
            content: Memo text
            memo_id: Existing id to update (a new id is generated when omitted)
            tags: Tag list
            category: Single category name
            summary: Short summary
            keywords: Keyword list
            embedding: Embedding vector for semantic search

        Returns:
            The memo id
        """
        connection = self._require_connection()

        memo_id = memo_id or uuid.uuid4().hex
        now = _utcnow()

        await connection.execute("""
            INSERT INTO memos (id, user_id, content, tags, category, summary, keywords,
                               embedding, view_count, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, 0, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                content = excluded.content,
                tags = COALESCE(excluded.tags, tags),
                category = COALESCE(excluded.category, category),
                summary = COALESCE(excluded.summary, summary),
                keywords = COALESCE(excluded.keywords, keywords),
                embedding = COALESCE(excluded.embedding, embedding),
                updated_at = excluded.updated_at
        """, (
            memo_id,
            user_id,
            content,
            json.dumps(tags, ensure_ascii=False) if tags is not None else None,
            category,
            summary,
            json.dumps(keywords, ensure_ascii=False) if keywords is not None else None,
            json.dumps(embedding) if embedding else None,
            now,
            now,
        ))

        await connection.commit()
        return memo_id

    async def get_memo(self, memo_id: str, user_id: str) -> Optional[SearchableRecord]:
        """Get one memo owned by ``user_id``.

        Returns:
            The record or None if not found
        """
        connection = self._require_connection()

        cursor = await connection.execute(
            "SELECT * FROM memos WHERE id = ? AND user_id = ?",
            (memo_id, user_id),
        )
        row = await cursor.fetchone()

        if row is None:
            return None

        return SearchableRecord.from_dict(self._row_to_dict(row))

    async def fetch_records(self, user_id: str) -> List[SearchableRecord]:
        """All memos of a user, most recently updated first."""
        connection = self._require_connection()

        cursor = await connection.execute(
            "SELECT * FROM memos WHERE user_id = ? ORDER BY updated_at DESC",
            (user_id,),
        )
        rows = await cursor.fetchall()

        return [SearchableRecord.from_dict(self._row_to_dict(row)) for row in rows]

    async def fetch_embeddings(self, user_id: str) -> Dict[str, List[float]]:
        """Stored embeddings keyed by memo id; memos without one are omitted."""
        connection = self._require_connection()

        cursor = await connection.execute(
            "SELECT id, embedding FROM memos WHERE user_id = ? AND embedding IS NOT NULL",
            (user_id,),
        )
        rows = await cursor.fetchall()

        embeddings = {}
        for row in rows:
            vector = self._row_to_dict(row)["embedding"]
            if vector:
                embeddings[row["id"]] = vector
        return embeddings

    async def increment_view_count(self, memo_id: str, user_id: str) -> bool:
        """Bump the view counter of a memo.

        Returns:
            True if the memo exists, False otherwise
        """
        connection = self._require_connection()

        cursor = await connection.execute(
            "UPDATE memos SET view_count = view_count + 1 WHERE id = ? AND user_id = ?",
            (memo_id, user_id),
        )
        await connection.commit()

        return cursor.rowcount > 0

    async def delete_memo(self, memo_id: str, user_id: str) -> bool:
        """Delete a memo.

        Returns:
            True if deleted, False if not found
        """
        connection = self._require_connection()

        cursor = await connection.execute(
            "DELETE FROM memos WHERE id = ? AND user_id = ?",
            (memo_id, user_id),
        )
        await connection.commit()

        return cursor.rowcount > 0

    # ------------------------------------------------------------------
    # Search history
    # ------------------------------------------------------------------

    async def record_search_history(
        self,
        user_id: str,
        query: str,
        search_type: str = "text",
        result_count: int = 0,
        execution_time: float = 0.0,
    ) -> int:
        """Record an executed search.

        Returns:
            ID of the history entry
        """
        connection = self._require_connection()

        cursor = await connection.execute(
            "INSERT INTO search_history (user_id, query, search_type, result_count, execution_time, executed_at) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            (user_id, query, search_type, result_count, execution_time, _utcnow()),
        )
        await connection.commit()

        return cursor.lastrowid

    async def fetch_search_history(self, user_id: str, limit: int = 50) -> List[SearchHistoryEntry]:
        """Recent searches of a user, newest first."""
        connection = self._require_connection()

        cursor = await connection.execute(
            "SELECT * FROM search_history WHERE user_id = ? ORDER BY id DESC LIMIT ?",
            (user_id, limit),
        )
        rows = await cursor.fetchall()

        return [
            SearchHistoryEntry(
                id=row["id"],
                query=row["query"],
                executed_at=datetime.fromisoformat(row["executed_at"]),
                search_type=row["search_type"],
                result_count=row["result_count"],
                execution_time=row["execution_time"],
            )
            for row in rows
        ]

    async def popular_queries(self, user_id: str, days: int = 30, limit: int = 10) -> List[Dict[str, Any]]:
        """Most frequent queries of the last ``days`` days.

        Ties go to the query searched most recently.

        Returns:
            List of {"query", "count"} dicts, most frequent first
        """
        connection = self._require_connection()

        since = (datetime.now(timezone.utc) - timedelta(days=days)).isoformat()
        cursor = await connection.execute("""
            SELECT query, COUNT(*) AS count
            FROM search_history
            WHERE user_id = ? AND executed_at >= ?
            GROUP BY query
            ORDER BY count DESC, MAX(id) DESC
            LIMIT ?
        """, (user_id, since, limit))
        rows = await cursor.fetchall()

        return [{"query": row["query"], "count": row["count"]} for row in rows]

    async def delete_search_history(self, user_id: str, history_id: Optional[int] = None) -> int:
        """Delete one history entry, or the user's whole history when no id is given.

        Returns:
            Number of deleted entries
        """
        connection = self._require_connection()

        if history_id is None:
            cursor = await connection.execute(
                "DELETE FROM search_history WHERE user_id = ?",
                (user_id,),
            )
        else:
            cursor = await connection.execute(
                "DELETE FROM search_history WHERE user_id = ? AND id = ?",
                (user_id, history_id),
            )
        await connection.commit()

        return cursor.rowcount

    def _row_to_dict(self, row: aiosqlite.Row) -> Dict[str, Any]:
        """Convert a database row to a dictionary with its JSON columns parsed."""
        result = dict(row)

        for column in _JSON_COLUMNS:
            if column not in result:
                continue
            if result[column]:
                try:
                    result[column] = json.loads(result[column])
                except json.JSONDecodeError:
                    result[column] = []
            else:
                result[column] = []

        return result


# Global store instance
_memo_store: Optional[MemoStore] = None


async def get_memo_store(db_path: Optional[Path] = None) -> MemoStore:
    """Get or create the global memo store instance.

    Returns:
        Initialized MemoStore
    """
    global _memo_store

    if _memo_store is None:
        _memo_store = MemoStore(db_path)
        await _memo_store.initialize()

    return _memo_store
