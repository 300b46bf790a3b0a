"""Shared fixtures for tests."""
from datetime import datetime, timedelta, timezone

import pytest

from memo_search.config import SearchConfig
from memo_search.models import SearchableRecord, SearchHistoryEntry
from memo_search.search import MemoSearchEngine


@pytest.fixture
def sample_records():
    """A small memo collection mixing Japanese and English content."""
    return [
        SearchableRecord(
            id="1",
            content="機械学習について学んだ",
            tags=["AI"],
            category="技術",
            keywords=["機械学習"],
            view_count=5,
        ),
        SearchableRecord(
            id="2",
            content="今日の天気は晴れ",
            tags=["日記"],
            category="個人",
            view_count=1,
        ),
        SearchableRecord(
            id="3",
            content="Python tips for data analysis\nUse pandas groupby for aggregation",
            tags=["python", "データ分析"],
            category="技術",
            summary="Notes on pandas",
            keywords=["pandas", "groupby"],
            view_count=12,
        ),
        SearchableRecord(
            id="4",
            content="Meeting notes: plan the machine learning roadmap",
            tags=["仕事", "AI"],
            category="仕事",
            keywords=["roadmap"],
            view_count=3,
        ),
    ]


@pytest.fixture
def scenario_records(sample_records):
    """The two-memo collection used by the tag scenario."""
    return sample_records[:2]


@pytest.fixture
def engine():
    """Search engine with explicit defaults (independent of environment)."""
    return MemoSearchEngine(SearchConfig())


@pytest.fixture
def sample_history():
    """Search history, newest first (as the store returns it)."""
    now = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
    return [
        SearchHistoryEntry(query="python pandas", executed_at=now, result_count=2),
        SearchHistoryEntry(query="機械学習", executed_at=now - timedelta(hours=1), result_count=1),
        SearchHistoryEntry(query="meeting", executed_at=now - timedelta(days=1), result_count=1),
    ]


@pytest.fixture
def memo_db_path(tmp_path):
    """Return path for a temporary memo database."""
    return tmp_path / "test_memos.db"
