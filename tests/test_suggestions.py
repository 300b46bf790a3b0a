"""Tests for suggestions module."""
from datetime import datetime, timezone

import pytest

from memo_search.config import SuggestionConfig
from memo_search.models import (
    SearchableRecord,
    SearchSuggestion,
    SuggestionMetadata,
    SuggestionSort,
    SuggestionType,
)
from memo_search.suggestions import (
    SuggestionProvider,
    category_suggestions,
    content_suggestions,
    deduplicate_and_sort,
    extract_phrases,
    history_suggestions,
    keyword_suggestions,
    recent_suggestions,
    tag_suggestions,
)


class FakeSource:
    """In-memory suggestion source."""

    def __init__(self, records=None, history=None, fail_records=False, fail_history=False):
        self.records = records or []
        self.history = history or []
        self.fail_records = fail_records
        self.fail_history = fail_history
        self.history_limits = []

    async def fetch_records(self, user_id):
        if self.fail_records:
            raise ConnectionError("records unavailable")
        return self.records

    async def fetch_search_history(self, user_id, limit=50):
        self.history_limits.append(limit)
        if self.fail_history:
            raise ConnectionError("history unavailable")
        return self.history[:limit]


def texts(suggestions):
    return [s.text for s in suggestions]


class TestSourceBuilders:
    def test_history(self, sample_history):
        results = history_suggestions("pyt", sample_history)
        assert texts(results) == ["python pandas"]
        assert results[0].type is SuggestionType.HISTORY
        assert results[0].metadata.last_used == sample_history[0].executed_at

    def test_history_cap(self, sample_history):
        assert len(history_suggestions("e", sample_history, max_suggestions=1)) == 1

    def test_tags_with_frequency(self, sample_records):
        results = tag_suggestions("a", sample_records)
        ai = next(s for s in results if s.text == "AI")
        assert ai.metadata.frequency == 2
        assert ai.description == "Tag (2 memos)"

    def test_tag_order_blends_frequency(self):
        records = [
            SearchableRecord(id="1", content="x", tags=["python"]),
            SearchableRecord(id="2", content="y", tags=["python", "pythonista"]),
        ]
        results = tag_suggestions("python", records)
        assert texts(results) == ["python", "pythonista"]

    def test_categories(self, sample_records):
        results = category_suggestions("技", sample_records)
        assert texts(results) == ["技術"]
        assert results[0].metadata.category == "技術"
        assert results[0].metadata.frequency == 2

    def test_keywords(self, sample_records):
        results = keyword_suggestions("group", sample_records)
        assert texts(results) == ["groupby"]

    def test_content_phrases(self, sample_records):
        results = content_suggestions("pandas", sample_records)
        assert results
        assert all("pandas" in s.text.lower() for s in results)
        assert all(s.metadata.memo_id == "3" for s in results)

    def test_no_matches(self, sample_records, sample_history):
        assert history_suggestions("zzzz", sample_history) == []
        assert tag_suggestions("zzzz", sample_records) == []


class TestExtractPhrases:
    def test_sentence_and_windows(self):
        phrases = extract_phrases("I like python a lot。Another line", "python")
        assert "I like python a lot" in phrases
        assert "like python a" in phrases

    def test_japanese_sentences(self):
        phrases = extract_phrases("今日は晴れ。明日は雨", "晴れ")
        assert phrases == ["今日は晴れ"]

    def test_long_sentence_skipped(self):
        text = " ".join(["word"] * 11) + " python"
        phrases = extract_phrases(text, "python")
        assert text not in phrases

    def test_windows_longer_than_query(self):
        phrases = extract_phrases("ab cd", "a much longer query")
        assert phrases == []

    def test_no_duplicates(self):
        phrases = extract_phrases("go go go go", "g")
        assert len(phrases) == len(set(phrases))


class TestRecentSuggestions:
    def test_history_then_popular_tags(self, sample_history, sample_records):
        results = recent_suggestions(sample_history, sample_records)
        history = [s for s in results if s.type is SuggestionType.HISTORY]
        tags = [s for s in results if s.type is SuggestionType.TAG]
        assert texts(history) == ["python pandas", "機械学習", "meeting"]
        assert all(s.score == 1.0 for s in history)
        assert tags[0].text == "AI"
        assert tags[0].score == pytest.approx(0.2)

    def test_tag_limit(self):
        records = [SearchableRecord(id=str(i), content="x", tags=[f"tag{i}"]) for i in range(10)]
        results = recent_suggestions([], records)
        assert len(results) == 5


def _suggestion(text, score, frequency=None, last_used=None):
    return SearchSuggestion(
        id=text,
        type=SuggestionType.TAG,
        text=text,
        score=score,
        metadata=SuggestionMetadata(frequency=frequency, last_used=last_used),
    )


class TestDeduplicateAndSort:
    def test_keeps_highest_score(self):
        results = deduplicate_and_sort([_suggestion("a", 0.5), _suggestion("a", 0.9), _suggestion("b", 0.7)])
        assert [(s.text, s.score) for s in results] == [("a", 0.9), ("b", 0.7)]

    def test_frequency(self):
        results = deduplicate_and_sort(
            [_suggestion("a", 0.9, frequency=1), _suggestion("b", 0.5, frequency=5)],
            SuggestionSort.FREQUENCY,
        )
        assert texts(results) == ["b", "a"]

    def test_alphabetical(self):
        results = deduplicate_and_sort([_suggestion("b", 0.9), _suggestion("a", 0.1)], SuggestionSort.ALPHABETICAL)
        assert texts(results) == ["a", "b"]

    def test_recent(self):
        older = datetime(2024, 1, 1, tzinfo=timezone.utc)
        newer = datetime(2024, 6, 1, tzinfo=timezone.utc)
        results = deduplicate_and_sort(
            [_suggestion("old", 0.9, last_used=older), _suggestion("none", 0.9), _suggestion("new", 0.1, last_used=newer)],
            SuggestionSort.RECENT,
        )
        assert texts(results) == ["new", "old", "none"]


@pytest.mark.asyncio
class TestSuggestionProvider:
    async def test_merges_sources(self, sample_records, sample_history):
        provider = SuggestionProvider(FakeSource(sample_records, sample_history), SuggestionConfig())
        results = await provider.get_suggestions("python", "user-1")
        found = {s.type for s in results}
        assert SuggestionType.HISTORY in found
        assert SuggestionType.TAG in found
        assert len(texts(results)) == len(set(texts(results)))
        scores = [s.score for s in results]
        assert scores == sorted(scores, reverse=True)

    async def test_history_lookback(self, sample_records, sample_history):
        source = FakeSource(sample_records, sample_history)
        await SuggestionProvider(source).get_suggestions("python", "user-1")
        assert source.history_limits == [50]

    async def test_empty_query_returns_recent(self, sample_records, sample_history):
        source = FakeSource(sample_records, sample_history)
        results = await SuggestionProvider(source).get_suggestions("", "user-1")
        assert source.history_limits == [5]
        assert results[0].text == "python pandas"
        assert results[0].score == 1.0

    async def test_failing_history_degrades(self, sample_records):
        source = FakeSource(sample_records, fail_history=True)
        results = await SuggestionProvider(source).get_suggestions("python", "user-1")
        assert "python" in texts(results)
        assert all(s.type is not SuggestionType.HISTORY for s in results)

    async def test_failing_records_degrades(self, sample_history):
        source = FakeSource(history=sample_history, fail_records=True)
        results = await SuggestionProvider(source).get_suggestions("python", "user-1")
        assert texts(results) == ["python pandas"]

    async def test_sort_override(self, sample_records, sample_history):
        provider = SuggestionProvider(FakeSource(sample_records, sample_history))
        results = await provider.get_suggestions("a", "user-1", sort_by=SuggestionSort.ALPHABETICAL)
        assert texts(results) == sorted(texts(results))
