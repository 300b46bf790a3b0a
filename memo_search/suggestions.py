"""Autocomplete suggestions built from history, tags, categories, keywords and content.

Each source is matched against the in-progress query with
``fuzzy_search.partial_match``; the merged list is deduplicated by text.
"""
import asyncio
import re
import sys
from collections import Counter
from typing import Iterable, List, Optional, Protocol, Sequence

from memo_search import fuzzy_search
from memo_search.config import SuggestionConfig
from memo_search.models import (
    SearchableRecord,
    SearchHistoryEntry,
    SearchSuggestion,
    SuggestionMetadata,
    SuggestionSort,
    SuggestionType,
)
from memo_search.text_normalizer import normalize_for_search


HISTORY_LOOKBACK = 50
CONTENT_POOL_SIZE = 100
RECENT_HISTORY_LIMIT = 5
POPULAR_TAG_LIMIT = 5
POPULAR_TAG_POOL_SIZE = 50

MAX_SENTENCE_WORDS = 10
PHRASE_WINDOW = 3
MAX_PHRASE_LENGTH = 50

_SENTENCE_PATTERN = re.compile(r"[。．！？\n]")


class SuggestionSource(Protocol):
    """Data the provider needs from the memo store."""

    async def fetch_records(self, user_id: str) -> List[SearchableRecord]:
        ...

    async def fetch_search_history(self, user_id: str, limit: int = 50) -> List[SearchHistoryEntry]:
        ...


def _matches(query: str, candidate: str, threshold: float) -> Optional[float]:
    result = fuzzy_search.partial_match(query, candidate, threshold=threshold)
    return result.score if result.matched else None


def _by_score(suggestions: List[SearchSuggestion], limit: int) -> List[SearchSuggestion]:
    return sorted(suggestions, key=lambda s: s.score, reverse=True)[:limit]


def history_suggestions(
    query: str,
    history: Iterable[SearchHistoryEntry],
    max_suggestions: int = 5,
    threshold: float = 0.6,
) -> List[SearchSuggestion]:
    normalized_query = normalize_for_search(query)
    suggestions = []
    for entry in history:
        score = _matches(normalized_query, entry.query, threshold)
        if score is None:
            continue
        suggestions.append(SearchSuggestion(
            id=f"history-{entry.query}-{entry.executed_at.isoformat()}",
            type=SuggestionType.HISTORY,
            text=entry.query,
            description=f"Searched on {entry.executed_at.date().isoformat()}",
            score=score,
            metadata=SuggestionMetadata(original_text=entry.query, last_used=entry.executed_at),
        ))
    return _by_score(suggestions, max_suggestions)


def _label_suggestions(
    query: str,
    frequencies: Counter,
    suggestion_type: SuggestionType,
    label: str,
    threshold: float,
) -> List[SearchSuggestion]:
    normalized_query = normalize_for_search(query)
    suggestions = []
    for text, frequency in frequencies.items():
        score = _matches(normalized_query, text, threshold)
        if score is None:
            continue
        suggestions.append(SearchSuggestion(
            id=f"{suggestion_type.value}-{text}",
            type=suggestion_type,
            text=text,
            description=f"{label} ({frequency} memos)",
            score=score,
            metadata=SuggestionMetadata(
                original_text=text,
                category=text if suggestion_type is SuggestionType.CATEGORY else None,
                frequency=frequency,
            ),
        ))
    return suggestions


def tag_suggestions(
    query: str,
    records: Iterable[SearchableRecord],
    max_suggestions: int = 8,
    threshold: float = 0.6,
) -> List[SearchSuggestion]:
    """Matching tags, ranked by a blend of match score and usage frequency."""
    frequencies = Counter(tag for record in records for tag in record.tags)
    suggestions = _label_suggestions(query, frequencies, SuggestionType.TAG, "Tag", threshold)
    suggestions.sort(
        key=lambda s: s.score * 0.7 + (s.metadata.frequency or 0) * 0.3 / 100,
        reverse=True,
    )
    return suggestions[:max_suggestions]


def category_suggestions(
    query: str,
    records: Iterable[SearchableRecord],
    max_suggestions: int = 3,
    threshold: float = 0.6,
) -> List[SearchSuggestion]:
    frequencies = Counter(record.category for record in records if record.category)
    suggestions = _label_suggestions(query, frequencies, SuggestionType.CATEGORY, "Category", threshold)
    return _by_score(suggestions, max_suggestions)


def keyword_suggestions(
    query: str,
    records: Iterable[SearchableRecord],
    max_suggestions: int = 8,
    threshold: float = 0.6,
) -> List[SearchSuggestion]:
    frequencies = Counter(keyword for record in records for keyword in record.keywords)
    suggestions = _label_suggestions(query, frequencies, SuggestionType.KEYWORD, "Keyword", threshold)
    return _by_score(suggestions, max_suggestions)


def extract_phrases(text: str, query: str) -> List[str]:
    """Pull short, query-relevant phrases out of memo content.

    A sentence containing the query becomes a candidate when it has at most
    ten words. Every three-word window of every sentence is also a
    candidate when it is longer than the query and shorter than 50 chars.
    """
    normalized_query = normalize_for_search(query)
    phrases: List[str] = []

    for sentence in _SENTENCE_PATTERN.split(text or ""):
        if not sentence.strip():
            continue

        words = sentence.split()
        if normalized_query in normalize_for_search(sentence) and len(words) <= MAX_SENTENCE_WORDS:
            phrases.append(sentence.strip())

        for i in range(len(words) - 1):
            phrase = " ".join(words[i:i + PHRASE_WINDOW])
            if len(query) < len(phrase) < MAX_PHRASE_LENGTH:
                phrases.append(phrase)

    return list(dict.fromkeys(phrases))


def content_suggestions(
    query: str,
    records: Iterable[SearchableRecord],
    max_suggestions: int = 5,
    threshold: float = 0.6,
) -> List[SearchSuggestion]:
    """Phrases from the most viewed memos that match the query."""
    normalized_query = normalize_for_search(query)
    popular = sorted(records, key=lambda r: r.view_count, reverse=True)[:CONTENT_POOL_SIZE]

    suggestions = []
    for record in popular:
        for phrase in extract_phrases(record.content, normalized_query):
            score = _matches(normalized_query, phrase, threshold)
            if score is None:
                continue
            suggestions.append(SearchSuggestion(
                id=f"content-{record.id}-{phrase}",
                type=SuggestionType.CONTENT,
                text=phrase,
                description=f'"{record.content[:50]}..."',
                score=score,
                metadata=SuggestionMetadata(original_text=phrase, memo_id=record.id),
            ))
    return _by_score(suggestions, max_suggestions)


def recent_suggestions(
    history: Sequence[SearchHistoryEntry],
    records: Sequence[SearchableRecord],
) -> List[SearchSuggestion]:
    """Suggestions for an empty query: recent searches, then popular tags."""
    suggestions = []
    for entry in history[:RECENT_HISTORY_LIMIT]:
        suggestions.append(SearchSuggestion(
            id=f"recent-history-{entry.query}",
            type=SuggestionType.HISTORY,
            text=entry.query,
            description=f"Recent search: {entry.executed_at.date().isoformat()}",
            score=1.0,
            metadata=SuggestionMetadata(original_text=entry.query, last_used=entry.executed_at),
        ))

    tagged = [record for record in records if record.tags][:POPULAR_TAG_POOL_SIZE]
    frequencies = Counter(tag for record in tagged for tag in record.tags)
    for tag, frequency in frequencies.most_common(POPULAR_TAG_LIMIT):
        suggestions.append(SearchSuggestion(
            id=f"popular-tag-{tag}",
            type=SuggestionType.TAG,
            text=tag,
            description=f"Popular tag ({frequency})",
            score=frequency / 10,
            metadata=SuggestionMetadata(original_text=tag, frequency=frequency),
        ))

    return suggestions


def deduplicate_and_sort(
    suggestions: Iterable[SearchSuggestion],
    sort_by: SuggestionSort = SuggestionSort.SCORE,
) -> List[SearchSuggestion]:
    """Keep the best suggestion per text, then order them."""
    deduped = {}
    for suggestion in suggestions:
        existing = deduped.get(suggestion.text)
        if existing is None or suggestion.score > existing.score:
            deduped[suggestion.text] = suggestion

    result = list(deduped.values())
    sort_by = SuggestionSort(sort_by)

    if sort_by is SuggestionSort.FREQUENCY:
        result.sort(key=lambda s: s.metadata.frequency or 0, reverse=True)
    elif sort_by is SuggestionSort.ALPHABETICAL:
        result.sort(key=lambda s: s.text)
    elif sort_by is SuggestionSort.RECENT:
        result.sort(
            key=lambda s: s.metadata.last_used.timestamp() if s.metadata.last_used else 0.0,
            reverse=True,
        )
    else:
        result.sort(key=lambda s: s.score, reverse=True)

    return result


class SuggestionProvider:
    """Builds ranked autocomplete suggestions for one user."""

    def __init__(self, source: SuggestionSource, config: Optional[SuggestionConfig] = None):
        self.source = source
        self.config = config or SuggestionConfig()

    async def _fetch_records(self, user_id: str) -> List[SearchableRecord]:
        try:
            return await self.source.fetch_records(user_id)
        except Exception as e:
            print(f"[Suggestions] Could not load memos: {e}", file=sys.stderr)
            return []

    async def _fetch_history(self, user_id: str, limit: int) -> List[SearchHistoryEntry]:
        try:
            return await self.source.fetch_search_history(user_id, limit)
        except Exception as e:
            print(f"[Suggestions] Could not load search history: {e}", file=sys.stderr)
            return []

    async def get_suggestions(
        self,
        query: str,
        user_id: str,
        sort_by: Optional[SuggestionSort] = None,
    ) -> List[SearchSuggestion]:
        """Suggestions for the in-progress ``query``.

        Args:
            query: Text typed so far
            user_id: Owner of the memos and history
            sort_by: Final ordering (defaults to config)

        Returns:
            Deduplicated suggestions; recent + popular ones for an empty query
        """
        if not query or not query.strip():
            history, records = await asyncio.gather(
                self._fetch_history(user_id, RECENT_HISTORY_LIMIT),
                self._fetch_records(user_id),
            )
            return recent_suggestions(history, records)

        history, records = await asyncio.gather(
            self._fetch_history(user_id, HISTORY_LOOKBACK),
            self._fetch_records(user_id),
        )

        config = self.config
        threshold = config.fuzzy_threshold
        suggestions = (
            history_suggestions(query, history, config.max_history_suggestions, threshold)
            + tag_suggestions(query, records, config.max_tag_suggestions, threshold)
            + content_suggestions(query, records, config.max_content_suggestions, threshold)
            + category_suggestions(query, records, config.max_category_suggestions, threshold)
            + keyword_suggestions(query, records, config.max_keyword_suggestions, threshold)
        )

        return deduplicate_and_sort(suggestions, sort_by or config.sort_by)
