"""Search engine module for memos."""
import math
import sys
from dataclasses import dataclass, field, replace
from typing import Awaitable, Callable, Dict, List, Optional, Protocol, Sequence, Tuple

from memo_search import fuzzy_search
from memo_search.config import SearchConfig
from memo_search.models import (
    FieldClause,
    FieldHighlight,
    MatchSpan,
    SearchableRecord,
    SearchMode,
    SearchResult,
    SearchType,
    TagMatchMode,
)
from memo_search.query_parser import parse_complex_query
from memo_search.text_normalizer import normalize_for_search


# Relevance weight of each searchable field
FIELD_WEIGHTS: Tuple[Tuple[str, float], ...] = (
    ("content", 1.0),
    ("tags", 0.8),
    ("category", 0.6),
    ("summary", 0.7),
    ("keywords", 0.9),
)

# Field clause name -> record field it reads
CLAUSE_FIELDS = {
    "tag": "tags",
    "category": "category",
    "title": "title",
    "content": "content",
}

WORD_OVERLAP_THRESHOLD = 0.5
TAG_EXACT_SCORE = 1.0
TAG_SUBSTRING_SCORE = 0.8

SEMANTIC_SHARE = 0.7
TEXT_SHARE = 0.3
DEFAULT_TEXT_SIMILARITY = 0.5
SEMANTIC_THRESHOLD = 0.6

SemanticSearch = Callable[[str, int], Awaitable[List[SearchResult]]]


class SearchEngine(Protocol):
    """Protocol for search engines to allow extensibility."""

    def search(self, query: str, records: Sequence[SearchableRecord], limit: int = 10) -> List[SearchResult]:
        """Search records based on query.

        Args:
            query: Search query string
            records: Records to search
            limit: Maximum number of results to return

        Returns:
            List of matching results, sorted by relevance
        """
        ...


@dataclass
class _TextOptions:
    use_normalization: bool
    use_fuzzy_search: bool
    fuzzy_threshold: float
    search_mode: SearchMode
    include_highlights: bool


@dataclass
class _FieldMatch:
    matched: bool
    score: float = 0.0
    fuzzy_score: float = 0.0
    highlights: List[MatchSpan] = field(default_factory=list)


@dataclass
class _RecordMatch:
    score: float = 0.0
    fuzzy_score: float = 0.0
    matched_fields: List[str] = field(default_factory=list)
    highlights: List[FieldHighlight] = field(default_factory=list)

    @property
    def matched(self) -> bool:
        return bool(self.matched_fields)


_NO_FIELD_MATCH = _FieldMatch(matched=False)


def _field_text(record: SearchableRecord, name: str) -> str:
    """Searchable text of a record field; list fields are space-joined."""
    if name == "tags":
        return " ".join(record.tags or [])
    if name == "keywords":
        return " ".join(record.keywords or [])
    if name == "title":
        return record.title
    return getattr(record, name, None) or ""


def _sort_results(results: List[SearchResult]) -> List[SearchResult]:
    return sorted(results, key=lambda r: r.rank_score, reverse=True)


class MemoSearchEngine:
    """Normalizing, fuzzy, multi-field ranked search over memos."""

    def __init__(self, config: Optional[SearchConfig] = None):
        self.config = config or SearchConfig()

    def _options(
        self,
        use_normalization: bool = True,
        use_fuzzy_search: Optional[bool] = None,
        fuzzy_threshold: Optional[float] = None,
        search_mode: Optional[SearchMode] = None,
        include_highlights: bool = True,
    ) -> _TextOptions:
        return _TextOptions(
            use_normalization=use_normalization,
            use_fuzzy_search=self.config.use_fuzzy_search if use_fuzzy_search is None else use_fuzzy_search,
            fuzzy_threshold=self.config.fuzzy_threshold if fuzzy_threshold is None else fuzzy_threshold,
            search_mode=SearchMode(search_mode or self.config.search_mode),
            include_highlights=include_highlights,
        )

    # ------------------------------------------------------------------
    # Ranked text search
    # ------------------------------------------------------------------

    def enhanced_text_search(
        self,
        records: Sequence[SearchableRecord],
        query: str,
        use_normalization: bool = True,
        use_fuzzy_search: Optional[bool] = None,
        fuzzy_threshold: Optional[float] = None,
        search_mode: Optional[SearchMode] = None,
        include_highlights: bool = True,
        max_results: Optional[int] = None,
    ) -> List[SearchResult]:
        """Rank records by weighted matches across their text fields.

        Args:
            records: Candidate records
            query: Raw query string
            use_normalization: Compare normalized forms (case, width, kana, symbols)
            use_fuzzy_search: Allow edit-distance matches (defaults to config)
            fuzzy_threshold: Minimum fuzzy similarity (defaults to config)
            search_mode: Score aggregation mode (defaults to config)
            include_highlights: Compute highlight spans per matched field
            max_results: Maximum number of results (defaults to config)

        Returns:
            Matching results, highest score first
        """
        if not query or not query.strip():
            return []

        options = self._options(
            use_normalization, use_fuzzy_search, fuzzy_threshold, search_mode, include_highlights
        )
        if options.use_normalization and not normalize_for_search(query):
            return []

        limit = self.config.max_results if max_results is None else max_results

        results = []
        for record in records:
            record_match = self._search_record(record, query, options)
            if record_match.matched:
                results.append(SearchResult(
                    record=record,
                    rank_score=record_match.score,
                    matched_fields=record_match.matched_fields,
                    highlights=record_match.highlights,
                    search_type=SearchType.TEXT,
                    fuzzy_score=record_match.fuzzy_score,
                ))

        return _sort_results(results)[:limit]

    def _search_record(self, record: SearchableRecord, query: str, options: _TextOptions) -> _RecordMatch:
        """Score one record across all weighted fields."""
        record_match = _RecordMatch()
        total_score = 0.0
        max_score = 0.0

        for name, weight in FIELD_WEIGHTS:
            value = _field_text(record, name)
            if not value:
                continue

            field_match = self._search_field(query, value, options)
            if not field_match.matched:
                continue

            weighted = field_match.score * weight
            total_score += weighted
            max_score = max(max_score, weighted)
            record_match.matched_fields.append(name)
            record_match.fuzzy_score = max(record_match.fuzzy_score, field_match.fuzzy_score)

            if options.include_highlights and field_match.highlights:
                record_match.highlights.append(FieldHighlight(field=name, positions=field_match.highlights))

        if options.search_mode is SearchMode.HYBRID:
            # Mean of the summed and the best field score
            record_match.score = (total_score + max_score) / 2
        else:
            record_match.score = total_score

        return record_match

    def _search_field(self, query: str, value: str, options: _TextOptions) -> _FieldMatch:
        """Containment, then fuzzy, then word overlap; first success wins."""
        if options.use_normalization:
            normalized_query = normalize_for_search(query).casefold()
            normalized_field = normalize_for_search(value).casefold()
        else:
            normalized_query = query.casefold()
            normalized_field = value.casefold()

        if not normalized_query.strip():
            return _NO_FIELD_MATCH

        if normalized_query in normalized_field:
            return self._field_hit(1.0, query, value, options)

        if options.use_fuzzy_search:
            fuzzy_result = fuzzy_search.partial_match(
                normalized_query,
                normalized_field,
                threshold=options.fuzzy_threshold,
                normalize_text=False,
            )
            if fuzzy_result.matched:
                return self._field_hit(fuzzy_result.score, query, value, options)

        query_words = normalized_query.split()
        field_words = normalized_field.split()
        matched_words = sum(
            1 for query_word in query_words
            if any(query_word in field_word for field_word in field_words)
        )
        word_score = matched_words / len(query_words)
        if word_score > WORD_OVERLAP_THRESHOLD:
            return self._field_hit(word_score, query, value, options)

        return _NO_FIELD_MATCH

    @staticmethod
    def _field_hit(score: float, query: str, value: str, options: _TextOptions) -> _FieldMatch:
        highlights = fuzzy_search.generate_highlight(query, value) if options.include_highlights else []
        return _FieldMatch(matched=True, score=score, fuzzy_score=score, highlights=highlights)

    # ------------------------------------------------------------------
    # Tag search
    # ------------------------------------------------------------------

    def enhanced_tag_search(
        self,
        records: Sequence[SearchableRecord],
        query: str,
        mode: TagMatchMode = TagMatchMode.ANY,
        partial: bool = True,
        fuzzy: bool = True,
        threshold: float = 0.7,
    ) -> List[SearchResult]:
        """Search records by their tags.

        Modes:
            any: at least one tag matches the query
            all: every word of the query matches at least one tag
            exact: every tag of the record matches the query
        """
        if not query or not query.strip():
            return []

        normalized_query = normalize_for_search(query)
        if not normalized_query:
            return []

        mode = TagMatchMode(mode)
        results = []
        for record in records:
            if not record.tags:
                continue

            if mode is TagMatchMode.ALL:
                tag_result = self._search_tags_all(record.tags, normalized_query.split(), partial, fuzzy, threshold)
            else:
                tag_result = self._search_tags(record.tags, normalized_query, mode, partial, fuzzy, threshold)

            if tag_result is None:
                continue

            score, fuzzy_score = tag_result
            results.append(SearchResult(
                record=record,
                rank_score=score,
                matched_fields=["tags"],
                search_type=SearchType.TEXT,
                fuzzy_score=fuzzy_score,
            ))

        return _sort_results(results)

    @staticmethod
    def _score_tag(
        normalized_tag: str,
        query: str,
        partial: bool,
        fuzzy: bool,
        threshold: float,
    ) -> Tuple[float, float]:
        """Return (score, fuzzy score) for one tag; score 0 means no match."""
        if normalized_tag == query:
            return TAG_EXACT_SCORE, 0.0
        if partial and query in normalized_tag:
            return TAG_SUBSTRING_SCORE, 0.0
        if fuzzy:
            fuzzy_result = fuzzy_search.match(query, normalized_tag, threshold=threshold, normalize_text=False)
            if fuzzy_result.matched:
                return fuzzy_result.score, fuzzy_result.score
        return 0.0, 0.0

    def _search_tags(
        self,
        tags: List[str],
        query: str,
        mode: TagMatchMode,
        partial: bool,
        fuzzy: bool,
        threshold: float,
    ) -> Optional[Tuple[float, float]]:
        scores = []
        max_fuzzy = 0.0
        for tag in tags:
            score, fuzzy_score = self._score_tag(normalize_for_search(tag), query, partial, fuzzy, threshold)
            if score > 0:
                scores.append(score)
                max_fuzzy = max(max_fuzzy, fuzzy_score)

        if not scores:
            return None
        if mode is TagMatchMode.EXACT and len(scores) != len(tags):
            return None

        return sum(scores) / len(scores), max_fuzzy

    def _search_tags_all(
        self,
        tags: List[str],
        terms: List[str],
        partial: bool,
        fuzzy: bool,
        threshold: float,
    ) -> Optional[Tuple[float, float]]:
        normalized_tags = [normalize_for_search(tag) for tag in tags]
        term_scores = []
        max_fuzzy = 0.0
        for term in terms:
            best = 0.0
            for normalized_tag in normalized_tags:
                score, fuzzy_score = self._score_tag(normalized_tag, term, partial, fuzzy, threshold)
                if score > best:
                    best = score
                max_fuzzy = max(max_fuzzy, fuzzy_score)
            if best == 0.0:
                return None
            term_scores.append(best)

        return sum(term_scores) / len(term_scores), max_fuzzy

    # ------------------------------------------------------------------
    # Compound search
    # ------------------------------------------------------------------

    def complex_search(
        self,
        records: Sequence[SearchableRecord],
        query: str,
        use_normalization: bool = True,
        use_fuzzy_search: Optional[bool] = None,
        fuzzy_threshold: Optional[float] = None,
        search_mode: Optional[SearchMode] = None,
        include_highlights: bool = True,
        max_results: Optional[int] = None,
    ) -> List[SearchResult]:
        """Search with ``field:value`` clauses, quoted phrases and operators.

        Every field clause must match. When free terms or phrases are
        present at least one of them must match too. The score is the mean
        of the matching clause and term scores.

        Operator keywords are recognized and recorded by the parser but do
        not change evaluation: clauses are always AND'ed and terms OR'ed.
        """
        if not query or not query.strip():
            return []

        parsed = parse_complex_query(query)
        if parsed.is_simple:
            return self.enhanced_text_search(
                records,
                query,
                use_normalization=use_normalization,
                use_fuzzy_search=use_fuzzy_search,
                fuzzy_threshold=fuzzy_threshold,
                search_mode=search_mode,
                include_highlights=include_highlights,
                max_results=max_results,
            )

        options = self._options(
            use_normalization, use_fuzzy_search, fuzzy_threshold, search_mode, include_highlights
        )
        limit = self.config.max_results if max_results is None else max_results
        # Terms that normalize to nothing (a lone "-" or "&") can never match
        terms = [term for term in parsed.terms if normalize_for_search(term)]

        results = []
        for record in records:
            scores: List[float] = []
            matched_fields: List[str] = []
            highlights: List[FieldHighlight] = []

            clauses_matched = True
            for clause in parsed.field_clauses:
                clause_score = self._evaluate_field_clause(record, clause, options)
                if clause_score is None:
                    clauses_matched = False
                    break
                scores.append(clause_score)
                field_name = CLAUSE_FIELDS[clause.field]
                if field_name not in matched_fields:
                    matched_fields.append(field_name)
                if options.include_highlights:
                    spans = fuzzy_search.generate_highlight(clause.value, _field_text(record, field_name))
                    if spans:
                        highlights.append(FieldHighlight(field=field_name, positions=spans))

            if not clauses_matched:
                continue

            if terms:
                any_term_matched = False
                for term in terms:
                    term_match = self._search_record(record, term, options)
                    if not term_match.matched:
                        continue
                    any_term_matched = True
                    scores.append(term_match.score)
                    for name in term_match.matched_fields:
                        if name not in matched_fields:
                            matched_fields.append(name)
                    highlights.extend(term_match.highlights)
                if not any_term_matched:
                    continue

            if not scores:
                continue

            results.append(SearchResult(
                record=record,
                rank_score=sum(scores) / len(scores),
                matched_fields=matched_fields,
                highlights=highlights,
                search_type=SearchType.TEXT,
            ))

        return _sort_results(results)[:limit]

    def _evaluate_field_clause(
        self,
        record: SearchableRecord,
        clause: FieldClause,
        options: _TextOptions,
    ) -> Optional[float]:
        """Score of a ``field:value`` clause against a record, or None."""
        normalized_value = normalize_for_search(clause.value)
        normalized_field = normalize_for_search(_field_text(record, CLAUSE_FIELDS[clause.field]))
        if not normalized_value or not normalized_field:
            return None

        if normalized_value in normalized_field:
            return 1.0

        if options.use_fuzzy_search:
            fuzzy_result = fuzzy_search.partial_match(
                normalized_value,
                normalized_field,
                threshold=options.fuzzy_threshold,
            )
            if fuzzy_result.matched:
                return fuzzy_result.score

        return None

    def search(self, query: str, records: Sequence[SearchableRecord], limit: int = 10) -> List[SearchResult]:
        """Search records with the full query syntax.

        Args:
            query: Search query string
            records: Records to search
            limit: Maximum number of results to return

        Returns:
            List of matching results, sorted by relevance (highest score first)
        """
        return self.complex_search(records, query, max_results=limit)


# ----------------------------------------------------------------------
# Embedding similarity
# ----------------------------------------------------------------------

def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity of two vectors; 0.0 when either is empty or zero."""
    if not a or not b or len(a) != len(b):
        return 0.0
    dot = sum(x * y for x, y in zip(a, b))
    norm = math.sqrt(sum(x * x for x in a)) * math.sqrt(sum(y * y for y in b))
    if norm == 0:
        return 0.0
    return dot / norm


def rank_by_embedding(
    query_embedding: Sequence[float],
    records: Sequence[SearchableRecord],
    embeddings: Dict[str, List[float]],
    limit: int = 10,
    threshold: float = SEMANTIC_THRESHOLD,
) -> List[SearchResult]:
    """Records whose stored embedding is at least ``threshold`` similar to the query.

    Args:
        query_embedding: Embedding of the search query
        records: Candidate records
        embeddings: Record id -> stored embedding (records without one are skipped)
        limit: Maximum number of results
        threshold: Minimum cosine similarity

    Returns:
        Semantic results, most similar first
    """
    if not query_embedding:
        return []

    results = []
    for record in records:
        embedding = embeddings.get(record.id)
        if not embedding:
            continue
        similarity = cosine_similarity(query_embedding, embedding)
        if similarity < threshold:
            continue
        results.append(SearchResult(
            record=record,
            rank_score=similarity,
            search_type=SearchType.SEMANTIC,
            similarity=similarity,
        ))

    return _sort_results(results)[:limit]


def find_related(
    record_id: str,
    records: Sequence[SearchableRecord],
    embeddings: Dict[str, List[float]],
    limit: int = 5,
    threshold: float = SEMANTIC_THRESHOLD,
) -> List[SearchResult]:
    """Records closest to the stored embedding of ``record_id``, excluding itself.

    Returns [] when the record has no embedding.
    """
    source_embedding = embeddings.get(record_id)
    if not source_embedding:
        return []

    candidates = [record for record in records if record.id != record_id]
    return rank_by_embedding(source_embedding, candidates, embeddings, limit, threshold)


# ----------------------------------------------------------------------
# Hybrid (semantic + text) composition
# ----------------------------------------------------------------------

def merge_hybrid_results(
    semantic_results: Sequence[SearchResult],
    text_results: Sequence[SearchResult],
    limit: int = 10,
) -> List[SearchResult]:
    """Merge semantic and text results, preferring the semantic entry per id.

    Each entry is ranked by its similarity blended with its position in its
    own result list.
    """
    combined: Dict[str, SearchResult] = {}

    for index, result in enumerate(semantic_results):
        similarity = result.similarity or 0.0
        position_score = 1 - index / len(semantic_results)
        combined[result.id] = replace(
            result,
            rank_score=similarity * SEMANTIC_SHARE + position_score * TEXT_SHARE,
            search_type=SearchType.SEMANTIC,
        )

    for index, result in enumerate(text_results):
        if result.id in combined:
            continue
        similarity = DEFAULT_TEXT_SIMILARITY if result.similarity is None else result.similarity
        position_score = 1 - index / len(text_results)
        combined[result.id] = replace(
            result,
            rank_score=similarity * TEXT_SHARE + position_score * 0.2,
        )

    return _sort_results(list(combined.values()))[:limit]


def _share_of(limit: int, share: float) -> int:
    # round() first: 10 * 0.7 is 7.000000000000001
    return math.ceil(round(limit * share, 9))


async def hybrid_search(
    engine: MemoSearchEngine,
    records: Sequence[SearchableRecord],
    query: str,
    semantic_search: Optional[SemanticSearch] = None,
    limit: int = 10,
) -> List[SearchResult]:
    """Run semantic and text search and merge them.

    Without a semantic backend, or when it fails, the text results alone
    are returned.
    """
    if not query or not query.strip():
        return []

    if semantic_search is None:
        return engine.enhanced_text_search(records, query, max_results=limit)

    try:
        semantic_results = await semantic_search(query, _share_of(limit, SEMANTIC_SHARE))
    except Exception as e:
        print(f"[HybridSearch] Semantic search failed, using text search: {e}", file=sys.stderr)
        return engine.enhanced_text_search(records, query, max_results=limit)

    text_results = engine.enhanced_text_search(records, query, max_results=_share_of(limit, TEXT_SHARE))
    return merge_hybrid_results(semantic_results, text_results, limit)
