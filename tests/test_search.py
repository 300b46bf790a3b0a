"""Tests for search module."""
import pytest

from memo_search.config import SearchConfig
from memo_search.models import SearchableRecord, SearchMode, SearchResult, SearchType, TagMatchMode
from memo_search.search import (
    MemoSearchEngine,
    cosine_similarity,
    find_related,
    hybrid_search,
    merge_hybrid_results,
    rank_by_embedding,
)


def ids(results):
    return [r.id for r in results]


class TestEnhancedTextSearch:
    def test_tag_scenario(self, engine, scenario_records):
        results = engine.enhanced_text_search(scenario_records, "AI", use_fuzzy_search=True)
        assert ids(results) == ["1"]
        assert results[0].matched_fields == ["tags"]
        assert results[0].rank_score == pytest.approx(0.8)

    def test_content_hit_is_returned(self, engine, sample_records):
        results = engine.enhanced_text_search(sample_records, "ＰＡＮＤＡＳ")
        assert "3" in ids(results)
        assert all(r.rank_score > 0 for r in results)

    def test_kana_insensitive(self, engine):
        records = [SearchableRecord(id="k", content="新しいテストを書いた")]
        results = engine.enhanced_text_search(records, "てすと")
        assert ids(results) == ["k"]

    def test_greek_content_hit(self, engine):
        records = [SearchableRecord(id="g", content="ΟΔΟΣΑ")]
        assert ids(engine.enhanced_text_search(records, "ΟΔΟΣ")) == ["g"]

    @pytest.mark.parametrize("query", ["", "   ", "!!!"])
    def test_degenerate_query(self, engine, sample_records, query):
        assert engine.enhanced_text_search(sample_records, query) == []

    def test_sorted_by_score(self, engine, sample_records):
        results = engine.enhanced_text_search(sample_records, "machine learning")
        scores = [r.rank_score for r in results]
        assert scores == sorted(scores, reverse=True)

    def test_max_results(self, engine, sample_records):
        results = engine.enhanced_text_search(sample_records, "AI", max_results=1)
        assert len(results) == 1

    def test_search_mode_changes_aggregation(self, sample_records):
        engine = MemoSearchEngine(SearchConfig())
        hybrid = engine.enhanced_text_search(sample_records, "pandas", search_mode=SearchMode.HYBRID)
        partial = engine.enhanced_text_search(sample_records, "pandas", search_mode=SearchMode.PARTIAL)
        # content 1.0 + summary 0.7 + keywords 0.9
        assert partial[0].rank_score == pytest.approx(2.6)
        assert hybrid[0].rank_score == pytest.approx((2.6 + 1.0) / 2)

    def test_fuzzy_typo(self, engine, sample_records):
        assert engine.enhanced_text_search(sample_records, "pandaz", use_fuzzy_search=False) == []
        results = engine.enhanced_text_search(sample_records, "pandaz", use_fuzzy_search=True)
        assert ids(results) == ["3"]

    def test_word_overlap(self, engine, sample_records):
        results = engine.enhanced_text_search(sample_records, "roadmap machine zzz")
        assert ids(results) == ["4"]

    def test_highlights_point_into_field(self, engine, sample_records):
        results = engine.enhanced_text_search(sample_records, "groupby")
        content = sample_records[2].content
        content_highlight = next(h for h in results[0].highlights if h.field == "content")
        span = content_highlight.positions[0]
        assert content[span.start:span.end] == "groupby"

    def test_without_highlights(self, engine, sample_records):
        results = engine.enhanced_text_search(sample_records, "groupby", include_highlights=False)
        assert results[0].highlights == []


class TestEnhancedTagSearch:
    def test_any_mode(self, engine, sample_records):
        results = engine.enhanced_tag_search(sample_records, "ai")
        assert sorted(ids(results)) == ["1", "4"]
        assert all(r.rank_score == 1.0 for r in results)

    def test_substring_score(self, engine, sample_records):
        results = engine.enhanced_tag_search(sample_records, "データ")
        assert ids(results) == ["3"]
        assert results[0].rank_score == pytest.approx(0.8)

    def test_partial_disabled(self, engine, sample_records):
        assert engine.enhanced_tag_search(sample_records, "データ", partial=False, fuzzy=False) == []

    def test_fuzzy_tag(self, engine, sample_records):
        results = engine.enhanced_tag_search(sample_records, "pythn")
        assert ids(results) == ["3"]
        assert results[0].fuzzy_score > 0

    def test_all_mode(self, engine, sample_records):
        results = engine.enhanced_tag_search(sample_records, "ai 仕事", mode=TagMatchMode.ALL)
        assert ids(results) == ["4"]

    def test_exact_mode(self, engine, sample_records):
        # Record 1 has only the AI tag; record 4 also carries 仕事
        results = engine.enhanced_tag_search(sample_records, "ai", mode=TagMatchMode.EXACT)
        assert ids(results) == ["1"]

    def test_empty_query(self, engine, sample_records):
        assert engine.enhanced_tag_search(sample_records, "") == []


class TestComplexSearch:
    def test_simple_query_delegates(self, engine, sample_records):
        assert ids(engine.complex_search(sample_records, "pandas")) == ids(
            engine.enhanced_text_search(sample_records, "pandas")
        )

    def test_field_clause_filters(self, engine, sample_records):
        results = engine.complex_search(sample_records, "tag:AI machine")
        assert ids(results) == ["4"]
        assert "tags" in results[0].matched_fields
        assert "content" in results[0].matched_fields

    def test_field_clause_only(self, engine, sample_records):
        results = engine.complex_search(sample_records, "category:技術")
        assert sorted(ids(results)) == ["1", "3"]

    def test_title_clause(self, engine, sample_records):
        results = engine.complex_search(sample_records, "title:python")
        assert ids(results) == ["3"]

    def test_terms_must_match_when_present(self, engine, sample_records):
        assert engine.complex_search(sample_records, "tag:AI zzzz") == []

    def test_symbol_only_term_is_ignored(self, engine, sample_records):
        expected = ids(engine.complex_search(sample_records, "tag:AI"))
        assert sorted(expected) == ["1", "4"]
        assert ids(engine.complex_search(sample_records, "tag:AI -")) == expected
        assert ids(engine.complex_search(sample_records, "tag:AI & !")) == expected

    def test_quoted_phrase(self, engine, sample_records):
        results = engine.complex_search(sample_records, 'category:仕事 "machine learning"')
        assert ids(results) == ["4"]

    def test_empty_query(self, engine, sample_records):
        assert engine.complex_search(sample_records, "") == []

    def test_search_protocol(self, engine, sample_records):
        assert ids(engine.search("tag:python", sample_records, limit=5)) == ["3"]


class TestEmbeddings:
    def test_cosine_similarity(self):
        assert cosine_similarity([1.0, 0.0], [1.0, 0.0]) == pytest.approx(1.0)
        assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == pytest.approx(0.0)
        assert cosine_similarity([], [1.0]) == 0.0
        assert cosine_similarity([0.0, 0.0], [1.0, 1.0]) == 0.0

    def test_rank_by_embedding(self, sample_records):
        embeddings = {
            "1": [1.0, 0.0],
            "3": [0.8, 0.6],
            "4": [0.0, 1.0],
        }
        results = rank_by_embedding([1.0, 0.0], sample_records, embeddings, limit=5)
        assert ids(results) == ["1", "3"]
        assert results[0].search_type is SearchType.SEMANTIC
        assert results[1].similarity == pytest.approx(0.8)

    def test_find_related_excludes_source(self, sample_records):
        embeddings = {
            "1": [1.0, 0.0],
            "3": [0.8, 0.6],
            "4": [0.0, 1.0],
        }
        results = find_related("1", sample_records, embeddings)
        assert ids(results) == ["3"]
        assert results[0].similarity == pytest.approx(0.8)

    def test_find_related_without_embedding(self, sample_records):
        assert find_related("2", sample_records, {"1": [1.0, 0.0]}) == []


def _result(record_id, similarity=None, search_type=SearchType.TEXT):
    return SearchResult(
        record=SearchableRecord(id=record_id, content=record_id),
        search_type=search_type,
        similarity=similarity,
    )


class TestMergeHybridResults:
    def test_semantic_preferred_on_duplicate(self):
        merged = merge_hybrid_results(
            [_result("a", 0.9, SearchType.SEMANTIC)],
            [_result("a"), _result("b")],
            limit=10,
        )
        by_id = {r.id: r for r in merged}
        assert by_id["a"].search_type is SearchType.SEMANTIC
        assert by_id["a"].rank_score == pytest.approx(0.9 * 0.7 + 1.0 * 0.3)

    def test_text_rank_formula(self):
        merged = merge_hybrid_results([], [_result("a"), _result("b")], limit=10)
        assert merged[0].rank_score == pytest.approx(0.5 * 0.3 + 1.0 * 0.2)
        assert merged[1].rank_score == pytest.approx(0.5 * 0.3 + 0.5 * 0.2)

    def test_limit(self):
        merged = merge_hybrid_results(
            [_result("a", 0.9), _result("b", 0.8)],
            [_result("c"), _result("d")],
            limit=3,
        )
        assert len(merged) == 3
        scores = [r.rank_score for r in merged]
        assert scores == sorted(scores, reverse=True)


@pytest.mark.asyncio
class TestHybridSearch:
    async def test_without_semantic_backend(self, engine, sample_records):
        results = await hybrid_search(engine, sample_records, "pandas")
        assert ids(results) == ["3"]
        assert results[0].search_type is SearchType.TEXT

    async def test_semantic_backend_failure_falls_back(self, engine, sample_records):
        async def failing(query, limit):
            raise RuntimeError("embedding service down")

        results = await hybrid_search(engine, sample_records, "pandas", semantic_search=failing)
        assert ids(results) == ["3"]

    async def test_merges_semantic_results(self, engine, sample_records):
        calls = []

        async def semantic(query, limit):
            calls.append((query, limit))
            return [SearchResult(record=sample_records[0], similarity=0.95, search_type=SearchType.SEMANTIC)]

        results = await hybrid_search(engine, sample_records, "pandas", semantic_search=semantic, limit=10)
        assert calls == [("pandas", 7)]
        assert ids(results) == ["1", "3"]

    async def test_empty_query(self, engine, sample_records):
        assert await hybrid_search(engine, sample_records, "") == []
