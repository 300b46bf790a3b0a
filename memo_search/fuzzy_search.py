"""Levenshtein-based fuzzy matching and highlight span generation."""
import math
import re
from typing import Iterable, List, Optional, Sequence, Tuple

from rapidfuzz.distance import Levenshtein

from memo_search.models import FuzzyMatchResult, MatchSpan
from memo_search import text_normalizer


DEFAULT_THRESHOLD = 0.6
DEFAULT_MAX_DISTANCE = 3
JAPANESE_MAX_DISTANCE = 2
TAG_THRESHOLD = 0.7

EXACT_SPAN_SCORE = 1.0
WORD_SPAN_SCORE = 0.8

_WHITESPACE_PATTERN = re.compile(r"\s+")


def _no_match(target: str) -> FuzzyMatchResult:
    return FuzzyMatchResult(matched_text=target, score=0.0, edit_distance=math.inf, matched=False)


def levenshtein_distance(a: str, b: str) -> int:
    """Single-character insert/delete/substitute edit distance."""
    return Levenshtein.distance(a, b)


def similarity(a: str, b: str) -> float:
    """Similarity in [0, 1]; two empty strings are a perfect match."""
    max_length = max(len(a), len(b))
    if max_length == 0:
        return 1.0
    return 1.0 - levenshtein_distance(a, b) / max_length


def _prepare(text: str, normalize_text: bool, case_sensitive: bool, partial: bool = False) -> str:
    if normalize_text:
        if partial:
            text = text_normalizer.normalize_for_partial_match(text)
        else:
            text = text_normalizer.normalize_for_search(text)
    if not case_sensitive:
        text = text.casefold()
    return text


def _split_words(text: str) -> List[str]:
    return [word for word in _WHITESPACE_PATTERN.split(text) if word]


def match(
    query: str,
    target: str,
    threshold: float = DEFAULT_THRESHOLD,
    max_distance: float = DEFAULT_MAX_DISTANCE,
    normalize_text: bool = True,
    case_sensitive: bool = False,
) -> FuzzyMatchResult:
    """Compare two whole strings.

    Both gates must pass: ``score >= threshold`` and
    ``distance <= max_distance``.
    """
    prepared_query = _prepare(query or "", normalize_text, case_sensitive)
    prepared_target = _prepare(target or "", normalize_text, case_sensitive)

    distance = levenshtein_distance(prepared_query, prepared_target)
    score = similarity(prepared_query, prepared_target)

    return FuzzyMatchResult(
        matched_text=target,
        score=score,
        edit_distance=distance,
        matched=score >= threshold and distance <= max_distance,
    )


def partial_match(
    query: str,
    target: str,
    threshold: float = DEFAULT_THRESHOLD,
    max_distance: float = DEFAULT_MAX_DISTANCE,
    normalize_text: bool = True,
    case_sensitive: bool = False,
) -> FuzzyMatchResult:
    """Containment first, then the best fuzzy match between any pair of words.

    A substring hit returns ``score=1.0, distance=0`` without computing any
    edit distance.
    """
    prepared_query = _prepare(query or "", normalize_text, case_sensitive, partial=True)
    prepared_target = _prepare(target or "", normalize_text, case_sensitive, partial=True)

    if not prepared_query:
        return _no_match(target)

    if prepared_query in prepared_target:
        return FuzzyMatchResult(matched_text=target, score=1.0, edit_distance=0, matched=True)

    best_score = 0.0
    best_distance = math.inf
    for query_word in _split_words(prepared_query):
        for target_word in _split_words(prepared_target):
            result = match(
                query_word,
                target_word,
                threshold=threshold,
                max_distance=max_distance,
                normalize_text=normalize_text,
                case_sensitive=case_sensitive,
            )
            if result.matched and result.score > best_score:
                best_score = result.score
                best_distance = result.edit_distance

    return FuzzyMatchResult(
        matched_text=target,
        score=best_score,
        edit_distance=best_distance,
        matched=best_score > 0 and best_score >= threshold,
    )


def japanese_match(
    query: str,
    target: str,
    threshold: float = DEFAULT_THRESHOLD,
    max_distance: float = JAPANESE_MAX_DISTANCE,
) -> FuzzyMatchResult:
    """Best match over every script/case/width variation of both strings."""
    if not query or not target:
        return _no_match(target)

    best_score = 0.0
    best_distance = math.inf
    for query_variation in text_normalizer.generate_variations(query):
        for target_variation in text_normalizer.generate_variations(target):
            score = similarity(query_variation, target_variation)
            if score > best_score:
                best_score = score
                best_distance = levenshtein_distance(query_variation, target_variation)

    return FuzzyMatchResult(
        matched_text=target,
        score=best_score,
        edit_distance=best_distance,
        matched=best_score >= threshold and best_distance <= max_distance,
    )


def multi_query_match(queries: Sequence[str], target: str, **options) -> FuzzyMatchResult:
    """AND semantics: every query must partially match; score is the mean."""
    if not queries:
        return _no_match(target)

    results = []
    for query in queries:
        result = partial_match(query, target, **options)
        if not result.matched:
            return _no_match(target)
        results.append(result)

    return FuzzyMatchResult(
        matched_text=target,
        score=sum(r.score for r in results) / len(results),
        edit_distance=max(r.edit_distance for r in results),
        matched=True,
    )


def multi_query_or_match(queries: Sequence[str], target: str, **options) -> FuzzyMatchResult:
    """OR semantics: the best-scoring query wins."""
    best = _no_match(target)
    for query in queries:
        result = partial_match(query, target, **options)
        if result.score > best.score:
            best = result
    return best


def search_all(query: str, targets: Iterable[str], **options) -> List[FuzzyMatchResult]:
    """All matching targets, best first."""
    results = [match(query, target, **options) for target in targets]
    matched = [r for r in results if r.matched]
    matched.sort(key=lambda r: r.score, reverse=True)
    return matched


def search_best(query: str, targets: Iterable[str], **options) -> Optional[FuzzyMatchResult]:
    results = search_all(query, targets, **options)
    return results[0] if results else None


def tag_match(query: str, tags: Iterable[str], threshold: float = TAG_THRESHOLD, **options) -> List[FuzzyMatchResult]:
    """Partial-match a query against each tag, best first."""
    results = [partial_match(query, tag, threshold=threshold, **options) for tag in tags]
    matched = [r for r in results if r.matched]
    matched.sort(key=lambda r: r.score, reverse=True)
    return matched


def _normalize_with_offsets(text: str, normalize_text: bool, case_sensitive: bool) -> Tuple[str, List[int]]:
    """Partial-match normalization that remembers where each output char came from.

    Returns the normalized text and, for every character in it, the index
    of the source character in ``text``.
    """
    chars: List[str] = []
    offsets: List[int] = []

    for index, char in enumerate(text):
        converted = char
        if normalize_text:
            converted = converted.casefold()
            converted = text_normalizer.fullwidth_to_halfwidth(converted)
            converted = text_normalizer.to_hiragana(converted)
        if not case_sensitive:
            converted = converted.casefold()
        for out_char in converted:
            chars.append(out_char)
            offsets.append(index)

    if not normalize_text:
        return "".join(chars), offsets

    # Collapse whitespace runs and trim, as normalize() does.
    collapsed: List[str] = []
    collapsed_offsets: List[int] = []
    for char, offset in zip(chars, offsets):
        if char.isspace():
            if not collapsed or collapsed[-1] == " ":
                continue
            collapsed.append(" ")
        else:
            collapsed.append(char)
        collapsed_offsets.append(offset)
    if collapsed and collapsed[-1] == " ":
        collapsed.pop()
        collapsed_offsets.pop()

    return "".join(collapsed), collapsed_offsets


def _find_all(haystack: str, needle: str) -> Iterable[int]:
    start = 0
    while True:
        index = haystack.find(needle, start)
        if index == -1:
            return
        yield index
        start = index + 1


def generate_highlight(
    query: str,
    text: str,
    normalize_text: bool = True,
    case_sensitive: bool = False,
) -> List[MatchSpan]:
    """Locate query matches in ``text`` for highlighting.

    Full-query occurrences score 1.0; occurrences of individual query words
    score 0.8 and are dropped when they overlap an earlier span. Offsets
    refer to ``text`` itself. Overlapping output is possible; see
    ``merge_overlapping_matches``.
    """
    if not query or not text:
        return []

    normalized_query = _normalize_with_offsets(query, normalize_text, case_sensitive)[0]
    normalized_text, offsets = _normalize_with_offsets(text, normalize_text, case_sensitive)
    if not normalized_query or not normalized_text:
        return []

    def to_span(start: int, length: int, score: float) -> MatchSpan:
        return MatchSpan(start=offsets[start], end=offsets[start + length - 1] + 1, score=score)

    highlighted: List[MatchSpan] = []

    for index in _find_all(normalized_text, normalized_query):
        highlighted.append(to_span(index, len(normalized_query), EXACT_SPAN_SCORE))

    for word in _split_words(normalized_query):
        for index in _find_all(normalized_text, word):
            span = to_span(index, len(word), WORD_SPAN_SCORE)
            if not any(existing.overlaps(span.start, span.end) for existing in highlighted):
                highlighted.append(span)

    highlighted.sort(key=lambda span: span.start)
    return highlighted


def merge_overlapping_matches(spans: Iterable[MatchSpan]) -> List[MatchSpan]:
    """Fold overlapping or touching spans together, keeping the higher score."""
    ordered = sorted(spans, key=lambda span: span.start)
    if not ordered:
        return []

    merged = [MatchSpan(ordered[0].start, ordered[0].end, ordered[0].score)]
    for span in ordered[1:]:
        last = merged[-1]
        if span.start <= last.end:
            last.end = max(last.end, span.end)
            last.score = max(last.score, span.score)
        else:
            merged.append(MatchSpan(span.start, span.end, span.score))

    return merged
