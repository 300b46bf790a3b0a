"""Render highlight spans as marked-up text or snippets.

Spans come from ``fuzzy_search.generate_highlight``; they are merged before
rendering so nested or overlapping matches produce a single mark.
"""
import html
from dataclasses import dataclass
from typing import Iterable, List, Sequence

from memo_search import fuzzy_search
from memo_search.models import MatchSpan
from memo_search.text_normalizer import normalize_for_search


OPEN_TAG = "<mark>"
CLOSE_TAG = "</mark>"
ELLIPSIS = "..."
SNIPPET_SEPARATOR = "<br/><br/>"


@dataclass
class HighlightedText:
    content: str
    has_matches: bool


def _truncate(text: str, max_length: int) -> str:
    if max_length and len(text) > max_length:
        return text[:max_length] + ELLIPSIS
    return text


def _wrap(text: str, open_tag: str, close_tag: str) -> str:
    return f"{open_tag}{html.escape(text)}{close_tag}"


def highlight_text(
    text: str,
    spans: Sequence[MatchSpan],
    max_length: int = 500,
    open_tag: str = OPEN_TAG,
    close_tag: str = CLOSE_TAG,
) -> HighlightedText:
    """Escape ``text`` and wrap every merged span in ``open_tag``/``close_tag``.

    Text longer than ``max_length`` is cut to a window centred on the first
    match, with ellipses marking the cut ends.
    """
    if not spans:
        return HighlightedText(html.escape(_truncate(text, max_length)), False)

    merged = fuzzy_search.merge_overlapping_matches(spans)

    window_start = 0
    window_end = len(text)
    if max_length and len(text) > max_length:
        first = merged[0]
        window_start = max(0, first.start - (max_length - (first.end - first.start)) // 2)
        window_end = min(len(text), window_start + max_length)

    parts = [ELLIPSIS] if window_start > 0 else []
    cursor = window_start
    for span in merged:
        start = max(span.start, window_start)
        end = min(span.end, window_end)
        if start >= end:
            continue
        parts.append(html.escape(text[cursor:start]))
        parts.append(_wrap(text[start:end], open_tag, close_tag))
        cursor = end
    parts.append(html.escape(text[cursor:window_end]))
    if window_end < len(text):
        parts.append(ELLIPSIS)

    return HighlightedText("".join(parts), True)


def generate_snippets(
    text: str,
    spans: Sequence[MatchSpan],
    snippet_length: int = 100,
    max_snippets: int = 3,
    open_tag: str = OPEN_TAG,
    close_tag: str = CLOSE_TAG,
) -> HighlightedText:
    """One context window per merged span, up to ``max_snippets``."""
    if not spans:
        return HighlightedText(html.escape(_truncate(text, snippet_length)), False)

    half = snippet_length // 2
    snippets = []
    for span in fuzzy_search.merge_overlapping_matches(spans)[:max_snippets]:
        start = max(0, span.start - half)
        end = min(len(text), span.end + half)
        snippet = (
            (ELLIPSIS if start > 0 else "")
            + html.escape(text[start:span.start])
            + _wrap(text[span.start:span.end], open_tag, close_tag)
            + html.escape(text[span.end:end])
            + (ELLIPSIS if end < len(text) else "")
        )
        snippets.append(snippet)

    return HighlightedText(SNIPPET_SEPARATOR.join(snippets), True)


def render_highlight(
    query: str,
    text: str,
    max_length: int = 500,
    show_snippets: bool = False,
    snippet_length: int = 100,
    max_snippets: int = 3,
) -> HighlightedText:
    """Highlight ``query`` inside ``text`` in one call."""
    if not query or not query.strip() or not text:
        return HighlightedText(html.escape(_truncate(text or "", max_length)), False)

    spans = fuzzy_search.generate_highlight(query, text)
    if show_snippets:
        return generate_snippets(text, spans, snippet_length, max_snippets)
    return highlight_text(text, spans, max_length)


def multi_query_highlight(queries: Iterable[str], text: str, max_length: int = 500) -> HighlightedText:
    """Highlight several queries at once; their spans are merged together."""
    spans: List[MatchSpan] = []
    for query in queries:
        if query and query.strip():
            spans.extend(fuzzy_search.generate_highlight(query, text))
    return highlight_text(text, spans, max_length)


def matching_tags(query: str, tags: Iterable[str], threshold: float = 0.7) -> List[str]:
    """Tags that contain or fuzzily match the query, in their original order."""
    normalized_query = normalize_for_search(query or "")
    if not normalized_query:
        return []

    matches = []
    for tag in tags:
        normalized_tag = normalize_for_search(tag)
        if normalized_query in normalized_tag or fuzzy_search.partial_match(
            normalized_query, normalized_tag, threshold=threshold
        ).matched:
            matches.append(tag)
    return matches
