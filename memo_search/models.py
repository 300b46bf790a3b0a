"""Data model shared by the search, suggestion and storage modules."""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class SearchMode(str, Enum):
    """How per-field scores are aggregated into a record score."""
    EXACT = "exact"
    PARTIAL = "partial"
    FUZZY = "fuzzy"
    HYBRID = "hybrid"


class SearchType(str, Enum):
    """Which retrieval path produced a result."""
    TEXT = "text"
    SEMANTIC = "semantic"
    FUZZY = "fuzzy"
    HYBRID = "hybrid"


class TagMatchMode(str, Enum):
    ANY = "any"
    ALL = "all"
    EXACT = "exact"


class OperatorType(str, Enum):
    AND = "AND"
    OR = "OR"
    NOT = "NOT"


class SuggestionType(str, Enum):
    HISTORY = "history"
    TAG = "tag"
    CONTENT = "content"
    CATEGORY = "category"
    KEYWORD = "keyword"


class SuggestionSort(str, Enum):
    SCORE = "score"
    FREQUENCY = "frequency"
    ALPHABETICAL = "alphabetical"
    RECENT = "recent"


def _as_list(value: Any) -> List[str]:
    if not value:
        return []
    if isinstance(value, str):
        return [value]
    return [str(v) for v in value]


@dataclass
class SearchableRecord:
    """A memo as seen by the search engine.

    Text fields are stored as written by the user or the AI pipeline; the
    engine normalizes them on every comparison.
    """
    id: str
    content: str
    tags: List[str] = field(default_factory=list)
    category: Optional[str] = None
    summary: Optional[str] = None
    keywords: List[str] = field(default_factory=list)
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    view_count: int = 0

    @property
    def title(self) -> str:
        """First non-empty line of the content."""
        for line in (self.content or "").splitlines():
            if line.strip():
                return line.strip()
        return ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SearchableRecord":
        """Build a record from a store row or a JSON object."""
        return cls(
            id=str(data.get("id", "")),
            content=data.get("content") or "",
            tags=_as_list(data.get("tags")),
            category=data.get("category") or None,
            summary=data.get("summary") or None,
            keywords=_as_list(data.get("keywords")),
            created_at=data.get("created_at"),
            updated_at=data.get("updated_at"),
            view_count=int(data.get("view_count") or 0),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "content": self.content,
            "tags": list(self.tags),
            "category": self.category,
            "summary": self.summary,
            "keywords": list(self.keywords),
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "view_count": self.view_count,
        }


@dataclass
class MatchSpan:
    """Half-open character range ``[start, end)`` in the original text."""
    start: int
    end: int
    score: float

    def overlaps(self, start: int, end: int) -> bool:
        return start < self.end and end > self.start

    def to_dict(self) -> Dict[str, Any]:
        return {"start": self.start, "end": self.end, "score": self.score}


@dataclass
class FuzzyMatchResult:
    matched_text: str
    score: float
    edit_distance: float
    matched: bool


@dataclass
class FieldHighlight:
    field: str
    positions: List[MatchSpan] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"field": self.field, "positions": [p.to_dict() for p in self.positions]}


@dataclass(frozen=True)
class FieldClause:
    field: str
    value: str


@dataclass(frozen=True)
class QueryOperator:
    type: OperatorType
    position: int


@dataclass(frozen=True)
class ParsedQuery:
    """Structured form of a compound query string.

    Built once per search call by ``parse_complex_query``.
    """
    free_terms: Tuple[str, ...] = ()
    quoted_phrases: Tuple[str, ...] = ()
    field_clauses: Tuple[FieldClause, ...] = ()
    operators: Tuple[QueryOperator, ...] = ()
    tags: Tuple[str, ...] = ()
    categories: Tuple[str, ...] = ()

    @property
    def terms(self) -> List[str]:
        """Quoted phrases followed by free terms."""
        return list(self.quoted_phrases) + list(self.free_terms)

    @property
    def is_simple(self) -> bool:
        return not self.operators and not self.field_clauses


@dataclass
class SearchResult:
    record: SearchableRecord
    rank_score: float = 0.0
    matched_fields: List[str] = field(default_factory=list)
    highlights: List[FieldHighlight] = field(default_factory=list)
    search_type: SearchType = SearchType.TEXT
    fuzzy_score: float = 0.0
    similarity: Optional[float] = None

    @property
    def id(self) -> str:
        return self.record.id

    def to_dict(self) -> Dict[str, Any]:
        result = self.record.to_dict()
        result.update({
            "rank_score": round(self.rank_score, 4),
            "matched_fields": list(self.matched_fields),
            "highlights": [h.to_dict() for h in self.highlights],
            "search_type": self.search_type.value,
            "fuzzy_score": round(self.fuzzy_score, 4),
        })
        if self.similarity is not None:
            result["similarity"] = round(self.similarity, 4)
        return result


@dataclass
class SearchHistoryEntry:
    query: str
    executed_at: datetime
    search_type: str = "text"
    result_count: int = 0
    execution_time: float = 0.0  # Milliseconds
    id: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "query": self.query,
            "executed_at": self.executed_at.isoformat(),
            "search_type": self.search_type,
            "result_count": self.result_count,
            "execution_time": round(self.execution_time, 2),
        }


@dataclass
class SuggestionMetadata:
    original_text: Optional[str] = None
    memo_id: Optional[str] = None
    category: Optional[str] = None
    frequency: Optional[int] = None
    last_used: Optional[datetime] = None


@dataclass
class SearchSuggestion:
    id: str
    type: SuggestionType
    text: str
    score: float
    description: Optional[str] = None
    metadata: SuggestionMetadata = field(default_factory=SuggestionMetadata)

    def to_dict(self) -> Dict[str, Any]:
        last_used = self.metadata.last_used
        return {
            "id": self.id,
            "type": self.type.value,
            "text": self.text,
            "description": self.description,
            "score": round(self.score, 4),
            "frequency": self.metadata.frequency,
            "memo_id": self.metadata.memo_id,
            "last_used": last_used.isoformat() if last_used else None,
        }
