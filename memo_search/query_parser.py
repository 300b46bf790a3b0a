"""Parser for compound search-box queries.

Supported syntax::

    tag:AI category:技術 "exact phrase" python AND django NOT flask

The query is first split into tokens, then folded into a ``ParsedQuery``.
A token is classified in this order: ``field:value`` clause, boolean
operator keyword, plain term. Quoted phrases are atomic, so keywords and
field prefixes inside quotes are ordinary text.
"""
import re
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional

from memo_search.models import FieldClause, OperatorType, ParsedQuery, QueryOperator


FIELD_NAMES = ("tag", "category", "title", "content")

OPERATOR_ALIASES: Dict[str, OperatorType] = {
    "AND": OperatorType.AND,
    "かつ": OperatorType.AND,
    "＋": OperatorType.AND,
    "OR": OperatorType.OR,
    "または": OperatorType.OR,
    "｜": OperatorType.OR,
    "NOT": OperatorType.NOT,
    "除く": OperatorType.NOT,
    "－": OperatorType.NOT,
}

_FIELD_PATTERN = re.compile(r"^(%s):(\S+)$" % "|".join(FIELD_NAMES))


class TokenKind(Enum):
    FIELD = "field"
    OPERATOR = "operator"
    PHRASE = "phrase"
    TERM = "term"


@dataclass(frozen=True)
class Token:
    kind: TokenKind
    text: str
    position: int
    field: Optional[str] = None
    value: Optional[str] = None
    operator: Optional[OperatorType] = None


def _classify_word(word: str, position: int) -> Token:
    field_match = _FIELD_PATTERN.match(word)
    if field_match:
        return Token(
            TokenKind.FIELD,
            word,
            position,
            field=field_match.group(1),
            value=field_match.group(2),
        )

    operator = OPERATOR_ALIASES.get(word.upper())
    if operator is not None:
        return Token(TokenKind.OPERATOR, word, position, operator=operator)

    return Token(TokenKind.TERM, word, position)


def tokenize(query: str) -> List[Token]:
    """Split a raw query into field, operator, phrase and term tokens.

    Positions are character offsets into ``query``.
    """
    tokens: List[Token] = []
    index = 0
    length = len(query)

    while index < length:
        char = query[index]
        if char.isspace():
            index += 1
            continue

        if char == '"':
            closing = query.find('"', index + 1)
            if closing > index + 1:
                phrase = query[index + 1:closing]
                if phrase.strip():
                    tokens.append(Token(TokenKind.PHRASE, phrase, index))
                index = closing + 1
                continue
            # Unterminated or empty quotes are read as an ordinary word.

        start = index
        while index < length and not query[index].isspace():
            index += 1
        tokens.append(_classify_word(query[start:index], start))

    return tokens


def parse_complex_query(query: str) -> ParsedQuery:
    """Parse a search-box query into its structured form."""
    free_terms: List[str] = []
    quoted_phrases: List[str] = []
    field_clauses: List[FieldClause] = []
    operators: List[QueryOperator] = []
    tags: List[str] = []
    categories: List[str] = []

    for token in tokenize(query or ""):
        if token.kind is TokenKind.FIELD:
            field_clauses.append(FieldClause(token.field, token.value))
            if token.field == "tag":
                tags.append(token.value)
            elif token.field == "category":
                categories.append(token.value)
        elif token.kind is TokenKind.OPERATOR:
            operators.append(QueryOperator(token.operator, token.position))
        elif token.kind is TokenKind.PHRASE:
            quoted_phrases.append(token.text)
        else:
            free_terms.append(token.text)

    return ParsedQuery(
        free_terms=tuple(free_terms),
        quoted_phrases=tuple(quoted_phrases),
        field_clauses=tuple(field_clauses),
        operators=tuple(operators),
        tags=tuple(tags),
        categories=tuple(categories),
    )
