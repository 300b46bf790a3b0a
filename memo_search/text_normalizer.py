"""Japanese-aware text normalization.

Canonicalizes case, character width, kana script and symbols so that
superficially different spellings of the same text compare equal. All
functions are pure and return ``""`` for empty input.
"""
import re
from dataclasses import dataclass
from typing import Dict, List, Optional


HIRAGANA_START = 0x3041
HIRAGANA_END = 0x3096
KATAKANA_START = 0x30A1
KATAKANA_END = 0x30F6
KATAKANA_OFFSET = 0x60

_TO_KATAKANA = {cp: cp + KATAKANA_OFFSET for cp in range(HIRAGANA_START, HIRAGANA_END + 1)}
_TO_HIRAGANA = {cp: cp - KATAKANA_OFFSET for cp in range(KATAKANA_START, KATAKANA_END + 1)}


def _build_fullwidth_map() -> Dict[str, str]:
    mapping = {}
    for offset in range(10):
        mapping[chr(0xFF10 + offset)] = chr(ord("0") + offset)
    for offset in range(26):
        mapping[chr(0xFF21 + offset)] = chr(ord("A") + offset)
        mapping[chr(0xFF41 + offset)] = chr(ord("a") + offset)
    mapping.update({
        "！": "!", "？": "?", "　": " ", "，": ",", "．": ".", "：": ":",
        "；": ";", "（": "(", "）": ")", "「": '"', "」": '"', "『": '"',
        "』": '"', "【": "[", "】": "]", "〈": "<", "〉": ">", "｛": "{",
        "｝": "}", "＋": "+", "－": "-", "＝": "=", "＊": "*", "／": "/",
        "＼": "\\", "｜": "|", "＿": "_", "＠": "@", "＃": "#", "＄": "$",
        "％": "%", "＆": "&", "＾": "^", "～": "~", "｀": "`",
    })
    return mapping


FULLWIDTH_CHAR_MAP = _build_fullwidth_map()
# Several fullwidth brackets fold to '"'; the reverse table keeps the last one.
HALFWIDTH_CHAR_MAP = {half: full for full, half in FULLWIDTH_CHAR_MAP.items()}

_FULLWIDTH_TABLE = str.maketrans(FULLWIDTH_CHAR_MAP)
_HALFWIDTH_TABLE = str.maketrans(HALFWIDTH_CHAR_MAP)

_SYMBOL_TABLE = str.maketrans({
    "！": "!", "？": "?", "，": ",", "．": ".", "：": ":", "；": ";",
    "（": "(", "）": ")", "「": '"', "」": '"', "『": '"', "』": '"',
    "【": "[", "】": "]", "〈": "<", "〉": ">",
})

_SYMBOL_PATTERN = re.compile(r"[^\w\s\u3040-\u309F\u30A0-\u30FF\u4E00-\u9FAF]")
_WHITESPACE_PATTERN = re.compile(r"\s+")


@dataclass(frozen=True)
class NormalizationOptions:
    """Step toggles for ``normalize``. Every step is off by default."""
    lower_case: bool = False
    upper_case: bool = False
    fullwidth_to_halfwidth: bool = False
    halfwidth_to_fullwidth: bool = False
    unify_width: bool = False
    hiragana_to_katakana: bool = False
    katakana_to_hiragana: bool = False
    unify_kana: bool = False
    normalize_symbols: bool = False
    remove_symbols: bool = False


SEARCH_OPTIONS = NormalizationOptions(
    lower_case=True,
    unify_width=True,
    unify_kana=True,
    remove_symbols=True,
)

PARTIAL_MATCH_OPTIONS = NormalizationOptions(
    lower_case=True,
    unify_width=True,
    unify_kana=True,
)


def to_katakana(text: str) -> str:
    """Convert Hiragana to Katakana."""
    return text.translate(_TO_KATAKANA)


def to_hiragana(text: str) -> str:
    """Convert Katakana to Hiragana."""
    return text.translate(_TO_HIRAGANA)


def fullwidth_to_halfwidth(text: str) -> str:
    return text.translate(_FULLWIDTH_TABLE)


def halfwidth_to_fullwidth(text: str) -> str:
    return text.translate(_HALFWIDTH_TABLE)


def remove_symbols(text: str) -> str:
    """Replace anything that is not a word character, whitespace or kana/kanji with a space."""
    return _SYMBOL_PATTERN.sub(" ", text)


def normalize_symbols(text: str) -> str:
    """Map fullwidth punctuation to its ASCII counterpart."""
    return text.translate(_SYMBOL_TABLE)


def normalize_case(text: str, options: NormalizationOptions) -> str:
    if options.lower_case:
        text = text.casefold()
    if options.upper_case:
        text = text.upper()
    return text


def normalize_width(text: str, options: NormalizationOptions) -> str:
    if options.fullwidth_to_halfwidth or options.unify_width:
        text = fullwidth_to_halfwidth(text)
    if options.halfwidth_to_fullwidth:
        text = halfwidth_to_fullwidth(text)
    return text


def normalize_kana(text: str, options: NormalizationOptions) -> str:
    if options.hiragana_to_katakana:
        text = to_katakana(text)
    if options.katakana_to_hiragana or options.unify_kana:
        text = to_hiragana(text)
    return text


def normalize_symbol_chars(text: str, options: NormalizationOptions) -> str:
    if options.normalize_symbols:
        text = normalize_symbols(text)
    if options.remove_symbols:
        text = remove_symbols(text)
    return text


def normalize(text: str, options: Optional[NormalizationOptions] = None) -> str:
    """Apply case, width, kana and symbol steps in that order, then collapse whitespace.

    Width folding runs before kana unification so that the kana step only
    ever sees the standard Hiragana/Katakana blocks.
    """
    if not text:
        return ""
    options = options or NormalizationOptions()

    result = normalize_case(text, options)
    result = normalize_width(result, options)
    result = normalize_kana(result, options)
    result = normalize_symbol_chars(result, options)

    return _WHITESPACE_PATTERN.sub(" ", result).strip()


def normalize_for_search(text: str) -> str:
    """Default comparison form: lowercase, halfwidth, Hiragana, no symbols."""
    return normalize(text, SEARCH_OPTIONS)


def normalize_for_partial_match(text: str) -> str:
    """Like ``normalize_for_search`` but symbols survive as word boundaries."""
    return normalize(text, PARTIAL_MATCH_OPTIONS)


def is_normalized_match(text1: str, text2: str, options: Optional[NormalizationOptions] = None) -> bool:
    options = options or SEARCH_OPTIONS
    return normalize(text1, options) == normalize(text2, options)


def generate_variations(text: str) -> List[str]:
    """Return the distinct spellings of ``text`` across script, case and width.

    Order is stable: original, search form, Katakana, Hiragana, lower,
    upper, halfwidth, fullwidth.
    """
    variations = [
        text,
        normalize_for_search(text),
        to_katakana(text),
        to_hiragana(text),
        text.lower(),
        text.upper(),
        fullwidth_to_halfwidth(text),
        halfwidth_to_fullwidth(text),
    ]
    return list(dict.fromkeys(variations))
