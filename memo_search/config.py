"""Configuration for the memo search server."""
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from memo_search.models import SearchMode, SuggestionSort


def _env_bool(name: str, default: str) -> bool:
    return os.environ.get(name, default).strip().lower() in ("1", "true", "yes", "on")


@dataclass
class SearchConfig:
    """Defaults for ranked text search."""
    fuzzy_threshold: float = 0.7
    use_fuzzy_search: bool = False
    search_mode: SearchMode = SearchMode.HYBRID
    max_results: int = 20

    @classmethod
    def from_env(cls) -> "SearchConfig":
        """Create config from environment variables."""
        return cls(
            fuzzy_threshold=float(os.environ.get("MEMO_SEARCH_FUZZY_THRESHOLD", "0.7")),
            use_fuzzy_search=_env_bool("MEMO_SEARCH_USE_FUZZY", "false"),
            search_mode=SearchMode(os.environ.get("MEMO_SEARCH_MODE", "hybrid")),
            max_results=int(os.environ.get("MEMO_SEARCH_MAX_RESULTS", "20")),
        )


@dataclass
class SuggestionConfig:
    """Limits and ordering for autocomplete suggestions."""
    max_history_suggestions: int = 5
    max_tag_suggestions: int = 8
    max_content_suggestions: int = 5
    max_category_suggestions: int = 3
    max_keyword_suggestions: int = 8
    fuzzy_threshold: float = 0.6
    sort_by: SuggestionSort = SuggestionSort.SCORE

    @classmethod
    def from_env(cls) -> "SuggestionConfig":
        """Create config from environment variables."""
        return cls(
            fuzzy_threshold=float(os.environ.get("MEMO_SEARCH_SUGGEST_THRESHOLD", "0.6")),
            sort_by=SuggestionSort(os.environ.get("MEMO_SEARCH_SUGGEST_SORT", "score")),
        )


@dataclass
class AIConfig:
    """Configuration for the embedding / analysis API."""
    api_key: Optional[str] = None
    base_url: str = "https://api.openai.com/v1"
    embedding_model: str = "text-embedding-3-small"
    chat_model: str = "gpt-4o-mini"
    request_timeout: float = 30.0  # Seconds

    @classmethod
    def from_env(cls) -> "AIConfig":
        """Create config from environment variables."""
        return cls(
            api_key=os.environ.get("OPENAI_API_KEY") or None,
            base_url=os.environ.get("MEMO_SEARCH_AI_BASE_URL", "https://api.openai.com/v1"),
            embedding_model=os.environ.get("MEMO_SEARCH_EMBEDDING_MODEL", "text-embedding-3-small"),
            chat_model=os.environ.get("MEMO_SEARCH_CHAT_MODEL", "gpt-4o-mini"),
            request_timeout=float(os.environ.get("MEMO_SEARCH_AI_TIMEOUT", "30.0")),
        )


@dataclass
class Config:
    """Main configuration for the memo search server."""
    search: SearchConfig = field(default_factory=SearchConfig.from_env)
    suggestions: SuggestionConfig = field(default_factory=SuggestionConfig.from_env)
    ai: AIConfig = field(default_factory=AIConfig.from_env)
    db_path: Optional[Path] = None  # None = use default
    user_id: str = "local"

    @classmethod
    def from_env(cls) -> "Config":
        """Create config from environment variables."""
        db_path_str = os.environ.get("MEMO_SEARCH_DB")
        db_path = Path(db_path_str) if db_path_str else None

        return cls(
            search=SearchConfig.from_env(),
            suggestions=SuggestionConfig.from_env(),
            ai=AIConfig.from_env(),
            db_path=db_path,
            user_id=os.environ.get("MEMO_SEARCH_USER_ID", "local"),
        )


# Global config instance
_config: Optional[Config] = None


def get_config() -> Config:
    """Get the global config instance.

    Returns:
        Config loaded from environment
    """
    global _config

    if _config is None:
        _config = Config.from_env()

    return _config
