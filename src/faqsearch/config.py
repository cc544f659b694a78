"""
Runtime configuration for FAQ search and indexing.

Settings are read from environment variables so the same values reach the
CLI, the indexer daemon, and uvicorn worker processes. Explicit keyword
arguments to Settings.from_env() override the environment.

Example:
    settings = Settings.from_env()
    settings = Settings.from_env(db_path="tmp/faq.db", enable_semantic_search=False)
"""

import logging
import os
from dataclasses import dataclass, field, fields, replace
from typing import Optional

logger = logging.getLogger(__name__)

OPENAI_DEFAULT_MODEL = "text-embedding-3-small"
OPENAI_DEFAULT_DIMENSION = 1536
LOCAL_DEFAULT_MODEL = "all-MiniLM-L6-v2"
LOCAL_DEFAULT_DIMENSION = 384

_TRUE_VALUES = {"1", "true", "yes", "on"}


def env_flag(name: str, default: bool) -> bool:
    """Parse a boolean environment variable (1/true/yes/on)."""
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in _TRUE_VALUES


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning(f"Ignoring invalid {name}={raw!r}, using {default}")
        return default


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"Ignoring invalid {name}={raw!r}, using {default}")
        return default


@dataclass
class Settings:
    """
    All tunables for the corpus store, embedding provider, vector index,
    query engine and API.

    Attributes:
        db_path: SQLite file holding FAQ entries, query logs and caches
        index_dir: Directory for the persisted vector index
        runs_dir: Directory for per-run indexer progress/results/errors
        enable_semantic_search: Default for use_semantic_search on queries
        fallback_to_keyword: Whether the keyword path may serve queries
        min_score: Default similarity threshold for semantic candidates
        embedding_provider: 'openai' (HTTP API) or 'local' (sentence-transformers)
        embedding_model: Model tag stored alongside every vector
        embedding_dimension: Vector length D
        api_key: Bearer token for the HTTP embedding provider
        api_base_url: OpenAI-compatible API root
        embedding_timeout: Seconds per provider request
        embedding_max_retries: Provider attempts per call on the indexer path
        cors_origins: Allowed CORS origins for the HTTP API
        rate_limit_rpm: Per-IP request budget for the HTTP API (0 disables)
        trusted_proxies: Peer addresses whose X-Forwarded-For header is honoured
    """

    db_path: str = "data/faq.db"
    index_dir: str = "data/vector_index"
    runs_dir: str = "data/indexing_runs"
    enable_semantic_search: bool = True
    fallback_to_keyword: bool = True
    min_score: float = 0.7
    embedding_provider: str = "local"
    embedding_model: str = LOCAL_DEFAULT_MODEL
    embedding_dimension: int = LOCAL_DEFAULT_DIMENSION
    api_key: Optional[str] = None
    api_base_url: str = "https://api.openai.com/v1"
    embedding_timeout: float = 30.0
    embedding_max_retries: int = 3
    cors_origins: list[str] = field(
        default_factory=lambda: ["http://localhost:3000", "http://localhost:5173"]
    )
    rate_limit_rpm: int = 100
    trusted_proxies: frozenset[str] = frozenset()

    @classmethod
    def from_env(cls, **overrides) -> "Settings":
        """
        Build settings from environment variables.

        Args:
            **overrides: Field values that take precedence over the environment

        Returns:
            Populated Settings instance
        """
        api_key = os.environ.get("OPENAI_API_KEY") or None
        provider = os.environ.get(
            "EMBEDDING_PROVIDER", "openai" if api_key else "local"
        ).strip().lower()

        if provider == "openai":
            default_model, default_dim = OPENAI_DEFAULT_MODEL, OPENAI_DEFAULT_DIMENSION
        else:
            default_model, default_dim = LOCAL_DEFAULT_MODEL, LOCAL_DEFAULT_DIMENSION

        settings = cls(
            db_path=os.environ.get("FAQ_DB_PATH", cls.db_path),
            index_dir=os.environ.get("FAQ_INDEX_DIR", cls.index_dir),
            runs_dir=os.environ.get("FAQ_RUNS_DIR", cls.runs_dir),
            enable_semantic_search=env_flag("ENABLE_SEMANTIC_SEARCH", True),
            fallback_to_keyword=env_flag("FALLBACK_TO_KEYWORD_SEARCH", True),
            min_score=_env_float("SEMANTIC_SEARCH_MIN_SCORE", 0.7),
            embedding_provider=provider,
            embedding_model=os.environ.get("EMBEDDING_MODEL", default_model),
            embedding_dimension=_env_int("EMBEDDING_DIMENSION", default_dim),
            api_key=api_key,
            api_base_url=os.environ.get("EMBEDDING_API_BASE_URL", cls.api_base_url),
            embedding_timeout=_env_float("EMBEDDING_TIMEOUT", 30.0),
            embedding_max_retries=_env_int("EMBEDDING_MAX_RETRIES", 3),
            rate_limit_rpm=_env_int("FAQ_RATE_LIMIT_RPM", 100),
        )

        env_origins = os.environ.get("FAQ_CORS_ORIGINS")
        if env_origins:
            settings.cors_origins = [
                o.strip() for o in env_origins.split(",") if o.strip()
            ]

        env_proxies = os.environ.get("FAQ_TRUSTED_PROXIES")
        if env_proxies:
            settings.trusted_proxies = frozenset(
                p.strip() for p in env_proxies.split(",") if p.strip()
            )

        known = {f.name for f in fields(cls)}
        unknown = set(overrides) - known
        if unknown:
            raise TypeError(f"Unknown settings: {', '.join(sorted(unknown))}")

        return replace(settings, **{k: v for k, v in overrides.items() if v is not None})
