"""
Configuration dataclasses for the retrieval engine.

Every value has a default and can be overridden from the environment
through Settings.from_env(). Validation runs in __post_init__ so an
invalid setup fails at startup with a ConfigError.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional
import os

from ragflow.domain.errors import ConfigError


def _env_str(name: str, default: str) -> str:
    return os.getenv(name, default)


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError as error:
        raise ConfigError(f"{name} must be an integer, got '{raw}'") from error


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError as error:
        raise ConfigError(f"{name} must be a number, got '{raw}'") from error


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


@dataclass
class ChunkingConfig:
    """Configuration for fixed-size character windows."""

    chunk_size: int = 800  # characters per window
    chunk_overlap: int = 120  # characters shared by consecutive windows

    def __post_init__(self):
        if self.chunk_size <= 0:
            raise ConfigError("chunk_size must be positive")
        if self.chunk_overlap < 0:
            raise ConfigError("chunk_overlap must not be negative")
        if self.chunk_overlap >= self.chunk_size:
            raise ConfigError(
                f"chunk_overlap ({self.chunk_overlap}) must be less than "
                f"chunk_size ({self.chunk_size})"
            )

    @property
    def step(self) -> int:
        return self.chunk_size - self.chunk_overlap


@dataclass
class VectorIndexConfig:
    """Configuration for the in-memory vector index and its on-disk artifacts."""

    storage_dir: Path = field(default_factory=lambda: Path("data/index"))
    embedding_dimension: int = 384  # all-MiniLM-L6-v2

    def __post_init__(self):
        self.storage_dir = Path(self.storage_dir)
        if self.embedding_dimension <= 0:
            raise ConfigError("embedding_dimension must be positive")


@dataclass
class EmbeddingConfig:
    provider: str = "sentence-transformers"  # or "hash"
    model_name: str = "all-MiniLM-L6-v2"
    batch_size: int = 32

    def __post_init__(self):
        if self.provider not in {"sentence-transformers", "hash"}:
            raise ConfigError(f"Unknown embedding provider: '{self.provider}'")


@dataclass
class RetrievalConfig:
    """Configuration for retrieval, context assembly and fallback."""

    top_k: int = 5
    score_threshold: float = 0.5
    max_context_chars: int = 4000
    default_collection: str = "default"
    web_search_fallback_enabled: bool = False
    web_search_max_results: int = 5
    stream_buffer_size: int = 64  # bounded token channel per streamed answer

    def __post_init__(self):
        if self.top_k <= 0:
            raise ConfigError("top_k must be positive")
        if not 0.0 <= self.score_threshold <= 1.0:
            raise ConfigError("score_threshold must be within [0, 1]")
        if self.max_context_chars <= 0:
            raise ConfigError("max_context_chars must be positive")
        if self.stream_buffer_size <= 0:
            raise ConfigError("stream_buffer_size must be positive")


@dataclass
class LLMConfig:
    provider: str = "mock"  # or "openai"
    model: str = "gpt-4o-mini"
    base_url: Optional[str] = None
    temperature: float = 0.7
    timeout_seconds: float = 60.0
    api_key_env_var: str = "OPENAI_API_KEY"

    def __post_init__(self):
        if self.provider not in {"mock", "openai"}:
            raise ConfigError(f"Unknown LLM provider: '{self.provider}'")

    @property
    def api_key(self) -> str:
        key = os.getenv(self.api_key_env_var)
        if not key:
            raise ConfigError(
                f"LLM API key not found in environment variable: {self.api_key_env_var}"
            )
        return key


@dataclass
class WebSearchConfig:
    enabled: bool = False
    provider: str = "brave"  # brave | serpapi | generic
    api_url: str = ""
    timeout_seconds: float = 10.0
    api_key_env_var: str = "RAGFLOW_WEBSEARCH_API_KEY"

    def __post_init__(self):
        if self.provider.lower() not in {"brave", "serpapi", "generic"}:
            raise ConfigError(f"Unknown web search provider: '{self.provider}'")

    @property
    def api_key(self) -> str:
        return os.getenv(self.api_key_env_var, "")


@dataclass
class Settings:
    chunking: ChunkingConfig = field(default_factory=ChunkingConfig)
    index: VectorIndexConfig = field(default_factory=VectorIndexConfig)
    embedding: EmbeddingConfig = field(default_factory=EmbeddingConfig)
    retrieval: RetrievalConfig = field(default_factory=RetrievalConfig)
    llm: LLMConfig = field(default_factory=LLMConfig)
    web_search: WebSearchConfig = field(default_factory=WebSearchConfig)

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            chunking=ChunkingConfig(
                chunk_size=_env_int("RAGFLOW_CHUNK_SIZE", 800),
                chunk_overlap=_env_int("RAGFLOW_CHUNK_OVERLAP", 120),
            ),
            index=VectorIndexConfig(
                storage_dir=Path(_env_str("RAGFLOW_INDEX_DIR", "data/index")),
                embedding_dimension=_env_int("RAGFLOW_EMBEDDING_DIMENSION", 384),
            ),
            embedding=EmbeddingConfig(
                provider=_env_str("RAGFLOW_EMBEDDING_PROVIDER", "sentence-transformers"),
                model_name=_env_str("RAGFLOW_EMBEDDING_MODEL", "all-MiniLM-L6-v2"),
            ),
            retrieval=RetrievalConfig(
                top_k=_env_int("RAGFLOW_TOP_K", 5),
                score_threshold=_env_float("RAGFLOW_SCORE_THRESHOLD", 0.5),
                max_context_chars=_env_int("RAGFLOW_MAX_CONTEXT_CHARS", 4000),
                default_collection=_env_str("RAGFLOW_DEFAULT_COLLECTION", "default"),
                web_search_fallback_enabled=_env_bool("RAGFLOW_WEB_FALLBACK", False),
            ),
            llm=LLMConfig(
                provider=_env_str("RAGFLOW_LLM_PROVIDER", "mock"),
                model=_env_str("RAGFLOW_LLM_MODEL", "gpt-4o-mini"),
                base_url=os.getenv("RAGFLOW_LLM_BASE_URL") or None,
                temperature=_env_float("RAGFLOW_LLM_TEMPERATURE", 0.7),
            ),
            web_search=WebSearchConfig(
                enabled=_env_bool("RAGFLOW_WEBSEARCH_ENABLED", False),
                provider=_env_str("RAGFLOW_WEBSEARCH_PROVIDER", "brave"),
                api_url=_env_str("RAGFLOW_WEBSEARCH_API_URL", ""),
            ),
        )
