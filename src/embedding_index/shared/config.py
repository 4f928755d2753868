"""
Configuration Module - Load and validate application settings.
==============================================================

Loads configuration from:
1. config/settings.yaml (defaults, index definitions)
2. Environment variables from .env file
3. Environment variables from system

Credentials (API keys, database URL) come from the environment only.
Settings are immutable once built and are passed explicitly to the
Index Manager; get_settings() caches one instance for the CLI process.
"""

import re
from functools import lru_cache
from pathlib import Path
from typing import Any, Iterable, Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from embedding_index.shared.errors import ConfigurationError, ValidationError
from embedding_index.shared.schemas import EmbedderKind, SourceKind, StoreBackend

# Load .env file early
load_dotenv()


def _find_project_root() -> Path:
    """Find the project root directory by looking for pyproject.toml."""
    current = Path(__file__).resolve()
    for parent in [current] + list(current.parents):
        if (parent / "pyproject.toml").exists():
            return parent
    return Path.cwd()


PROJECT_ROOT = _find_project_root()
CONFIG_DIR = PROJECT_ROOT / "config"
DEFAULT_CONFIG_FILE = CONFIG_DIR / "settings.yaml"

_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def _check_identifier(value: str, what: str) -> str:
    if not _IDENTIFIER_RE.match(value):
        raise ValueError(f"Invalid {what} '{value}': must match {_IDENTIFIER_RE.pattern}")
    return value


# ─────────────────────────────────────────────────────────────────────────────
# Index Definitions
# ─────────────────────────────────────────────────────────────────────────────


class SourceConfig(BaseModel):
    """Where and how an index reads its EmbeddableRecords."""

    model_config = ConfigDict(frozen=True)

    kind: SourceKind = SourceKind.POSTGRES
    table: Optional[str] = None
    id_column: str = "id"
    text_column: str = "description"
    display_columns: tuple[str, ...] = ()
    path: Optional[str] = None

    @field_validator("table", "id_column", "text_column")
    @classmethod
    def validate_identifier(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        return _check_identifier(v, "column/table name")

    @field_validator("display_columns")
    @classmethod
    def validate_display_columns(cls, v: tuple[str, ...]) -> tuple[str, ...]:
        return tuple(_check_identifier(c, "display column") for c in v)

    @model_validator(mode="after")
    def check_location(self) -> "SourceConfig":
        if self.kind == SourceKind.POSTGRES and not self.table:
            raise ValueError("postgres sources require 'table'")
        if self.kind == SourceKind.JSONL and not self.path:
            raise ValueError("jsonl sources require 'path'")
        return self


class IndexConfig(BaseModel):
    """
    A named index: its source, target table and the embedders it carries.

    `embedders` maps each embedder kind to the dimension of its vector
    column. Dimension is part of the table schema, not negotiated at
    runtime.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    description: str = ""
    source: SourceConfig
    embedding_table: Optional[str] = None
    embedders: dict[EmbedderKind, int]
    default_embedder: Optional[EmbedderKind] = None
    max_text_chars: Optional[int] = Field(default=None, gt=0)
    default_top_k: Optional[int] = Field(default=None, ge=1)

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        return _check_identifier(v, "index name")

    @field_validator("embedding_table")
    @classmethod
    def validate_table(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        return _check_identifier(v, "embedding table")

    @field_validator("embedders")
    @classmethod
    def validate_embedders(cls, v: dict[EmbedderKind, int]) -> dict[EmbedderKind, int]:
        if not v:
            raise ValueError("an index needs at least one embedder")
        for kind, dims in v.items():
            if dims <= 0:
                raise ValueError(f"dimension for {kind.value} must be positive")
        return v

    @model_validator(mode="after")
    def check_default_embedder(self) -> "IndexConfig":
        if self.default_embedder is not None and self.default_embedder not in self.embedders:
            raise ValueError(
                f"default_embedder '{self.default_embedder.value}' is not declared "
                f"for index '{self.name}'"
            )
        return self

    @property
    def table_name(self) -> str:
        return self.embedding_table or f"{self.name}_embeddings"

    @property
    def primary_embedder(self) -> EmbedderKind:
        return self.default_embedder or next(iter(self.embedders))

    def dimensions_for(self, kind: EmbedderKind) -> int:
        """Get the declared column dimension for an embedder."""
        if kind not in self.embedders:
            declared = ", ".join(k.value for k in self.embedders)
            raise ValidationError(
                f"Embedder '{kind.value}' is not configured for index '{self.name}' "
                f"(declared: {declared})"
            )
        return self.embedders[kind]


# ─────────────────────────────────────────────────────────────────────────────
# Provider / Backend Configuration Models
# ─────────────────────────────────────────────────────────────────────────────


class GeminiEmbeddingConfig(BaseModel):
    """Gemini embeddings settings."""

    model_name: str = "text-embedding-004"
    dimensions: int = 768
    task_type: str = "RETRIEVAL_DOCUMENT"
    query_task_type: str = "RETRIEVAL_QUERY"


class OpenAIEmbeddingConfig(BaseModel):
    """OpenAI embeddings settings."""

    model_name: str = "text-embedding-3-small"
    dimensions: int = 1536
    base_url: Optional[str] = None


class OllamaEmbeddingConfig(BaseModel):
    """Ollama embeddings settings."""

    model_name: str = "mxbai-embed-large"
    dimensions: int = 1024
    base_url: str = "http://localhost:11434"


class SBERTConfig(BaseModel):
    """SBERT embeddings settings."""

    model_name: str = "all-MiniLM-L6-v2"
    dimensions: int = 384
    device: str = "auto"
    normalize: bool = True
    query_prefix: str = ""
    document_prefix: str = ""


class EmbeddingsConfig(BaseModel):
    """Embedder adapters and their shared retry policy."""

    timeout: float = 30.0
    max_retries: int = 3
    retry_min_wait: float = 1.0
    retry_max_wait: float = 10.0
    gemini: GeminiEmbeddingConfig = Field(default_factory=GeminiEmbeddingConfig)
    openai: OpenAIEmbeddingConfig = Field(default_factory=OpenAIEmbeddingConfig)
    ollama: OllamaEmbeddingConfig = Field(default_factory=OllamaEmbeddingConfig)
    sbert: SBERTConfig = Field(default_factory=SBERTConfig)


class StoreConfig(BaseModel):
    """Vector store backend settings."""

    backend: StoreBackend = StoreBackend.POSTGRES
    pool_min_size: int = 1
    pool_max_size: int = 10
    command_timeout: float = 30.0
    create_extension: bool = True
    chroma_dir: str = "data/chroma"


class RetrievalConfig(BaseModel):
    """Query pipeline settings."""

    default_top_k: int = Field(default=5, ge=1)


class SeedConfig(BaseModel):
    """Seed pipeline settings."""

    concurrency: int = Field(default=4, ge=1)
    write_batch_size: int = Field(default=64, ge=1)


class LoggingConfig(BaseModel):
    """Logging settings."""

    level: str = "INFO"
    format: str = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
    rich_console: bool = True
    file: str = ""


# ─────────────────────────────────────────────────────────────────────────────
# Main Settings Class
# ─────────────────────────────────────────────────────────────────────────────


class Settings(BaseSettings):
    """
    Main application settings.

    Loads from:
    1. config/settings.yaml (defaults)
    2. Environment variables

    Top-level environment overrides (STORE_BACKEND, DEFAULT_TOP_K,
    LOG_LEVEL) take precedence over the YAML values.
    """

    model_config = SettingsConfigDict(
        env_prefix="",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
        frozen=True,
    )

    # Credentials (from environment only)
    gemini_api_key: str = Field(default="", validation_alias="GEMINI_API_KEY")
    openai_api_key: str = Field(default="", validation_alias="OPENAI_API_KEY")
    ollama_base_url: Optional[str] = Field(default=None, validation_alias="OLLAMA_BASE_URL")
    database_url: str = Field(default="", validation_alias="DATABASE_URL")

    # Top-level environment overrides
    store_backend: Optional[StoreBackend] = Field(default=None, validation_alias="STORE_BACKEND")
    default_top_k: Optional[int] = Field(default=None, ge=1, validation_alias="DEFAULT_TOP_K")
    log_level: Optional[str] = Field(default=None, validation_alias="LOG_LEVEL")

    # Nested configurations (from YAML)
    indexes: list[IndexConfig] = Field(default_factory=list)
    embeddings: EmbeddingsConfig = Field(default_factory=EmbeddingsConfig)
    store: StoreConfig = Field(default_factory=StoreConfig)
    retrieval: RetrievalConfig = Field(default_factory=RetrievalConfig)
    seed: SeedConfig = Field(default_factory=SeedConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @field_validator("gemini_api_key", "openai_api_key", "database_url", mode="before")
    @classmethod
    def validate_secret(cls, v: Any) -> str:
        """Allow empty credentials here; validate_for() enforces them."""
        if v is None:
            return ""
        return str(v)

    @model_validator(mode="after")
    def check_unique_indexes(self) -> "Settings":
        names = [i.name for i in self.indexes]
        duplicates = {n for n in names if names.count(n) > 1}
        if duplicates:
            raise ValueError(f"Duplicate index names: {', '.join(sorted(duplicates))}")
        return self

    @property
    def project_root(self) -> Path:
        """Get the project root directory."""
        return PROJECT_ROOT

    def resolve_path(self, path: str) -> Path:
        """Resolve a configured path relative to the project root."""
        p = Path(path)
        return p if p.is_absolute() else PROJECT_ROOT / p

    def get_index(self, name: str) -> IndexConfig:
        """Get an index definition by name."""
        for index in self.indexes:
            if index.name.lower() == name.lower():
                return index
        known = ", ".join(self.get_index_names()) or "none"
        raise ValidationError(f"Unknown index '{name}' (configured: {known})")

    def get_index_names(self) -> list[str]:
        return [i.name for i in self.indexes]

    def get_effective_backend(self) -> StoreBackend:
        """Get the effective store backend (env override or config)."""
        return self.store_backend or self.store.backend

    def get_effective_top_k(self, index: Optional[IndexConfig] = None) -> int:
        """Deployment default K, unless the index declares its own."""
        if index is not None and index.default_top_k is not None:
            return index.default_top_k
        if self.default_top_k is not None:
            return self.default_top_k
        return self.retrieval.default_top_k

    def get_effective_ollama_url(self) -> str:
        return self.ollama_base_url or self.embeddings.ollama.base_url

    def get_effective_log_level(self) -> str:
        """Get the effective log level (env override or config)."""
        if self.log_level:
            return self.log_level.upper()
        return self.logging.level.upper()

    def configured_embedders(self) -> set[EmbedderKind]:
        """All embedder kinds referenced by any index."""
        kinds: set[EmbedderKind] = set()
        for index in self.indexes:
            kinds.update(index.embedders)
        return kinds

    def validate_for(self, kinds: Optional[Iterable[EmbedderKind]] = None) -> None:
        """
        Fail fast when a credential needed by the deployment is missing.

        Args:
            kinds: Embedders that will be used (defaults to all configured)

        Raises:
            ConfigurationError: If a required credential is absent
        """
        needed = set(kinds) if kinds is not None else self.configured_embedders()
        missing = []

        if EmbedderKind.GEMINI in needed and not self.gemini_api_key:
            missing.append("GEMINI_API_KEY")
        if EmbedderKind.OPENAI in needed and not self.openai_api_key:
            missing.append("OPENAI_API_KEY")
        if self.get_effective_backend() == StoreBackend.POSTGRES and not self.database_url:
            missing.append("DATABASE_URL")
        uses_pg_source = any(i.source.kind == SourceKind.POSTGRES for i in self.indexes)
        if uses_pg_source and not self.database_url and "DATABASE_URL" not in missing:
            missing.append("DATABASE_URL")

        if missing:
            raise ConfigurationError(
                f"Missing required environment variables: {', '.join(missing)}"
            )


def _load_yaml_config(config_path: Path) -> dict[str, Any]:
    """Load configuration from YAML file."""
    if not config_path.exists():
        return {}

    with open(config_path, encoding="utf-8") as f:
        data = yaml.safe_load(f)
        return data if data else {}


def load_settings(
    config_path: Optional[Path] = None,
    overrides: Optional[dict[str, Any]] = None,
) -> Settings:
    """
    Build a settings instance by merging YAML defaults with environment.

    Args:
        config_path: YAML file (defaults to config/settings.yaml)
        overrides: Extra values merged over the YAML (tests, embedding callers)

    Returns:
        Immutable Settings instance
    """
    if config_path is None:
        config_path = DEFAULT_CONFIG_FILE

    yaml_config = _load_yaml_config(config_path)
    if overrides:
        yaml_config.update(overrides)

    try:
        return Settings(**yaml_config)
    except ValueError as e:
        raise ConfigurationError(f"Invalid configuration in {config_path}: {e}") from e


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Get the process-wide settings instance (CLI entry points only).

    Example:
        >>> settings = get_settings()
        >>> print(settings.retrieval.default_top_k)
        5
    """
    return load_settings()
