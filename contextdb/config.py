"""
Configuration management for context stores.

The configuration is stored as a TOML file in the store directory.
It specifies the embedding provider and its parameters, the indexing batch
size, and the default retrieval limits.
"""

import importlib.util
import os
import tomllib
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

import tomli_w

from .errors import ConfigError


CONFIG_FILENAME = "contextdb.toml"
CHROMA_DB_FILENAME = "chroma.sqlite3"
CONFIG_VERSION = 1
DEFAULT_STORE_DIR = ".contextdb"

# Vector dimensionality of the default model for each embedding provider
DEFAULT_EMBEDDINGS = {
    "openai": ("text-embedding-3-small", 1536),
    "sentence-transformers": ("all-MiniLM-L6-v2", 384),
}


@dataclass
class ProviderConfig:
    """Configuration for a single provider."""
    name: str
    params: dict[str, Any] = field(default_factory=dict)


@dataclass
class RetrievalConfig:
    """Result counts used when assembling a context bundle."""
    recent_sessions: int = 3
    section_limit: int = 5
    checklist_limit: int = 3
    journal_limit: int = 3


@dataclass
class StoreConfig:
    """Complete store configuration."""
    path: Path
    version: int = CONFIG_VERSION
    created: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    embedding: ProviderConfig = field(
        default_factory=lambda: ProviderConfig("openai", {"model": "text-embedding-3-small"})
    )
    embedding_dimensions: int = 1536
    batch_size: int = 64
    retrieval: RetrievalConfig = field(default_factory=RetrievalConfig)

    @property
    def config_path(self) -> Path:
        """Path to the TOML config file."""
        return self.path / CONFIG_FILENAME

    @property
    def embedding_model(self) -> str:
        return self.embedding.params.get("model", "")

    def exists(self) -> bool:
        """Check if config file exists."""
        return self.config_path.exists()


def get_default_store_path(store_path: Optional[str | Path] = None) -> Path:
    """
    Resolve the store directory.

    Priority: explicit argument, CONTEXTDB_STORE_PATH, ./.contextdb
    """
    if store_path is not None:
        return Path(store_path).expanduser().resolve()
    env_path = os.environ.get("CONTEXTDB_STORE_PATH")
    if env_path:
        return Path(env_path).expanduser().resolve()
    return Path.cwd() / DEFAULT_STORE_DIR


def detect_default_embedding() -> ProviderConfig:
    """
    Pick the default embedding provider for the current environment.

    Priority:
    1. OpenAI (if an API key is available)
    2. sentence-transformers (if installed)
    3. OpenAI (fails on first use until a key is set)
    """
    has_openai_key = bool(
        os.environ.get("CONTEXTDB_OPENAI_API_KEY") or
        os.environ.get("OPENAI_API_KEY")
    )
    if not has_openai_key and importlib.util.find_spec("sentence_transformers") is not None:
        name = "sentence-transformers"
    else:
        name = "openai"
    return ProviderConfig(name, {"model": DEFAULT_EMBEDDINGS[name][0]})


def create_default_config(store_path: Path) -> StoreConfig:
    """Create a new config with auto-detected defaults."""
    embedding = detect_default_embedding()
    return StoreConfig(
        path=store_path,
        embedding=embedding,
        embedding_dimensions=DEFAULT_EMBEDDINGS[embedding.name][1],
    )


def _positive_int(value: Any, key: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ConfigError(f"{key} must be a positive integer, got {value!r}")
    return value


def is_store_dir(path: Path) -> bool:
    """True if ``path`` holds a Chroma database or a config file."""
    return (path / CHROMA_DB_FILENAME).is_file() or (path / CONFIG_FILENAME).is_file()


def load_config(store_path: Path) -> StoreConfig:
    """
    Load configuration from a store directory.

    Raises:
        FileNotFoundError: If config doesn't exist
        ConfigError: If config is invalid
    """
    config_path = store_path / CONFIG_FILENAME

    if not config_path.exists():
        raise FileNotFoundError(f"Config not found: {config_path}")

    try:
        with open(config_path, "rb") as f:
            data = tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"Invalid config {config_path}: {e}") from e

    version = data.get("store", {}).get("version", 1)
    if version > CONFIG_VERSION:
        raise ConfigError(f"Config version {version} is newer than supported ({CONFIG_VERSION})")

    embedding_section = dict(data.get("embedding", {"name": "openai"}))
    name = embedding_section.pop("name", "openai")
    default_model, default_dims = DEFAULT_EMBEDDINGS.get(name, ("", 0))
    dimensions = embedding_section.pop("dimensions", default_dims)
    embedding_section.setdefault("model", default_model)

    retrieval_section = data.get("retrieval", {})
    retrieval = RetrievalConfig(**{
        key: _positive_int(retrieval_section.get(key, default), f"retrieval.{key}")
        for key, default in vars(RetrievalConfig()).items()
    })

    return StoreConfig(
        path=store_path,
        version=version,
        created=data.get("store", {}).get("created", ""),
        embedding=ProviderConfig(name=name, params=embedding_section),
        embedding_dimensions=_positive_int(dimensions, "embedding.dimensions"),
        batch_size=_positive_int(data.get("index", {}).get("batch_size", 64), "index.batch_size"),
        retrieval=retrieval,
    )


def save_config(config: StoreConfig) -> None:
    """
    Save configuration to the store directory.

    Creates the directory if it doesn't exist.
    """
    config.path.mkdir(parents=True, exist_ok=True)

    embedding = {"name": config.embedding.name}
    embedding.update(config.embedding.params)
    embedding["dimensions"] = config.embedding_dimensions

    data = {
        "store": {
            "version": config.version,
            "created": config.created,
        },
        "embedding": embedding,
        "index": {"batch_size": config.batch_size},
        "retrieval": vars(config.retrieval).copy(),
    }

    with open(config.config_path, "wb") as f:
        tomli_w.dump(data, f)


def load_or_default_config(store_path: Path) -> StoreConfig:
    """
    Load existing config, or return auto-detected defaults without writing.

    The config file is written by ``initialize()``, so read-only commands
    never create files in a directory that isn't a store yet.
    """
    if (store_path / CONFIG_FILENAME).exists():
        return load_config(store_path)
    return create_default_config(store_path)
