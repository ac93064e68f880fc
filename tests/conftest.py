"""
Shared pytest fixtures for contextdb tests.

Provides mock providers and an in-memory store so storage and retrieval
tests never load ChromaDB or call the OpenAI API.
"""

import hashlib
import math
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional
from unittest.mock import MagicMock, patch

import pytest

from contextdb.api import ContextDB
from contextdb.config import StoreConfig, is_store_dir
from contextdb.errors import StoreNotInitializedError

MOCK_DIMENSION = 8


class MockEmbeddingProvider:
    """
    Deterministic mock embedding provider for testing.

    Generates consistent embeddings based on text hash - no network calls.
    Identical texts embed identically, so a query equal to a stored text
    is always its nearest neighbour.
    """

    model_name = "mock-model"

    def __init__(self, dimension: int = MOCK_DIMENSION):
        self.dimension = dimension
        self.embed_calls = 0
        self.batch_calls = 0
        self.texts: list[str] = []

    def _vector(self, text: str) -> list[float]:
        h = hashlib.md5(text.encode()).hexdigest()
        values = [int(h[i:i+2], 16) / 255.0 for i in range(0, 32, 2)]
        return (values * (self.dimension // len(values) + 1))[:self.dimension]

    async def embed(self, text: str) -> list[float]:
        """Generate deterministic embedding from text hash."""
        self.embed_calls += 1
        self.texts.append(text)
        return self._vector(text)

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Generate embeddings for multiple texts."""
        self.batch_calls += 1
        self.texts.extend(texts)
        return [self._vector(t) for t in texts]


class FailingEmbeddingProvider(MockEmbeddingProvider):
    """Embedding provider that is unreachable, optionally after N successful batches."""

    def __init__(self, fail_after_batches: int = 0, dimension: int = MOCK_DIMENSION):
        super().__init__(dimension)
        self.fail_after_batches = fail_after_batches

    async def embed(self, text: str) -> list[float]:
        self.embed_calls += 1
        raise ConnectionError("Embedding provider unreachable")

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        self.batch_calls += 1
        if self.batch_calls > self.fail_after_batches:
            raise ConnectionError(f"Embedding provider unreachable (batch {self.batch_calls})")
        return [self._vector(t) for t in texts]


@pytest.fixture
def mock_embedding_provider():
    """Create a fresh MockEmbeddingProvider instance."""
    return MockEmbeddingProvider()


@dataclass
class MockStoreResult:
    """Same shape as contextdb.store.StoreResult, without importing chromadb."""
    id: str
    metadata: dict[str, Any]
    distance: Optional[float] = None


class MockChromaStore:
    """In-memory stand-in for ChromaStore with the same method surface."""

    def __init__(self, store_path: Path, *, create: bool = True):
        self._store_path = Path(store_path)
        if not create and not is_store_dir(self._store_path):
            raise StoreNotInitializedError(self._store_path)
        self._data: dict[str, dict[str, dict]] = {}  # collection -> {row id -> row}
        self.add_calls = 0
        self.fail_add_after: int | None = None

    @property
    def path(self) -> Path:
        return self._store_path

    def _rows(self, name: str) -> dict[str, dict]:
        if name not in self._data:
            raise StoreNotInitializedError(self._store_path, name)
        return self._data[name]

    def _match_where(self, metadata: dict, where: dict | None) -> bool:
        """Check if metadata matches a ChromaDB where clause (equality and $and)."""
        if not where:
            return True
        if "$and" in where:
            return all(self._match_where(metadata, clause) for clause in where["$and"])
        return all(metadata.get(k) == v for k, v in where.items())

    def has_collection(self, name: str) -> bool:
        return name in self._data

    def ensure_collection(self, name: str, placeholder: dict[str, Any], dimension: int) -> bool:
        rows = self._data.setdefault(name, {})
        if "init" in rows:
            return False
        rows["init"] = {"embedding": [0.0] * dimension, "metadata": dict(placeholder), "document": None}
        return True

    def add(self, name: str, embeddings: list[list[float]], metadatas: list[dict[str, Any]],
            documents: list[str] | None = None) -> list[str]:
        rows = self._rows(name)
        self.add_calls += 1
        if self.fail_add_after is not None and self.add_calls > self.fail_add_after:
            raise RuntimeError("ChromaDB simulated failure")
        placeholder = rows.get("init")
        if placeholder is not None:
            expected = len(placeholder["embedding"])
            for embedding in embeddings:
                if len(embedding) != expected:
                    raise ValueError(f"Embedding dimension {len(embedding)} does not match {expected}")
        ids = []
        for i, metadata in enumerate(metadatas):
            row_id = uuid.uuid4().hex
            rows[row_id] = {
                "embedding": list(embeddings[i]),
                "metadata": dict(metadata),
                "document": documents[i] if documents else None,
            }
            ids.append(row_id)
        return ids

    def delete_where(self, name: str, where: dict[str, Any]) -> int:
        rows = self._rows(name)
        doomed = [rid for rid, row in rows.items() if self._match_where(row["metadata"], where)]
        for rid in doomed:
            del rows[rid]
        return len(doomed)

    def query(self, name: str, embedding: list[float], limit: int = 10,
              where: dict | None = None) -> list:
        rows = self._rows(name)
        scored = [
            (math.dist(row["embedding"], embedding), rid, row)
            for rid, row in rows.items()
            if self._match_where(row["metadata"], where)
        ]
        scored.sort(key=lambda t: t[0])
        return [
            MockStoreResult(id=rid, metadata=dict(row["metadata"]), distance=distance)
            for distance, rid, row in scored[:limit]
        ]

    def get_where(self, name: str, where: dict | None = None) -> list:
        return [
            MockStoreResult(id=rid, metadata=dict(row["metadata"]))
            for rid, row in self._rows(name).items()
            if self._match_where(row["metadata"], where)
        ]

    def count(self, name: str) -> int:
        return len(self._rows(name))

    def close(self) -> None:
        pass


@pytest.fixture
def store_path(tmp_path):
    return tmp_path / ".contextdb"


@pytest.fixture
def mock_store(store_path):
    return MockChromaStore(store_path)


@pytest.fixture
def make_db(store_path, mock_store, mock_embedding_provider):
    """
    Factory for ContextDB handles over the in-memory store.

    Usage:
        def test_something(make_db):
            db = make_db(batch_size=2)
    """
    def _make(embedder=None, store=None, **config_overrides) -> ContextDB:
        config = StoreConfig(path=store_path, embedding_dimensions=MOCK_DIMENSION, **config_overrides)
        return ContextDB(
            config=config,
            store=store or mock_store,
            embedder=embedder or mock_embedding_provider,
        )
    return _make


@pytest.fixture
def db(make_db):
    return make_db()


@pytest.fixture
def mock_providers(monkeypatch):
    """
    Patch the embedding registry and ChromaStore to use mocks.

    For tests that build ContextDB the normal way (CLI, MCP) but must not
    load ChromaDB or call OpenAI.
    """
    # Default config detection picks OpenAI (1536 dims) when a key is set
    monkeypatch.setenv("OPENAI_API_KEY", "test-key")
    mock_embed = MockEmbeddingProvider(dimension=1536)
    mock_reg = MagicMock()
    mock_reg.create_embedding.return_value = mock_embed
    stores: dict[Path, MockChromaStore] = {}

    def open_store(db):
        if db.path not in stores:
            stores[db.path] = MockChromaStore(db.path, create=False)
        return stores[db.path]

    with patch("contextdb.api.get_registry", return_value=mock_reg), \
         patch.object(ContextDB, "_open_store", autospec=True, side_effect=open_store):
        yield {
            "embedding": mock_embed,
            "registry": mock_reg,
            "stores": stores,
        }


@pytest.fixture
def checklist_md():
    return """\
# Project Tasks

## 1. Setup

- [x] Create repository
- [x] Configure CI
- [ ] Write README

## 2. Authentication

- [ ] Login form
  - [X] Password hashing
- [ ] Session tokens

### 2.1 OAuth

- [ ] Google provider

## Backlog
"""


@pytest.fixture
def prd_md():
    return """\
# Product Requirements

Intro to the product.

## Authentication

Users sign in with email and password.

## Empty Heading

## Billing

Invoices are generated monthly.
"""
