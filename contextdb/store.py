"""
Vector store backed by ChromaDB.

Thin synchronous wrapper over a persistent Chroma client. Rows are always
appended with a fresh row id; the record's own id lives in its metadata.
The async layers (``storage``/``retrieval``) call into this class through
``asyncio.to_thread``.
"""

import logging
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

import chromadb
from chromadb.config import Settings
from chromadb.errors import ChromaError

from .config import is_store_dir
from .errors import StoreNotInitializedError
from .schema import PLACEHOLDER_ID

logger = logging.getLogger(__name__)

@dataclass
class StoreResult:
    """A row read back from the store."""
    id: str
    metadata: dict[str, Any]
    distance: Optional[float] = None


class ChromaStore:
    """
    Persistent ChromaDB store rooted at a directory.

    Collections are opened without an embedding function: every vector is
    supplied by the caller, so Chroma never downloads its default model.
    """

    def __init__(self, store_path: Path, *, create: bool = False):
        """
        Args:
            store_path: Directory holding the Chroma files
            create: Create the directory if missing. Otherwise the directory
                must already hold a Chroma database or a config file
        """
        self._store_path = Path(store_path)
        if create:
            self._store_path.mkdir(parents=True, exist_ok=True)
        elif not is_store_dir(self._store_path):
            raise StoreNotInitializedError(self._store_path)

        self._client = chromadb.PersistentClient(
            path=str(self._store_path),
            settings=Settings(anonymized_telemetry=False),
        )
        self._collections: dict[str, Any] = {}

    @property
    def path(self) -> Path:
        return self._store_path

    def _collection(self, name: str):
        if name in self._collections:
            return self._collections[name]
        try:
            collection = self._client.get_collection(name, embedding_function=None)
        except (ValueError, ChromaError) as e:
            raise StoreNotInitializedError(self._store_path, name) from e
        self._collections[name] = collection
        return collection

    def has_collection(self, name: str) -> bool:
        try:
            self._collection(name)
        except StoreNotInitializedError:
            return False
        return True

    def ensure_collection(self, name: str, placeholder: dict[str, Any], dimension: int) -> bool:
        """
        Create a collection with its placeholder row if either is missing.

        Idempotent. Returns True if the placeholder row was written.
        """
        collection = self._client.get_or_create_collection(name, embedding_function=None)
        self._collections[name] = collection

        existing = collection.get(ids=[PLACEHOLDER_ID], include=["metadatas"])
        if existing["ids"]:
            return False

        collection.add(
            ids=[PLACEHOLDER_ID],
            embeddings=[[0.0] * dimension],
            metadatas=[placeholder],
        )
        logger.debug("Created collection %s (dimension %d)", name, dimension)
        return True

    def add(
        self,
        name: str,
        embeddings: list[list[float]],
        metadatas: list[dict[str, Any]],
        documents: Optional[list[str]] = None,
    ) -> list[str]:
        """Append rows. Returns the generated row ids."""
        if not metadatas:
            return []
        collection = self._collection(name)
        ids = [uuid.uuid4().hex for _ in metadatas]
        collection.add(
            ids=ids,
            embeddings=embeddings,
            metadatas=metadatas,
            documents=documents,
        )
        return ids

    def delete_where(self, name: str, where: dict[str, Any]) -> int:
        """Delete every row matching ``where``. Returns the number deleted."""
        collection = self._collection(name)
        ids = collection.get(where=where, include=["metadatas"])["ids"]
        if ids:
            collection.delete(ids=ids)
        logger.debug("Deleted %d rows from %s", len(ids), name)
        return len(ids)

    def query(
        self,
        name: str,
        embedding: list[float],
        limit: int = 10,
        where: Optional[dict[str, Any]] = None,
    ) -> list[StoreResult]:
        """Nearest rows to ``embedding``, closest first."""
        collection = self._collection(name)
        n_results = min(limit, collection.count())
        if n_results <= 0:
            return []
        result = collection.query(
            query_embeddings=[embedding],
            n_results=n_results,
            where=where,
            include=["metadatas", "distances"],
        )
        return [
            StoreResult(id=row_id, metadata=dict(meta), distance=distance)
            for row_id, meta, distance in zip(
                result["ids"][0], result["metadatas"][0], result["distances"][0]
            )
        ]

    def get_where(self, name: str, where: Optional[dict[str, Any]] = None) -> list[StoreResult]:
        """All rows matching ``where``, in no particular order."""
        collection = self._collection(name)
        result = collection.get(where=where, include=["metadatas"])
        return [
            StoreResult(id=row_id, metadata=dict(meta))
            for row_id, meta in zip(result["ids"], result["metadatas"])
        ]

    def count(self, name: str) -> int:
        return self._collection(name).count()

    def close(self) -> None:
        self._collections.clear()
