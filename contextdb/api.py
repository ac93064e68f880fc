"""
Handle object shared by the storage and retrieval layers.

A ``ContextDB`` carries the configuration plus the two expensive resources:
the vector store connection and the embedding provider. Both are created on
first use. The store is opened at most once per handle even when several
coroutines ask for it at the same time.

Example:
    db = ContextDB()
    await storage.initialize(db)
    await storage.index_sections(db, parse_sections(text, "prd.md"))
    bundle = await retrieval.get_context_bundle(db, "auth flow")
"""

import asyncio
import logging
from pathlib import Path
from typing import TYPE_CHECKING, Optional

from .config import StoreConfig, get_default_store_path, is_store_dir, load_or_default_config
from .errors import EmbeddingError
from .providers.base import EmbeddingProvider, get_registry

if TYPE_CHECKING:
    from .store import ChromaStore

logger = logging.getLogger(__name__)


class ContextDB:
    """
    Configuration and lazily-opened resources for one context store.
    """

    def __init__(
        self,
        store_path: Optional[str | Path] = None,
        *,
        config: Optional[StoreConfig] = None,
        store: Optional["ChromaStore"] = None,
        embedder: Optional[EmbeddingProvider] = None,
        ops_log: bool = False,
    ) -> None:
        """
        Args:
            store_path: Store directory. Defaults to CONTEXTDB_STORE_PATH or ./.contextdb
            config: Pre-loaded StoreConfig (skips config file discovery)
            store: Injected vector store (skips opening ChromaDB)
            embedder: Injected embedding provider (skips the registry)
            ops_log: Attach the rotating operations log if the store exists
        """
        if config is not None:
            self._config = config
        else:
            self._config = load_or_default_config(get_default_store_path(store_path))

        self._store: Optional["ChromaStore"] = store
        self._opening: Optional[asyncio.Future] = None
        self._embedder: Optional[EmbeddingProvider] = embedder

        self._ops_log_handler = None
        if ops_log and is_store_dir(self.path):
            from .logging_config import configure_ops_log
            self._ops_log_handler = configure_ops_log(self.path)

    @property
    def config(self) -> StoreConfig:
        return self._config

    @property
    def path(self) -> Path:
        return self._config.path

    # -------------------------------------------------------------------------
    # Store connection
    # -------------------------------------------------------------------------

    def _open_store(self) -> "ChromaStore":
        from .store import ChromaStore
        logger.debug("Opening store at %s", self.path)
        return ChromaStore(self.path)

    async def get_store(self) -> "ChromaStore":
        """
        Return the store, opening it on first call.

        Concurrent callers share one opening task. If opening fails the
        task is dropped so a later call can try again.

        Raises:
            StoreNotInitializedError: If the store directory doesn't exist
        """
        if self._store is not None:
            return self._store

        opening = self._opening
        if opening is None:
            opening = asyncio.ensure_future(asyncio.to_thread(self._open_store))
            self._opening = opening
        try:
            store = await opening
        except BaseException:
            if self._opening is opening:
                self._opening = None
            raise
        self._store = store
        self._opening = None
        return store

    # -------------------------------------------------------------------------
    # Embeddings
    # -------------------------------------------------------------------------

    def _get_embedder(self) -> EmbeddingProvider:
        if self._embedder is None:
            params = dict(self._config.embedding.params)
            if self._config.embedding.name == "openai":
                params.setdefault("dimensions", self._config.embedding_dimensions)
            self._embedder = get_registry().create_embedding(self._config.embedding.name, params)
        return self._embedder

    def _check_dimension(self, vector: list[float]) -> list[float]:
        expected = self._config.embedding_dimensions
        if len(vector) != expected:
            raise EmbeddingError(
                f"Embedding has {len(vector)} dimensions, store expects {expected} "
                f"(model {self._config.embedding_model!r})"
            )
        return vector

    async def embed(self, text: str) -> list[float]:
        """
        Embed one text with the configured model.

        Raises:
            EmbeddingError: Provider unreachable, unauthorized, or wrong dimension
        """
        try:
            vector = await self._get_embedder().embed(text)
        except EmbeddingError:
            raise
        except Exception as e:
            raise EmbeddingError(f"Embedding provider failed: {e}") from e
        return self._check_dimension(vector)

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Embed texts in provider calls of at most ``batch_size`` inputs."""
        vectors: list[list[float]] = []
        size = self._config.batch_size
        for start in range(0, len(texts), size):
            chunk = texts[start:start + size]
            try:
                result = await self._get_embedder().embed_batch(chunk)
            except EmbeddingError:
                raise
            except Exception as e:
                raise EmbeddingError(f"Embedding provider failed: {e}") from e
            if len(result) != len(chunk):
                raise EmbeddingError(
                    f"Provider returned {len(result)} embeddings for {len(chunk)} inputs"
                )
            vectors.extend(self._check_dimension(v) for v in result)
        return vectors

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def close(self) -> None:
        """Release the store and detach the operations log."""
        if self._store is not None:
            self._store.close()
            self._store = None
        if self._ops_log_handler is not None:
            logging.getLogger("contextdb").removeHandler(self._ops_log_handler)
            self._ops_log_handler.close()
            self._ops_log_handler = None
