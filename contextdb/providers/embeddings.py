"""
Embedding providers.

- openai: OpenAI embeddings API (default, text-embedding-3-small)
- sentence-transformers: local model, no network (pip install contextdb[local])
"""

import asyncio
import os

from openai import AsyncOpenAI

from .base import get_registry


# Native output size of known OpenAI embedding models
_OPENAI_DIMENSIONS = {
    "text-embedding-3-small": 1536,
    "text-embedding-3-large": 3072,
    "text-embedding-ada-002": 1536,
}


class OpenAIEmbedding:
    """
    Embedding provider using OpenAI's embeddings API.

    Requires: CONTEXTDB_OPENAI_API_KEY or OPENAI_API_KEY environment variable.
    The client is created on first use, so constructing the provider never
    needs network access or a key.
    """

    def __init__(
        self,
        model: str = "text-embedding-3-small",
        dimensions: int | None = None,
        api_key: str | None = None,
        base_url: str | None = None,
    ):
        self.model_name = model
        self._dimensions = dimensions
        self._api_key = api_key
        self._base_url = base_url
        self._client: AsyncOpenAI | None = None

    @property
    def dimension(self) -> int:
        return self._dimensions or _OPENAI_DIMENSIONS.get(self.model_name, 1536)

    def _get_client(self) -> AsyncOpenAI:
        if self._client is None:
            key = (
                self._api_key
                or os.environ.get("CONTEXTDB_OPENAI_API_KEY")
                or os.environ.get("OPENAI_API_KEY")
            )
            if not key:
                raise ValueError(
                    "OpenAI API key required. Set CONTEXTDB_OPENAI_API_KEY or OPENAI_API_KEY"
                )
            self._client = AsyncOpenAI(api_key=key, base_url=self._base_url)
        return self._client

    async def embed(self, text: str) -> list[float]:
        return (await self.embed_batch([text]))[0]

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []
        kwargs = {}
        # Only the v3 models can shorten their output
        if self._dimensions and self.model_name.startswith("text-embedding-3"):
            kwargs["dimensions"] = self._dimensions
        response = await self._get_client().embeddings.create(
            model=self.model_name,
            input=texts,
            **kwargs,
        )
        data = sorted(response.data, key=lambda d: d.index)
        return [list(d.embedding) for d in data]


class SentenceTransformerEmbedding:
    """
    Local embedding provider using sentence-transformers.

    Encoding is CPU/GPU bound, so it runs in a worker thread to keep the
    event loop responsive.
    """

    def __init__(self, model: str = "all-MiniLM-L6-v2", device: str | None = None):
        try:
            from sentence_transformers import SentenceTransformer
        except ImportError:
            raise RuntimeError(
                "SentenceTransformerEmbedding requires 'sentence-transformers' library. "
                "Install with: pip install contextdb[local]"
            )
        self.model_name = model
        self._model = SentenceTransformer(model, device=device)

    @property
    def dimension(self) -> int:
        return self._model.get_sentence_embedding_dimension()

    async def embed(self, text: str) -> list[float]:
        return (await self.embed_batch([text]))[0]

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []
        vectors = await asyncio.to_thread(self._model.encode, texts, convert_to_numpy=True)
        return vectors.tolist()


_registry = get_registry()
_registry.register_embedding("openai", OpenAIEmbedding)
_registry.register_embedding("sentence-transformers", SentenceTransformerEmbedding)
