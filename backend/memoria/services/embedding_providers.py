"""Embedding providers backing the remote and local tiers of the generator.

Classes:
    OpenAIEmbeddingProvider: Remote embeddings through the OpenAI API with retry semantics.
    SentenceTransformerModel: Locally loaded sentence-transformers model producing normalized vectors.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Iterable, Optional

import numpy as np
from openai import AsyncOpenAI
from tenacity import AsyncRetrying, stop_after_attempt, wait_exponential

_LOGGER = logging.getLogger(__name__)

_EMBED_BATCH_MAX = 256


class OpenAIEmbeddingProvider:
    name = "openai"

    def __init__(
        self,
        *,
        api_key: Optional[str] = None,
        model: str = "text-embedding-3-small",
        client: Optional[AsyncOpenAI] = None,
        max_attempts: int = 3,
    ) -> None:
        if client is None and not api_key:
            raise ValueError("OpenAI embeddings require an API key")
        self._client = client if client is not None else AsyncOpenAI(api_key=api_key)
        self.model = model
        self._max_attempts = max_attempts

    async def embed(self, text: str) -> list[float]:
        vectors = await self.embed_texts([text])
        return vectors[0]

    async def embed_texts(self, texts: Iterable[str]) -> list[list[float]]:
        docs = list(texts)
        vectors: list[list[float]] = []
        for start in range(0, len(docs), _EMBED_BATCH_MAX):
            chunk = docs[start : start + _EMBED_BATCH_MAX]
            response = await self._create(dict(model=self.model, input=chunk))
            vectors.extend(list(item.embedding) for item in response.data)
        return vectors

    async def _create(self, payload: dict[str, Any]):
        async for attempt in AsyncRetrying(
            wait=wait_exponential(multiplier=1, min=1, max=20),
            stop=stop_after_attempt(self._max_attempts),
            reraise=True,
        ):
            with attempt:
                return await self._client.embeddings.create(**payload)


class SentenceTransformerModel:
    """Local model tier; ``load()`` must succeed before ``embed`` is used."""

    name = "sentence-transformers"

    def __init__(self, model_name: str = "sentence-transformers/all-MiniLM-L6-v2") -> None:
        self.model_name = model_name
        self._model = None

    @property
    def is_loaded(self) -> bool:
        return self._model is not None

    async def load(self) -> None:
        if self._model is not None:
            return
        # optional extra; an ImportError here disables the local tier
        from sentence_transformers import SentenceTransformer

        self._model = await asyncio.to_thread(SentenceTransformer, self.model_name)
        _LOGGER.info("Loaded local embedding model %s", self.model_name)

    async def embed(self, text: str) -> list[float]:
        if self._model is None:
            raise RuntimeError(f"Local embedding model {self.model_name} is not loaded")
        vector = await asyncio.to_thread(
            self._model.encode, text, convert_to_tensor=False, normalize_embeddings=True
        )
        return np.asarray(vector, dtype=np.float32).tolist()
