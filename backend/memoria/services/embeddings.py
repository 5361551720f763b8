"""Embedding generation with a tiered fallback chain.

Classes:
    EmbeddingModel: Protocol satisfied by the remote and local providers.
    EmbeddingGenerator: Cache, remote provider, local model, then deterministic hash vectors.

Functions:
    fallback_embedding(text, dimension, scale): Deterministic sinusoid vector derived from a content hash.
"""

from __future__ import annotations

import logging
from typing import Optional, Protocol, Sequence, runtime_checkable

import numpy as np

from memoria.services.circuit_breaker import CircuitBreaker, CircuitOpenError
from memoria.services.embedding_cache import EmbeddingCache
from memoria.utils.text import content_hash32

_LOGGER = logging.getLogger(__name__)


@runtime_checkable
class EmbeddingModel(Protocol):
    name: str

    async def embed(self, text: str) -> list[float]: ...


def fallback_embedding(text: str, dimension: int, scale: float = 0.1) -> list[float]:
    """Return ``sin(h * (i + 1)) * scale`` for each dimension ``i``, ``h`` being the 32-bit content hash."""

    h = float(content_hash32(text))
    steps = np.arange(1, dimension + 1, dtype=np.float64)
    return (np.sin(h * steps) * scale).tolist()


class EmbeddingGenerator:
    """Produce a ``dimension``-length vector for any text without raising.

    Tiers are tried in order and the first usable vector is cached. A provider
    returning fewer dimensions is zero-padded; one returning more is rejected and
    the next tier is tried.
    """

    def __init__(
        self,
        dimension: int,
        *,
        remote: Optional[EmbeddingModel] = None,
        local: Optional[EmbeddingModel] = None,
        cache: Optional[EmbeddingCache] = None,
        breaker: Optional[CircuitBreaker] = None,
        fallback_scale: float = 0.1,
    ) -> None:
        if dimension < 1:
            raise ValueError("dimension must be positive")
        self.dimension = dimension
        self.remote = remote
        self.local = local
        self.cache = cache if cache is not None else EmbeddingCache()
        self.breaker = breaker if breaker is not None else CircuitBreaker()
        self.fallback_scale = fallback_scale
        self._local_ready = False

    async def initialize(self) -> None:
        if self.local is None or self._local_ready:
            return
        load = getattr(self.local, "load", None)
        try:
            if load is not None:
                await load()
        except Exception as exc:
            _LOGGER.warning("Local embedding model unavailable, disabling tier: %s", exc)
            self.local = None
            return
        self._local_ready = True

    @property
    def active_tiers(self) -> list[str]:
        tiers = ["cache"]
        if self.remote is not None:
            tiers.append("remote")
        if self.local is not None:
            tiers.append("local")
        tiers.append("fallback")
        return tiers

    async def generate(self, text: str) -> list[float]:
        cached = self.cache.get(text)
        if cached is not None:
            return list(cached)

        vector = await self._from_remote(text)
        if vector is None:
            vector = await self._from_local(text)
        if vector is None:
            vector = self._from_fallback(text)
        if vector is None:
            _LOGGER.error("All embedding tiers failed; returning zero vector")
            return [0.0] * self.dimension

        self.cache.put(text, list(vector))
        return vector

    async def generate_many(self, texts: Sequence[str]) -> list[list[float]]:
        return [await self.generate(text) for text in texts]

    def clear_cache(self) -> None:
        self.cache.clear()

    async def _from_remote(self, text: str) -> Optional[list[float]]:
        if self.remote is None:
            return None
        try:
            raw = await self.breaker.call(self.remote.embed, text)
        except CircuitOpenError:
            _LOGGER.debug("Remote embeddings skipped; circuit %s", self.breaker.state.value)
            return None
        except Exception as exc:
            _LOGGER.warning("Remote embedding failed, falling back: %s", exc)
            return None
        return self._fit(raw, self.remote.name)

    async def _from_local(self, text: str) -> Optional[list[float]]:
        if self.local is None:
            return None
        try:
            raw = await self.local.embed(text)
        except Exception as exc:
            _LOGGER.warning("Local embedding failed, falling back: %s", exc)
            return None
        return self._fit(raw, self.local.name)

    def _from_fallback(self, text: str) -> Optional[list[float]]:
        try:
            return fallback_embedding(text, self.dimension, self.fallback_scale)
        except (ValueError, OverflowError) as exc:
            _LOGGER.error("Fallback embedding failed: %s", exc)
            return None

    def _fit(self, raw: Sequence[float], source: str) -> Optional[list[float]]:
        vector = [float(value) for value in raw]
        if len(vector) > self.dimension:
            _LOGGER.warning(
                "%s returned %d dimensions, collection expects %d; skipping tier",
                source,
                len(vector),
                self.dimension,
            )
            return None
        if len(vector) < self.dimension:
            vector.extend([0.0] * (self.dimension - len(vector)))
        return vector
