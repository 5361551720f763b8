"""Bounded in-memory cache of text embeddings.

Classes:
    EmbeddingCache: Exact-text key to vector map with insertion-order eviction.
"""

from __future__ import annotations

from collections import OrderedDict
from typing import Optional


class EmbeddingCache:
    """Holds at most ``capacity`` vectors; the oldest insertion is evicted first.

    Reads do not refresh an entry's position, so a frequently read vector still
    ages out once ``capacity`` newer texts have been stored.
    """

    def __init__(self, capacity: int = 1000) -> None:
        if capacity < 1:
            raise ValueError("capacity must be positive")
        self._capacity = capacity
        self._entries: OrderedDict[str, list[float]] = OrderedDict()

    @property
    def capacity(self) -> int:
        return self._capacity

    def get(self, text: str) -> Optional[list[float]]:
        return self._entries.get(text)

    def put(self, text: str, vector: list[float]) -> None:
        if text in self._entries:
            self._entries[text] = vector
            return
        if len(self._entries) >= self._capacity:
            self._entries.popitem(last=False)
        self._entries[text] = vector

    def clear(self) -> None:
        self._entries.clear()

    def __contains__(self, text: object) -> bool:
        return text in self._entries

    def __len__(self) -> int:
        return len(self._entries)
