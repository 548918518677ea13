"""LRU embedding cache.

Wraps any :class:`EmbeddingProvider` so that each distinct text is embedded
at most once while it stays cached. Concurrent requests for the same text
share one in-flight call. Eviction is least-recently-used, bounded by entry
count.
"""

from __future__ import annotations

import asyncio
import logging
from collections import OrderedDict
from typing import Dict

import numpy as np

from ..errors import EmbeddingUnavailableError
from .index import as_vector
from .provider import EmbeddingProvider

logger = logging.getLogger(__name__)


class CachedEmbeddingProvider:
    """Cache for text -> vector lookups.

    Attributes:
        max_size: Maximum number of cached vectors
        hits: Number of lookups served from the cache
        misses: Number of lookups that reached the wrapped provider
    """

    def __init__(self, provider: EmbeddingProvider, max_size: int = 4096) -> None:
        if max_size < 1:
            raise ValueError("max_size must be >= 1")
        self._provider = provider
        self.max_size = max_size
        self._entries: "OrderedDict[str, np.ndarray]" = OrderedDict()
        self._inflight: Dict[str, "asyncio.Future[np.ndarray]"] = {}
        self._lock = asyncio.Lock()
        self.hits = 0
        self.misses = 0

    async def embed(self, text: str) -> np.ndarray:
        """Return the cached vector for ``text``, embedding it on a miss.

        The same array object is returned on every hit; it is read-only.
        """
        async with self._lock:
            cached = self._entries.get(text)
            if cached is not None:
                self._entries.move_to_end(text)
                self.hits += 1
                return cached
            pending = self._inflight.get(text)
            if pending is None:
                pending = asyncio.get_running_loop().create_future()
                self._inflight[text] = pending
                owner = True
                self.misses += 1
            else:
                owner = False

        if not owner:
            return await asyncio.shield(pending)

        try:
            vector = as_vector(await self._provider.embed(text))
        except BaseException as e:
            self._inflight.pop(text, None)
            if isinstance(e, asyncio.CancelledError):
                e = EmbeddingUnavailableError("embedding call was cancelled")
            pending.set_exception(e)
            # Mark retrieved so an unawaited failure is not reported.
            pending.exception()
            raise

        async with self._lock:
            self._inflight.pop(text, None)
            self._entries[text] = vector
            self._entries.move_to_end(text)
            while len(self._entries) > self.max_size:
                evicted, _ = self._entries.popitem(last=False)
                logger.debug(f"Evicted embedding for text of length {len(evicted)}")
        pending.set_result(vector)
        return vector

    def size(self) -> int:
        """Get the current cache size."""
        return len(self._entries)

    def __contains__(self, text: object) -> bool:
        return text in self._entries

    async def clear(self) -> None:
        async with self._lock:
            self._entries.clear()

    async def aclose(self) -> None:
        aclose = getattr(self._provider, "aclose", None)
        if callable(aclose):
            await aclose()
