"""
Response Cache
==============

In-memory TTL cache for expert responses with LRU eviction.
"""

import hashlib
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, Optional, Tuple

from llm_router.config import CacheConfig


@dataclass
class CacheStats:
    hits: int = 0
    misses: int = 0
    evictions: int = 0
    size: int = 0


class ResponseCache:
    """Keyed on (expert id, prompt, context)."""

    def __init__(self, config: Optional[CacheConfig] = None, clock: Callable[[], float] = time.monotonic):
        self.config = config or CacheConfig()
        self._clock = clock
        self._entries: "OrderedDict[str, Tuple[float, str]]" = OrderedDict()
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    @staticmethod
    def make_key(expert_id: str, prompt: str, context: Optional[str] = None) -> str:
        digest = hashlib.sha256()
        for part in (expert_id, prompt, context or ""):
            digest.update(part.encode("utf-8"))
            digest.update(b"\x00")
        return digest.hexdigest()

    def get(self, expert_id: str, prompt: str, context: Optional[str] = None) -> Optional[str]:
        if not self.config.enabled:
            return None

        key = self.make_key(expert_id, prompt, context)
        entry = self._entries.get(key)
        if entry is None:
            self._misses += 1
            return None

        stored_at, response = entry
        if self._clock() - stored_at > self.config.ttl_seconds:
            del self._entries[key]
            self._misses += 1
            return None

        self._entries.move_to_end(key)
        self._hits += 1
        return response

    def set(self, expert_id: str, prompt: str, context: Optional[str], response: str) -> None:
        if not self.config.enabled or self.config.max_size <= 0:
            return

        key = self.make_key(expert_id, prompt, context)
        self._entries[key] = (self._clock(), response)
        self._entries.move_to_end(key)
        while len(self._entries) > self.config.max_size:
            self._entries.popitem(last=False)
            self._evictions += 1

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def stats(self) -> CacheStats:
        return CacheStats(
            hits=self._hits,
            misses=self._misses,
            evictions=self._evictions,
            size=len(self._entries),
        )
