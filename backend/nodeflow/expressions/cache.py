"""Bounded cache of compiled expressions keyed by source text."""
from typing import Any


class ExpressionCache:
    """Caches compiled JSONata expressions per source string, evicting the oldest when full."""

    def __init__(self, max_size: int = 1000):
        self.max_size = max_size
        self._cache: dict[str, Any] = {}
        self.hits = 0
        self.misses = 0

    def get(self, source: str) -> Any | None:
        compiled = self._cache.get(source)
        if compiled is None:
            self.misses += 1
        else:
            self.hits += 1
        return compiled

    def put(self, source: str, compiled: Any) -> None:
        if self.max_size <= 0:
            return
        if source not in self._cache and len(self._cache) >= self.max_size:
            self._cache.pop(next(iter(self._cache)))
        self._cache[source] = compiled

    def clear(self):
        self._cache.clear()
        self.hits = 0
        self.misses = 0

    def __len__(self) -> int:
        return len(self._cache)

    def __contains__(self, source: str) -> bool:
        return source in self._cache
