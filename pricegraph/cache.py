import time
from typing import Any, Callable, Dict, Optional, Tuple


class TTLCache:
    """In-process cache with a fixed time-to-live per entry."""

    def __init__(self, ttl: float, clock: Callable[[], float] = time.monotonic):
        self.ttl = ttl
        self._clock = clock
        self._store: Dict[str, Tuple[float, Any]] = {}

    def set(self, key: str, value: Any, ttl: Optional[float] = None):
        expires = self._clock() + (self.ttl if ttl is None else ttl)
        self._store[key] = (expires, value)

    def get(self, key: str) -> Optional[Any]:
        expires, value = self._store.get(key, (0.0, None))
        if expires and expires > self._clock():
            return value
        self._store.pop(key, None)
        return None
