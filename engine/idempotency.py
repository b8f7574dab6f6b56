from __future__ import annotations

from collections import deque


class Idempotency:
    """Remembers the most recent `max_keys` keys; older keys are forgotten."""

    def __init__(self, max_keys: int = 1000) -> None:
        self.max_keys = max_keys
        self._order: deque[str] = deque()
        self._keys: set[str] = set()

    def exists(self, key: str) -> bool:
        return key in self._keys

    def add(self, key: str) -> None:
        if key in self._keys:
            return
        self._order.append(key)
        self._keys.add(key)
        while len(self._order) > self.max_keys:
            self._keys.discard(self._order.popleft())

    def check_and_add(self, key: str) -> bool:
        if self.exists(key):
            return False
        self.add(key)
        return True

    def clear(self) -> None:
        self._order.clear()
        self._keys.clear()
