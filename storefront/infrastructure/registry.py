"""Process-scoped registries of notification receivers.

Created once in ``storefront.main`` and handed to the fan-out and the
subscription endpoints. Writers serialize on a lock; readers take a snapshot
without locking, so a receiver removed mid-broadcast may still be tried once.
"""

import threading
from typing import Callable, Generic, Hashable, TypeVar

from fastapi import WebSocket

T = TypeVar("T")


class Registry(Generic[T]):
    def __init__(self, key: Callable[[T], Hashable]):
        self._key = key
        self._items: dict[Hashable, T] = {}
        self._lock = threading.Lock()

    def add(self, item: T) -> None:
        with self._lock:
            self._items[self._key(item)] = item

    def remove(self, item: T) -> bool:
        return self.remove_key(self._key(item))

    def remove_key(self, key: Hashable) -> bool:
        with self._lock:
            return self._items.pop(key, None) is not None

    def list(self) -> list[T]:
        return list(self._items.values())

    def __len__(self) -> int:
        return len(self._items)


class PushSubscriptionRegistry(Registry[dict]):
    """Browser push subscriptions (``{"endpoint", "keys": {"p256dh", "auth"}}``), keyed by endpoint."""

    def __init__(self):
        super().__init__(key=lambda subscription: subscription["endpoint"])


class AdminConnectionRegistry(Registry[WebSocket]):
    """Admin WebSocket sessions that passed the token handshake."""

    def __init__(self):
        super().__init__(key=id)
