"""Bounded in-process memory of source identities already handled."""

from __future__ import annotations

from collections import OrderedDict


class ProcessedIdentitySet:
    """Insertion-ordered set that forgets its oldest entries past *max_size*.

    Only an optimisation to avoid refetching messages handled earlier in
    this process; the candidate store remains the source of truth for
    duplicate suppression, so an empty set after a restart is safe.
    """

    def __init__(self, max_size: int = 10_000) -> None:
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self._max_size = max_size
        self._items: OrderedDict[str, None] = OrderedDict()

    def add(self, identity: str) -> None:
        self._items[identity] = None
        self._items.move_to_end(identity)
        while len(self._items) > self._max_size:
            self._items.popitem(last=False)

    def discard(self, identity: str) -> None:
        self._items.pop(identity, None)

    def clear(self) -> None:
        self._items.clear()

    def __contains__(self, identity: object) -> bool:
        return identity in self._items

    def __len__(self) -> int:
        return len(self._items)
