"""
Append-only key ledgers used for notification dedup and event suppression.
"""

from collections import OrderedDict
from collections.abc import Hashable
from collections.abc import Iterator


class KeyLedger:
    """Insertion-ordered key set with optional oldest-first eviction.

    With ``max_entries=None`` the ledger grows for the lifetime of the process.
    """

    def __init__(self, max_entries: int | None = None):
        if max_entries is not None and max_entries <= 0:
            max_entries = None
        self.max_entries = max_entries
        self._keys: OrderedDict[Hashable, None] = OrderedDict()

    def add(self, key: Hashable) -> bool:
        """Record key. Returns True when it was not already present."""
        if key in self._keys:
            return False
        self._keys[key] = None
        if self.max_entries is not None:
            while len(self._keys) > self.max_entries:
                self._keys.popitem(last=False)
        return True

    def __contains__(self, key: object) -> bool:
        return key in self._keys

    def __len__(self) -> int:
        return len(self._keys)

    def __iter__(self) -> Iterator[Hashable]:
        return iter(self._keys)


class IgnoredSet(KeyLedger):
    """Event ids that must never be notified again."""


class NotifiedLedger(KeyLedger):
    """``(etag, Milestone)`` pairs that already produced a notification."""
