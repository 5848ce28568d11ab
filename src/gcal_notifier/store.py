"""
EventStore — the locally known set of upcoming events.

A fetch is treated as authoritative for its window: merging replaces the
previous contents wholesale instead of patching them, and the diff against the
pre-fetch snapshot is computed separately so additions and unexpected removals
can still be reported.
"""

import json
import logging
from collections.abc import Container
from collections.abc import Iterable
from collections.abc import Iterator
from datetime import datetime

from gcal_notifier.db import EVENTS_KEY
from gcal_notifier.models import CalendarEvent
from gcal_notifier.models import MalformedEventError
from gcal_notifier.models import MergeResult
from gcal_notifier.models import PersistenceError

logger = logging.getLogger(__name__)


def parse_events(items: Iterable[dict]) -> list[CalendarEvent]:
    """Convert API resources to events, skipping malformed ones."""
    events = []
    for item in items:
        try:
            events.append(CalendarEvent.from_api(item))
        except MalformedEventError as e:
            logger.warning("Skipping malformed event: %s", e)
    return events


def merge_events(
    current: Iterable[CalendarEvent],
    fetched: Iterable[CalendarEvent],
    ignored: Container[str],
    now: datetime,
) -> MergeResult:
    """
    Diff a fresh authoritative fetch against the current events.

    ``removed`` only reports unexpected disappearances: events that have
    already started or that are ignored are dropped silently.
    """
    current_by_id = {event.id: event for event in current}
    fetched_by_id: dict[str, CalendarEvent] = {}
    for event in fetched:
        fetched_by_id[event.id] = event  # last occurrence wins

    added = [e for eid, e in fetched_by_id.items() if eid not in current_by_id]
    removed = [
        e
        for eid, e in current_by_id.items()
        if eid not in fetched_by_id and e.sort_key > now and eid not in ignored
    ]
    return MergeResult(merged=list(fetched_by_id.values()), added=added, removed=removed)


class EventStore:
    """Ordered collection of events keyed by id (at most one entry per id)."""

    def __init__(self, events: Iterable[CalendarEvent] = ()):
        self._events: dict[str, CalendarEvent] = {}
        for event in events:
            self._events[event.id] = event

    # ------------------------------------------------------------------ #
    # Persistence                                                         #
    # ------------------------------------------------------------------ #

    @classmethod
    def from_blob(cls, data: bytes | None) -> "EventStore":
        if not data:
            return cls()
        try:
            items = json.loads(data.decode("utf-8"))
        except (UnicodeDecodeError, ValueError) as e:
            logger.warning("Event cache is corrupt, starting empty: %s", e)
            return cls()
        if not isinstance(items, list):
            logger.warning("Event cache has unexpected shape, starting empty")
            return cls()
        return cls(parse_events(items))

    @classmethod
    def load(cls, blob_store) -> "EventStore":
        """Load the cached snapshot; any failure degrades to an empty store."""
        try:
            data = blob_store.load_blob(EVENTS_KEY)
        except PersistenceError as e:
            logger.warning("Could not read event cache: %s", e)
            return cls()
        store = cls.from_blob(data)
        logger.debug("Loaded %d cached event(s)", len(store))
        return store

    def to_blob(self) -> bytes:
        return json.dumps([event.to_api() for event in self._events.values()]).encode("utf-8")

    def persist(self, blob_store):
        blob_store.save_blob(EVENTS_KEY, self.to_blob())

    # ------------------------------------------------------------------ #
    # Mutation                                                            #
    # ------------------------------------------------------------------ #

    def merge(
        self, fetched: Iterable[CalendarEvent], ignored: Container[str], now: datetime
    ) -> MergeResult:
        """Diff against the fetch, then replace the contents with it."""
        result = merge_events(self._events.values(), fetched, ignored, now)
        self._events = {event.id: event for event in result.merged}
        return result

    def prune_past(self, now: datetime) -> int:
        """Drop timed events that ended before now. All-day events are kept."""
        stale = [
            eid
            for eid, event in self._events.items()
            if not event.is_all_day and event.end < now
        ]
        for eid in stale:
            del self._events[eid]
        if stale:
            logger.debug("Pruned %d past event(s)", len(stale))
        return len(stale)

    # ------------------------------------------------------------------ #
    # Queries                                                             #
    # ------------------------------------------------------------------ #

    def sorted_by_start(self) -> list[CalendarEvent]:
        return sorted(self._events.values(), key=lambda e: e.sort_key)

    def get(self, event_id: str) -> CalendarEvent | None:
        return self._events.get(event_id)

    def find_by_etag(self, etag: str) -> CalendarEvent | None:
        for event in self._events.values():
            if event.etag == etag:
                return event
        return None

    def __len__(self) -> int:
        return len(self._events)

    def __iter__(self) -> Iterator[CalendarEvent]:
        return iter(list(self._events.values()))
