"""
Unit tests for EventStore: event parsing, merge/diff, pruning and persistence.
"""

import json
from datetime import timedelta

import pytest

from gcal_notifier.db import EVENTS_KEY
from gcal_notifier.ledger import IgnoredSet
from gcal_notifier.models import CalendarEvent
from gcal_notifier.models import MalformedEventError
from gcal_notifier.models import PersistenceError
from gcal_notifier.store import EventStore
from gcal_notifier.store import merge_events
from gcal_notifier.store import parse_events
from tests.conftest import NOW
from tests.conftest import make_all_day_item
from tests.conftest import make_event
from tests.conftest import make_item

# ---------------------------------------------------------------------------
# CalendarEvent parsing
# ---------------------------------------------------------------------------


class TestCalendarEvent:
    def test_timed_event(self):
        event = CalendarEvent.from_api(make_item("A", start_in=3, location="Room 1"))
        assert not event.is_all_day
        assert event.start == NOW + timedelta(minutes=3)
        assert event.end == NOW + timedelta(minutes=63)
        assert event.location == "Room 1"
        assert event.etag == '"A-1"'

    def test_zulu_timestamps_are_accepted(self):
        item = make_item("A")
        item["start"] = {"dateTime": "2026-03-01T10:30:00Z"}
        item["end"] = {"dateTime": "2026-03-01T11:00:00Z"}
        event = CalendarEvent.from_api(item)
        assert event.start == NOW + timedelta(minutes=30)

    def test_all_day_event(self):
        event = CalendarEvent.from_api(make_all_day_item("H"))
        assert event.is_all_day
        assert event.start is None
        assert event.start_date.isoformat() == "2026-03-01"

    def test_missing_start_is_malformed(self):
        item = make_item("A")
        del item["start"]
        with pytest.raises(MalformedEventError):
            CalendarEvent.from_api(item)

    def test_missing_id_is_malformed(self):
        item = make_item("A")
        del item["id"]
        with pytest.raises(MalformedEventError):
            CalendarEvent.from_api(item)

    def test_unparseable_timestamp_is_malformed(self):
        item = make_item("A")
        item["start"] = {"dateTime": "tomorrow-ish"}
        with pytest.raises(MalformedEventError):
            CalendarEvent.from_api(item)

    @pytest.mark.parametrize(
        "start, end",
        [
            ("2026-03-01", "x"),
            (["oops"], {}),
            ({"dateTime": 123}, {"dateTime": 456}),
            ({"date": 20260301}, {"date": 20260302}),
        ],
    )
    def test_wrongly_typed_boundaries_are_malformed(self, start, end):
        item = make_item("A")
        item["start"] = start
        item["end"] = end
        with pytest.raises(MalformedEventError):
            CalendarEvent.from_api(item)

    def test_parse_events_skips_wrongly_typed_items(self):
        events = parse_events([{"id": "b", "start": ["oops"], "end": {}}, make_item("g")])
        assert [e.id for e in events] == ["g"]

    def test_parse_events_skips_malformed(self):
        broken = make_item("B")
        broken["end"] = {}
        events = parse_events([make_item("A"), broken, make_item("C")])
        assert [e.id for e in events] == ["A", "C"]

    def test_to_api_round_trips_raw_resource(self):
        item = make_item("A", description="<https://meet.google.com/abc-defg-hij>")
        assert CalendarEvent.from_api(item).to_api() == item


# ---------------------------------------------------------------------------
# merge
# ---------------------------------------------------------------------------


class TestMerge:
    def test_added_is_fetched_minus_current_by_id(self):
        current = [make_event("A"), make_event("B")]
        fetched = [make_event("B"), make_event("C"), make_event("D")]

        result = merge_events(current, fetched, IgnoredSet(), NOW)

        assert {e.id for e in result.added} == {"C", "D"}

    def test_merged_is_exactly_fetched(self):
        current = [make_event("A"), make_event("B", etag='"old"')]
        fetched = [make_event("B", etag='"new"'), make_event("C")]

        result = merge_events(current, fetched, IgnoredSet(), NOW)

        assert result.merged == fetched
        assert result.merged[0].etag == '"new"'

    def test_duplicate_ids_in_fetch_keep_last(self):
        fetched = [make_event("A", etag='"first"'), make_event("A", etag='"second"')]
        result = merge_events([], fetched, IgnoredSet(), NOW)
        assert [e.etag for e in result.merged] == ['"second"']

    def test_missing_future_event_is_removed(self):
        current = [make_event("A", start_in=30)]
        result = merge_events(current, [], IgnoredSet(), NOW)
        assert [e.id for e in result.removed] == ["A"]

    def test_missing_past_event_is_not_reported(self):
        """An event that already started disappears silently."""
        current = [make_event("A", start_in=-10)]
        result = merge_events(current, [], IgnoredSet(), NOW)
        assert result.removed == []

    def test_missing_ignored_event_is_not_reported(self):
        ignored = IgnoredSet()
        ignored.add("A")
        current = [make_event("A", start_in=30)]

        result = merge_events(current, [], ignored, NOW)

        assert result.removed == []

    def test_edited_event_with_same_id_is_not_removed(self):
        current = [make_event("A", start_in=30, etag='"e1"')]
        fetched = [make_event("A", start_in=45, etag='"e2"')]

        result = merge_events(current, fetched, IgnoredSet(), NOW)

        assert result.added == []
        assert result.removed == []

    def test_store_merge_replaces_contents(self):
        store = EventStore([make_event("A"), make_event("B")])
        store.merge([make_event("C")], IgnoredSet(), NOW)

        assert [e.id for e in store] == ["C"]
        assert store.get("A") is None


# ---------------------------------------------------------------------------
# prune_past
# ---------------------------------------------------------------------------


class TestPrunePast:
    def test_drops_events_that_ended(self):
        store = EventStore(
            [
                make_event("ended", start_in=-90, duration=60),
                make_event("running", start_in=-30, duration=60),
                make_event("future", start_in=30),
            ]
        )
        assert store.prune_past(NOW) == 1
        assert {e.id for e in store} == {"running", "future"}

    def test_event_ending_exactly_now_is_kept(self):
        store = EventStore([make_event("edge", start_in=-60, duration=60)])
        assert store.prune_past(NOW) == 0

    def test_all_day_events_are_never_pruned(self):
        store = EventStore([CalendarEvent.from_api(make_all_day_item("H", day="2020-01-01"))])
        assert store.prune_past(NOW) == 0
        assert len(store) == 1


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


class TestQueries:
    def test_sorted_by_start_is_recomputed(self):
        store = EventStore([make_event("late", start_in=60), make_event("early", start_in=5)])
        assert [e.id for e in store.sorted_by_start()] == ["early", "late"]

        store.merge(
            [make_event("late", start_in=1), make_event("early", start_in=5)], IgnoredSet(), NOW
        )
        assert [e.id for e in store.sorted_by_start()] == ["late", "early"]

    def test_all_day_sorts_by_local_midnight(self):
        store = EventStore(
            [make_event("timed", start_in=60 * 48), CalendarEvent.from_api(make_all_day_item("H"))]
        )
        assert [e.id for e in store.sorted_by_start()] == ["H", "timed"]

    def test_find_by_etag(self):
        store = EventStore([make_event("A", etag='"x"'), make_event("B", etag='"y"')])
        assert store.find_by_etag('"y"').id == "B"
        assert store.find_by_etag('"z"') is None

    def test_one_entry_per_id(self):
        store = EventStore([make_event("A", etag='"1"'), make_event("A", etag='"2"')])
        assert len(store) == 1
        assert store.get("A").etag == '"2"'


# ---------------------------------------------------------------------------
# load / persist
# ---------------------------------------------------------------------------


class TestPersistence:
    def test_persist_then_load(self, blob_store):
        EventStore([make_event("A"), make_event("B")]).persist(blob_store)
        loaded = EventStore.load(blob_store)
        assert {e.id for e in loaded} == {"A", "B"}

    def test_missing_blob_gives_empty_store(self, blob_store):
        assert len(EventStore.load(blob_store)) == 0

    def test_corrupt_blob_gives_empty_store(self, blob_store):
        blob_store.save_blob(EVENTS_KEY, b"{not json")
        assert len(EventStore.load(blob_store)) == 0

    def test_wrong_shape_gives_empty_store(self, blob_store):
        blob_store.save_blob(EVENTS_KEY, b'{"items": []}')
        assert len(EventStore.load(blob_store)) == 0

    def test_malformed_records_are_skipped(self, blob_store):
        blob_store.save_blob(EVENTS_KEY, b'[{"id": "no-times"}, 42]')
        assert len(EventStore.load(blob_store)) == 0

    def test_wrongly_typed_records_give_empty_store(self, blob_store):
        blob_store.save_blob(
            EVENTS_KEY,
            b'[{"id": "x", "start": "2026-03-01", "end": "x"},'
            b' {"id": "y", "start": {"dateTime": 123}, "end": {"dateTime": 456}}]',
        )
        assert len(EventStore.load(blob_store)) == 0

    def test_valid_records_survive_alongside_corrupt_ones(self, blob_store):
        good = make_item("g")
        blob_store.save_blob(
            EVENTS_KEY,
            json.dumps([{"id": "b", "start": ["oops"], "end": {}}, good]).encode("utf-8"),
        )
        assert [e.id for e in EventStore.load(blob_store)] == ["g"]

    def test_persistence_error_gives_empty_store(self):
        class BrokenBlobs:
            def load_blob(self, key):
                raise PersistenceError("disk on fire")

        assert len(EventStore.load(BrokenBlobs())) == 0
