"""
Shared pytest fixtures and Calendar API resource helpers.
"""

from datetime import datetime
from datetime import timedelta
from datetime import timezone

import pytest

from gcal_notifier.db import BlobStore
from gcal_notifier.models import CalendarEvent
from gcal_notifier.models import NotifierConfig
from gcal_notifier.reconciler import Reconciler
from gcal_notifier.scheduler import NotificationScheduler
from gcal_notifier.store import EventStore
from tests.fake_client import FakeCalendarSource
from tests.fake_client import RecordingDesktop

NOW = datetime(2026, 3, 1, 10, 0, 0, tzinfo=timezone.utc)


def make_item(
    event_id: str,
    start_in: float = 30,
    duration: float = 60,
    etag: str | None = None,
    summary: str | None = None,
    location: str = "",
    description: str = "",
    now: datetime = NOW,
) -> dict:
    """Return a timed event resource starting ``start_in`` minutes after ``now``."""
    start = now + timedelta(minutes=start_in)
    end = start + timedelta(minutes=duration)
    item = {
        "id": event_id,
        "etag": etag or f'"{event_id}-1"',
        "summary": summary or f"Meeting {event_id}",
        "start": {"dateTime": start.isoformat()},
        "end": {"dateTime": end.isoformat()},
        "htmlLink": f"https://www.google.com/calendar/event?eid={event_id}",
    }
    if location:
        item["location"] = location
    if description:
        item["description"] = description
    return item


def make_all_day_item(event_id: str, day: str = "2026-03-01", summary: str = "Holiday") -> dict:
    """Return an all-day event resource (date only, no time of day)."""
    next_day = (datetime.fromisoformat(day) + timedelta(days=1)).date().isoformat()
    return {
        "id": event_id,
        "etag": f'"{event_id}-1"',
        "summary": summary,
        "start": {"date": day},
        "end": {"date": next_day},
    }


def make_event(event_id: str, **kwargs) -> CalendarEvent:
    return CalendarEvent.from_api(make_item(event_id, **kwargs))


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "test_state.db"


@pytest.fixture
def blob_store(db_path):
    with BlobStore(db_path) as store:
        yield store


@pytest.fixture
def notifier_config(db_path):
    return NotifierConfig(
        client_id="client-id",
        client_secret="client-secret",
        state_db_path=db_path,
    )


@pytest.fixture
def desktop():
    return RecordingDesktop()


@pytest.fixture
def event_store():
    return EventStore()


@pytest.fixture
def scheduler(event_store, desktop):
    return NotificationScheduler(event_store, desktop)


@pytest.fixture
def source():
    return FakeCalendarSource()


@pytest.fixture
def reconciler(notifier_config, event_store, source, blob_store, scheduler, desktop):
    return Reconciler(notifier_config, event_store, source, blob_store, scheduler, desktop)
