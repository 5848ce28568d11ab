"""
Tray menu contents and click resolution.
"""

import re
from collections.abc import Iterable

from gcal_notifier.models import CalendarEvent
from gcal_notifier.models import TrayItem
from gcal_notifier.store import EventStore

# Meeting links are embedded in the description as "<https://...>".
_TEAMS_LINK_RE = re.compile(r"<(https://teams\.microsoft\.com/l/meetup-join/[^>]*)>")
_MEET_LINK_RE = re.compile(r"<(https://meet\.google\.com/[^>]*)>")


def tray_title(event: CalendarEvent) -> str:
    start = event.start.astimezone()
    end = event.end.astimezone()
    end_part = "" if end.date() == start.date() else f" {end:%Y-%m-%d}"
    return f"{start:%Y-%m-%d %H:%M} -{end_part} {end:%H:%M}: {event.summary}"


def build_tray_items(events: Iterable[CalendarEvent]) -> list[TrayItem]:
    """Menu entries for timed events, ordered by start. All-day events are skipped."""
    ordered = sorted(events, key=lambda e: e.sort_key)
    return [TrayItem(title=tray_title(e), key=e.etag) for e in ordered if not e.is_all_day]


def resolve_click(store: EventStore, key: str) -> CalendarEvent | None:
    """Map a clicked item's key back to the event it was rendered from."""
    return store.find_by_etag(key)


def extract_meeting_link(event: CalendarEvent) -> str | None:
    """Teams link, then Meet link from the description, then hangoutLink, then htmlLink."""
    description = event.description or ""
    for pattern in (_TEAMS_LINK_RE, _MEET_LINK_RE):
        match = pattern.search(description)
        if match:
            return match.group(1)
    return event.hangout_link or event.html_link or None
