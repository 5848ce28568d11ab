"""
Pure data models — no GLib, Google or sqlite imports.
"""

import enum
from dataclasses import dataclass
from dataclasses import field
from datetime import date
from datetime import datetime
from datetime import time
from pathlib import Path
from typing import Any

DEFAULT_STATE_DB = Path.home() / ".local/share/gcal-notifier-state.db"
DEFAULT_CONFIG = Path.home() / ".config/gcal-notifier.conf"

_SOUND_DIR = Path("/usr/share/sounds/freedesktop/stereo")


class NotifierError(Exception):
    """Base exception for calendar notifier errors."""

    pass


class FetchError(NotifierError):
    """Network or API failure while talking to the calendar source."""


class PersistenceError(NotifierError):
    """Read or write of a persisted blob failed."""


class MalformedEventError(NotifierError):
    """An event resource lacks the fields needed to schedule it."""


class AuthorizationError(NotifierError):
    """No usable OAuth token is available."""


class ConfigError(NotifierError):
    """Required configuration is missing or invalid."""


class Milestone(enum.Enum):
    """Notification milestones, ordered by decreasing lead time."""

    UPCOMING = 1
    IMMINENT = 2
    STARTED = 3

    @property
    def clip_id(self) -> str:
        return self.name.lower()


class NotificationPolicy(str, enum.Enum):
    PER_MILESTONE = "per-milestone"
    IGNORE_AFTER_FIRST = "ignore-after-first"


def _parse_datetime(value: str) -> datetime:
    if not isinstance(value, str):
        raise TypeError(f"expected an ISO 8601 string, got {value!r}")
    # Python < 3.11 fromisoformat() does not accept a trailing "Z".
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.astimezone()
    return parsed


@dataclass(frozen=True)
class CalendarEvent:
    """One event resource as returned by the Calendar API (v3)."""

    id: str
    etag: str
    summary: str = ""
    location: str = ""
    description: str = ""
    html_link: str = ""
    hangout_link: str = ""
    start: datetime | None = None
    end: datetime | None = None
    start_date: date | None = None
    end_date: date | None = None
    raw: dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @classmethod
    def from_api(cls, item: dict[str, Any]) -> "CalendarEvent":
        """Build an event from an API resource dict.

        Raises MalformedEventError when the id or either boundary is missing
        or unparseable.
        """
        if not isinstance(item, dict):
            raise MalformedEventError(f"Event resource is not an object: {item!r}")
        event_id = item.get("id")
        if not event_id:
            raise MalformedEventError("Event resource has no id")

        start = item.get("start") or {}
        end = item.get("end") or {}
        if not isinstance(start, dict) or not isinstance(end, dict):
            raise MalformedEventError(f"Event {event_id} has non-object start/end")
        try:
            if start.get("dateTime") and end.get("dateTime"):
                timed = {
                    "start": _parse_datetime(start["dateTime"]),
                    "end": _parse_datetime(end["dateTime"]),
                }
            elif start.get("date") and end.get("date"):
                timed = {
                    "start_date": date.fromisoformat(start["date"]),
                    "end_date": date.fromisoformat(end["date"]),
                }
            else:
                raise MalformedEventError(f"Event {event_id} has no usable start/end")
        except (AttributeError, TypeError, ValueError) as e:
            raise MalformedEventError(f"Event {event_id} has invalid start/end: {e}") from e

        return cls(
            id=event_id,
            etag=item.get("etag") or event_id,
            summary=item.get("summary") or "",
            location=item.get("location") or "",
            description=item.get("description") or "",
            html_link=item.get("htmlLink") or "",
            hangout_link=item.get("hangoutLink") or "",
            raw=dict(item),
            **timed,
        )

    def to_api(self) -> dict[str, Any]:
        return dict(self.raw)

    @property
    def is_all_day(self) -> bool:
        return self.start is None

    @property
    def sort_key(self) -> datetime:
        """Start instant; all-day events sort at local midnight of their start date."""
        if self.start is not None:
            return self.start
        return datetime.combine(self.start_date, time.min).astimezone()


@dataclass
class MergeResult:
    merged: list[CalendarEvent]
    added: list[CalendarEvent]
    removed: list[CalendarEvent]


@dataclass
class NotificationRequest:
    event: CalendarEvent
    milestone: Milestone
    minutes_to_start: int
    title: str
    body: str


@dataclass
class TrayItem:
    title: str
    key: str


@dataclass
class CycleStats:
    """Statistics for one reconciliation cycle."""

    added: int = 0
    removed: int = 0
    modified: int = 0
    total: int = 0
    errors: int = 0
    changed: bool = False


@dataclass
class NotifierConfig:
    """Configuration for the notifier daemon and the one-shot commands."""

    client_id: str
    client_secret: str
    state_db_path: Path
    calendar_id: str = "primary"
    max_results: int = 10
    refresh_interval: int = 15 * 60
    tick_interval: int = 30
    fetch_timeout: int = 30
    notify_policy: NotificationPolicy = NotificationPolicy.PER_MILESTONE
    ledger_size: int = 1000  # 0 = unbounded
    redirect_port: int = 9080
    sounds: dict[str, Path] = field(
        default_factory=lambda: {
            "upcoming": _SOUND_DIR / "message-new-instant.oga",
            "imminent": _SOUND_DIR / "bell.oga",
            "started": _SOUND_DIR / "complete.oga",
        }
    )
    force_login: bool = False
    ignore_cache: bool = False
    verbose: bool = False
