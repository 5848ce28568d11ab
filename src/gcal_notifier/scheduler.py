"""
NotificationScheduler — decides which (event, milestone) pairs are due.

Runs on its own timer, faster than the fetch cadence, so a notification fires
close to its deadline even between fetches. The notified ledger is the only
protection against the reconciler's post-merge tick and the timer tick both
announcing the same milestone.
"""

import logging
import math
from datetime import datetime
from datetime import timezone

from gcal_notifier.ledger import IgnoredSet
from gcal_notifier.ledger import NotifiedLedger
from gcal_notifier.models import CalendarEvent
from gcal_notifier.models import MalformedEventError
from gcal_notifier.models import Milestone
from gcal_notifier.models import NotificationPolicy
from gcal_notifier.models import NotificationRequest
from gcal_notifier.store import EventStore

UPCOMING_MINUTES = 5
IMMINENT_MINUTES = 1


def minutes_to_start(start: datetime, now: datetime) -> int:
    return math.floor((start - now).total_seconds() / 60)


def classify_milestone(minutes: int) -> Milestone | None:
    """Map whole minutes until start onto exactly one milestone (or none)."""
    if minutes <= 0:
        return Milestone.STARTED
    if minutes <= IMMINENT_MINUTES:
        return Milestone.IMMINENT
    if minutes < UPCOMING_MINUTES:
        return Milestone.UPCOMING
    return None


def milestone_label(milestone: Milestone, minutes: int) -> str:
    if milestone is Milestone.STARTED:
        return "Event started"
    if milestone is Milestone.IMMINENT:
        return "Event starting now"
    return f"Event starting in {minutes} minutes"


def build_request(event: CalendarEvent, milestone: Milestone, minutes: int) -> NotificationRequest:
    start = event.start.astimezone().strftime("%H:%M")
    end = event.end.astimezone().strftime("%H:%M")
    return NotificationRequest(
        event=event,
        milestone=milestone,
        minutes_to_start=minutes,
        title=f"{start} - {end}: {milestone_label(milestone, minutes)}",
        body=f"{event.location} {event.summary}".strip(),
    )


class NotificationScheduler:
    """Fires due milestone notifications for the events in an EventStore.

    ``desktop`` must provide ``show_notification(title, body)`` and
    ``play_sound(clip_id)``.
    """

    def __init__(
        self,
        store: EventStore,
        desktop,
        notified: NotifiedLedger | None = None,
        ignored: IgnoredSet | None = None,
        policy: NotificationPolicy = NotificationPolicy.PER_MILESTONE,
    ):
        self.store = store
        self.desktop = desktop
        self.notified = notified if notified is not None else NotifiedLedger()
        self.ignored = ignored if ignored is not None else IgnoredSet()
        self.policy = policy
        self.logger = logging.getLogger(__name__)

    def ignore(self, event_id: str):
        self.ignored.add(event_id)

    def due(self, event: CalendarEvent, now: datetime) -> tuple[Milestone, int] | None:
        """Return (milestone, minutes) if event needs a notification at now."""
        if event.is_all_day:
            return None
        if event.start is None or event.end is None:
            raise MalformedEventError(f"Event {event.id} has no start/end")
        if event.end <= now or event.id in self.ignored:
            return None
        minutes = minutes_to_start(event.start, now)
        milestone = classify_milestone(minutes)
        if milestone is None or (event.etag, milestone) in self.notified:
            return None
        return milestone, minutes

    def tick(self, now: datetime | None = None) -> list[NotificationRequest]:
        """Fire every due notification once; never raises."""
        now = now or datetime.now(timezone.utc)
        fired = []
        for event in self.store:
            try:
                due = self.due(event, now)
                if due is None:
                    continue
                milestone, minutes = due
                request = build_request(event, milestone, minutes)
                self.logger.info("Notifying about %r: %s", event.summary, request.title)
                # Recorded before delivery: a failed delivery is not retried.
                self.notified.add((event.etag, milestone))
                if self.policy is NotificationPolicy.IGNORE_AFTER_FIRST:
                    self.ignored.add(event.id)
                self.desktop.show_notification(request.title, request.body)
                self.desktop.play_sound(milestone.clip_id)
                fired.append(request)
            except MalformedEventError as e:
                self.logger.debug("Skipping event: %s", e)
            except Exception as e:
                self.logger.error(f"Failed to notify about event {event.id}: {e}")
        return fired
