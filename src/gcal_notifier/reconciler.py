"""
Reconciler — one fetch → merge → notify → persist cycle.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from datetime import timedelta
from datetime import timezone

from gcal_notifier.models import AuthorizationError
from gcal_notifier.models import CalendarEvent
from gcal_notifier.models import CycleStats
from gcal_notifier.models import FetchError
from gcal_notifier.models import NotifierConfig
from gcal_notifier.models import PersistenceError
from gcal_notifier.scheduler import NotificationScheduler
from gcal_notifier.store import EventStore
from gcal_notifier.tray import build_tray_items
from gcal_notifier.tray import resolve_click


@dataclass
class RetryPolicy:
    """Regular interval after success, capped exponential backoff after failures."""

    interval: float = 15 * 60
    base_delay: float = 60
    factor: float = 2.0
    max_delay: float = 30 * 60

    def next_delay(self, failures: int) -> float:
        if failures <= 0:
            return self.interval
        return min(self.base_delay * self.factor ** (failures - 1), self.max_delay)


class Reconciler:
    """Drives reconciliation cycles against the calendar source.

    ``source`` provides ``fetch_events(time_min, max_results)``; ``blob_store``
    provides ``save_blob``/``load_blob``; ``desktop`` provides
    ``show_notification`` and ``render_tray``.
    """

    def __init__(
        self,
        config: NotifierConfig,
        store: EventStore,
        source,
        blob_store,
        scheduler: NotificationScheduler,
        desktop,
        retry: RetryPolicy | None = None,
    ):
        self.config = config
        self.store = store
        self.source = source
        self.blob_store = blob_store
        self.scheduler = scheduler
        self.desktop = desktop
        self.retry = retry or RetryPolicy(interval=config.refresh_interval)
        self.failures = 0
        self.next_attempt_at: datetime | None = None
        self.needs_authorization = False
        self.logger = logging.getLogger(__name__)

    def due(self, now: datetime | None = None) -> bool:
        now = now or datetime.now(timezone.utc)
        return self.next_attempt_at is None or now >= self.next_attempt_at

    def fetch(self, now: datetime | None = None) -> list[CalendarEvent]:
        """Ask the source for upcoming events. Raises FetchError or AuthorizationError."""
        now = now or datetime.now(timezone.utc)
        self.logger.info("Fetching events from calendar %s...", self.config.calendar_id)
        try:
            return list(self.source.fetch_events(time_min=now, max_results=self.config.max_results))
        except (FetchError, AuthorizationError):
            raise
        except Exception as e:
            raise FetchError(str(e)) from e

    def run_cycle(self, now: datetime | None = None) -> CycleStats:
        """Fetch and reconcile synchronously."""
        try:
            fetched = self.fetch(now)
        except (FetchError, AuthorizationError) as e:
            return self.complete_cycle(None, e, now)
        return self.complete_cycle(fetched, None, now)

    def complete_cycle(
        self,
        fetched: list[CalendarEvent] | None,
        error: Exception | None = None,
        now: datetime | None = None,
    ) -> CycleStats:
        """Apply a fetch outcome to local state and trigger side effects."""
        now = now or datetime.now(timezone.utc)
        stats = CycleStats(total=len(self.store))

        if error is not None or fetched is None:
            self._record_failure(error, now)
            stats.errors += 1
            return stats

        previous_count = len(self.store)
        self.store.prune_past(now)
        previous_etags = {event.id: event.etag for event in self.store}
        result = self.store.merge(fetched, self.scheduler.ignored, now)
        stats.added = len(result.added)
        stats.removed = len(result.removed)
        stats.modified = sum(
            1
            for event in self.store
            if event.id in previous_etags and previous_etags[event.id] != event.etag
        )
        stats.total = len(self.store)
        # Revised etags change the tray keys, so they count as a change too.
        stats.changed = (
            bool(result.added or result.removed or stats.modified)
            or stats.total != previous_count
        )

        if result.added:
            summaries = ", ".join(e.summary for e in result.added)
            self.logger.info("New events: %s", summaries)
            self.desktop.show_notification("New events fetched", summaries)
        for event in result.removed:
            self.logger.info("Event removed: %s", event.summary)
            self.desktop.show_notification("Event removed", event.summary)

        if stats.changed:
            self.redraw_tray()
            self.scheduler.tick(now)

        try:
            self.store.persist(self.blob_store)
        except PersistenceError as e:
            self.logger.error(f"Failed to persist event cache: {e}")
            stats.errors += 1

        self.failures = 0
        self.needs_authorization = False
        self.next_attempt_at = now + timedelta(seconds=self.retry.next_delay(0))
        return stats

    def _record_failure(self, error: Exception | None, now: datetime):
        if isinstance(error, AuthorizationError):
            # The app prompts for authorization; no popup here.
            self.needs_authorization = True
            self.logger.warning(f"Authorization required: {error}")
            return
        self.failures += 1
        delay = self.retry.next_delay(self.failures)
        self.next_attempt_at = now + timedelta(seconds=delay)
        message = str(error) if error is not None else "Unknown error"
        self.logger.error(
            f"Error while fetching events: {message} "
            f"(attempt {self.failures}, retrying in {delay:.0f}s)"
        )
        self.desktop.show_notification("Error while fetching events", message)

    def redraw_tray(self):
        self.desktop.render_tray(build_tray_items(self.store.sorted_by_start()))

    def on_tray_click(self, key: str) -> CalendarEvent | None:
        event = resolve_click(self.store, key)
        if event is None:
            self.logger.debug("Tray key %s no longer matches an event", key)
        return event
