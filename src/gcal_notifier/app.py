"""
NotifierController — the daemon's event-loop state machine.

Owns the fetch-in-flight and authorization-wait states. Knows nothing about
GLib: the loop adapter injects ``idle_add(fn, *args)`` to hand results back
to the main loop and ``spawn(target, name)`` to run blocking work elsewhere.
Callbacks scheduled through ``idle_add`` return False so they run once;
timer handlers return True so they keep firing.
"""

import logging
from datetime import datetime
from datetime import timezone

from gcal_notifier.models import AuthorizationError
from gcal_notifier.models import FetchError
from gcal_notifier.tray import extract_meeting_link

APP_NAME = "gcal-notifier"
APP_TITLE = "Calendar Events"
AUTH_NOTICE = "Authorize the app by visiting the URL in the console."


class NotifierController:
    def __init__(
        self,
        reconciler,
        scheduler,
        authorizer,
        desktop,
        idle_add,
        spawn,
        open_uri,
    ):
        self.reconciler = reconciler
        self.scheduler = scheduler
        self.authorizer = authorizer
        self.desktop = desktop
        self.idle_add = idle_add
        self.spawn = spawn
        self.open_uri = open_uri
        self.fetching = False
        self.authorizing = False
        self.logger = logging.getLogger(__name__)

    def start(self):
        """Draw the cached tray, then fetch or wait for authorization."""
        self.authorizer.on_authorized(lambda _creds: self.idle_add(self._after_authorization))

        if len(self.reconciler.store):
            self.reconciler.redraw_tray()

        if self.authorizer.is_authorized():
            self.start_cycle(force=True)
        else:
            self.request_authorization()

    # ------------------------------------------------------------------ #
    # Timers                                                              #
    # ------------------------------------------------------------------ #

    def on_reconcile_timer(self) -> bool:
        if not self.authorizing and not self.reconciler.needs_authorization:
            self.start_cycle()
        return True

    def on_tick_timer(self) -> bool:
        self.scheduler.tick()
        return True

    # ------------------------------------------------------------------ #
    # Reconciliation                                                      #
    # ------------------------------------------------------------------ #

    def refresh(self):
        """Tray "Refresh now"; also the only retry after a failed authorization."""
        self.start_cycle(force=True)

    def start_cycle(self, force: bool = False) -> bool:
        """Start a fetch unless one is in flight. Returns True if one was started."""
        if self.fetching:
            self.logger.debug("Fetch already in progress")
            return False
        if not force and not self.reconciler.due():
            return False
        self.fetching = True
        self.spawn(self._fetch_worker, "calendar-fetch")
        return True

    def _fetch_worker(self):
        try:
            fetched = self.reconciler.fetch(datetime.now(timezone.utc))
        except (FetchError, AuthorizationError) as e:
            self.idle_add(self._finish_cycle, None, e)
        else:
            self.idle_add(self._finish_cycle, fetched, None)

    def _finish_cycle(self, fetched, error) -> bool:
        self.fetching = False
        stats = self.reconciler.complete_cycle(fetched, error)
        self.logger.debug("Cycle finished: %s", stats)
        if self.reconciler.needs_authorization:
            self.request_authorization()
        return False

    # ------------------------------------------------------------------ #
    # Authorization                                                       #
    # ------------------------------------------------------------------ #

    def request_authorization(self):
        if self.authorizing:
            return
        self.authorizing = True
        self.desktop.show_notification(APP_TITLE, AUTH_NOTICE)
        self.spawn(self._authorize_worker, "oauth-redirect")

    def _authorize_worker(self):
        try:
            self.authorizer.authorize(open_browser=True)
        except AuthorizationError as e:
            self.logger.error(f"{e}")
            self.idle_add(self._authorization_failed, str(e))

    def _authorization_failed(self, message: str) -> bool:
        self.authorizing = False
        self.reconciler.needs_authorization = True
        self.desktop.show_notification("Authorization failed", message)
        return False

    def _after_authorization(self) -> bool:
        self.authorizing = False
        self.reconciler.needs_authorization = False
        self.start_cycle(force=True)
        return False

    # ------------------------------------------------------------------ #
    # Tray clicks                                                         #
    # ------------------------------------------------------------------ #

    def on_tray_click(self, key: str) -> str | None:
        """Open the clicked event's meeting link; returns the link opened."""
        event = self.reconciler.on_tray_click(key)
        if event is None:
            return None
        link = extract_meeting_link(event)
        if not link:
            self.logger.warning("No link found for event %r", event.summary)
            return None
        self.logger.info("Opening %s for %r", link, event.summary)
        self.open_uri(link)
        return link
