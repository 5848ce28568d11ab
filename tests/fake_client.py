"""
In-memory fakes for the notifier's collaborators.

FakeCalendarSource is a duck-type-compatible stand-in for GoogleCalendarSource
(no network or OAuth), and RecordingDesktop records the side effects that the
scheduler and reconciler request instead of touching libnotify/GStreamer/Gtk.
FakeAuthorizer and ManualLoop let the controller run without OAuth, GLib or
threads.
"""

from gcal_notifier.models import CalendarEvent
from gcal_notifier.store import parse_events


class FakeCalendarSource:
    """Returns a scripted list of event resources, or raises a scripted error."""

    def __init__(self, items: list[dict] | None = None):
        self.items: list[dict] = list(items or [])
        self.error: Exception | None = None
        self.calls: list[tuple] = []

    def fetch_events(self, time_min, max_results=10) -> list[CalendarEvent]:
        self.calls.append((time_min, max_results))
        if self.error is not None:
            raise self.error
        return parse_events(self.items[:max_results])


class RecordingDesktop:
    """Records notifications, sound cues and tray renders."""

    def __init__(self):
        self.notifications: list[tuple[str, str]] = []
        self.sounds: list[str] = []
        self.trays: list[list] = []

    def show_notification(self, title: str, body: str):
        self.notifications.append((title, body))

    def play_sound(self, clip_id: str):
        self.sounds.append(clip_id)

    def render_tray(self, items):
        self.trays.append(list(items))

    # ------------------------------------------------------------------ #
    # Test helpers                                                          #
    # ------------------------------------------------------------------ #

    def titles(self) -> list[str]:
        return [title for title, _ in self.notifications]

    def reset(self):
        self.notifications.clear()
        self.sounds.clear()
        self.trays.clear()


class FakeAuthorizer:
    """Stands in for GoogleAuthorizer; authorize() succeeds unless ``error`` is set."""

    def __init__(self, authorized: bool = True):
        self.authorized = authorized
        self.error: Exception | None = None
        self.attempts = 0
        self._callbacks = []

    def is_authorized(self) -> bool:
        return self.authorized

    def on_authorized(self, callback):
        self._callbacks.append(callback)

    def authorize(self, open_browser: bool = True):
        self.attempts += 1
        if self.error is not None:
            raise self.error
        self.authorized = True
        for callback in list(self._callbacks):
            callback(None)


class ManualLoop:
    """
    Deterministic stand-in for the GLib main loop and worker threads.

    Nothing runs until the test calls run_workers() (the spawned background
    targets) or pump() (callbacks handed back through idle_add).
    """

    def __init__(self):
        self.idle: list[tuple] = []
        self.spawned: list[tuple] = []
        self.opened: list[str] = []

    def idle_add(self, fn, *args):
        self.idle.append((fn, args))

    def spawn(self, target, name: str):
        self.spawned.append((name, target))

    def open_uri(self, uri: str):
        self.opened.append(uri)

    def spawned_names(self) -> list[str]:
        return [name for name, _ in self.spawned]

    def run_workers(self):
        while self.spawned:
            _name, target = self.spawned.pop(0)
            target()

    def pump(self):
        while self.idle:
            fn, args = self.idle.pop(0)
            fn(*args)

    def settle(self):
        """Run workers and idle callbacks until nothing is pending."""
        while self.spawned or self.idle:
            self.run_workers()
            self.pump()
