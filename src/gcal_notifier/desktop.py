"""
GNOME desktop integration: libnotify alerts, GStreamer sound cues, the
AppIndicator tray menu and the GLib main loop that drives the timers.
"""

import logging
import threading
from pathlib import Path

import gi

gi.require_version("GLib", "2.0")
gi.require_version("Gio", "2.0")
gi.require_version("Gst", "1.0")
gi.require_version("Gtk", "3.0")
gi.require_version("Notify", "0.7")
from gi.repository import Gio
from gi.repository import GLib
from gi.repository import Gst
from gi.repository import Gtk
from gi.repository import Notify

try:
    gi.require_version("AyatanaAppIndicator3", "0.1")
    from gi.repository import AyatanaAppIndicator3 as AppIndicator
except (ValueError, ImportError):
    gi.require_version("AppIndicator3", "0.1")
    from gi.repository import AppIndicator3 as AppIndicator

from gcal_notifier.app import APP_NAME
from gcal_notifier.app import APP_TITLE
from gcal_notifier.app import NotifierController
from gcal_notifier.models import NotifierConfig
from gcal_notifier.models import TrayItem

ICON_NAME = "x-office-calendar"

logger = logging.getLogger(__name__)


def open_uri(uri: str):
    try:
        Gio.AppInfo.launch_default_for_uri(uri, None)
    except GLib.Error as e:
        logger.error(f"Failed to open {uri}: {e.message}")


class LibnotifyNotifier:
    """Fire-and-forget desktop alerts through libnotify."""

    def __init__(self, app_name: str = APP_NAME):
        if not Notify.is_initted():
            Notify.init(app_name)

    def show(self, title: str, body: str):
        notification = Notify.Notification.new(title, body, ICON_NAME)
        try:
            notification.show()
        except GLib.Error as e:
            logger.error(f"Failed to show notification {title!r}: {e.message}")


class GstSoundPlayer:
    """Plays short sound clips with a GStreamer playbin; failures are only logged."""

    def __init__(self, clips: dict[str, Path]):
        Gst.init(None)
        self.clips = clips
        self._players: list = []

    def play(self, clip_id: str):
        path = self.clips.get(clip_id)
        if path is None or not Path(path).exists():
            logger.warning("Sound clip %r not found (%s)", clip_id, path)
            return
        player = Gst.ElementFactory.make("playbin", None)
        if player is None:
            logger.warning("GStreamer playbin is unavailable; cannot play %s", clip_id)
            return
        player.set_property("uri", Path(path).resolve().as_uri())
        bus = player.get_bus()
        bus.add_signal_watch()
        bus.connect("message", self._on_message, player)
        self._players.append(player)
        if player.set_state(Gst.State.PLAYING) == Gst.StateChangeReturn.FAILURE:
            logger.warning("Could not play sound clip %s", path)
            self._stop(player)

    def _on_message(self, bus, message, player):
        if message.type == Gst.MessageType.EOS:
            self._stop(player)
        elif message.type == Gst.MessageType.ERROR:
            err, _debug = message.parse_error()
            logger.warning("Sound playback failed: %s", err.message)
            self._stop(player)

    def _stop(self, player):
        player.set_state(Gst.State.NULL)
        player.get_bus().remove_signal_watch()
        if player in self._players:
            self._players.remove(player)


class IndicatorTray:
    """AppIndicator menu listing upcoming events; clicking one calls on_click(key)."""

    def __init__(self, on_click, on_refresh, on_quit):
        self.on_click = on_click
        self.on_refresh = on_refresh
        self.on_quit = on_quit
        self.indicator = AppIndicator.Indicator.new(
            APP_NAME, ICON_NAME, AppIndicator.IndicatorCategory.APPLICATION_STATUS
        )
        self.indicator.set_title(APP_TITLE)
        self.indicator.set_status(AppIndicator.IndicatorStatus.ACTIVE)
        self.render([])

    def render(self, items: list[TrayItem]):
        menu = Gtk.Menu()
        if not items:
            empty = Gtk.MenuItem(label="No upcoming events")
            empty.set_sensitive(False)
            menu.append(empty)
        for item in items:
            entry = Gtk.MenuItem(label=item.title)
            entry.set_tooltip_text(item.key)
            entry.connect("activate", lambda _w, key=item.key: self.on_click(key))
            menu.append(entry)

        menu.append(Gtk.SeparatorMenuItem())
        refresh = Gtk.MenuItem(label="Refresh now")
        refresh.connect("activate", lambda _w: self.on_refresh())
        menu.append(refresh)
        quit_item = Gtk.MenuItem(label="Quit")
        quit_item.connect("activate", lambda _w: self.on_quit())
        menu.append(quit_item)

        menu.show_all()
        self.indicator.set_menu(menu)


class DesktopSurface:
    """Outbound side-effect interface used by the scheduler and reconciler."""

    def __init__(self, notifier: LibnotifyNotifier, sounds: GstSoundPlayer):
        self.notifier = notifier
        self.sounds = sounds
        self.tray: IndicatorTray | None = None

    def show_notification(self, title: str, body: str):
        self.notifier.show(title, body)

    def play_sound(self, clip_id: str):
        try:
            self.sounds.play(clip_id)
        except Exception as e:
            logger.warning("Sound cue %s failed: %s", clip_id, e)

    def render_tray(self, items: list[TrayItem]):
        if self.tray is not None:
            self.tray.render(items)


def _spawn_thread(target, name: str):
    threading.Thread(target=target, name=name, daemon=True).start()


class NotifierApp:
    """
    Runs a NotifierController on the GLib main loop.

    All state lives on the main loop. Blocking network work (fetches and the
    OAuth redirect wait) runs on worker threads whose results are handed back
    with GLib.idle_add, so the tick timer keeps firing while a fetch is pending.
    """

    def __init__(self, config: NotifierConfig, reconciler, scheduler, authorizer, desktop):
        self.config = config
        self.desktop = desktop
        self.controller = NotifierController(
            reconciler,
            scheduler,
            authorizer,
            desktop,
            idle_add=GLib.idle_add,
            spawn=_spawn_thread,
            open_uri=open_uri,
        )

    def run(self):
        self.desktop.tray = IndicatorTray(
            on_click=self.controller.on_tray_click,
            on_refresh=self.controller.refresh,
            on_quit=Gtk.main_quit,
        )
        self.controller.start()

        GLib.timeout_add_seconds(
            min(60, self.config.refresh_interval), self.controller.on_reconcile_timer
        )
        GLib.timeout_add_seconds(self.config.tick_interval, self.controller.on_tick_timer)
        self.controller.on_tick_timer()

        logger.info("Notifier running; watching calendar %s", self.config.calendar_id)
        Gtk.main()
