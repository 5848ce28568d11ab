"""
Command-line interface for the calendar notifier.
"""

import logging
import os
from configparser import ConfigParser
from dataclasses import dataclass
from dataclasses import field
from datetime import datetime
from datetime import timezone
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from gcal_notifier.db import BlobStore
from gcal_notifier.db import query_status
from gcal_notifier.ledger import IgnoredSet
from gcal_notifier.ledger import NotifiedLedger
from gcal_notifier.models import DEFAULT_CONFIG
from gcal_notifier.models import DEFAULT_STATE_DB
from gcal_notifier.models import ConfigError
from gcal_notifier.models import NotificationPolicy
from gcal_notifier.models import NotifierConfig
from gcal_notifier.models import NotifierError
from gcal_notifier.models import TrayItem
from gcal_notifier.reconciler import Reconciler
from gcal_notifier.scheduler import NotificationScheduler
from gcal_notifier.store import EventStore

CONFIG_SECTION = "gcal-notifier"

# ---------------------------------------------------------------------------
# Typer app
# ---------------------------------------------------------------------------

app = typer.Typer(
    no_args_is_help=True,
    rich_markup_mode="rich",
    help="Desktop notifications and a tray menu for upcoming Google Calendar events.",
)

console = Console()


# ---------------------------------------------------------------------------
# Global state shared across subcommands
# ---------------------------------------------------------------------------


@dataclass
class _State:
    config_path: Path = field(default_factory=lambda: DEFAULT_CONFIG)
    state_db: Path = field(default_factory=lambda: DEFAULT_STATE_DB)
    verbose: bool = False


state = _State()


@app.callback()
def _global(
    config: Annotated[
        Path,
        typer.Option("--config", "-c", help=f"Config file path (default: {DEFAULT_CONFIG})"),
    ] = DEFAULT_CONFIG,
    state_db: Annotated[
        Path,
        typer.Option("--state-db", help=f"State DB path (default: {DEFAULT_STATE_DB})"),
    ] = DEFAULT_STATE_DB,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Enable verbose debug output"),
    ] = False,
) -> None:
    state.config_path = config
    state.state_db = state_db
    state.verbose = verbose
    _setup_logging(verbose)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False, console=console)],
    )


def _load_config_file(config_path: Path) -> dict[str, str]:
    if not config_path.exists():
        return {}
    parser = ConfigParser()
    parser.read(config_path)
    if CONFIG_SECTION not in parser:
        return {}
    return dict(parser[CONFIG_SECTION])


def _int_option(values: dict[str, str], key: str, default: int) -> int:
    raw = values.get(key)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(f"{key} must be an integer, got {raw!r}") from None


def build_config(
    values: dict[str, str],
    env: dict[str, str] | None = None,
    state_db_path: Path = DEFAULT_STATE_DB,
    require_credentials: bool = True,
    **overrides,
) -> NotifierConfig:
    """Merge config-file values with environment fallbacks into a NotifierConfig."""
    env = os.environ if env is None else env
    client_id = values.get("client_id") or env.get("GOOGLE_CLIENT_ID", "")
    client_secret = values.get("client_secret") or env.get("GOOGLE_CLIENT_SECRET", "")
    if require_credentials and (not client_id or not client_secret):
        raise ConfigError(
            "Google OAuth client_id and client_secret must be set in the config file "
            "or via GOOGLE_CLIENT_ID / GOOGLE_CLIENT_SECRET"
        )

    policy_raw = values.get("notify_policy", NotificationPolicy.PER_MILESTONE.value)
    try:
        policy = NotificationPolicy(policy_raw)
    except ValueError:
        choices = ", ".join(p.value for p in NotificationPolicy)
        raise ConfigError(f"notify_policy must be one of {choices}, got {policy_raw!r}") from None

    cfg = NotifierConfig(
        client_id=client_id,
        client_secret=client_secret,
        state_db_path=state_db_path,
        calendar_id=values.get("calendar_id") or env.get("GOOGLE_CALENDAR_ID") or "primary",
        max_results=_int_option(values, "max_results", 10),
        refresh_interval=_int_option(values, "refresh_interval", 15 * 60),
        tick_interval=_int_option(values, "tick_interval", 30),
        fetch_timeout=_int_option(values, "fetch_timeout", 30),
        notify_policy=policy,
        ledger_size=_int_option(values, "ledger_size", 1000),
        redirect_port=_int_option(values, "redirect_port", 9080),
        **overrides,
    )
    for clip_id in ("upcoming", "imminent", "started"):
        path = values.get(f"sound_{clip_id}")
        if path:
            cfg.sounds[clip_id] = Path(path).expanduser()
    return cfg


def _build_config(require_credentials: bool = True, **overrides) -> NotifierConfig:
    try:
        return build_config(
            _load_config_file(state.config_path),
            state_db_path=state.state_db,
            require_credentials=require_credentials,
            verbose=state.verbose,
            **overrides,
        )
    except ConfigError as e:
        console.print(f"[bold red]Error:[/] {e}")
        raise typer.Exit(1) from None


def _build_core(cfg: NotifierConfig, blob_store: BlobStore, desktop):
    """Load the event store and wire a scheduler around it and a desktop surface."""
    store = EventStore() if cfg.ignore_cache else EventStore.load(blob_store)
    store.prune_past(datetime.now(timezone.utc))
    ledger_size = cfg.ledger_size or None
    scheduler = NotificationScheduler(
        store,
        desktop,
        notified=NotifiedLedger(ledger_size),
        ignored=IgnoredSet(ledger_size),
        policy=cfg.notify_policy,
    )
    return store, scheduler


class ConsoleDesktop:
    """Headless stand-in for the desktop surface: prints to the console."""

    def show_notification(self, title: str, body: str):
        console.print(f"[bold]🔔 {title}[/]  {body}")

    def play_sound(self, clip_id: str):
        logging.getLogger(__name__).debug("Sound cue: %s", clip_id)

    def render_tray(self, items: list[TrayItem]):
        for item in items:
            console.print(f"  [dim]•[/] {item.title}")


# ---------------------------------------------------------------------------
# Subcommand: run
# ---------------------------------------------------------------------------


@app.command()
def run(
    login: Annotated[
        bool, typer.Option("--login", help="Ignore stored tokens and authorize again")
    ] = False,
    refresh: Annotated[
        bool, typer.Option("--refresh", help="Ignore the cached events and fetch from scratch")
    ] = False,
) -> None:
    """Run the tray daemon: poll the calendar and raise notifications."""
    from gcal_notifier.preflight import run_preflight_checks

    # Missing credentials are reported by preflight together with other issues.
    cfg = _build_config(require_credentials=False, force_login=login, ignore_cache=refresh)
    if not run_preflight_checks(cfg, console):
        raise typer.Exit(1)

    from gcal_notifier.desktop import DesktopSurface
    from gcal_notifier.desktop import GstSoundPlayer
    from gcal_notifier.desktop import LibnotifyNotifier
    from gcal_notifier.desktop import NotifierApp
    from gcal_notifier.google_client import GoogleAuthorizer
    from gcal_notifier.google_client import GoogleCalendarSource

    try:
        with BlobStore(cfg.state_db_path) as blob_store:
            desktop = DesktopSurface(LibnotifyNotifier(), GstSoundPlayer(cfg.sounds))
            store, scheduler = _build_core(cfg, blob_store, desktop)
            authorizer = GoogleAuthorizer(
                blob_store,
                cfg.client_id,
                cfg.client_secret,
                redirect_port=cfg.redirect_port,
                force_login=cfg.force_login,
            )
            source = GoogleCalendarSource(authorizer, cfg.calendar_id, timeout=cfg.fetch_timeout)
            reconciler = Reconciler(cfg, store, source, blob_store, scheduler, desktop)
            NotifierApp(cfg, reconciler, scheduler, authorizer, desktop).run()
    except NotifierError as e:
        console.print(f"[bold red]Notifier failed:[/] {e}")
        raise typer.Exit(1) from None
    except KeyboardInterrupt:
        console.print("[yellow]Interrupted by user[/]")
        raise typer.Exit(130) from None


# ---------------------------------------------------------------------------
# Subcommand: login
# ---------------------------------------------------------------------------


@app.command()
def login(
    no_browser: Annotated[
        bool, typer.Option("--no-browser", help="Print the URL instead of opening a browser")
    ] = False,
) -> None:
    """Authorize read-only access to the calendar and store the tokens."""
    from gcal_notifier.google_client import GoogleAuthorizer

    cfg = _build_config()
    try:
        with BlobStore(cfg.state_db_path) as blob_store:
            authorizer = GoogleAuthorizer(
                blob_store,
                cfg.client_id,
                cfg.client_secret,
                redirect_port=cfg.redirect_port,
                force_login=True,
            )
            console.print(
                f"Waiting for the authorization redirect on "
                f"[cyan]http://localhost:{cfg.redirect_port}/[/]"
            )
            authorizer.authorize(open_browser=not no_browser)
    except NotifierError as e:
        console.print(f"[bold red]Login failed:[/] {e}")
        raise typer.Exit(1) from None

    console.print("[green]Authorized.[/] Tokens stored in " f"[cyan]{cfg.state_db_path}[/]")


# ---------------------------------------------------------------------------
# Subcommand: sync
# ---------------------------------------------------------------------------


@app.command()
def sync(
    refresh: Annotated[
        bool, typer.Option("--refresh", help="Ignore the cached events and fetch from scratch")
    ] = False,
) -> None:
    """Run a single reconciliation cycle and print the outcome."""
    from gcal_notifier.google_client import GoogleAuthorizer
    from gcal_notifier.google_client import GoogleCalendarSource

    cfg = _build_config(ignore_cache=refresh)
    try:
        with BlobStore(cfg.state_db_path) as blob_store:
            desktop = ConsoleDesktop()
            store, scheduler = _build_core(cfg, blob_store, desktop)
            authorizer = GoogleAuthorizer(
                blob_store, cfg.client_id, cfg.client_secret, redirect_port=cfg.redirect_port
            )
            if not authorizer.is_authorized():
                console.print(
                    "[bold red]Error:[/] Not authorized — run [cyan]gcal-notifier login[/] first."
                )
                raise typer.Exit(1)
            source = GoogleCalendarSource(authorizer, cfg.calendar_id, timeout=cfg.fetch_timeout)
            stats = Reconciler(cfg, store, source, blob_store, scheduler, desktop).run_cycle()
    except NotifierError as e:
        console.print(f"[bold red]Sync failed:[/] {e}")
        raise typer.Exit(1) from None

    results = Table.grid(padding=(0, 2))
    results.add_column(style="bold")
    results.add_column(justify="right")
    results.add_row("Added", str(stats.added))
    results.add_row("Removed", str(stats.removed))
    results.add_row("Modified", str(stats.modified))
    results.add_row("Cached", str(stats.total))
    error_val = Text(str(stats.errors))
    if stats.errors == 0:
        error_val.append(" ✓", style="green")
    else:
        error_val.stylize("bold red")
    results.add_row("Errors", error_val)

    console.print(Panel(results, title="[bold]Results[/bold]", expand=False))

    if stats.errors:
        raise typer.Exit(1)


# ---------------------------------------------------------------------------
# Subcommand: status
# ---------------------------------------------------------------------------


@app.command()
def status() -> None:
    """Show configuration and state database summary."""
    config_exists = state.config_path.exists()
    db_exists = state.state_db.exists()

    cfg_info = Text()
    cfg_info.append("  Config:   ", style="bold")
    cfg_info.append(str(state.config_path) + " ")
    cfg_info.append(
        "✓" if config_exists else "(not found)", style="green" if config_exists else "red"
    )
    cfg_info.append("\n  State DB: ", style="bold")
    cfg_info.append(str(state.state_db) + " ")
    cfg_info.append("✓" if db_exists else "(not found)", style="green" if db_exists else "yellow")

    cfg = _build_config(require_credentials=False)
    cfg_info.append("\n\n  Calendar: ", style="bold")
    cfg_info.append(cfg.calendar_id)
    cfg_info.append("\n  Client:   ", style="bold")
    if cfg.client_id:
        cfg_info.append(cfg.client_id[:24] + ("…" if len(cfg.client_id) > 24 else ""))
    else:
        cfg_info.append("(not configured)", style="red")
    cfg_info.append("\n  Policy:   ", style="bold")
    cfg_info.append(cfg.notify_policy.value)
    cfg_info.append("\n  Refresh:  ", style="bold")
    cfg_info.append(f"every {cfg.refresh_interval // 60} min, ticks every {cfg.tick_interval}s")

    console.print(Panel(cfg_info, title="[bold]Calendar Notifier — Status[/bold]"))

    rows = query_status(state.state_db)
    if not rows:
        console.print(
            "[yellow]No stored state yet — run[/] [cyan]gcal-notifier login[/] "
            "[yellow]to create it.[/]"
        )
        return

    table = Table(show_header=True, header_style="bold cyan", box=None, padding=(0, 2))
    table.add_column("Blob")
    table.add_column("Size", justify="right")
    table.add_column("Updated")
    for row in rows:
        ts = row["updated_at"] or 0
        updated = datetime.fromtimestamp(ts).strftime("%Y-%m-%d %H:%M:%S") if ts else "—"
        table.add_row(row["key"], f"{row['size']} B", updated)

    console.print(Panel(table, title="[bold]Stored state[/bold]", expand=False))


# ---------------------------------------------------------------------------
# Subcommand: events
# ---------------------------------------------------------------------------


def _load_cached_events() -> EventStore:
    if not state.state_db.exists():
        console.print("[yellow]No state database yet — nothing cached.[/]")
        raise typer.Exit(0)
    try:
        with BlobStore(state.state_db) as blob_store:
            return EventStore.load(blob_store)
    except NotifierError as e:
        console.print(f"[bold red]Error:[/] {e}")
        raise typer.Exit(1) from None


@app.command()
def events(
    show_all: Annotated[
        bool, typer.Option("--all", help="Include events that have already ended")
    ] = False,
) -> None:
    """List cached upcoming events and their notification status."""
    from gcal_notifier.debug import events_table

    store = _load_cached_events()
    now = datetime.now(timezone.utc)
    if not show_all:
        store.prune_past(now)
    if not len(store):
        console.print("[yellow]No cached events.[/]")
        return
    console.print(events_table(store.sorted_by_start(), now))


# ---------------------------------------------------------------------------
# Subcommand: inspect
# ---------------------------------------------------------------------------


@app.command()
def inspect(
    title: Annotated[
        str | None, typer.Option(help="Filter by summary substring (case-insensitive)")
    ] = None,
    event_id: Annotated[
        str | None, typer.Option("--id", help="Filter by event id substring")
    ] = None,
    no_raw: Annotated[bool, typer.Option("--no-raw", help="Omit the raw JSON block")] = False,
) -> None:
    """Inspect / debug cached events."""
    from gcal_notifier.debug import dump_event

    store = _load_cached_events()
    title_filter = title.lower() if title else None
    id_filter = event_id.lower() if event_id else None

    count = 0
    for event in store.sorted_by_start():
        if title_filter and title_filter not in event.summary.lower():
            continue
        if id_filter and id_filter not in event.id.lower():
            continue
        count += 1
        dump_event(event, console, show_raw=not no_raw)

    console.print(f"\n[bold]Matched {count} event(s)[/bold]")


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main() -> None:
    app()
