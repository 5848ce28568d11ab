"""
Debug/inspect tools for cached calendar events.

Importable functions:
  events_table(events, now)  — Rich table of events with their current milestone
  dump_event(event, console, show_raw=True)  — render one event in a Rich Panel
"""

import json
from datetime import datetime

from rich.console import Console
from rich.panel import Panel
from rich.syntax import Syntax
from rich.table import Table
from rich.text import Text

from gcal_notifier.models import CalendarEvent
from gcal_notifier.scheduler import classify_milestone
from gcal_notifier.scheduler import minutes_to_start
from gcal_notifier.tray import extract_meeting_link

_MILESTONE_STYLE = {"UPCOMING": "yellow", "IMMINENT": "bold yellow", "STARTED": "bold red"}


def _when(event: CalendarEvent) -> str:
    if event.is_all_day:
        return f"{event.start_date:%Y-%m-%d} (all day)"
    start = event.start.astimezone()
    end = event.end.astimezone()
    end_fmt = "%H:%M" if end.date() == start.date() else "%Y-%m-%d %H:%M"
    return f"{start:%Y-%m-%d %H:%M} – {end.strftime(end_fmt)}"


def milestone_cell(event: CalendarEvent, now: datetime) -> Text:
    if event.is_all_day:
        return Text("all day", style="dim")
    if event.end <= now:
        return Text("ended", style="dim")
    minutes = minutes_to_start(event.start, now)
    milestone = classify_milestone(minutes)
    if milestone is None:
        return Text(f"in {minutes} min", style="green")
    return Text(milestone.name.lower(), style=_MILESTONE_STYLE[milestone.name])


def events_table(events: list[CalendarEvent], now: datetime) -> Table:
    """Render events (already sorted) as a Rich table."""
    table = Table(show_header=True, header_style="bold cyan")
    table.add_column("When", no_wrap=True)
    table.add_column("Summary", style="bold")
    table.add_column("Location")
    table.add_column("Status")

    for event in events:
        table.add_row(_when(event), event.summary, event.location, milestone_cell(event, now))
    return table


def dump_event(event: CalendarEvent, console: Console, show_raw: bool = True) -> None:
    """Render a single cached event as a Rich Panel."""
    summary = event.summary or "(no summary)"
    lines = Text()

    def row(label: str, value) -> None:
        if not value:
            return
        lines.append(f"  {label:<12}: ", style="bold cyan")
        lines.append(f"{value}\n")

    row("SUMMARY", summary)
    row("ID", event.id)
    row("ETAG", event.etag)
    row("WHEN", _when(event))
    row("LOCATION", event.location)
    row("LINK", extract_meeting_link(event))
    row("HTML LINK", event.html_link)

    console.print(Panel(lines, title=f"[bold]{summary}[/bold]", expand=False))

    if show_raw:
        raw = json.dumps(event.to_api(), indent=2, ensure_ascii=False)
        console.print(
            Panel(
                Syntax(raw, "json", theme="monokai", word_wrap=True),
                title="Raw event",
                expand=False,
            )
        )
