"""
Preflight checks run before the daemon starts to catch common misconfigurations early.
"""

import logging
import sqlite3

from rich.console import Console
from rich.panel import Panel
from rich.text import Text

from gcal_notifier.models import NotifierConfig

logger = logging.getLogger(__name__)

# (namespace, version, hint)
_TYPELIBS = (
    ("Gtk", "3.0", "Install gir1.2-gtk-3.0"),
    ("Notify", "0.7", "Install gir1.2-notify-0.7 (libnotify)"),
    ("Gst", "1.0", "Install gir1.2-gst-1.0 and gstreamer1.0-plugins-base"),
)
_INDICATORS = (("AyatanaAppIndicator3", "0.1"), ("AppIndicator3", "0.1"))


def _typelib_available(namespace: str, version: str) -> bool:
    import gi

    try:
        gi.require_version(namespace, version)
    except ValueError:
        return False
    return True


def run_preflight_checks(cfg: NotifierConfig, console: Console) -> bool:
    """Return True if the daemon may start; print issues and return False otherwise."""
    issues: list[tuple[str, str, str]] = []  # (label, detail, hint)

    # 1. OAuth client credentials
    if not cfg.client_id or not cfg.client_secret:
        issues.append(
            (
                "Credentials",
                "client_id / client_secret not configured",
                "Set them in the config file or GOOGLE_CLIENT_ID / GOOGLE_CLIENT_SECRET",
            )
        )

    # 2. Desktop typelibs
    try:
        import gi  # noqa: F401
    except ImportError as e:
        logger.error("PyGObject unavailable: %s", e)
        issues.append(("PyGObject", str(e), "Install python3-gi or PyGObject"))
    else:
        for namespace, version, hint in _TYPELIBS:
            if not _typelib_available(namespace, version):
                logger.error("Typelib %s-%s not found", namespace, version)
                issues.append((namespace, f"{namespace} {version} typelib not found", hint))
        if not any(_typelib_available(ns, ver) for ns, ver in _INDICATORS):
            issues.append(
                (
                    "Tray",
                    "No AppIndicator typelib found",
                    "Install gir1.2-ayatanaappindicator3-0.1",
                )
            )

    # 3. State DB parent dir writable + DB readable if it exists
    db_path = cfg.state_db_path
    try:
        db_path.parent.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        logger.error("Cannot create state DB directory %s: %s", db_path.parent, e)
        issues.append(
            (
                "State database",
                f"{db_path}: {e}",
                f"Check permissions on {db_path.parent}",
            )
        )
    else:
        if db_path.exists():
            try:
                conn = sqlite3.connect(db_path)
                conn.execute("SELECT 1")
                conn.execute("BEGIN IMMEDIATE")
                conn.execute("ROLLBACK")
                conn.close()
            except sqlite3.Error as e:
                logger.error("State DB not readable/writable (%s): %s", db_path, e)
                issues.append(
                    (
                        "State database",
                        f"{db_path}: {e}",
                        f"Check permissions on {db_path.parent} "
                        f"(journal files must be creatable alongside the DB)",
                    )
                )

    if issues:
        _print_issues(issues, console)
        return False

    return True


def _print_issues(issues: list[tuple[str, str, str]], console: Console) -> None:
    body = Text()
    for i, (label, detail, hint) in enumerate(issues):
        if i:
            body.append("\n")
        body.append(f"  ✗  {label}: ", style="bold red")
        body.append(detail, style="bold red")
        body.append(f"\n       → {hint}", style="yellow")

    console.print(Panel(body, title="[bold red]Preflight checks failed[/bold red]"))
