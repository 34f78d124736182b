"""
Command-line interface for Org CalDAV Sync.
"""

import logging
from collections import Counter
from configparser import ConfigParser
from dataclasses import dataclass
from dataclasses import field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from org_caldav_sync.db import query_status
from org_caldav_sync.db import state_file_path
from org_caldav_sync.models import DEFAULT_CONFIG
from org_caldav_sync.models import DEFAULT_STATE_DIR
from org_caldav_sync.models import CalendarSyncError
from org_caldav_sync.models import DeletionPolicy
from org_caldav_sync.models import SyncAction
from org_caldav_sync.models import SyncChangeMode
from org_caldav_sync.models import SyncConfig
from org_caldav_sync.models import SyncStats
from org_caldav_sync.sync import CalendarSynchronizer

CONFIG_SECTION = "org-caldav"

# ---------------------------------------------------------------------------
# Typer app
# ---------------------------------------------------------------------------

app = typer.Typer(
    no_args_is_help=True,
    rich_markup_mode="rich",
    help="Two-way sync between Org-mode files and a CalDAV calendar.",
)

console = Console()


# ---------------------------------------------------------------------------
# Global state shared across subcommands
# ---------------------------------------------------------------------------


@dataclass
class _State:
    config_path: Path = field(default_factory=lambda: DEFAULT_CONFIG)
    verbose: bool = False


state = _State()


@app.callback()
def _global(
    config: Annotated[
        Path,
        typer.Option("--config", "-c", help=f"Config file path (default: {DEFAULT_CONFIG})"),
    ] = DEFAULT_CONFIG,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Enable verbose debug output"),
    ] = False,
) -> None:
    state.config_path = config
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


def _expand(value: str | Path | None) -> Path | None:
    if value is None or value == "":
        return None
    return Path(value).expanduser()


def _enum_setting(enum_cls: type[Enum], option, config_file: dict[str, str], key: str):
    """CLI option wins; config file values are validated like CLI ones."""
    if option is not None:
        return option
    raw = config_file.get(key)
    if raw is None:
        return None
    try:
        return enum_cls(raw.strip())
    except ValueError:
        choices = ", ".join(member.value for member in enum_cls)
        console.print(
            f"[bold red]Error:[/] Invalid {key} {raw!r} in {state.config_path} "
            f"(expected one of: {choices})"
        )
        raise typer.Exit(1) from None


def _build_config(
    url: str | None,
    calendar: str | None,
    files: list[Path] | None,
    inbox: Path | None,
    save_dir: Path | None,
    sync_changes: SyncChangeMode | None,
    delete_entries: DeletionPolicy | None,
    backup_file: Path | None,
    user: str | None,
    dry_run: bool,
    yes: bool,
) -> SyncConfig:
    config_file = _load_config_file(state.config_path)
    url = url or config_file.get("url")
    calendar_id = calendar or config_file.get("calendar_id")
    inbox_path = _expand(inbox) or _expand(config_file.get("inbox"))

    if not url or not calendar_id or inbox_path is None:
        console.print(
            "[bold red]Error:[/] Server URL, calendar ID and inbox file must be provided via "
            "[cyan]--url[/]/[cyan]--calendar[/]/[cyan]--inbox[/] or in the config file."
        )
        raise typer.Exit(1)

    if files:
        org_files = [_expand(path) for path in files]
    else:
        org_files = [_expand(path) for path in config_file.get("files", "").split()]

    sync_mode = _enum_setting(SyncChangeMode, sync_changes, config_file, "sync_changes_to_org")
    policy = _enum_setting(DeletionPolicy, delete_entries, config_file, "delete_org_entries")
    state_dir = (
        _expand(save_dir) or _expand(config_file.get("save_directory")) or DEFAULT_STATE_DIR
    )

    return SyncConfig(
        url=url,
        calendar_id=calendar_id,
        inbox=inbox_path,
        org_files=org_files,
        state_dir=state_dir,
        sync_changes_to_org=sync_mode or SyncChangeMode.TITLE_AND_TIMESTAMP,
        delete_org_entries=policy or DeletionPolicy.ASK,
        backup_file=_expand(backup_file) or _expand(config_file.get("backup_file")),
        username=user or config_file.get("username"),
        password=config_file.get("password"),
        dry_run=dry_run,
        verbose=state.verbose,
        yes=yes,
    )


def _confirm_delete(uid: str, title: str) -> bool:
    return typer.confirm(
        f"Event {title!r} ({uid}) was deleted from the calendar. Delete the Org entry?",
        default=False,
    )


def _print_results(stats: SyncStats) -> None:
    results = Table.grid(padding=(0, 2))
    results.add_column(style="bold")
    results.add_column(justify="right")
    results.add_row("Added", str(stats.added))
    results.add_row("Modified", str(stats.modified))
    results.add_row("Deleted", str(stats.deleted))
    error_val = Text(str(stats.errors))
    if stats.errors == 0:
        error_val.append(" ✓", style="green")
    else:
        error_val.stylize("bold red")
    results.add_row("Errors", error_val)

    console.print(Panel(results, title="[bold]Results[/bold]", expand=False))

    if not stats.results:
        return

    action_styles = {
        SyncAction.ORG_TO_CAL: "cyan",
        SyncAction.CAL_TO_ORG: "green",
        SyncAction.REMOVED_FROM_ORG: "yellow",
        SyncAction.REMOVED_FROM_CAL: "yellow",
        SyncAction.KEPT_IN_ORG: "dim",
        SyncAction.ERROR: "bold red",
    }
    table = Table(show_header=True, header_style="bold cyan", box=None, padding=(0, 2))
    table.add_column("Event ID", overflow="fold")
    table.add_column("Status")
    table.add_column("Action")
    for result in stats.results:
        table.add_row(
            result.uid,
            result.status.value,
            Text(result.action.value, style=action_styles[result.action]),
        )
    console.print(table)


def _run_sync(cfg: SyncConfig) -> None:
    """Core sync runner: display panel, confirm, run, show results."""
    from org_caldav_sync.preflight import run_preflight_checks

    if not run_preflight_checks(cfg, console):
        raise typer.Exit(1)

    # -- Info panel ----------------------------------------------------------
    info = Text()
    info.append("  Server:    ", style="bold")
    info.append(f"{cfg.url}\n")
    info.append("  Calendar:  ", style="bold")
    info.append(f"{cfg.calendar_id}\n")
    info.append("  Files:     ", style="bold")
    info.append("\n             ".join(str(path) for path in cfg.all_org_files))
    info.append("\n  Inbox:     ", style="bold")
    info.append(str(cfg.inbox))
    info.append("\n  Changes:   ", style="bold")
    info.append(cfg.sync_changes_to_org.value, style="cyan")
    info.append("\n  Deletions: ", style="bold")
    info.append(
        cfg.delete_org_entries.value,
        style="bold yellow" if cfg.delete_org_entries is DeletionPolicy.ALWAYS else "cyan",
    )
    if cfg.dry_run:
        info.append("\n  Mode:      ")
        info.append("DRY RUN", style="bold magenta")

    console.print(Panel(info, title="[bold]Org CalDAV Sync[/bold]"))

    # -- Confirmation --------------------------------------------------------
    if not cfg.yes and not cfg.dry_run:
        typer.confirm("Proceed?", abort=True)

    # --yes means nobody is watching, so ask-before-delete keeps the entry
    confirm = None if cfg.yes else _confirm_delete

    # -- Run -----------------------------------------------------------------
    try:
        stats = CalendarSynchronizer(cfg, confirm_delete=confirm).run()
    except CalendarSyncError as e:
        console.print(f"[bold red]Sync failed:[/] {e}")
        raise typer.Exit(1) from None
    except KeyboardInterrupt:
        console.print("[yellow]Interrupted by user[/]")
        raise typer.Exit(130) from None
    except Exception as e:
        console.print_exception()
        console.print(f"[bold red]Unexpected error:[/] {e}")
        raise typer.Exit(1) from e

    # -- Results table -------------------------------------------------------
    _print_results(stats)

    if stats.errors:
        raise typer.Exit(1)


# ---------------------------------------------------------------------------
# Subcommand: sync
# ---------------------------------------------------------------------------

_URL_OPT = Annotated[
    str | None,
    typer.Option("--url", help="CalDAV server base URL (overrides config)"),
]
_CAL_OPT = Annotated[
    str | None,
    typer.Option("--calendar", help="Calendar ID on the server (overrides config)"),
]
_SAVE_DIR_OPT = Annotated[
    Path | None,
    typer.Option("--save-dir", help=f"Sync state directory (default: {DEFAULT_STATE_DIR})"),
]


@app.command()
def sync(
    url: _URL_OPT = None,
    calendar: _CAL_OPT = None,
    files: Annotated[
        list[Path] | None,
        typer.Option("--file", "-f", help="Org file to sync (repeatable, overrides config)"),
    ] = None,
    inbox: Annotated[
        Path | None,
        typer.Option("--inbox", help="Org file receiving new calendar events"),
    ] = None,
    save_dir: _SAVE_DIR_OPT = None,
    sync_changes: Annotated[
        SyncChangeMode | None,
        typer.Option("--sync-changes", help="Which Org fields calendar changes may rewrite"),
    ] = None,
    delete_entries: Annotated[
        DeletionPolicy | None,
        typer.Option("--delete-entries", help="Delete Org entries removed from the calendar"),
    ] = None,
    backup_file: Annotated[
        Path | None,
        typer.Option("--backup-file", help="Append deleted Org entries to this file"),
    ] = None,
    user: Annotated[
        str | None,
        typer.Option("--user", help="Username for HTTP basic auth (overrides config)"),
    ] = None,
    dry_run: Annotated[
        bool, typer.Option("--dry-run", "-n", help="Preview changes without applying")
    ] = False,
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Skip confirmation prompts")] = False,
) -> None:
    """Synchronise the Org files with the calendar (both directions).

    Changes made on both sides since the last run are resolved in favour
    of the Org files.
    """
    _run_sync(
        _build_config(
            url,
            calendar,
            files,
            inbox,
            save_dir,
            sync_changes,
            delete_entries,
            backup_file,
            user,
            dry_run=dry_run,
            yes=yes,
        )
    )


# ---------------------------------------------------------------------------
# Subcommand: status
# ---------------------------------------------------------------------------


@app.command()
def status(
    calendar: _CAL_OPT = None,
    save_dir: _SAVE_DIR_OPT = None,
) -> None:
    """Show sync configuration and the saved state of the calendar."""
    config_file = _load_config_file(state.config_path)
    calendar_id = calendar or config_file.get("calendar_id")
    state_dir = (
        _expand(save_dir) or _expand(config_file.get("save_directory")) or DEFAULT_STATE_DIR
    )

    # -- Configuration section -----------------------------------------------
    config_exists = state.config_path.exists()

    cfg_info = Text()
    cfg_info.append("  Config:   ", style="bold")
    cfg_info.append(str(state.config_path) + " ")
    cfg_info.append(
        "✓" if config_exists else "(not found)", style="green" if config_exists else "red"
    )

    if not calendar_id:
        console.print(Panel(cfg_info, title="[bold]Org CalDAV Sync — Status[/bold]"))
        console.print(
            "[yellow]No calendar configured — pass[/] [cyan]--calendar[/] "
            "[yellow]or set calendar_id in the config file.[/]"
        )
        return

    db_path = state_file_path(state_dir, calendar_id)
    db_exists = db_path.exists()
    cfg_info.append("\n  Calendar: ", style="bold")
    cfg_info.append(calendar_id)
    cfg_info.append("\n  State:    ", style="bold")
    cfg_info.append(str(db_path) + " ")
    cfg_info.append("✓" if db_exists else "(not found)", style="green" if db_exists else "yellow")

    identity, rows = query_status(db_path)
    if identity.get("url"):
        cfg_info.append("\n  Server:   ", style="bold")
        cfg_info.append(identity["url"])
    saved_at = int(identity.get("saved_at", 0))
    if saved_at:
        cfg_info.append("\n  Saved:    ", style="bold")
        cfg_info.append(datetime.fromtimestamp(saved_at).strftime("%Y-%m-%d %H:%M:%S"))

    console.print(Panel(cfg_info, title="[bold]Org CalDAV Sync — Status[/bold]"))

    # -- State section -------------------------------------------------------
    if not rows:
        if not db_exists:
            console.print(
                "[yellow]No sync state yet — run[/] "
                "[cyan]org-caldav-sync sync[/] "
                "[yellow]to create it.[/]"
            )
        else:
            console.print("[yellow]Sync state is empty — no events tracked yet.[/]")
        return

    counts = Counter(row["status"] or "unclassified" for row in rows)
    summary = Table(show_header=True, header_style="bold cyan", box=None, padding=(0, 2))
    summary.add_column("Status")
    summary.add_column("Tracked", justify="right")
    for name, count in sorted(counts.items()):
        summary.add_row(name, str(count))
    console.print(Panel(summary, title=f"[bold]{len(rows)} event(s)[/bold]", expand=False))

    records = Table(show_header=True, header_style="bold cyan", box=None, padding=(0, 2))
    records.add_column("Event ID", overflow="fold")
    records.add_column("Status")
    records.add_column("Seq", justify="right")
    records.add_column("ETag", style="dim", overflow="fold")
    for row in rows:
        records.add_row(
            row["uid"],
            row["status"] or "—",
            "—" if row["sequence"] is None else str(row["sequence"]),
            row["etag"] or "—",
        )
    console.print(records)


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main() -> None:
    app()
