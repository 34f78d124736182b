"""
Preflight checks run before sync to catch common misconfigurations early.
"""

import logging
import os
import sqlite3

from rich.console import Console
from rich.panel import Panel
from rich.text import Text

from org_caldav_sync.db import state_file_path
from org_caldav_sync.models import SyncConfig

logger = logging.getLogger(__name__)


def run_preflight_checks(cfg: SyncConfig, console: Console) -> bool:
    """Return True if sync may proceed; print issues and return False otherwise."""
    issues: list[tuple[str, str, str]] = []  # (label, detail, hint)

    # 1. Org files exist and are writable (the inbox may not exist yet)
    for path in cfg.all_org_files:
        if not path.exists():
            if path == cfg.inbox:
                if not path.parent.is_dir():
                    issues.append(
                        ("Inbox", f"Directory missing: {path.parent}", "Create it or fix --inbox")
                    )
                continue
            logger.error("Org file not found: %s", path)
            issues.append(("Org file", f"Not found: {path}", "Check the files setting"))
        elif not os.access(path, os.R_OK | os.W_OK):
            logger.error("Org file not readable/writable: %s", path)
            issues.append(("Org file", f"Not writable: {path}", f"Check permissions on {path}"))

    # 2. State directory writable + state file readable if it exists
    db_path = state_file_path(cfg.state_dir, cfg.calendar_id)
    try:
        db_path.parent.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        logger.error("Cannot create state directory %s: %s", db_path.parent, e)
        issues.append(
            (
                "State directory",
                f"{db_path.parent}: {e}",
                f"Check permissions on {db_path.parent.parent}",
            )
        )
    else:
        if db_path.exists():
            try:
                conn = sqlite3.connect(db_path)
                conn.execute("SELECT 1")
                # BEGIN IMMEDIATE needs write access to the file and its directory
                conn.execute("BEGIN IMMEDIATE")
                conn.execute("ROLLBACK")
                conn.close()
            except sqlite3.Error as e:
                logger.error("State file not readable/writable (%s): %s", db_path, e)
                issues.append(
                    (
                        "State file",
                        f"{db_path}: {e}",
                        f"Check permissions on {db_path.parent}",
                    )
                )

    # 3. Backup file location
    if cfg.backup_file is not None and not cfg.backup_file.parent.is_dir():
        issues.append(
            (
                "Backup file",
                f"Directory missing: {cfg.backup_file.parent}",
                "Create it or fix --backup-file",
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
