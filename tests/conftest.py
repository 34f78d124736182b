"""
Shared pytest fixtures plus Org and iCal builders.
"""

import logging

import pytest

from org_caldav_sync.db import StateDatabase
from org_caldav_sync.models import DeletionPolicy
from org_caldav_sync.models import SyncConfig
from org_caldav_sync.models import SyncStats

CALENDAR_ID = "personal-test"
SERVER_URL = "https://dav.example.com/calendars/alice"


def org_entry(
    title: str,
    uid: str | None = None,
    stamp: str = "<2026-03-02 Mon 10:00-11:00>",
    body: str = "",
    level: int = 1,
) -> str:
    """Return the text of one Org entry, with a property drawer when uid is given."""
    lines = [f"{'*' * level} {title}"]
    if uid is not None:
        lines += ["  :PROPERTIES:", f"  :ID:       {uid}", "  :END:"]
    lines.append(f"  {stamp}")
    lines += [f"  {line}" for line in body.splitlines()]
    return "\n".join(lines) + "\n"


def make_vcalendar(
    uid: str,
    summary: str = "Remote Event",
    dtstart: str = "20260305T090000",
    dtend: str = "20260305T093000",
    description: str | None = None,
    sequence: int | str | None = None,
) -> str:
    """Return a VCALENDAR with a single VEVENT, using floating local times."""
    lines = [
        "BEGIN:VCALENDAR",
        "VERSION:2.0",
        "PRODID:-//Example Corp//Remote Calendar//EN",
        "BEGIN:VEVENT",
        f"UID:{uid}",
        f"SUMMARY:{summary}",
        f"DTSTART:{dtstart}",
        f"DTEND:{dtend}",
        "DTSTAMP:20260224T000000Z",
    ]
    if description is not None:
        lines.append(f"DESCRIPTION:{description}")
    if sequence is not None:
        lines.append(f"SEQUENCE:{sequence}")
    lines += ["END:VEVENT", "END:VCALENDAR"]
    return "\r\n".join(lines) + "\r\n"


@pytest.fixture
def state_dir(tmp_path):
    return tmp_path / "state"


@pytest.fixture
def db_path(state_dir):
    return state_dir / "test_state.db"


@pytest.fixture
def state_db(db_path):
    with StateDatabase(db_path, CALENDAR_ID, SERVER_URL) as db:
        yield db


@pytest.fixture
def org_file(tmp_path):
    path = tmp_path / "org" / "calendar.org"
    path.parent.mkdir()
    path.write_text("")
    return path


@pytest.fixture
def inbox(tmp_path):
    return tmp_path / "org" / "inbox.org"


@pytest.fixture
def sync_config(state_dir, org_file, inbox, tmp_path):
    return SyncConfig(
        url=SERVER_URL,
        calendar_id=CALENDAR_ID,
        inbox=inbox,
        org_files=[org_file],
        state_dir=state_dir,
        delete_org_entries=DeletionPolicy.ALWAYS,
        backup_file=tmp_path / "org" / "deleted.org",
        dry_run=False,
        verbose=False,
    )


@pytest.fixture
def sync_logger():
    return logging.getLogger("test_sync")


@pytest.fixture
def sync_stats():
    return SyncStats()
