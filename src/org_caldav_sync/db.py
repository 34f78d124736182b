"""
SQLite state persistence, one file per calendar.
"""

import hashlib
import logging
import sqlite3
import time
from pathlib import Path

from org_caldav_sync.events import EventDatabase
from org_caldav_sync.models import CalendarSyncError
from org_caldav_sync.models import EventRecord
from org_caldav_sync.models import EventStatus

logger = logging.getLogger(__name__)


def state_file_name(calendar_id: str) -> str:
    """Stable, collision-resistant file name for a calendar's state."""
    digest = hashlib.sha256(calendar_id.encode("utf-8")).hexdigest()[:16]
    return f"org-caldav-{digest}.db"


def state_file_path(state_dir: Path, calendar_id: str) -> Path:
    return state_dir / state_file_name(calendar_id)


class StateDatabase:
    """Loads and saves the EventDatabase of one calendar."""

    def __init__(self, db_path: Path, calendar_id: str, url: str = ""):
        self.db_path = db_path
        self.calendar_id = calendar_id
        self.url = url
        self.conn: sqlite3.Connection | None = None

    @classmethod
    def for_calendar(cls, state_dir: Path, calendar_id: str, url: str = "") -> "StateDatabase":
        return cls(state_file_path(state_dir, calendar_id), calendar_id, url)

    def __enter__(self):
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def connect(self):
        """Initialize and connect to the state database."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.conn = sqlite3.connect(str(self.db_path))
        self.conn.row_factory = sqlite3.Row  # Enable column access by name
        self._init_schema()
        self._check_identity()

    def _init_schema(self):
        """Create the calendar and events tables if they don't exist."""
        self.conn.executescript("""
            CREATE TABLE IF NOT EXISTS calendar (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL
            );
            CREATE TABLE IF NOT EXISTS events (
                position INTEGER NOT NULL,
                uid TEXT PRIMARY KEY,
                fingerprint TEXT,
                etag TEXT,
                sequence INTEGER,
                status TEXT
            );
        """)
        self.conn.commit()

    def _check_identity(self):
        """Refuse to use a state file written for a different calendar."""
        stored = self.get_identity().get("calendar_id")
        if stored is not None and stored != self.calendar_id:
            raise CalendarSyncError(
                f"State file {self.db_path} belongs to calendar {stored!r}, "
                f"not {self.calendar_id!r}"
            )

    def _require_conn(self) -> sqlite3.Connection:
        if self.conn is None:
            raise CalendarSyncError("State database not connected")
        return self.conn

    # ------------------------------------------------------------------ #
    # Load / save                                                          #
    # ------------------------------------------------------------------ #

    def get_identity(self) -> dict[str, str]:
        """Calendar identity stored alongside the records, for auditing."""
        cursor = self._require_conn().execute("SELECT key, value FROM calendar")
        return {row["key"]: row["value"] for row in cursor.fetchall()}

    def load(self) -> EventDatabase:
        """Return the persisted records as a fresh EventDatabase."""
        cursor = self._require_conn().execute(
            "SELECT uid, fingerprint, etag, sequence, status FROM events ORDER BY position"
        )
        records = []
        for row in cursor.fetchall():
            status = EventStatus(row["status"]) if row["status"] else None
            records.append(
                EventRecord(
                    uid=row["uid"],
                    fingerprint=row["fingerprint"],
                    etag=row["etag"],
                    sequence=row["sequence"],
                    status=status,
                )
            )
        logger.debug(f"Loaded {len(records)} record(s) from {self.db_path}")
        return EventDatabase(records)

    def save(self, event_db: EventDatabase):
        """Replace all stored records with the contents of event_db.

        Runs in a single transaction so a crash mid-write leaves the
        previous state in place.
        """
        conn = self._require_conn()
        rows = [
            (
                position,
                record.uid,
                record.fingerprint,
                record.etag,
                record.sequence,
                record.status.value if record.status else None,
            )
            for position, record in enumerate(event_db)
        ]
        with conn:
            conn.execute("DELETE FROM events")
            conn.executemany(
                "INSERT INTO events (position, uid, fingerprint, etag, sequence, status) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                rows,
            )
            conn.executemany(
                "INSERT OR REPLACE INTO calendar (key, value) VALUES (?, ?)",
                [
                    ("calendar_id", self.calendar_id),
                    ("url", self.url),
                    ("saved_at", str(int(time.time()))),
                ],
            )
        logger.debug(f"Saved {len(rows)} record(s) to {self.db_path}")

    def close(self):
        """Close the database connection."""
        if self.conn:
            self.conn.close()
            self.conn = None


def query_status(db_path: Path) -> tuple[dict[str, str], list[sqlite3.Row]]:
    """
    Return (identity, records) stored in a state file without loading it
    into an EventDatabase.

    Returns empty results when the file does not exist yet.
    """
    if not db_path.exists():
        return {}, []
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    try:
        tables = {
            row["name"]
            for row in conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'")
        }
        if not {"calendar", "events"} <= tables:
            return {}, []
        identity = {row["key"]: row["value"] for row in conn.execute("SELECT * FROM calendar")}
        records = conn.execute(
            "SELECT uid, fingerprint, etag, sequence, status FROM events ORDER BY position"
        ).fetchall()
        return identity, records
    finally:
        conn.close()
