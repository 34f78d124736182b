"""
Pure data models, with no network, Org or sqlite imports.
"""

from dataclasses import dataclass
from dataclasses import field
from datetime import date
from datetime import time
from enum import Enum
from pathlib import Path

DEFAULT_STATE_DIR = Path.home() / ".local/share/org-caldav-sync"
DEFAULT_CONFIG = Path.home() / ".config/org-caldav-sync.conf"


class CalendarSyncError(Exception):
    """Base exception for calendar sync errors."""

    pass


class ConnectivityError(CalendarSyncError):
    """Remote calendar unreachable or answering with an unexpected status."""


class ProtocolShapeError(CalendarSyncError):
    """Remote property listing is malformed and cannot be trusted."""


class RemoteStoreError(CalendarSyncError):
    """A single remote write, delete or fetch failed."""


class LocalLookupError(CalendarSyncError):
    """An event identifier could not be resolved in the Org files."""


class SyncInvariantError(RuntimeError):
    """The reconciler reached a status combination that cannot happen."""


class EventStatus(str, Enum):
    """Per-run classification of an event record."""

    NEW_IN_LOCAL = "new-in-local"
    CHANGED_IN_LOCAL = "changed-in-local"
    IN_LOCAL = "in-local"
    NEW_IN_REMOTE = "new-in-remote"
    CHANGED_IN_REMOTE = "changed-in-remote"
    DELETED_IN_LOCAL = "deleted-in-local"
    DELETED_IN_REMOTE = "deleted-in-remote"
    SYNCED = "synced"
    ERROR = "error"


class SyncAction(str, Enum):
    """What a sync run did (or would do) for one event."""

    ORG_TO_CAL = "org->cal"
    CAL_TO_ORG = "cal->org"
    REMOVED_FROM_ORG = "removed-from-org"
    REMOVED_FROM_CAL = "removed-from-cal"
    KEPT_IN_ORG = "kept-in-org"
    ERROR = "error"


class SyncChangeMode(str, Enum):
    """Which fields of an existing Org entry a remote change may rewrite."""

    TITLE_AND_TIMESTAMP = "title-and-timestamp"
    TITLE_ONLY = "title-only"
    TIMESTAMP_ONLY = "timestamp-only"
    ALL = "all"

    @property
    def rewrites_title(self) -> bool:
        return self in (
            SyncChangeMode.TITLE_AND_TIMESTAMP,
            SyncChangeMode.TITLE_ONLY,
            SyncChangeMode.ALL,
        )

    @property
    def rewrites_timestamp(self) -> bool:
        return self in (
            SyncChangeMode.TITLE_AND_TIMESTAMP,
            SyncChangeMode.TIMESTAMP_ONLY,
            SyncChangeMode.ALL,
        )


class DeletionPolicy(str, Enum):
    """What to do with an Org entry whose remote event was deleted."""

    ASK = "ask"
    NEVER = "never"
    ALWAYS = "always"


@dataclass
class EventRecord:
    """Sync state of one event, joined across both stores by uid."""

    uid: str
    fingerprint: str | None = None
    etag: str | None = None
    sequence: int | None = None
    status: EventStatus | None = None


@dataclass
class EventFields:
    """Title, time and body of an event as both stores understand them."""

    title: str
    start_date: date
    start_time: time | None = None
    end_date: date | None = None
    end_time: time | None = None
    body: str = ""

    def __post_init__(self):
        if self.end_date is None:
            self.end_date = self.start_date

    @property
    def all_day(self) -> bool:
        return self.start_time is None


@dataclass
class SyncConfig:
    """Configuration for one sync run."""

    url: str
    calendar_id: str
    inbox: Path
    org_files: list[Path] = field(default_factory=list)
    state_dir: Path = DEFAULT_STATE_DIR
    sync_changes_to_org: SyncChangeMode = SyncChangeMode.TITLE_AND_TIMESTAMP
    delete_org_entries: DeletionPolicy = DeletionPolicy.ASK
    backup_file: Path | None = None
    username: str | None = None
    password: str | None = None
    dry_run: bool = False
    verbose: bool = False
    yes: bool = False  # Auto-confirm without prompting

    @property
    def all_org_files(self) -> list[Path]:
        """Configured Org files plus the inbox, without duplicates."""
        files = list(dict.fromkeys(self.org_files))
        if self.inbox not in files:
            files.append(self.inbox)
        return files


@dataclass
class SyncResult:
    """Outcome for one event identifier."""

    uid: str
    status: EventStatus
    action: SyncAction


@dataclass
class SyncStats:
    """Statistics for sync operation."""

    added: int = 0
    modified: int = 0
    deleted: int = 0
    errors: int = 0
    results: list[SyncResult] = field(default_factory=list)
