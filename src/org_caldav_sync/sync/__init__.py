"""
Thin orchestrator that runs one sync, delegating to the sync submodules.
"""

import logging

from org_caldav_sync.caldav_client import CalDAVClient
from org_caldav_sync.db import StateDatabase
from org_caldav_sync.events import EventDatabase
from org_caldav_sync.models import SyncConfig
from org_caldav_sync.models import SyncStats
from org_caldav_sync.org_store import OrgFileStore
from org_caldav_sync.sync.pull import ConfirmDelete
from org_caldav_sync.sync.pull import pull_remote_changes
from org_caldav_sync.sync.push import push_local_changes
from org_caldav_sync.sync.scan import scan_local
from org_caldav_sync.sync.scan import scan_remote
from org_caldav_sync.sync.utils import planned_action
from org_caldav_sync.sync.utils import record_result


def report_planned(config: SyncConfig, stats: SyncStats, logger, event_db: EventDatabase):
    """Record what a full run would do, without doing it."""
    for record in event_db:
        action = planned_action(record.status, config.delete_org_entries)
        if action is None:
            continue
        logger.info(f"[DRY RUN] Would {action.value}: {record.uid} ({record.status.value})")
        record_result(stats, record.uid, record.status, action)


def run_sync(
    config: SyncConfig,
    stats: SyncStats,
    logger,
    event_db: EventDatabase,
    local_store,
    remote,
    confirm_delete: ConfirmDelete | None = None,
):
    """Classify every event, then push local and pull remote changes."""
    scan_local(logger, event_db, local_store)
    tokens = remote.list_change_tokens()
    scan_remote(logger, event_db, tokens)

    if config.dry_run:
        report_planned(config, stats, logger, event_db)
        return

    push_local_changes(config, stats, logger, event_db, local_store, remote, tokens)
    pull_remote_changes(config, stats, logger, event_db, local_store, remote, confirm_delete)


class CalendarSynchronizer:
    """Main synchronization engine."""

    def __init__(
        self,
        config: SyncConfig,
        local_store=None,
        remote=None,
        confirm_delete: ConfirmDelete | None = None,
    ):
        self.config = config
        self.logger = logging.getLogger(__name__)
        self.stats = SyncStats()
        self.local_store = local_store or OrgFileStore(
            config.all_org_files, config.inbox, config.backup_file
        )
        self.remote = remote or CalDAVClient(
            config.url, config.calendar_id, config.username, config.password
        )
        self.confirm_delete = confirm_delete

    def run(self) -> SyncStats:
        """Execute the synchronization process.

        Any exception leaves the saved state untouched: it is only written
        once every phase has completed.
        """
        self.logger.info(f"Checking calendar {self.config.calendar_id}...")
        self.remote.check_reachable()

        state_db = StateDatabase.for_calendar(
            self.config.state_dir, self.config.calendar_id, self.config.url
        )
        if self.config.dry_run and not state_db.db_path.exists():
            self.logger.info("No saved sync state yet")
            self._sync(EventDatabase())
            return self.stats

        with state_db:
            event_db = state_db.load()
            self.logger.info(f"Loaded sync state for {len(event_db)} event(s)")

            if not self.config.dry_run:
                assigned = self.local_store.assign_missing_ids()
                if assigned:
                    self.logger.info(f"Assigned IDs to {assigned} Org heading(s)")

            self._sync(event_db)

            if not self.config.dry_run:
                state_db.save(event_db)
                self.logger.info(f"Saved sync state for {len(event_db)} event(s)")

        return self.stats

    def _sync(self, event_db: EventDatabase):
        run_sync(
            self.config,
            self.stats,
            self.logger,
            event_db,
            self.local_store,
            self.remote,
            self.confirm_delete,
        )
