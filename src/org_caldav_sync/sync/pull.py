"""
Pull calendar creations, changes and deletions into the Org files.
"""

from collections.abc import Callable

from org_caldav_sync import ical
from org_caldav_sync.events import EventDatabase
from org_caldav_sync.models import DeletionPolicy
from org_caldav_sync.models import EventRecord
from org_caldav_sync.models import EventStatus
from org_caldav_sync.models import LocalLookupError
from org_caldav_sync.models import RemoteStoreError
from org_caldav_sync.models import SyncAction
from org_caldav_sync.models import SyncConfig
from org_caldav_sync.models import SyncStats
from org_caldav_sync.sync.utils import record_result

# Decision provider for DeletionPolicy.ASK: (uid, title) -> delete?
ConfirmDelete = Callable[[str, str], bool]


def _pull_event(
    config: SyncConfig,
    stats: SyncStats,
    logger,
    event_db: EventDatabase,
    record: EventRecord,
    local_store,
    remote,
):
    """Fetch one calendar event and write it into the Org files."""
    status = record.status
    try:
        ical_string = remote.fetch_resource(record.uid)
        if ical_string is None:
            raise RemoteStoreError(f"{record.uid} vanished from the calendar")
        fields = ical.decode(ical_string)
        sequence = ical.sequence_of(ical_string)
    except (RemoteStoreError, ical.ICalError) as e:
        logger.error(f"Failed to pull {record.uid}: {e}")
        record_result(stats, record.uid, status, SyncAction.ERROR)
        if status is EventStatus.NEW_IN_REMOTE:
            event_db.remove(record.uid)
        else:
            # No etag means the next remote scan sees the change again
            event_db.set_etag(record, None)
            event_db.set_status(record, EventStatus.ERROR)
        return

    if status is EventStatus.NEW_IN_REMOTE:
        local_store.write_new_entry(fields, record.uid)
        logger.debug(f"Added {record.uid} to {config.inbox}")
    else:
        local_store.rewrite_entry_fields(record.uid, fields, config.sync_changes_to_org)
        logger.debug(f"Updated {record.uid} ({config.sync_changes_to_org.value})")

    if sequence is not None:
        event_db.set_sequence(record, sequence)
    event_db.set_fingerprint(record, local_store.fingerprint_of(record.uid))
    event_db.set_status(record, EventStatus.SYNCED)
    record_result(stats, record.uid, status, SyncAction.CAL_TO_ORG)


def _should_delete(
    config: SyncConfig, logger, uid: str, local_store, confirm_delete: ConfirmDelete | None
) -> bool:
    policy = config.delete_org_entries
    if policy is DeletionPolicy.ALWAYS:
        return True
    if policy is DeletionPolicy.NEVER:
        return False
    if confirm_delete is None:
        logger.warning(f"{uid} was deleted from the calendar; keeping it (nobody to ask)")
        return False
    return confirm_delete(uid, local_store.entry_fields(uid).title)


def _handle_remote_deletion(
    config: SyncConfig,
    stats: SyncStats,
    logger,
    event_db: EventDatabase,
    record: EventRecord,
    local_store,
    confirm_delete: ConfirmDelete | None,
):
    if not _should_delete(config, logger, record.uid, local_store, confirm_delete):
        # Kept records come back as deleted-in-remote on every run until the
        # entry is deleted or changed locally
        logger.info(f"Keeping Org entry {record.uid} deleted from the calendar")
        record_result(stats, record.uid, EventStatus.DELETED_IN_REMOTE, SyncAction.KEPT_IN_ORG)
        return
    local_store.delete_entry(record.uid)
    event_db.remove(record.uid)
    record_result(stats, record.uid, EventStatus.DELETED_IN_REMOTE, SyncAction.REMOVED_FROM_ORG)
    logger.debug(f"Removed {record.uid} from Org")


def pull_remote_changes(
    config: SyncConfig,
    stats: SyncStats,
    logger,
    event_db: EventDatabase,
    local_store,
    remote,
    confirm_delete: ConfirmDelete | None = None,
):
    """Write new/changed calendar events to Org and apply the deletion policy."""
    to_pull = event_db.filter(EventStatus.NEW_IN_REMOTE, EventStatus.CHANGED_IN_REMOTE)
    if to_pull:
        logger.info(f"Pulling {len(to_pull)} event(s) from the calendar...")
    for record in to_pull:
        _pull_event(config, stats, logger, event_db, record, local_store, remote)

    deleted = event_db.filter(EventStatus.DELETED_IN_REMOTE)
    if deleted:
        logger.info(f"{len(deleted)} event(s) were deleted from the calendar...")
    for record in deleted:
        try:
            _handle_remote_deletion(
                config, stats, logger, event_db, record, local_store, confirm_delete
            )
        except LocalLookupError:
            logger.error(f"Org entry {record.uid} disappeared during the run")
            raise
