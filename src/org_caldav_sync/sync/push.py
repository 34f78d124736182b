"""
Push local creations, changes and deletions to the calendar.
"""

from org_caldav_sync import ical
from org_caldav_sync.events import EventDatabase
from org_caldav_sync.models import EventRecord
from org_caldav_sync.models import EventStatus
from org_caldav_sync.models import RemoteStoreError
from org_caldav_sync.models import SyncAction
from org_caldav_sync.models import SyncConfig
from org_caldav_sync.models import SyncStats
from org_caldav_sync.sync.utils import record_result


def _mark_failed(stats: SyncStats, event_db: EventDatabase, record: EventRecord, status):
    event_db.set_status(record, EventStatus.ERROR)
    record_result(stats, record.uid, status, SyncAction.ERROR)


def _previous_sequence(logger, record: EventRecord, listed: dict[str, str], remote) -> int | None:
    """SEQUENCE the next push has to exceed.

    A record without one may still replace a server copy, e.g. when an
    earlier push of a local edit failed and the record was dropped.
    """
    if record.sequence is not None or record.uid not in listed:
        return record.sequence
    try:
        stored = remote.fetch_resource(record.uid)
        return ical.sequence_of(stored) if stored else None
    except (RemoteStoreError, ical.ICalError) as e:
        logger.warning(f"Could not read SEQUENCE of server copy of {record.uid}: {e}")
        return None


def _put_event(
    stats: SyncStats,
    logger,
    event_db: EventDatabase,
    record: EventRecord,
    local_store,
    remote,
    listed: dict[str, str],
) -> int | None:
    """PUT one event; return the SEQUENCE it was sent with, or None on failure."""
    previous = _previous_sequence(logger, record, listed, remote)
    sequence = 1 if previous is None else previous + 1
    payload = ical.encode(local_store.export_event(record.uid), sequence)
    try:
        remote.put_resource(record.uid, payload)
    except RemoteStoreError as e:
        logger.error(f"Failed to push {record.uid}: {e}")
        _mark_failed(stats, event_db, record, record.status)
        return None
    logger.debug(f"Pushed {record.uid} (SEQUENCE {sequence})")
    return sequence


def _confirm_pushed(
    stats: SyncStats,
    logger,
    event_db: EventDatabase,
    record: EventRecord,
    status: EventStatus,
    sequence: int,
    tokens: dict[str, str],
    remote,
):
    """Adopt the server's etag and SEQUENCE for a pushed event.

    The server may re-assign SEQUENCE, so the stored value is read back from
    the resource rather than trusted from the PUT.
    """
    etag = tokens.get(record.uid)
    try:
        stored = remote.fetch_resource(record.uid) if etag else None
    except RemoteStoreError as e:
        logger.error(f"Failed to confirm {record.uid}: {e}")
        stored = None
    if stored is None:
        logger.error(f"Pushed event {record.uid} not found on the server")
        _mark_failed(stats, event_db, record, status)
        return

    try:
        server_sequence = ical.sequence_of(stored)
    except ical.ICalError as e:
        logger.warning(f"Could not read SEQUENCE of {record.uid}: {e}")
        server_sequence = None

    event_db.set_etag(record, etag)
    event_db.set_sequence(record, server_sequence if server_sequence is not None else sequence)
    event_db.set_status(record, EventStatus.SYNCED)
    record_result(stats, record.uid, status, SyncAction.ORG_TO_CAL)


def _delete_remote(
    stats: SyncStats,
    logger,
    event_db: EventDatabase,
    record: EventRecord,
    remote,
):
    try:
        remote.delete_resource(record.uid)
    except RemoteStoreError as e:
        # Record is kept: the next run sees it as deleted-in-local again
        logger.error(f"Failed to delete {record.uid} from calendar: {e}")
        record_result(stats, record.uid, EventStatus.DELETED_IN_LOCAL, SyncAction.ERROR)
        return
    event_db.remove(record.uid)
    record_result(stats, record.uid, EventStatus.DELETED_IN_LOCAL, SyncAction.REMOVED_FROM_CAL)
    logger.debug(f"Deleted {record.uid} from calendar")


def push_local_changes(
    config: SyncConfig,
    stats: SyncStats,
    logger,
    event_db: EventDatabase,
    local_store,
    remote,
    listed: dict[str, str] | None = None,
):
    """Send new/changed events to the calendar and delete locally removed ones.

    ``listed`` is the uid → etag listing the remote scan ran against.

    Failed pushes are dropped from the database altogether, so the next run
    rediscovers them as new-in-local instead of trusting a half-known remote
    state.
    """
    listed = listed or {}
    to_push = event_db.filter(EventStatus.NEW_IN_LOCAL, EventStatus.CHANGED_IN_LOCAL)
    if to_push:
        logger.info(f"Pushing {len(to_push)} event(s) to the calendar...")

    pushed: list[tuple[EventRecord, EventStatus, int]] = []
    for record in to_push:
        status = record.status
        sequence = _put_event(stats, logger, event_db, record, local_store, remote, listed)
        if sequence is not None:
            pushed.append((record, status, sequence))

    if pushed:
        tokens = remote.list_change_tokens()
        for record, status, sequence in pushed:
            _confirm_pushed(stats, logger, event_db, record, status, sequence, tokens, remote)

    for record in event_db.filter(EventStatus.ERROR):
        logger.warning(f"Dropping {record.uid} from sync state; it will be retried as new")
        event_db.remove(record.uid)

    to_delete = event_db.filter(EventStatus.DELETED_IN_LOCAL)
    if to_delete:
        logger.info(f"Deleting {len(to_delete)} event(s) from the calendar...")
    for record in to_delete:
        _delete_remote(stats, logger, event_db, record, remote)
