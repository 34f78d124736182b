"""
Local and remote scan passes: classify every record for this run.
"""

from org_caldav_sync.events import EventDatabase
from org_caldav_sync.models import EventStatus
from org_caldav_sync.models import SyncInvariantError


def scan_local(logger, event_db: EventDatabase, local_store):
    """Classify records against the events the Org files currently hold.

    Every record starts the pass unclassified; anything the local store no
    longer reports ends it as deleted-in-local.
    """
    event_db.reset_statuses()

    uids = local_store.list_event_uids()
    logger.info(f"Scanning {len(uids)} local event(s)...")
    for uid in uids:
        fingerprint = local_store.fingerprint_of(uid)
        record = event_db.find(uid)
        if record is None:
            event_db.add(uid, fingerprint=fingerprint, status=EventStatus.NEW_IN_LOCAL)
            logger.debug(f"New local event: {uid}")
        elif record.fingerprint != fingerprint:
            event_db.set_fingerprint(record, fingerprint)
            event_db.set_status(record, EventStatus.CHANGED_IN_LOCAL)
            logger.debug(f"Changed local event: {uid}")
        else:
            event_db.set_status(record, EventStatus.IN_LOCAL)

    for record in event_db.filter(None):
        event_db.set_status(record, EventStatus.DELETED_IN_LOCAL)
        logger.debug(f"Deleted local event: {record.uid}")


def scan_remote(logger, event_db: EventDatabase, tokens: dict[str, str]):
    """Classify records against the calendar's uid → etag listing.

    Local changes and deletions win: a remote change to a record that was
    also changed or deleted locally is ignored for this run.  So is the
    listing of a new local event: its push replaces the server copy.
    """
    logger.info(f"Scanning {len(tokens)} remote event(s)...")
    for uid, etag in tokens.items():
        record = event_db.find(uid)
        if record is None:
            event_db.add(uid, etag=etag, status=EventStatus.NEW_IN_REMOTE)
            logger.debug(f"New remote event: {uid}")
            continue

        status = record.status
        if status in (
            EventStatus.NEW_IN_LOCAL,
            EventStatus.CHANGED_IN_LOCAL,
            EventStatus.DELETED_IN_LOCAL,
        ):
            if record.etag != etag:
                logger.debug(f"Ignoring remote change to {uid} ({status.value} wins)")
        elif record.etag != etag:
            event_db.set_etag(record, etag)
            event_db.set_status(record, EventStatus.CHANGED_IN_REMOTE)
            logger.debug(f"Changed remote event: {uid}")
        elif status is None:
            event_db.set_status(record, EventStatus.DELETED_IN_LOCAL)
        elif status is EventStatus.IN_LOCAL:
            event_db.set_status(record, EventStatus.SYNCED)
        else:
            raise SyncInvariantError(f"Unexpected status {status!r} for {uid} in remote scan")

    for record in event_db.filter(EventStatus.IN_LOCAL):
        event_db.set_status(record, EventStatus.DELETED_IN_REMOTE)
        logger.debug(f"Deleted remote event: {record.uid}")
