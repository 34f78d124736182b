"""
Unit tests for the local and remote scan passes (the per-run state machine).
"""

import pytest

from org_caldav_sync.events import EventDatabase
from org_caldav_sync.models import EventStatus
from org_caldav_sync.models import SyncInvariantError
from org_caldav_sync.sync.scan import scan_local
from org_caldav_sync.sync.scan import scan_remote


class StubStore:
    """Local store reporting fixed fingerprints."""

    def __init__(self, fingerprints: dict[str, str]):
        self.fingerprints = fingerprints

    def list_event_uids(self) -> list[str]:
        return list(self.fingerprints)

    def fingerprint_of(self, uid: str) -> str:
        return self.fingerprints[uid]


def _db(*records) -> EventDatabase:
    """Records given as (uid, fingerprint, etag) tuples, as persisted after a sync."""
    db = EventDatabase()
    for uid, fingerprint, etag in records:
        db.add(uid, fingerprint=fingerprint, etag=etag, sequence=1, status=EventStatus.SYNCED)
    return db


def _statuses(db: EventDatabase) -> dict[str, EventStatus]:
    return {record.uid: record.status for record in db}


class TestScanLocal:
    def test_classifies_every_record(self, sync_logger):
        db = _db(("SAME", "fp1", '"1"'), ("EDITED", "fp2", '"2"'), ("GONE", "fp3", '"3"'))
        store = StubStore({"SAME": "fp1", "EDITED": "fp2-new", "NEW": "fp4"})

        scan_local(sync_logger, db, store)

        assert _statuses(db) == {
            "SAME": EventStatus.IN_LOCAL,
            "EDITED": EventStatus.CHANGED_IN_LOCAL,
            "GONE": EventStatus.DELETED_IN_LOCAL,
            "NEW": EventStatus.NEW_IN_LOCAL,
        }
        assert db.find("EDITED").fingerprint == "fp2-new"
        assert db.find("NEW").fingerprint == "fp4"
        assert db.find("NEW").etag is None

    def test_no_record_left_unclassified(self, sync_logger):
        db = _db(("A", "fp", '"1"'))
        scan_local(sync_logger, db, StubStore({}))
        assert db.filter(None) == []


class TestScanRemote:
    def _scan(self, sync_logger, db, local, tokens):
        scan_local(sync_logger, db, StubStore(local))
        scan_remote(sync_logger, db, tokens)

    def test_unchanged_event_is_synced(self, sync_logger):
        db = _db(("E1", "fp", '"1"'))
        self._scan(sync_logger, db, {"E1": "fp"}, {"E1": '"1"'})
        assert _statuses(db) == {"E1": EventStatus.SYNCED}

    def test_remote_change(self, sync_logger):
        db = _db(("E1", "fp", '"1"'))
        self._scan(sync_logger, db, {"E1": "fp"}, {"E1": '"2"'})

        assert _statuses(db) == {"E1": EventStatus.CHANGED_IN_REMOTE}
        assert db.find("E1").etag == '"2"'

    def test_new_remote_event(self, sync_logger):
        db = EventDatabase()
        self._scan(sync_logger, db, {}, {"R1": '"7"'})

        record = db.find("R1")
        assert record.status is EventStatus.NEW_IN_REMOTE
        assert record.etag == '"7"'
        assert record.fingerprint is None

    def test_remote_deletion(self, sync_logger):
        db = _db(("E1", "fp", '"1"'))
        self._scan(sync_logger, db, {"E1": "fp"}, {})
        assert _statuses(db) == {"E1": EventStatus.DELETED_IN_REMOTE}

    def test_local_change_wins_over_remote_change(self, sync_logger):
        db = _db(("E1", "fp", '"1"'))
        self._scan(sync_logger, db, {"E1": "fp-local"}, {"E1": '"2"'})

        assert _statuses(db) == {"E1": EventStatus.CHANGED_IN_LOCAL}
        assert db.find("E1").etag == '"1"'

    def test_local_deletion_wins_over_remote_change(self, sync_logger):
        db = _db(("E1", "fp", '"1"'))
        self._scan(sync_logger, db, {}, {"E1": '"2"'})

        assert _statuses(db) == {"E1": EventStatus.DELETED_IN_LOCAL}
        assert db.find("E1").etag == '"1"'

    def test_local_change_survives_remote_deletion(self, sync_logger):
        db = _db(("E1", "fp", '"1"'))
        self._scan(sync_logger, db, {"E1": "fp-local"}, {})
        assert _statuses(db) == {"E1": EventStatus.CHANGED_IN_LOCAL}

    def test_deleted_on_both_sides(self, sync_logger):
        db = _db(("E1", "fp", '"1"'))
        self._scan(sync_logger, db, {}, {})
        assert _statuses(db) == {"E1": EventStatus.DELETED_IN_LOCAL}

    def test_new_local_event_already_on_server_is_pushed(self, sync_logger):
        """A listed uid without a record is a push to retry, not a remote change."""
        db = EventDatabase()
        self._scan(sync_logger, db, {"E1": "fp"}, {"E1": '"5"'})

        assert _statuses(db) == {"E1": EventStatus.NEW_IN_LOCAL}
        assert db.find("E1").etag is None

    def test_unclassified_record_becomes_local_deletion(self, sync_logger):
        db = _db(("E1", "fp", '"1"'))
        db.reset_statuses()

        scan_remote(sync_logger, db, {"E1": '"1"'})

        assert _statuses(db) == {"E1": EventStatus.DELETED_IN_LOCAL}

    @pytest.mark.parametrize(
        "status", [EventStatus.SYNCED, EventStatus.NEW_IN_REMOTE, EventStatus.ERROR]
    )
    def test_impossible_status_is_fatal(self, sync_logger, status):
        db = _db(("E1", "fp", '"1"'))
        db.set_status(db.find("E1"), status)

        with pytest.raises(SyncInvariantError):
            scan_remote(sync_logger, db, {"E1": '"1"'})
