"""
In-memory event database owned by one sync run.
"""

from collections.abc import Iterator

from org_caldav_sync.models import EventRecord
from org_caldav_sync.models import EventStatus


class EventDatabase:
    """Ordered collection of EventRecords keyed by uid.

    Insertion order is preserved for iteration, ``filter()`` and persistence,
    so two runs over the same stores produce the same record order.
    """

    def __init__(self, records: list[EventRecord] | None = None):
        self._records: dict[str, EventRecord] = {}
        for record in records or []:
            self._insert(record)

    def _insert(self, record: EventRecord) -> EventRecord:
        if record.uid in self._records:
            raise ValueError(f"Event {record.uid!r} already in database")
        self._records[record.uid] = record
        return record

    # ------------------------------------------------------------------ #
    # Adding and removing                                                  #
    # ------------------------------------------------------------------ #

    def add(
        self,
        uid: str,
        fingerprint: str | None = None,
        etag: str | None = None,
        sequence: int | None = None,
        status: EventStatus | None = None,
    ) -> EventRecord:
        """Create and return a new record; fails if uid is already present."""
        return self._insert(EventRecord(uid, fingerprint, etag, sequence, status))

    def remove(self, uid: str) -> EventRecord | None:
        return self._records.pop(uid, None)

    # ------------------------------------------------------------------ #
    # Lookup                                                               #
    # ------------------------------------------------------------------ #

    def find(self, uid: str) -> EventRecord | None:
        return self._records.get(uid)

    def filter(self, *statuses: EventStatus | None) -> list[EventRecord]:
        """Records whose status is one of ``statuses``, in insertion order.

        Returns a list rather than a view so callers may mutate or remove
        records while walking the result.
        """
        return [record for record in self._records.values() if record.status in statuses]

    def __iter__(self) -> Iterator[EventRecord]:
        return iter(list(self._records.values()))

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, uid: object) -> bool:
        return uid in self._records

    # ------------------------------------------------------------------ #
    # In-place mutation                                                    #
    # ------------------------------------------------------------------ #

    def reset_statuses(self):
        """Mark every record as unclassified for the coming scan pass."""
        for record in self._records.values():
            record.status = None

    @staticmethod
    def _check(record: EventRecord):
        if record is None:
            raise ValueError("record must not be None")

    def set_status(self, record: EventRecord, status: EventStatus | None):
        self._check(record)
        record.status = status

    def set_fingerprint(self, record: EventRecord, fingerprint: str | None):
        self._check(record)
        record.fingerprint = fingerprint

    def set_etag(self, record: EventRecord, etag: str | None):
        self._check(record)
        record.etag = etag

    def set_sequence(self, record: EventRecord, sequence: int | None):
        self._check(record)
        record.sequence = sequence
