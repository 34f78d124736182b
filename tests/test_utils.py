"""
Unit tests for the shared sync helpers.
"""

import pytest

from org_caldav_sync.models import DeletionPolicy
from org_caldav_sync.models import EventStatus
from org_caldav_sync.models import SyncAction
from org_caldav_sync.models import SyncResult
from org_caldav_sync.models import SyncStats
from org_caldav_sync.sync.utils import planned_action
from org_caldav_sync.sync.utils import record_result


class TestPlannedAction:
    @pytest.mark.parametrize(
        "status, expected",
        [
            (EventStatus.NEW_IN_LOCAL, SyncAction.ORG_TO_CAL),
            (EventStatus.CHANGED_IN_LOCAL, SyncAction.ORG_TO_CAL),
            (EventStatus.DELETED_IN_LOCAL, SyncAction.REMOVED_FROM_CAL),
            (EventStatus.NEW_IN_REMOTE, SyncAction.CAL_TO_ORG),
            (EventStatus.CHANGED_IN_REMOTE, SyncAction.CAL_TO_ORG),
            (EventStatus.SYNCED, None),
        ],
    )
    def test_status_to_action(self, status, expected):
        assert planned_action(status, DeletionPolicy.ASK) is expected

    @pytest.mark.parametrize(
        "policy, expected",
        [
            (DeletionPolicy.ALWAYS, SyncAction.REMOVED_FROM_ORG),
            (DeletionPolicy.ASK, SyncAction.REMOVED_FROM_ORG),
            (DeletionPolicy.NEVER, SyncAction.KEPT_IN_ORG),
        ],
    )
    def test_remote_deletion_depends_on_policy(self, policy, expected):
        assert planned_action(EventStatus.DELETED_IN_REMOTE, policy) is expected


class TestRecordResult:
    def test_counters(self):
        stats = SyncStats()
        record_result(stats, "A", EventStatus.NEW_IN_LOCAL, SyncAction.ORG_TO_CAL)
        record_result(stats, "B", EventStatus.NEW_IN_REMOTE, SyncAction.CAL_TO_ORG)
        record_result(stats, "C", EventStatus.CHANGED_IN_REMOTE, SyncAction.CAL_TO_ORG)
        record_result(stats, "D", EventStatus.DELETED_IN_LOCAL, SyncAction.REMOVED_FROM_CAL)
        record_result(stats, "E", EventStatus.DELETED_IN_REMOTE, SyncAction.REMOVED_FROM_ORG)
        record_result(stats, "F", EventStatus.CHANGED_IN_LOCAL, SyncAction.ERROR)
        record_result(stats, "G", EventStatus.DELETED_IN_REMOTE, SyncAction.KEPT_IN_ORG)

        assert (stats.added, stats.modified, stats.deleted, stats.errors) == (2, 1, 2, 1)
        assert stats.results[0] == SyncResult("A", EventStatus.NEW_IN_LOCAL, SyncAction.ORG_TO_CAL)
        assert [r.uid for r in stats.results] == list("ABCDEFG")
