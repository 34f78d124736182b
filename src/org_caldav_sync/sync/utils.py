"""
Helpers shared by the sync phases.
"""

from org_caldav_sync.models import DeletionPolicy
from org_caldav_sync.models import EventStatus
from org_caldav_sync.models import SyncAction
from org_caldav_sync.models import SyncResult
from org_caldav_sync.models import SyncStats

_NEW = (EventStatus.NEW_IN_LOCAL, EventStatus.NEW_IN_REMOTE)
_CHANGED = (EventStatus.CHANGED_IN_LOCAL, EventStatus.CHANGED_IN_REMOTE)

# What each actionable status leads to, for results and dry runs
PLANNED_ACTIONS = {
    EventStatus.NEW_IN_LOCAL: SyncAction.ORG_TO_CAL,
    EventStatus.CHANGED_IN_LOCAL: SyncAction.ORG_TO_CAL,
    EventStatus.DELETED_IN_LOCAL: SyncAction.REMOVED_FROM_CAL,
    EventStatus.NEW_IN_REMOTE: SyncAction.CAL_TO_ORG,
    EventStatus.CHANGED_IN_REMOTE: SyncAction.CAL_TO_ORG,
}


def planned_action(status: EventStatus, policy: DeletionPolicy) -> SyncAction | None:
    """Action a run would take for a record classified as ``status``."""
    if status is EventStatus.DELETED_IN_REMOTE:
        if policy is DeletionPolicy.NEVER:
            return SyncAction.KEPT_IN_ORG
        return SyncAction.REMOVED_FROM_ORG
    return PLANNED_ACTIONS.get(status)


def record_result(stats: SyncStats, uid: str, status: EventStatus, action: SyncAction):
    """Append a result and bump the matching counter."""
    stats.results.append(SyncResult(uid, status, action))
    if action is SyncAction.ERROR:
        stats.errors += 1
    elif action in (SyncAction.REMOVED_FROM_CAL, SyncAction.REMOVED_FROM_ORG):
        stats.deleted += 1
    elif status in _NEW:
        stats.added += 1
    elif status in _CHANGED:
        stats.modified += 1
