"""Reconciliation planning: decide what a sync run does with each notebook."""

from datetime import datetime
from typing import Optional

from shared.models import LocalNotebook, PlanDiff, RemoteRecord, SyncAction, SyncPlan


def _seconds(value: datetime) -> datetime:
    # Notion stores dates with whole-second precision
    return value.replace(microsecond=0)


def plan(local: LocalNotebook, remote: Optional[RemoteRecord]) -> SyncPlan:
    """
    Compute the plan for one notebook. Pure, no I/O.

    Content (render, OCR, upload) is gated on the modification timestamp and
    the committed page count. Tags are compared on every run, because tag
    edits on the tablet do not always bump the notebook's modification time.

    Args:
        local: Notebook read from the backup
        remote: Record from the remote index, or None if never synced

    Returns:
        SyncPlan with action CREATE, UPDATE or SKIP
    """
    if remote is None:
        return SyncPlan(
            key=local.key,
            action=SyncAction.CREATE,
            reason="not synced yet",
            diff=PlanDiff(tags_changed=True, content_changed=True, needs_reupload=True),
        )

    reasons = []

    tags_changed = local.tags != remote.tags
    if tags_changed:
        reasons.append("tags changed")

    if remote.last_modified is None:
        content_changed = True
        reasons.append("no completed content sync")
    elif _seconds(local.modified_at) > _seconds(remote.last_modified):
        content_changed = True
        reasons.append("notebook modified")
    elif local.page_count != remote.image_count:
        content_changed = True
        reasons.append(f"page count {remote.image_count} -> {local.page_count}")
    else:
        content_changed = False

    needs_reupload = content_changed or not remote.archival_link
    if needs_reupload and not content_changed:
        reasons.append("archival link missing")

    diff = PlanDiff(
        tags_changed=tags_changed,
        content_changed=content_changed,
        needs_reupload=needs_reupload,
    )

    if tags_changed or needs_reupload:
        return SyncPlan(key=local.key, action=SyncAction.UPDATE, reason=", ".join(reasons), diff=diff)

    return SyncPlan(key=local.key, action=SyncAction.SKIP, reason="up to date", diff=diff)
