"""Unit tests for shared data models."""

import threading
from dataclasses import FrozenInstanceError
from datetime import datetime, timezone

import pytest

from shared.models import (
    LocalNotebook,
    PageSource,
    PlanDiff,
    RemoteRecord,
    RunSummary,
    SyncAction,
    SyncPlan,
)


def make_notebook(**overrides):
    values = {
        "key": "Work/Meeting notes",
        "name": "Meeting notes",
        "created_at": datetime(2024, 1, 1, tzinfo=timezone.utc),
        "modified_at": datetime(2024, 1, 2, tzinfo=timezone.utc),
        "pages": (PageSource("/backup/PDF/Work/Meeting notes.pdf", 0),
                  PageSource("/backup/PDF/Work/Meeting notes.pdf", 1)),
        "tags": frozenset({"work"}),
        "pdf_path": "/backup/PDF/Work/Meeting notes.pdf",
        "folder": "Work",
    }
    values.update(overrides)
    return LocalNotebook(**values)


class TestPageSource:
    """Tests for PageSource."""

    def test_number_is_one_based(self):
        assert PageSource("a.pdf", 0).number == 1
        assert PageSource("a.pdf", 9).number == 10


class TestLocalNotebook:
    """Tests for LocalNotebook."""

    def test_page_count(self):
        assert make_notebook().page_count == 2

    def test_is_immutable(self):
        notebook = make_notebook()
        with pytest.raises(FrozenInstanceError):
            notebook.name = "Other"

    def test_equal_notebooks_compare_equal(self):
        assert make_notebook() == make_notebook()


class TestRemoteRecord:
    """Tests for RemoteRecord defaults."""

    def test_defaults(self):
        record = RemoteRecord(key="Journal", page_id="page-1")

        assert record.exists is True
        assert record.last_modified is None
        assert record.tags == frozenset()
        assert record.archival_link is None
        assert record.image_count == 0


class TestSyncPlan:
    """Tests for SyncPlan and PlanDiff."""

    def test_default_diff_is_empty(self):
        plan = SyncPlan(key="Journal", action=SyncAction.SKIP, reason="up to date")

        assert plan.diff == PlanDiff()
        assert not plan.diff.tags_only

    def test_tags_only(self):
        assert PlanDiff(tags_changed=True).tags_only
        assert not PlanDiff(tags_changed=True, content_changed=True, needs_reupload=True).tags_only
        assert not PlanDiff(tags_changed=True, needs_reupload=True).tags_only

    def test_action_values(self):
        assert SyncAction("create") is SyncAction.CREATE
        assert SyncAction.UPDATE.value == "update"


class TestRunSummary:
    """Tests for RunSummary accumulation."""

    def test_record_counts_by_action(self):
        summary = RunSummary()

        summary.record(SyncAction.CREATE)
        summary.record(SyncAction.UPDATE)
        summary.record(SyncAction.UPDATE)
        summary.record(SyncAction.SKIP)

        assert (summary.created, summary.updated, summary.skipped) == (1, 2, 1)
        assert summary.total == 4

    def test_record_failure_keeps_reason(self):
        summary = RunSummary()

        summary.record_failure("Journal", "render page 1: page rendering failed")

        assert summary.failed == 1
        assert summary.failures == [("Journal", "render page 1: page rendering failed")]

    def test_cancelled_is_not_part_of_total(self):
        summary = RunSummary()

        summary.record_cancelled()

        assert summary.cancelled == 1
        assert summary.total == 0

    def test_to_dict(self):
        summary = RunSummary(dry_run=True)
        summary.record(SyncAction.CREATE)
        summary.record_failure("Broken", "missing file")
        summary.finish()

        data = summary.to_dict()

        assert data["created"] == 1
        assert data["failed"] == 1
        assert data["cancelled"] == 0
        assert data["dry_run"] is True
        assert data["failures"] == [{"key": "Broken", "error": "missing file"}]
        assert data["finished_at"] is not None
        assert datetime.fromisoformat(data["started_at"]) <= datetime.fromisoformat(data["finished_at"])

    def test_concurrent_records_are_not_lost(self):
        summary = RunSummary()

        def worker():
            for _ in range(500):
                summary.record(SyncAction.UPDATE)
                summary.record_failure("x", "y")

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert summary.updated == 4000
        assert summary.failed == 4000
        assert len(summary.failures) == 4000
