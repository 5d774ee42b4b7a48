"""Shared data models for the reMarkable to Notion sync application."""

import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import FrozenSet, List, Optional, Tuple


@dataclass(frozen=True)
class PageSource:
    """One page of a notebook: a page index inside the converted PDF."""
    pdf_path: str
    index: int  # zero-based

    @property
    def number(self) -> int:
        return self.index + 1


@dataclass(frozen=True)
class LocalNotebook:
    """Represents a notebook found in the local reMarkable backup."""
    key: str
    name: str
    created_at: datetime
    modified_at: datetime
    pages: Tuple[PageSource, ...]
    tags: FrozenSet[str]
    pdf_path: str
    folder: str = ""
    document_id: str = ""

    @property
    def page_count(self) -> int:
        return len(self.pages)


@dataclass(frozen=True)
class RemoteRecord:
    """Represents a synced notebook page in the Notion database."""
    key: str
    page_id: str
    exists: bool = True
    title: str = ""
    last_modified: Optional[datetime] = None
    tags: FrozenSet[str] = frozenset()
    archival_link: Optional[str] = None
    image_count: int = 0


class SyncAction(str, Enum):
    """Action decided for one notebook in one run."""
    CREATE = "create"
    UPDATE = "update"
    SKIP = "skip"


@dataclass(frozen=True)
class PlanDiff:
    """Field-level differences between local and remote state."""
    tags_changed: bool = False
    content_changed: bool = False
    needs_reupload: bool = False

    @property
    def tags_only(self) -> bool:
        return self.tags_changed and not (self.content_changed or self.needs_reupload)


@dataclass(frozen=True)
class SyncPlan:
    """Decided action for a notebook."""
    key: str
    action: SyncAction
    reason: str
    diff: PlanDiff = field(default_factory=PlanDiff)


@dataclass
class RunSummary:
    """
    Outcome of one sync run.

    Workers report through record() and record_failure(); both take the
    same lock so concurrent increments are serialized.
    """
    created: int = 0
    updated: int = 0
    skipped: int = 0
    failed: int = 0
    cancelled: int = 0
    failures: List[Tuple[str, str]] = field(default_factory=list)
    dry_run: bool = False
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: Optional[datetime] = None
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def record(self, action: SyncAction) -> None:
        """Count a successfully handled notebook."""
        with self._lock:
            if action == SyncAction.CREATE:
                self.created += 1
            elif action == SyncAction.UPDATE:
                self.updated += 1
            else:
                self.skipped += 1

    def record_failure(self, key: str, error: str) -> None:
        """Count a failed notebook and keep its reason."""
        with self._lock:
            self.failed += 1
            self.failures.append((key, error))

    def record_cancelled(self) -> None:
        """Count a notebook that was never started because the run was cancelled."""
        with self._lock:
            self.cancelled += 1

    def finish(self) -> None:
        self.finished_at = datetime.now(timezone.utc)

    @property
    def total(self) -> int:
        return self.created + self.updated + self.skipped + self.failed

    def to_dict(self) -> dict:
        with self._lock:
            return {
                "created": self.created,
                "updated": self.updated,
                "skipped": self.skipped,
                "failed": self.failed,
                "cancelled": self.cancelled,
                "failures": [{"key": key, "error": error} for key, error in self.failures],
                "dry_run": self.dry_run,
                "started_at": self.started_at.isoformat(),
                "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            }
