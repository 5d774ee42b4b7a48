"""Sync orchestration logic."""

import asyncio
import logging
from typing import Optional

from shared.errors import RemoteUnavailable, SyncError
from shared.models import LocalNotebook, RunSummary
from services.notebook_reader.reader import NotebookReader
from services.notion_writer.remote_index import RemoteIndex
from services.sync_service import planner
from services.sync_service.executor import SyncExecutor
from services.sync_service.notifications import NotificationService

logger = logging.getLogger(__name__)


class SyncOrchestrator:
    """Orchestrates one sync run from the local backup to Notion."""

    def __init__(
        self,
        reader: NotebookReader,
        index: RemoteIndex,
        executor: SyncExecutor,
        max_workers: int = 4,
        dry_run: bool = False,
        notification_service: Optional[NotificationService] = None
    ):
        """
        Initialize the sync orchestrator.

        Args:
            reader: Reader for the local backup
            index: Remote index of already synced notebooks
            executor: Executor applying plans
            max_workers: Number of notebooks processed concurrently
            dry_run: Plan and log only, never execute
            notification_service: Notifier for runs that abort
        """
        self.reader = reader
        self.index = index
        self.executor = executor
        self.max_workers = max(1, max_workers)
        self.dry_run = dry_run
        self.notification_service = notification_service or NotificationService()

    async def run(
        self,
        cancel_event: Optional[asyncio.Event] = None,
        run_id: Optional[str] = None
    ) -> RunSummary:
        """
        Execute the synchronization workflow.

        This is the main orchestration method that:
        1. Loads the remote index once
        2. Scans the backup for notebooks
        3. Plans and executes each notebook in a bounded worker pool
        4. Records every outcome in the run summary

        A failing notebook never stops the others. Once ``cancel_event`` is
        set, notebooks that have not started are left alone while in-flight
        ones finish.

        Args:
            cancel_event: Optional event that stops new notebooks from starting
            run_id: Optional identifier used in logs and notifications

        Returns:
            RunSummary for the run

        Raises:
            RemoteUnavailable: If the remote index cannot be loaded
        """
        summary = RunSummary(dry_run=self.dry_run)
        logger.info(
            f"Starting sync run {run_id or ''} from {self.reader.backup_dir} "
            f"(workers={self.max_workers}, dry_run={self.dry_run})"
        )

        try:
            await self.index.load()
        except RemoteUnavailable as e:
            logger.error(f"Sync run aborted: {e}")
            await self.notification_service.send_critical_error_notification(
                error_message=str(e),
                run_id=run_id,
                context={"stage": "remote_index", "backup_dir": self.reader.backup_dir}
            )
            raise

        scan = await asyncio.to_thread(self.reader.scan)
        for name, reason in scan.rejected:
            summary.record_failure(name, reason)

        if not scan.notebooks:
            logger.warning("No notebooks found")

        semaphore = asyncio.Semaphore(self.max_workers)
        await asyncio.gather(*(
            self._worker(notebook, semaphore, summary, cancel_event)
            for notebook in scan.notebooks
        ))

        summary.finish()
        logger.info(
            f"Complete: {summary.created} created, {summary.updated} updated, "
            f"{summary.skipped} skipped, {summary.failed} failed"
            + (f", {summary.cancelled} cancelled" if summary.cancelled else "")
        )
        for key, error in summary.failures:
            logger.info(f"  failed: {key} - {error}")

        return summary

    async def _worker(
        self,
        notebook: LocalNotebook,
        semaphore: asyncio.Semaphore,
        summary: RunSummary,
        cancel_event: Optional[asyncio.Event]
    ) -> None:
        async with semaphore:
            if cancel_event is not None and cancel_event.is_set():
                summary.record_cancelled()
                return
            await self.process_notebook(notebook, summary)

    async def process_notebook(self, notebook: LocalNotebook, summary: RunSummary) -> None:
        """
        Plan and execute one notebook, recording the outcome.

        Args:
            notebook: Notebook read from the backup
            summary: Accumulator for the run
        """
        remote = self.index.lookup(notebook.key)
        sync_plan = planner.plan(notebook, remote)

        if self.dry_run:
            logger.info(f"[DRY RUN] Would {sync_plan.action.value} {notebook.key}: {sync_plan.reason}")
            summary.record(sync_plan.action)
            return

        logger.debug(f"Processing {notebook.key}: {sync_plan.action.value} ({sync_plan.reason})")

        try:
            await self.executor.execute(notebook, sync_plan, remote)
            summary.record(sync_plan.action)
            logger.info(f"✓ {notebook.key} ({sync_plan.action.value})")

        except SyncError as e:
            logger.error(f"✗ {notebook.key} - {e}")
            summary.record_failure(notebook.key, str(e))

        except Exception as e:
            logger.error(f"✗ {notebook.key} - unexpected error: {e}", exc_info=True)
            summary.record_failure(notebook.key, f"unexpected error: {e}")
