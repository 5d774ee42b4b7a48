"""Execution of sync plans against Notion, S3, the renderer and the recognizer."""

import asyncio
import logging
import time
from dataclasses import replace
from typing import Any, Callable, List, Optional

from shared.errors import SyncError, ValidationError, classify_error
from shared.models import LocalNotebook, RemoteRecord, SyncAction, SyncPlan
from shared.retry import RetryPolicy
from shared.schema import CREATED, LAST_MODIFIED, NOTEBOOK_KEY, PAGE_COUNT, PDF_LINK, TAGS, TITLE
from services.archival_store.s3_client import S3Client
from services.notebook_reader.renderer import PageRenderer
from services.notion_writer.writer import MAX_BLOCKS_PER_REQUEST, NotionWriter
from services.recognizer.vision import VisionRecognizer

logger = logging.getLogger(__name__)


def _read_file(path: str) -> bytes:
    with open(path, "rb") as f:
        return f.read()


def _not_ambiguous(error: Exception) -> bool:
    return not getattr(error, "ambiguous", False)


class SyncExecutor:
    """
    Carries out one SyncPlan.

    Every external call goes through the retry policy, and every adapter
    error is classified here, so callers only ever see SyncError subclasses.
    """

    def __init__(
        self,
        writer: NotionWriter,
        renderer: PageRenderer,
        recognizer: VisionRecognizer,
        archive: S3Client,
        retry_policy: Optional[RetryPolicy] = None
    ):
        """
        Initialize the executor.

        Args:
            writer: Notion writer bound to the notebook database
            renderer: Page renderer
            recognizer: Text recognizer
            archive: Store for the archival PDF and the page images
            retry_policy: Policy applied to every external call
        """
        self.writer = writer
        self.renderer = renderer
        self.recognizer = recognizer
        self.archive = archive
        self.retry_policy = retry_policy or RetryPolicy()

    async def _attempt(self, step: str, func: Callable, *args) -> Any:
        try:
            return await func(*args)
        except SyncError as e:
            raise classify_error(e, step)
        except Exception as e:
            raise classify_error(e, step) from e

    async def _call(self, step: str, func: Callable, *args, idempotent: bool = True) -> Any:
        """
        Run one external call with classification and retries.

        Non-idempotent calls (creating a page, appending blocks) are not
        retried when the outcome of the failed attempt is unknown.
        """
        return await self.retry_policy.call(
            self._attempt,
            step,
            func,
            *args,
            description=step,
            should_retry=None if idempotent else _not_ambiguous
        )

    async def execute(
        self,
        local: LocalNotebook,
        plan: SyncPlan,
        remote: Optional[RemoteRecord] = None
    ) -> Optional[RemoteRecord]:
        """
        Execute a plan for one notebook.

        Args:
            local: Notebook read from the backup
            plan: Plan computed for the notebook
            remote: Record from the remote index, required for UPDATE

        Returns:
            The remote record as it stands after execution

        Raises:
            SyncError: TransientRemoteError, AuthError, ValidationError or
                LocalInputError for the first unrecoverable failure
        """
        if plan.action == SyncAction.SKIP:
            logger.debug(f"Skipping {local.key}: {plan.reason}")
            return remote

        if plan.action == SyncAction.UPDATE and remote is None:
            raise ValidationError(f"cannot update {local.key}: no remote record", step="plan")

        started = time.monotonic()

        if plan.action == SyncAction.UPDATE and plan.diff.tags_only:
            logger.info(f"Updating tags of {local.key}: {sorted(local.tags)}")
            await self._write_tags(remote.page_id, local)
            record = replace(remote, tags=local.tags)
        else:
            record = await self._sync_content(local, plan, remote)

        logger.info(
            f"{plan.action.value.capitalize()}d {local.key} "
            f"({plan.reason}) in {time.monotonic() - started:.1f}s"
        )
        return record

    async def _sync_content(
        self,
        local: LocalNotebook,
        plan: SyncPlan,
        remote: Optional[RemoteRecord]
    ) -> RemoteRecord:
        """
        Full pipeline: render, recognize, upload, write body, archive, commit, tag.

        Page Count and Last Modified are committed only after the image batch
        and the archive are in place, so an interrupted run leaves a record
        the planner will pick up again.
        """
        page_count = local.page_count
        if page_count > MAX_BLOCKS_PER_REQUEST:
            raise ValidationError(
                f"{page_count} pages cannot be attached in one batch (limit {MAX_BLOCKS_PER_REQUEST})",
                step="attach images",
                field=PAGE_COUNT.name
            )

        pdf_data = await self._call("read archival PDF", asyncio.to_thread, _read_file, local.pdf_path)

        page_texts: List[str] = []
        image_urls: List[str] = []
        for page in local.pages:
            image = await self._call(
                f"render page {page.number}", asyncio.to_thread, self.renderer.render, page
            )
            page_texts.append(
                await self._call(f"recognize page {page.number}", self.recognizer.recognize, image)
            )
            image_urls.append(
                await self._call(
                    f"upload page {page.number}", self.archive.upload_image, image, local.key, page.number
                )
            )
        logger.debug(f"Rendered and recognized {page_count} pages of {local.key}")

        schema = self.writer.schema

        if plan.action == SyncAction.CREATE:
            properties = schema.build_properties(
                {TITLE: local.name, NOTEBOOK_KEY: local.key, CREATED: local.created_at},
                creating=True
            )
            page = await self._call("create record", self.writer.create_page, properties, idempotent=False)
            page_id = page["id"]
        else:
            page_id = remote.page_id
            await self._call("clear page", self.writer.clear_page, page_id)

        text_blocks = self.writer.build_text_blocks(page_texts)
        for start in range(0, len(text_blocks), MAX_BLOCKS_PER_REQUEST):
            await self._call(
                "append text",
                self.writer.append_blocks,
                page_id,
                text_blocks[start:start + MAX_BLOCKS_PER_REQUEST],
                idempotent=False
            )

        # One request for all images: either the whole set is attached or none
        await self._call(
            "attach images",
            self.writer.append_blocks,
            page_id,
            self.writer.build_image_blocks(image_urls),
            idempotent=False
        )

        archival_link = await self._call("upload archive", self.archive.upload_pdf, pdf_data, local.key)

        await self._call(
            "commit content",
            self.writer.update_properties,
            page_id,
            schema.build_properties({
                TITLE: local.name,
                LAST_MODIFIED: local.modified_at,
                PDF_LINK: archival_link,
                PAGE_COUNT: page_count,
            })
        )

        await self._write_tags(page_id, local)

        return RemoteRecord(
            key=local.key,
            page_id=page_id,
            exists=True,
            title=local.name,
            last_modified=local.modified_at,
            tags=local.tags,
            archival_link=archival_link,
            image_count=page_count,
        )

    async def _write_tags(self, page_id: str, local: LocalNotebook) -> None:
        await self._call(
            "write tags",
            self.writer.update_properties,
            page_id,
            self.writer.schema.build_properties({TAGS: local.tags})
        )
