"""Wiring of the sync components from configuration."""

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from shared.config import (
    get_aws_config,
    get_backup_dir,
    get_notion_config,
    get_sync_settings,
    get_vision_config,
)
from shared.errors import SyncError, classify_error
from shared.retry import RetryPolicy
from services.archival_store.s3_client import S3Client
from services.notebook_reader.reader import NotebookReader
from services.notebook_reader.renderer import PageRenderer
from services.notion_writer.remote_index import RemoteIndex
from services.notion_writer.writer import NotionWriter
from services.recognizer.vision import VisionRecognizer
from services.sync_service.executor import SyncExecutor
from services.sync_service.notifications import NotificationService
from services.sync_service.orchestrator import SyncOrchestrator

logger = logging.getLogger(__name__)


@dataclass
class SyncComponents:
    """Everything one sync run needs, built from one configuration."""
    reader: NotebookReader
    writer: NotionWriter
    renderer: PageRenderer
    recognizer: VisionRecognizer
    archive: S3Client
    orchestrator: SyncOrchestrator

    async def aclose(self) -> None:
        await self.recognizer.aclose()
        await self.writer.aclose()


def build_components(
    backup_dir: Optional[str] = None,
    notion_token: Optional[str] = None,
    notion_database_id: Optional[str] = None,
    max_workers: Optional[int] = None,
    dry_run: bool = False,
    notification_service: Optional[NotificationService] = None
) -> SyncComponents:
    """
    Build the components for a sync run.

    Explicit arguments override the environment. A dry run never calls the
    recognizer, so it does not require a Vision API key.

    Raises:
        ValueError: If required configuration is missing or invalid
    """
    settings = get_sync_settings()
    notion_config = get_notion_config(token=notion_token, database_id=notion_database_id)
    vision_config = get_vision_config(required=not dry_run)
    aws_config = get_aws_config()

    retry_policy = RetryPolicy.from_settings(settings)

    reader = NotebookReader(get_backup_dir(backup_dir))
    writer = NotionWriter(notion_config["token"], notion_config["database_id"])
    renderer = PageRenderer(dpi=settings["render_dpi"])
    recognizer = VisionRecognizer(
        api_key=vision_config["api_key"] or "",
        endpoint=vision_config["endpoint"]
    )
    archive = S3Client(
        bucket_name=aws_config["s3_bucket"],
        region=aws_config["region"],
        access_key_id=aws_config["access_key_id"],
        secret_access_key=aws_config["secret_access_key"],
        key_prefix=aws_config["key_prefix"]
    )

    executor = SyncExecutor(writer, renderer, recognizer, archive, retry_policy=retry_policy)
    orchestrator = SyncOrchestrator(
        reader=reader,
        index=RemoteIndex(writer, retry_policy=retry_policy),
        executor=executor,
        max_workers=max_workers or settings["max_workers"],
        dry_run=dry_run,
        notification_service=notification_service
    )

    return SyncComponents(
        reader=reader,
        writer=writer,
        renderer=renderer,
        recognizer=recognizer,
        archive=archive,
        orchestrator=orchestrator
    )


async def verify_prerequisites(components: SyncComponents, dry_run: bool = False) -> None:
    """
    Check external prerequisites before a run starts.

    Verifies pdftoppm, then ensures and verifies the Notion database schema,
    then (unless dry-running) the archive bucket.

    Raises:
        SyncError: The classified first failure
    """
    step = "check pdftoppm"
    try:
        components.renderer.check_installation()

        step = "check Notion database"
        schema = await components.writer.ensure_schema()
        logger.info(f"Notion database ready (title property: {schema.title_property})")

        if not dry_run:
            step = "check archive bucket"
            await asyncio.to_thread(components.archive.check_bucket)
    except SyncError:
        raise
    except Exception as e:
        raise classify_error(e, step) from e
