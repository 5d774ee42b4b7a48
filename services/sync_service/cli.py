"""Command line interface: ink2notion sync | test."""

import argparse
import asyncio
import logging
import signal
import sys
from typing import List, Optional

from dotenv import find_dotenv, load_dotenv

from shared.config import get_backup_dir, get_env, get_notion_config, get_vision_config
from shared.errors import RecognitionError, RemoteUnavailable, RenderError, SyncError
from shared.models import PageSource
from services.notebook_reader.reader import NotebookReader
from services.notebook_reader.renderer import PageRenderer
from services.notion_writer.writer import NotionWriter
from services.recognizer.vision import VisionRecognizer
from services.sync_service.components import build_components, verify_prerequisites

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(verbose: bool = False) -> None:
    """Configure root logging; -v wins over LOG_LEVEL."""
    level_name = "DEBUG" if verbose else get_env("LOG_LEVEL", "INFO").upper()
    logging.basicConfig(
        level=getattr(logging, level_name, logging.INFO),
        format=LOG_FORMAT,
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True
    )
    # Keep per-request client chatter out of INFO output
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("botocore").setLevel(logging.WARNING)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ink2notion",
        description="Sync reMarkable notebooks to a Notion database with OCR",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  ink2notion sync                          # Sync every notebook in the backup
  ink2notion sync --dry-run                # Show what a sync would do
  ink2notion sync --workers 8 -v           # More workers, debug logging
  ink2notion test --backup                 # List notebooks found in the backup
  ink2notion test --ocr notebook.pdf       # Recognize the first page of a PDF
  ink2notion test --notion                 # Check Notion access and schema
        """
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    sync_parser = subparsers.add_parser("sync", help="Sync notebooks to Notion")
    sync_parser.add_argument("--backup-dir", help="reMarkable backup root (default: $REMARKABLE_BACKUP_DIR)")
    sync_parser.add_argument("--notion-token", help="Notion integration token (default: $NOTION_TOKEN)")
    sync_parser.add_argument("--notion-database-id", help="Notion database id or URL (default: $NOTION_DATABASE_ID)")
    sync_parser.add_argument("--dry-run", action="store_true", help="Plan and log, change nothing")
    sync_parser.add_argument("--workers", type=int, help="Notebooks processed concurrently (default: $SYNC_MAX_WORKERS)")
    sync_parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")

    test_parser = subparsers.add_parser("test", help="Test individual components")
    test_parser.add_argument("--backup", action="store_true", help="List notebooks found in the backup root")
    test_parser.add_argument("--backup-dir", help="reMarkable backup root (default: $REMARKABLE_BACKUP_DIR)")
    test_parser.add_argument("--ocr", metavar="PDF_PATH", help="Render and recognize pages of a PDF")
    test_parser.add_argument("--ocr-pages", type=int, default=1, help="Number of pages to recognize (default: 1)")
    test_parser.add_argument("--notion", action="store_true", help="Check Notion connection and schema")
    test_parser.add_argument("--notion-token", help="Notion integration token (default: $NOTION_TOKEN)")
    test_parser.add_argument("--notion-database-id", help="Notion database id or URL (default: $NOTION_DATABASE_ID)")
    test_parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")

    return parser


def _install_signal_handlers(cancel_event: asyncio.Event) -> None:
    """
    Set ``cancel_event`` on the first SIGINT or SIGTERM.

    The handlers remove themselves once fired, so a second signal gets the
    default behaviour and stops the process.
    """
    loop = asyncio.get_running_loop()
    installed = []

    def _cancel() -> None:
        logger.warning("Cancellation requested; finishing notebooks in progress (interrupt again to quit)")
        cancel_event.set()
        for sig in installed:
            loop.remove_signal_handler(sig)

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _cancel)
        except (NotImplementedError, RuntimeError):
            # Platforms without loop signal support fall back to KeyboardInterrupt
            continue
        installed.append(sig)


async def run_sync(args: argparse.Namespace) -> int:
    """
    Run a full sync.

    Returns:
        Process exit code: 0 when the run completed, 1 on a fatal error
    """
    try:
        components = build_components(
            backup_dir=args.backup_dir,
            notion_token=args.notion_token,
            notion_database_id=args.notion_database_id,
            max_workers=args.workers,
            dry_run=args.dry_run
        )
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1

    try:
        try:
            await verify_prerequisites(components, dry_run=args.dry_run)
        except SyncError as e:
            print(f"Prerequisites check failed: {e}", file=sys.stderr)
            print("\nPlease ensure:", file=sys.stderr)
            print("  1. poppler is installed (pdftoppm on PATH)", file=sys.stderr)
            print("  2. The Notion token is valid and the database is shared with the integration", file=sys.stderr)
            print("  3. The S3 bucket exists and the AWS credentials can write to it", file=sys.stderr)
            return 1

        cancel_event = asyncio.Event()
        _install_signal_handlers(cancel_event)

        try:
            summary = await components.orchestrator.run(cancel_event=cancel_event)
        except RemoteUnavailable as e:
            print(f"Sync failed: {e}", file=sys.stderr)
            return 1

        prefix = "[DRY RUN] " if summary.dry_run else ""
        print(
            f"{prefix}Sync complete: {summary.created} created, {summary.updated} updated, "
            f"{summary.skipped} skipped, {summary.failed} failed"
        )
        for key, error in summary.failures:
            print(f"  ✗ {key}: {error}")
        return 0
    finally:
        await components.aclose()


def check_backup(backup_dir: Optional[str]) -> int:
    reader = NotebookReader(get_backup_dir(backup_dir))
    logger.info(f"Listing notebooks in {reader.backup_dir}...")

    scan = reader.scan()
    for notebook in scan.notebooks:
        tags = f" [{', '.join(sorted(notebook.tags))}]" if notebook.tags else ""
        print(f"  - {notebook.key} ({notebook.page_count} pages){tags}")
    for name, reason in scan.rejected:
        print(f"  ! {name}: {reason}")

    print(f"Found {len(scan.notebooks)} notebooks, {len(scan.rejected)} rejected")
    return 0


async def check_ocr(pdf_path: str, pages: int) -> int:
    vision_config = get_vision_config()
    renderer = PageRenderer()
    renderer.check_installation()
    recognizer = VisionRecognizer(api_key=vision_config["api_key"], endpoint=vision_config["endpoint"])

    try:
        texts = []
        for index in range(max(1, pages)):
            image = await asyncio.to_thread(renderer.render, PageSource(pdf_path=pdf_path, index=index))
            texts.append(await recognizer.recognize(image))
    finally:
        await recognizer.aclose()

    text = "\n".join(texts)
    print(f"Extracted {len(text)} characters")
    print(f"Preview: {text[:200]}")
    return 0


async def check_notion(token: Optional[str], database_id: Optional[str]) -> int:
    config = get_notion_config(token=token, database_id=database_id)
    writer = NotionWriter(config["token"], config["database_id"])
    try:
        schema = await writer.ensure_schema()
        print(f"✓ Connection verified (title property: {schema.title_property})")
        response = await writer.query_pages(page_size=1)
        if response.get("results"):
            print("✓ Database has pages")
        else:
            logger.warning("Database is empty")
    finally:
        await writer.aclose()
    return 0


async def run_tests(args: argparse.Namespace) -> int:
    if not (args.backup or args.ocr or args.notion):
        print("Please specify at least one test: --backup, --ocr, or --notion", file=sys.stderr)
        print("Run with --help for more information", file=sys.stderr)
        return 1

    if args.backup:
        try:
            check_backup(args.backup_dir)
        except OSError as e:
            print(f"Backup test failed: {e}", file=sys.stderr)
            return 1

    if args.ocr:
        try:
            await check_ocr(args.ocr, args.ocr_pages)
        except (ValueError, RenderError, RecognitionError) as e:
            print(f"OCR test failed: {e}", file=sys.stderr)
            return 1

    if args.notion:
        try:
            await check_notion(args.notion_token, args.notion_database_id)
        except Exception as e:
            print(f"Notion test failed: {e}", file=sys.stderr)
            return 1

    return 0


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    # Values already in the environment win over .env
    load_dotenv(find_dotenv(usecwd=True))
    configure_logging(args.verbose)

    if args.command == "sync":
        return asyncio.run(run_sync(args))
    return asyncio.run(run_tests(args))


if __name__ == "__main__":
    sys.exit(main())
