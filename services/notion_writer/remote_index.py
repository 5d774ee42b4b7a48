"""Point-in-time index of the notebooks already present in Notion."""

import logging
from typing import Dict, Optional

from shared.errors import RemoteUnavailable, SyncError, classify_error
from shared.models import RemoteRecord
from shared.retry import RetryPolicy
from services.notion_writer.writer import NotionWriter

logger = logging.getLogger(__name__)


class RemoteIndex:
    """
    Maps stable notebook keys to the records synced by earlier runs.

    The index is loaded once per run and is not refreshed afterwards; edits
    made in Notion while a run is in progress are not seen.
    """

    def __init__(self, writer: NotionWriter, retry_policy: Optional[RetryPolicy] = None):
        self.writer = writer
        self.retry_policy = retry_policy or RetryPolicy()
        self._records: Dict[str, RemoteRecord] = {}
        self.loaded = False

    async def _query(self, start_cursor: Optional[str]) -> dict:
        try:
            return await self.writer.query_pages(start_cursor=start_cursor)
        except Exception as e:
            raise classify_error(e, step="list records")

    async def load(self) -> Dict[str, RemoteRecord]:
        """
        Page through the database until exhausted.

        Returns:
            Mapping of notebook key to RemoteRecord

        Raises:
            RemoteUnavailable: If a listing call still fails after retries
        """
        records: Dict[str, RemoteRecord] = {}
        start_cursor = None
        pages_seen = 0

        while True:
            try:
                response = await self.retry_policy.call(
                    self._query, start_cursor, description="list records"
                )
            except SyncError as e:
                logger.error(f"Failed to load remote index: {e}")
                raise RemoteUnavailable(f"Could not list Notion records: {e}") from e

            for page in response.get("results", []):
                pages_seen += 1
                record = self.writer.schema.parse_record(page)
                if record is None or not record.exists:
                    continue

                if record.key in records:
                    logger.warning(
                        f"Duplicate Notion pages for notebook {record.key!r}: "
                        f"keeping {records[record.key].page_id}, ignoring {record.page_id}"
                    )
                    continue
                records[record.key] = record

            if not response.get("has_more"):
                break
            start_cursor = response.get("next_cursor")

        self._records = records
        self.loaded = True
        logger.info(f"Loaded {len(records)} synced notebooks from {pages_seen} Notion pages")
        return dict(records)

    def lookup(self, key: str) -> Optional[RemoteRecord]:
        return self._records.get(key)

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, key: str) -> bool:
        return key in self._records
