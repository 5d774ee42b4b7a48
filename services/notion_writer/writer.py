"""Notion Writer - handles the notebook database and its pages in Notion."""

import logging
from typing import Any, Dict, List, Optional, Sequence

from notion_client import AsyncClient
from notion_client.errors import APIResponseError

from shared.schema import MAX_TEXT_LENGTH, DatabaseSchema

logger = logging.getLogger(__name__)

NOTION_API_VERSION = "2022-06-28"
# Notion accepts at most this many children per append request
MAX_BLOCKS_PER_REQUEST = 100
NO_TEXT_PLACEHOLDER = "(No text detected)"


def split_text(text: str, limit: int = MAX_TEXT_LENGTH) -> List[str]:
    """Split text into chunks no longer than ``limit``, preferring line breaks."""
    chunks = []
    current = ""
    for line in text.splitlines():
        while len(line) > limit:
            if current:
                chunks.append(current)
                current = ""
            chunks.append(line[:limit])
            line = line[limit:]
        candidate = f"{current}\n{line}" if current else line
        if len(candidate) > limit:
            chunks.append(current)
            current = line
        else:
            current = candidate
    if current.strip():
        chunks.append(current)
    return [chunk for chunk in chunks if chunk.strip()]


def _text_block(block_type: str, content: str) -> Dict[str, Any]:
    return {
        "object": "block",
        "type": block_type,
        block_type: {
            "rich_text": [
                {
                    "type": "text",
                    "text": {"content": content}
                }
            ]
        }
    }


class NotionWriter:
    """Handles writing notebooks to a Notion database."""

    def __init__(self, api_token: str, database_id: str, client: Optional[AsyncClient] = None):
        """
        Initialize Notion Writer.

        Args:
            api_token: Notion API integration token
            database_id: Notion database holding one page per notebook
            client: Optional preconfigured client
        """
        self.api_token = api_token
        self.database_id = database_id
        self.client = client or AsyncClient(auth=api_token, notion_version=NOTION_API_VERSION)
        self.schema = DatabaseSchema()

    async def aclose(self) -> None:
        await self.client.aclose()

    async def retrieve_database(self) -> Dict[str, Any]:
        """Fetch the database definition; also serves as a connectivity check."""
        try:
            return await self.client.databases.retrieve(database_id=self.database_id)
        except APIResponseError as e:
            logger.error(f"Notion API error retrieving database {self.database_id}: {e}")
            raise

    async def ensure_schema(self) -> DatabaseSchema:
        """
        Add missing synced properties to the database, then verify all of them.

        Returns:
            The schema bound to this database

        Raises:
            ValidationError: If a synced property exists with the wrong type
        """
        database = await self.retrieve_database()

        missing = DatabaseSchema.missing_fields(database)
        if missing:
            names = ", ".join(field.name for field in missing)
            logger.info(f"Adding missing database properties: {names}")
            await self.client.databases.update(
                database_id=self.database_id,
                properties=DatabaseSchema.property_definitions(missing)
            )
            database = await self.retrieve_database()

        self.schema = DatabaseSchema.from_database(database)
        logger.debug(f"Database schema verified (title property: {self.schema.title_property})")
        return self.schema

    async def query_pages(self, start_cursor: Optional[str] = None, page_size: int = 100) -> Dict[str, Any]:
        """
        Fetch one page of database query results.

        Returns:
            Notion list response with results, has_more and next_cursor
        """
        params: Dict[str, Any] = {"database_id": self.database_id, "page_size": page_size}
        if start_cursor:
            params["start_cursor"] = start_cursor
        return await self.client.databases.query(**params)

    async def create_page(self, properties: Dict[str, Any]) -> Dict[str, Any]:
        """
        Create a new page in the database.

        Args:
            properties: Encoded page properties

        Returns:
            The created page object

        Raises:
            APIResponseError: If Notion API request fails
        """
        try:
            response = await self.client.pages.create(
                parent={"database_id": self.database_id},
                properties=properties
            )
            logger.info(f"Created Notion page: {response['id']}")
            return response
        except APIResponseError as e:
            logger.error(f"Notion API error creating page: {e}")
            raise

    async def update_properties(self, page_id: str, properties: Dict[str, Any]) -> Dict[str, Any]:
        """
        Update properties of an existing page. Properties not listed are left untouched.

        Raises:
            APIResponseError: If Notion API request fails
        """
        try:
            response = await self.client.pages.update(page_id=page_id, properties=properties)
            logger.debug(f"Updated properties {sorted(properties)} on page {page_id}")
            return response
        except APIResponseError as e:
            logger.error(f"Notion API error updating page {page_id}: {e}")
            raise

    async def list_child_ids(self, page_id: str) -> List[str]:
        """Ids of every top-level block in a page body."""
        block_ids = []
        start_cursor = None

        while True:
            params: Dict[str, Any] = {"block_id": page_id, "page_size": 100}
            if start_cursor:
                params["start_cursor"] = start_cursor

            response = await self.client.blocks.children.list(**params)
            block_ids.extend(block["id"] for block in response.get("results", []))

            if not response.get("has_more"):
                return block_ids
            start_cursor = response.get("next_cursor")

    async def clear_page(self, page_id: str) -> int:
        """
        Delete every top-level block in a page body.

        Returns:
            Number of deleted blocks
        """
        block_ids = await self.list_child_ids(page_id)
        for block_id in block_ids:
            await self.client.blocks.delete(block_id=block_id)

        if block_ids:
            logger.debug(f"Deleted {len(block_ids)} blocks from page {page_id}")
        return len(block_ids)

    async def append_blocks(self, page_id: str, children: List[Dict[str, Any]]) -> Dict[str, Any]:
        """
        Append blocks to a page in a single request.

        Raises:
            ValueError: If more blocks are passed than one request accepts
            APIResponseError: If Notion API request fails
        """
        if len(children) > MAX_BLOCKS_PER_REQUEST:
            raise ValueError(
                f"Cannot append {len(children)} blocks in one request (limit {MAX_BLOCKS_PER_REQUEST})"
            )
        return await self.client.blocks.children.append(block_id=page_id, children=children)

    def build_text_blocks(self, page_texts: Sequence[str]) -> List[Dict[str, Any]]:
        """
        Build the OCR section of a page body.

        Args:
            page_texts: Recognized text, one entry per notebook page in order

        Returns:
            List of Notion block objects
        """
        blocks = [_text_block("heading_2", "OCR Extracted Text")]

        if not any(text.strip() for text in page_texts):
            blocks.append(_text_block("paragraph", NO_TEXT_PLACEHOLDER))
            return blocks

        for number, text in enumerate(page_texts, start=1):
            blocks.append(_text_block("heading_3", f"Page {number}"))
            chunks = split_text(text)
            if not chunks:
                blocks.append(_text_block("paragraph", NO_TEXT_PLACEHOLDER))
            for chunk in chunks:
                blocks.append(_text_block("paragraph", chunk))

        return blocks

    def build_image_blocks(self, image_urls: Sequence[str]) -> List[Dict[str, Any]]:
        """
        Build one captioned image block per page.

        Args:
            image_urls: Hosted page image URLs in page order

        Returns:
            List of Notion block objects
        """
        blocks = []
        for number, url in enumerate(image_urls, start=1):
            blocks.append({
                "object": "block",
                "type": "image",
                "image": {
                    "type": "external",
                    "external": {"url": url},
                    "caption": [
                        {
                            "type": "text",
                            "text": {"content": f"Page {number}"}
                        }
                    ]
                }
            })
        return blocks
