"""Shared pytest fixtures: a backup tree builder and an in-memory Notion."""

import copy
import itertools
import json
from datetime import datetime, timezone
from types import SimpleNamespace
from typing import Any, Callable, Dict, List, Tuple
from unittest.mock import AsyncMock, Mock, patch

import httpx
import pytest
from notion_client.errors import APIResponseError, HTTPResponseError

from shared.schema import SYNCED_FIELDS, TITLE
from services.archival_store.s3_client import S3Client

MODIFIED_MS = 1709287234567  # 2024-03-01T10:00:34.567Z
CREATED_MS = 1704067200000   # 2024-01-01T00:00:00Z
DATABASE_ID = "2fb86a4c5fbf806dbeb6f3f2c1b23d10"


def make_api_error(code: str, status: int = 400, headers: Dict[str, str] = None) -> APIResponseError:
    """Build an APIResponseError without going through an HTTP response."""
    error = APIResponseError.__new__(APIResponseError)
    Exception.__init__(error, f"{code} error")
    error.code = code
    error.status = status
    error.headers = headers or {}
    error.body = ""
    return error


def make_gateway_error(status: int, headers: Dict[str, str] = None) -> HTTPResponseError:
    """Build the non-JSON HTTPResponseError a proxy in front of Notion produces."""
    request = httpx.Request("POST", "https://api.notion.com/v1/pages")
    response = httpx.Response(status, headers=headers, text="<html>Bad Gateway</html>", request=request)
    return HTTPResponseError(response)


class BackupBuilder:
    """Writes a reMarkable desktop backup tree."""

    def __init__(self, root):
        self.root = root
        self.notebooks = root / "Notebooks"
        self.pdf = root / "PDF"
        self.notebooks.mkdir(exist_ok=True)
        self.pdf.mkdir(exist_ok=True)

    def folder(self, uuid, name, parent="", deleted=False):
        self.write(f"{uuid}.metadata", {
            "visibleName": name,
            "type": "CollectionType",
            "parent": parent,
            "deleted": deleted,
        })

    def notebook(self, uuid, name, parent="", folder_path="", pages=2, tags=(),
                 modified=MODIFIED_MS, content=None, pdf=True, metadata=None):
        meta = {
            "visibleName": name,
            "type": "DocumentType",
            "parent": parent,
            "createdTime": str(CREATED_MS),
            "lastModified": str(modified),
        }
        self.write(f"{uuid}.metadata", meta if metadata is None else metadata)

        if content is None:
            content = {
                "tags": [{"name": tag, "timestamp": 1} for tag in tags],
                "pages": [f"page-{i}" for i in range(pages)],
            }
        if content is not False:
            self.write(f"{uuid}.content", content)

        if pdf:
            directory = self.pdf.joinpath(*folder_path.split("/")) if folder_path else self.pdf
            directory.mkdir(parents=True, exist_ok=True)
            (directory / f"{name}.pdf").write_bytes(b"%PDF-1.4 " + name.encode())

    def write(self, filename, data):
        text = data if isinstance(data, str) else json.dumps(data)
        (self.notebooks / filename).write_text(text)


class FakeNotionClient:
    """
    In-memory stand-in for notion_client.AsyncClient.

    Covers the endpoints NotionWriter uses. Failures are injected per
    operation name ("pages.create", "blocks.children.append", ...):
    ``fail`` raises before the call takes effect, ``lose_response`` raises
    after it took effect, and ``fail_if`` raises before the call when a
    predicate over the call's keyword arguments matches.
    """

    MUTATING = {
        "databases.update",
        "pages.create",
        "pages.update",
        "blocks.children.append",
        "blocks.delete",
    }

    def __init__(self, title_property: str = "Name"):
        properties = {title_property: {"id": "title", "type": "title", "title": {}}}
        for field in SYNCED_FIELDS:
            if field is not TITLE:
                properties[field.name] = {"type": field.notion_type}
        self.database = {"object": "database", "id": DATABASE_ID, "properties": properties}

        self.records: Dict[str, Dict[str, Any]] = {}
        self.children: Dict[str, List[Dict[str, Any]]] = {}
        self.calls: List[str] = []
        self._errors: Dict[str, List[Exception]] = {}
        self._lost: Dict[str, List[Exception]] = {}
        self._conditional: Dict[str, List[Tuple[Callable[[dict], bool], Exception]]] = {}
        self._ids = itertools.count(1)

        self.databases = SimpleNamespace(
            retrieve=self._retrieve_database,
            update=self._update_database,
            query=self._query_database
        )
        self.pages = SimpleNamespace(create=self._create_page, update=self._update_page)
        self.blocks = SimpleNamespace(
            children=SimpleNamespace(list=self._list_children, append=self._append_children),
            delete=self._delete_block
        )

    # Failure injection

    def fail(self, operation: str, *errors: Exception) -> None:
        self._errors.setdefault(operation, []).extend(errors)

    def lose_response(self, operation: str, *errors: Exception) -> None:
        self._lost.setdefault(operation, []).extend(errors)

    def fail_if(self, operation: str, predicate: Callable[[dict], bool], error: Exception) -> None:
        self._conditional.setdefault(operation, []).append((predicate, error))

    def _enter(self, operation: str, **kwargs) -> None:
        self.calls.append(operation)
        for entry in self._conditional.get(operation, []):
            predicate, error = entry
            if predicate(kwargs):
                self._conditional[operation].remove(entry)
                raise error
        pending = self._errors.get(operation)
        if pending:
            raise pending.pop(0)

    def _exit(self, operation: str) -> None:
        pending = self._lost.get(operation)
        if pending:
            raise pending.pop(0)

    # Inspection

    def mutation_count(self) -> int:
        return sum(1 for call in self.calls if call in self.MUTATING)

    def record_by_key(self, key: str) -> Dict[str, Any]:
        matches = [
            page for page in self.records.values()
            if "".join(
                item["text"]["content"]
                for item in page["properties"].get("Notebook Key", {}).get("rich_text", [])
            ) == key
        ]
        assert len(matches) == 1, f"expected one record for {key!r}, found {len(matches)}"
        return matches[0]

    def blocks_of(self, page_id: str, block_type: str) -> List[Dict[str, Any]]:
        return [block for block in self.children.get(page_id, []) if block["type"] == block_type]

    # Endpoints

    async def aclose(self) -> None:
        pass

    async def _retrieve_database(self, database_id):
        self._enter("databases.retrieve")
        return copy.deepcopy(self.database)

    async def _update_database(self, database_id, properties):
        self._enter("databases.update")
        for name, definition in properties.items():
            self.database["properties"][name] = {"type": next(iter(definition))}
        return copy.deepcopy(self.database)

    async def _query_database(self, database_id, page_size=100, start_cursor=None):
        self._enter("databases.query")
        pages = list(self.records.values())
        start = int(start_cursor or 0)
        batch = pages[start:start + page_size]
        end = start + len(batch)
        has_more = end < len(pages)
        return {
            "object": "list",
            "results": copy.deepcopy(batch),
            "has_more": has_more,
            "next_cursor": str(end) if has_more else None,
        }

    async def _create_page(self, parent, properties, **kwargs):
        self._enter("pages.create", parent=parent, properties=properties)
        page_id = f"page-{next(self._ids)}"
        self.records[page_id] = {
            "object": "page",
            "id": page_id,
            "archived": False,
            "parent": parent,
            "properties": as_returned(properties),
        }
        self.children[page_id] = []
        self._exit("pages.create")
        return copy.deepcopy(self.records[page_id])

    async def _update_page(self, page_id, properties=None, **kwargs):
        self._enter("pages.update", page_id=page_id, properties=properties)
        page = self._page(page_id)
        page["properties"].update(as_returned(properties))
        self._exit("pages.update")
        return copy.deepcopy(page)

    async def _list_children(self, block_id, page_size=100, start_cursor=None):
        self._enter("blocks.children.list")
        blocks = self.children.get(block_id, [])
        start = int(start_cursor or 0)
        batch = blocks[start:start + page_size]
        end = start + len(batch)
        has_more = end < len(blocks)
        return {
            "object": "list",
            "results": copy.deepcopy(batch),
            "has_more": has_more,
            "next_cursor": str(end) if has_more else None,
        }

    async def _append_children(self, block_id, children):
        self._enter("blocks.children.append", block_id=block_id, children=children)
        self._page(block_id)
        if len(children) > 100:
            raise make_api_error("validation_error", 400)
        added = [dict(copy.deepcopy(block), id=f"block-{next(self._ids)}") for block in children]
        self.children[block_id].extend(added)
        self._exit("blocks.children.append")
        return {"object": "list", "results": copy.deepcopy(added)}

    async def _delete_block(self, block_id):
        self._enter("blocks.delete")
        for page_id, blocks in self.children.items():
            self.children[page_id] = [block for block in blocks if block["id"] != block_id]
        return {"id": block_id, "archived": True}

    def _page(self, page_id: str) -> Dict[str, Any]:
        if page_id not in self.records:
            raise make_api_error("object_not_found", 404)
        return self.records[page_id]


def as_returned(properties: Dict[str, Any]) -> Dict[str, Any]:
    """Echo property values the way the Notion API returns them.

    Date starts come back normalized to UTC with a millisecond fraction.
    """
    properties = copy.deepcopy(properties or {})
    for prop in properties.values():
        date = prop.get("date") if isinstance(prop, dict) else None
        if date and date.get("start"):
            start = datetime.fromisoformat(date["start"].replace("Z", "+00:00")).astimezone(timezone.utc)
            date["start"] = start.strftime("%Y-%m-%dT%H:%M:%S.") + f"{start.microsecond // 1000:03d}+00:00"
    return properties


def is_image_batch(kwargs: dict) -> bool:
    return any(block["type"] == "image" for block in kwargs.get("children", []))


@pytest.fixture
def api_error():
    """Factory for Notion APIResponseError instances."""
    return make_api_error


@pytest.fixture
def gateway_error():
    """Factory for Notion HTTPResponseError instances without an API error body."""
    return make_gateway_error


@pytest.fixture
def backup(tmp_path):
    """Builder for a reMarkable backup tree rooted at tmp_path/backup."""
    root = tmp_path / "backup"
    root.mkdir()
    return BackupBuilder(root)


@pytest.fixture
def fake_notion():
    return FakeNotionClient()


@pytest.fixture
def image_batch():
    """Predicate matching an append call that carries image blocks."""
    return is_image_batch


@pytest.fixture
def fake_renderer():
    """Renderer that returns distinct bytes per page without running pdftoppm."""
    renderer = Mock()
    renderer.render = Mock(side_effect=lambda page: f"png:{page.pdf_path}:{page.number}".encode())
    renderer.check_installation = Mock(return_value="/usr/bin/pdftoppm")
    return renderer


@pytest.fixture
def fake_recognizer():
    """Recognizer that echoes the page it was given."""
    recognizer = Mock()
    recognizer.recognize = AsyncMock(
        side_effect=lambda image: f"text of {image.decode().rsplit(':', 1)[-1]}"
    )
    recognizer.aclose = AsyncMock()
    return recognizer


@pytest.fixture
def fake_archive():
    """S3Client with boto3 replaced by a Mock; keys and URLs are real."""
    boto_client = Mock()
    with patch("services.archival_store.s3_client.boto3.client", return_value=boto_client):
        archive = S3Client(bucket_name="archive", region="us-east-1")
    archive.boto_mock = boto_client
    return archive
