"""Notebook extraction from a local reMarkable backup."""

import json
import logging
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from shared.errors import LocalInputError
from shared.models import LocalNotebook, PageSource
from shared.schema import normalize_tag

logger = logging.getLogger(__name__)

DOCUMENT_TYPE = "DocumentType"
COLLECTION_TYPE = "CollectionType"
TRASH = "trash"


class MetadataFile(BaseModel):
    """A ``<uuid>.metadata`` file."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    visible_name: str = Field(alias="visibleName")
    type: str = DOCUMENT_TYPE
    parent: str = ""
    created_time: Optional[int] = Field(default=None, alias="createdTime")
    last_modified: Optional[int] = Field(default=None, alias="lastModified")
    deleted: bool = False

    @field_validator("parent", mode="before")
    @classmethod
    def _parent_or_root(cls, value: Any) -> str:
        return value or ""


class ContentTag(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str
    timestamp: Optional[int] = None


class ContentPage(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    deleted: Optional[Any] = None

    @property
    def is_deleted(self) -> bool:
        if isinstance(self.deleted, dict):
            return bool(self.deleted.get("value"))
        return bool(self.deleted)


class ContentPages(BaseModel):
    model_config = ConfigDict(extra="ignore")

    pages: List[ContentPage] = []


class ContentFile(BaseModel):
    """A ``<uuid>.content`` file."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    tags: List[ContentTag] = []
    pages: Optional[List[str]] = None
    c_pages: Optional[ContentPages] = Field(default=None, alias="cPages")
    page_count: Optional[int] = Field(default=None, alias="pageCount")

    def count_pages(self) -> int:
        if self.pages is not None:
            return len(self.pages)
        if self.c_pages is not None:
            return sum(1 for page in self.c_pages.pages if not page.is_deleted)
        return self.page_count or 0


@dataclass
class ScanResult:
    """Notebooks found in a backup, plus the ones that had to be skipped."""
    notebooks: List[LocalNotebook] = field(default_factory=list)
    rejected: List[Tuple[str, str]] = field(default_factory=list)


def _from_millis(value: int) -> datetime:
    return datetime.fromtimestamp(value / 1000, tz=timezone.utc)


class NotebookReader:
    """Reads notebooks out of a reMarkable backup directory."""

    def __init__(self, backup_dir: str):
        """
        Initialize the reader.

        Args:
            backup_dir: Backup root containing ``Notebooks/`` and ``PDF/``
        """
        self.backup_dir = backup_dir
        self.notebooks_dir = os.path.join(backup_dir, "Notebooks")
        self.pdf_dir = os.path.join(backup_dir, "PDF")

    def scan(self) -> ScanResult:
        """
        Enumerate every notebook in the backup.

        Notebooks with missing or malformed metadata are logged and reported
        in ``rejected``; they never abort the scan.

        Returns:
            ScanResult with notebooks sorted by key
        """
        result = ScanResult()

        if not os.path.isdir(self.notebooks_dir):
            logger.warning(f"No Notebooks directory found in {self.backup_dir}")
            return result

        # First pass: index every metadata file so folders can be resolved
        index: Dict[str, MetadataFile] = {}
        for filename in sorted(os.listdir(self.notebooks_dir)):
            if not filename.endswith(".metadata"):
                continue

            document_id = filename[:-len(".metadata")]
            try:
                index[document_id] = self._read_metadata(document_id)
            except LocalInputError as e:
                logger.warning(f"Skipping {document_id}: {e}")
                result.rejected.append((document_id, str(e)))

        # Second pass: build notebooks from documents
        seen: Dict[str, str] = {}
        for document_id, metadata in index.items():
            if metadata.type != DOCUMENT_TYPE or metadata.deleted:
                continue

            try:
                folder = self._resolve_folder(document_id, index)
                if folder is None:
                    logger.debug(f"Ignoring trashed notebook {metadata.visible_name}")
                    continue

                notebook = self._build_notebook(document_id, metadata, folder)

                if notebook.key in seen:
                    raise LocalInputError(
                        f"duplicate notebook key {notebook.key!r} (already used by {seen[notebook.key]})"
                    )
                seen[notebook.key] = document_id
                result.notebooks.append(notebook)

            except LocalInputError as e:
                logger.warning(f"Skipping notebook {metadata.visible_name}: {e}")
                result.rejected.append((metadata.visible_name, str(e)))

        result.notebooks.sort(key=lambda notebook: notebook.key)
        logger.info(
            f"Found {len(result.notebooks)} notebooks in {self.backup_dir}"
            f" ({len(result.rejected)} skipped)"
        )
        return result

    def list_notebooks(self) -> List[LocalNotebook]:
        return self.scan().notebooks

    def _read_json(self, path: str) -> Any:
        try:
            with open(path, "r", encoding="utf-8") as f:
                return json.load(f)
        except FileNotFoundError:
            raise LocalInputError(f"missing file {os.path.basename(path)}")
        except (OSError, ValueError) as e:
            raise LocalInputError(f"unreadable file {os.path.basename(path)}: {e}")

    def _read_metadata(self, document_id: str) -> MetadataFile:
        data = self._read_json(os.path.join(self.notebooks_dir, f"{document_id}.metadata"))
        try:
            return MetadataFile.model_validate(data)
        except PydanticValidationError as e:
            raise LocalInputError(f"malformed metadata: {e.errors()[0]['msg']}")

    def _read_content(self, document_id: str) -> ContentFile:
        data = self._read_json(os.path.join(self.notebooks_dir, f"{document_id}.content"))
        try:
            return ContentFile.model_validate(data)
        except PydanticValidationError as e:
            raise LocalInputError(f"malformed content file: {e.errors()[0]['msg']}")

    def _resolve_folder(self, document_id: str, index: Dict[str, MetadataFile]) -> Optional[str]:
        """
        Folder path of a document, or None when it sits in the trash.

        Raises:
            LocalInputError: If a parent folder is unknown or the chain loops
        """
        parts = []
        visited = {document_id}
        parent = index[document_id].parent

        while parent:
            if parent == TRASH:
                return None
            if parent in visited:
                raise LocalInputError(f"folder cycle at {parent}")
            folder = index.get(parent)
            if folder is None:
                raise LocalInputError(f"unknown parent folder {parent}")
            if folder.deleted:
                return None
            visited.add(parent)
            parts.append(folder.visible_name)
            parent = folder.parent

        return "/".join(reversed(parts))

    def _build_notebook(self, document_id: str, metadata: MetadataFile, folder: str) -> LocalNotebook:
        if metadata.last_modified is None:
            raise LocalInputError("metadata has no lastModified timestamp")

        content = self._read_content(document_id)
        page_count = content.count_pages()
        if page_count <= 0:
            raise LocalInputError("notebook has no pages")

        key = f"{folder}/{metadata.visible_name}" if folder else metadata.visible_name
        pdf_path = os.path.join(self.pdf_dir, *key.split("/")) + ".pdf"
        if not os.path.isfile(pdf_path):
            raise LocalInputError(
                f"PDF not found at {pdf_path}. Notebook might not have been converted yet."
            )

        modified_at = _from_millis(metadata.last_modified)
        created_at = _from_millis(metadata.created_time) if metadata.created_time else modified_at

        tags = frozenset(
            normalized for normalized in (normalize_tag(tag.name) for tag in content.tags)
            if normalized
        )

        return LocalNotebook(
            key=key,
            name=metadata.visible_name,
            created_at=created_at,
            modified_at=modified_at,
            pages=tuple(PageSource(pdf_path=pdf_path, index=i) for i in range(page_count)),
            tags=tags,
            pdf_path=pdf_path,
            folder=folder,
            document_id=document_id,
        )
