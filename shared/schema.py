"""Statically declared set of Notion properties owned by the sync."""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

from shared.errors import ValidationError
from shared.models import RemoteRecord

logger = logging.getLogger(__name__)

# Notion rejects rich text content longer than this
MAX_TEXT_LENGTH = 2000
MAX_TAG_LENGTH = 100


class MergePolicy(str, Enum):
    """How a synced property is written on an existing page."""
    OVERWRITE = "overwrite"  # local state always wins
    PRESERVE = "preserve"    # written when the page is created, then left alone


@dataclass(frozen=True)
class SyncedField:
    """A Notion database property managed by the sync."""
    name: str
    notion_type: str
    policy: MergePolicy


TITLE = SyncedField("Name", "title", MergePolicy.OVERWRITE)
NOTEBOOK_KEY = SyncedField("Notebook Key", "rich_text", MergePolicy.PRESERVE)
CREATED = SyncedField("Created", "date", MergePolicy.PRESERVE)
LAST_MODIFIED = SyncedField("Last Modified", "date", MergePolicy.OVERWRITE)
TAGS = SyncedField("Tags", "multi_select", MergePolicy.OVERWRITE)
PDF_LINK = SyncedField("PDF Link", "url", MergePolicy.OVERWRITE)
PAGE_COUNT = SyncedField("Page Count", "number", MergePolicy.OVERWRITE)

SYNCED_FIELDS = (TITLE, NOTEBOOK_KEY, CREATED, LAST_MODIFIED, TAGS, PDF_LINK, PAGE_COUNT)


def normalize_tag(tag: str) -> str:
    """Make a tag acceptable as a Notion multi-select option name."""
    # Commas are reserved as option separators
    return " ".join(tag.replace(",", " ").split())[:MAX_TAG_LENGTH]


def format_datetime(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).replace(microsecond=0).isoformat()


def parse_datetime(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        logger.warning(f"Ignoring unparsable date value: {value}")
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _rich_text(content: str) -> List[Dict[str, Any]]:
    return [{"type": "text", "text": {"content": content[:MAX_TEXT_LENGTH]}}]


def _plain_text(items: Optional[List[Dict[str, Any]]]) -> str:
    if not items:
        return ""
    return "".join(
        item.get("plain_text") or item.get("text", {}).get("content", "")
        for item in items
    )


def _encode(field: SyncedField, value: Any) -> Dict[str, Any]:
    if field.notion_type == "title":
        return {"title": _rich_text(value)}
    if field.notion_type == "rich_text":
        return {"rich_text": _rich_text(value)}
    if field.notion_type == "date":
        return {"date": {"start": format_datetime(value)} if value else None}
    if field.notion_type == "multi_select":
        return {"multi_select": [{"name": tag} for tag in sorted(value)]}
    if field.notion_type == "url":
        return {"url": value}
    if field.notion_type == "number":
        return {"number": value}
    raise ValueError(f"Unsupported property type: {field.notion_type}")


def _decode(field: SyncedField, prop: Optional[Dict[str, Any]]) -> Any:
    if not prop:
        return None
    if field.notion_type in ("title", "rich_text"):
        return _plain_text(prop.get(field.notion_type))
    if field.notion_type == "date":
        date = prop.get("date") or {}
        return parse_datetime(date.get("start"))
    if field.notion_type == "multi_select":
        return frozenset(option["name"] for option in prop.get("multi_select") or [])
    return prop.get(field.notion_type)


class DatabaseSchema:
    """
    The synced property set bound to one Notion database.

    The database's title column may have any name; it is resolved once from
    the database definition and used wherever TITLE is written or read.
    """

    def __init__(self, title_property: str = TITLE.name):
        self.title_property = title_property

    def property_name(self, field: SyncedField) -> str:
        return self.title_property if field is TITLE else field.name

    @staticmethod
    def find_title_property(database: Dict[str, Any]) -> Optional[str]:
        for prop_name, prop_config in database.get("properties", {}).items():
            if prop_config.get("type") == "title":
                return prop_name
        return None

    @classmethod
    def missing_fields(cls, database: Dict[str, Any]) -> List[SyncedField]:
        """Synced fields (other than the title) absent from the database."""
        properties = database.get("properties", {})
        return [
            field for field in SYNCED_FIELDS
            if field is not TITLE and field.name not in properties
        ]

    @staticmethod
    def property_definitions(fields: Iterable[SyncedField]) -> Dict[str, Any]:
        """Database property definitions used to add missing fields."""
        definitions = {}
        for field in fields:
            if field.notion_type == "multi_select":
                definitions[field.name] = {"multi_select": {"options": []}}
            elif field.notion_type == "number":
                definitions[field.name] = {"number": {"format": "number"}}
            else:
                definitions[field.name] = {field.notion_type: {}}
        return definitions

    @classmethod
    def from_database(cls, database: Dict[str, Any]) -> "DatabaseSchema":
        """
        Check a database definition against the synced fields.

        Raises:
            ValidationError: If a synced property is missing or has the wrong type
        """
        title_property = cls.find_title_property(database)
        if not title_property:
            raise ValidationError("database has no title property", step="schema", field=TITLE.name)

        properties = database.get("properties", {})
        for field in SYNCED_FIELDS:
            if field is TITLE:
                continue
            prop = properties.get(field.name)
            if prop is None:
                raise ValidationError("synced property is missing", step="schema", field=field.name)
            if prop.get("type") != field.notion_type:
                raise ValidationError(
                    f"expected type {field.notion_type}, found {prop.get('type')}",
                    step="schema",
                    field=field.name
                )

        return cls(title_property=title_property)

    def build_properties(self, values: Dict[SyncedField, Any], creating: bool = False) -> Dict[str, Any]:
        """
        Encode field values as Notion page properties.

        PRESERVE fields are only written when the page is being created.
        """
        properties = {}
        for field, value in values.items():
            if field.policy == MergePolicy.PRESERVE and not creating:
                continue
            properties[self.property_name(field)] = _encode(field, value)
        return properties

    def parse_record(self, page: Dict[str, Any]) -> Optional[RemoteRecord]:
        """Build a RemoteRecord from a Notion page, or None if the page has no notebook key."""
        properties = page.get("properties", {})

        key = _decode(NOTEBOOK_KEY, properties.get(NOTEBOOK_KEY.name))
        if not key:
            return None

        image_count = _decode(PAGE_COUNT, properties.get(PAGE_COUNT.name))

        return RemoteRecord(
            key=key,
            page_id=page["id"],
            exists=not page.get("archived", False),
            title=_decode(TITLE, properties.get(self.title_property)) or "",
            last_modified=_decode(LAST_MODIFIED, properties.get(LAST_MODIFIED.name)),
            tags=_decode(TAGS, properties.get(TAGS.name)) or frozenset(),
            archival_link=_decode(PDF_LINK, properties.get(PDF_LINK.name)),
            image_count=int(image_count or 0),
        )
