"""Shared configuration utilities."""

import os
import re
from typing import Optional


def get_env(key: str, default: Optional[str] = None, required: bool = False) -> str:
    """Get environment variable with optional default and required validation."""
    value = os.getenv(key, default)
    if required and not value:
        raise ValueError(f"Required environment variable {key} is not set")
    return value


def _get_int(key: str, default: int) -> int:
    raw = get_env(key)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"Environment variable {key} must be an integer, got {raw!r}")


def _get_float(key: str, default: float) -> float:
    raw = get_env(key)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"Environment variable {key} must be a number, got {raw!r}")


def clean_database_id(database_id: str) -> str:
    """
    Clean and extract a Notion database ID from various formats.

    Handles:
    - Plain UUID: 2fb86a4c5fbf806dbeb6f3f2c1b23d10
    - UUID with dashes: 2fb86a4c-5fbf-806d-beb6-f3f2c1b23d10
    - Notion URL: https://www.notion.so/2fb86a4c5fbf806dbeb6f3f2c1b23d10?v=...

    Args:
        database_id: Database ID in any format

    Returns:
        Clean database ID (32 hex characters without dashes)

    Raises:
        ValueError: If database ID is invalid
    """
    database_id = database_id.strip()

    if database_id.startswith('http'):
        match = re.search(r'([a-f0-9]{8}-?[a-f0-9]{4}-?[a-f0-9]{4}-?[a-f0-9]{4}-?[a-f0-9]{12})(\?|$)', database_id)
        if match:
            database_id = match.group(1)
        else:
            raise ValueError(f"Could not extract database ID from URL: {database_id}")

    database_id = database_id.replace('-', '')

    if not re.match(r'^[a-f0-9]{32}$', database_id):
        raise ValueError(f"Invalid database ID format: {database_id}. Expected 32 hex characters.")

    return database_id


def get_notion_config(
    token: Optional[str] = None,
    database_id: Optional[str] = None
) -> dict:
    """Get Notion configuration, letting explicit values override the environment."""
    token = token or get_env("NOTION_TOKEN")
    database_id = database_id or get_env("NOTION_DATABASE_ID")

    if not token:
        raise ValueError("Required environment variable NOTION_TOKEN is not set")
    if not database_id:
        raise ValueError("Required environment variable NOTION_DATABASE_ID is not set")

    return {
        "token": token,
        "database_id": clean_database_id(database_id),
    }


def get_vision_config(required: bool = True) -> dict:
    """Get Google Cloud Vision configuration from environment."""
    return {
        "api_key": get_env("GOOGLE_VISION_API_KEY", required=required),
        "endpoint": get_env(
            "GOOGLE_VISION_ENDPOINT",
            "https://vision.googleapis.com/v1/images:annotate"
        ),
    }


def get_aws_config() -> dict:
    """Get AWS configuration from environment."""
    return {
        "region": get_env("AWS_REGION", "us-east-1"),
        "s3_bucket": get_env("AWS_S3_BUCKET", "ink2notion-archive"),
        "key_prefix": get_env("S3_KEY_PREFIX", "notebooks"),
        "access_key_id": get_env("AWS_ACCESS_KEY_ID"),
        "secret_access_key": get_env("AWS_SECRET_ACCESS_KEY"),
    }


def get_backup_dir(backup_dir: Optional[str] = None) -> str:
    """Get the reMarkable backup root, defaulting to ./remarkable_backup."""
    return backup_dir or get_env(
        "REMARKABLE_BACKUP_DIR",
        os.path.join(os.getcwd(), "remarkable_backup")
    )


def get_sync_settings() -> dict:
    """Get worker pool, rendering and retry settings from environment."""
    return {
        "max_workers": _get_int("SYNC_MAX_WORKERS", 4),
        "render_dpi": _get_int("RENDER_DPI", 150),
        "retry_max_attempts": _get_int("SYNC_RETRY_MAX_ATTEMPTS", 4),
        "retry_base_delay": _get_float("SYNC_RETRY_BASE_DELAY", 1.0),
        "retry_max_delay": _get_float("SYNC_RETRY_MAX_DELAY", 30.0),
        "retry_jitter": _get_float("SYNC_RETRY_JITTER", 0.1),
    }
