"""Error taxonomy for the sync engine and classification of adapter errors."""

import logging
from typing import Any, Optional

import httpx
from botocore.exceptions import BotoCoreError, ClientError
from notion_client.errors import APIResponseError, HTTPResponseError, RequestTimeoutError

logger = logging.getLogger(__name__)


class SyncError(Exception):
    """Base class for the four error kinds the planner and orchestrator see."""

    def __init__(self, message: str, step: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.step = step

    def __str__(self) -> str:
        if self.step:
            return f"{self.step}: {self.message}"
        return self.message


class TransientRemoteError(SyncError):
    """
    Network timeout, 5xx or rate limit. Retried with backoff.

    ``ambiguous`` is set when no response was received, so the request may
    have been applied remotely.
    """

    def __init__(
        self,
        message: str,
        step: Optional[str] = None,
        retry_after: Optional[float] = None,
        ambiguous: bool = False
    ):
        super().__init__(message, step)
        self.retry_after = retry_after
        self.ambiguous = ambiguous


class AuthError(SyncError):
    """Credential rejected by a remote service. Never retried locally."""


class ValidationError(SyncError):
    """Remote schema or request rejected. Fatal to the notebook, never retried."""

    def __init__(self, message: str, step: Optional[str] = None, field: Optional[str] = None):
        super().__init__(message, step)
        self.field = field

    def __str__(self) -> str:
        text = super().__str__()
        if self.field:
            return f"{text} (field: {self.field})"
        return text


class LocalInputError(SyncError):
    """Unreadable or malformed local metadata or page source."""


class RemoteUnavailable(Exception):
    """The remote index could not be loaded. Fatal to the run."""


# Adapter errors. These never leave the executor unclassified.

class RenderError(Exception):
    """Page rasterization failed."""


class RecognitionError(Exception):
    """Text recognition failed."""

    def __init__(self, message: str, retryable: bool = True, status_code: Optional[int] = None):
        super().__init__(message)
        self.retryable = retryable
        self.status_code = status_code


class StorageError(Exception):
    """Archival store operation failed."""

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.code = code


NOTION_AUTH_CODES = {"unauthorized", "restricted_resource"}
NOTION_VALIDATION_CODES = {
    "validation_error",
    "object_not_found",
    "invalid_json",
    "invalid_request",
    "invalid_request_url",
}
STORAGE_AUTH_CODES = {
    "AccessDenied",
    "InvalidAccessKeyId",
    "SignatureDoesNotMatch",
    "ExpiredToken",
    "InvalidToken",
}


def _error_code(error: Any) -> str:
    code = getattr(error, "code", None)
    # APIErrorCode is a str enum in newer notion-client releases
    return str(getattr(code, "value", code) or "")


def _status(error: Any) -> int:
    try:
        return int(getattr(error, "status", 0) or 0)
    except (TypeError, ValueError):
        return 0


def _server_side(error: Any) -> bool:
    """A 5xx may be returned after the request was applied."""
    return _status(error) >= 500


def extract_retry_after(error: Exception) -> Optional[float]:
    """
    Extract the Retry-After duration from a Notion API error.

    Args:
        error: APIResponseError from the Notion client

    Returns:
        Seconds to wait, or None when the response does not say
    """
    headers = getattr(error, "headers", None)
    if headers is None:
        response = getattr(error, "response", None)
        headers = getattr(response, "headers", None)

    if not headers:
        return None

    try:
        retry_after = headers.get("Retry-After") or headers.get("retry-after")
    except AttributeError:
        return None

    if retry_after:
        try:
            return float(retry_after)
        except (TypeError, ValueError):
            logger.warning(f"Ignoring unparsable Retry-After value: {retry_after}")
    return None


def classify_error(error: Exception, step: Optional[str] = None) -> SyncError:
    """
    Map an adapter or client library exception onto the sync error taxonomy.

    Args:
        error: The exception raised by an adapter call
        step: Name of the executor step, kept in the message

    Returns:
        One of TransientRemoteError, AuthError, ValidationError, LocalInputError
    """
    if isinstance(error, SyncError):
        if step and not error.step:
            error.step = step
        return error

    if isinstance(error, RenderError):
        return LocalInputError(f"page rendering failed: {error}", step)

    if isinstance(error, RecognitionError):
        if error.retryable:
            return TransientRemoteError(f"text recognition failed: {error}", step)
        return LocalInputError(f"text recognition rejected the image: {error}", step)

    if isinstance(error, StorageError):
        if error.code in STORAGE_AUTH_CODES:
            return AuthError(f"archival store rejected credentials: {error}", step)
        return TransientRemoteError(f"archival store failed: {error}", step)

    if isinstance(error, ClientError):
        code = error.response.get("Error", {}).get("Code", "")
        if code in STORAGE_AUTH_CODES:
            return AuthError(f"archival store rejected credentials: {error}", step)
        return TransientRemoteError(f"archival store failed: {error}", step)

    if isinstance(error, BotoCoreError):
        return TransientRemoteError(f"archival store unreachable: {error}", step)

    if isinstance(error, APIResponseError):
        code = _error_code(error)
        if code in NOTION_AUTH_CODES:
            return AuthError(f"Notion rejected credentials ({code}): {error}", step)
        if code in NOTION_VALIDATION_CODES:
            return ValidationError(f"Notion rejected the request ({code}): {error}", step)
        return TransientRemoteError(
            f"Notion API error ({code or 'unknown'}): {error}",
            step,
            retry_after=extract_retry_after(error),
            ambiguous=_server_side(error)
        )

    if isinstance(error, HTTPResponseError):
        status = _status(error)
        if status in (401, 403):
            return AuthError(f"Notion rejected credentials (HTTP {status}): {error}", step)
        if status == 429:
            return TransientRemoteError(
                f"Notion rate limited the request (HTTP 429): {error}",
                step,
                retry_after=extract_retry_after(error)
            )
        if status >= 500:
            return TransientRemoteError(
                f"Notion gateway error (HTTP {status}): {error}", step, ambiguous=True
            )
        return ValidationError(f"Notion rejected the request (HTTP {status}): {error}", step)

    if isinstance(error, RequestTimeoutError):
        return TransientRemoteError(f"Notion request timed out: {error}", step, ambiguous=True)

    if isinstance(error, (httpx.TransportError, TimeoutError, ConnectionError)):
        return TransientRemoteError(f"network error: {error}", step, ambiguous=True)

    if isinstance(error, (OSError, ValueError)):
        return LocalInputError(f"local input error: {error}", step)

    # Unknown errors get the transient retry budget
    logger.warning(f"Unclassified error in {step or 'sync'}: {type(error).__name__}: {error}")
    return TransientRemoteError(f"{type(error).__name__}: {error}", step)
