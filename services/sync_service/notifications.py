"""Notification utilities for critical errors."""

import logging
import os
from typing import Optional

import httpx

from shared.config import get_env
from shared.retry import RetryPolicy, retry_with_exponential_backoff

logger = logging.getLogger(__name__)

WEBHOOK_RETRY_POLICY = RetryPolicy(
    max_attempts=3,
    base_delay=1.0,
    retry_on=(httpx.TransportError,)
)


class NotificationService:
    """Handles sending notifications when a sync run aborts."""

    def __init__(self, enabled: Optional[bool] = None, webhook_url: Optional[str] = None):
        """Initialize notification service from arguments or environment."""
        if enabled is None:
            enabled = get_env("ENABLE_NOTIFICATIONS", "false").lower() == "true"
        self.notification_enabled = enabled
        self.notification_webhook = webhook_url or os.getenv("NOTIFICATION_WEBHOOK_URL")

    async def send_critical_error_notification(
        self,
        error_message: str,
        run_id: Optional[str] = None,
        context: Optional[dict] = None
    ) -> bool:
        """
        Send notification for a run that could not complete.

        Args:
            error_message: The error message
            run_id: Identifier of the run or HTTP job, when there is one
            context: Optional additional context

        Returns:
            True if a webhook accepted the notification
        """
        if not self.notification_enabled:
            logger.info(f"Notifications disabled, skipping notification for run {run_id or '-'}")
            return False

        notification_message = (
            f"Critical Error in Notebook Sync\n"
            f"Run ID: {run_id or '-'}\n"
            f"Error: {error_message}\n"
        )

        if context:
            notification_message += f"Context: {context}\n"

        logger.warning(f"CRITICAL ERROR NOTIFICATION: {notification_message}")

        if not self.notification_webhook:
            return False

        try:
            await self._post_webhook({
                "text": notification_message,
                "run_id": run_id,
                "error": error_message
            })
            logger.info(f"Notification sent for run {run_id or '-'}")
            return True
        except httpx.HTTPError as e:
            logger.error(f"Failed to send notification: {e}")
            return False

    @retry_with_exponential_backoff(WEBHOOK_RETRY_POLICY)
    async def _post_webhook(self, payload: dict) -> None:
        async with httpx.AsyncClient() as client:
            response = await client.post(self.notification_webhook, json=payload, timeout=10.0)
            response.raise_for_status()
