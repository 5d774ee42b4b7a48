"""Text recognition with Google Cloud Vision."""

import base64
import logging
from typing import Optional

import httpx

from shared.errors import RecognitionError

logger = logging.getLogger(__name__)

VISION_ENDPOINT = "https://vision.googleapis.com/v1/images:annotate"
RETRYABLE_STATUS_CODES = {401, 403, 408, 429, 500, 502, 503, 504}


class VisionRecognizer:
    """Recognizes handwritten text in page images with DOCUMENT_TEXT_DETECTION."""

    def __init__(
        self,
        api_key: str,
        endpoint: str = VISION_ENDPOINT,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 60.0
    ):
        """
        Initialize the recognizer.

        Args:
            api_key: Google Cloud Vision API key
            endpoint: images:annotate endpoint
            client: Optional shared HTTP client
            timeout: Request timeout in seconds
        """
        self.api_key = api_key
        self.endpoint = endpoint
        self.client = client or httpx.AsyncClient(timeout=timeout)

    async def aclose(self) -> None:
        await self.client.aclose()

    async def recognize(self, image_data: bytes) -> str:
        """
        Extract text from one image.

        Args:
            image_data: PNG or JPEG bytes

        Returns:
            Recognized text, empty when the page holds no text

        Raises:
            RecognitionError: retryable for quota, auth, server and network
                failures; not retryable when the image itself is rejected
        """
        request_body = {
            "requests": [{
                "image": {"content": base64.b64encode(image_data).decode()},
                "features": [{"type": "DOCUMENT_TEXT_DETECTION"}],
            }]
        }

        try:
            response = await self.client.post(
                self.endpoint,
                params={"key": self.api_key},
                json=request_body
            )
        except httpx.HTTPError as e:
            raise RecognitionError(f"Google Vision request failed: {e}", retryable=True)

        if response.status_code != 200:
            raise RecognitionError(
                f"Google Vision API failed: {response.status_code} - {response.text}",
                retryable=response.status_code in RETRYABLE_STATUS_CODES,
                status_code=response.status_code
            )

        try:
            result = response.json()
        except ValueError as e:
            raise RecognitionError(f"Google Vision returned invalid JSON: {e}", retryable=True)

        responses = result.get("responses") or [{}]
        first = responses[0]

        if "error" in first:
            error = first["error"]
            raise RecognitionError(
                f"Google Vision rejected the image: {error.get('message', error)}",
                retryable=False
            )

        text = (first.get("fullTextAnnotation") or {}).get("text", "")
        logger.debug(f"Recognized {len(text)} characters")
        return text
