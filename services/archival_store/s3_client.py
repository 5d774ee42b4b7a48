"""AWS S3 client for archival PDFs and page images."""

import asyncio
import logging
from typing import Optional
from urllib.parse import quote

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from shared.errors import StorageError

logger = logging.getLogger(__name__)


class S3Client:
    """Handles S3 operations for notebook archives and page images."""

    def __init__(
        self,
        bucket_name: str,
        region: str = "us-east-1",
        access_key_id: Optional[str] = None,
        secret_access_key: Optional[str] = None,
        key_prefix: str = "notebooks",
        acl: Optional[str] = "public-read"
    ):
        """
        Initialize S3 client.

        Args:
            bucket_name: S3 bucket name
            region: AWS region
            access_key_id: AWS access key ID (optional, uses default credentials if not provided)
            secret_access_key: AWS secret access key (optional)
            key_prefix: Prefix for every object key
            acl: Canned ACL applied to uploads; public-read lets Notion embed the images
        """
        self.bucket_name = bucket_name
        self.region = region
        self.key_prefix = key_prefix.strip("/")
        self.acl = acl

        if access_key_id and secret_access_key:
            self.s3_client = boto3.client(
                's3',
                region_name=region,
                aws_access_key_id=access_key_id,
                aws_secret_access_key=secret_access_key
            )
        else:
            # Use default credentials (from environment or IAM role)
            self.s3_client = boto3.client('s3', region_name=region)

    def pdf_key(self, notebook_key: str) -> str:
        return f"{self.key_prefix}/{notebook_key}.pdf"

    def image_key(self, notebook_key: str, page_number: int) -> str:
        return f"{self.key_prefix}/{notebook_key}/page-{page_number:03d}.png"

    def object_url(self, key: str) -> str:
        return f"https://{self.bucket_name}.s3.{self.region}.amazonaws.com/{quote(key)}"

    def _put_object(self, data: bytes, key: str, content_type: str) -> str:
        params = {
            "Bucket": self.bucket_name,
            "Key": key,
            "Body": data,
            "ContentType": content_type,
        }
        if self.acl:
            params["ACL"] = self.acl

        try:
            self.s3_client.put_object(**params)
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code")
            logger.error(f"Failed to upload {key} to S3: {e}")
            raise StorageError(f"S3 upload of {key} failed: {e}", code=code)
        except BotoCoreError as e:
            logger.error(f"Failed to upload {key} to S3: {e}")
            raise StorageError(f"S3 upload of {key} failed: {e}")

        url = self.object_url(key)
        logger.debug(f"Uploaded {len(data)} bytes to {url}")
        return url

    async def upload_pdf(self, pdf_data: bytes, notebook_key: str) -> str:
        """
        Upload the archival PDF of a notebook.

        The object key depends only on the notebook key, so re-uploading
        replaces the previous archive.

        Returns:
            Durable URL of the PDF

        Raises:
            StorageError: If the upload fails
        """
        return await asyncio.to_thread(
            self._put_object, pdf_data, self.pdf_key(notebook_key), "application/pdf"
        )

    async def upload_image(self, image_data: bytes, notebook_key: str, page_number: int) -> str:
        """
        Upload one page image of a notebook.

        Returns:
            URL of the image

        Raises:
            StorageError: If the upload fails
        """
        return await asyncio.to_thread(
            self._put_object, image_data, self.image_key(notebook_key, page_number), "image/png"
        )

    def check_bucket(self) -> None:
        """
        Verify that the bucket is reachable with the configured credentials.

        Raises:
            StorageError: If the bucket cannot be accessed
        """
        try:
            self.s3_client.head_bucket(Bucket=self.bucket_name)
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code")
            raise StorageError(f"S3 bucket {self.bucket_name} is not accessible: {e}", code=code)
        except BotoCoreError as e:
            raise StorageError(f"S3 bucket {self.bucket_name} is not accessible: {e}")
