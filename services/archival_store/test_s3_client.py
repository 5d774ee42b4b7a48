"""Unit tests for the S3 archival store."""

from unittest.mock import Mock, patch

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError

from shared.errors import StorageError
from services.archival_store.s3_client import S3Client


@pytest.fixture
def mock_boto_client():
    return Mock()


@pytest.fixture
def s3(mock_boto_client):
    with patch("services.archival_store.s3_client.boto3.client", return_value=mock_boto_client):
        return S3Client(bucket_name="archive", region="eu-west-1", key_prefix="notebooks/")


class TestS3Client:
    """Tests for S3Client."""

    def test_explicit_credentials(self):
        with patch("services.archival_store.s3_client.boto3.client") as client:
            S3Client(bucket_name="archive", access_key_id="AKIA", secret_access_key="secret")

        client.assert_called_once_with(
            "s3",
            region_name="us-east-1",
            aws_access_key_id="AKIA",
            aws_secret_access_key="secret"
        )

    def test_keys_are_deterministic(self, s3):
        assert s3.pdf_key("Work/Meeting notes") == "notebooks/Work/Meeting notes.pdf"
        assert s3.image_key("Work/Meeting notes", 7) == "notebooks/Work/Meeting notes/page-007.png"

    def test_object_url_is_quoted(self, s3):
        assert s3.object_url("notebooks/Work/Meeting notes.pdf") == (
            "https://archive.s3.eu-west-1.amazonaws.com/notebooks/Work/Meeting%20notes.pdf"
        )

    @pytest.mark.asyncio
    async def test_upload_pdf(self, s3, mock_boto_client):
        url = await s3.upload_pdf(b"%PDF", "Journal")

        mock_boto_client.put_object.assert_called_once_with(
            Bucket="archive",
            Key="notebooks/Journal.pdf",
            Body=b"%PDF",
            ContentType="application/pdf",
            ACL="public-read"
        )
        assert url == "https://archive.s3.eu-west-1.amazonaws.com/notebooks/Journal.pdf"

    @pytest.mark.asyncio
    async def test_upload_image_without_acl(self, mock_boto_client):
        with patch("services.archival_store.s3_client.boto3.client", return_value=mock_boto_client):
            s3 = S3Client(bucket_name="archive", acl=None)

        url = await s3.upload_image(b"png", "Journal", 2)

        kwargs = mock_boto_client.put_object.call_args.kwargs
        assert kwargs["Key"] == "notebooks/Journal/page-002.png"
        assert kwargs["ContentType"] == "image/png"
        assert "ACL" not in kwargs
        assert url.endswith("/notebooks/Journal/page-002.png")

    @pytest.mark.asyncio
    async def test_client_error_keeps_code(self, s3, mock_boto_client):
        mock_boto_client.put_object.side_effect = ClientError(
            {"Error": {"Code": "AccessDenied", "Message": "Access Denied"}}, "PutObject"
        )

        with pytest.raises(StorageError) as exc_info:
            await s3.upload_pdf(b"%PDF", "Journal")

        assert exc_info.value.code == "AccessDenied"

    @pytest.mark.asyncio
    async def test_connection_error(self, s3, mock_boto_client):
        mock_boto_client.put_object.side_effect = EndpointConnectionError(endpoint_url="https://s3")

        with pytest.raises(StorageError) as exc_info:
            await s3.upload_image(b"png", "Journal", 1)

        assert exc_info.value.code is None

    def test_check_bucket(self, s3, mock_boto_client):
        s3.check_bucket()

        mock_boto_client.head_bucket.assert_called_once_with(Bucket="archive")

    def test_check_bucket_missing(self, s3, mock_boto_client):
        mock_boto_client.head_bucket.side_effect = ClientError(
            {"Error": {"Code": "404", "Message": "Not Found"}}, "HeadBucket"
        )

        with pytest.raises(StorageError, match="not accessible"):
            s3.check_bucket()
