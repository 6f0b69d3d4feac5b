"""Tests for object storage integration.

Tests cover:
- Object key helpers and filename sanitising
- Upload and download with integrity verification
- Bucket management
- Error handling (not found, integrity failures)
- Health checks

Uses moto for S3 mocking to enable fast unit tests without Docker.
"""

import hashlib
from unittest.mock import MagicMock
from uuid import UUID

import boto3
import pytest
from botocore.config import Config
from botocore.exceptions import EndpointConnectionError
from moto import mock_aws
from pydantic import SecretStr

from etds.core.config import S3Settings
from etds.db.models.base import Agency
from etds.services.storage import (
    BucketNotFoundError,
    Buckets,
    IntegrityError,
    ObjectNotFoundError,
    ObjectStoreClient,
    StorageError,
    agency_attachment_key,
    safe_filename,
    verification_document_key,
)

APPLICATION_ID = UUID("8f14e45f-ceea-467f-a0e6-4d5c3b1a2e90")


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------
@pytest.fixture
def mock_s3_client():
    """Create an ObjectStoreClient backed by moto.

    moto only intercepts requests made without a custom endpoint, so the
    wrapper's internal client is replaced by one created inside mock_aws.
    """
    with mock_aws():
        s3_client = boto3.client(
            "s3",
            aws_access_key_id="test_access_key",
            aws_secret_access_key="test_secret_key",  # noqa: S106
            region_name="us-east-1",
            config=Config(signature_version="s3v4"),
        )
        client = ObjectStoreClient(
            endpoint_url="http://mocked",
            access_key="test_access_key",
            secret_key="test_secret_key",  # noqa: S106
            region="us-east-1",
        )
        client._client = s3_client
        yield client


@pytest.fixture
def store(mock_s3_client):
    """Mocked client with the documents bucket created."""
    mock_s3_client.ensure_bucket()
    return mock_s3_client


# ---------------------------------------------------------------------------
# Key helpers
# ---------------------------------------------------------------------------
class TestKeys:
    """Tests for object key construction."""

    def test_verification_document_key(self):
        key = verification_document_key(APPLICATION_ID, "Letter (final).pdf")

        assert key == f"applications/{APPLICATION_ID}/verification-document/Letter_final_.pdf"

    def test_agency_attachment_key(self):
        key = agency_attachment_key(APPLICATION_ID, Agency.SPECIAL_BRANCH_KPK, "report.pdf")

        assert key == f"applications/{APPLICATION_ID}/attachments/SPECIAL_BRANCH_KPK/report.pdf"

    def test_attachment_without_filename(self):
        key = agency_attachment_key(APPLICATION_ID, Agency.INTELLIGENCE_BUREAU, None)

        assert key.endswith("/INTELLIGENCE_BUREAU/attachment")

    @pytest.mark.parametrize(
        ("filename", "expected"),
        [
            ("report.pdf", "report.pdf"),
            ("../../etc/passwd", "passwd"),
            ("C:\\Users\\me\\scan 01.png", "scan_01.png"),
            ("...", "document"),
            ("", "document"),
            (None, "document"),
        ],
    )
    def test_safe_filename(self, filename, expected):
        assert safe_filename(filename) == expected


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------
class TestObjectStoreClientInit:
    """Tests for ObjectStoreClient initialization."""

    def test_from_settings(self):
        settings = S3Settings(
            endpoint="http://minio:9000",
            access_key=SecretStr("access"),
            secret_key=SecretStr("secret"),
            region="eu-west-1",
            bucket="custom-bucket",
        )

        with mock_aws():
            client = ObjectStoreClient.from_settings(settings)

        assert client._endpoint_url == "http://minio:9000"
        assert client._region == "eu-west-1"
        assert client.bucket == "custom-bucket"

    def test_default_bucket(self):
        with mock_aws():
            client = ObjectStoreClient(None, "access", "secret")  # noqa: S106

        assert client.bucket == Buckets.DOCUMENTS.value


class TestBuckets:
    """Tests for bucket management."""

    def test_ensure_bucket_creates_once(self, mock_s3_client):
        assert mock_s3_client.ensure_bucket() is True
        assert mock_s3_client.ensure_bucket() is False

    def test_upload_without_bucket(self, mock_s3_client):
        with pytest.raises(BucketNotFoundError):
            mock_s3_client.upload("k", b"data")


class TestUploadDownload:
    """Tests for upload and download."""

    def test_round_trip_keeps_metadata(self, store):
        data = b"%PDF-1.7 verification letter"
        key = verification_document_key(APPLICATION_ID, "letter.pdf")

        result = store.upload(key, data, content_type="application/pdf", filename="letter.pdf")
        content, metadata = store.download(key)

        assert result.sha256_digest == hashlib.sha256(data).hexdigest()
        assert result.size_bytes == len(data)
        assert content == data
        assert metadata.content_type == "application/pdf"
        assert metadata.sha256_digest == result.sha256_digest
        assert metadata.filename == "letter.pdf"

    def test_download_missing_object(self, store):
        with pytest.raises(ObjectNotFoundError) as exc_info:
            store.download("applications/missing")

        assert exc_info.value.key == "applications/missing"
        assert exc_info.value.operation == "download"

    def test_integrity_failure_detected(self, store):
        store._client.put_object(
            Bucket=store.bucket,
            Key="tampered",
            Body=b"changed content",
            Metadata={ObjectStoreClient.DIGEST_METADATA_KEY: "0" * 64},
        )

        with pytest.raises(IntegrityError):
            store.download("tampered")

        content, _ = store.download("tampered", verify_integrity=False)
        assert content == b"changed content"

    def test_upload_overwrites_same_key(self, store):
        key = verification_document_key(APPLICATION_ID, "letter.pdf")

        store.upload(key, b"first draft")
        store.upload(key, b"signed letter")
        content, _ = store.download(key)

        assert content == b"signed letter"


class TestHealthCheck:
    """Tests for health checks."""

    def test_health_check_reports_bucket(self, store):
        health = store.health_check()

        assert health["healthy"] is True
        assert health["bucket"] == Buckets.DOCUMENTS.value
        assert health["bucket_present"] is True

    def test_health_check_without_bucket(self, mock_s3_client):
        assert mock_s3_client.health_check()["bucket_present"] is False

    def test_unreachable_endpoint(self, store):
        store._client.list_buckets = MagicMock(
            side_effect=EndpointConnectionError(endpoint_url="http://minio:9000")
        )

        with pytest.raises(StorageError) as exc_info:
            store.health_check()
        assert exc_info.value.operation == "health_check"

    def test_ensure_bucket_unreachable(self, mock_s3_client):
        mock_s3_client._client.head_bucket = MagicMock(
            side_effect=EndpointConnectionError(endpoint_url="http://minio:9000")
        )

        with pytest.raises(StorageError):
            mock_s3_client.ensure_bucket()


class TestExceptions:
    """Tests for the storage exception hierarchy."""

    def test_errors_are_storage_errors(self):
        for error_cls in (ObjectNotFoundError, BucketNotFoundError, IntegrityError):
            assert issubclass(error_cls, StorageError)

    def test_error_context(self):
        error = StorageError("failed", bucket="b", key="k", operation="upload")

        assert str(error) == "failed"
        assert (error.bucket, error.key, error.operation) == ("b", "k", "upload")
