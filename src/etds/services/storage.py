"""Object store integration for verification documents and agency attachments.

The workflow only ever writes two kinds of blobs:
- the ministry's verification document, one per application
- one optional attachment per agency response

Both live in a single bucket under per-application prefixes. Records keep
the object key as an opaque reference; this module is the only place that
knows how keys are built.

Example:
    from etds.services.storage import ObjectStoreClient, verification_document_key
    from etds.core.settings import get_settings

    settings = get_settings()
    client = ObjectStoreClient.from_settings(settings.s3)

    result = client.upload(
        verification_document_key(application_id, "letter.pdf"),
        data,
        content_type="application/pdf",
    )
"""

from __future__ import annotations

import hashlib
import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

if TYPE_CHECKING:
    from uuid import UUID

    from etds.core.config import S3Settings
    from etds.db.models.base import Agency

logger = logging.getLogger(__name__)

# Characters kept in stored filenames; everything else becomes "_"
_UNSAFE_FILENAME_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


class Buckets(str, Enum):
    """Standard bucket names."""

    DOCUMENTS = "etds-documents"


@dataclass(frozen=True)
class UploadResult:
    """Result of an upload operation.

    Attributes:
        key: The object key in the bucket.
        bucket: The bucket name.
        sha256_digest: SHA-256 hex digest of the uploaded content.
        size_bytes: Size of the uploaded content in bytes.
        etag: S3 ETag.
    """

    key: str
    bucket: str
    sha256_digest: str
    size_bytes: int
    etag: str


@dataclass(frozen=True)
class ObjectMetadata:
    """Metadata for a stored object."""

    key: str
    bucket: str
    size_bytes: int
    content_type: str
    sha256_digest: str | None
    filename: str | None = None


class StorageError(Exception):
    """Base exception for storage operations.

    Attributes:
        message: Human-readable error description.
        bucket: The bucket involved in the operation.
        key: The object key involved (if applicable).
        operation: The operation that failed.
    """

    def __init__(
        self,
        message: str,
        *,
        bucket: str | None = None,
        key: str | None = None,
        operation: str | None = None,
    ) -> None:
        self.message = message
        self.bucket = bucket
        self.key = key
        self.operation = operation
        super().__init__(message)


class ObjectNotFoundError(StorageError):
    """Raised when an object does not exist."""


class BucketNotFoundError(StorageError):
    """Raised when a bucket does not exist."""


class IntegrityError(StorageError):
    """Raised when content integrity verification fails."""


def safe_filename(filename: str | None, default: str = "document") -> str:
    """Reduce a client-supplied filename to a safe single path segment."""
    if not filename:
        return default
    name = filename.replace("\\", "/").rsplit("/", 1)[-1]
    name = _UNSAFE_FILENAME_CHARS.sub("_", name).strip("._")
    return name or default


def verification_document_key(application_id: UUID, filename: str | None) -> str:
    """Object key for an application's verification document."""
    return f"applications/{application_id}/verification-document/{safe_filename(filename)}"


def agency_attachment_key(application_id: UUID, agency: Agency, filename: str | None) -> str:
    """Object key for one agency's attachment on an application."""
    return (
        f"applications/{application_id}/attachments/{agency.value}/"
        f"{safe_filename(filename, default='attachment')}"
    )


class ObjectStoreClient:
    """S3-compatible object storage client with integrity verification.

    Wraps boto3 to provide bucket creation, SHA-256 digests stored in object
    metadata on upload, and digest verification on download.
    """

    DIGEST_METADATA_KEY = "sha256-digest"
    FILENAME_METADATA_KEY = "original-filename"

    def __init__(
        self,
        endpoint_url: str | None,
        access_key: str,
        secret_key: str,
        region: str = "us-east-1",
        *,
        bucket: str = Buckets.DOCUMENTS.value,
        connect_timeout: float = 5.0,
        read_timeout: float = 30.0,
        max_retries: int = 3,
    ) -> None:
        """Initialize the object store client.

        Args:
            endpoint_url: S3-compatible endpoint URL (None for AWS defaults).
            access_key: S3 access key ID.
            secret_key: S3 secret access key.
            region: AWS region (use us-east-1 for MinIO).
            bucket: Bucket that holds workflow documents.
            connect_timeout: Connection timeout in seconds.
            read_timeout: Read timeout in seconds.
            max_retries: Maximum retry attempts for transient failures.
        """
        self._endpoint_url = endpoint_url
        self._region = region
        self.bucket = bucket

        config = Config(
            connect_timeout=connect_timeout,
            read_timeout=read_timeout,
            retries={"max_attempts": max_retries, "mode": "standard"},
            signature_version="s3v4",
        )

        self._client = boto3.client(
            "s3",
            endpoint_url=endpoint_url,
            aws_access_key_id=access_key,
            aws_secret_access_key=secret_key,
            region_name=region,
            config=config,
        )

        logger.debug(
            "Initialized ObjectStoreClient for endpoint=%s region=%s bucket=%s",
            endpoint_url,
            region,
            bucket,
        )

    @classmethod
    def from_settings(cls, settings: S3Settings) -> ObjectStoreClient:
        """Create client from S3Settings configuration."""
        return cls(
            endpoint_url=settings.endpoint,
            access_key=settings.access_key.get_secret_value(),
            secret_key=settings.secret_key.get_secret_value(),
            region=settings.region,
            bucket=settings.bucket,
        )

    @staticmethod
    def _compute_sha256(data: bytes) -> str:
        return hashlib.sha256(data).hexdigest()

    @staticmethod
    def _error_code(error: ClientError) -> str:
        return error.response.get("Error", {}).get("Code", "")

    def ensure_bucket(self, bucket: str | None = None) -> bool:
        """Ensure a bucket exists, creating it if necessary.

        Args:
            bucket: Bucket name, defaults to the configured documents bucket.

        Returns:
            True if bucket was created, False if it already existed.

        Raises:
            StorageError: If bucket creation fails.
        """
        bucket_name = bucket or self.bucket

        try:
            self._client.head_bucket(Bucket=bucket_name)
            logger.debug("Bucket %s already exists", bucket_name)
            return False
        except ClientError as e:
            if self._error_code(e) not in ("404", "NoSuchBucket"):
                raise StorageError(
                    f"Failed to check bucket existence: {e}",
                    bucket=bucket_name,
                    operation="head_bucket",
                ) from e
        except BotoCoreError as e:
            raise StorageError(
                f"Failed to reach object store: {e}",
                bucket=bucket_name,
                operation="head_bucket",
            ) from e

        try:
            # us-east-1 rejects an explicit LocationConstraint
            if self._region == "us-east-1":
                self._client.create_bucket(Bucket=bucket_name)
            else:
                self._client.create_bucket(
                    Bucket=bucket_name,
                    CreateBucketConfiguration={"LocationConstraint": self._region},
                )
        except ClientError as e:
            raise StorageError(
                f"Failed to create bucket: {e}",
                bucket=bucket_name,
                operation="create_bucket",
            ) from e

        logger.info("Created bucket: %s", bucket_name)
        return True

    def upload(
        self,
        key: str,
        data: bytes,
        *,
        content_type: str = "application/octet-stream",
        filename: str | None = None,
        bucket: str | None = None,
    ) -> UploadResult:
        """Upload content with its SHA-256 digest stored in object metadata.

        Args:
            key: Object key (see the key helpers in this module).
            data: Content bytes to upload.
            content_type: MIME type of the content.
            filename: Client-supplied filename, kept for downloads.
            bucket: Target bucket, defaults to the documents bucket.

        Returns:
            UploadResult with digest and storage details.

        Raises:
            BucketNotFoundError: If bucket does not exist.
            StorageError: If upload fails.
        """
        bucket_name = bucket or self.bucket
        sha256_digest = self._compute_sha256(data)

        metadata = {self.DIGEST_METADATA_KEY: sha256_digest}
        if filename:
            metadata[self.FILENAME_METADATA_KEY] = safe_filename(filename)

        try:
            response = self._client.put_object(
                Bucket=bucket_name,
                Key=key,
                Body=data,
                ContentType=content_type,
                Metadata=metadata,
            )
        except ClientError as e:
            if self._error_code(e) == "NoSuchBucket":
                raise BucketNotFoundError(
                    f"Bucket does not exist: {bucket_name}",
                    bucket=bucket_name,
                    key=key,
                    operation="upload",
                ) from e
            raise StorageError(
                f"Upload failed: {e}",
                bucket=bucket_name,
                key=key,
                operation="upload",
            ) from e

        logger.debug(
            "Uploaded %s/%s (%d bytes, sha256=%s)",
            bucket_name,
            key,
            len(data),
            sha256_digest[:16] + "...",
        )

        return UploadResult(
            key=key,
            bucket=bucket_name,
            sha256_digest=sha256_digest,
            size_bytes=len(data),
            etag=response.get("ETag", ""),
        )

    def download(
        self,
        key: str,
        *,
        verify_integrity: bool = True,
        bucket: str | None = None,
    ) -> tuple[bytes, ObjectMetadata]:
        """Download content, checking it against the stored SHA-256 digest.

        Args:
            key: Object key to download.
            verify_integrity: Whether to verify the SHA-256 digest.
            bucket: Source bucket, defaults to the documents bucket.

        Returns:
            Tuple of (content bytes, ObjectMetadata).

        Raises:
            ObjectNotFoundError: If object does not exist.
            IntegrityError: If digest verification fails.
            StorageError: If download fails.
        """
        bucket_name = bucket or self.bucket

        try:
            response = self._client.get_object(Bucket=bucket_name, Key=key)
            data = response["Body"].read()
        except ClientError as e:
            code = self._error_code(e)
            if code == "NoSuchKey":
                raise ObjectNotFoundError(
                    f"Object does not exist: {bucket_name}/{key}",
                    bucket=bucket_name,
                    key=key,
                    operation="download",
                ) from e
            if code == "NoSuchBucket":
                raise BucketNotFoundError(
                    f"Bucket does not exist: {bucket_name}",
                    bucket=bucket_name,
                    key=key,
                    operation="download",
                ) from e
            raise StorageError(
                f"Download failed: {e}",
                bucket=bucket_name,
                key=key,
                operation="download",
            ) from e

        stored = response.get("Metadata", {})
        stored_digest = stored.get(self.DIGEST_METADATA_KEY)

        if verify_integrity and stored_digest:
            computed_digest = self._compute_sha256(data)
            if computed_digest != stored_digest:
                raise IntegrityError(
                    f"Content integrity check failed: expected {stored_digest[:16]}..., "
                    f"got {computed_digest[:16]}...",
                    bucket=bucket_name,
                    key=key,
                    operation="download",
                )

        logger.debug("Downloaded %s/%s (%d bytes)", bucket_name, key, len(data))

        return data, ObjectMetadata(
            key=key,
            bucket=bucket_name,
            size_bytes=len(data),
            content_type=response.get("ContentType", "application/octet-stream"),
            sha256_digest=stored_digest,
            filename=stored.get(self.FILENAME_METADATA_KEY),
        )

    def health_check(self) -> dict[str, Any]:
        """Perform a health check on the object store connection.

        Raises:
            StorageError: If health check fails.
        """
        try:
            response = self._client.list_buckets()
        except (ClientError, BotoCoreError) as e:
            raise StorageError(
                f"Health check failed: {e}",
                operation="health_check",
            ) from e

        buckets = [b["Name"] for b in response.get("Buckets", [])]
        return {
            "healthy": True,
            "endpoint": self._endpoint_url,
            "bucket": self.bucket,
            "bucket_present": self.bucket in buckets,
        }
