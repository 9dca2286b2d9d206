"""Object storage access for graph snapshots.

Wraps a boto3 S3 client behind async methods. Absence of an object is
reported as ``SnapshotNotFoundError`` and kept distinct from every other
failure, which is wrapped in ``ObjectStorageError`` with request context.
"""

import asyncio
import logging
import shutil
from pathlib import Path
from typing import Any

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from chronomem.core.config import S3Settings
from chronomem.core.exceptions import (
    ObjectStorageError,
    SnapshotConflictError,
    SnapshotNotFoundError,
)

logger = logging.getLogger(__name__)

_NOT_FOUND_CODES = {"404", "NoSuchKey", "NotFound"}
_CONFLICT_CODES = {"412", "PreconditionFailed", "409", "ConditionalRequestConflict"}


def create_s3_client(settings: S3Settings) -> Any:
    """Create a boto3 S3 client from resolved settings."""
    return boto3.client(
        "s3",
        region_name=settings.region,
        endpoint_url=settings.endpoint,
        aws_access_key_id=settings.access_key_id,
        aws_secret_access_key=settings.secret_access_key,
        aws_session_token=settings.session_token,
        use_ssl=settings.use_ssl,
        config=Config(s3={"addressing_style": settings.url_style}),
    )


def _error_details(error: ClientError) -> tuple[str, int | None, str | None]:
    response = error.response or {}
    code = str(response.get("Error", {}).get("Code", ""))
    metadata = response.get("ResponseMetadata", {})
    return code, metadata.get("HTTPStatusCode"), metadata.get("RequestId")


class ObjectStore:
    """Async facade over one S3 bucket.

    Attributes:
        bucket: Bucket name.
        client: boto3 S3 client (created from settings if not supplied).
    """

    def __init__(self, settings: S3Settings, client: Any | None = None):
        self.bucket = settings.bucket
        self.client = client if client is not None else create_s3_client(settings)

    def uri(self, key: str) -> str:
        return f"s3://{self.bucket}/{key}"

    def _translate(self, error: Exception, action: str, key: str) -> Exception:
        if isinstance(error, ClientError):
            code, status, request_id = _error_details(error)
            if code in _NOT_FOUND_CODES or status == 404:
                return SnapshotNotFoundError(key)
            if code in _CONFLICT_CODES or status == 412:
                return SnapshotConflictError(key)
            return ObjectStorageError(
                f"S3 {action} failed: {error} (bucket={self.bucket}, key={key}, "
                f"statusCode={status or 'unknown'}, requestId={request_id or 'unknown'})"
            )
        return ObjectStorageError(
            f"S3 {action} failed: {error} (bucket={self.bucket}, key={key})"
        )

    async def head(self, key: str) -> str | None:
        """Probe an object.

        Returns:
            The object's ETag.

        Raises:
            SnapshotNotFoundError: If the object does not exist.
            ObjectStorageError: For any other failure.
        """
        logger.debug(f"HEAD {self.uri(key)}")
        try:
            response = await asyncio.to_thread(
                self.client.head_object, Bucket=self.bucket, Key=key
            )
        except (ClientError, BotoCoreError) as e:
            raise self._translate(e, "HeadObject", key) from e
        return response.get("ETag")

    async def download_to(self, key: str, path: Path) -> str | None:
        """Download an object into a local file.

        Returns:
            The downloaded object's ETag.
        """

        def _download() -> str | None:
            response = self.client.get_object(Bucket=self.bucket, Key=key)
            body = response.get("Body")
            if body is None:
                raise ObjectStorageError(f"S3 GetObject returned no body for {self.uri(key)}")
            with open(path, "wb") as out:
                shutil.copyfileobj(body, out)
            return response.get("ETag")

        try:
            etag = await asyncio.to_thread(_download)
        except (ClientError, BotoCoreError) as e:
            path.unlink(missing_ok=True)
            raise self._translate(e, "GetObject", key) from e
        except OSError as e:
            path.unlink(missing_ok=True)
            raise ObjectStorageError(f"Failed to write {self.uri(key)} to {path}: {e}") from e
        logger.debug(f"Downloaded {self.uri(key)} to {path}")
        return etag

    async def upload_from(
        self,
        path: Path,
        key: str,
        content_type: str = "application/octet-stream",
        if_match: str | None = None,
        if_none_match: str | None = None,
    ) -> str | None:
        """Upload a local file, optionally as a conditional write.

        Args:
            path: Local file to upload.
            key: Destination key.
            content_type: MIME type stored with the object.
            if_match: Only overwrite if the current ETag matches.
            if_none_match: ``"*"`` to only create when absent.

        Returns:
            The new object's ETag.

        Raises:
            SnapshotConflictError: If a conditional write lost a race.
            ObjectStorageError: For any other failure.
        """
        params: dict[str, Any] = {
            "Bucket": self.bucket,
            "Key": key,
            "Body": path.read_bytes(),
            "ContentType": content_type,
        }
        if if_match is not None:
            params["IfMatch"] = if_match
        if if_none_match is not None:
            params["IfNoneMatch"] = if_none_match

        try:
            response = await asyncio.to_thread(self.client.put_object, **params)
        except (ClientError, BotoCoreError) as e:
            raise self._translate(e, "PutObject", key) from e
        logger.debug(f"Uploaded {path} to {self.uri(key)}")
        return response.get("ETag")

    async def delete(self, key: str) -> None:
        """Delete an object; deleting a missing object is not an error."""
        try:
            await asyncio.to_thread(self.client.delete_object, Bucket=self.bucket, Key=key)
        except (ClientError, BotoCoreError) as e:
            raise self._translate(e, "DeleteObject", key) from e
        logger.info(f"Deleted {self.uri(key)}")
