"""
S3 storage backend.

This module provides:
- S3ObjectStorage: ObjectStorage implementation over a boto3 S3 client

Uploads stream: bodies smaller than one part go out as a single put_object,
larger ones as a multipart upload holding at most one part in memory. A body
that fails or is cancelled mid-way aborts the multipart upload, so no partial
object is left behind.

boto3 is synchronous; every call runs in a worker thread via
asyncio.to_thread so the event loop keeps serving other transfers.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, AsyncIterator, Dict, List, Optional

import boto3
from botocore.config import Config
from botocore.exceptions import ClientError

from .errors import ConfigError, ObjectNotFoundError, StorageError
from .pipeline import DEFAULT_CHUNK_SIZE, ByteSource, aiter_chunks
from .storage import DownloadResult, ObjectHead, ObjectStorage, UploadResult

logger = logging.getLogger(__name__)

MIN_PART_SIZE: int = 5 * 1024 * 1024  # S3 minimum for all but the last part
DEFAULT_PART_SIZE: int = 8 * 1024 * 1024

_NOT_FOUND_CODES = ("404", "NoSuchKey", "NotFound")


class S3ObjectStorage(ObjectStorage):
    """S3 (or S3-compatible) object storage."""

    def __init__(
        self,
        client: Any = None,
        *,
        region_name: Optional[str] = None,
        endpoint_url: Optional[str] = None,
        part_size: int = DEFAULT_PART_SIZE,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> None:
        """
        Args:
            client: Existing boto3 S3 client; created from the other
                arguments when omitted
            region_name: AWS region
            endpoint_url: Custom endpoint for MinIO / LocalStack
            part_size: Multipart part size in bytes (at least 5 MiB)
            chunk_size: Read size when streaming downloads
        """
        if part_size < MIN_PART_SIZE:
            raise ConfigError(f"part_size must be at least {MIN_PART_SIZE} bytes, got {part_size}")
        self._client = client if client is not None else self.create_client(region_name, endpoint_url)
        self._part_size = part_size
        self._chunk_size = chunk_size

    @staticmethod
    def create_client(region_name: Optional[str] = None, endpoint_url: Optional[str] = None) -> Any:
        """Create a boto3 S3 client using SigV4 signing."""
        kwargs: Dict[str, Any] = {"config": Config(signature_version="s3v4")}
        if region_name:
            kwargs["region_name"] = region_name
        if endpoint_url:
            kwargs["endpoint_url"] = endpoint_url
        return boto3.client("s3", **kwargs)

    @property
    def client(self) -> Any:
        return self._client

    # ------------------------------------------------------------------
    # Upload
    # ------------------------------------------------------------------

    async def upload(
        self,
        bucket: str,
        key: str,
        body: ByteSource,
        metadata: Optional[Dict[str, str]] = None,
        **params: Any,
    ) -> UploadResult:
        """
        Stream ``body`` to S3.

        Args:
            bucket: Bucket name
            key: Object key
            body: Any byte source accepted by aiter_chunks()
            metadata: User metadata (stored as x-amz-meta-*)
            **params: Extra put_object / create_multipart_upload arguments,
                e.g. ACL or ContentType

        Returns:
            UploadResult with the number of bytes stored

        Raises:
            StorageError: If S3 rejects a request
        """
        metadata = dict(metadata or {})
        extra = {"Metadata": metadata, **params}
        buffer = bytearray()
        parts: List[Dict[str, Any]] = []
        upload_id: Optional[str] = None
        size = 0

        try:
            async for chunk in aiter_chunks(body, self._chunk_size):
                buffer.extend(chunk)
                size += len(chunk)
                while len(buffer) >= self._part_size:
                    if upload_id is None:
                        upload_id = await self._create_multipart_upload(bucket, key, extra)
                    part = bytes(buffer[: self._part_size])
                    del buffer[: self._part_size]
                    parts.append(await self._upload_part(bucket, key, upload_id, len(parts) + 1, part))

            if upload_id is None:
                response = await asyncio.to_thread(
                    self._client.put_object, Bucket=bucket, Key=key, Body=bytes(buffer), **extra
                )
            else:
                if buffer:
                    parts.append(
                        await self._upload_part(bucket, key, upload_id, len(parts) + 1, bytes(buffer))
                    )
                response = await asyncio.to_thread(
                    self._client.complete_multipart_upload,
                    Bucket=bucket,
                    Key=key,
                    UploadId=upload_id,
                    MultipartUpload={"Parts": parts},
                )
        except (Exception, asyncio.CancelledError) as e:
            if upload_id is not None:
                await self._abort_multipart_upload(bucket, key, upload_id)
            if isinstance(e, ClientError):
                raise StorageError(f"Failed to upload {bucket}/{key}: {e}") from e
            raise

        logger.info("Uploaded %s/%s (%d bytes, %d parts)", bucket, key, size, len(parts) or 1)
        return UploadResult(
            bucket=bucket,
            key=key,
            metadata=metadata,
            size=size,
            etag=response.get("ETag"),
        )

    async def _create_multipart_upload(self, bucket: str, key: str, extra: Dict[str, Any]) -> str:
        response = await asyncio.to_thread(
            self._client.create_multipart_upload, Bucket=bucket, Key=key, **extra
        )
        return response["UploadId"]

    async def _upload_part(
        self, bucket: str, key: str, upload_id: str, part_number: int, data: bytes
    ) -> Dict[str, Any]:
        response = await asyncio.to_thread(
            self._client.upload_part,
            Bucket=bucket,
            Key=key,
            UploadId=upload_id,
            PartNumber=part_number,
            Body=data,
        )
        return {"ETag": response["ETag"], "PartNumber": part_number}

    async def _abort_multipart_upload(self, bucket: str, key: str, upload_id: str) -> None:
        logger.warning("Aborting multipart upload of %s/%s", bucket, key)
        try:
            await asyncio.to_thread(
                self._client.abort_multipart_upload, Bucket=bucket, Key=key, UploadId=upload_id
            )
        except ClientError as e:
            # the original failure is what the caller needs to see
            logger.error("Failed to abort multipart upload of %s/%s: %s", bucket, key, e)

    # ------------------------------------------------------------------
    # Download / head / sign
    # ------------------------------------------------------------------

    async def download(self, bucket: str, key: str) -> DownloadResult:
        """
        Open an object for streaming.

        Raises:
            ObjectNotFoundError: If the object does not exist
            StorageError: For any other S3 error
        """
        try:
            response = await asyncio.to_thread(self._client.get_object, Bucket=bucket, Key=key)
        except ClientError as e:
            raise self._translate_error(e, bucket, key) from e
        return DownloadResult(
            metadata=dict(response.get("Metadata") or {}),
            body=self._iter_body(response["Body"]),
        )

    async def _iter_body(self, body: Any) -> AsyncIterator[bytes]:
        try:
            while True:
                chunk = await asyncio.to_thread(body.read, self._chunk_size)
                if not chunk:
                    return
                yield chunk
        finally:
            body.close()

    async def head(self, bucket: str, key: str) -> ObjectHead:
        """
        Get object metadata.

        Raises:
            ObjectNotFoundError: If the object does not exist
            StorageError: For any other S3 error
        """
        try:
            response = await asyncio.to_thread(self._client.head_object, Bucket=bucket, Key=key)
        except ClientError as e:
            raise self._translate_error(e, bucket, key) from e
        return ObjectHead(
            bucket=bucket,
            key=key,
            metadata=dict(response.get("Metadata") or {}),
            content_length=response.get("ContentLength"),
            last_modified=response.get("LastModified"),
        )

    async def sign_url(self, bucket: str, key: str, expires_in: int = 3600, **params: Any) -> str:
        """Generate a pre-signed GET URL."""
        try:
            return await asyncio.to_thread(
                self._client.generate_presigned_url,
                "get_object",
                Params={"Bucket": bucket, "Key": key, **params},
                ExpiresIn=expires_in,
            )
        except ClientError as e:
            raise StorageError(f"Failed to sign URL for {bucket}/{key}: {e}") from e

    @staticmethod
    def _translate_error(error: ClientError, bucket: str, key: str) -> StorageError:
        code = str(error.response.get("Error", {}).get("Code", ""))
        status = error.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
        if code in _NOT_FOUND_CODES or status == 404:
            return ObjectNotFoundError(f"{bucket}/{key}")
        return StorageError(f"S3 request for {bucket}/{key} failed: {error}")
