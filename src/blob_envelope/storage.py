"""
Object storage abstractions.

This module provides:
- ObjectStorage: Abstract async interface to a remote blob store
- InMemoryObjectStorage: In-memory implementation for testing and local use
- Supporting data structures: ObjectHead, UploadResult, DownloadResult

The envelope core never calls storage itself; it produces and consumes the
byte streams and metadata mappings passed through this interface.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Dict, Optional, Tuple
from urllib.parse import quote, urlencode

from .errors import ObjectNotFoundError
from .pipeline import DEFAULT_CHUNK_SIZE, ByteSource, aiter_chunks

logger = logging.getLogger(__name__)


@dataclass
class ObjectHead:
    """Metadata of a stored object."""

    bucket: str
    key: str
    metadata: Dict[str, str]
    content_length: Optional[int] = None
    last_modified: Optional[datetime] = None


@dataclass
class UploadResult:
    """Result of a completed upload."""

    bucket: str
    key: str
    metadata: Dict[str, str]
    size: int
    etag: Optional[str] = None


@dataclass
class DownloadResult:
    """Object metadata plus an async iterator over the stored bytes."""

    metadata: Dict[str, str]
    body: AsyncIterator[bytes]

    async def aclose(self) -> None:
        """Release the underlying body stream."""
        aclose = getattr(self.body, "aclose", None)
        if aclose is not None:
            await aclose()


class ObjectStorage(ABC):
    """
    Abstract storage interface for encrypted and decrypted objects.

    All methods are async to support both in-memory and network backends.
    """

    @abstractmethod
    async def upload(
        self,
        bucket: str,
        key: str,
        body: ByteSource,
        metadata: Optional[Dict[str, str]] = None,
        **params: Any,
    ) -> UploadResult:
        """Store ``body`` under ``bucket/key``; nothing is stored if the body fails."""
        ...

    @abstractmethod
    async def download(self, bucket: str, key: str) -> DownloadResult:
        """Open an object for streaming."""
        ...

    @abstractmethod
    async def head(self, bucket: str, key: str) -> ObjectHead:
        """Get object metadata, raising ObjectNotFoundError if absent."""
        ...

    @abstractmethod
    async def sign_url(self, bucket: str, key: str, expires_in: int = 3600, **params: Any) -> str:
        """Create a time-limited GET URL for an object."""
        ...

    async def exists(self, bucket: str, key: str) -> bool:
        """Check whether an object exists."""
        try:
            await self.head(bucket, key)
        except ObjectNotFoundError:
            return False
        return True


@dataclass
class StoredObject:
    """Object held by InMemoryObjectStorage."""

    data: bytes
    metadata: Dict[str, str]
    params: Dict[str, Any] = field(default_factory=dict)
    last_modified: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class InMemoryObjectStorage(ObjectStorage):
    """
    In-memory storage implementation for testing.

    Uses asyncio.Lock for safe concurrent access. Upload bodies are consumed
    outside the lock and committed atomically, so a failed upload leaves no
    object behind.
    """

    def __init__(self, chunk_size: int = DEFAULT_CHUNK_SIZE) -> None:
        self._objects: Dict[Tuple[str, str], StoredObject] = {}
        self._lock = asyncio.Lock()
        self._chunk_size = chunk_size

    async def upload(
        self,
        bucket: str,
        key: str,
        body: ByteSource,
        metadata: Optional[Dict[str, str]] = None,
        **params: Any,
    ) -> UploadResult:
        """Store an object."""
        buffer = bytearray()
        async for chunk in aiter_chunks(body, self._chunk_size):
            buffer.extend(chunk)

        stored = StoredObject(data=bytes(buffer), metadata=dict(metadata or {}), params=params)
        async with self._lock:
            self._objects[(bucket, key)] = stored
        logger.debug("Stored %s/%s (%d bytes)", bucket, key, len(buffer))
        return UploadResult(bucket=bucket, key=key, metadata=stored.metadata, size=len(stored.data))

    async def download(self, bucket: str, key: str) -> DownloadResult:
        """Open an object for streaming."""
        stored = await self._get(bucket, key)
        return DownloadResult(
            metadata=dict(stored.metadata),
            body=aiter_chunks(stored.data, self._chunk_size),
        )

    async def head(self, bucket: str, key: str) -> ObjectHead:
        """Get object metadata."""
        stored = await self._get(bucket, key)
        return ObjectHead(
            bucket=bucket,
            key=key,
            metadata=dict(stored.metadata),
            content_length=len(stored.data),
            last_modified=stored.last_modified,
        )

    async def sign_url(self, bucket: str, key: str, expires_in: int = 3600, **params: Any) -> str:
        """Return a ``memory://`` URL carrying the signing parameters."""
        query = urlencode({"expires_in": expires_in, **params})
        return f"memory://{quote(bucket)}/{quote(key)}?{query}"

    async def get_stored(self, bucket: str, key: str) -> StoredObject:
        """Get the raw stored object (ciphertext for encrypted uploads)."""
        return await self._get(bucket, key)

    async def delete(self, bucket: str, key: str) -> None:
        """Delete an object."""
        async with self._lock:
            self._objects.pop((bucket, key), None)

    async def list_keys(self, bucket: str) -> list:
        """List object keys in a bucket."""
        async with self._lock:
            return sorted(k for b, k in self._objects if b == bucket)

    async def _get(self, bucket: str, key: str) -> StoredObject:
        async with self._lock:
            stored = self._objects.get((bucket, key))
        if stored is None:
            raise ObjectNotFoundError(f"{bucket}/{key}")
        return stored
