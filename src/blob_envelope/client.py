"""
Encryption client for object storage.

This module provides:
- EncryptionClient: Encrypting upload, decrypting download and signed URLs
  for decrypted copies on top of any ObjectStorage backend

Signed URLs: encrypted objects cannot be served directly, so
get_signed_url() signs a decrypted copy kept in a separate bucket. When the
copy does not exist yet it is produced by streaming the decrypted object
straight into an upload; the upload pulls from the decrypt pipeline, which
pulls from the download, so the three move together as one transfer and a
failure on any side stops the others.
"""

from __future__ import annotations

import logging
from contextlib import aclosing
from pathlib import Path
from typing import Any, AsyncIterator, Optional, Union

from .cipher_provider import CipherProvider
from .config import ClientConfig
from .errors import ConfigError, ObjectNotFoundError
from .key_provider import KeyProvider
from .pipeline import ByteSource, write_to
from .s3_storage import S3ObjectStorage
from .storage import ObjectStorage, UploadResult

logger = logging.getLogger(__name__)


class EncryptionClient:
    """
    Client-side envelope encryption over an object store.

    Example:
        client = EncryptionClient(storage, encryption_key=master_key)
        await client.upload("my-bucket", "reports/q1.csv", open("q1.csv", "rb"))
        await client.get_object("my-bucket", "reports/q1.csv", out_file)
    """

    def __init__(
        self,
        storage: Optional[ObjectStorage] = None,
        encryption_key: Optional[bytes] = None,
        materials_description: str = "{}",
        config: Optional[ClientConfig] = None,
    ) -> None:
        """
        Args:
            storage: Storage backend; an S3ObjectStorage is built from the
                config when omitted
            encryption_key: Master key (16, 24 or 32 bytes), unless given in
                ``config``
            materials_description: JSON description stored in envelopes
            config: Full configuration; takes precedence over the key and
                description arguments

        Raises:
            ConfigError: If no encryption key is given or the config is invalid
        """
        if config is None:
            if encryption_key is None:
                raise ConfigError("you must pass an encryption key")
            config = ClientConfig(
                encryption_key=encryption_key,
                materials_description=materials_description,
            )

        self._config = config
        self._key_provider = KeyProvider(config.encryption_key, config.materials_description)
        self._cipher_provider = CipherProvider(
            self._key_provider,
            block_mode=config.block_mode,
            compression_level=config.compression_level,
            chunk_size=config.chunk_size,
        )
        self._storage = storage if storage is not None else self._create_storage(config)

    @classmethod
    def from_env(
        cls,
        storage: Optional[ObjectStorage] = None,
        env_file: Optional[Union[str, Path]] = None,
    ) -> EncryptionClient:
        """Create a client configured from the environment / ``.env``."""
        return cls(storage=storage, config=ClientConfig.from_env(env_file))

    @staticmethod
    def _create_storage(config: ClientConfig) -> ObjectStorage:
        return S3ObjectStorage(
            region_name=config.region_name,
            endpoint_url=config.endpoint_url,
            part_size=config.part_size,
            chunk_size=config.chunk_size,
        )

    @property
    def storage(self) -> ObjectStorage:
        return self._storage

    @property
    def key_provider(self) -> KeyProvider:
        return self._key_provider

    @property
    def cipher_provider(self) -> CipherProvider:
        return self._cipher_provider

    @property
    def config(self) -> ClientConfig:
        return self._config

    # ------------------------------------------------------------------
    # Upload / download
    # ------------------------------------------------------------------

    async def upload(self, bucket: str, key: str, source: ByteSource, **params: Any) -> UploadResult:
        """
        Compress, encrypt and upload ``source``.

        The envelope is stored as the object's metadata.

        Args:
            bucket: Bucket name
            key: Object key
            source: bytes, binary file object, iterable or async iterable
            **params: Extra storage parameters (e.g. ContentType)

        Returns:
            UploadResult of the storage backend
        """
        encryption = self._cipher_provider.encryption_cipher()
        pipeline = encryption.cipher_stream

        async with aclosing(pipeline.transform(source, self._config.chunk_size)) as body:
            result = await self._storage.upload(
                bucket,
                key,
                body,
                metadata=encryption.envelope.to_metadata(),
                **params,
            )

        logger.info(
            "Encrypted upload of %s/%s complete (%d bytes in, %d bytes stored)",
            bucket,
            key,
            pipeline.bytes_in,
            pipeline.bytes_out,
        )
        return result

    async def iter_object(self, bucket: str, key: str) -> AsyncIterator[bytes]:
        """
        Download an object and yield its decrypted, decompressed content.

        Raises:
            ObjectNotFoundError: If the object does not exist
            EnvelopeMalformedError: If the object metadata has no valid envelope
            EnvelopeDecryptionFailedError: If the envelope does not match the key
            PipelineTransformError: If the stored data is corrupt or truncated
        """
        download = await self._storage.download(bucket, key)
        try:
            decryption = self._cipher_provider.decryption_cipher(download.metadata)
            pipeline = decryption.decipher_stream
            async with aclosing(pipeline.transform(download.body, self._config.chunk_size)) as chunks:
                async for chunk in chunks:
                    yield chunk
        finally:
            await download.aclose()

    async def get_object(self, bucket: str, key: str, sink: Any) -> int:
        """
        Download and decrypt an object into ``sink``.

        Args:
            bucket: Bucket name
            key: Object key
            sink: Object with a sync or async ``write`` method, or a callable

        Returns:
            Number of plaintext bytes written
        """
        written = 0
        async with aclosing(self.iter_object(bucket, key)) as chunks:
            async for chunk in chunks:
                await write_to(sink, chunk)
                written += len(chunk)
        logger.debug("Decrypted %s/%s (%d bytes)", bucket, key, written)
        return written

    # ------------------------------------------------------------------
    # Signed URLs
    # ------------------------------------------------------------------

    async def get_signed_url(
        self,
        key: str,
        encrypted_bucket: str,
        decrypted_bucket: str,
        expires_in: int = 3600,
        **params: Any,
    ) -> str:
        """
        Generate a signed URL for the decrypted copy of an encrypted object.

        The decrypted copy is created first if it does not exist.

        Args:
            key: Object key, shared by the encrypted and decrypted copies
            encrypted_bucket: Bucket holding the encrypted object
            decrypted_bucket: Bucket holding decrypted copies
            expires_in: URL lifetime in seconds
            **params: Extra signing parameters

        Raises:
            ValueError: If the key or a bucket is missing
            StorageError: If the storage backend fails
        """
        if not key:
            raise ValueError("key is required")
        if not encrypted_bucket or not decrypted_bucket:
            raise ValueError("encrypted_bucket and decrypted_bucket are required")

        try:
            await self._storage.head(decrypted_bucket, key)
        except ObjectNotFoundError:
            return await self.get_decrypted_signed_url(
                key, encrypted_bucket, decrypted_bucket, expires_in, **params
            )

        logger.info("Signing existing decrypted copy %s/%s", decrypted_bucket, key)
        return await self._storage.sign_url(decrypted_bucket, key, expires_in, **params)

    async def get_decrypted_signed_url(
        self,
        key: str,
        encrypted_bucket: str,
        decrypted_bucket: str,
        expires_in: int = 3600,
        **params: Any,
    ) -> str:
        """
        Decrypt ``encrypted_bucket/key`` into ``decrypted_bucket/key`` and sign it.

        The decrypted stream is the upload body, so download, decryption and
        upload run as a single transfer.
        """
        logger.info("Creating decrypted copy %s/%s from %s", decrypted_bucket, key, encrypted_bucket)
        async with aclosing(self.iter_object(encrypted_bucket, key)) as plaintext:
            await self._storage.upload(decrypted_bucket, key, plaintext, ACL="private")

        return await self._storage.sign_url(decrypted_bucket, key, expires_in, **params)

    def __repr__(self) -> str:
        return f"EncryptionClient(storage={type(self._storage).__name__}, {self._cipher_provider!r})"
