"""
Envelope encryption protocol engine.

This module provides:
- CipherProvider: Builds per-object encryption and decryption pipelines
- EncryptionCipher: Envelope plus the encrypt pipeline for one new object
- DecryptionCipher: The decrypt pipeline for one stored object

Flow for a new object:
1. Generate a one-time 32-byte data key and a 16-byte IV
2. Build the pipeline gzip -> AES-256-CBC(data key, IV)
3. Wrap the data key with the master key (AES-ECB, PKCS7, no IV)
4. Return the envelope (wrapped key, IV, materials description) with the
   pipeline; the caller stores the envelope as object metadata

Decryption reverses it: unwrap the data key from the envelope, then build
AES-256-CBC(data key, IV) -> gunzip.

The scheme gives confidentiality only. Nothing authenticates the envelope or
the ciphertext; a wrong master key is detected through padding and gzip
format checks, never through a tag.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Mapping, Union

from .crypto import (
    BLOCK_MODE_CBC,
    DATA_KEY_SIZE,
    IV_SIZE,
    SecureKey,
    decrypt,
    encode_base64,
    encrypt,
    generate_random_bytes,
)
from .envelope import Envelope
from .errors import (
    ConfigError,
    CryptoError,
    EnvelopeDecryptionFailedError,
    EnvelopeError,
    PipelineTransformError,
)
from .key_provider import KeyProvider
from .pipeline import (
    DEFAULT_CHUNK_SIZE,
    DEFAULT_COMPRESSION_LEVEL,
    CompressStage,
    DecompressStage,
    DecryptStage,
    EncryptStage,
    TransformPipeline,
    TransformStage,
)

logger = logging.getLogger(__name__)


@dataclass
class EncryptionCipher:
    """Result of encryption_cipher()."""

    envelope: Envelope
    cipher_stream: TransformPipeline


@dataclass
class DecryptionCipher:
    """Result of decryption_cipher()."""

    envelope: Envelope
    decipher_stream: TransformPipeline


def decryption_error(stage: TransformStage, exc: Exception, bytes_out: int) -> EnvelopeError:
    """
    Classify a decrypt pipeline failure.

    With a wrong data key the very first block decrypts to noise, so the gzip
    header check (or the final padding check for tiny objects) fails before
    any plaintext is produced. Failures after plaintext has been emitted point
    at corrupt or truncated ciphertext instead.

    The split is by position only. The right key with a damaged first block
    (or a damaged object too small to emit anything) is also reported as
    EnvelopeDecryptionFailedError, so that error means "wrong key or damaged
    start of object", never proof of a wrong key.
    """
    if bytes_out == 0:
        return EnvelopeDecryptionFailedError(
            f"envelope decryption failed: {stage.name} stage rejected the data ({exc})"
        )
    return PipelineTransformError(f"{stage.name} stage failed after {bytes_out} bytes: {exc}")


class CipherProvider:
    """
    Envelope protocol engine bound to one KeyProvider.

    Holds no per-object state; every call generates fresh key material, so a
    single instance can build any number of concurrent pipelines.
    """

    def __init__(
        self,
        key_provider: KeyProvider,
        block_mode: str = BLOCK_MODE_CBC,
        compression_level: int = DEFAULT_COMPRESSION_LEVEL,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> None:
        """
        Args:
            key_provider: Source of the master key and materials description
            block_mode: Bulk cipher mode, only "CBC" is recognised
            compression_level: zlib level for the gzip stage (-1 to 9)
            chunk_size: Upper bound of decompressed output chunks

        Raises:
            ConfigError: If the block mode or a size setting is invalid
        """
        if str(block_mode).upper() != BLOCK_MODE_CBC:
            raise ConfigError(f"Unsupported block mode: {block_mode}")
        if not -1 <= compression_level <= 9:
            raise ConfigError(f"compression level must be between -1 and 9, got {compression_level}")
        if chunk_size <= 0:
            raise ConfigError("chunk_size must be positive")

        self._key_provider = key_provider
        self._block_mode = BLOCK_MODE_CBC
        self._compression_level = compression_level
        self._chunk_size = chunk_size

    @property
    def key_provider(self) -> KeyProvider:
        return self._key_provider

    @property
    def block_mode(self) -> str:
        return self._block_mode

    @property
    def chunk_size(self) -> int:
        return self._chunk_size

    def encryption_cipher(self) -> EncryptionCipher:
        """
        Create the envelope and encrypt pipeline for one new object.

        The data key is wiped from its buffer before this returns; only the
        pipeline's cipher context and the wrapped form survive.

        Returns:
            EncryptionCipher with the envelope and the encrypt pipeline
        """
        materials = self._key_provider.encryption_materials

        with SecureKey.generate(DATA_KEY_SIZE) as data_key:
            iv = generate_random_bytes(IV_SIZE)
            cipher_stream = self.create_cipher_stream(data_key, iv)
            envelope = Envelope(
                wrapped_key=encode_base64(self.wrap_key(data_key)),
                iv=encode_base64(iv),
                materials_description=materials.description,
            )

        logger.debug("Built encryption cipher (matdesc=%s)", materials.description)
        return EncryptionCipher(envelope=envelope, cipher_stream=cipher_stream)

    def decryption_cipher(self, envelope: Union[Envelope, Mapping[str, str]]) -> DecryptionCipher:
        """
        Build the decrypt pipeline for a stored object.

        Args:
            envelope: Envelope, or the object metadata mapping carrying it

        Returns:
            DecryptionCipher with the decrypt pipeline

        Raises:
            EnvelopeMalformedError: If a field is missing or undecodable
            EnvelopeDecryptionFailedError: If the data key cannot be unwrapped
        """
        if not isinstance(envelope, Envelope):
            envelope = Envelope.from_metadata(envelope)

        wrapped = envelope.wrapped_key_bytes()
        iv = envelope.iv_bytes()

        with self.unwrap_key(wrapped, envelope.materials_description) as data_key:
            decipher_stream = self.create_decipher_stream(data_key, iv)

        logger.debug("Built decryption cipher (matdesc=%s)", envelope.materials_description)
        return DecryptionCipher(envelope=envelope, decipher_stream=decipher_stream)

    def create_cipher_stream(self, key: bytes | SecureKey, iv: bytes) -> TransformPipeline:
        """Compression feeding the block cipher. The order is part of the format."""
        return TransformPipeline(
            CompressStage(self._compression_level),
            EncryptStage(key, iv, self._block_mode),
            name="encrypt-pipeline",
        )

    def create_decipher_stream(self, key: bytes | SecureKey, iv: bytes) -> TransformPipeline:
        """Block cipher feeding decompression."""
        return TransformPipeline(
            DecryptStage(key, iv, self._block_mode),
            DecompressStage(self._chunk_size),
            name="decrypt-pipeline",
            error_handler=decryption_error,
        )

    def wrap_key(self, data_key: bytes | SecureKey) -> bytes:
        """Encrypt a data key with the master key (AES-ECB, PKCS7)."""
        return encrypt(self._key_provider.encryption_materials.key, data_key)

    def unwrap_key(self, wrapped: bytes, description: str = "{}") -> SecureKey:
        """
        Recover a data key wrapped by wrap_key().

        Args:
            wrapped: Wrapped key bytes
            description: Materials description from the envelope, used to
                select the master key

        Returns:
            The data key; callers should wipe it once the cipher is built

        Raises:
            EnvelopeDecryptionFailedError: If unwrapping yields an implausible key
        """
        master_key = self._key_provider.key_for(description)
        try:
            key_bytes = decrypt(master_key, wrapped)
        except CryptoError:
            raise EnvelopeDecryptionFailedError("envelope decryption failed: cannot unwrap data key")

        if len(key_bytes) != DATA_KEY_SIZE:
            raise EnvelopeDecryptionFailedError(
                "envelope decryption failed: unwrapped data key has an unexpected length"
            )
        return SecureKey(key_bytes)

    def __repr__(self) -> str:
        return f"CipherProvider({self._key_provider!r}, block_mode={self._block_mode!r})"
