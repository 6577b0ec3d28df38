"""
Exception classes for client-side envelope encryption.

Configuration errors are raised synchronously while objects are built.
Envelope, crypto and pipeline errors are raised while an object is being
decrypted or streamed, and are terminal for that operation.

No exception message produced by this package carries key material or IVs.
"""

from __future__ import annotations


class EnvelopeError(Exception):
    """Base exception for all envelope encryption operations."""

    pass


class ConfigError(EnvelopeError):
    """Configuration error."""

    pass


class InvalidKeyLengthError(ConfigError):
    """Master key is not 16, 24 or 32 bytes long."""

    pass


class InvalidDescriptionError(ConfigError):
    """Materials description is not a well-formed JSON document."""

    pass


class EnvelopeMalformedError(EnvelopeError):
    """Envelope field missing or undecodable."""

    pass


class CryptoError(EnvelopeError):
    """Cryptographic operation failed (encryption, decryption, key generation)."""

    pass


class EnvelopeDecryptionFailedError(CryptoError):
    """Unwrapped data key is implausible (wrong master key or tampered envelope)."""

    pass


class PipelineTransformError(EnvelopeError):
    """Compression or cipher stage failed while streaming."""

    pass


class StorageError(EnvelopeError):
    """Object storage backend error."""

    pass


class ObjectNotFoundError(StorageError):
    """Object not found in storage."""

    pass
