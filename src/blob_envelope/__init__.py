"""
Blob Envelope

Client-side envelope encryption for objects in S3-compatible blob stores.
Objects are gzip-compressed and AES-256-CBC encrypted while they stream to
storage, and decrypted and decompressed while they stream back.

Overview
--------
- **Data Keys** are one-time 32-byte keys, one per object, that encrypt the data
- **Master Key** (16, 24 or 32 bytes) only wraps Data Keys, never bulk data
- **Envelope** is the object metadata carrying the wrapped Data Key, the IV
  and the materials description

Quick Start
-----------
```python
import asyncio
from blob_envelope import EncryptionClient, InMemoryObjectStorage

async def main():
    client = EncryptionClient(InMemoryObjectStorage(), encryption_key=b"\\x00" * 32)

    await client.upload("bucket", "hello.txt", b"hello world")

    chunks = [chunk async for chunk in client.iter_object("bucket", "hello.txt")]
    assert b"".join(chunks) == b"hello world"

asyncio.run(main())
```

Modules
-------
- `crypto`: AES ECB/CBC helpers, base64, SecureKey
- `materials`, `key_provider`: Master key validation and provision
- `pipeline`: Streaming compression and cipher stages
- `envelope`: Envelope metadata format
- `cipher_provider`: Envelope protocol engine
- `storage`, `s3_storage`: Object storage interface and backends
- `client`: EncryptionClient
- `config`: ClientConfig
- `errors`: Error types and exception classes
"""

__version__ = "0.1.0"

# ============================================================================
# Crypto Exports
# ============================================================================

from .crypto import (
    DATA_KEY_SIZE,
    IV_SIZE,
    VALID_KEY_SIZES,
    SecureKey,
    decode_base64,
    encode_base64,
    generate_random_bytes,
)

# ============================================================================
# Error Exports
# ============================================================================

from .errors import (
    ConfigError,
    CryptoError,
    EnvelopeDecryptionFailedError,
    EnvelopeError,
    EnvelopeMalformedError,
    InvalidDescriptionError,
    InvalidKeyLengthError,
    ObjectNotFoundError,
    PipelineTransformError,
    StorageError,
)

# ============================================================================
# Core Exports
# ============================================================================

from .materials import Materials
from .key_provider import KeyProvider
from .envelope import Envelope
from .pipeline import (
    CompressStage,
    DecompressStage,
    DecryptStage,
    EncryptStage,
    TransformPipeline,
    TransformStage,
    aiter_chunks,
)
from .cipher_provider import CipherProvider, DecryptionCipher, EncryptionCipher

# ============================================================================
# Storage and Client Exports
# ============================================================================

from .storage import (
    DownloadResult,
    InMemoryObjectStorage,
    ObjectHead,
    ObjectStorage,
    UploadResult,
)
from .s3_storage import S3ObjectStorage
from .config import ClientConfig
from .client import EncryptionClient

# ============================================================================
# Public API
# ============================================================================

__all__ = [
    # Version
    "__version__",
    # Crypto
    "DATA_KEY_SIZE",
    "IV_SIZE",
    "VALID_KEY_SIZES",
    "SecureKey",
    "decode_base64",
    "encode_base64",
    "generate_random_bytes",
    # Errors
    "EnvelopeError",
    "ConfigError",
    "InvalidKeyLengthError",
    "InvalidDescriptionError",
    "EnvelopeMalformedError",
    "CryptoError",
    "EnvelopeDecryptionFailedError",
    "PipelineTransformError",
    "StorageError",
    "ObjectNotFoundError",
    # Core
    "Materials",
    "KeyProvider",
    "Envelope",
    "TransformStage",
    "CompressStage",
    "DecompressStage",
    "EncryptStage",
    "DecryptStage",
    "TransformPipeline",
    "aiter_chunks",
    "CipherProvider",
    "EncryptionCipher",
    "DecryptionCipher",
    # Storage and client
    "ObjectStorage",
    "InMemoryObjectStorage",
    "S3ObjectStorage",
    "ObjectHead",
    "UploadResult",
    "DownloadResult",
    "ClientConfig",
    "EncryptionClient",
]
