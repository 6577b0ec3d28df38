"""
Cryptographic primitives for envelope encryption of stored objects.

This module provides:
- SecureKey: Data key wrapper with explicit and automatic zeroization
- aes_encrypt_cipher / aes_decrypt_cipher: AES cipher contexts (ECB or CBC)
- encrypt / decrypt: One-shot AES-ECB with PKCS7, used for key wrapping
- encode_base64 / decode_base64: Envelope field encoding
"""

from __future__ import annotations

import base64
import binascii
import secrets
from typing import Optional

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, CipherContext, algorithms, modes

from .errors import CryptoError

# Cryptographic constants
DATA_KEY_SIZE: int = 32  # 256 bits, AES-256 for bulk data
IV_SIZE: int = 16  # one AES block
BLOCK_SIZE: int = 16
BLOCK_SIZE_BITS: int = BLOCK_SIZE * 8
VALID_KEY_SIZES: tuple = (16, 24, 32)  # AES-128/192/256 master keys

BLOCK_MODE_ECB: str = "ECB"
BLOCK_MODE_CBC: str = "CBC"
SUPPORTED_BLOCK_MODES: tuple = (BLOCK_MODE_ECB, BLOCK_MODE_CBC)


class SecureKey:
    """
    Secure key wrapper with memory cleanup.

    Uses bytearray internally so the key can be zeroed with wipe(), when used
    as a context manager, or in __del__.
    Note: cipher contexts and the bytes returned by as_bytes() hold their own
    copies, so this is best-effort zeroization.
    """

    __slots__ = ("_bytes",)

    def __init__(self, key_bytes: bytes | bytearray) -> None:
        """
        Create a SecureKey from raw bytes.

        Args:
            key_bytes: Raw key material
        """
        if not isinstance(key_bytes, (bytes, bytearray)):
            raise CryptoError("Key must be bytes or bytearray")
        self._bytes = bytearray(key_bytes)

    @classmethod
    def generate(cls, size: int = DATA_KEY_SIZE) -> SecureKey:
        """Generate a cryptographically secure random key (32 bytes by default)."""
        return cls(secrets.token_bytes(size))

    def as_bytes(self) -> bytes:
        """Return key as immutable bytes."""
        return bytes(self._bytes)

    def wipe(self) -> None:
        """Overwrite the key buffer with zeros."""
        for i in range(len(self._bytes)):
            self._bytes[i] = 0

    @property
    def wiped(self) -> bool:
        return not any(self._bytes)

    def __enter__(self) -> SecureKey:
        return self

    def __exit__(self, *exc_info) -> None:
        self.wipe()

    def __len__(self) -> int:
        """Return key length in bytes."""
        return len(self._bytes)

    def __repr__(self) -> str:
        """Redacted representation to prevent accidental key disclosure."""
        return "SecureKey([REDACTED])"

    def __del__(self) -> None:
        """Zero memory on deletion (best-effort)."""
        if hasattr(self, "_bytes"):
            self.wipe()


def _cipher(block_mode: str, key: bytes | bytearray | SecureKey, iv: Optional[bytes]) -> Cipher:
    if isinstance(key, SecureKey):
        key = key.as_bytes()
    mode_name = block_mode.upper()
    if mode_name == BLOCK_MODE_ECB:
        mode = modes.ECB()
    elif mode_name == BLOCK_MODE_CBC:
        if iv is None or len(iv) != IV_SIZE:
            raise CryptoError(f"CBC mode requires a {IV_SIZE}-byte IV")
        mode = modes.CBC(iv)
    else:
        raise CryptoError(f"Unsupported block mode: {block_mode}")

    try:
        return Cipher(algorithms.AES(bytes(key)), mode)
    except ValueError as e:
        raise CryptoError(f"Invalid AES key: {e}")


def aes_encrypt_cipher(
    block_mode: str,
    key: bytes | bytearray | SecureKey,
    iv: Optional[bytes] = None,
) -> CipherContext:
    """
    Build an AES encryption context.

    The AES variant follows the key length (16, 24 or 32 bytes). Padding is
    not applied here; pair the context with pkcs7_padder().

    Args:
        block_mode: "ECB" (no IV) or "CBC"
        key: AES key
        iv: 16-byte IV, required for CBC

    Returns:
        cryptography CipherContext

    Raises:
        CryptoError: If the mode, key or IV is invalid
    """
    return _cipher(block_mode, key, iv).encryptor()


def aes_decrypt_cipher(
    block_mode: str,
    key: bytes | bytearray | SecureKey,
    iv: Optional[bytes] = None,
) -> CipherContext:
    """
    Build an AES decryption context.

    Args:
        block_mode: "ECB" (no IV) or "CBC"
        key: AES key
        iv: 16-byte IV, required for CBC

    Returns:
        cryptography CipherContext

    Raises:
        CryptoError: If the mode, key or IV is invalid
    """
    return _cipher(block_mode, key, iv).decryptor()


def pkcs7_padder() -> padding.PaddingContext:
    return padding.PKCS7(BLOCK_SIZE_BITS).padder()


def pkcs7_unpadder() -> padding.PaddingContext:
    return padding.PKCS7(BLOCK_SIZE_BITS).unpadder()


def encrypt(key: bytes | bytearray | SecureKey, data: bytes | bytearray | SecureKey) -> bytes:
    """
    Encrypt a short value with AES-ECB and PKCS7 padding.

    Used only to wrap data keys: a 32-byte key becomes 48 bytes of ciphertext.

    Args:
        key: Master key (16, 24 or 32 bytes)
        data: Value to encrypt

    Returns:
        Ciphertext bytes
    """
    if isinstance(data, SecureKey):
        data = data.as_bytes()
    padder = pkcs7_padder()
    padded = padder.update(bytes(data)) + padder.finalize()
    encryptor = aes_encrypt_cipher(BLOCK_MODE_ECB, key)
    return encryptor.update(padded) + encryptor.finalize()


def decrypt(key: bytes | bytearray | SecureKey, data: bytes) -> bytes:
    """
    Decrypt a value produced by encrypt().

    A wrong key is only detectable through the PKCS7 padding check, which
    passes by chance for a small fraction of keys.

    Args:
        key: Master key
        data: Ciphertext (non-empty multiple of 16 bytes)

    Returns:
        Decrypted bytes

    Raises:
        CryptoError: If the ciphertext length or padding is invalid
    """
    decryptor = aes_decrypt_cipher(BLOCK_MODE_ECB, key)
    unpadder = pkcs7_unpadder()
    try:
        padded = decryptor.update(data) + decryptor.finalize()
        return unpadder.update(padded) + unpadder.finalize()
    except ValueError:
        # Generic error to prevent oracle attacks
        raise CryptoError("Decryption failed")


def encode_base64(data: bytes | bytearray | str) -> str:
    """Encode bytes (or a UTF-8 string) as standard base64 text."""
    if isinstance(data, str):
        data = data.encode("utf-8")
    return base64.standard_b64encode(bytes(data)).decode("ascii")


def decode_base64(encoded: str | bytes) -> bytes:
    """
    Decode standard base64 text.

    Raises:
        CryptoError: If the input is not valid base64
    """
    try:
        return base64.b64decode(encoded, validate=True)
    except (binascii.Error, ValueError, TypeError) as e:
        raise CryptoError(f"Base64 decode error: {e}")


def generate_random_bytes(length: int) -> bytes:
    """
    Generate cryptographically secure random bytes.

    Args:
        length: Number of bytes to generate

    Returns:
        Random bytes of specified length
    """
    return secrets.token_bytes(length)
