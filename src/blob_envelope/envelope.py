"""
Envelope metadata carried alongside every encrypted object.

This module provides:
- Envelope: Wrapped data key, IV and materials description of one object
- KEY_HEADER, IV_HEADER, MATDESC_HEADER: Object metadata field names

Wire format (object metadata, string keys and values):

    x-amz-key      base64(AES-ECB(master key, data key))   48 bytes decoded
    x-amz-iv       base64(iv)                              16 bytes decoded
    x-amz-matdesc  materials description (JSON)           opaque
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Mapping

from .crypto import BLOCK_SIZE, IV_SIZE, decode_base64
from .errors import CryptoError, EnvelopeMalformedError

KEY_HEADER: str = "x-amz-key"
IV_HEADER: str = "x-amz-iv"
MATDESC_HEADER: str = "x-amz-matdesc"

ENVELOPE_FIELDS: tuple = (KEY_HEADER, IV_HEADER, MATDESC_HEADER)


@dataclass(frozen=True)
class Envelope:
    """Envelope of one encrypted object. All fields are plain strings."""

    wrapped_key: str  # base64
    iv: str  # base64, not secret
    materials_description: str

    def to_metadata(self) -> Dict[str, str]:
        """Return the object metadata mapping (exactly three fields)."""
        return {
            KEY_HEADER: self.wrapped_key,
            IV_HEADER: self.iv,
            MATDESC_HEADER: self.materials_description,
        }

    @classmethod
    def from_metadata(cls, metadata: Mapping[str, str]) -> Envelope:
        """
        Build an envelope from object metadata.

        Field names are matched case-insensitively; unrelated metadata is
        ignored.

        Raises:
            EnvelopeMalformedError: If a field is missing or not a string
        """
        if metadata is None:
            raise EnvelopeMalformedError("object has no envelope metadata")

        fields = {str(name).lower(): value for name, value in metadata.items()}
        values = []
        for name in ENVELOPE_FIELDS:
            value = fields.get(name)
            if not isinstance(value, str) or (name != MATDESC_HEADER and not value):
                raise EnvelopeMalformedError(f"envelope field {name!r} is missing")
            values.append(value)

        wrapped_key, iv, description = values
        return cls(wrapped_key=wrapped_key, iv=iv, materials_description=description)

    def wrapped_key_bytes(self) -> bytes:
        """
        Decode the wrapped data key.

        Raises:
            EnvelopeMalformedError: If the value is not base64 or not a whole
                number of cipher blocks
        """
        try:
            wrapped = decode_base64(self.wrapped_key)
        except CryptoError:
            raise EnvelopeMalformedError(f"envelope field {KEY_HEADER!r} is not valid base64")
        if not wrapped or len(wrapped) % BLOCK_SIZE:
            raise EnvelopeMalformedError(
                f"envelope field {KEY_HEADER!r} has invalid length {len(wrapped)}"
            )
        return wrapped

    def iv_bytes(self) -> bytes:
        """
        Decode the IV.

        Raises:
            EnvelopeMalformedError: If the value is not base64 or not 16 bytes
        """
        try:
            iv = decode_base64(self.iv)
        except CryptoError:
            raise EnvelopeMalformedError(f"envelope field {IV_HEADER!r} is not valid base64")
        if len(iv) != IV_SIZE:
            raise EnvelopeMalformedError(
                f"envelope field {IV_HEADER!r} must decode to {IV_SIZE} bytes, got {len(iv)}"
            )
        return iv

