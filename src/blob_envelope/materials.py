"""
Encryption materials: a validated master key and its description.
"""

from __future__ import annotations

import json

from .crypto import VALID_KEY_SIZES
from .errors import InvalidDescriptionError, InvalidKeyLengthError


class Materials:
    """
    Validated symmetric master key plus an opaque materials description.

    The description must be a JSON document but is never interpreted here;
    it is copied verbatim into every envelope built with these materials.
    """

    __slots__ = ("_key", "_description")

    def __init__(self, key: bytes | bytearray, description: str = "{}") -> None:
        """
        Args:
            key: Master key (16, 24 or 32 bytes)
            description: JSON document describing the key

        Raises:
            InvalidKeyLengthError: If the key length is not 16, 24 or 32 bytes
            InvalidDescriptionError: If the description is not valid JSON
        """
        self._key = self.validate_key(key)
        self._description = self.validate_desc(description)

    @property
    def key(self) -> bytes:
        return self._key

    @property
    def description(self) -> str:
        return self._description

    @staticmethod
    def validate_key(key: bytes | bytearray) -> bytes:
        """Return the key as immutable bytes if it is a valid AES key length."""
        if not isinstance(key, (bytes, bytearray)):
            raise InvalidKeyLengthError(
                f"symmetric key must be bytes, got {type(key).__name__}"
            )
        length = len(key)
        if length not in VALID_KEY_SIZES:
            raise InvalidKeyLengthError(
                "invalid key, symmetric key expected to be 16, 24 or 32 bytes "
                f"in length, saw length: {length}"
            )
        return bytes(key)

    @staticmethod
    def validate_desc(description: str) -> str:
        """Return the description unchanged if it parses as JSON."""
        if not isinstance(description, str):
            raise InvalidDescriptionError("expected description to be a JSON string")
        try:
            json.loads(description)
        except ValueError:
            raise InvalidDescriptionError("expected description to be a valid JSON string")
        return description

    def __repr__(self) -> str:
        return f"Materials(key=[REDACTED {len(self._key)} bytes], description={self._description!r})"
