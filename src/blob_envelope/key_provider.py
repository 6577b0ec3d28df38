"""
Master key provider.

A KeyProvider owns exactly one set of Materials for the lifetime of a client.
CipherProvider only talks to this interface, so alternative providers (for
example one that selects among several master keys by materials description)
can be dropped in without touching the protocol engine.
"""

from __future__ import annotations

from .materials import Materials


class KeyProvider:
    """Symmetric master key provider backed by a single Materials instance."""

    def __init__(self, key: bytes | bytearray, materials_description: str = "{}") -> None:
        """
        Args:
            key: Master key (16, 24 or 32 bytes)
            materials_description: JSON document stored in every envelope

        Raises:
            InvalidKeyLengthError: If the key length is invalid
            InvalidDescriptionError: If the description is not valid JSON
        """
        self._encryption_materials = Materials(key, materials_description)

    @property
    def key(self) -> bytes:
        """Raw master key bytes."""
        return self._encryption_materials.key

    @property
    def encryption_materials(self) -> Materials:
        """Materials used when building new envelopes."""
        return self._encryption_materials

    def key_for(self, description: str) -> bytes:
        """
        Return the master key able to unwrap an envelope with ``description``.

        The single-key provider ignores the description.
        """
        return self.key

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self._encryption_materials!r})"
