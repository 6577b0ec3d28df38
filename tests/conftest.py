"""
Pytest configuration and fixtures for envelope encryption tests.
"""

from __future__ import annotations

import os

import pytest

from blob_envelope import (
    CipherProvider,
    EncryptionClient,
    InMemoryObjectStorage,
    KeyProvider,
)


@pytest.fixture
def master_key() -> bytes:
    """Random 32-byte master key."""
    return os.urandom(32)


@pytest.fixture
def key_provider(master_key: bytes) -> KeyProvider:
    return KeyProvider(master_key)


@pytest.fixture
def cipher_provider(key_provider: KeyProvider) -> CipherProvider:
    return CipherProvider(key_provider)


@pytest.fixture
def memory_storage() -> InMemoryObjectStorage:
    """Create an in-memory storage instance for testing."""
    return InMemoryObjectStorage()


@pytest.fixture
def client(memory_storage: InMemoryObjectStorage, master_key: bytes) -> EncryptionClient:
    """Encryption client over in-memory storage."""
    return EncryptionClient(storage=memory_storage, encryption_key=master_key)


def run_pipeline(pipeline, data: bytes, chunk_size: int = 64 * 1024) -> bytes:
    """Push ``data`` through a pipeline synchronously and return its output."""
    out = bytearray()
    for offset in range(0, len(data), chunk_size):
        for chunk in pipeline.feed(data[offset : offset + chunk_size]):
            out.extend(chunk)
    for chunk in pipeline.finish():
        out.extend(chunk)
    return bytes(out)


@pytest.fixture
def drain():
    """The run_pipeline helper as a fixture."""
    return run_pipeline
