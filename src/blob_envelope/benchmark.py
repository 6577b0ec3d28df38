"""
Envelope Encryption Streaming Benchmark CLI.

Usage:
    blob-envelope-benchmark

Or run directly:
    python -m blob_envelope.benchmark

Setup:
    Optionally set BLOB_ENVELOPE_KEY (base64 master key) in the environment
    or a .env file; a random 32-byte key is used otherwise.
"""

from __future__ import annotations

import asyncio
import hashlib
import os
import time
import tracemalloc
from typing import Any, AsyncIterator

from dotenv import load_dotenv

from blob_envelope.client import EncryptionClient
from blob_envelope.config import ENV_KEY, ClientConfig
from blob_envelope.crypto import DATA_KEY_SIZE, generate_random_bytes
from blob_envelope.errors import ConfigError
from blob_envelope.storage import InMemoryObjectStorage

MIB = 1024 * 1024


async def _payload(size: int, chunk_size: int, digest: Any) -> AsyncIterator[bytes]:
    """Half random, half repetitive data so compression has something to do."""
    pattern = b"envelope-benchmark " * (chunk_size // 19 + 1)
    sent = 0
    index = 0
    while sent < size:
        n = min(chunk_size, size - sent)
        chunk = generate_random_bytes(n) if index % 2 == 0 else pattern[:n]
        digest.update(chunk)
        sent += n
        index += 1
        yield chunk


def _load_config() -> ClientConfig:
    load_dotenv()
    if os.environ.get(ENV_KEY):
        return ClientConfig.from_env()
    return ClientConfig(encryption_key=generate_random_bytes(DATA_KEY_SIZE))


async def run_benchmark() -> None:
    """Run the envelope encryption streaming benchmark."""
    print("=== Envelope Encryption Streaming Benchmark ===\n")

    try:
        config = _load_config()
    except ConfigError as e:
        print(f"ERROR: {e}")
        raise SystemExit(1)

    # Get payload size from user
    try:
        user_input = input("Enter payload size in MiB (default: 64): ").strip()
        size_mib = int(user_input) if user_input else 64
    except ValueError:
        size_mib = 64
    if size_mib <= 0:
        size_mib = 64
    size = size_mib * MIB
    print(f"Testing with {size_mib} MiB, chunk size {config.chunk_size} bytes\n")

    storage = InMemoryObjectStorage(chunk_size=config.chunk_size)
    client = EncryptionClient(storage=storage, config=config)

    print("=" * 70)
    print("                    BENCHMARK START")
    print("=" * 70 + "\n")

    # ========================================================================
    # Demo 1: Envelope creation
    # ========================================================================
    print("+" + "-" * 68 + "+")
    print("|  Demo 1: Envelope Creation (1000 encryption ciphers)              |")
    print("+" + "-" * 68 + "+")

    envelope_count = 1000
    demo1_start = time.perf_counter()
    for _ in range(envelope_count):
        client.cipher_provider.encryption_cipher().cipher_stream.close()
    demo1_duration = time.perf_counter() - demo1_start

    print(f"[OK] Created {envelope_count} envelopes")
    print(f"[PERF] Time: {demo1_duration * 1000:.3f}ms | Rate: {envelope_count / demo1_duration:.2f} ops/sec\n")

    # ========================================================================
    # Demo 2: Streaming upload
    # ========================================================================
    print("+" + "-" * 68 + "+")
    print("|  Demo 2: Streaming Encrypted Upload                               |")
    print("+" + "-" * 68 + "+")

    source_digest = hashlib.sha256()
    tracemalloc.start()
    upload_start = time.perf_counter()
    result = await client.upload(
        "benchmark", "payload.bin", _payload(size, config.chunk_size, source_digest)
    )
    upload_duration = time.perf_counter() - upload_start

    stored = await storage.get_stored("benchmark", "payload.bin")
    print("[OK] Upload complete")
    print(f"[PERF] Time: {upload_duration * 1000:.3f}ms | Rate: {size_mib / upload_duration:.2f} MiB/sec")
    print(f"[DEBUG] Stored size: {len(stored.data)} bytes ({len(stored.data) / size:.2%} of plaintext)")
    print(f"[DEBUG] Envelope fields: {', '.join(sorted(result.metadata))}\n")

    # ========================================================================
    # Demo 3: Streaming download
    # ========================================================================
    print("+" + "-" * 68 + "+")
    print("|  Demo 3: Streaming Decrypted Download                             |")
    print("+" + "-" * 68 + "+")

    tracemalloc.reset_peak()
    output_digest = hashlib.sha256()
    download_start = time.perf_counter()
    written = await client.get_object("benchmark", "payload.bin", output_digest.update)
    download_duration = time.perf_counter() - download_start
    _current, download_peak = tracemalloc.get_traced_memory()
    tracemalloc.stop()

    if output_digest.digest() != source_digest.digest():
        print("[ERROR] Decrypted payload does not match the original\n")
        raise SystemExit(1)

    print(f"[OK] {written} bytes decrypted, SHA-256 matches")
    print(f"[PERF] Time: {download_duration * 1000:.3f}ms | Rate: {size_mib / download_duration:.2f} MiB/sec")
    # the stored ciphertext itself is held by the in-memory backend
    print(f"[DEBUG] Peak traced memory during download: {download_peak / MIB:.2f} MiB\n")

    # ========================================================================
    # Summary
    # ========================================================================
    print("=" * 70)
    print("                    BENCHMARK SUMMARY")
    print("=" * 70 + "\n")

    print("+- Performance Summary ----------------------------------------------+")
    print("|                                                                    |")

    env_rate = f"{envelope_count / demo1_duration:.2f}"
    print(f"|  Envelope Creation: {env_rate} ops/sec" + " " * (39 - len(env_rate)) + "|")

    up_rate = f"{size_mib / upload_duration:.2f}"
    print(f"|  Encrypt + Upload:  {up_rate} MiB/sec" + " " * (39 - len(up_rate)) + "|")

    down_rate = f"{size_mib / download_duration:.2f}"
    print(f"|  Download + Decrypt: {down_rate} MiB/sec" + " " * (38 - len(down_rate)) + "|")

    print("|                                                                    |")
    print("+--------------------------------------------------------------------+")

    print("\nTest Configuration:")
    print(f"  - Payload: {size_mib} MiB (alternating random / repetitive chunks)")
    print("  - Pipeline: gzip -> AES-256-CBC, data key wrapped with AES-ECB")
    print(f"  - Materials description: {config.materials_description}")

    print("\n" + "=" * 70)
    print("                    BENCHMARK COMPLETE")
    print("=" * 70 + "\n")


def main() -> None:
    """CLI entry point for blob-envelope-benchmark command."""
    asyncio.run(run_benchmark())


if __name__ == "__main__":
    main()
