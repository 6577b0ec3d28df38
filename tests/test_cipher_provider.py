"""
Tests for the envelope protocol engine.
"""

import base64
import os

import pytest

from blob_envelope import (
    CipherProvider,
    ConfigError,
    Envelope,
    EnvelopeDecryptionFailedError,
    EnvelopeMalformedError,
    KeyProvider,
    PipelineTransformError,
    SecureKey,
)
from blob_envelope.crypto import DATA_KEY_SIZE
from blob_envelope.envelope import IV_HEADER, KEY_HEADER, MATDESC_HEADER
from blob_envelope.pipeline import CompressStage, DecompressStage, DecryptStage, EncryptStage


def encrypt_bytes(provider: CipherProvider, plaintext: bytes, drain):
    encryption = provider.encryption_cipher()
    ciphertext = drain(encryption.cipher_stream, plaintext)
    return encryption.envelope, ciphertext


def decrypt_bytes(provider: CipherProvider, envelope, ciphertext: bytes, drain, chunk_size=64 * 1024):
    decryption = provider.decryption_cipher(envelope)
    return drain(decryption.decipher_stream, ciphertext, chunk_size)


# ============================================================================
# Round trips
# ============================================================================


@pytest.mark.parametrize("key_size", [16, 24, 32])
@pytest.mark.parametrize("plaintext", [b"", b"a", b"hello world", os.urandom(70_000)])
def test_roundtrip(key_size, plaintext, drain):
    provider = CipherProvider(KeyProvider(os.urandom(key_size)))

    envelope, ciphertext = encrypt_bytes(provider, plaintext, drain)

    assert decrypt_bytes(provider, envelope, ciphertext, drain) == plaintext


def test_hello_world_envelope(drain):
    provider = CipherProvider(KeyProvider(b"\x00" * 32))

    envelope, ciphertext = encrypt_bytes(provider, b"hello world", drain)
    metadata = envelope.to_metadata()

    assert all(metadata[field] for field in (KEY_HEADER, IV_HEADER))
    assert metadata[MATDESC_HEADER] == "{}"
    # 32-byte data key plus a full padding block, base64 encoded
    assert len(metadata[KEY_HEADER]) == 64
    assert len(base64.b64decode(metadata[IV_HEADER])) == 16
    assert ciphertext != b"hello world"
    assert len(ciphertext) % 16 == 0
    assert decrypt_bytes(provider, metadata, ciphertext, drain) == b"hello world"


def test_large_object_roundtrip(cipher_provider, drain):
    plaintext = os.urandom(10 * 1024 * 1024)

    envelope, ciphertext = encrypt_bytes(cipher_provider, plaintext, drain)

    assert decrypt_bytes(cipher_provider, envelope, ciphertext, drain) == plaintext


def test_compressible_data_shrinks(cipher_provider, drain):
    plaintext = b"A" * 1_000_000

    _, ciphertext = encrypt_bytes(cipher_provider, plaintext, drain)

    assert len(ciphertext) < 10_000


def test_materials_description_is_copied_verbatim(drain):
    description = '{"kms_cmk_id": "alias/app",  "v": 2}'
    provider = CipherProvider(KeyProvider(os.urandom(32), description))

    envelope, _ = encrypt_bytes(provider, b"data", drain)

    assert envelope.materials_description == description


def test_fresh_key_material_per_object(cipher_provider):
    envelopes = [cipher_provider.encryption_cipher().envelope for _ in range(200)]

    assert len({e.wrapped_key for e in envelopes}) == 200
    assert len({e.iv for e in envelopes}) == 200


def test_same_plaintext_encrypts_differently(cipher_provider, drain):
    _, first = encrypt_bytes(cipher_provider, b"same data", drain)
    _, second = encrypt_bytes(cipher_provider, b"same data", drain)
    assert first != second


# ============================================================================
# Key wrapping
# ============================================================================


def test_wrap_unwrap_key(cipher_provider):
    data_key = SecureKey.generate()

    wrapped = cipher_provider.wrap_key(data_key)

    assert len(wrapped) == 48
    with cipher_provider.unwrap_key(wrapped) as unwrapped:
        assert unwrapped.as_bytes() == data_key.as_bytes()


def test_unwrap_rejects_wrong_length_key(cipher_provider):
    wrapped = cipher_provider.wrap_key(os.urandom(16))

    with pytest.raises(EnvelopeDecryptionFailedError, match="unexpected length"):
        cipher_provider.unwrap_key(wrapped)


def test_wrong_master_key_fails(drain):
    writer = CipherProvider(KeyProvider(os.urandom(32)))
    reader = CipherProvider(KeyProvider(os.urandom(32)))

    for _ in range(20):
        envelope, ciphertext = encrypt_bytes(writer, b"secret payload " * 50, drain)
        # a wrong key usually fails the padding check while unwrapping; if
        # the padding happens to pass, the stream fails before any output
        with pytest.raises(EnvelopeDecryptionFailedError):
            decrypt_bytes(reader, envelope, ciphertext, drain)


def test_wrong_master_key_never_yields_plaintext(drain):
    writer = CipherProvider(KeyProvider(os.urandom(16)))
    reader = CipherProvider(KeyProvider(os.urandom(16)))
    plaintext = os.urandom(20_000)

    envelope, ciphertext = encrypt_bytes(writer, plaintext, drain)

    with pytest.raises((EnvelopeDecryptionFailedError, PipelineTransformError)):
        decrypt_bytes(reader, envelope, ciphertext, drain)


# ============================================================================
# Malformed input
# ============================================================================


@pytest.mark.parametrize("missing", [KEY_HEADER, IV_HEADER])
def test_missing_envelope_field(cipher_provider, drain, missing):
    envelope, _ = encrypt_bytes(cipher_provider, b"data", drain)
    metadata = envelope.to_metadata()
    del metadata[missing]

    with pytest.raises(EnvelopeMalformedError):
        cipher_provider.decryption_cipher(metadata)


def test_invalid_base64_key(cipher_provider, drain):
    envelope, _ = encrypt_bytes(cipher_provider, b"data", drain)
    metadata = dict(envelope.to_metadata(), **{KEY_HEADER: "%%%not-base64%%%"})

    with pytest.raises(EnvelopeMalformedError):
        cipher_provider.decryption_cipher(metadata)


def test_short_iv(cipher_provider, drain):
    envelope, _ = encrypt_bytes(cipher_provider, b"data", drain)
    bad = Envelope(envelope.wrapped_key, base64.b64encode(b"short").decode(), "{}")

    with pytest.raises(EnvelopeMalformedError):
        cipher_provider.decryption_cipher(bad)


def test_corruption_after_output_is_a_transform_error(cipher_provider, drain):
    plaintext = os.urandom(300_000)
    envelope, ciphertext = encrypt_bytes(cipher_provider, plaintext, drain)
    corrupted = bytearray(ciphertext)
    corrupted[-100] ^= 0x01

    with pytest.raises(PipelineTransformError):
        decrypt_bytes(cipher_provider, envelope, bytes(corrupted), drain, chunk_size=4096)


def test_truncated_object_fails(cipher_provider, drain):
    envelope, ciphertext = encrypt_bytes(cipher_provider, os.urandom(50_000), drain)

    with pytest.raises(PipelineTransformError):
        decrypt_bytes(cipher_provider, envelope, ciphertext[:-32], drain, chunk_size=4096)


def test_decrypt_pipeline_bounds_output_chunks(key_provider, drain):
    provider = CipherProvider(key_provider, chunk_size=4096)
    encryption = provider.encryption_cipher()
    ciphertext = drain(encryption.cipher_stream, b"\x00" * (2 * 1024 * 1024))

    pipeline = provider.decryption_cipher(encryption.envelope).decipher_stream
    sizes = []
    for offset in range(0, len(ciphertext), 1024):
        sizes.extend(len(c) for c in pipeline.feed(ciphertext[offset : offset + 1024]))
    sizes.extend(len(c) for c in pipeline.finish())

    assert sum(sizes) == 2 * 1024 * 1024
    assert max(sizes) <= 4096


# ============================================================================
# Configuration
# ============================================================================


def test_rejects_unsupported_block_mode(key_provider):
    with pytest.raises(ConfigError):
        CipherProvider(key_provider, block_mode="GCM")


def test_accepts_lowercase_cbc(key_provider):
    assert CipherProvider(key_provider, block_mode="cbc").block_mode == "CBC"


@pytest.mark.parametrize("kwargs", [{"compression_level": 12}, {"chunk_size": 0}])
def test_rejects_bad_settings(key_provider, kwargs):
    with pytest.raises(ConfigError):
        CipherProvider(key_provider, **kwargs)


def test_repr_hides_key(key_provider, master_key):
    assert master_key.hex() not in repr(CipherProvider(key_provider))


def test_damaged_first_block_reads_as_decryption_failure(cipher_provider, drain):
    envelope, ciphertext = encrypt_bytes(cipher_provider, os.urandom(10_000), drain)
    damaged = bytearray(ciphertext)
    damaged[0] ^= 0xFF

    # the right key, but nothing decodes before the gzip header check fails
    with pytest.raises(EnvelopeDecryptionFailedError):
        decrypt_bytes(cipher_provider, envelope, bytes(damaged), drain)


# ============================================================================
# Data key handling
# ============================================================================


def test_generated_data_key_is_wiped(cipher_provider, drain, monkeypatch):
    generated = []
    generate = SecureKey.generate

    def recording_generate(size=DATA_KEY_SIZE):
        key = generate(size)
        generated.append(key)
        return key

    monkeypatch.setattr(SecureKey, "generate", staticmethod(recording_generate))

    encryption = cipher_provider.encryption_cipher()

    assert len(generated) == 1
    assert generated[0].wiped
    # the cipher context keeps its own copy of the key
    ciphertext = drain(encryption.cipher_stream, b"still encrypts")
    assert decrypt_bytes(cipher_provider, encryption.envelope, ciphertext, drain) == b"still encrypts"


def test_unwrapped_data_key_is_wiped(cipher_provider, drain, monkeypatch):
    envelope, ciphertext = encrypt_bytes(cipher_provider, b"payload", drain)
    unwrapped = []
    unwrap_key = cipher_provider.unwrap_key

    def recording_unwrap(wrapped, description="{}"):
        key = unwrap_key(wrapped, description)
        unwrapped.append(key)
        return key

    monkeypatch.setattr(cipher_provider, "unwrap_key", recording_unwrap)

    decryption = cipher_provider.decryption_cipher(envelope)

    assert len(unwrapped) == 1
    assert unwrapped[0].wiped
    assert drain(decryption.decipher_stream, ciphertext) == b"payload"


def test_stream_stage_order(cipher_provider):
    encryption = cipher_provider.encryption_cipher()
    decryption = cipher_provider.decryption_cipher(encryption.envelope)

    assert [type(s) for s in encryption.cipher_stream.stages] == [CompressStage, EncryptStage]
    assert [type(s) for s in decryption.decipher_stream.stages] == [DecryptStage, DecompressStage]
