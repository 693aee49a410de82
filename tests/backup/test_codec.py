"""Tests for artifact compression and encryption."""

import base64

import pytest

from pacta_backup.backup.codec import (
    ENCRYPTION_MAGIC,
    ArtifactCodec,
    CodecError,
    compress,
    decompress,
    decrypt,
    derive_key,
    encrypt,
    is_compressed,
    is_encrypted,
)
from pacta_backup.backup.models import BackupOptions, CompressionOptions, EncryptionOptions
from pacta_backup.config import EncryptionConfig
from tests.backup.base import ENCRYPTION_KEY

PAYLOAD = b"contract data " * 500


def test_compress_is_deterministic():
    assert compress(PAYLOAD, 6) == compress(PAYLOAD, 6)
    assert is_compressed(compress(PAYLOAD))
    assert decompress(compress(PAYLOAD, 9)) == PAYLOAD


@pytest.mark.parametrize("level", [0, 10])
def test_compress_rejects_bad_level(level):
    with pytest.raises(ValueError):
        compress(PAYLOAD, level)


def test_decompress_garbage():
    with pytest.raises(CodecError):
        decompress(b"\x1f\x8bnot really gzip")


def test_derive_key_accepts_hex_and_base64():
    raw = bytes(range(32))

    assert derive_key(raw.hex()) == raw
    assert derive_key(base64.b64encode(raw).decode()) == raw


def test_derive_key_stretches_passphrase():
    key = derive_key("correct horse battery staple", salt="s1", iterations=1000)

    assert len(key) == 32
    assert key == derive_key("correct horse battery staple", salt="s1", iterations=1000)
    assert key != derive_key("correct horse battery staple", salt="s2", iterations=1000)


def test_encrypt_uses_random_iv():
    key = bytes(32)
    first, second = encrypt(PAYLOAD, key), encrypt(PAYLOAD, key)

    assert first.startswith(ENCRYPTION_MAGIC)
    assert first != second
    assert decrypt(first, key) == decrypt(second, key) == PAYLOAD


def test_decrypt_wrong_key():
    data = encrypt(PAYLOAD, bytes(32))

    with pytest.raises(CodecError):
        decrypt(data, b"\x01" * 32)


def test_decrypt_truncated_or_plain():
    data = encrypt(PAYLOAD, bytes(32))

    with pytest.raises(CodecError):
        decrypt(data[:30], bytes(32))
    with pytest.raises(CodecError):
        decrypt(PAYLOAD, bytes(32))


def test_encrypt_rejects_short_key():
    with pytest.raises(ValueError):
        encrypt(PAYLOAD, b"short")


def test_codec_pipeline_compress_then_encrypt():
    codec = ArtifactCodec(EncryptionConfig(key=ENCRYPTION_KEY))
    options = BackupOptions(encryption=EncryptionOptions(enabled=True))

    artifact = codec.encode(PAYLOAD, options)

    assert is_encrypted(artifact)
    assert len(artifact) < len(PAYLOAD)
    assert codec.decode(artifact, options) == PAYLOAD


def test_codec_plain_passthrough():
    codec = ArtifactCodec(EncryptionConfig())
    options = BackupOptions(compression=CompressionOptions(enabled=False))

    assert codec.encode(PAYLOAD, options) == PAYLOAD
    assert codec.encryption_available is False


def test_codec_without_key_cannot_encrypt():
    codec = ArtifactCodec(EncryptionConfig())

    with pytest.raises(CodecError):
        codec.encode(PAYLOAD, BackupOptions(encryption=EncryptionOptions(enabled=True)))


def test_codec_rejects_uncompressed_payload():
    codec = ArtifactCodec(EncryptionConfig())

    with pytest.raises(CodecError, match="not gzip-compressed"):
        codec.decode(PAYLOAD, BackupOptions())
