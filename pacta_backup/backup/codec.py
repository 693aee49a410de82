"""Stateless byte transforms applied to backup payloads.

Artifacts are compressed first and encrypted second; encrypted bytes do not
compress. Encoded layout of an encrypted artifact::

    b"PBAKENC1" | 16-byte IV | AES-256-CBC ciphertext (PKCS7 padded)
"""

import base64
import binascii
import gzip
import os
import zlib
from typing import Optional

from cryptography.hazmat.primitives import hashes, padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from ..config import EncryptionConfig
from .models import BackupOptions

ENCRYPTION_MAGIC = b"PBAKENC1"
GZIP_MAGIC = b"\x1f\x8b"
IV_SIZE = 16
KEY_SIZE = 32


class CodecError(Exception):
    """Payload could not be decoded (bad key, truncated or corrupt data)."""


def compress(data: bytes, level: int = 6) -> bytes:
    """Gzip ``data``; level 1 is fastest, 9 smallest."""
    if not 1 <= level <= 9:
        raise ValueError(f"compression level must be between 1 and 9, got {level}")
    # mtime=0 keeps output deterministic for identical input
    return gzip.compress(data, compresslevel=level, mtime=0)


def decompress(data: bytes) -> bytes:
    try:
        return gzip.decompress(data)
    except (OSError, EOFError, zlib.error) as e:
        raise CodecError(f"Failed to decompress payload: {e}") from e


def is_compressed(data: bytes) -> bool:
    return data[:2] == GZIP_MAGIC


def is_encrypted(data: bytes) -> bool:
    return data[:len(ENCRYPTION_MAGIC)] == ENCRYPTION_MAGIC


def derive_key(secret: str, salt: str = "pacta-backup", iterations: int = 200_000) -> bytes:
    """Turn configured key material into a 32-byte AES key.

    Accepts 64 hex chars or base64 of exactly 32 bytes as a raw key; anything
    else is treated as a passphrase and stretched with PBKDF2-SHA256.
    """
    cleaned = secret.strip()
    if len(cleaned) == KEY_SIZE * 2:
        try:
            return bytes.fromhex(cleaned)
        except ValueError:
            pass
    try:
        raw = base64.b64decode(cleaned, validate=True)
        if len(raw) == KEY_SIZE:
            return raw
    except (binascii.Error, ValueError):
        pass

    return stretch_passphrase(cleaned, salt.encode("utf-8"), iterations)


def stretch_passphrase(passphrase: str, salt: bytes, iterations: int = 200_000) -> bytes:
    """PBKDF2-SHA256 of a passphrase into a 32-byte key."""
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=KEY_SIZE,
        salt=salt,
        iterations=iterations,
    )
    return kdf.derive(passphrase.encode("utf-8"))


def encrypt(data: bytes, key: bytes, iv: Optional[bytes] = None) -> bytes:
    if len(key) != KEY_SIZE:
        raise ValueError(f"AES-256 requires a {KEY_SIZE}-byte key, got {len(key)}")
    iv = iv or os.urandom(IV_SIZE)

    padder = padding.PKCS7(algorithms.AES.block_size).padder()
    padded = padder.update(data) + padder.finalize()

    encryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).encryptor()
    return ENCRYPTION_MAGIC + iv + encryptor.update(padded) + encryptor.finalize()


def decrypt(data: bytes, key: bytes) -> bytes:
    if not is_encrypted(data):
        raise CodecError("Payload is not an encrypted artifact")
    if len(key) != KEY_SIZE:
        raise ValueError(f"AES-256 requires a {KEY_SIZE}-byte key, got {len(key)}")

    header = len(ENCRYPTION_MAGIC)
    iv = data[header:header + IV_SIZE]
    ciphertext = data[header + IV_SIZE:]
    if len(iv) != IV_SIZE or not ciphertext or len(ciphertext) % IV_SIZE:
        raise CodecError("Encrypted payload is truncated")

    decryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).decryptor()
    padded = decryptor.update(ciphertext) + decryptor.finalize()

    unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
    try:
        return unpadder.update(padded) + unpadder.finalize()
    except ValueError as e:
        raise CodecError("Failed to decrypt payload (wrong key or corrupt data)") from e


class ArtifactCodec:
    """Applies the compression/encryption pipeline chosen in ``BackupOptions``."""

    def __init__(self, encryption: EncryptionConfig):
        self._encryption = encryption
        self._key: Optional[bytes] = None

    @property
    def encryption_available(self) -> bool:
        return self._encryption.configured

    def _get_key(self) -> bytes:
        if not self._encryption.configured:
            raise CodecError("Encryption key is not configured")
        if self._key is None:
            self._key = derive_key(
                self._encryption.key,
                salt=self._encryption.kdf_salt,
                iterations=self._encryption.kdf_iterations,
            )
        return self._key

    def encode(self, payload: bytes, options: BackupOptions) -> bytes:
        data = payload
        if options.compression.enabled:
            data = compress(data, options.compression.level)
        if options.encryption.enabled:
            data = encrypt(data, self._get_key())
        return data

    def decode(self, artifact: bytes, options: BackupOptions) -> bytes:
        """Reverse ``encode``: decrypt first, then decompress."""
        data = artifact
        if options.encryption.enabled:
            data = decrypt(data, self._get_key())
        if options.compression.enabled:
            if not is_compressed(data):
                raise CodecError("Payload is not gzip-compressed")
            data = decompress(data)
        return data
