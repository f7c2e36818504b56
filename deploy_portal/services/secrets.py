"""Symmetric encryption for stored third-party credentials.

Tokens are base64 of ``salt | iv | tag | ciphertext``. A fresh salt and IV
are drawn for every call; the AES-256-GCM key is derived from the master key
and the salt with PBKDF2-HMAC-SHA512.
"""

import base64
import binascii
import os

import anyio.to_thread
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from deploy_portal.core.exceptions import ConfigurationError, IntegrityError

SALT_LENGTH = 64
IV_LENGTH = 16
TAG_LENGTH = 16
KEY_LENGTH = 32
ITERATIONS = 100_000

HEADER_LENGTH = SALT_LENGTH + IV_LENGTH + TAG_LENGTH


def decode_master_key(encoded: str) -> bytes:
    """Decode a hex or base64 master key, requiring exactly 32 bytes."""
    encoded = (encoded or "").strip()
    if not encoded:
        raise ConfigurationError(
            "ENCRYPTION_KEY is required. Generate one with: deploy-portal generate-key"
        )

    candidates: list[bytes] = []
    try:
        candidates.append(bytes.fromhex(encoded))
    except ValueError:
        pass
    try:
        candidates.append(base64.b64decode(encoded, validate=True))
    except (binascii.Error, ValueError):
        pass

    for key in candidates:
        if len(key) == KEY_LENGTH:
            return key

    raise ConfigurationError(
        f"ENCRYPTION_KEY must decode to {KEY_LENGTH} bytes (hex or base64)"
    )


def generate_master_key() -> str:
    """Generate a new hex-encoded master key."""
    return os.urandom(KEY_LENGTH).hex()


def _derive_key(master_key: bytes, salt: bytes, iterations: int) -> bytes:
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA512(),
        length=KEY_LENGTH,
        salt=salt,
        iterations=iterations,
    )
    return kdf.derive(master_key)


def encrypt(plaintext: str, master_key: bytes, iterations: int = ITERATIONS) -> str:
    """Encrypt ``plaintext`` into an opaque storable token."""
    salt = os.urandom(SALT_LENGTH)
    iv = os.urandom(IV_LENGTH)
    key = _derive_key(master_key, salt, iterations)

    # AESGCM appends the tag to the ciphertext
    sealed = AESGCM(key).encrypt(iv, plaintext.encode("utf-8"), None)
    ciphertext, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]

    return base64.b64encode(salt + iv + tag + ciphertext).decode("ascii")


def decrypt(token: str, master_key: bytes, iterations: int = ITERATIONS) -> str:
    """Decrypt a token produced by :func:`encrypt`.

    Raises:
        IntegrityError: the token is malformed, was tampered with, or was
            encrypted under a different master key.
    """
    try:
        raw = base64.b64decode(token, validate=True)
    except (binascii.Error, ValueError, TypeError) as e:
        raise IntegrityError("Stored secret is not a valid token") from e

    if len(raw) < HEADER_LENGTH:
        raise IntegrityError("Stored secret is truncated")

    salt = raw[:SALT_LENGTH]
    iv = raw[SALT_LENGTH : SALT_LENGTH + IV_LENGTH]
    tag = raw[SALT_LENGTH + IV_LENGTH : HEADER_LENGTH]
    ciphertext = raw[HEADER_LENGTH:]

    key = _derive_key(master_key, salt, iterations)
    try:
        plaintext = AESGCM(key).decrypt(iv, ciphertext + tag, None)
    except InvalidTag as e:
        raise IntegrityError() from e

    try:
        return plaintext.decode("utf-8")
    except UnicodeDecodeError as e:
        raise IntegrityError("Stored secret did not decode to text") from e


class SecretsCodec:
    """Encrypts and decrypts secrets under one process-wide master key."""

    def __init__(self, master_key: bytes, iterations: int = ITERATIONS):
        if len(master_key) != KEY_LENGTH:
            raise ConfigurationError(f"Master key must be {KEY_LENGTH} bytes")
        self._master_key = master_key
        self._iterations = iterations

    @classmethod
    def from_encoded_key(cls, encoded: str) -> "SecretsCodec":
        """Build a codec from the configured hex/base64 key."""
        return cls(decode_master_key(encoded))

    def encrypt(self, plaintext: str) -> str:
        return encrypt(plaintext, self._master_key, self._iterations)

    def decrypt(self, token: str) -> str:
        return decrypt(token, self._master_key, self._iterations)

    async def encrypt_async(self, plaintext: str) -> str:
        """Encrypt off the event loop; key derivation is CPU bound."""
        return await anyio.to_thread.run_sync(self.encrypt, plaintext)

    async def decrypt_async(self, token: str) -> str:
        return await anyio.to_thread.run_sync(self.decrypt, token)

    def __repr__(self) -> str:
        return "SecretsCodec(master_key=***)"
