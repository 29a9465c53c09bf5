"""
Vault Crypto Core — Device key derivation and per-field AEAD encryption.

- Key derivation: PBKDF2-HMAC-SHA256(machine_id, fixed salt) → 256-bit key
- Field encryption: ChaCha20-Poly1305 (or AES-256-GCM) with a fresh 96-bit
  nonce per call → {ciphertext, nonce}, both base64

Security Note:
    Never log plaintext or ciphertext values.
    The derived key is never persisted; it is re-derived per operation.
"""
import os
import base64
import binascii
import logging
from typing import Optional

from pydantic import BaseModel
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from cryptography.hazmat.primitives.ciphers.aead import AESGCM, ChaCha20Poly1305

from ..exceptions import AuthenticationError, EmptyInputError, EncodingError

logger = logging.getLogger("kirohub.vault")

SALT = b"KiroHub-V1-Salt-2025"
PBKDF2_ITERATIONS = 100_000
NONCE_SIZE = 12  # 96-bit nonce
KEY_LENGTH = 32  # 256-bit key


def _get_cipher_cls() -> type:
    """Return the AEAD cipher class based on KIROHUB_CIPHER_BACKEND env var."""
    backend = os.environ.get("KIROHUB_CIPHER_BACKEND", "chacha20").lower()
    if backend == "aesgcm":
        return AESGCM
    return ChaCha20Poly1305


# Resolve cipher once at module load to prevent encrypt/decrypt mismatch
# if the env var changes mid-process.
CIPHER_CLS = _get_cipher_cls()
CIPHER_BACKEND = "aesgcm" if CIPHER_CLS is AESGCM else "chacha20"


class EncryptedField(BaseModel):
    """One encrypted secret: base64 ciphertext (with tag) and base64 nonce."""

    ciphertext: str
    nonce: str


# ---------------------------------------------------------------------------
# Key derivation
# ---------------------------------------------------------------------------

def derive_key(machine_id: str, iterations: int = PBKDF2_ITERATIONS) -> bytes:
    """Derive the 32-byte device key from a machine identifier.

    Deterministic: the same machine id always yields the same key.

    Args:
        machine_id: Stable device identifier.
        iterations: PBKDF2 round count (never below 100k).

    Returns:
        32-byte derived key.
    """
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=KEY_LENGTH,
        salt=SALT,
        iterations=max(iterations, PBKDF2_ITERATIONS),
    )
    return kdf.derive(machine_id.encode("utf-8"))


# ---------------------------------------------------------------------------
# Field encryption
# ---------------------------------------------------------------------------

def encrypt_string(plaintext: str, key: bytes) -> EncryptedField:
    """Encrypt a single secret string.

    Args:
        plaintext: Non-empty secret.
        key: 32-byte device key from ``derive_key``.

    Returns:
        EncryptedField with base64 ciphertext+tag and nonce.

    Raises:
        EmptyInputError: If plaintext is empty.
    """
    if not plaintext:
        raise EmptyInputError("Cannot encrypt empty string")
    cipher = CIPHER_CLS(key)
    nonce = os.urandom(NONCE_SIZE)
    ct = cipher.encrypt(nonce, plaintext.encode("utf-8"), None)
    return EncryptedField(
        ciphertext=base64.b64encode(ct).decode("ascii"),
        nonce=base64.b64encode(nonce).decode("ascii"),
    )


def _b64decode(value: str, what: str) -> bytes:
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError) as err:
        raise EncodingError(f"{what} decode error: {err}") from err


def decrypt_string(field: EncryptedField, key: bytes) -> str:
    """Decrypt a single EncryptedField.

    Args:
        field: Encrypted value as produced by ``encrypt_string``.
        key: 32-byte device key.

    Returns:
        The original plaintext.

    Raises:
        EncodingError: Bad base64, wrong nonce length or non-UTF-8 plaintext.
        AuthenticationError: Tag verification failed.
    """
    ct = _b64decode(field.ciphertext, "Ciphertext")
    nonce = _b64decode(field.nonce, "Nonce")
    if len(nonce) != NONCE_SIZE:
        raise EncodingError(f"Invalid nonce length: {len(nonce)}")
    cipher = CIPHER_CLS(key)
    try:
        plaintext_bytes = cipher.decrypt(nonce, ct, None)
    except InvalidTag as err:
        raise AuthenticationError(
            "Decryption failed: authentication tag mismatch"
        ) from err
    try:
        return plaintext_bytes.decode("utf-8")
    except UnicodeDecodeError as err:
        raise EncodingError(f"UTF-8 decode error: {err}") from err


def encrypt_optional(value: Optional[str], key: bytes) -> Optional[EncryptedField]:
    """Encrypt a value that may be absent; None or "" map to None."""
    if not value:
        return None
    return encrypt_string(value, key)


def decrypt_optional(field: Optional[EncryptedField], key: bytes) -> Optional[str]:
    """Decrypt a field that may be absent."""
    if field is None:
        return None
    return decrypt_string(field, key)
