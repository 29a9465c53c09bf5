"""
OAuth state tokens — signed, time-bounded nonces binding a login request
to its deep-link callback.

Format: ``{unix_timestamp}:{uuid4}:{base64url(HMAC-SHA256(timestamp:nonce))}``

The HMAC key is SHA-256(machine_id || "kirohub-state-hmac-key"), so a state
minted on one device does not validate on another.

Security Note:
    Never log a full state token or its HMAC.
"""
import time
import uuid
import base64
import binascii
import logging
from typing import Optional

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, hmac

from ..exceptions import StateValidationError
from ..vault.device import get_machine_id

logger = logging.getLogger("kirohub.auth")

STATE_VALIDITY_SECONDS = 300
_HMAC_DOMAIN = b"kirohub-state-hmac-key"


def _b64url_encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def _b64url_decode(data: str) -> bytes:
    padding = "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode(data + padding)


def state_hmac_key(machine_id: Optional[str] = None) -> bytes:
    """Derive the state-signing key for this device."""
    digest = hashes.Hash(hashes.SHA256())
    digest.update((machine_id or get_machine_id()).encode("utf-8"))
    digest.update(_HMAC_DOMAIN)
    return digest.finalize()


def _sign(payload: str, key: bytes) -> hmac.HMAC:
    mac = hmac.HMAC(key, hashes.SHA256())
    mac.update(payload.encode("utf-8"))
    return mac


def generate_secure_state(
    machine_id: Optional[str] = None,
    now: Optional[float] = None,
) -> str:
    """Mint a new signed state token.

    Args:
        machine_id: Device identifier; auto-detected when omitted.
        now: Override for the embedded timestamp (seconds since epoch).

    Returns:
        ``timestamp:nonce:hmac`` string.
    """
    timestamp = int(time.time() if now is None else now)
    payload = f"{timestamp}:{uuid.uuid4()}"
    signature = _sign(payload, state_hmac_key(machine_id)).finalize()
    return f"{payload}:{_b64url_encode(signature)}"


def validate_state_signature(
    state: str,
    machine_id: Optional[str] = None,
    max_age: int = STATE_VALIDITY_SECONDS,
    now: Optional[float] = None,
) -> None:
    """Check a state token's shape, freshness and HMAC.

    Raises:
        StateValidationError: Describing which check failed.
    """
    parts = state.split(":")
    if len(parts) != 3:
        raise StateValidationError("Invalid state format")
    timestamp_str, nonce, hmac_encoded = parts
    if not nonce:
        raise StateValidationError("Invalid state payload format")

    try:
        timestamp = int(timestamp_str)
    except ValueError as err:
        raise StateValidationError("Invalid timestamp") from err

    current = int(time.time() if now is None else now)
    age = current - timestamp
    if abs(age) > max_age:
        raise StateValidationError(f"State expired (age: {age} seconds)")

    try:
        signature = _b64url_decode(hmac_encoded)
    except (binascii.Error, ValueError) as err:
        raise StateValidationError("Invalid HMAC encoding") from err

    mac = _sign(f"{timestamp_str}:{nonce}", state_hmac_key(machine_id))
    try:
        mac.verify(signature)  # constant-time
    except InvalidSignature as err:
        raise StateValidationError(
            "HMAC verification failed - possible tampering"
        ) from err
