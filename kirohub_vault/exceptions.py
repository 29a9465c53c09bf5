"""
Exception hierarchy for the credential vault.

Every error raised by the package derives from ``VaultError``. Where an
error is also a plain input problem it additionally subclasses
``ValueError`` so generic callers can keep catching that.

Security Note:
    Exception messages must never embed secrets, ciphertext, HMACs or
    OAuth authorization codes.
"""


class VaultError(Exception):
    """Base class for all vault errors."""


# ---------------------------------------------------------------------------
# Crypto
# ---------------------------------------------------------------------------

class CryptoError(VaultError):
    """Encryption or decryption of a secret field failed."""


class EmptyInputError(CryptoError, ValueError):
    """Refused to encrypt an empty string."""


class AuthenticationError(CryptoError):
    """AEAD tag did not verify (wrong device key, corruption or tampering)."""


class EncodingError(CryptoError, ValueError):
    """Malformed base64, bad nonce length or non-UTF-8 plaintext."""


# ---------------------------------------------------------------------------
# Storage
# ---------------------------------------------------------------------------

class FormatError(VaultError, ValueError):
    """Vault file or import payload is not a recognised account array."""


class ConcurrencyError(VaultError):
    """Shared vault state cannot be accessed safely."""


class VaultUnavailableError(ConcurrencyError):
    """A previous critical section failed and poisoned the vault lock."""


# ---------------------------------------------------------------------------
# OAuth state / callback
# ---------------------------------------------------------------------------

class StateValidationError(VaultError, ValueError):
    """State token is malformed, expired or carries a bad signature."""


class CallbackError(VaultError):
    """The OAuth deep-link callback did not yield a usable code."""


class CallbackTimeoutError(CallbackError, TimeoutError):
    """No callback arrived before the deadline."""


class CallbackSupersededError(CallbackError):
    """A newer login attempt replaced this pending callback."""


class InvalidCallbackUrlError(CallbackError):
    """The callback URL could not be parsed."""


class ProviderError(CallbackError):
    """The identity provider redirected back with an error."""

    def __init__(self, error: str, description: str | None = None):
        self.error = error
        self.description = description or "Unknown error"
        super().__init__(f"OAuth error: {self.error} - {self.description}")


class MissingParameterError(CallbackError):
    """A required query parameter is absent from the callback URL."""

    def __init__(self, parameter: str):
        self.parameter = parameter
        super().__init__(f"Missing {parameter} parameter")


class StateMismatchError(CallbackError):
    """Callback state differs from the registered one (possible CSRF)."""


class InvalidStateError(CallbackError):
    """Callback state matched but failed signature or freshness checks."""


# ---------------------------------------------------------------------------
# Acquisition
# ---------------------------------------------------------------------------

class AcquisitionError(VaultError):
    """Token exchange, refresh or usage probe failed."""


class AccountBannedError(AcquisitionError):
    """The usage service reports the account as suspended."""

    def __init__(self, reason: str | None = None):
        self.reason = reason or "UNKNOWN"
        super().__init__(f"Account banned: {self.reason}")


class InvalidItemError(AcquisitionError, ValueError):
    """A batch import item failed validation.

    Only field locations and messages are kept; rejected input values may
    be tokens.
    """

    def __init__(self, err):
        problems = [
            f"{'.'.join(str(part) for part in detail['loc']) or 'item'}: {detail['msg']}"
            for detail in err.errors(include_url=False, include_input=False)
        ]
        super().__init__("Invalid import item: " + "; ".join(problems))
