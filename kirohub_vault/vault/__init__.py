"""Account Vault — Device-bound encrypted storage for account credentials.

Security Note (Threat Model):
    The device key is derived from the machine id, so a copied vault file
    cannot be decrypted on another machine. Anyone able to run code as the
    owning user on the same machine can re-derive the key; this is an
    accepted limitation. Mitigation requires an OS keychain or secure
    enclave, which is out of scope.
"""

from .store import AccountVault
from .records import Account, SecureAccount
from .crypto import EncryptedField, derive_key, encrypt_string, decrypt_string
from .config import VaultConfig
from .device import get_machine_id

__all__ = [
    "AccountVault",
    "Account",
    "SecureAccount",
    "EncryptedField",
    "derive_key",
    "encrypt_string",
    "decrypt_string",
    "VaultConfig",
    "get_machine_id",
]
