"""
Account records â the in-memory (plaintext) and on-disk (V2) shapes.

On disk every account is a camelCase JSON object. Plaintext metadata stays
readable; each secret field is stored as ``<name>Enc: {ciphertext, nonce}``
and the object carries ``version: 2``. Legacy V1 files hold the same objects
with the secrets inline and no version tag.
"""
import uuid
from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, field_validator, model_validator
from pydantic.alias_generators import to_camel

from .crypto import EncryptedField, encrypt_optional, decrypt_optional

STATUS_NORMAL = "normal"
STATUS_BANNED = "banned"

# Status strings written by earlier desktop releases.
LEGACY_STATUSES = {
    "正常": STATUS_NORMAL,
    "已封禁": STATUS_BANNED,
}

PROVIDER_GOOGLE = "Google"
PROVIDER_GITHUB = "Github"
PROVIDER_BUILDER_ID = "BuilderId"
PROVIDER_ENTERPRISE = "Enterprise"

DEFAULT_REGION = "us-east-1"
TIMESTAMP_FORMAT = "%Y/%m/%d %H:%M:%S"
SCHEMA_VERSION = 2

SECRET_FIELDS = (
    "access_token",
    "refresh_token",
    "csrf_token",
    "session_token",
    "client_secret",
    "id_token",
)

# Overwritten on an existing record when a newer acquisition for the same
# (email, provider) is merged in. id, email, label and added_at are kept.
MERGE_FIELDS = (
    "access_token",
    "refresh_token",
    "user_id",
    "expires_at",
    "client_id",
    "client_secret",
    "region",
    "client_id_hash",
    "id_token",
    "sso_session_id",
    "usage_data",
    "status",
)


def now_timestamp() -> str:
    return datetime.now().strftime(TIMESTAMP_FORMAT)


def is_encrypted_form(record: Any) -> bool:
    """True for a raw object carrying a version tag or any ``*Enc`` key."""
    if not isinstance(record, dict):
        return False
    return "version" in record or any(key.endswith("Enc") for key in record)


def _normalize_status(value: Any) -> Any:
    if isinstance(value, str):
        return LEGACY_STATUSES.get(value, value)
    return value


class _CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class Account(_CamelModel):
    """One managed account with all secrets in plaintext (memory only)."""

    id: str
    email: str
    label: str
    status: str
    added_at: str
    # credentials
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    csrf_token: Optional[str] = None
    session_token: Optional[str] = None
    expires_at: Optional[str] = None
    # identity
    provider: Optional[str] = None
    user_id: Optional[str] = None
    # IdC
    client_id: Optional[str] = None
    client_secret: Optional[str] = None
    region: Optional[str] = None
    client_id_hash: Optional[str] = None
    sso_session_id: Optional[str] = None
    id_token: Optional[str] = None
    # social
    profile_arn: Optional[str] = None
    # raw usage API response
    usage_data: Optional[Any] = None

    @model_validator(mode="before")
    @classmethod
    def reject_encrypted_form(cls, data: Any) -> Any:
        """A V2 object must never be read as plaintext with its secrets dropped."""
        if is_encrypted_form(data):
            raise ValueError("encrypted record cannot be loaded as a plaintext account")
        return data

    @field_validator("status", mode="before")
    @classmethod
    def normalize_status(cls, v: Any) -> Any:
        return _normalize_status(v)

    @classmethod
    def new(cls, email: str, label: str) -> "Account":
        """Create a fresh account with a new immutable id."""
        return cls(
            id=str(uuid.uuid4()),
            email=email,
            label=label,
            status=STATUS_NORMAL,
            added_at=now_timestamp(),
        )

    @property
    def dedup_key(self) -> tuple[str, Optional[str]]:
        return (self.email, self.provider)

    def merge_from(self, other: "Account") -> None:
        """Overwrite mutable fields from a newer acquisition, keeping the id."""
        for name in MERGE_FIELDS:
            setattr(self, name, getattr(other, name))

    def to_secure(self, key: bytes) -> "SecureAccount":
        """Encrypt every secret field with a fresh nonce.

        Raises:
            CryptoError: If a field cannot be encrypted.
        """
        plain = self.model_dump(exclude=set(SECRET_FIELDS))
        encrypted = {
            f"{name}_enc": encrypt_optional(getattr(self, name), key)
            for name in SECRET_FIELDS
        }
        return SecureAccount(**plain, **encrypted, version=SCHEMA_VERSION)

    @classmethod
    def from_secure(cls, secure: "SecureAccount", key: bytes) -> "Account":
        """Decrypt a V2 record.

        Raises:
            CryptoError: If any secret fails to decrypt.
        """
        plain = secure.model_dump(
            exclude={f"{name}_enc" for name in SECRET_FIELDS} | {"version"},
        )
        decrypted = {
            name: decrypt_optional(getattr(secure, f"{name}_enc"), key)
            for name in SECRET_FIELDS
        }
        return cls(**plain, **decrypted)

    def to_json_dict(self) -> dict[str, Any]:
        """camelCase plaintext form used for export."""
        return self.model_dump(by_alias=True)


class SecureAccount(_CamelModel):
    """V2 on-disk form of an Account."""

    id: str
    email: str
    label: str
    status: str
    added_at: str
    expires_at: Optional[str] = None
    provider: Optional[str] = None
    user_id: Optional[str] = None
    region: Optional[str] = None
    client_id_hash: Optional[str] = None
    profile_arn: Optional[str] = None
    usage_data: Optional[Any] = None
    client_id: Optional[str] = None
    sso_session_id: Optional[str] = None

    access_token_enc: Optional[EncryptedField] = None
    refresh_token_enc: Optional[EncryptedField] = None
    csrf_token_enc: Optional[EncryptedField] = None
    session_token_enc: Optional[EncryptedField] = None
    client_secret_enc: Optional[EncryptedField] = None
    id_token_enc: Optional[EncryptedField] = None

    version: Literal[2]

    @field_validator("status", mode="before")
    @classmethod
    def normalize_status(cls, v: Any) -> Any:
        return _normalize_status(v)

    def to_disk(self) -> dict[str, Any]:
        """Serialise for the vault file; absent secrets are omitted."""
        data = self.model_dump(by_alias=True)
        for name in SECRET_FIELDS:
            alias = to_camel(f"{name}_enc")
            if data.get(alias) is None:
                data.pop(alias, None)
        return data
