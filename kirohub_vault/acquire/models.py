"""
Data models for credential acquisition.

``ImportItem`` / ``BatchImportResult`` mirror the batch-import request and
response exchanged with the desktop shell (camelCase on the wire).
``TokenSet`` and ``UsageLimits`` are what the external token and usage
services return. The three ``Protocol`` classes describe those services.
"""
from __future__ import annotations

from typing import Any, Optional, Protocol

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

ERROR_MESSAGE_LIMIT = 100


class _WireModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )


class ImportItem(_WireModel):
    """One refresh token to import, social or IdC."""

    refresh_token: str = Field(min_length=1)
    provider: Optional[str] = None
    client_id: Optional[str] = None
    client_secret: Optional[str] = None
    region: Optional[str] = None

    @property
    def is_idc(self) -> bool:
        return bool(self.client_id) and bool(self.client_secret)


class ImportItemResult(_WireModel):
    index: int
    success: bool
    email: Optional[str] = None
    error: Optional[str] = None

    @classmethod
    def failed(cls, index: int, err: BaseException) -> "ImportItemResult":
        message = str(err) or type(err).__name__
        return cls(index=index, success=False, error=message[:ERROR_MESSAGE_LIMIT])


class BatchImportResult(_WireModel):
    total: int
    success_count: int
    failed_count: int
    results: list[ImportItemResult]

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


class TokenSet(_WireModel):
    """Tokens returned by an exchange or refresh."""

    model_config = ConfigDict(extra="ignore")

    access_token: str
    refresh_token: str
    expires_in: int = 3600
    id_token: Optional[str] = None
    sso_session_id: Optional[str] = None
    profile_arn: Optional[str] = None


class UserInfo(_WireModel):
    model_config = ConfigDict(extra="allow")

    email: Optional[str] = None
    user_id: Optional[str] = None


class UsageLimits(_WireModel):
    """Usage snapshot; unknown fields are kept so the raw response survives."""

    model_config = ConfigDict(extra="allow")

    user_info: Optional[UserInfo] = None

    @property
    def email(self) -> Optional[str]:
        return self.user_info.email if self.user_info else None

    @property
    def user_id(self) -> Optional[str]:
        return self.user_info.user_id if self.user_info else None

    def to_raw(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


# ---------------------------------------------------------------------------
# External collaborators
# ---------------------------------------------------------------------------

class SocialTokenRefresher(Protocol):
    async def refresh_token(self, refresh_token: str) -> TokenSet:
        ...


class IdcTokenRefresher(Protocol):
    async def refresh_idc_token(
        self,
        refresh_token: str,
        client_id: str,
        client_secret: str,
        region: str,
    ) -> TokenSet:
        ...


class UsageProbe(Protocol):
    """Raises ``AccountBannedError`` for suspended accounts."""

    async def get_usage_limits(self, access_token: str) -> UsageLimits:
        ...
