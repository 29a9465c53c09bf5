"""
Auth service client — browser login, code exchange and token refresh
against the desktop authentication service.

Security Note:
    Response bodies of failed requests are not echoed into errors or logs;
    they may contain token material.
"""
import asyncio
import base64
import hashlib
import logging
import secrets
import webbrowser
from typing import Any, Callable, Optional

import aiohttp
import orjson
from pydantic import ValidationError
from yarl import URL

from ..acquire.models import TokenSet
from ..exceptions import AcquisitionError
from ..version import __version__
from ..vault.config import DEFAULT_AUTH_ENDPOINT, VaultConfig

logger = logging.getLogger("kirohub.auth")

USER_AGENT = f"KiroHubVault/{__version__}"


def generate_pkce() -> tuple[str, str]:
    """Return a PKCE (code_verifier, S256 code_challenge) pair."""
    verifier = secrets.token_urlsafe(64)
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    challenge = base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")
    return verifier, challenge


class AuthServiceClient:
    """Async client for the auth service; use as an async context manager."""

    def __init__(
        self,
        endpoint: str = DEFAULT_AUTH_ENDPOINT,
        timeout: float = 10.0,
        session: Optional[aiohttp.ClientSession] = None,
        opener: Callable[[str], bool] = webbrowser.open,
    ):
        self.endpoint = URL(endpoint.rstrip("/"))
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._session = session
        self._owns_session = session is None
        self._opener = opener

    @classmethod
    def from_config(cls, config: VaultConfig, **kwargs: Any) -> "AuthServiceClient":
        return cls(config.auth_endpoint, timeout=config.request_timeout, **kwargs)

    async def __aenter__(self) -> "AuthServiceClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def close(self) -> None:
        if self._session is not None and self._owns_session:
            await self._session.close()
            self._session = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            self._session = aiohttp.ClientSession(
                timeout=self._timeout,
                headers={"User-Agent": USER_AGENT},
            )
        return self._session

    # ------------------------------------------------------------------
    # Login
    # ------------------------------------------------------------------

    def login_url(
        self, provider: str, redirect_uri: str, code_challenge: str, state: str,
    ) -> str:
        url = (self.endpoint / "login").with_query({
            "idp": provider,
            "redirect_uri": redirect_uri,
            "code_challenge": code_challenge,
            "code_challenge_method": "S256",
            "state": state,
        })
        return str(url)

    async def login(
        self, provider: str, redirect_uri: str, code_challenge: str, state: str,
    ) -> str:
        """Open the system browser on the provider login page.

        Raises:
            AcquisitionError: If no browser could be launched.
        """
        url = self.login_url(provider, redirect_uri, code_challenge, state)
        logger.debug("Opening browser for login provider=%s", provider)
        opened = await asyncio.to_thread(self._opener, url)
        if not opened:
            raise AcquisitionError("Could not open a browser for login")
        return url

    # ------------------------------------------------------------------
    # Token endpoints
    # ------------------------------------------------------------------

    async def _post(self, path: str, body: dict[str, Any], what: str) -> tuple[int, bytes]:
        try:
            async with self._get_session().post(
                self.endpoint / path,
                data=orjson.dumps(body),
                headers={"Content-Type": "application/json"},
            ) as resp:
                return resp.status, await resp.read()
        except (aiohttp.ClientError, asyncio.TimeoutError) as err:
            raise AcquisitionError(f"Auth service {what} request failed: {err}") from err

    @staticmethod
    def _parse_tokens(payload: bytes, what: str) -> TokenSet:
        try:
            return TokenSet.model_validate(orjson.loads(payload))
        except (orjson.JSONDecodeError, ValidationError) as err:
            raise AcquisitionError(f"Auth service {what} parse failed") from err

    async def create_token(
        self,
        code: str,
        code_verifier: str,
        redirect_uri: str,
        invitation_code: Optional[str] = None,
    ) -> TokenSet:
        """Exchange an authorization code for tokens."""
        status, payload = await self._post(
            "oauth/token",
            {
                "code": code,
                "code_verifier": code_verifier,
                "redirect_uri": redirect_uri,
                "invitation_code": invitation_code,
            },
            "token creation",
        )
        logger.debug("CreateToken status: %s", status)
        if not 200 <= status < 300:
            raise AcquisitionError(f"Auth service token creation failed: {status}")
        return self._parse_tokens(payload, "token creation")

    async def refresh_token(self, refresh_token: str) -> TokenSet:
        """Refresh a social-login token pair."""
        status, payload = await self._post(
            "refreshToken", {"refreshToken": refresh_token}, "token refresh",
        )
        logger.debug("RefreshToken status: %s", status)
        if status == 401:
            raise AcquisitionError("Refresh token expired or invalid")
        if not 200 <= status < 300:
            raise AcquisitionError(f"Auth service token refresh failed: {status}")
        return self._parse_tokens(payload, "token refresh")
