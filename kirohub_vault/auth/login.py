"""
Interactive login: PKCE + signed state, browser redirect, deep-link
callback, code exchange, usage probe, merge into the vault.
"""
import logging
from typing import Optional

from .callback import CallbackCoordinator
from .client import AuthServiceClient, generate_pkce
from ..acquire.batch import build_social_account, probe_usage
from ..acquire.models import UsageProbe
from ..vault.records import Account
from ..vault.store import AccountVault

logger = logging.getLogger("kirohub.auth")


class LoginFlow:
    """One browser-based login; network work happens outside the vault lock."""

    def __init__(
        self,
        vault: AccountVault,
        coordinator: CallbackCoordinator,
        client: AuthServiceClient,
        usage: UsageProbe,
    ):
        self.vault = vault
        self.coordinator = coordinator
        self.client = client
        self.usage = usage

    async def login(
        self, provider: str, invitation_code: Optional[str] = None,
    ) -> tuple[Account, bool]:
        """Run the full login for ``provider``.

        Returns:
            (stored account, True if newly created).

        Raises:
            CallbackError: The callback failed, was tampered with or timed out.
            AcquisitionError: Browser launch or token exchange failed.
        """
        verifier, challenge = generate_pkce()
        redirect_uri = self.coordinator.redirect_uri
        state, waiter = self.coordinator.register_secure()

        try:
            await self.client.login(provider, redirect_uri, challenge, state)
        except BaseException:
            waiter.cancel()
            raise
        result = await waiter.wait_for_callback()

        tokens = await self.client.create_token(
            result.code, verifier, redirect_uri, invitation_code,
        )
        limits, banned = await probe_usage(self.usage, tokens.access_token)
        account = build_social_account(tokens, limits, banned, provider)

        stored, created = self.vault.upsert(account)
        logger.info(
            "Login completed for %s (%s, %s)",
            stored.email, provider, "new" if created else "updated",
        )
        return stored, created
