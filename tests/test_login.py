"""
Tests for LoginFlow and AppContext wiring, with fake network collaborators.
"""
import asyncio

import pytest
from yarl import URL

from kirohub_vault.acquire.models import TokenSet, UsageLimits
from kirohub_vault.app import AppContext
from kirohub_vault.auth.callback import CallbackCoordinator
from kirohub_vault.auth.login import LoginFlow
from kirohub_vault.exceptions import (
    AccountBannedError,
    AcquisitionError,
    CallbackTimeoutError,
    ProviderError,
)
from kirohub_vault.vault.config import VaultConfig
from kirohub_vault.vault.crypto import CIPHER_BACKEND
from kirohub_vault.vault.records import PROVIDER_GITHUB, STATUS_BANNED, STATUS_NORMAL

from .conftest import MACHINE_ID


class FakeAuthClient:
    """Plays the browser: answers ``login`` by firing the deep link."""

    def __init__(self, coordinator, reply=None, fail_login=False):
        self.coordinator = coordinator
        self.reply = reply
        self.fail_login = fail_login
        self.calls = []

    async def login(self, provider, redirect_uri, code_challenge, state):
        self.calls.append(("login", provider, code_challenge, state))
        if self.fail_login:
            raise AcquisitionError("Could not open a browser for login")
        params = self.reply(state) if self.reply else {"code": "auth-code", "state": state}
        if params is not None:
            url = URL(redirect_uri).with_query(params)
            asyncio.get_running_loop().call_soon(
                self.coordinator.handle_deep_link, str(url),
            )
        return "https://auth.example.test/login"

    async def create_token(self, code, code_verifier, redirect_uri, invitation_code=None):
        self.calls.append(("create_token", code, code_verifier, invitation_code))
        return TokenSet(
            access_token="login-access",
            refresh_token="login-refresh",
            profile_arn="arn:aws:codewhisperer:profile/login",
        )


class FakeUsage:

    def __init__(self, email="octo@github.example", banned=False):
        self.email = email
        self.banned = banned

    async def get_usage_limits(self, access_token):
        if self.banned:
            raise AccountBannedError()
        return UsageLimits.model_validate({"userInfo": {"email": self.email, "userId": "u-1"}})


@pytest.fixture
def coordinator():
    return CallbackCoordinator(machine_id=MACHINE_ID, timeout=1)


def make_flow(vault, coordinator, usage=None, **client_kwargs):
    client = FakeAuthClient(coordinator, **client_kwargs)
    return LoginFlow(vault, coordinator, client, usage or FakeUsage()), client


class TestLoginFlow:

    async def test_creates_account(self, vault, coordinator):
        flow, client = make_flow(vault, coordinator)
        stored, created = await flow.login(PROVIDER_GITHUB, invitation_code="INV")

        assert created is True
        assert stored.email == "octo@github.example"
        assert stored.provider == PROVIDER_GITHUB
        assert stored.refresh_token == "login-refresh"
        assert stored.status == STATUS_NORMAL
        assert [a.id for a in vault.list_accounts()] == [stored.id]
        assert not coordinator.has_pending

        login_call, token_call = client.calls
        assert token_call[1] == "auth-code"
        assert token_call[3] == "INV"
        assert login_call[3].count(":") == 2

    async def test_second_login_updates(self, vault, coordinator):
        flow, _ = make_flow(vault, coordinator)
        first, _ = await flow.login(PROVIDER_GITHUB)
        second, created = await flow.login(PROVIDER_GITHUB)
        assert created is False
        assert second.id == first.id
        assert len(vault) == 1

    async def test_banned_account_stored(self, vault, coordinator):
        flow, _ = make_flow(vault, coordinator, usage=FakeUsage(banned=True))
        stored, _ = await flow.login("Google")
        assert stored.status == STATUS_BANNED

    async def test_provider_error_stores_nothing(self, vault, coordinator):
        flow, client = make_flow(
            vault, coordinator,
            reply=lambda state: {"error": "access_denied", "state": state},
        )
        with pytest.raises(ProviderError):
            await flow.login("Google")
        assert len(vault) == 0
        assert [c[0] for c in client.calls] == ["login"]

    async def test_browser_failure_frees_slot(self, vault, coordinator):
        flow, _ = make_flow(vault, coordinator, fail_login=True)
        with pytest.raises(AcquisitionError):
            await flow.login("Google")
        assert not coordinator.has_pending

    async def test_no_callback_times_out(self, vault, coordinator):
        flow, _ = make_flow(vault, coordinator, reply=lambda state: None)
        with pytest.raises(CallbackTimeoutError):
            await flow.login("Google")
        assert not coordinator.has_pending
        assert len(vault) == 0


class TestAppContext:

    async def test_wiring_from_env(self, monkeypatch, tmp_path):
        monkeypatch.setenv("KIROHUB_VAULT_PATH", str(tmp_path / "accounts.json"))
        monkeypatch.setenv("KIROHUB_BATCH_CONCURRENCY", "7")
        app = AppContext.from_env()
        try:
            assert app.vault.path == tmp_path / "accounts.json"
            assert app.coordinator.redirect_uri == app.config.redirect_uri
            assert app.handle_deep_link("kiro://x?code=c&state=s") is False

            acquirer = app.batch_acquirer(idc=None, usage=FakeUsage())
            assert acquirer.concurrency == 7
            assert acquirer.social is app.client
            assert app.login_flow(FakeUsage()).vault is app.vault
        finally:
            await app.close()

    def test_explicit_collaborators(self, vault, coordinator):
        app = AppContext(VaultConfig(), vault=vault, coordinator=coordinator)
        assert app.vault is vault
        assert app.coordinator is coordinator

    def test_cipher_mismatch_rejected(self, vault, coordinator):
        other = "aesgcm" if CIPHER_BACKEND == "chacha20" else "chacha20"
        with pytest.raises(ValueError, match="KIROHUB_CIPHER_BACKEND"):
            AppContext(VaultConfig(cipher_backend=other), vault=vault, coordinator=coordinator)
