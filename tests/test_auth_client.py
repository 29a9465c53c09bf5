"""
Tests for AuthServiceClient against a local aiohttp test server.
"""
import base64
import hashlib

import pytest
from aiohttp import web
from yarl import URL

from kirohub_vault.acquire.models import TokenSet
from kirohub_vault.auth.client import AuthServiceClient, generate_pkce
from kirohub_vault.exceptions import AcquisitionError
from kirohub_vault.vault.config import VaultConfig

TOKENS = {
    "accessToken": "new-access",
    "refreshToken": "new-refresh",
    "expiresIn": 1800,
    "profileArn": "arn:aws:codewhisperer:profile/abc",
    "unrelated": "ignored",
}


class AuthServiceStub:
    """Minimal auth service: records request bodies, status is settable."""

    def __init__(self):
        self.status = 200
        self.bodies = []
        self.user_agents = []

    async def _reply(self, request):
        self.bodies.append(await request.json())
        self.user_agents.append(request.headers.get("User-Agent"))
        if self.status != 200:
            return web.json_response({"message": "token=leaked"}, status=self.status)
        return web.json_response(TOKENS)

    async def garbage(self, request):
        return web.Response(text="<html>not json</html>")

    def app(self):
        app = web.Application()
        app.router.add_post("/refreshToken", self._reply)
        app.router.add_post("/oauth/token", self._reply)
        app.router.add_post("/broken/refreshToken", self.garbage)
        return app


@pytest.fixture
def stub():
    return AuthServiceStub()


@pytest.fixture
async def client(aiohttp_server, stub):
    server = await aiohttp_server(stub.app())
    async with AuthServiceClient(str(server.make_url("/"))) as auth:
        yield auth


class TestPkce:

    def test_challenge_is_s256_of_verifier(self):
        verifier, challenge = generate_pkce()
        digest = hashlib.sha256(verifier.encode("ascii")).digest()
        expected = base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")
        assert challenge == expected
        assert "=" not in challenge
        assert 43 <= len(verifier) <= 128

    def test_fresh_each_call(self):
        assert generate_pkce()[0] != generate_pkce()[0]


class TestRefresh:

    async def test_success(self, client, stub):
        tokens = await client.refresh_token("old-refresh")
        assert isinstance(tokens, TokenSet)
        assert tokens.access_token == "new-access"
        assert tokens.refresh_token == "new-refresh"
        assert tokens.expires_in == 1800
        assert tokens.profile_arn == "arn:aws:codewhisperer:profile/abc"
        assert stub.bodies == [{"refreshToken": "old-refresh"}]
        assert stub.user_agents[0].startswith("KiroHubVault/")

    async def test_unauthorized_means_expired(self, client, stub):
        stub.status = 401
        with pytest.raises(AcquisitionError, match="expired or invalid"):
            await client.refresh_token("old-refresh")

    async def test_server_error_reports_status_only(self, client, stub):
        stub.status = 500
        with pytest.raises(AcquisitionError) as excinfo:
            await client.refresh_token("old-refresh")
        assert "500" in str(excinfo.value)
        assert "leaked" not in str(excinfo.value)

    async def test_unparseable_body(self, aiohttp_server, stub):
        server = await aiohttp_server(stub.app())
        async with AuthServiceClient(str(server.make_url("/broken"))) as auth:
            with pytest.raises(AcquisitionError, match="parse failed"):
                await auth.refresh_token("old-refresh")

    async def test_connection_failure(self, unused_tcp_port):
        async with AuthServiceClient(f"http://127.0.0.1:{unused_tcp_port}") as auth:
            with pytest.raises(AcquisitionError, match="request failed"):
                await auth.refresh_token("old-refresh")


class TestCreateToken:

    async def test_sends_snake_case_body(self, client, stub):
        tokens = await client.create_token(
            "auth-code", "verifier", "kiro://kiro.kiroAgent/authenticate-success",
            invitation_code="INVITE",
        )
        assert tokens.access_token == "new-access"
        assert stub.bodies == [{
            "code": "auth-code",
            "code_verifier": "verifier",
            "redirect_uri": "kiro://kiro.kiroAgent/authenticate-success",
            "invitation_code": "INVITE",
        }]

    async def test_failure(self, client, stub):
        stub.status = 400
        with pytest.raises(AcquisitionError, match="token creation failed: 400"):
            await client.create_token("auth-code", "verifier", "kiro://x")


class TestLogin:

    def test_login_url_query(self):
        auth = AuthServiceClient("https://auth.example.test/")
        url = URL(auth.login_url("Google", "kiro://cb", "chal", "st:at:e"))
        assert url.host == "auth.example.test"
        assert url.path == "/login"
        assert dict(url.query) == {
            "idp": "Google",
            "redirect_uri": "kiro://cb",
            "code_challenge": "chal",
            "code_challenge_method": "S256",
            "state": "st:at:e",
        }

    async def test_opens_browser(self):
        opened = []

        def opener(url):
            opened.append(url)
            return True

        async with AuthServiceClient("https://auth.example.test", opener=opener) as auth:
            url = await auth.login("Github", "kiro://cb", "chal", "state")
        assert opened == [url]
        assert URL(url).query["idp"] == "Github"

    async def test_browser_unavailable(self):
        async with AuthServiceClient("https://auth.example.test", opener=lambda url: False) as auth:
            with pytest.raises(AcquisitionError, match="browser"):
                await auth.login("Google", "kiro://cb", "chal", "state")

    def test_from_config(self):
        config = VaultConfig(auth_endpoint="https://auth.example.test", request_timeout=3)
        auth = AuthServiceClient.from_config(config)
        assert str(auth.endpoint) == "https://auth.example.test"
        assert auth._timeout.total == 3
