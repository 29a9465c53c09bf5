"""Shared fixtures. Every test runs with a fixed machine id and a temp vault."""
import pytest

from kirohub_vault.vault.crypto import derive_key
from kirohub_vault.vault.records import Account
from kirohub_vault.vault.store import AccountVault

MACHINE_ID = "test-machine-id-12345"


@pytest.fixture(autouse=True)
def _fixed_machine_id(monkeypatch):
    """Never read the real device identifier."""
    monkeypatch.setenv("KIROHUB_MACHINE_ID", MACHINE_ID)


@pytest.fixture(scope="session")
def device_key():
    return derive_key(MACHINE_ID)


@pytest.fixture(scope="session")
def other_device_key():
    return derive_key("another-machine")


@pytest.fixture
def vault_path(tmp_path):
    return tmp_path / "kirohub" / "accounts.json"


@pytest.fixture
def vault(vault_path):
    return AccountVault.open(vault_path, machine_id=MACHINE_ID)


def make_account(email="alice@example.com", provider="Google", **fields) -> Account:
    account = Account.new(email, f"Kiro {provider} account")
    account.provider = provider
    account.access_token = "access-" + email
    account.refresh_token = "aor-refresh-" + email
    for name, value in fields.items():
        setattr(account, name, value)
    return account


@pytest.fixture
def account():
    return make_account()


@pytest.fixture
def save_calls(vault, monkeypatch):
    """Count how many times the vault persists."""
    calls = []
    original = vault._save_locked

    def counting_save():
        calls.append(1)
        return original()

    monkeypatch.setattr(vault, "_save_locked", counting_save)
    return calls
