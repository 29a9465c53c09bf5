"""
AppContext — the process-wide owner of the vault and the callback slot.

Built once at startup and passed to both the login initiator and the
deep-link handler; nothing here is a module-level global.
"""
import logging
from typing import Optional

from .acquire.batch import BatchAcquirer
from .acquire.models import IdcTokenRefresher, UsageProbe
from .auth.callback import CallbackCoordinator
from .auth.client import AuthServiceClient
from .auth.login import LoginFlow
from .vault.config import VaultConfig
from .vault.crypto import CIPHER_BACKEND
from .vault.device import get_machine_id
from .vault.store import AccountVault

logger = logging.getLogger("kirohub.vault")


class AppContext:
    """Vault, callback coordinator and auth client for one process."""

    def __init__(
        self,
        config: VaultConfig,
        vault: Optional[AccountVault] = None,
        coordinator: Optional[CallbackCoordinator] = None,
        client: Optional[AuthServiceClient] = None,
    ):
        if config.cipher_backend != CIPHER_BACKEND:
            raise ValueError(
                f"cipher_backend {config.cipher_backend!r} does not match the "
                f"process cipher {CIPHER_BACKEND!r}; set KIROHUB_CIPHER_BACKEND instead"
            )
        self.config = config
        machine_id = config.machine_id or get_machine_id()
        self.vault = vault or AccountVault.open(
            config.vault_path,
            machine_id=machine_id,
            iterations=config.pbkdf2_iterations,
        )
        self.coordinator = coordinator or CallbackCoordinator(
            machine_id=machine_id,
            redirect_uri=config.redirect_uri,
            timeout=config.callback_timeout,
            state_validity=config.state_validity,
        )
        self.client = client or AuthServiceClient.from_config(config)

    @classmethod
    def from_env(cls) -> "AppContext":
        return cls(VaultConfig.from_env())

    async def close(self) -> None:
        await self.client.close()

    def handle_deep_link(self, url: str) -> bool:
        """Entry point for the OS deep-link handler."""
        return self.coordinator.handle_deep_link(url)

    def login_flow(self, usage: UsageProbe) -> LoginFlow:
        return LoginFlow(self.vault, self.coordinator, self.client, usage)

    def batch_acquirer(self, idc: IdcTokenRefresher, usage: UsageProbe) -> BatchAcquirer:
        return BatchAcquirer(
            self.vault,
            social=self.client,
            idc=idc,
            usage=usage,
            concurrency=self.config.batch_concurrency,
        )
