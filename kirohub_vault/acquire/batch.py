"""
BatchAcquirer — bounded-concurrency import of many refresh tokens.

Each item is an independent task: refresh the token with the right provider,
probe usage (a ban becomes ``status = banned``, not a failure), build an
``Account``. Tasks never touch the vault. Once every task has finished, the
produced accounts are merged into the vault under one lock with one save.

Security Note:
    Never log tokens or client secrets. Item errors are truncated and
    returned to the caller; they never contain token material.
"""
import asyncio
import hashlib
import logging
from datetime import datetime, timedelta
from typing import Iterable, Optional, Union

from pydantic import ValidationError

from .models import (
    BatchImportResult,
    IdcTokenRefresher,
    ImportItem,
    ImportItemResult,
    SocialTokenRefresher,
    TokenSet,
    UsageLimits,
    UsageProbe,
)
from ..exceptions import AccountBannedError, AcquisitionError, InvalidItemError
from ..vault.config import clamp_concurrency
from ..vault.records import (
    DEFAULT_REGION,
    PROVIDER_BUILDER_ID,
    PROVIDER_GITHUB,
    PROVIDER_GOOGLE,
    STATUS_BANNED,
    STATUS_NORMAL,
    TIMESTAMP_FORMAT,
    Account,
)
from ..vault.store import AccountVault

logger = logging.getLogger("kirohub.acquire")

SOCIAL_PLACEHOLDER_EMAIL = "unknown@kiro.dev"
IDC_PLACEHOLDER_EMAIL = "builderid@kiro.dev"
IDC_START_URL = "https://view.awsapps.com/start"

# (index, result, produced account or None)
_Outcome = tuple[int, ImportItemResult, Optional[Account]]


def infer_provider(email: str) -> str:
    if "github" in email:
        return PROVIDER_GITHUB
    return PROVIDER_GOOGLE


def client_id_hash(start_url: str = IDC_START_URL) -> str:
    return hashlib.sha256(start_url.encode("utf-8")).hexdigest()


async def probe_usage(
    usage: UsageProbe, access_token: str,
) -> tuple[Optional[UsageLimits], bool]:
    """Fetch usage limits; returns (snapshot or None, banned flag)."""
    try:
        return await usage.get_usage_limits(access_token), False
    except AccountBannedError as err:
        logger.warning("Account reported banned: %s", err.reason)
        return None, True
    except AcquisitionError as err:
        logger.warning("Usage probe failed, continuing without usage data: %s", err)
        return None, False


def build_social_account(
    tokens: TokenSet,
    limits: Optional[UsageLimits],
    banned: bool,
    provider: Optional[str] = None,
) -> Account:
    """Assemble a social-login account from tokens and a usage snapshot."""
    email = (limits.email if limits else None) or SOCIAL_PLACEHOLDER_EMAIL
    idp = provider or infer_provider(email)
    account = Account.new(email, f"Kiro {idp} account")
    account.access_token = tokens.access_token
    account.refresh_token = tokens.refresh_token
    account.profile_arn = tokens.profile_arn
    account.provider = idp
    account.user_id = limits.user_id if limits else None
    account.usage_data = limits.to_raw() if limits else None
    account.status = STATUS_BANNED if banned else STATUS_NORMAL
    return account


class BatchAcquirer:
    """Runs acquisition tasks with a concurrency cap, then reconciles once."""

    def __init__(
        self,
        vault: AccountVault,
        social: SocialTokenRefresher,
        idc: IdcTokenRefresher,
        usage: UsageProbe,
        concurrency: int = 5,
    ):
        self.vault = vault
        self.social = social
        self.idc = idc
        self.usage = usage
        self.concurrency = clamp_concurrency(concurrency)

    # ------------------------------------------------------------------
    # Per-item tasks (stateless, no vault access)
    # ------------------------------------------------------------------

    async def acquire_social(self, item: ImportItem) -> Account:
        tokens = await self.social.refresh_token(item.refresh_token)
        limits, banned = await probe_usage(self.usage, tokens.access_token)
        return build_social_account(tokens, limits, banned, item.provider)

    async def acquire_idc(self, item: ImportItem) -> Account:
        region = item.region or DEFAULT_REGION
        tokens = await self.idc.refresh_idc_token(
            item.refresh_token, item.client_id, item.client_secret, region,
        )
        limits, banned = await probe_usage(self.usage, tokens.access_token)

        email = (limits.email if limits else None) or IDC_PLACEHOLDER_EMAIL
        expires_at = datetime.now() + timedelta(seconds=tokens.expires_in)

        account = Account.new(email, "Kiro BuilderId account")
        account.access_token = tokens.access_token
        account.refresh_token = tokens.refresh_token
        account.provider = PROVIDER_BUILDER_ID
        account.user_id = limits.user_id if limits else None
        account.expires_at = expires_at.strftime(TIMESTAMP_FORMAT)
        account.client_id = item.client_id
        account.client_secret = item.client_secret
        account.region = region
        account.client_id_hash = client_id_hash()
        account.id_token = tokens.id_token
        account.sso_session_id = tokens.sso_session_id
        account.usage_data = limits.to_raw() if limits else None
        account.status = STATUS_BANNED if banned else STATUS_NORMAL
        return account

    async def _run_item(
        self,
        index: int,
        item: Union[ImportItem, dict],
        semaphore: asyncio.Semaphore,
    ) -> _Outcome:
        async with semaphore:
            try:
                if not isinstance(item, ImportItem):
                    item = ImportItem.model_validate(item)
                if item.is_idc:
                    account = await self.acquire_idc(item)
                else:
                    account = await self.acquire_social(item)
            except ValidationError as err:
                logger.warning("Import item %d rejected: %d validation error(s)", index, err.error_count())
                return index, ImportItemResult.failed(index, InvalidItemError(err)), None
            except Exception as err:  # isolated to this item
                logger.warning("Import item %d failed: %s", index, err)
                return index, ImportItemResult.failed(index, err), None
        result = ImportItemResult(index=index, success=True, email=account.email)
        return index, result, account

    # ------------------------------------------------------------------
    # Batch
    # ------------------------------------------------------------------

    async def acquire(
        self,
        items: Iterable[Union[ImportItem, dict]],
        concurrency: Optional[int] = None,
    ) -> list[_Outcome]:
        """Run every item with at most ``concurrency`` in flight.

        Returns:
            Outcomes restored to request order.
        """
        limit = clamp_concurrency(concurrency, default=self.concurrency)
        semaphore = asyncio.Semaphore(limit)
        tasks = [
            asyncio.ensure_future(self._run_item(index, item, semaphore))
            for index, item in enumerate(items)
        ]
        outcomes: list[_Outcome] = []
        for finished in asyncio.as_completed(tasks):
            outcomes.append(await finished)
        outcomes.sort(key=lambda outcome: outcome[0])
        return outcomes

    async def import_accounts(
        self,
        items: Iterable[Union[ImportItem, dict]],
        concurrency: Optional[int] = None,
    ) -> BatchImportResult:
        """Acquire all items, then merge produced accounts into the vault.

        Always returns a full per-item report; one failed item never aborts
        the batch. The vault is locked and saved exactly once, and only if
        at least one account was produced.
        """
        items = list(items)
        total = len(items)
        logger.info(
            "Starting batch import: %d item(s), concurrency %d",
            total, clamp_concurrency(concurrency, default=self.concurrency),
        )

        outcomes = await self.acquire(items, concurrency)
        results = [result for _, result, _ in outcomes]
        accounts = [account for _, _, account in outcomes if account is not None]

        if accounts:
            self.vault.merge_many(accounts)

        success_count = sum(1 for r in results if r.success)
        logger.info("Batch import completed: %d/%d success", success_count, total)
        return BatchImportResult(
            total=total,
            success_count=success_count,
            failed_count=total - success_count,
            results=results,
        )
