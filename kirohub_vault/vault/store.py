"""
AccountVault — File-backed, device-encrypted account store.

Provides the public API for the vault:
- ``AccountVault.open(path)``: load (V2, or legacy V1 migrated on next save)
- ``list_accounts()`` / ``get(id)``: read decrypted accounts
- ``add()`` / ``update()`` / ``upsert()`` / ``merge_many()``: mutate and save
- ``delete(id)`` / ``delete_many(ids)``: remove and save if anything changed
- ``import_plaintext_json()`` / ``export_plaintext_json()``: move accounts
  across the process boundary as a plaintext camelCase array

Every mutation rewrites the whole file with every secret re-encrypted under
a fresh nonce. One lock guards the in-memory list; an exception escaping a
critical section poisons the vault and later calls raise
``VaultUnavailableError``.

Security Note:
    Never log plaintext or ciphertext values. Only log account ids, emails
    and counts.
"""
import os
import shutil
import logging
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterable, Iterator, Optional

import orjson
from pydantic import TypeAdapter, ValidationError

from .config import VaultConfig
from .crypto import PBKDF2_ITERATIONS, derive_key
from .device import get_machine_id
from .records import Account, SecureAccount, is_encrypted_form
from ..exceptions import CryptoError, FormatError, VaultUnavailableError

logger = logging.getLogger("kirohub.vault")

_ACCOUNT_LIST = TypeAdapter(list[Account])

FILE_MODE = 0o600


class AccountVault:
    """Ordered collection of accounts persisted to one encrypted JSON file."""

    def __init__(
        self,
        path: Path,
        machine_id: Optional[str] = None,
        iterations: int = PBKDF2_ITERATIONS,
        accounts: Optional[Iterable[Account]] = None,
    ):
        self.path = Path(path)
        self._machine_id = machine_id
        self._iterations = iterations
        self._accounts: list[Account] = list(accounts or [])
        self._lock = threading.Lock()
        self._poisoned = False
        self.load_error: Optional[str] = None

    def __len__(self) -> int:
        return len(self._accounts)

    def __repr__(self) -> str:
        return f"<AccountVault path={str(self.path)!r} accounts={len(self._accounts)}>"

    # ------------------------------------------------------------------
    # Factories
    # ------------------------------------------------------------------

    @classmethod
    def open(
        cls,
        path: Path,
        machine_id: Optional[str] = None,
        iterations: int = PBKDF2_ITERATIONS,
    ) -> "AccountVault":
        """Create a vault and load its file. Never raises on bad content."""
        vault = cls(path, machine_id=machine_id, iterations=iterations)
        vault.reload()
        return vault

    @classmethod
    def from_config(cls, config: VaultConfig) -> "AccountVault":
        return cls.open(
            config.vault_path,
            machine_id=config.machine_id,
            iterations=config.pbkdf2_iterations,
        )

    # ------------------------------------------------------------------
    # Locking
    # ------------------------------------------------------------------

    @property
    def poisoned(self) -> bool:
        return self._poisoned

    @contextmanager
    def locked(self) -> Iterator[list[Account]]:
        """Hold the vault lock and yield the live account list.

        Raises:
            VaultUnavailableError: If an earlier critical section failed.
        """
        with self._lock:
            if self._poisoned:
                raise VaultUnavailableError(
                    "Vault is unavailable after a failed operation"
                )
            try:
                yield self._accounts
            except BaseException:
                self._poisoned = True
                logger.error("Vault critical section failed; vault poisoned")
                raise

    # ------------------------------------------------------------------
    # Key helper
    # ------------------------------------------------------------------

    def _device_key(self) -> bytes:
        machine_id = self._machine_id or get_machine_id()
        return derive_key(machine_id, self._iterations)

    # ------------------------------------------------------------------
    # Load
    # ------------------------------------------------------------------

    def reload(self) -> None:
        """Replace in-memory accounts with the file contents."""
        accounts = self._read_file()
        with self.locked() as current:
            current[:] = accounts
        logger.info(
            "Vault loaded from %s: %d account(s)", self.path, len(accounts),
        )

    def _read_file(self) -> list[Account]:
        self.load_error = None
        try:
            content = self.path.read_bytes()
        except FileNotFoundError:
            return []
        except OSError as err:
            return self._degrade(FormatError(f"Cannot read vault file: {err}"))

        try:
            data = orjson.loads(content)
        except orjson.JSONDecodeError as err:
            return self._degrade(FormatError(f"Vault file is not JSON: {err}"))

        if isinstance(data, list) and (
            not data or any(is_encrypted_form(record) for record in data)
        ):
            return self._decrypt_all(self._parse_v2(data))

        try:
            legacy = _ACCOUNT_LIST.validate_python(data)
        except ValidationError as err:
            return self._degrade(
                FormatError(
                    f"Unrecognised vault format ({err.error_count()} validation error(s))"
                )
            )
        logger.info(
            "Detected legacy plaintext vault (%d account(s)); "
            "it will be encrypted on next save", len(legacy),
        )
        return legacy

    def _parse_v2(self, data: list[Any]) -> list[SecureAccount]:
        """Validate a V2 array record by record, skipping malformed ones."""
        secure_accounts: list[SecureAccount] = []
        skipped = 0
        for position, record in enumerate(data):
            try:
                secure_accounts.append(SecureAccount.model_validate(record))
            except ValidationError as err:
                skipped += 1
                logger.error(
                    "Skipping malformed vault record #%d id=%s: %d validation error(s)",
                    position,
                    record.get("id") if isinstance(record, dict) else None,
                    err.error_count(),
                )
        if skipped:
            self._preserve_copy()
            self.load_error = f"Skipped {skipped} malformed record(s)"
        return secure_accounts

    def _decrypt_all(self, secure_accounts: list[SecureAccount]) -> list[Account]:
        key = self._device_key()
        accounts: list[Account] = []
        for secure in secure_accounts:
            try:
                accounts.append(Account.from_secure(secure, key))
            except CryptoError as err:
                logger.error(
                    "Failed to decrypt account id=%s email=%s: %s",
                    secure.id, secure.email, err,
                )
        return accounts

    def _degrade(self, err: FormatError) -> list[Account]:
        """Fall back to an empty vault, keeping a copy of the bad file."""
        self.load_error = str(err)
        logger.error("Vault load failed, using empty vault: %s", err)
        self._preserve_copy()
        return []

    def _preserve_copy(self) -> None:
        """Copy the current file to ``<name>.corrupt`` before it is rewritten."""
        if not self.path.exists():
            return
        backup = self.path.with_name(self.path.name + ".corrupt")
        try:
            shutil.copy2(self.path, backup)
            logger.warning("Unreadable vault content preserved at %s", backup)
        except OSError as copy_err:
            logger.error("Could not preserve vault file: %s", copy_err)

    # ------------------------------------------------------------------
    # Save
    # ------------------------------------------------------------------

    def save(self) -> bool:
        """Encrypt and persist the whole vault. Returns False on I/O failure."""
        with self.locked():
            return self._save_locked()

    def _save_locked(self) -> bool:
        key = self._device_key()
        records: list[dict[str, Any]] = []
        for account in self._accounts:
            try:
                records.append(account.to_secure(key).to_disk())
            except CryptoError as err:
                logger.error(
                    "Failed to encrypt account id=%s email=%s: %s",
                    account.id, account.email, err,
                )
        payload = orjson.dumps(records, option=orjson.OPT_INDENT_2)
        try:
            self._write_atomic(payload)
        except OSError as err:
            logger.error("Failed to write vault file %s: %s", self.path, err)
            return False
        logger.debug("Vault saved: %d account(s)", len(records))
        return True

    def _write_atomic(self, payload: bytes) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        try:
            fd = os.open(tmp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, FILE_MODE)
            with os.fdopen(fd, "wb") as f:
                f.write(payload)
            os.replace(tmp_path, self.path)
        except OSError:
            if tmp_path.exists():
                tmp_path.unlink()
            raise
        if os.name == "posix":
            os.chmod(self.path, FILE_MODE)

    # ------------------------------------------------------------------
    # Read API
    # ------------------------------------------------------------------

    def list_accounts(self) -> list[Account]:
        """Return copies of all accounts in vault order."""
        with self.locked() as accounts:
            return [a.model_copy(deep=True) for a in accounts]

    def get(self, account_id: str) -> Optional[Account]:
        with self.locked() as accounts:
            for account in accounts:
                if account.id == account_id:
                    return account.model_copy(deep=True)
        return None

    # ------------------------------------------------------------------
    # Mutation API
    # ------------------------------------------------------------------

    def add(self, account: Account) -> Account:
        """Insert a new account at the front and save.

        Raises:
            ValueError: If an account with the same id already exists.
        """
        with self.locked() as accounts:
            duplicate = any(a.id == account.id for a in accounts)
            if not duplicate:
                accounts.insert(0, account)
                self._save_locked()
        if duplicate:
            raise ValueError(f"Account id already exists: {account.id}")
        return account

    def update(self, account_id: str, **changes: Any) -> Optional[Account]:
        """Overwrite fields of one account in place and save.

        Returns:
            The updated account, or None if the id is unknown.

        Raises:
            ValueError: If ``id`` or an unknown field is passed.
        """
        if "id" in changes:
            raise ValueError("Account id is immutable")
        unknown = set(changes) - set(Account.model_fields)
        if unknown:
            raise ValueError(f"Unknown account field(s): {sorted(unknown)}")
        with self.locked() as accounts:
            for account in accounts:
                if account.id == account_id:
                    for name, value in changes.items():
                        setattr(account, name, value)
                    self._save_locked()
                    return account.model_copy(deep=True)
        return None

    @staticmethod
    def _merge_locked(accounts: list[Account], incoming: Account) -> tuple[Account, bool]:
        for existing in accounts:
            if existing.dedup_key == incoming.dedup_key:
                existing.merge_from(incoming)
                return existing, False
        accounts.insert(0, incoming)
        return incoming, True

    def upsert(self, account: Account) -> tuple[Account, bool]:
        """Merge one account by (email, provider) and save.

        Returns:
            (stored account, True if newly inserted).
        """
        with self.locked() as accounts:
            stored, created = self._merge_locked(accounts, account)
            self._save_locked()
            return stored.model_copy(deep=True), created

    def merge_many(self, incoming: Iterable[Account]) -> tuple[int, int]:
        """Merge a batch under one lock acquisition with exactly one save.

        Later entries win over earlier ones sharing the same (email, provider).

        Returns:
            (created, updated) counts.
        """
        incoming = list(incoming)
        if not incoming:
            return 0, 0
        created = updated = 0
        with self.locked() as accounts:
            for account in incoming:
                _, is_new = self._merge_locked(accounts, account)
                if is_new:
                    created += 1
                else:
                    updated += 1
            self._save_locked()
        logger.info("Merged accounts: %d created, %d updated", created, updated)
        return created, updated

    def delete(self, account_id: str) -> bool:
        """Remove one account; saves only if something was removed."""
        with self.locked() as accounts:
            before = len(accounts)
            accounts[:] = [a for a in accounts if a.id != account_id]
            deleted = len(accounts) < before
            if deleted:
                self._save_locked()
        return deleted

    def delete_many(self, account_ids: Iterable[str]) -> int:
        """Remove a set of accounts with at most one save."""
        ids = set(account_ids)
        with self.locked() as accounts:
            before = len(accounts)
            accounts[:] = [a for a in accounts if a.id not in ids]
            deleted = before - len(accounts)
            if deleted:
                self._save_locked()
        return deleted

    # ------------------------------------------------------------------
    # Plaintext import / export
    # ------------------------------------------------------------------

    def import_plaintext_json(self, text: str | bytes) -> int:
        """Import a plaintext account array, skipping ids already present.

        Returns:
            Number of accounts added.

        Raises:
            FormatError: If the payload is not a valid account array.
        """
        try:
            imported = _ACCOUNT_LIST.validate_json(text)
        except ValidationError as err:
            raise FormatError(
                f"Invalid account import ({err.error_count()} validation error(s))"
            ) from err
        added = 0
        with self.locked() as accounts:
            known = {a.id for a in accounts}
            for account in imported:
                if account.id not in known:
                    accounts.append(account)
                    known.add(account.id)
                    added += 1
            if added:
                self._save_locked()
        logger.info("Imported %d of %d account(s)", added, len(imported))
        return added

    def export_plaintext_json(self) -> str:
        """Export all accounts, secrets included, as pretty camelCase JSON."""
        with self.locked() as accounts:
            data = [a.to_json_dict() for a in accounts]
        return orjson.dumps(data, option=orjson.OPT_INDENT_2).decode("utf-8")
