"""JSON-file store of registered identities, for reuse across runs."""

import json
import logging
import time
from collections.abc import Iterable
from pathlib import Path

from eth_keys.exceptions import ValidationError as KeyValidationError
from pydantic import BaseModel, ValidationError

from injector.crypto import Identity, to_shardus_address
from injector.errors import AccountStoreError

log = logging.getLogger("injector.accounts")


class StoredAccount(BaseModel):
    private_key: str
    address: str
    alias: str | None = None
    registration_tx_id: str | None = None
    registered_at: int | None = None

    @classmethod
    def from_identity(cls, identity: Identity) -> "StoredAccount":
        return cls(
            private_key=identity.private_key,
            address=identity.address,
            alias=identity.alias,
            registration_tx_id=identity.registration_tx_id,
            registered_at=identity.registered_at or int(time.time() * 1000),
        )

    def to_identity(self) -> Identity:
        try:
            identity = Identity.from_private_key(
                self.private_key,
                alias=self.alias,
                registration_tx_id=self.registration_tx_id,
                registered_at=self.registered_at,
            )
            stored_address = to_shardus_address(self.address)
        except (ValueError, TypeError, KeyValidationError) as e:
            raise AccountStoreError(f"Malformed private key for account {self.address}") from e
        if identity.address != stored_address:
            raise AccountStoreError(f"Private key does not derive stored address {self.address}")
        return identity


class AccountStoreFile(BaseModel):
    accounts: list[StoredAccount] = []
    last_updated: int = 0


class AccountStore:
    """Persisted identity pool. Unique by address; saving merges, never overwrites."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def read(self) -> AccountStoreFile:
        if not self.path.exists():
            return AccountStoreFile()
        try:
            return AccountStoreFile.model_validate_json(self.path.read_bytes())
        except ValidationError as e:
            raise AccountStoreError(f"Unreadable account store {self.path}: {e.error_count()} error(s)") from e

    def load(self, max_count: int | None = None) -> list[Identity]:
        """Up to ``max_count`` identities, in store order."""
        stored = self.read().accounts
        if max_count is not None:
            stored = stored[:max_count]
        identities = [a.to_identity() for a in stored]
        log.info("Loaded %d accounts from %s", len(identities), self.path)
        return identities

    def save(self, identities: Iterable[Identity]) -> int:
        """Merge ``identities`` into the store. Returns how many were new."""
        store = self.read()
        known = {to_shardus_address(a.address) for a in store.accounts}
        added = 0
        for identity in identities:
            if identity.address in known:
                continue
            store.accounts.append(StoredAccount.from_identity(identity))
            known.add(identity.address)
            added += 1
        store.last_updated = int(time.time() * 1000)

        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(json.dumps(store.model_dump(), indent=2))
        tmp.replace(self.path)
        log.info("Saved %d new accounts to %s (%d total)", added, self.path, len(store.accounts))
        return added

    def __len__(self) -> int:
        return len(self.read().accounts)
