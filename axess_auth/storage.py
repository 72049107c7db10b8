"""Account and credential storage adapters.

The account records themselves belong to the surrounding application. The
ceremony engine only reads identities and appends to, updates or prunes
their credential lists through the :class:`AccountStore` interface.
"""
from __future__ import annotations

import json
import logging
import os
import shutil
import tempfile
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional

from .errors import CredentialStoreError
from .models import Credential, Identity, normalize_lookup_key

__all__ = [
    "AccountStore",
    "DuplicateCredential",
    "InMemoryAccountStore",
    "JsonFileAccountStore",
]

LOGGER = logging.getLogger("axess_auth.storage")


class DuplicateCredential(CredentialStoreError):
    """Raised when a credential id is already bound to some identity."""


class AccountStore(ABC):
    """Read identities and maintain their bound credentials.

    ``locked(identity_id)`` yields a re-entrant lock scoped to one identity;
    every mutating method takes it as well, so readers never observe a
    half-applied append or counter update.
    """

    def __init__(self) -> None:
        self._locks: Dict[str, threading.RLock] = {}
        self._locks_guard = threading.Lock()
        self._bind_lock = threading.Lock()

    @contextmanager
    def locked(self, identity_id: str) -> Iterator[None]:
        with self._locks_guard:
            lock = self._locks.setdefault(identity_id, threading.RLock())
        with lock:
            yield

    @abstractmethod
    def find_identity(self, lookup_key: str) -> Optional[Identity]:
        """Resolve an identity by its contact address."""

    @abstractmethod
    def get_identity(self, identity_id: str) -> Optional[Identity]:
        """Resolve an identity by its stable identifier."""

    @abstractmethod
    def _load_credentials(self, identity_id: str) -> List[Credential]:
        ...

    @abstractmethod
    def _save_credentials(self, identity_id: str, credentials: List[Credential]) -> None:
        ...

    @abstractmethod
    def _owner_of(self, credential_id: bytes) -> Optional[str]:
        """Return the identity id a credential id is bound to, if any."""

    def list_credentials(self, identity_id: str) -> List[Credential]:
        with self.locked(identity_id):
            return list(self._load_credentials(identity_id))

    def append_credential(self, identity_id: str, credential: Credential) -> None:
        # Uniqueness spans identities, so the check and the write share one lock.
        with self._bind_lock, self.locked(identity_id):
            owner = self._owner_of(credential.credential_id)
            if owner is not None:
                raise DuplicateCredential(
                    f"credential {credential.credential_id_b64} is already bound"
                )
            credentials = self._load_credentials(identity_id)
            credentials.append(credential)
            self._save_credentials(identity_id, credentials)
        LOGGER.info("Bound credential %s to %s", credential.credential_id_b64, identity_id)

    def update_counter(self, identity_id: str, credential_id: bytes, new_counter: int) -> None:
        with self.locked(identity_id):
            credentials = self._load_credentials(identity_id)
            for index, credential in enumerate(credentials):
                if credential.credential_id == credential_id:
                    credentials[index] = credential.with_counter(new_counter)
                    break
            else:
                raise CredentialStoreError("credential is not bound to this identity")
            self._save_credentials(identity_id, credentials)

    def remove_credential(self, identity_id: str, credential_id: bytes) -> bool:
        with self.locked(identity_id):
            credentials = self._load_credentials(identity_id)
            remaining = [c for c in credentials if c.credential_id != credential_id]
            if len(remaining) == len(credentials):
                return False
            self._save_credentials(identity_id, remaining)
        return True


class InMemoryAccountStore(AccountStore):
    """Store used by tests and single-process demos."""

    def __init__(self) -> None:
        super().__init__()
        self._identities: Dict[str, Identity] = {}
        self._by_email: Dict[str, str] = {}
        self._owners: Dict[bytes, str] = {}

    def add_identity(self, identity: Identity) -> Identity:
        identity.email = normalize_lookup_key(identity.email)
        self._identities[identity.id] = identity
        self._by_email[identity.email] = identity.id
        for credential in identity.credentials:
            self._owners[credential.credential_id] = identity.id
        return identity

    def find_identity(self, lookup_key: str) -> Optional[Identity]:
        identity_id = self._by_email.get(normalize_lookup_key(lookup_key))
        if identity_id is None:
            return None
        return self.get_identity(identity_id)

    def get_identity(self, identity_id: str) -> Optional[Identity]:
        identity = self._identities.get(identity_id)
        if identity is None:
            return None
        with self.locked(identity_id):
            return Identity(
                id=identity.id,
                email=identity.email,
                display_name=identity.display_name,
                role=identity.role,
                status=identity.status,
                credentials=list(identity.credentials),
            )

    def _load_credentials(self, identity_id: str) -> List[Credential]:
        identity = self._identities.get(identity_id)
        if identity is None:
            raise CredentialStoreError(f"unknown identity {identity_id}")
        return list(identity.credentials)

    def _save_credentials(self, identity_id: str, credentials: List[Credential]) -> None:
        identity = self._identities[identity_id]
        for credential in identity.credentials:
            self._owners.pop(credential.credential_id, None)
        identity.credentials = list(credentials)
        for credential in credentials:
            self._owners[credential.credential_id] = identity_id

    def _owner_of(self, credential_id: bytes) -> Optional[str]:
        return self._owners.get(credential_id)


class JsonFileAccountStore(AccountStore):
    """Accounts in ``accounts.json``, credentials in one file per identity."""

    ACCOUNTS_FILENAME = "accounts.json"

    def __init__(self, directory: str) -> None:
        super().__init__()
        self.directory = directory
        self._accounts_lock = threading.Lock()

    def _credential_path(self, identity_id: str) -> str:
        return os.path.join(self.directory, f"{identity_id}_credential_data.json")

    def _accounts_path(self) -> str:
        return os.path.join(self.directory, self.ACCOUNTS_FILENAME)

    def _read_json(self, path: str, default: Any) -> Any:
        try:
            with open(path, "r", encoding="utf-8") as handle:
                return json.load(handle)
        except FileNotFoundError:
            return default
        except (OSError, ValueError) as exc:
            raise CredentialStoreError(f"unable to read {path}: {exc}") from exc

    def _write_json(self, path: str, payload: Any) -> None:
        try:
            os.makedirs(self.directory, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                "w", encoding="utf-8", dir=self.directory, delete=False
            ) as temp_file:
                json.dump(payload, temp_file, indent=2, sort_keys=True)
                temp_file.write("\n")
                temp_path = temp_file.name
            shutil.move(temp_path, path)
        except OSError as exc:
            raise CredentialStoreError(f"unable to write {path}: {exc}") from exc

    def _accounts(self) -> List[Dict[str, Any]]:
        accounts = self._read_json(self._accounts_path(), [])
        if not isinstance(accounts, list):
            raise CredentialStoreError("accounts file must contain a list")
        return accounts

    def add_identity(self, identity: Identity) -> Identity:
        identity.email = normalize_lookup_key(identity.email)
        with self._accounts_lock:
            accounts = [a for a in self._accounts() if a.get("id") != identity.id]
            if any(normalize_lookup_key(a.get("email")) == identity.email for a in accounts):
                raise CredentialStoreError(f"e-mail {identity.email} is already registered")
            accounts.append(identity.to_record())
            self._write_json(self._accounts_path(), accounts)
        if identity.credentials:
            with self.locked(identity.id):
                self._save_credentials(identity.id, list(identity.credentials))
        return identity

    def find_identity(self, lookup_key: str) -> Optional[Identity]:
        key = normalize_lookup_key(lookup_key)
        if not key:
            return None
        for record in self._accounts():
            if normalize_lookup_key(record.get("email")) == key:
                return self._hydrate(record)
        return None

    def get_identity(self, identity_id: str) -> Optional[Identity]:
        for record in self._accounts():
            if str(record.get("id")) == identity_id:
                return self._hydrate(record)
        return None

    def _hydrate(self, record: Dict[str, Any]) -> Identity:
        identity_id = str(record["id"])
        return Identity.from_record(record, self.list_credentials(identity_id))

    def _load_credentials(self, identity_id: str) -> List[Credential]:
        raw = self._read_json(self._credential_path(identity_id), [])
        try:
            return [Credential.from_dict(entry) for entry in raw]
        except (KeyError, TypeError, ValueError) as exc:
            raise CredentialStoreError(f"corrupt credential data for {identity_id}") from exc

    def _save_credentials(self, identity_id: str, credentials: List[Credential]) -> None:
        self._write_json(
            self._credential_path(identity_id),
            [credential.to_dict() for credential in credentials],
        )

    def _owner_of(self, credential_id: bytes) -> Optional[str]:
        for record in self._accounts():
            identity_id = str(record["id"])
            for credential in self._load_credentials(identity_id):
                if credential.credential_id == credential_id:
                    return identity_id
        return None
