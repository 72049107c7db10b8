"""Seed the JSON account store with accounts that can bind authenticators."""
from __future__ import annotations

import argparse
import json
import logging
import sys
import uuid
from typing import List, NoReturn, Optional, Sequence

from axess_auth.config import app
from axess_auth.errors import CredentialStoreError
from axess_auth.models import ROLES, Identity
from axess_auth.storage import JsonFileAccountStore

DEFAULT_ACCOUNTS = [
    {"email": "admin@axess.local", "displayName": "aXess Admin", "role": "admin"},
    {"email": "guard@axess.local", "displayName": "Gate Guard", "role": "guard"},
    {"email": "student@axess.local", "displayName": "Demo Student", "role": "user"},
]


def _configure_logging() -> logging.Logger:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    return logging.getLogger("axess-seed")


def _parse_args(argv: Optional[Sequence[str]]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument(
        "--directory",
        default=app.config["AXESS_CREDENTIAL_STORE_DIR"],
        help="Account store directory (default: %(default)s)",
    )
    parser.add_argument(
        "--accounts",
        help="JSON file holding a list of {email, displayName, role, status} objects",
    )
    return parser.parse_args(argv)


def _load_accounts(path: Optional[str]) -> List[dict]:
    if not path:
        return DEFAULT_ACCOUNTS
    with open(path, "r", encoding="utf-8") as handle:
        accounts = json.load(handle)
    if not isinstance(accounts, list):
        raise ValueError("accounts file must contain a JSON list")
    return accounts


def main(argv: Optional[Sequence[str]] = None) -> int:
    logger = _configure_logging()
    args = _parse_args(argv)

    try:
        accounts = _load_accounts(args.accounts)
    except (OSError, ValueError) as exc:
        logger.error("Unable to read accounts: %s", exc)
        return 1

    store = JsonFileAccountStore(args.directory)
    created = 0
    for entry in accounts:
        role = entry.get("role") or "user"
        if role not in ROLES:
            logger.error("Skipping %s: unknown role %r", entry.get("email"), role)
            continue
        if store.find_identity(entry.get("email", "")) is not None:
            logger.info("Account %s already exists.", entry.get("email"))
            continue

        identity = Identity(
            id=entry.get("id") or uuid.uuid4().hex,
            email=entry["email"],
            display_name=entry.get("displayName") or entry["email"],
            role=role,
            status=entry.get("status") or "approved",
        )
        try:
            store.add_identity(identity)
        except CredentialStoreError as exc:
            logger.error("Failed to store %s: %s", identity.email, exc)
            return 1
        created += 1
        logger.info("Created %s account %s (%s).", identity.role, identity.email, identity.id)

    logger.info("Seeded %d account(s) into %s.", created, args.directory)
    return 0


def run() -> NoReturn:
    sys.exit(main())


if __name__ == "__main__":  # pragma: no cover - CLI execution
    run()
