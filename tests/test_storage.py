import json
import os

import pytest

from axess_auth.errors import CredentialStoreError
from axess_auth.models import Credential, Identity
from axess_auth.storage import DuplicateCredential, InMemoryAccountStore, JsonFileAccountStore


def _credential(credential_id=b"cred-1", counter=0):
    return Credential(
        credential_id=credential_id,
        public_key=b"\xa5\x01\x02\x03\x26",
        counter=counter,
        transports=("internal",),
    )


@pytest.fixture(params=["memory", "json"])
def account_store(request, tmp_path):
    if request.param == "memory":
        accounts = InMemoryAccountStore()
    else:
        accounts = JsonFileAccountStore(str(tmp_path))
    accounts.add_identity(Identity(id="u1", email="U1@Example.com", display_name="User One"))
    accounts.add_identity(Identity(id="u2", email="u2@example.com", display_name="User Two"))
    return accounts


def test_lookup_by_email_is_normalised(account_store):
    identity = account_store.find_identity("  u1@EXAMPLE.com ")
    assert identity.id == "u1"
    assert identity.email == "u1@example.com"
    assert account_store.find_identity("nobody@example.com") is None
    assert account_store.get_identity("missing") is None


def test_append_update_and_remove(account_store):
    account_store.append_credential("u1", _credential())
    account_store.append_credential("u1", _credential(b"cred-2"))

    account_store.update_counter("u1", b"cred-1", 9)
    counters = {c.credential_id: c.counter for c in account_store.list_credentials("u1")}
    assert counters == {b"cred-1": 9, b"cred-2": 0}
    assert account_store.get_identity("u1").find_credential(b"cred-1").counter == 9

    assert account_store.remove_credential("u1", b"cred-1") is True
    assert account_store.remove_credential("u1", b"cred-1") is False
    assert [c.credential_id for c in account_store.list_credentials("u1")] == [b"cred-2"]


def test_duplicate_credential_rejected_across_identities(account_store):
    account_store.append_credential("u1", _credential())

    with pytest.raises(DuplicateCredential):
        account_store.append_credential("u1", _credential())
    with pytest.raises(DuplicateCredential):
        account_store.append_credential("u2", _credential())
    assert account_store.list_credentials("u2") == []


def test_update_counter_for_unbound_credential(account_store):
    with pytest.raises(CredentialStoreError):
        account_store.update_counter("u1", b"nope", 1)


def test_removed_credential_can_be_bound_again(account_store):
    account_store.append_credential("u1", _credential())
    account_store.remove_credential("u1", b"cred-1")

    account_store.append_credential("u2", _credential())
    assert [c.credential_id for c in account_store.list_credentials("u2")] == [b"cred-1"]


def test_in_memory_store_hands_out_copies():
    accounts = InMemoryAccountStore()
    accounts.add_identity(Identity(id="u1", email="u1@example.com", display_name="User One"))

    identity = accounts.get_identity("u1")
    identity.credentials.append(_credential())
    assert accounts.list_credentials("u1") == []


class TestJsonFileAccountStore:
    def test_files_use_credential_record_layout(self, tmp_path):
        accounts = JsonFileAccountStore(str(tmp_path))
        accounts.add_identity(Identity(id="u1", email="u1@example.com", display_name="User One"))
        accounts.append_credential("u1", _credential(counter=3))

        with open(tmp_path / "u1_credential_data.json", encoding="utf-8") as handle:
            records = json.load(handle)
        assert records[0]["credentialID"] == "Y3JlZC0x"
        assert records[0]["counter"] == 3
        assert records[0]["transports"] == ["internal"]

        reopened = JsonFileAccountStore(str(tmp_path))
        (credential,) = reopened.list_credentials("u1")
        assert credential.credential_id == b"cred-1"
        assert credential.public_key == _credential().public_key
        assert credential.counter == 3

    def test_no_temporary_files_left_behind(self, tmp_path):
        accounts = JsonFileAccountStore(str(tmp_path))
        accounts.add_identity(Identity(id="u1", email="u1@example.com", display_name="User One"))
        accounts.append_credential("u1", _credential())

        assert sorted(os.listdir(tmp_path)) == ["accounts.json", "u1_credential_data.json"]

    def test_duplicate_email_rejected(self, tmp_path):
        accounts = JsonFileAccountStore(str(tmp_path))
        accounts.add_identity(Identity(id="u1", email="u1@example.com", display_name="User One"))

        with pytest.raises(CredentialStoreError):
            accounts.add_identity(Identity(id="u9", email="U1@example.com", display_name="Copy"))

    def test_corrupt_credential_file(self, tmp_path):
        accounts = JsonFileAccountStore(str(tmp_path))
        accounts.add_identity(Identity(id="u1", email="u1@example.com", display_name="User One"))
        (tmp_path / "u1_credential_data.json").write_text("{not json", encoding="utf-8")

        with pytest.raises(CredentialStoreError):
            accounts.list_credentials("u1")

    def test_credential_file_with_missing_fields(self, tmp_path):
        accounts = JsonFileAccountStore(str(tmp_path))
        accounts.add_identity(Identity(id="u1", email="u1@example.com", display_name="User One"))
        (tmp_path / "u1_credential_data.json").write_text('[{"counter": 1}]', encoding="utf-8")

        with pytest.raises(CredentialStoreError):
            accounts.get_identity("u1")

    def test_accounts_file_must_hold_a_list(self, tmp_path):
        (tmp_path / "accounts.json").write_text('{"id": "u1"}', encoding="utf-8")

        with pytest.raises(CredentialStoreError):
            JsonFileAccountStore(str(tmp_path)).find_identity("u1@example.com")

    def test_missing_directory_reads_as_empty(self, tmp_path):
        accounts = JsonFileAccountStore(str(tmp_path / "absent"))

        assert accounts.find_identity("u1@example.com") is None
