import pytest
from fido2.utils import websafe_decode

from axess_auth.ceremony import CeremonyEngine, create_fido_server
from axess_auth.challenges import InMemoryChallengeCache
from axess_auth.models import Identity
from axess_auth.sessions import SessionIssuer
from axess_auth.storage import InMemoryAccountStore

from .software_authenticator import ORIGIN, RP_ID, SoftwareAuthenticator

JWT_SECRET = "test-secret-with-enough-entropy-0123456789"


@pytest.fixture
def store():
    accounts = InMemoryAccountStore()
    accounts.add_identity(Identity(id="u1", email="u1@example.com", display_name="User One"))
    accounts.add_identity(
        Identity(id="u2", email="u2@example.com", display_name="User Two", role="guard")
    )
    accounts.add_identity(
        Identity(id="p1", email="pending@example.com", display_name="Pending", status="pending")
    )
    return accounts


@pytest.fixture
def challenges():
    return InMemoryChallengeCache()


@pytest.fixture
def sessions():
    return SessionIssuer(JWT_SECRET)


@pytest.fixture
def fido_server():
    return create_fido_server(rp_id=RP_ID, rp_name="aXess", origin=ORIGIN, timeout_ms=60000)


@pytest.fixture
def engine(fido_server, store, challenges, sessions):
    return CeremonyEngine(fido_server, store, challenges, sessions)


@pytest.fixture
def authenticator():
    return SoftwareAuthenticator()


@pytest.fixture
def register(engine, authenticator):
    """Bind a fresh credential to an identity and return its id."""

    def _register(lookup_key="u1@example.com", counter=0, credential_id=None):
        started = engine.registration_start(lookup_key)
        response = authenticator.make_credential(
            started.options, credential_id=credential_id, counter=counter
        )
        engine.registration_finish(started.identity_id, response)
        return websafe_decode(response["rawId"])

    return _register
