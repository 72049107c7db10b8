"""Registration and authentication ceremonies for bound authenticators.

The engine is the only component that talks to :mod:`fido2`. It issues
ceremony options, stores the outstanding challenge, verifies what the
browser sends back and keeps each credential's signature counter moving
strictly forward.
"""
from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from cryptography.exceptions import InvalidSignature
from fido2 import cbor
from fido2.cose import CoseKey
from fido2.server import Fido2Server
from fido2.webauthn import (
    AttestationConveyancePreference,
    AttestedCredentialData,
    AuthenticationResponse,
    AuthenticatorTransport,
    PublicKeyCredentialDescriptor,
    PublicKeyCredentialRpEntity,
    PublicKeyCredentialType,
    PublicKeyCredentialUserEntity,
    ResidentKeyRequirement,
    UserVerificationRequirement,
)

from .challenges import ChallengeCache
from .errors import (
    AccountNotApproved,
    CeremonyVerificationFailed,
    CredentialNotRecognized,
    MalformedCredential,
    NoCredentialsRegistered,
    NoPendingCeremony,
    NotFound,
    ReplaySuspected,
)
from .models import (
    CEREMONY_AUTHENTICATION,
    CEREMONY_REGISTRATION,
    Challenge,
    Credential,
    Identity,
    RegisteredCredential,
    decode_binary_value,
    websafe_encode,
)
from .sessions import SessionIssuer
from .storage import AccountStore, DuplicateCredential

__all__ = [
    "AuthenticationResult",
    "CeremonyEngine",
    "CeremonyStart",
    "build_rp_entity",
    "create_fido_server",
    "exact_origin_verifier",
    "extract_registered_credential",
]

LOGGER = logging.getLogger("axess_auth.ceremony")
SECURITY_LOGGER = logging.getLogger("axess_auth.security")

CHALLENGE_LENGTH_BYTES = 32
DEFAULT_ALLOW_TRANSPORTS: Tuple[str, ...] = ("internal",)
_KNOWN_TRANSPORTS = {transport.value for transport in AuthenticatorTransport}
_VERIFICATION_ERRORS = (ValueError, KeyError, TypeError, InvalidSignature)


def build_rp_entity(rp_id: str, rp_name: str) -> PublicKeyCredentialRpEntity:
    return PublicKeyCredentialRpEntity(name=rp_name, id=rp_id)


def exact_origin_verifier(expected_origin: str) -> Callable[[str], bool]:
    """Accept only the configured scheme+host+port, compared verbatim."""

    expected = expected_origin.rstrip("/")

    def verify(origin: str) -> bool:
        return isinstance(origin, str) and origin == expected

    return verify


def create_fido_server(
    *,
    rp_id: str,
    rp_name: str,
    origin: str,
    timeout_ms: Optional[int] = None,
) -> Fido2Server:
    """Instantiate a :class:`Fido2Server` bound to one RP id and one exact origin."""

    if not rp_id:
        raise ValueError("a relying party id must be configured")
    if not origin:
        raise ValueError("an expected origin must be configured")

    server = Fido2Server(
        build_rp_entity(rp_id, rp_name),
        attestation=AttestationConveyancePreference.NONE,
        verify_origin=exact_origin_verifier(origin),
    )
    server.timeout = timeout_ms
    return server


def _json_ready(value: Any) -> Any:
    if isinstance(value, (bytes, bytearray, memoryview)):
        return websafe_encode(bytes(value))
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Mapping):
        return {key: _json_ready(item) for key, item in value.items() if item is not None}
    if isinstance(value, (list, tuple)):
        return [_json_ready(item) for item in value]
    return value


def _cose_bytes(public_key: Any) -> Optional[bytes]:
    if public_key is None:
        return None
    if isinstance(public_key, Mapping):
        return cbor.encode(dict(public_key))
    try:
        return decode_binary_value(public_key)
    except ValueError:
        return None


def _binary_or_none(value: Any) -> Optional[bytes]:
    if value is None:
        return None
    try:
        return decode_binary_value(value)
    except ValueError:
        return None


def _counter_or_zero(value: Any) -> int:
    return value if isinstance(value, int) and value >= 0 else 0


def _lookup(source: Any, name: str) -> Any:
    if isinstance(source, Mapping):
        return source.get(name)
    return getattr(source, name, None)


def _nested_layout(verified: Any) -> Optional[RegisteredCredential]:
    """``credential_data`` / ``credential`` sub-structure carrying id and key."""

    nested = _lookup(verified, "credential_data")
    if nested is not None:
        id_field, key_field = "credential_id", "public_key"
    else:
        nested = _lookup(verified, "credential")
        id_field, key_field = "id", "publicKey"
    if nested is None:
        return None

    credential_id = _binary_or_none(_lookup(nested, id_field))
    public_key = _cose_bytes(_lookup(nested, key_field))
    if not credential_id or not public_key:
        return None

    counter = _lookup(verified, "counter")
    if counter is None:
        counter = _lookup(nested, "counter")
    aaguid = _binary_or_none(_lookup(nested, "aaguid")) or bytes(16)
    return RegisteredCredential(credential_id, public_key, _counter_or_zero(counter), aaguid)


def _flat_layout(verified: Any) -> Optional[RegisteredCredential]:
    """Top-level ``credentialID`` / ``credentialPublicKey`` attributes."""

    credential_id = _binary_or_none(_lookup(verified, "credentialID"))
    public_key = _cose_bytes(_lookup(verified, "credentialPublicKey"))
    if not credential_id or not public_key:
        return None
    aaguid = _binary_or_none(_lookup(verified, "aaguid")) or bytes(16)
    return RegisteredCredential(
        credential_id, public_key, _counter_or_zero(_lookup(verified, "counter")), aaguid
    )


_REGISTRATION_LAYOUTS = (_nested_layout, _flat_layout)


def extract_registered_credential(verified: Any) -> RegisteredCredential:
    """Normalise a verified registration payload into one record.

    Both the nested layout (``AuthenticatorData.credential_data`` or a
    ``credential`` mapping) and the older flat layout are accepted.
    """

    for layout in _REGISTRATION_LAYOUTS:
        registered = layout(verified)
        if registered is not None:
            return registered
    raise MalformedCredential("verified registration carries no credential id and key")


def _descriptor(credential: Credential, default_transports: Sequence[str] = ()) -> PublicKeyCredentialDescriptor:
    transports = [t for t in (credential.transports or default_transports) if t in _KNOWN_TRANSPORTS]
    return PublicKeyCredentialDescriptor(
        type=PublicKeyCredentialType.PUBLIC_KEY,
        id=credential.credential_id,
        transports=[AuthenticatorTransport(t) for t in transports] or None,
    )


def _attested(credential: Credential) -> AttestedCredentialData:
    public_key = CoseKey.parse(cbor.decode(credential.public_key))
    return AttestedCredentialData.create(credential.aaguid, credential.credential_id, public_key)


def _response_transports(response: Any) -> List[str]:
    inner = _lookup(response, "response")
    transports = _lookup(inner, "transports") if inner is not None else None
    if not isinstance(transports, (list, tuple)):
        return []
    return [str(t) for t in transports if isinstance(t, str)]


def _parse_assertion(response: Any) -> AuthenticationResponse:
    if isinstance(response, AuthenticationResponse):
        return response
    if isinstance(response, Mapping):
        return AuthenticationResponse.from_dict(response)
    raise TypeError("unsupported assertion payload")


def _assertion_credential_id(assertion: AuthenticationResponse) -> bytes:
    raw_id = getattr(assertion, "raw_id", None)
    if isinstance(raw_id, (bytes, bytearray)):
        return bytes(raw_id)
    return decode_binary_value(assertion.id)


def _serialisable_state(state: Mapping[str, Any]) -> Dict[str, Any]:
    return {key: _json_ready(value) for key, value in state.items()}


@dataclass(frozen=True)
class CeremonyStart:
    """Options for the browser plus the id used to correlate ``finish``."""

    options: Dict[str, Any]
    identity_id: str


@dataclass(frozen=True)
class AuthenticationResult:
    token: str
    identity: Identity


class CeremonyEngine:
    """Drive both ceremonies against a store, a challenge cache and a session issuer."""

    def __init__(
        self,
        server: Fido2Server,
        store: AccountStore,
        challenges: ChallengeCache,
        sessions: SessionIssuer,
    ) -> None:
        self.server = server
        self.store = store
        self.challenges = challenges
        self.sessions = sessions

    # -- lookups -----------------------------------------------------------

    def _identity_by_key(self, lookup_key: str) -> Identity:
        identity = self.store.find_identity(lookup_key)
        if identity is None:
            raise NotFound(f"no identity for {lookup_key!r}")
        return identity

    def _identity_by_id(self, identity_id: str) -> Identity:
        identity = self.store.get_identity(identity_id)
        if identity is None:
            raise NotFound(f"no identity with id {identity_id!r}")
        return identity

    def _issue_challenge(self, identity: Identity, kind: str, state: Mapping[str, Any], value: bytes) -> None:
        self.challenges.put(
            identity.id,
            Challenge(identity_id=identity.id, value=value, kind=kind, state=_serialisable_state(state)),
        )

    def _take_challenge(self, identity: Identity, kind: str) -> Challenge:
        challenge = self.challenges.take(identity.id)
        if challenge is None:
            raise NoPendingCeremony(f"no outstanding {kind} challenge for {identity.id}")
        if challenge.kind != kind:
            raise NoPendingCeremony(
                f"outstanding challenge for {identity.id} belongs to a {challenge.kind} ceremony"
            )
        if challenge.state.get("challenge") != websafe_encode(challenge.value):
            LOGGER.error("Stored %s challenge for %s does not match its verification state", kind, identity.id)
            raise NoPendingCeremony(f"inconsistent {kind} challenge for {identity.id}")
        return challenge

    # -- registration ------------------------------------------------------

    def registration_start(self, lookup_key: str) -> CeremonyStart:
        identity = self._identity_by_key(lookup_key)
        challenge = secrets.token_bytes(CHALLENGE_LENGTH_BYTES)

        options, state = self.server.register_begin(
            PublicKeyCredentialUserEntity(
                id=identity.id.encode("utf-8"),
                name=identity.email,
                display_name=identity.display_name,
            ),
            [_descriptor(credential) for credential in identity.credentials],
            resident_key_requirement=ResidentKeyRequirement.DISCOURAGED,
            user_verification=UserVerificationRequirement.REQUIRED,
            challenge=challenge,
        )

        self._issue_challenge(identity, CEREMONY_REGISTRATION, state, challenge)
        LOGGER.info(
            "Registration ceremony started for %s (%d credential(s) excluded)",
            identity.id,
            len(identity.credentials),
        )
        return CeremonyStart(options=_json_ready(options.public_key), identity_id=identity.id)

    def registration_finish(
        self,
        identity_id: str,
        response: Any,
        transports: Optional[Sequence[str]] = None,
    ) -> bool:
        identity = self._identity_by_id(identity_id)
        challenge = self._take_challenge(identity, CEREMONY_REGISTRATION)

        try:
            verified = self.server.register_complete(dict(challenge.state), response)
        except _VERIFICATION_ERRORS as exc:
            LOGGER.info("Registration verification failed for %s: %s", identity.id, exc)
            raise CeremonyVerificationFailed(str(exc)) from exc

        try:
            registered = extract_registered_credential(verified)
        except MalformedCredential:
            LOGGER.error("Verified registration for %s did not yield a credential", identity.id)
            raise

        credential = Credential(
            credential_id=registered.credential_id,
            public_key=registered.public_key,
            counter=registered.counter,
            transports=tuple(transports if transports is not None else _response_transports(response)),
            aaguid=registered.aaguid,
        )
        try:
            self.store.append_credential(identity.id, credential)
        except DuplicateCredential as exc:
            SECURITY_LOGGER.warning(
                "Rejected re-registration of bound credential %s for %s",
                credential.credential_id_b64,
                identity.id,
            )
            raise CeremonyVerificationFailed(str(exc)) from exc

        LOGGER.info("Fingerprint registered for %s", identity.id)
        return True

    # -- authentication ----------------------------------------------------

    def authentication_start(self, lookup_key: str) -> CeremonyStart:
        identity = self._identity_by_key(lookup_key)
        if not identity.credentials:
            raise NoCredentialsRegistered(f"{identity.id} has no bound credentials")

        challenge = secrets.token_bytes(CHALLENGE_LENGTH_BYTES)
        options, state = self.server.authenticate_begin(
            [_descriptor(credential, DEFAULT_ALLOW_TRANSPORTS) for credential in identity.credentials],
            user_verification=UserVerificationRequirement.REQUIRED,
            challenge=challenge,
        )

        self._issue_challenge(identity, CEREMONY_AUTHENTICATION, state, challenge)
        LOGGER.info("Authentication ceremony started for %s", identity.id)
        return CeremonyStart(options=_json_ready(options.public_key), identity_id=identity.id)

    def authentication_finish(self, identity_id: str, response: Any) -> AuthenticationResult:
        identity = self._identity_by_id(identity_id)
        challenge = self._take_challenge(identity, CEREMONY_AUTHENTICATION)

        try:
            assertion = _parse_assertion(response)
            credential_id = _assertion_credential_id(assertion)
            new_counter = assertion.response.authenticator_data.counter
        except _VERIFICATION_ERRORS as exc:
            LOGGER.info("Malformed assertion for %s: %s", identity.id, exc)
            raise CeremonyVerificationFailed(str(exc)) from exc

        with self.store.locked(identity.id):
            stored = None
            for credential in self.store.list_credentials(identity.id):
                if credential.credential_id == credential_id:
                    stored = credential
                    break
            if stored is None:
                LOGGER.info("Assertion for %s used an unknown credential", identity.id)
                raise CredentialNotRecognized(websafe_encode(credential_id))

            if new_counter <= stored.counter:
                SECURITY_LOGGER.warning(
                    "Replay suspected for %s: credential %s reported counter %d, stored %d",
                    identity.id,
                    stored.credential_id_b64,
                    new_counter,
                    stored.counter,
                )
                raise ReplaySuspected(f"counter {new_counter} <= {stored.counter}")

            try:
                self.server.authenticate_complete(dict(challenge.state), [_attested(stored)], assertion)
            except _VERIFICATION_ERRORS as exc:
                LOGGER.info("Authentication verification failed for %s: %s", identity.id, exc)
                raise CeremonyVerificationFailed(str(exc)) from exc

            self.store.update_counter(identity.id, stored.credential_id, new_counter)

        if not identity.is_approved:
            LOGGER.info("Fingerprint verified for %s but the account is %s", identity.id, identity.status)
            raise AccountNotApproved(identity.status)

        token = self.sessions.issue(identity.id, identity.role)
        LOGGER.info("Fingerprint login for %s", identity.id)
        return AuthenticationResult(token=token, identity=self._identity_by_id(identity.id))

    # -- bookkeeping -------------------------------------------------------

    def has_credentials(self, identity_id: str) -> Tuple[bool, int]:
        identity = self._identity_by_id(identity_id)
        count = len(self.store.list_credentials(identity.id))
        return count > 0, count

    def unbind_credential(self, identity_id: str, credential_id: bytes) -> None:
        identity = self._identity_by_id(identity_id)
        if not self.store.remove_credential(identity.id, credential_id):
            raise CredentialNotRecognized(websafe_encode(credential_id))
        LOGGER.info("Unbound credential %s from %s", websafe_encode(credential_id), identity.id)
