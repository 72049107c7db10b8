"""Software authenticator producing browser-shaped WebAuthn JSON for tests.

Uses P-256 keys and the ``none`` attestation format, which matches the
server's ``AttestationConveyancePreference.NONE`` setting.
"""
from __future__ import annotations

import hashlib
import os
from dataclasses import dataclass, field
from typing import Dict, Optional

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from fido2.cose import ES256
from fido2.utils import websafe_decode, websafe_encode
from fido2.webauthn import (
    AttestationObject,
    AttestedCredentialData,
    AuthenticatorData,
    CollectedClientData,
)

RP_ID = "localhost"
ORIGIN = "http://localhost:5173"
AAGUID = bytes.fromhex("f8a011f38c0a4d15800617111f9edc7d")


@dataclass
class SoftwareAuthenticator:
    rp_id: str = RP_ID
    origin: str = ORIGIN
    keys: Dict[bytes, ec.EllipticCurvePrivateKey] = field(default_factory=dict)

    @property
    def rp_id_hash(self) -> bytes:
        return hashlib.sha256(self.rp_id.encode("utf-8")).digest()

    def make_credential(
        self,
        options: dict,
        *,
        credential_id: Optional[bytes] = None,
        counter: int = 0,
        user_verified: bool = True,
        origin: Optional[str] = None,
        challenge: Optional[bytes] = None,
    ) -> dict:
        """Answer ``navigator.credentials.create`` for the given options."""

        credential_id = credential_id or os.urandom(32)
        private_key = self.keys.get(credential_id) or ec.generate_private_key(ec.SECP256R1())
        self.keys[credential_id] = private_key

        attested = AttestedCredentialData.create(
            AAGUID,
            credential_id,
            ES256.from_cryptography_key(private_key.public_key()),
        )
        flags = AuthenticatorData.FLAG.UP | AuthenticatorData.FLAG.AT
        if user_verified:
            flags |= AuthenticatorData.FLAG.UV
        auth_data = AuthenticatorData.create(self.rp_id_hash, flags, counter, attested)
        attestation_object = AttestationObject.create("none", auth_data, {})

        client_data = CollectedClientData.create(
            CollectedClientData.TYPE.CREATE,
            challenge if challenge is not None else websafe_decode(options["challenge"]),
            origin or self.origin,
        )

        return {
            "id": websafe_encode(credential_id),
            "rawId": websafe_encode(credential_id),
            "type": "public-key",
            "response": {
                "clientDataJSON": websafe_encode(bytes(client_data)),
                "attestationObject": websafe_encode(bytes(attestation_object)),
                "transports": ["internal"],
            },
            "clientExtensionResults": {},
        }

    def get_assertion(
        self,
        options: dict,
        credential_id: bytes,
        counter: int,
        *,
        user_verified: bool = True,
        origin: Optional[str] = None,
        challenge: Optional[bytes] = None,
        tamper: bool = False,
    ) -> dict:
        """Answer ``navigator.credentials.get`` with the key for ``credential_id``."""

        flags = AuthenticatorData.FLAG.UP
        if user_verified:
            flags |= AuthenticatorData.FLAG.UV
        auth_data = AuthenticatorData.create(self.rp_id_hash, flags, counter)
        client_data = CollectedClientData.create(
            CollectedClientData.TYPE.GET,
            challenge if challenge is not None else websafe_decode(options["challenge"]),
            origin or self.origin,
        )

        private_key = self.keys.get(credential_id) or ec.generate_private_key(ec.SECP256R1())
        signature = private_key.sign(auth_data + client_data.hash, ec.ECDSA(hashes.SHA256()))
        if tamper:
            signature = signature[:-1] + bytes([signature[-1] ^ 0x01])

        return {
            "id": websafe_encode(credential_id),
            "rawId": websafe_encode(credential_id),
            "type": "public-key",
            "response": {
                "clientDataJSON": websafe_encode(bytes(client_data)),
                "authenticatorData": websafe_encode(bytes(auth_data)),
                "signature": websafe_encode(signature),
            },
            "clientExtensionResults": {},
        }
