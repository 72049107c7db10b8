"""Records shared by the ceremony engine, the stores and the routes."""
from __future__ import annotations

import base64
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Sequence

__all__ = [
    "CEREMONY_AUTHENTICATION",
    "CEREMONY_REGISTRATION",
    "ROLES",
    "Challenge",
    "Credential",
    "Identity",
    "RegisteredCredential",
    "decode_binary_value",
    "normalize_lookup_key",
    "websafe_decode",
    "websafe_encode",
]

CEREMONY_REGISTRATION = "registration"
CEREMONY_AUTHENTICATION = "authentication"

ROLES = ("user", "admin", "innovator", "member", "guard", "leader")
STATUS_APPROVED = "approved"

_ZERO_AAGUID = bytes(16)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def websafe_encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def websafe_decode(data: str) -> bytes:
    return base64.urlsafe_b64decode(data + "=" * (-len(data) % 4))


def normalize_lookup_key(value: Any) -> str:
    """Normalise an e-mail style lookup key the way accounts are stored."""

    if not isinstance(value, str):
        return ""
    return value.strip().lower()


def decode_binary_value(value: Any) -> bytes:
    """Decode bytes that may arrive raw, base64url or plain base64 encoded."""

    if value is None:
        raise ValueError("missing binary value")

    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value)

    if isinstance(value, str):
        candidate = value.strip()
        if not candidate:
            raise ValueError("empty string")
        padded = candidate + "=" * (-len(candidate) % 4)
        if "+" in candidate or "/" in candidate:
            return base64.b64decode(padded, validate=True)
        return base64.urlsafe_b64decode(padded)

    raise ValueError("unsupported binary value type")


@dataclass(frozen=True)
class Credential:
    """One authenticator bound to an identity."""

    credential_id: bytes
    public_key: bytes
    counter: int = 0
    transports: Sequence[str] = ()
    registered_at: datetime = field(default_factory=_utcnow)
    aaguid: bytes = _ZERO_AAGUID

    @property
    def credential_id_b64(self) -> str:
        return websafe_encode(self.credential_id)

    def with_counter(self, counter: int) -> "Credential":
        return replace(self, counter=counter)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "credentialID": websafe_encode(self.credential_id),
            "credentialPublicKey": websafe_encode(self.public_key),
            "counter": self.counter,
            "transports": list(self.transports),
            "registeredAt": self.registered_at.isoformat(),
            "aaguid": self.aaguid.hex(),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Credential":
        registered_raw = data.get("registeredAt")
        if isinstance(registered_raw, str) and registered_raw:
            registered_at = datetime.fromisoformat(registered_raw)
        else:
            registered_at = _utcnow()

        aaguid_raw = data.get("aaguid")
        aaguid = bytes.fromhex(aaguid_raw) if isinstance(aaguid_raw, str) and aaguid_raw else _ZERO_AAGUID

        return cls(
            credential_id=websafe_decode(data["credentialID"]),
            public_key=websafe_decode(data["credentialPublicKey"]),
            counter=int(data.get("counter") or 0),
            transports=tuple(data.get("transports") or ()),
            registered_at=registered_at,
            aaguid=aaguid,
        )


@dataclass
class Identity:
    """Account record owned by the account collaborator."""

    id: str
    email: str
    display_name: str
    role: str = "user"
    status: str = STATUS_APPROVED
    credentials: List[Credential] = field(default_factory=list)

    @property
    def is_approved(self) -> bool:
        return self.status == STATUS_APPROVED

    def find_credential(self, credential_id: bytes) -> Optional[Credential]:
        for credential in self.credentials:
            if credential.credential_id == credential_id:
                return credential
        return None

    def to_public_dict(self) -> Dict[str, Any]:
        """Account fields that are safe to return alongside a session token."""

        return {
            "_id": self.id,
            "email": self.email,
            "fullName": self.display_name,
            "role": self.role,
            "verificationStatus": self.status,
            "webauthnCredentials": [credential.to_dict() for credential in self.credentials],
        }

    def to_record(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "email": self.email,
            "displayName": self.display_name,
            "role": self.role,
            "status": self.status,
        }

    @classmethod
    def from_record(
        cls, data: Mapping[str, Any], credentials: Optional[List[Credential]] = None
    ) -> "Identity":
        return cls(
            id=str(data["id"]),
            email=normalize_lookup_key(data["email"]),
            display_name=data.get("displayName") or data["email"],
            role=data.get("role") or "user",
            status=data.get("status") or STATUS_APPROVED,
            credentials=list(credentials or []),
        )


@dataclass(frozen=True)
class Challenge:
    """Outstanding single-use challenge for one identity."""

    identity_id: str
    value: bytes
    kind: str
    state: Mapping[str, Any]
    issued_at: datetime = field(default_factory=_utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "identityId": self.identity_id,
            "value": websafe_encode(self.value),
            "kind": self.kind,
            "state": dict(self.state),
            "issuedAt": self.issued_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Challenge":
        return cls(
            identity_id=data["identityId"],
            value=websafe_decode(data["value"]),
            kind=data["kind"],
            state=dict(data["state"]),
            issued_at=datetime.fromisoformat(data["issuedAt"]),
        )


@dataclass(frozen=True)
class RegisteredCredential:
    """Credential material extracted from a verified registration."""

    credential_id: bytes
    public_key: bytes
    counter: int
    aaguid: bytes = _ZERO_AAGUID
