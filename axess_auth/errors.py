"""Error taxonomy for the authenticator ceremonies."""
from __future__ import annotations

from typing import Optional

__all__ = [
    "AccountNotApproved",
    "CapabilityUnavailable",
    "CeremonyError",
    "CeremonyVerificationFailed",
    "CredentialNotRecognized",
    "CredentialStoreError",
    "InvalidSession",
    "MalformedCredential",
    "NoCredentialsRegistered",
    "NoPendingCeremony",
    "NotFound",
    "ReplaySuspected",
]

_VERIFICATION_MESSAGE = "Fingerprint verification failed. Please try again."


class CeremonyError(Exception):
    """Base class for errors reported to callers of the ceremony endpoints.

    ``public_message`` is the only text that may be shown to the end user;
    the exception's own message is for logs.
    """

    kind = "CeremonyError"
    category = "ceremony"
    status = 400
    public_message = "Request failed."

    def __init__(self, detail: Optional[str] = None) -> None:
        super().__init__(detail or self.kind)
        self.detail = detail

    def to_dict(self) -> dict:
        return {"message": self.public_message, "error": self.public_kind}

    @property
    def public_kind(self) -> str:
        return self.kind


class NotFound(CeremonyError):
    kind = "NotFound"
    category = "lookup"
    status = 404
    public_message = "No account found."


class NoCredentialsRegistered(CeremonyError):
    kind = "NoCredentialsRegistered"
    category = "lookup"
    status = 404
    public_message = "No fingerprint registered for this account."


class AccountNotApproved(CeremonyError):
    kind = "AccountNotApproved"
    category = "lookup"
    status = 403
    public_message = "Your account is pending approval."


class NoPendingCeremony(CeremonyError):
    kind = "NoPendingCeremony"
    category = "ceremony-state"
    public_message = "No pending ceremony. Please start again."


class CeremonyVerificationFailed(CeremonyError):
    kind = "CeremonyVerificationFailed"
    category = "verification"
    public_message = _VERIFICATION_MESSAGE

    @property
    def public_kind(self) -> str:
        # Every verification failure looks the same from the outside.
        return CeremonyVerificationFailed.kind


class MalformedCredential(CeremonyVerificationFailed):
    kind = "MalformedCredential"


class CredentialNotRecognized(CeremonyVerificationFailed):
    kind = "CredentialNotRecognized"


class ReplaySuspected(CeremonyVerificationFailed):
    kind = "ReplaySuspected"
    category = "security"


class InvalidSession(CeremonyError):
    kind = "InvalidSession"
    category = "session"
    status = 401
    public_message = "Invalid or expired token."


class CapabilityUnavailable(CeremonyError):
    kind = "CapabilityUnavailable"
    category = "capability"
    status = 501
    public_message = "Fingerprint login is not available."


class CredentialStoreError(RuntimeError):
    """Raised when the account/credential collaborator fails to read or write."""
