"""Session issuance once an authentication ceremony has succeeded."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Mapping, Optional

import jwt

from .errors import InvalidSession

__all__ = [
    "DEFAULT_DELEGATED_LIFETIME",
    "DEFAULT_SESSION_LIFETIME",
    "SessionClaims",
    "SessionIssuer",
]

DEFAULT_SESSION_LIFETIME = timedelta(days=7)
DEFAULT_DELEGATED_LIFETIME = timedelta(hours=1)
_ALGORITHM = "HS256"


@dataclass(frozen=True)
class SessionClaims:
    identity_id: str
    role: str
    issued_at: datetime
    expires_at: datetime


class SessionIssuer:
    """Mint and check HS256 session tokens carrying ``id`` and ``role``.

    Regular logins get the long lifetime; delegated (impersonated) sessions
    are kept short.
    """

    def __init__(
        self,
        secret: str,
        lifetime: timedelta = DEFAULT_SESSION_LIFETIME,
        delegated_lifetime: timedelta = DEFAULT_DELEGATED_LIFETIME,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        if not secret:
            raise ValueError("a signing secret is required")
        self._secret = secret
        self.lifetime = lifetime
        self.delegated_lifetime = delegated_lifetime
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def issue(self, identity_id: str, role: str, delegated: bool = False) -> str:
        now = self._clock()
        expires_at = now + (self.delegated_lifetime if delegated else self.lifetime)
        payload = {
            "id": identity_id,
            "role": role,
            "iat": now,
            "exp": expires_at,
        }
        if delegated:
            payload["delegated"] = True
        return jwt.encode(payload, self._secret, algorithm=_ALGORITHM)

    def verify(self, token: str) -> SessionClaims:
        try:
            payload: Mapping[str, Any] = jwt.decode(
                token,
                self._secret,
                algorithms=[_ALGORITHM],
                options={"require": ["exp", "iat", "id"]},
            )
        except jwt.PyJWTError as exc:
            raise InvalidSession(str(exc)) from exc

        return SessionClaims(
            identity_id=str(payload["id"]),
            role=str(payload.get("role") or "user"),
            issued_at=datetime.fromtimestamp(payload["iat"], timezone.utc),
            expires_at=datetime.fromtimestamp(payload["exp"], timezone.utc),
        )
