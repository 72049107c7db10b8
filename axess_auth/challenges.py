"""Short-lived challenge storage for the WebAuthn ceremonies.

There is at most one outstanding challenge per identity. ``put`` replaces
whatever was there before and ``take`` is a destructive read, so a given
``start`` can be consumed by at most one ``finish``.
"""
from __future__ import annotations

import json
import logging
import threading
import time
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Optional, Tuple

from .models import Challenge

__all__ = [
    "DEFAULT_CHALLENGE_TTL_SECONDS",
    "REDIS_CHALLENGE_PREFIX",
    "ChallengeCache",
    "InMemoryChallengeCache",
    "RedisChallengeCache",
]

LOGGER = logging.getLogger("axess_auth.challenges")

DEFAULT_CHALLENGE_TTL_SECONDS = 120
REDIS_CHALLENGE_PREFIX = "webauthn_challenge:"


class ChallengeCache(ABC):
    """Map of identity id to its outstanding challenge."""

    @abstractmethod
    def put(self, key: str, challenge: Challenge) -> None:
        """Store ``challenge`` for ``key``, replacing any previous entry."""

    @abstractmethod
    def take(self, key: str) -> Optional[Challenge]:
        """Remove and return the entry for ``key``; ``None`` if absent or expired."""

    @abstractmethod
    def discard(self, key: str) -> None:
        """Drop the entry for ``key`` if there is one."""


class InMemoryChallengeCache(ChallengeCache):
    """Per-process cache. A restart simply invalidates outstanding ceremonies."""

    def __init__(
        self,
        ttl_seconds: Optional[float] = DEFAULT_CHALLENGE_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl = ttl_seconds
        self._clock = clock
        self._entries: Dict[str, Tuple[Challenge, Optional[float]]] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            self._purge_expired()
            return len(self._entries)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            self._purge_expired()
            return key in self._entries

    def put(self, key: str, challenge: Challenge) -> None:
        expires_at = self._clock() + self._ttl if self._ttl else None
        with self._lock:
            self._purge_expired()
            if key in self._entries:
                LOGGER.debug("Replacing outstanding %s challenge for %s", challenge.kind, key)
            self._entries[key] = (challenge, expires_at)

    def take(self, key: str) -> Optional[Challenge]:
        with self._lock:
            entry = self._entries.pop(key, None)
        if entry is None:
            return None
        challenge, expires_at = entry
        if expires_at is not None and self._clock() > expires_at:
            LOGGER.info("Discarded expired %s challenge for %s", challenge.kind, key)
            return None
        return challenge

    def discard(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def _purge_expired(self) -> None:
        now = self._clock()
        expired = [
            key
            for key, (_, expires_at) in self._entries.items()
            if expires_at is not None and now > expires_at
        ]
        for key in expired:
            del self._entries[key]


class RedisChallengeCache(ChallengeCache):
    """Challenge cache shared between processes through Redis.

    Expiry is delegated to Redis (``SET ... EX``) and consumption uses
    ``GETDEL`` so two processes can never both read the same entry.
    """

    def __init__(
        self,
        client: Any,
        ttl_seconds: int = DEFAULT_CHALLENGE_TTL_SECONDS,
        prefix: str = REDIS_CHALLENGE_PREFIX,
    ) -> None:
        self._client = client
        self._ttl = int(ttl_seconds)
        self._prefix = prefix

    @classmethod
    def from_url(cls, url: str, **kwargs: Any) -> "RedisChallengeCache":
        import redis

        return cls(redis.Redis.from_url(url), **kwargs)

    def _key(self, key: str) -> str:
        return f"{self._prefix}{key}"

    def put(self, key: str, challenge: Challenge) -> None:
        payload = json.dumps(challenge.to_dict())
        # A TTL of 0 means no expiry, as in the in-memory cache.
        self._client.set(self._key(key), payload, ex=self._ttl or None)

    def take(self, key: str) -> Optional[Challenge]:
        raw = self._client.getdel(self._key(key))
        if raw is None:
            return None
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        return Challenge.from_dict(json.loads(raw))

    def discard(self, key: str) -> None:
        self._client.delete(self._key(key))
