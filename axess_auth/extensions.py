"""Wire the ceremony engine into the Flask application.

The engine is optional: when it cannot be built (for instance because the
``fido2`` package is missing) the rest of the application keeps serving
and the ceremony routes answer with :class:`CapabilityUnavailable`.
"""
from __future__ import annotations

import importlib
import logging
from typing import TYPE_CHECKING, Any, Optional

from flask import Flask, current_app

from .challenges import ChallengeCache, InMemoryChallengeCache, RedisChallengeCache
from .config import delegated_session_lifetime, session_lifetime
from .errors import CapabilityUnavailable
from .sessions import SessionIssuer
from .storage import AccountStore, JsonFileAccountStore

if TYPE_CHECKING:  # pragma: no cover - import only for static analysis.
    from .ceremony import CeremonyEngine

__all__ = [
    "EXTENSION_KEY",
    "build_challenge_cache",
    "build_session_issuer",
    "get_ceremony_engine",
    "get_session_issuer",
    "install_ceremony_engine",
    "uninstall_ceremony_engine",
]

EXTENSION_KEY = "axess_auth"
LOGGER = logging.getLogger("axess_auth")


def build_session_issuer(app: Flask) -> SessionIssuer:
    return SessionIssuer(
        app.config["AXESS_JWT_SECRET"],
        lifetime=session_lifetime(app.config),
        delegated_lifetime=delegated_session_lifetime(app.config),
    )


def build_challenge_cache(app: Flask) -> ChallengeCache:
    ttl = int(app.config["AXESS_CHALLENGE_TTL_SECONDS"])
    redis_url = app.config.get("AXESS_REDIS_URL")
    if redis_url:
        return RedisChallengeCache.from_url(redis_url, ttl_seconds=ttl)
    return InMemoryChallengeCache(ttl_seconds=ttl)


def _build_default_engine(
    app: Flask,
    store: AccountStore,
    challenges: ChallengeCache,
    sessions: SessionIssuer,
) -> Optional["CeremonyEngine"]:
    try:
        ceremony = importlib.import_module(f"{__package__}.ceremony")
    except ModuleNotFoundError as exc:
        app.logger.warning(
            "Fingerprint login disabled: unable to import '%s'.", exc.name or "fido2"
        )
        return None

    server = ceremony.create_fido_server(
        rp_id=app.config["AXESS_RP_ID"],
        rp_name=app.config["AXESS_RP_NAME"],
        origin=app.config["AXESS_RP_ORIGIN"],
        timeout_ms=int(app.config["AXESS_CEREMONY_TIMEOUT_MS"]),
    )
    return ceremony.CeremonyEngine(server, store, challenges, sessions)


def install_ceremony_engine(
    app: Flask,
    engine: Any = None,
    *,
    store: Optional[AccountStore] = None,
    challenges: Optional[ChallengeCache] = None,
    sessions: Optional[SessionIssuer] = None,
) -> Optional["CeremonyEngine"]:
    """Attach an engine (built from config unless given) and a session issuer."""

    sessions = sessions or (engine.sessions if engine is not None else build_session_issuer(app))
    if engine is None:
        store = store or JsonFileAccountStore(app.config["AXESS_CREDENTIAL_STORE_DIR"])
        challenges = challenges or build_challenge_cache(app)
        engine = _build_default_engine(app, store, challenges, sessions)

    app.extensions[EXTENSION_KEY] = {"engine": engine, "sessions": sessions}
    if engine is not None:
        LOGGER.info(
            "Fingerprint login enabled for RP %s (origin %s)",
            app.config["AXESS_RP_ID"],
            app.config["AXESS_RP_ORIGIN"],
        )
    return engine


def uninstall_ceremony_engine(app: Flask) -> None:
    state = app.extensions.get(EXTENSION_KEY)
    if state is not None:
        state["engine"] = None


def _state() -> dict:
    return current_app.extensions.get(EXTENSION_KEY) or {}


def get_ceremony_engine() -> "CeremonyEngine":
    engine = _state().get("engine")
    if engine is None:
        raise CapabilityUnavailable("no ceremony engine installed")
    return engine


def get_session_issuer() -> SessionIssuer:
    sessions = _state().get("sessions")
    if sessions is None:
        sessions = build_session_issuer(current_app)
        current_app.extensions.setdefault(EXTENSION_KEY, {})["sessions"] = sessions
    return sessions
