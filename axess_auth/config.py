"""Configuration and application setup for the authenticator login service."""
from __future__ import annotations

import os
from datetime import timedelta
from typing import Any, Mapping, Optional

from flask import Flask

app = Flask(__name__)
app.secret_key = os.urandom(32)

# Store accounts next to this module, regardless of CWD.
basepath = os.path.abspath(os.path.dirname(__file__))

DEFAULTS: Mapping[str, Any] = {
    "AXESS_RP_NAME": "aXess",
    "AXESS_RP_ID": "localhost",
    "AXESS_RP_ORIGIN": "http://localhost:5173",
    "AXESS_JWT_SECRET": "changeme",
    "AXESS_SESSION_LIFETIME_SECONDS": 7 * 24 * 3600,
    "AXESS_DELEGATED_SESSION_LIFETIME_SECONDS": 3600,
    "AXESS_CHALLENGE_TTL_SECONDS": 120,
    "AXESS_CEREMONY_TIMEOUT_MS": 60000,
    "AXESS_CREDENTIAL_STORE_DIR": os.path.join(basepath, "data"),
    "AXESS_REDIS_URL": None,
}

_INTEGER_SETTINGS = {
    "AXESS_SESSION_LIFETIME_SECONDS",
    "AXESS_DELEGATED_SESSION_LIFETIME_SECONDS",
    "AXESS_CHALLENGE_TTL_SECONDS",
    "AXESS_CEREMONY_TIMEOUT_MS",
}


def load_settings(environ: Optional[Mapping[str, str]] = None) -> dict:
    """Read every recognised option from the environment."""

    source = os.environ if environ is None else environ
    settings = {}
    for name, default in DEFAULTS.items():
        raw_value = source.get(name)
        if raw_value is None or not str(raw_value).strip():
            settings[name] = default
        elif name in _INTEGER_SETTINGS:
            try:
                settings[name] = int(str(raw_value).strip())
            except ValueError as exc:
                raise ValueError(f"{name} must be an integer, got {raw_value!r}") from exc
        else:
            settings[name] = str(raw_value).strip()
    return settings


for _name, _value in load_settings().items():
    app.config.setdefault(_name, _value)


def session_lifetime(config: Mapping[str, Any]) -> timedelta:
    return timedelta(seconds=int(config["AXESS_SESSION_LIFETIME_SECONDS"]))


def delegated_session_lifetime(config: Mapping[str, Any]) -> timedelta:
    return timedelta(seconds=int(config["AXESS_DELEGATED_SESSION_LIFETIME_SECONDS"]))

