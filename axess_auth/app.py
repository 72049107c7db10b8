"""Application entry point for the authenticator login service."""
from __future__ import annotations

import logging
import os

from flask import Flask

from .config import app
from .extensions import EXTENSION_KEY, install_ceremony_engine

# Import the route modules so their decorators register endpoints with Flask.
from . import routes  # noqa: F401,E402


def create_app(**engine_overrides) -> Flask:
    """Return the configured application, installing the ceremony engine once.

    Keyword arguments are passed to :func:`install_ceremony_engine`, which
    lets tests and embedding applications supply their own store, challenge
    cache, session issuer or a complete engine.
    """

    if engine_overrides or EXTENSION_KEY not in app.extensions:
        install_ceremony_engine(app, **engine_overrides)
    return app


def main() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    create_app().run(
        host=os.environ.get("AXESS_HOST", "localhost"),
        port=int(os.environ.get("AXESS_PORT", "5000")),
        debug=os.environ.get("FLASK_DEBUG") == "1",
    )


__all__ = ["app", "create_app", "main"]


if __name__ == "__main__":  # pragma: no cover - convenience script entry point.
    main()
