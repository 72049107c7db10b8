"""General application routes and error handlers."""
from __future__ import annotations

import logging

from flask import jsonify
from werkzeug.exceptions import HTTPException

from ..config import app
from ..errors import CeremonyError, CredentialStoreError
from ..extensions import EXTENSION_KEY

SECURITY_LOGGER = logging.getLogger("axess_auth.security")


@app.route("/api/health")
def health_check():
    state = app.extensions.get(EXTENSION_KEY) or {}
    return jsonify(
        {
            "status": "healthy",
            "webauthn": state.get("engine") is not None,
        }
    )


@app.errorhandler(CeremonyError)
def handle_ceremony_error(exc: CeremonyError):
    if exc.category == "security":
        # Already logged with detail by the engine; keep a request-level trace.
        SECURITY_LOGGER.warning("Security event %s answered as a verification failure", exc.kind)
    elif exc.category == "verification":
        app.logger.info("Ceremony verification failed (%s)", exc.kind)
    else:
        app.logger.info("Ceremony request rejected (%s): %s", exc.kind, exc)
    return jsonify(exc.to_dict()), exc.status


@app.errorhandler(CredentialStoreError)
def handle_store_error(exc: CredentialStoreError):
    app.logger.exception("Credential store failure: %s", exc)
    return jsonify({"message": "Server error."}), 500


@app.errorhandler(HTTPException)
def handle_http_error(exc: HTTPException):
    return jsonify({"message": exc.description or exc.name}), exc.code or 500
