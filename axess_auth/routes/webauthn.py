"""Routes for fingerprint / security-key registration and login."""
from __future__ import annotations

from typing import Any, Dict, Mapping

from flask import jsonify, request

from ..config import app
from ..errors import InvalidSession
from ..extensions import get_ceremony_engine, get_session_issuer
from ..models import decode_binary_value, normalize_lookup_key
from ..sessions import SessionClaims


def _json_body() -> Dict[str, Any]:
    payload = request.get_json(silent=True)
    return payload if isinstance(payload, Mapping) else {}


def _missing(*names: str):
    joined = " and ".join(names)
    return jsonify({"message": f"{joined} {'is' if len(names) == 1 else 'are'} required."}), 400


def _require_session() -> SessionClaims:
    header = request.headers.get("Authorization", "")
    token = header[7:].strip() if header.startswith("Bearer ") else ""
    if not token:
        raise InvalidSession("no bearer token")
    return get_session_issuer().verify(token)


@app.route("/api/auth/webauthn/check", methods=["GET"])
def webauthn_check():
    claims = _require_session()
    has_credentials, count = get_ceremony_engine().has_credentials(claims.identity_id)
    return jsonify({"hasFingerprint": has_credentials, "count": count})


@app.route("/api/auth/webauthn/register/start", methods=["POST"])
def webauthn_register_start():
    engine = get_ceremony_engine()
    email = normalize_lookup_key(_json_body().get("email"))
    if not email:
        return _missing("email")

    started = engine.registration_start(email)
    return jsonify({"options": started.options, "userId": started.identity_id})


@app.route("/api/auth/webauthn/register/finish", methods=["POST"])
def webauthn_register_finish():
    engine = get_ceremony_engine()
    payload = _json_body()
    user_id = payload.get("userId")
    credential = payload.get("credential")
    if not user_id or not isinstance(credential, Mapping):
        return _missing("userId", "credential")

    engine.registration_finish(str(user_id), credential)
    return jsonify({"success": True, "message": "Fingerprint registered successfully."})


@app.route("/api/auth/webauthn/authenticate/start", methods=["POST"])
def webauthn_authenticate_start():
    engine = get_ceremony_engine()
    email = normalize_lookup_key(_json_body().get("email"))
    if not email:
        return _missing("email")

    started = engine.authentication_start(email)
    return jsonify({"options": started.options, "userId": started.identity_id})


@app.route("/api/auth/webauthn/authenticate/finish", methods=["POST"])
def webauthn_authenticate_finish():
    engine = get_ceremony_engine()
    payload = _json_body()
    user_id = payload.get("userId")
    credential = payload.get("credential")
    if not user_id or not isinstance(credential, Mapping):
        return _missing("userId", "credential")

    result = engine.authentication_finish(str(user_id), credential)
    return jsonify(
        {
            "success": True,
            "token": result.token,
            "user": result.identity.to_public_dict(),
        }
    )


@app.route("/api/auth/webauthn/credentials/<credential_id>", methods=["DELETE"])
def webauthn_unbind(credential_id: str):
    claims = _require_session()
    engine = get_ceremony_engine()
    try:
        raw_id = decode_binary_value(credential_id)
    except ValueError:
        return jsonify({"message": "Invalid credential id."}), 400

    engine.unbind_credential(claims.identity_id, raw_id)
    return jsonify({"success": True, "message": "Fingerprint removed."})
