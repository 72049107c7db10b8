"""Fingerprint / security-key login for aXess.

The engine, stores and session issuer can be imported on their own. The
Flask entry points ``create_app`` and ``main`` are resolved on first use,
because importing :mod:`axess_auth.app` pulls in the route modules and their
``@app.route`` decorators register endpoints on the shared application in
:mod:`axess_auth.config` as a side effect.
"""
from __future__ import annotations

from importlib import import_module
from typing import Any, TYPE_CHECKING

_APP_EXPORTS = ("create_app", "main")

__all__ = list(_APP_EXPORTS)

if TYPE_CHECKING:  # pragma: no cover
    from .app import create_app, main  # noqa: F401


def __getattr__(name: str) -> Any:
    if name not in _APP_EXPORTS:
        raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
    return getattr(import_module(".app", __name__), name)
