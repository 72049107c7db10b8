"""Route registrations for the authenticator login service."""

# Import submodules to register routes via decorators.
from . import general  # noqa: F401
from . import webauthn  # noqa: F401

__all__ = ["general", "webauthn"]
