import pytest

from axess_auth.config import DEFAULTS, app, delegated_session_lifetime, load_settings, session_lifetime


def test_defaults_apply_without_environment():
    settings = load_settings({})

    assert settings == dict(DEFAULTS)
    assert settings["AXESS_RP_ID"] == "localhost"
    assert settings["AXESS_RP_ORIGIN"] == "http://localhost:5173"
    assert settings["AXESS_CEREMONY_TIMEOUT_MS"] == 60000


def test_environment_overrides():
    settings = load_settings(
        {
            "AXESS_RP_ID": " login.example.com ",
            "AXESS_RP_ORIGIN": "https://login.example.com",
            "AXESS_CHALLENGE_TTL_SECONDS": "30",
            "AXESS_REDIS_URL": "redis://cache:6379/0",
            "AXESS_JWT_SECRET": "",
        }
    )

    assert settings["AXESS_RP_ID"] == "login.example.com"
    assert settings["AXESS_CHALLENGE_TTL_SECONDS"] == 30
    assert settings["AXESS_REDIS_URL"] == "redis://cache:6379/0"
    assert settings["AXESS_JWT_SECRET"] == DEFAULTS["AXESS_JWT_SECRET"]


def test_integer_settings_are_validated():
    with pytest.raises(ValueError, match="AXESS_SESSION_LIFETIME_SECONDS"):
        load_settings({"AXESS_SESSION_LIFETIME_SECONDS": "a week"})


def test_lifetimes_from_app_config():
    assert session_lifetime(app.config).total_seconds() == app.config["AXESS_SESSION_LIFETIME_SECONDS"]
    assert delegated_session_lifetime({"AXESS_DELEGATED_SESSION_LIFETIME_SECONDS": 60}).total_seconds() == 60


def test_package_exposes_application_lazily():
    import axess_auth
    from axess_auth.app import create_app, main

    assert axess_auth.create_app is create_app
    assert axess_auth.main is main
    with pytest.raises(AttributeError):
        axess_auth.engine
