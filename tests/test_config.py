"""Tests for RelaySettings and EncryptedStr."""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from live_page_relay.core.config import (
    DEFAULT_PORT,
    DEFAULT_UPSTREAM_MODEL,
    DEFAULT_UPSTREAM_URL,
    EncryptedStr,
    RelaySettings,
)
from live_page_relay.core.errors import ConfigurationError


# -----------------------------------------------------------------------------
# Environment defaults
# -----------------------------------------------------------------------------

def test_defaults_without_environment() -> None:
    settings = RelaySettings()
    assert settings.PORT == DEFAULT_PORT
    assert settings.UPSTREAM_URL == DEFAULT_UPSTREAM_URL
    assert settings.UPSTREAM_MODEL == DEFAULT_UPSTREAM_MODEL
    assert settings.LOG_LEVEL == "INFO"
    assert settings.STRICT_FRAME_DECODE is False
    assert Path(settings.TEMPLATE_PATH).is_file()


def test_environment_overrides(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("PORT", "8080")
    monkeypatch.setenv("OPENAI_RESPONSES_URL", "http://localhost:9000/v1/responses")
    monkeypatch.setenv("OPENAI_MODEL", "local-model")
    monkeypatch.setenv("STREAM_PROMPT", "render a landing page")
    monkeypatch.setenv("LOG_LEVEL", "debug")

    settings = RelaySettings()

    assert settings.PORT == 8080
    assert settings.UPSTREAM_URL == "http://localhost:9000/v1/responses"
    assert settings.UPSTREAM_MODEL == "local-model"
    assert settings.UPSTREAM_PROMPT == "render a landing page"
    assert settings.LOG_LEVEL == "DEBUG"


@pytest.mark.parametrize("raw", ["not-a-port", "", "0", "70000"])
def test_invalid_port_falls_back_to_default(monkeypatch: pytest.MonkeyPatch, raw: str) -> None:
    monkeypatch.setenv("PORT", raw)
    assert RelaySettings().PORT == DEFAULT_PORT


def test_explicit_invalid_values_are_rejected() -> None:
    with pytest.raises(ValidationError):
        RelaySettings(PORT=0)
    with pytest.raises(ValidationError):
        RelaySettings(LOG_LEVEL="LOUD")


def test_event_type_lists_are_parsed() -> None:
    settings = RelaySettings(DELTA_EVENT_TYPES=" a , b,,", ERROR_EVENT_TYPES="oops")
    assert settings.delta_event_types() == frozenset({"a", "b"})
    assert settings.error_event_types() == frozenset({"oops"})


# -----------------------------------------------------------------------------
# Credentials
# -----------------------------------------------------------------------------

def test_api_key_from_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("OPENAI_API_KEY", "  sk-env  ")
    assert RelaySettings().resolve_api_key() == "sk-env"


def test_api_key_falls_back_to_legacy_variable(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("OPENAPI_API_KEY", "sk-legacy")
    assert RelaySettings().resolve_api_key() == "sk-legacy"

    monkeypatch.setenv("OPENAI_API_KEY", "sk-primary")
    assert RelaySettings().resolve_api_key() == "sk-primary"


def test_missing_api_key_raises_configuration_error() -> None:
    with pytest.raises(ConfigurationError, match="OPENAI_API_KEY is not configured"):
        RelaySettings().resolve_api_key()


def test_api_key_is_encrypted_at_rest_when_secret_set(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("RELAY_SECRET_KEY", "unit-test-secret")
    settings = RelaySettings(API_KEY="sk-secret")

    assert str(settings.API_KEY).startswith("encrypted:")
    assert "sk-secret" not in str(settings.API_KEY)
    assert settings.resolve_api_key() == "sk-secret"


def test_undecryptable_api_key_raises_configuration_error(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("RELAY_SECRET_KEY", "unit-test-secret")
    settings = RelaySettings(API_KEY=EncryptedStr("encrypted:not-a-valid-token"))
    with pytest.raises(ConfigurationError, match="cannot be decrypted"):
        settings.resolve_api_key()


def test_encrypted_str_passthrough_without_secret() -> None:
    assert EncryptedStr.encrypt("plain") == "plain"
    assert EncryptedStr.decrypt("plain") == "plain"


def test_encrypted_str_roundtrip_with_secret(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("RELAY_SECRET_KEY", "unit-test-secret")
    encrypted = EncryptedStr.encrypt("value")
    assert encrypted != "value"
    assert EncryptedStr.encrypt(encrypted) == encrypted
    assert EncryptedStr.decrypt(encrypted) == "value"
