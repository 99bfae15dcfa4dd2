"""Configuration management for the live page relay.

This module contains the configuration schema and constants:
- RelaySettings: Global configuration (upstream endpoint, credentials, timeouts, limits)
- EncryptedStr: Secret value encryption wrapper
- Wire-format and error template constants
"""

from __future__ import annotations

import base64
import hashlib
import logging
import os
from pathlib import Path
from typing import Any, Literal, Optional

from cryptography.fernet import Fernet, InvalidToken
from pydantic import BaseModel, Field, GetCoreSchemaHandler, field_validator
from pydantic_core import core_schema

from .timing_logger import timed

LOGGER = logging.getLogger(__name__)

# -----------------------------------------------------------------------------
# Constants
# -----------------------------------------------------------------------------

DEFAULT_PORT = 3000
# Checked in order; the second name is the legacy spelling older deployments use
API_KEY_ENV_VARS = ("OPENAI_API_KEY", "OPENAPI_API_KEY")
DEFAULT_UPSTREAM_URL = "https://api.openai.com/v1/responses"
DEFAULT_UPSTREAM_MODEL = "gpt-4.1-mini"
DEFAULT_UPSTREAM_PROMPT = (
    "Render a personal website as a single self-contained HTML fragment. "
    "Return only markup, without code fences."
)
DEFAULT_TEMPLATE_PATH = str(Path(__file__).resolve().parent.parent / "server" / "templates" / "index.html")

# Upstream wire format
FRAME_DELIMITER = "\n\n"
DATA_PREFIX = "data:"
EVENT_PREFIX = "event:"
COMMENT_PREFIX = ":"
DONE_SENTINEL = "[DONE]"

DEFAULT_DELTA_EVENT_TYPES = "response.output_text.delta,delta"
DEFAULT_ERROR_EVENT_TYPES = "response.error,error,response.failed"
DEFAULT_UPSTREAM_ERROR_MESSAGE = "The upstream service returned an unknown error."
ERROR_PAYLOAD_DECODE_MESSAGE = "failed to parse upstream error payload"

DEFAULT_UPSTREAM_ERROR_TEMPLATE = (
    "Upstream request failed with status {status}"
    "{{#if reason}} {reason}{{/if}}"
    "{{#if body}}: {body}{{/if}}"
)

_ALLOWED_LOG_LEVELS: tuple[str, ...] = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


# -----------------------------------------------------------------------------
# EncryptedStr
# -----------------------------------------------------------------------------

class EncryptedStr(str):
    """String wrapper that keeps credentials encrypted at rest.

    Values prefixed with ``encrypted:`` are Fernet ciphertext keyed by
    ``RELAY_SECRET_KEY``; plain values are encrypted on validation when the
    secret is configured and passed through untouched otherwise.
    """

    _ENCRYPTION_PREFIX = "encrypted:"

    @classmethod
    @timed
    def _get_encryption_key(cls) -> Optional[bytes]:
        """Return the Fernet key derived from ``RELAY_SECRET_KEY``, or None when unset."""
        secret = os.getenv("RELAY_SECRET_KEY")
        if not secret:
            return None
        hashed_key = hashlib.sha256(secret.encode()).digest()
        return base64.urlsafe_b64encode(hashed_key)

    @classmethod
    @timed
    def encrypt(cls, value: str) -> str:
        """Encrypt ``value`` when an application secret is configured."""
        if not value or value.startswith(cls._ENCRYPTION_PREFIX):
            return value
        key = cls._get_encryption_key()
        if not key:
            return value
        fernet = Fernet(key)
        encrypted = fernet.encrypt(value.encode())
        return f"{cls._ENCRYPTION_PREFIX}{encrypted.decode()}"

    @classmethod
    @timed
    def decrypt(cls, value: str) -> str:
        """Decrypt values produced by :meth:`encrypt`.

        Raises:
            InvalidToken: when the ciphertext does not match the configured key.
        """
        if not value or not value.startswith(cls._ENCRYPTION_PREFIX):
            return value
        key = cls._get_encryption_key()
        if not key:
            return value[len(cls._ENCRYPTION_PREFIX) :]
        encrypted_part = value[len(cls._ENCRYPTION_PREFIX) :]
        fernet = Fernet(key)
        return fernet.decrypt(encrypted_part.encode()).decode()

    @classmethod
    def __get_pydantic_core_schema__(
        cls, _source_type: Any, _handler: GetCoreSchemaHandler
    ) -> core_schema.CoreSchema:
        """Expose a union schema so plain strings auto-wrap as EncryptedStr."""
        return core_schema.union_schema(
            [
                core_schema.is_instance_schema(cls),
                core_schema.chain_schema(
                    [
                        core_schema.str_schema(),
                        core_schema.no_info_plain_validator_function(
                            lambda value: cls(cls.encrypt(value) if value else value)
                        ),
                    ]
                ),
            ],
            serialization=core_schema.plain_serializer_function_ser_schema(
                lambda instance: str(instance)
            ),
        )


# -----------------------------------------------------------------------------
# Environment defaults
# -----------------------------------------------------------------------------

def _default_api_key() -> EncryptedStr:
    """Return the API key env default as EncryptedStr."""
    for name in API_KEY_ENV_VARS:
        value = (os.getenv(name) or "").strip()
        if value:
            return EncryptedStr(value)
    return EncryptedStr("")


def _default_port() -> int:
    """Parse ``PORT``; unparsable values fall back to the default port."""
    raw = (os.getenv("PORT") or "").strip()
    try:
        port = int(raw)
    except ValueError:
        return DEFAULT_PORT
    if not 0 < port < 65536:
        return DEFAULT_PORT
    return port


def _env_str(name: str, default: str) -> str:
    return (os.getenv(name) or "").strip() or default


def _resolve_log_level_default() -> Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]:
    """Normalize env-provided log level to the allowed literal set."""
    value = (os.getenv("LOG_LEVEL") or "INFO").strip().upper()
    if value not in _ALLOWED_LOG_LEVELS:
        value = "INFO"
    return value  # type: ignore[return-value]


# -----------------------------------------------------------------------------
# RelaySettings
# -----------------------------------------------------------------------------

class RelaySettings(BaseModel):
    """Global relay configuration, validated once at startup."""

    # Server
    HOST: str = Field(
        default_factory=lambda: _env_str("HOST", "0.0.0.0"),
        description="Interface the HTTP/WebSocket server binds to.",
    )
    PORT: int = Field(
        default_factory=_default_port,
        ge=1,
        le=65535,
        description="Listening port. Defaults to the PORT environment variable, or 3000 when unset or invalid.",
    )
    TEMPLATE_PATH: str = Field(
        default_factory=lambda: _env_str("TEMPLATE_PATH", DEFAULT_TEMPLATE_PATH),
        description="HTML template served at '/'. The first '{content}' placeholder receives the page body.",
    )
    STATIC_DIR: str = Field(
        default_factory=lambda: _env_str("STATIC_DIR", ""),
        description="Optional directory served under /static. Empty disables static files.",
    )

    # Upstream
    UPSTREAM_URL: str = Field(
        default_factory=lambda: _env_str("OPENAI_RESPONSES_URL", DEFAULT_UPSTREAM_URL),
        description="Streaming generation endpoint (OpenAI Responses API compatible).",
    )
    UPSTREAM_MODEL: str = Field(
        default_factory=lambda: _env_str("OPENAI_MODEL", DEFAULT_UPSTREAM_MODEL),
        description="Model identifier sent with every upstream request.",
    )
    UPSTREAM_PROMPT: str = Field(
        default_factory=lambda: _env_str("STREAM_PROMPT", DEFAULT_UPSTREAM_PROMPT),
        description="Prompt whose generated output becomes the page body.",
    )
    API_KEY: EncryptedStr = Field(
        default_factory=_default_api_key,
        description="Upstream API key. Defaults to OPENAI_API_KEY, then OPENAPI_API_KEY.",
    )
    HTTP_CONNECT_TIMEOUT_SECONDS: int = Field(
        default=10,
        ge=1,
        description="Seconds to wait for the TCP/TLS connection to the upstream before failing.",
    )
    HTTP_SOCK_READ_SECONDS: Optional[int] = Field(
        default=300,
        ge=1,
        description="Idle read timeout (seconds) while streaming. Set to null to wait on a silent upstream indefinitely.",
    )
    UPSTREAM_RETRY_ATTEMPTS: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Connection attempts before the first byte arrives. HTTP error statuses are never retried.",
    )

    # Stream handling
    MAX_BUFFER_CHARS: int = Field(
        default=1024 * 1024,
        ge=1024,
        description="Largest incomplete frame the assembler will buffer before failing the session.",
    )
    STRICT_FRAME_DECODE: bool = Field(
        default=False,
        description=(
            "When True, any frame whose payload is not valid JSON terminates the session with an error. "
            "When False, such frames are logged and skipped unless they are explicit error frames."
        ),
    )
    DELTA_EVENT_TYPES: str = Field(
        default=DEFAULT_DELTA_EVENT_TYPES,
        description="Comma-separated payload 'type' values that carry incremental text in a 'delta' field.",
    )
    ERROR_EVENT_TYPES: str = Field(
        default=DEFAULT_ERROR_EVENT_TYPES,
        description="Comma-separated payload 'type' (or SSE 'event:') values that signal an upstream error.",
    )
    UPSTREAM_ERROR_TEMPLATE: str = Field(
        default=DEFAULT_UPSTREAM_ERROR_TEMPLATE,
        description="Template for rejected upstream requests. Placeholders: {status}, {reason}, {body}.",
    )

    # Logging
    LOG_LEVEL: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default_factory=_resolve_log_level_default,
        description="Minimum level written to the console log.",
    )
    ENABLE_TIMING_LOG: bool = Field(
        default=False,
        description="Write per-session function timing events (JSONL) to TIMING_LOG_FILE.",
    )
    TIMING_LOG_FILE: str = Field(
        default="logs/timing.jsonl",
        description="Destination of the timing log when ENABLE_TIMING_LOG is True.",
    )

    @field_validator("LOG_LEVEL", mode="before")
    @classmethod
    def _normalize_log_level(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().upper()
        return value

    @timed
    def resolve_api_key(self) -> str:
        """Return the decrypted upstream credential.

        Raises:
            ConfigurationError: when the key is missing or cannot be decrypted.
        """
        from .errors import ConfigurationError

        raw = str(self.API_KEY or "").strip()
        if not raw:
            raise ConfigurationError(
                "OPENAI_API_KEY is not configured. Please add it to your environment."
            )
        try:
            value = EncryptedStr.decrypt(raw)
        except InvalidToken as exc:
            raise ConfigurationError(
                "OPENAI_API_KEY cannot be decrypted. Check RELAY_SECRET_KEY."
            ) from exc
        value = value.strip()
        if not value:
            raise ConfigurationError(
                "OPENAI_API_KEY is not configured. Please add it to your environment."
            )
        return value

    def delta_event_types(self) -> frozenset[str]:
        from .utils import _split_csv

        return frozenset(_split_csv(self.DELTA_EVENT_TYPES))

    def error_event_types(self) -> frozenset[str]:
        from .utils import _split_csv

        return frozenset(_split_csv(self.ERROR_EVENT_TYPES))
