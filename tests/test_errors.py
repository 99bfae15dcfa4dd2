"""Tests for error rendering."""

from __future__ import annotations

from live_page_relay.core.errors import (
    ConfigurationError,
    FrameBufferOverflow,
    FrameDecodeError,
    RelayError,
    UpstreamConnectionError,
    UpstreamRequestError,
)
from live_page_relay.core.utils import _render_error_template


def test_session_terminating_errors_share_a_base() -> None:
    for exc in (
        ConfigurationError("missing"),
        UpstreamRequestError(status=500),
        UpstreamConnectionError("down"),
        FrameBufferOverflow(10, 5),
    ):
        assert isinstance(exc, RelayError)
    assert not isinstance(FrameDecodeError("x", "bad"), RelayError)


def test_upstream_request_error_embeds_status_reason_and_body() -> None:
    exc = UpstreamRequestError(status=429, body="rate limited\n", reason="Too Many Requests")
    assert str(exc) == "Upstream request failed with status 429 Too Many Requests: rate limited"
    assert exc.status == 429
    assert exc.body == "rate limited"


def test_upstream_request_error_omits_empty_parts() -> None:
    assert str(UpstreamRequestError(status=502)) == "Upstream request failed with status 502"
    assert str(UpstreamRequestError(status=502, body="  ")) == "Upstream request failed with status 502"


def test_upstream_request_error_truncates_long_bodies() -> None:
    exc = UpstreamRequestError(status=500, body="x" * 5000)
    assert len(exc.template_values()["body"]) == 2001
    assert len(str(exc)) < 2100


def test_upstream_request_error_custom_template() -> None:
    exc = UpstreamRequestError(
        status=503,
        body="maintenance",
        template="Service said {status}\n{{#if body}}Details: {body}{{/if}}",
    )
    assert str(exc) == "Service said 503\nDetails: maintenance"


def test_template_drops_lines_with_empty_placeholders() -> None:
    rendered = _render_error_template("Status: {status}\nBody: {body}", {"status": 400, "body": ""})
    assert rendered == "Status: 400"


def test_frame_decode_error_keeps_payload() -> None:
    exc = FrameDecodeError("{bad", "Expecting property name")
    assert exc.payload == "{bad"
    assert "not valid JSON" in str(exc)
