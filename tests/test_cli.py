"""Tests for the command-line entry point."""

from __future__ import annotations

from unittest.mock import patch

import pytest

from live_page_relay import cli


def test_overrides_take_precedence_over_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("PORT", "9000")
    args = cli.build_parser().parse_args(["--host", "127.0.0.1", "--port", "8123", "--log-level", "debug"])
    settings = cli.load_settings(args)
    assert settings.HOST == "127.0.0.1"
    assert settings.PORT == 8123
    assert settings.LOG_LEVEL == "DEBUG"


def test_environment_used_without_flags(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("PORT", "9000")
    settings = cli.load_settings(cli.build_parser().parse_args([]))
    assert settings.PORT == 9000


def test_main_loads_env_file_and_runs_uvicorn(tmp_path, monkeypatch: pytest.MonkeyPatch) -> None:
    env_file = tmp_path / ".env"
    env_file.write_text("OPENAI_MODEL=from-dotenv\nPORT=4567\n", encoding="utf-8")

    with patch.object(cli.uvicorn, "run") as run:
        assert cli.main(["--env-file", str(env_file), "--host", "127.0.0.1"]) == 0

    run.assert_called_once()
    app = run.call_args.args[0]
    kwargs = run.call_args.kwargs
    assert kwargs["host"] == "127.0.0.1"
    assert kwargs["port"] == 4567
    assert app.state.settings.UPSTREAM_MODEL == "from-dotenv"


def test_invalid_port_flag_exits_with_usage_error() -> None:
    with pytest.raises(SystemExit) as excinfo:
        cli.main(["--port", "70000"])
    assert excinfo.value.code == 2
