from __future__ import annotations

import os

import pytest

from odotrack.__main__ import _parse_args, build_config, main


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for key in list(os.environ):
        if key.startswith("ODOTRACK_"):
            monkeypatch.delenv(key)


def test_flags_override_config() -> None:
    args = _parse_args(
        ["--store", "memory", "--flush-interval", "0.25", "--api", "--api-port", "4100", "--database-url", "sqlite://", "-v"]
    )

    config = build_config(args)

    assert args.store == "memory"
    assert config.flush_interval == 0.25
    assert config.api_enabled is True
    assert config.api_port == 4100
    assert config.database_url == "sqlite://"
    assert config.log_level == "DEBUG"


def test_no_api_flag_beats_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ODOTRACK_API_ENABLED", "true")

    config = build_config(_parse_args(["--no-api"]))

    assert config.api_enabled is False


def test_bad_config_exits_with_usage_code(monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]) -> None:
    monkeypatch.setenv("ODOTRACK_FLUSH_INTERVAL", "soon")

    assert main([]) == 2
    assert "ODOTRACK_FLUSH_INTERVAL" in capsys.readouterr().err
