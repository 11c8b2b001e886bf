"""Tests for the command-line entrypoint."""

from __future__ import annotations

from pathlib import Path

import pytest

from connlease import cli


@pytest.fixture
def config_dir(tmp_path: Path) -> Path:
    (tmp_path / "environment.toml").write_text('analytics = "analytics_prod"\n')
    (tmp_path / "database.toml").write_text(
        """
[analytics_prod]
host = "db.internal"
database = "analytics"
username = "reporter"
password = "secret"
"""
    )
    return tmp_path


def test_demo_run_prints_status(config_dir: Path, capsys: pytest.CaptureFixture[str]) -> None:
    code = cli.main(["analytics", "--config-dir", str(config_dir), "--demo", "--expiration-ms", "1000"])

    out = capsys.readouterr().out
    assert code == 0
    assert "postgresql://db.internal:5432/analytics: Demo result for analytics" in out
    assert "state=connected_fresh expiration=0:00:01" in out


def test_unknown_key_exits_with_configuration_error(config_dir: Path, capsys: pytest.CaptureFixture[str]) -> None:
    code = cli.main(["billing", "--config-dir", str(config_dir), "--demo"])

    assert code == 2
    assert "Configuration error" in capsys.readouterr().err


def test_negative_expiration_exits_with_configuration_error(
    config_dir: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    code = cli.main(["analytics", "--config-dir", str(config_dir), "--demo", "--expiration-ms", "-5"])

    assert code == 2
    assert "must not be negative" in capsys.readouterr().err


def test_connection_failure_exits_with_error(
    config_dir: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    async def _broken_connect(**kwargs):  # type: ignore[no-untyped-def]
        raise OSError("connection refused")

    monkeypatch.setattr("connlease.drivers.asyncpg.connect", _broken_connect)

    code = cli.main(["analytics", "--config-dir", str(config_dir)])

    assert code == 1
    assert "connection refused" in capsys.readouterr().err
