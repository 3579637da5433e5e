"""Tests for the renewal-sync CLI."""

from __future__ import annotations

import json

import pytest
from click.testing import CliRunner

from renewal_sync.cli import cli

pytestmark = pytest.mark.unit


@pytest.fixture(autouse=True)
def _no_logging_setup(monkeypatch):
    """Keep CliRunner's captured streams out of the root logger."""
    monkeypatch.setattr("renewal_sync.cli.configure_logging", lambda **kwargs: None)


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture
def config_file(tmp_path, feed_file):
    path = tmp_path / "renewal_sync.toml"
    path.write_text(
        "[sync]\n"
        "event_delay_seconds = 0\n"
        "confirm_countdown_seconds = 0\n"
        f"feed_path = '{feed_file}'\n"
        "\n"
        "[calendar]\n"
        'provider = "recording"\n'
    )
    return path


class TestPreview:
    def test_summary(self, runner, feed_file, config_file):
        result = runner.invoke(
            cli, ["preview", str(feed_file), "--config", str(config_file), "--today", "2025-06-02"]
        )
        assert result.exit_code == 0, result.output
        assert "Schedule summary:" in result.output
        assert "2025-06-03: 1 total events" in result.output
        assert "Times: 09:30 (Unassigned)" in result.output
        assert "Mode:              preview" in result.output
        assert "Records processed: 3" in result.output
        assert "Events created:    0" in result.output

    def test_json(self, runner, config_file):
        result = runner.invoke(
            cli, ["preview", "--config", str(config_file), "--today", "2025-06-02", "--json"]
        )
        assert result.exit_code == 0, result.output
        data = json.loads(result.output)
        assert data["mode"] == "preview"
        assert data["processed"] == 3
        assert data["specialists"] == ["Asha", "Ravi", "Unassigned"]
        assert {b["client"]: b["start"] for b in data["bookings"]} == {
            "Acme Traders": "10:00",
            "Blue Fin Foods": "11:00",
            "Cedar Labs": "09:30",
        }

    def test_missing_feed(self, runner, tmp_path, config_file):
        result = runner.invoke(
            cli, ["preview", str(tmp_path / "missing.csv"), "--config", str(config_file)]
        )
        assert result.exit_code == 1
        assert "Renewal feed not found" in result.output

    def test_invalid_config(self, runner, tmp_path, feed_file):
        bad = tmp_path / "bad.toml"
        bad.write_text("[calendar]\nprovider = 'outlook'\n")
        result = runner.invoke(cli, ["preview", str(feed_file), "--config", str(bad)])
        assert result.exit_code == 2
        assert "Configuration error" in result.output


class TestSync:
    def test_live_run_with_yes(self, runner, config_file):
        result = runner.invoke(
            cli, ["sync", "--yes", "--config", str(config_file), "--today", "2025-06-02"]
        )
        assert result.exit_code == 0, result.output
        assert "Mode:              live" in result.output
        assert "Events created:    3" in result.output
        assert "Errors:            0" in result.output

    def test_countdown_without_yes(self, runner, tmp_path, feed_file, monkeypatch):
        config = tmp_path / "countdown.toml"
        config.write_text(
            "[sync]\nconfirm_countdown_seconds = 2\nevent_delay_seconds = 0\n"
            f"feed_path = '{feed_file}'\n[calendar]\nprovider = 'recording'\n"
        )
        sleeps: list[float] = []
        monkeypatch.setattr("renewal_sync.cli.time.sleep", sleeps.append)

        result = runner.invoke(cli, ["sync", "--config", str(config), "--today", "2025-06-02"])

        assert result.exit_code == 0, result.output
        assert "REAL calendar events" in result.output
        assert sleeps == [2]

    def test_google_without_credentials(self, runner, tmp_path, feed_file):
        config = tmp_path / "google.toml"
        config.write_text("[sync]\nconfirm_countdown_seconds = 0\n")
        result = runner.invoke(cli, ["sync", str(feed_file), "--yes", "--config", str(config)])
        assert result.exit_code == 2
        assert "credentials_json" in result.output


class TestTestCommand:
    def test_first_n_records(self, runner, config_file):
        result = runner.invoke(
            cli, ["test", "2", "--config", str(config_file), "--today", "2025-06-02", "--json"]
        )
        assert result.exit_code == 0, result.output
        payload = result.output[result.output.index("{") :]
        data = json.loads(payload)
        assert data["total"] == 2
        assert data["events_created"] == 2

    def test_count_must_be_positive(self, runner, config_file):
        result = runner.invoke(cli, ["test", "0", "--config", str(config_file)])
        assert result.exit_code == 2


class TestStatus:
    def test_ready(self, runner, feed_file, config_file):
        result = runner.invoke(cli, ["status", str(feed_file), "--config", str(config_file)])
        assert result.exit_code == 0, result.output
        assert "Delimiter: comma" in result.output
        assert "Columns:   9" in result.output
        assert "Records:   4" in result.output

    def test_missing(self, runner, tmp_path, config_file):
        result = runner.invoke(
            cli, ["status", str(tmp_path / "missing.csv"), "--config", str(config_file)]
        )
        assert result.exit_code == 1
        assert "Feed not found" in result.output


class TestServe:
    def test_runs_uvicorn(self, runner, config_file, monkeypatch):
        calls = []
        monkeypatch.setattr("uvicorn.run", lambda app, **kwargs: calls.append((app, kwargs)))

        result = runner.invoke(cli, ["serve", "--port", "9001", "--config", str(config_file)])

        assert result.exit_code == 0, result.output
        [(app, kwargs)] = calls
        assert app.title == "Renewal Sync API"
        assert kwargs["port"] == 9001
        assert kwargs["host"] == "127.0.0.1"
