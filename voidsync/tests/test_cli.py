from __future__ import annotations

import json
from unittest.mock import AsyncMock, patch

import pytest
from typer.testing import CliRunner

from voidsync.cli import app

runner = CliRunner()


@pytest.fixture()
def db_url(tmp_path):
    return f"sqlite:///{tmp_path / 'voidsync.db'}"


class TestCli:
    def test_stats_json_on_empty_database(self, db_url):
        result = runner.invoke(app, ["--db-url", db_url, "--json", "stats"])
        assert result.exit_code == 0, result.output
        data = json.loads(result.output)
        assert data["projects"] == 0
        assert data["last_sync"] is None

    def test_sync_success(self, db_url):
        run = AsyncMock(return_value={"success": True, "results": {"categories": {"count": 21, "status": "ok"}}})
        with patch("voidsync.cli.pipeline.run_sync", new=run):
            result = runner.invoke(app, ["--db-url", db_url, "sync", "--source", "cron", "--disable", "pikespeak"])
        assert result.exit_code == 0, result.output
        source = run.await_args.args[0]
        settings = run.await_args.kwargs["settings"]
        assert source == "cron"
        assert "pikespeak" in settings.disabled_stages

    def test_sync_skipped_exit_code(self, db_url):
        run = AsyncMock(return_value={"success": False, "skipped": True, "reason": "sync already running"})
        with patch("voidsync.cli.pipeline.run_sync", new=run):
            result = runner.invoke(app, ["--db-url", db_url, "sync"])
        assert result.exit_code == 2

    def test_sync_failure_exit_code(self, db_url):
        run = AsyncMock(side_effect=RuntimeError("boom"))
        with patch("voidsync.cli.pipeline.run_sync", new=run):
            result = runner.invoke(app, ["--db-url", db_url, "sync"])
        assert result.exit_code == 1

    def test_gap_unknown_category(self, db_url):
        result = runner.invoke(app, ["--db-url", db_url, "gap", "nope"])
        assert result.exit_code != 0
