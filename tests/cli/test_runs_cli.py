"""Tests for ``scraperun runs`` CLI commands."""

from __future__ import annotations

import json
from datetime import UTC, datetime

import pytest
from typer.testing import CliRunner

from scraperun.cli.runs import app
from scraperun.runs.models import LogLine, Owner, Run, Stream
from scraperun.runs.repository import SqliteRunRepository

runner = CliRunner()


@pytest.fixture
def database(tmp_path, monkeypatch):
    from scraperun.core.settings import get_settings

    monkeypatch.setenv("SCRAPERUN_LOG_LEVEL", "WARNING")
    monkeypatch.setenv("SCRAPERUN_LOG_FORMAT", "json")
    get_settings.cache_clear()
    yield tmp_path / "runs.db"
    get_settings.cache_clear()


def _store(database, *, finished: bool) -> Run:
    owner = Owner.under("alice", database.parent / "data", database.parent / "repos")
    run = Run(owner=owner)
    run.mark_started(datetime(2026, 3, 1, 12, 0, tzinfo=UTC))
    if finished:
        run.finish(0, datetime(2026, 3, 1, 12, 0, 5, tzinfo=UTC))
    repository = SqliteRunRepository(database)
    repository.save_run(run)
    for number, (stream, text) in enumerate(
        [(Stream.STDOUT, "fetching\n"), (Stream.STDERR, "warning: slow\n"), (Stream.STDOUT, "done")], start=1
    ):
        repository.add_log_line(LogLine(run_id=run.id, stream=stream, number=number, text=text))
    repository.close()
    return run


class TestRunsShow:
    def test_show_json(self, database):
        run = _store(database, finished=True)

        result = runner.invoke(app, ["show", run.id, "--database", str(database), "--json"])

        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["id"] == run.id
        assert data["status"] == "finished_success"
        assert data["wall_time"] == 5.0

    def test_show_table(self, database):
        run = _store(database, finished=True)

        result = runner.invoke(app, ["show", run.id, "--database", str(database)])

        assert result.exit_code == 0
        assert run.id in result.stdout

    def test_show_unknown_run(self, database):
        result = runner.invoke(app, ["show", "nope", "--database", str(database)])
        assert result.exit_code == 1


class TestRunsLogs:
    def test_raw_output_is_exact(self, database):
        run = _store(database, finished=True)

        result = runner.invoke(app, ["logs", run.id, "--database", str(database), "--raw"])

        assert result.exit_code == 0
        assert result.stdout == "fetching\nwarning: slow\ndone"

    def test_filter_by_stream(self, database):
        run = _store(database, finished=True)

        result = runner.invoke(app, ["logs", run.id, "-d", str(database), "--stream", "stderr", "--json"])

        assert result.exit_code == 0
        lines = json.loads(result.stdout)
        assert [(line["number"], line["text"]) for line in lines] == [(2, "warning: slow\n")]


class TestRunsStop:
    def test_stop_running_run(self, database):
        run = _store(database, finished=False)

        result = runner.invoke(app, ["stop", run.id, "-d", str(database), "--executor", "local"])

        assert result.exit_code == 0
        assert f"Stopped run {run.id}" in result.stdout
        repository = SqliteRunRepository(database)
        stored = repository.get_run(run.id)
        repository.close()
        assert stored.status_code == 130
        assert stored.status.value == "stopped"

    def test_stop_finished_run_fails(self, database):
        run = _store(database, finished=True)

        result = runner.invoke(app, ["stop", run.id, "-d", str(database), "--executor", "local"])

        assert result.exit_code == 1
