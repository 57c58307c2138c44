"""Tests for the polling worker, the CLI and settings validation."""

import json

import pytest
from pydantic import ValidationError as PydanticValidationError

from vizai import cli, worker
from vizai.core.config import ConfigurationError, Environment, Settings
from vizai.database import SessionLocal
from vizai.services import PipelineOrchestrator

from conftest import make_project


class TestWorker:
    def test_run_once_idle(self, settings, generator):
        assert worker.run_once(settings, generator, SessionLocal) is None

    def test_run_once_processes_due_job(self, db, settings, generator):
        project = make_project(PipelineOrchestrator(db, settings, generator=generator))
        outcome = worker.run_once(settings, generator, SessionLocal)
        assert outcome.project_id == project.id
        assert outcome.status == "completed"
        assert generator.calls == 1

    def test_main_once_stops_after_one_tick(self, settings, monkeypatch):
        ticks = []
        monkeypatch.setattr(worker, "run_once", lambda s: ticks.append(s))
        worker.main(settings, once=True)
        assert ticks == [settings]

    def test_main_once_propagates_errors(self, settings, monkeypatch):
        def boom(_):
            raise RuntimeError("db down")

        monkeypatch.setattr(worker, "run_once", boom)
        with pytest.raises(RuntimeError):
            worker.main(settings, once=True)


class TestCli:
    def _run(self, capsys, *argv):
        code = cli.main(list(argv))
        return code, json.loads(capsys.readouterr().out)

    def test_create_analyze_generate(self, capsys):
        code, project = self._run(
            capsys, "create", "--user", "u1", "--rows", "50", "--columns", "date,revenue", "--filename", "s.csv"
        )
        assert code == 0
        assert project["phase"] == "idle"

        code, outcome = self._run(capsys, "analyze", project["id"])
        assert (code, outcome["status"], outcome["phase"]) == (0, "completed", "selecting")

        code, outcome = self._run(capsys, "generate", project["id"], "0")
        assert (code, outcome["phase"]) == (0, "completed")

        code, shown = self._run(capsys, "show", project["id"])
        assert shown["progress"] == 100

    def test_unknown_project_is_reported(self, capsys):
        code, body = self._run(capsys, "show", "missing")
        assert code == 1
        assert body["error"] == "PROJECT_NOT_FOUND"

    def test_health(self, capsys):
        code, report = self._run(capsys, "health", "--hours", "1")
        assert code == 0
        assert report["runs"] == 0


class TestSettings:
    def test_timeouts_must_fit_inside_wall_clock(self):
        with pytest.raises(PydanticValidationError):
            Settings(generation_timeout_seconds=90, invocation_wall_clock_seconds=60)

    def test_mock_generator_when_no_model(self):
        assert Settings(generation_model="").uses_mock_generator
        assert not Settings(generation_model="gemini/gemini-1.5-flash").uses_mock_generator

    def test_production_rejects_mock_and_sqlite(self):
        with pytest.raises(ConfigurationError):
            Settings(environment=Environment.PRODUCTION, generation_model="",
                     database_url="sqlite:///./vizai.db").validate_production_config()

    def test_development_only_warns(self):
        Settings(environment=Environment.DEVELOPMENT, generation_model="").validate_production_config()

    def test_invalid_log_level(self):
        with pytest.raises(PydanticValidationError):
            Settings(log_level="LOUD")
