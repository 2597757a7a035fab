"""Tests for the CLI: argument parsing, job config building, read-only commands."""

import json
from pathlib import Path

import pytest

from certwatch.core.config import DatabaseConfig, Settings
from certwatch.core.db import JobStore, SqliteStore
from certwatch.core.schemas import Job, JobConfig, JobStatus, VerificationMode
from certwatch.pipeline.manager import INDEX_KEY
from main import build_job_config, cmd_list, cmd_status, cmd_stop, dry_run, main, parse_args


def _settings(tmp_path: Path) -> Settings:
    return Settings(database=DatabaseConfig(path=str(tmp_path / "jobs.db")))


def _seed(settings: Settings, **job_fields: object) -> Job:
    config = JobConfig(unit_keys=["2004-09-15"], queries=["kowsalya"])
    job = Job(config=config, **job_fields)  # type: ignore[arg-type]
    store = SqliteStore.open(settings.database.path)
    store.put(INDEX_KEY, json.dumps([job.job_id]))
    JobStore(store).save(job)
    store.close()
    return job


# ---------------------------------------------------------------------------
# parse_args / build_job_config
# ---------------------------------------------------------------------------


class TestParseArgs:
    def test_run_flags(self) -> None:
        args = parse_args([
            "run", "--start-date", "2004-09-15", "--end-date", "2004-09-17",
            "--name", "kowsalya", "--name", "ramesh", "--gender", "female",
            "--interval", "30", "--verification-code", "4821", "--per-unit-code", "-v",
        ])
        assert args.command == "run"
        assert args.names == ["kowsalya", "ramesh"]
        assert args.gender == "female"
        assert args.interval == 30.0
        assert args.per_unit_code is True
        assert args.verbose is True
        assert args.config == "config/settings.yaml"

    def test_command_required(self) -> None:
        with pytest.raises(SystemExit):
            parse_args([])

    def test_bad_date_rejected(self) -> None:
        with pytest.raises(SystemExit):
            parse_args(["run", "--start-date", "15/09/2004", "--end-date", "2004-09-17"])

    def test_status_takes_job_id(self) -> None:
        args = parse_args(["status", "job_1_abc", "--config", "other.yaml"])
        assert args.job_id == "job_1_abc"
        assert args.config == "other.yaml"


class TestBuildJobConfig:
    def test_full(self) -> None:
        args = parse_args([
            "run", "--start-date", "2004-09-15", "--end-date", "2004-09-16",
            "--name", "kowsalya", "--per-unit-code",
        ])
        config = build_job_config(args, Settings())
        assert config is not None
        assert config.unit_keys == ["2004-09-15", "2004-09-16"]
        assert config.queries == ["kowsalya"]
        assert config.interval_minutes == 60.0
        assert config.verification_mode == VerificationMode.PER_UNIT

    def test_no_dates_means_resume_only(self) -> None:
        assert build_job_config(parse_args(["run"]), Settings()) is None

    def test_one_date_rejected(self) -> None:
        args = parse_args(["run", "--start-date", "2004-09-15"])
        with pytest.raises(ValueError, match="together"):
            build_job_config(args, Settings())

    def test_reversed_range_rejected(self) -> None:
        args = parse_args(["run", "--start-date", "2004-09-17", "--end-date", "2004-09-15"])
        with pytest.raises(ValueError):
            build_job_config(args, Settings())


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


class TestCommands:
    def test_dry_run_prints_plan(self, capsys: pytest.CaptureFixture[str]) -> None:
        config = JobConfig(unit_keys=["2004-09-15", "2004-09-16"], queries=["kowsalya"])
        dry_run(Settings(), config)
        out = capsys.readouterr().out
        assert "[DRY RUN] 2 date(s): 2004-09-15 .. 2004-09-16" in out
        assert "kowsalya" in out

    def test_list_and_status(self, tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
        settings = _settings(tmp_path)
        job = _seed(settings, status=JobStatus.RUNNING, total_requests=3)

        assert cmd_list(settings) == 0
        assert job.job_id in capsys.readouterr().out

        assert cmd_status(settings, job.job_id) == 0
        assert f'"job_id": "{job.job_id}"' in capsys.readouterr().out

        assert cmd_status(settings, "job_0_missing") == 1

    async def test_stop_marks_persisted_job(self, tmp_path: Path) -> None:
        settings = _settings(tmp_path)
        job = _seed(settings, status=JobStatus.RUNNING)

        assert await cmd_stop(settings, job.job_id, forget=False) == 0
        store = SqliteStore.open(settings.database.path)
        stored = JobStore(store).load(job.job_id)
        store.close()
        assert stored is not None
        assert stored.status == JobStatus.STOPPED

    async def test_forget_unknown(self, tmp_path: Path) -> None:
        assert await cmd_stop(_settings(tmp_path), "job_0_missing", forget=True) == 1

    def test_missing_config_exits_1(self, tmp_path: Path) -> None:
        with pytest.raises(SystemExit) as exc:
            main(["list", "--config", str(tmp_path / "missing.yaml")])
        assert exc.value.code == 1
