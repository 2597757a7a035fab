"""Tests for core data models."""

import re
from datetime import date

import pytest
from pydantic import ValidationError

from certwatch.core.schemas import (
    ErrorEntry,
    FoundUnit,
    Job,
    JobConfig,
    JobStatus,
    MatchField,
    Record,
    SessionState,
    VerificationMode,
    dates_in_range,
    new_job_id,
)


def _config(**overrides: object) -> JobConfig:
    defaults: dict[str, object] = {"unit_keys": ["2004-09-15", "2004-09-16"]}
    defaults.update(overrides)
    return JobConfig(**defaults)  # type: ignore[arg-type]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class TestDatesInRange:
    def test_inclusive(self) -> None:
        assert dates_in_range(date(2004, 9, 15), date(2004, 9, 17)) == [
            "2004-09-15", "2004-09-16", "2004-09-17",
        ]

    def test_single_day(self) -> None:
        assert dates_in_range(date(2004, 9, 15), date(2004, 9, 15)) == ["2004-09-15"]

    def test_crosses_month_boundary(self) -> None:
        assert dates_in_range(date(2004, 2, 28), date(2004, 3, 1)) == [
            "2004-02-28", "2004-02-29", "2004-03-01",
        ]

    def test_reversed_range_rejected(self) -> None:
        with pytest.raises(ValueError, match="after end date"):
            dates_in_range(date(2004, 9, 16), date(2004, 9, 15))


class TestNewJobId:
    def test_format(self) -> None:
        assert re.fullmatch(r"job_\d+_[0-9a-f]{9}", new_job_id())

    def test_unique(self) -> None:
        assert len({new_job_id() for _ in range(50)}) == 50


# ---------------------------------------------------------------------------
# JobConfig
# ---------------------------------------------------------------------------


class TestJobConfig:
    def test_defaults(self) -> None:
        c = _config()
        assert c.gender == "male"
        assert c.queries == []
        assert c.interval_minutes == 60.0
        assert c.verification_code is None
        assert c.verification_mode == VerificationMode.PER_SESSION

    def test_unit_keys_required(self) -> None:
        with pytest.raises(ValidationError):
            _config(unit_keys=[])

    def test_blank_queries_dropped(self) -> None:
        c = _config(queries=["  kowsalya ", "", "   "])
        assert c.queries == ["kowsalya"]

    def test_interval_must_be_positive(self) -> None:
        with pytest.raises(ValidationError):
            _config(interval_minutes=0)

    def test_frozen(self) -> None:
        c = _config()
        with pytest.raises(ValidationError):
            c.gender = "female"  # type: ignore[misc]

    def test_from_date_range(self) -> None:
        c = JobConfig.from_date_range(
            date(2004, 9, 15), date(2004, 9, 16), queries=["kowsalya"],
        )
        assert c.unit_keys == ["2004-09-15", "2004-09-16"]
        assert c.queries == ["kowsalya"]


# ---------------------------------------------------------------------------
# Record
# ---------------------------------------------------------------------------


class TestRecord:
    def test_field_value(self) -> None:
        r = Record(name="D.KOWSALYA", fathers_name="DURAI", mothers_name="MALLIGA")
        assert r.field_value(MatchField.NAME) == "D.KOWSALYA"
        assert r.field_value(MatchField.FATHERS_NAME) == "DURAI"
        assert r.field_value(MatchField.MOTHERS_NAME) == "MALLIGA"


# ---------------------------------------------------------------------------
# Job
# ---------------------------------------------------------------------------


class TestJob:
    def test_defaults(self) -> None:
        job = Job(config=_config())
        assert job.status == JobStatus.CREATED
        assert job.job_id.startswith("job_")
        assert job.cursor == 0
        assert job.last_update is None
        assert not job.is_terminal

    def test_record_error_flags_unit_once(self) -> None:
        job = Job(config=_config())
        job.record_error("2004-09-15", "HTTP 500")
        job.record_error("2004-09-15", "HTTP 502")
        assert len(job.errors) == 2
        assert job.errored_units == ["2004-09-15"]

    def test_replace_errors(self) -> None:
        job = Job(config=_config())
        job.record_error("2004-09-15", "first")
        job.record_error("2004-09-16", "other")
        job.replace_errors("2004-09-15", "second")
        assert [(e.unit_key, e.error) for e in job.errors] == [
            ("2004-09-16", "other"),
            ("2004-09-15", "second"),
        ]

    def test_resolve_errors(self) -> None:
        job = Job(config=_config())
        job.record_error("2004-09-15", "HTTP 500")
        job.record_error("2004-09-16", "HTTP 500")
        job.resolve_errors("2004-09-15")
        assert [e.unit_key for e in job.errors] == ["2004-09-16"]
        assert job.errored_units == ["2004-09-16"]

    def test_put_found_unit_replaces(self) -> None:
        job = Job(config=_config())
        job.put_found_unit(FoundUnit(unit_key="2004-09-15", total_records=1))
        job.put_found_unit(FoundUnit(unit_key="2004-09-16", total_records=2))
        job.put_found_unit(FoundUnit(unit_key="2004-09-15", total_records=5))
        assert [f.unit_key for f in job.found_units] == ["2004-09-15", "2004-09-16"]
        found = job.found_unit("2004-09-15")
        assert found is not None
        assert found.total_records == 5
        assert job.found_unit("1999-01-01") is None

    @pytest.mark.parametrize("status", [JobStatus.STOPPED, JobStatus.ERROR])
    def test_terminal_statuses(self, status: JobStatus) -> None:
        assert Job(config=_config(), status=status).is_terminal

    def test_summary(self) -> None:
        job = Job(config=_config(queries=["kowsalya"]), total_requests=4)
        job.put_found_unit(FoundUnit(unit_key="2004-09-15"))
        job.errors.append(ErrorEntry(unit_key="2004-09-16", error="boom"))
        s = job.summary()
        assert s.job_id == job.job_id
        assert s.queries == ["kowsalya"]
        assert s.found_units_count == 1
        assert s.total_requests == 4
        assert s.error_count == 1

    def test_json_roundtrip_keeps_progress(self) -> None:
        job = Job(config=_config(), cursor=1, pending_retry=["2004-09-15"], retrying=True)
        job.touch()
        restored = Job.model_validate_json(job.model_dump_json())
        assert restored == job


class TestSessionState:
    def test_clear(self) -> None:
        s = SessionState(token="t", verification_code="1234", cookies={"a": "b"})
        s.clear()
        assert s.token is None
        assert s.verification_code is None
        assert s.cookies == {}
