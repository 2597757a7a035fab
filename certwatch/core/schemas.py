"""Core data models for the registry poller."""

import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator

RAW_BUFFER_CAP = 1000


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_job_id() -> str:
    """Opaque job id: ``job_<epoch-ms>_<random>``."""
    millis = int(utcnow().timestamp() * 1000)
    return f"job_{millis}_{uuid.uuid4().hex[:9]}"


def dates_in_range(start: date, end: date) -> list[str]:
    """Inclusive list of ISO dates from start to end, one per day."""
    if start > end:
        msg = f"start date {start} is after end date {end}"
        raise ValueError(msg)
    days = (end - start).days
    return [(start + timedelta(days=i)).isoformat() for i in range(days + 1)]


class JobStatus(str, Enum):
    CREATED = "created"
    INITIALIZING = "initializing"
    RUNNING = "running"
    RETRYING_ERRORS = "retrying_errors"
    STOPPED = "stopped"
    ERROR = "error"


class VerificationMode(str, Enum):
    """How often the registry wants a fresh verification code."""

    PER_SESSION = "per_session"
    PER_UNIT = "per_unit"


class MatchField(str, Enum):
    NAME = "name"
    FATHERS_NAME = "fathers_name"
    MOTHERS_NAME = "mothers_name"


class JobConfig(BaseModel):
    """Immutable configuration of a polling job."""

    model_config = ConfigDict(frozen=True)

    unit_keys: list[str]
    gender: str = "male"
    queries: list[str] = Field(default_factory=list)
    interval_minutes: float = Field(default=60.0, gt=0.0)
    verification_code: str | None = None
    token: str | None = None
    verification_mode: VerificationMode = VerificationMode.PER_SESSION

    @field_validator("unit_keys")
    @classmethod
    def at_least_one_unit(cls, v: list[str]) -> list[str]:
        if not v:
            msg = "at least one unit key must be configured"
            raise ValueError(msg)
        return v

    @field_validator("queries")
    @classmethod
    def drop_blank_queries(cls, v: list[str]) -> list[str]:
        return [q.strip() for q in v if q.strip()]

    @classmethod
    def from_date_range(cls, start: date, end: date, **kwargs: object) -> "JobConfig":
        return cls(unit_keys=dates_in_range(start, end), **kwargs)  # type: ignore[arg-type]


class Record(BaseModel):
    """One row of the registry's result table."""

    model_config = ConfigDict(frozen=True)

    name: str
    gender: str = ""
    date_of_death: str = ""
    fathers_name: str = ""
    mothers_name: str = ""

    def field_value(self, match_field: MatchField) -> str:
        return str(getattr(self, match_field.value))


class MatchResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    is_match: bool
    score: float = Field(default=0.0, ge=0.0, le=100.0)
    matched_part: str = ""


NO_MATCH = MatchResult(is_match=False)


class MatchedEntry(BaseModel):
    """A record that matched one of the job's queries."""

    model_config = ConfigDict(frozen=True)

    record: Record
    score: float = Field(ge=0.0, le=100.0)
    matched_field: MatchField
    matched_part: str
    unit_key: str
    query: str


class RawEntry(BaseModel):
    """A record collected when the job has no queries."""

    model_config = ConfigDict(frozen=True)

    record: Record
    unit_key: str


class FoundUnit(BaseModel):
    """All matches for one unit key plus the record count seen for it."""

    unit_key: str
    entries: list[MatchedEntry] = Field(default_factory=list)
    total_records: int = 0


class ErrorEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    unit_key: str
    error: str
    timestamp: datetime = Field(default_factory=utcnow)


class Job(BaseModel):
    """Persisted state of a polling job."""

    job_id: str = Field(default_factory=new_job_id)
    config: JobConfig
    status: JobStatus = JobStatus.CREATED
    started_at: datetime = Field(default_factory=utcnow)
    last_update: datetime | None = None
    total_requests: int = 0
    cycles_completed: int = 0
    cursor: int = 0
    found_units: list[FoundUnit] = Field(default_factory=list)
    raw_records: list[RawEntry] = Field(default_factory=list)
    errors: list[ErrorEntry] = Field(default_factory=list)
    errored_units: list[str] = Field(default_factory=list)
    pending_retry: list[str] = Field(default_factory=list)
    retrying: bool = False

    def touch(self) -> None:
        self.last_update = utcnow()

    def found_unit(self, unit_key: str) -> FoundUnit | None:
        for found in self.found_units:
            if found.unit_key == unit_key:
                return found
        return None

    def put_found_unit(self, found: FoundUnit) -> None:
        for i, existing in enumerate(self.found_units):
            if existing.unit_key == found.unit_key:
                self.found_units[i] = found
                return
        self.found_units.append(found)

    def record_error(self, unit_key: str, error: str) -> None:
        self.errors.append(ErrorEntry(unit_key=unit_key, error=error))
        if unit_key not in self.errored_units:
            self.errored_units.append(unit_key)

    def replace_errors(self, unit_key: str, error: str) -> None:
        """Drop earlier error entries for a unit and record the latest one."""
        self.errors = [e for e in self.errors if e.unit_key != unit_key]
        self.record_error(unit_key, error)

    def resolve_errors(self, unit_key: str) -> None:
        self.errors = [e for e in self.errors if e.unit_key != unit_key]
        if unit_key in self.errored_units:
            self.errored_units.remove(unit_key)

    @property
    def is_terminal(self) -> bool:
        return self.status in (JobStatus.STOPPED, JobStatus.ERROR)

    def summary(self) -> "JobSummary":
        return JobSummary(
            job_id=self.job_id,
            queries=list(self.config.queries),
            status=self.status,
            started_at=self.started_at,
            last_update=self.last_update,
            found_units_count=len(self.found_units),
            total_requests=self.total_requests,
            error_count=len(self.errors),
        )


class JobSummary(BaseModel):
    """Listing view of a job."""

    job_id: str
    queries: list[str]
    status: JobStatus
    started_at: datetime
    last_update: datetime | None
    found_units_count: int
    total_requests: int
    error_count: int


@dataclass
class SessionState:
    """Per-job session material. Never persisted, never shared between jobs."""

    token: str | None = None
    verification_code: str | None = None
    cookies: dict[str, str] = field(default_factory=dict)

    def clear(self) -> None:
        self.token = None
        self.verification_code = None
        self.cookies.clear()
