"""Abstract base class for registry source adapters."""

from abc import ABC, abstractmethod

from pydantic import BaseModel, ConfigDict

from certwatch.core.schemas import JobConfig, Record, SessionState


class SessionGrant(BaseModel):
    """What a successful session acquisition produced."""

    model_config = ConfigDict(frozen=True)

    token: str
    verification_code: str | None = None
    code_source: str | None = None  # "provided", "page", "browser"


class FetchSuccess(BaseModel):
    model_config = ConfigDict(frozen=True)

    payload: str


class FetchFailure(BaseModel):
    model_config = ConfigDict(frozen=True)

    reason: str
    session_expired: bool = False


FetchOutcome = FetchSuccess | FetchFailure


class SourceAdapter(ABC):
    """Base class that every registry adapter must implement."""

    @property
    @abstractmethod
    def source_id(self) -> str:
        """Unique identifier for this source (e.g. 'registry')."""

    @abstractmethod
    async def acquire_session(
        self, session: SessionState, provided_code: str | None = None,
    ) -> SessionGrant:
        """Obtain a token (and verification code) into ``session``.

        Raises SessionError when no token can be found.
        """

    @abstractmethod
    async def fetch_unit(
        self, session: SessionState, unit_key: str, config: JobConfig,
    ) -> FetchOutcome:
        """Request the records of one unit key. Never raises for fetch faults."""

    @abstractmethod
    def extract(self, payload: str) -> list[Record]:
        """Turn a fetched payload into records, in source order."""

    async def aclose(self) -> None:
        """Release network resources held by the adapter."""
