"""Registry adapter: wires session manager, unit fetcher and extractor."""

import logging

from certwatch.core.config import Settings
from certwatch.core.schemas import JobConfig, Record, SessionState
from certwatch.core.transport import HttpxTransport, Transport
from certwatch.platforms.base import FetchOutcome, SessionGrant, SourceAdapter
from certwatch.platforms.registry.fetcher import UnitFetcher
from certwatch.platforms.registry.parser import RecordExtractor
from certwatch.platforms.registry.session_manager import ChallengeReader, SessionManager

logger = logging.getLogger(__name__)


class RegistryAdapter(SourceAdapter):
    """Certificate registry adapter.

    Owns one transport; create one adapter per job so that no two jobs share
    a connection pool or session material.
    """

    def __init__(
        self,
        transport: Transport,
        settings: Settings,
        challenge_reader: ChallengeReader | None = None,
    ) -> None:
        self._transport = transport
        self._sessions = SessionManager(transport, settings.source, challenge_reader)
        self._fetcher = UnitFetcher(transport, settings.source)
        self._extractor = RecordExtractor()

    @classmethod
    def create(cls, settings: Settings) -> "RegistryAdapter":
        """Build an adapter with a fresh httpx transport (and browser reader if enabled)."""
        reader: ChallengeReader | None = None
        if settings.browser.enabled:
            from certwatch.browser.session import RenderedChallengeReader

            reader = RenderedChallengeReader(settings.browser)
        return cls(HttpxTransport(settings.source.timeout_s), settings, reader)

    @property
    def source_id(self) -> str:
        return "registry"

    async def acquire_session(
        self, session: SessionState, provided_code: str | None = None,
    ) -> SessionGrant:
        return await self._sessions.acquire(session, provided_code)

    async def fetch_unit(
        self, session: SessionState, unit_key: str, config: JobConfig,
    ) -> FetchOutcome:
        return await self._fetcher.fetch(session, unit_key, config.gender)

    def extract(self, payload: str) -> list[Record]:
        return self._extractor.extract(payload)

    async def aclose(self) -> None:
        await self._transport.aclose()
        logger.debug("Registry transport closed")
