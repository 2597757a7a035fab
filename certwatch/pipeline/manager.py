"""Job manager: the thin control surface over job engines.

Owns the job-id index (``jobs:index`` in the same key-value store) and one
engine per live job. Status and listing read committed records from the
store, never an engine's in-flight state.
"""

import json
import logging
from collections.abc import Callable

from certwatch.core.config import Settings
from certwatch.core.db import JobStore, KeyValueStore
from certwatch.core.schemas import Job, JobConfig, JobStatus, JobSummary
from certwatch.pipeline.engine import JobEngine
from certwatch.platforms.base import SourceAdapter

logger = logging.getLogger(__name__)

INDEX_KEY = "jobs:index"

AdapterFactory = Callable[[], SourceAdapter]


class JobManager:
    """start / status / stop / list over persisted jobs.

    Usage::

        manager = JobManager(settings, SqliteStore.open(settings.database.path))
        job_id = await manager.start(JobConfig(unit_keys=["2004-09-15"], queries=["kowsalya"]))
        manager.status(job_id)
        await manager.stop(job_id)
    """

    def __init__(
        self,
        settings: Settings,
        kv: KeyValueStore,
        adapter_factory: AdapterFactory | None = None,
    ) -> None:
        self._settings = settings
        self._kv = kv
        self._store = JobStore(kv)
        self._adapter_factory = adapter_factory or _registry_adapter_factory(settings)
        self._engines: dict[str, JobEngine] = {}

    @property
    def engines(self) -> dict[str, JobEngine]:
        return dict(self._engines)

    async def start(self, config: JobConfig) -> str:
        """Persist a new job, index it, and start polling. Returns the job id."""
        job = Job(config=config)
        self._store.save(job)
        self._add_to_index(job.job_id)

        engine = self._engine_for(job)
        await engine.start()
        logger.info(
            "Started job %s: %d unit(s), queries=%s, every %g minutes",
            job.job_id, len(config.unit_keys), config.queries or "<all records>",
            config.interval_minutes,
        )
        return job.job_id

    def status(self, job_id: str) -> Job | None:
        return self._store.load(job_id)

    async def stop(self, job_id: str) -> bool:
        """Stop a job. Returns False if the job is unknown."""
        engine = self._engines.pop(job_id, None)
        if engine is not None:
            await engine.stop()
            return True

        job = self._store.load(job_id)
        if job is None:
            return False
        if not job.is_terminal:
            job.status = JobStatus.STOPPED
            job.retrying = False
            job.touch()
            self._store.save(job)
            logger.info("Marked job %s stopped", job_id)
        return True

    def list_jobs(self) -> list[JobSummary]:
        summaries: list[JobSummary] = []
        for job_id in self._read_index():
            job = self._store.load(job_id)
            if job is not None:
                summaries.append(job.summary())
        return summaries

    async def forget(self, job_id: str) -> bool:
        """Stop a job and delete its record and index entry."""
        known = await self.stop(job_id)
        self._store.delete(job_id)
        self._remove_from_index(job_id)
        return known

    async def resume_all(self) -> list[str]:
        """Restart engines for every indexed job that is not stopped or errored."""
        resumed: list[str] = []
        for job_id in self._read_index():
            if job_id in self._engines:
                continue
            job = self._store.load(job_id)
            if job is None or job.is_terminal:
                continue
            engine = self._engine_for(job)
            await engine.resume()
            resumed.append(job_id)
        if resumed:
            logger.info("Resumed %d job(s)", len(resumed))
        return resumed

    async def wait(self) -> None:
        """Block until every live engine is stopped or errored."""
        for engine in list(self._engines.values()):
            await engine.wait_closed()

    async def shutdown(self) -> None:
        """Detach from all engines, leaving their persisted state resumable."""
        for job_id in list(self._engines):
            engine = self._engines.pop(job_id)
            await engine.suspend()

    # --- Internals ---

    def _engine_for(self, job: Job) -> JobEngine:
        engine = JobEngine(
            job,
            self._store,
            self._adapter_factory(),
            self._settings.polling,
            self._settings.matching,
        )
        self._engines[job.job_id] = engine
        return engine

    def _read_index(self) -> list[str]:
        raw = self._kv.get(INDEX_KEY)
        if not raw:
            return []
        try:
            ids = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Job index is corrupt; treating it as empty")
            return []
        return [str(i) for i in ids] if isinstance(ids, list) else []

    def _add_to_index(self, job_id: str) -> None:
        ids = self._read_index()
        if job_id not in ids:
            ids.append(job_id)
            self._kv.put(INDEX_KEY, json.dumps(ids))

    def _remove_from_index(self, job_id: str) -> None:
        ids = [i for i in self._read_index() if i != job_id]
        self._kv.put(INDEX_KEY, json.dumps(ids))


def _registry_adapter_factory(settings: Settings) -> AdapterFactory:
    from certwatch.platforms.registry.adapter import RegistryAdapter

    return lambda: RegistryAdapter.create(settings)
