"""Job engine: lifecycle state machine and per-unit fetch/retry loop.

State machine:
  created -> initializing -> running -> (retrying_errors) -> running -> ... -> stopped
  initializing -> error   (fatal bootstrap failure, never resumed)

One cycle:
  1. Main pass over every unit key, in configured order, from ``cursor``
  2. Per unit: fetch -> extract -> match -> aggregate, then commit + pause
     - session expired: one re-acquisition + one retry, no retry-pass entry
     - other failure: error entry + retry-pass entry
  3. Retry pass: each failed unit fetched exactly once more
  4. Schedule the next cycle after ``interval_minutes`` (cancellable timer)

The job record is committed whole after every unit, so readers of the store
never see a half-applied unit. Stop is observed between units.
"""

import asyncio
import logging
from collections.abc import Coroutine
from typing import Any

from certwatch.core.config import MatchingConfig, PollingConfig
from certwatch.core.db import JobStore
from certwatch.core.errors import SessionError
from certwatch.core.schemas import (
    ErrorEntry,
    Job,
    JobStatus,
    MatchedEntry,
    RawEntry,
    Record,
    SessionState,
    VerificationMode,
)
from certwatch.pipeline.aggregator import append_raw, merge_unit
from certwatch.pipeline.matcher import NameMatcher, match_record
from certwatch.platforms.base import FetchFailure, FetchOutcome, FetchSuccess, SourceAdapter

logger = logging.getLogger(__name__)

INIT_ERROR_KEY = "initialization"


class JobEngine:
    """Drives one polling job. Exclusive owner of that job's record and session.

    Usage::

        engine = JobEngine(job, store, adapter, settings.polling, settings.matching)
        await engine.start()       # returns once the first cycle is underway
        ...
        await engine.stop()
    """

    def __init__(
        self,
        job: Job,
        store: JobStore,
        adapter: SourceAdapter,
        polling: PollingConfig | None = None,
        matching: MatchingConfig | None = None,
    ) -> None:
        self._job = job
        self._store = store
        self._adapter = adapter
        self._polling = polling or PollingConfig()
        self._matching = matching or MatchingConfig()
        self._matcher = NameMatcher(self._matching)
        self._session = SessionState()

        self._cycle_lock = asyncio.Lock()
        self._task: asyncio.Task[None] | None = None
        self._timer: asyncio.TimerHandle | None = None
        self._stopping = False
        self._closed = False
        self._finished = asyncio.Event()

    # --- Public API ---

    @property
    def job_id(self) -> str:
        return self._job.job_id

    @property
    def status(self) -> JobStatus:
        return self._job.status

    @property
    def next_cycle_scheduled(self) -> bool:
        return self._timer is not None

    @property
    def closed(self) -> bool:
        return self._closed

    def snapshot(self) -> Job:
        """Deep copy of the engine's view of the job."""
        return self._job.model_copy(deep=True)

    async def start(self) -> None:
        """Bootstrap the session and launch the first cycle in the background."""
        if self._job.status != JobStatus.CREATED:
            msg = f"Job {self.job_id} already started (status: {self._job.status.value})"
            raise RuntimeError(msg)
        if self._store.load(self.job_id) is None:
            self._store.save(self._job)
        self._launch(self._bootstrap_and_run())

    async def resume(self) -> None:
        """Continue a persisted, non-terminal job after a restart."""
        if self._job.is_terminal:
            msg = f"Job {self.job_id} is {self._job.status.value} and cannot resume"
            raise RuntimeError(msg)
        logger.info(
            "Resuming job %s (status: %s, cursor: %d, pending retries: %d)",
            self.job_id, self._job.status.value, self._job.cursor, len(self._job.pending_retry),
        )
        self._launch(self._bootstrap_and_run())

    async def run_cycle(self) -> bool:
        """Run one full cycle. Returns False if nothing ran.

        A trigger that arrives while a cycle is in flight is dropped.
        """
        if self._cycle_lock.locked():
            logger.warning("Cycle already in progress for job %s, ignoring trigger", self.job_id)
            return False

        async with self._cycle_lock:
            self._cancel_timer()
            if self._job.status in (JobStatus.CREATED, JobStatus.ERROR) or self._should_stop():
                return False

            await self._run_cycle_locked()

            if not self._should_stop():
                self._schedule_next_cycle()
            return True

    async def stop(self) -> None:
        """Stop the job: no further units, no retry pass, no next cycle."""
        self._stopping = True
        self._cancel_timer()

        if self._job.status != JobStatus.STOPPED:
            self._job.status = JobStatus.STOPPED
            self._job.retrying = False
            self._job.touch()
            if self._store.load(self.job_id) is not None:
                self._store.save(self._job)
            logger.info("Job %s stopped", self.job_id)

        if not self._busy():
            await self._release()

    async def suspend(self) -> None:
        """Detach from a job without changing its persisted status.

        Used on process shutdown; ``resume()`` picks the job up again.
        """
        self._stopping = True
        self._cancel_timer()
        if self._task is not None and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        await self._release()
        logger.info("Job %s suspended", self.job_id)

    async def wait_idle(self) -> None:
        """Wait for the in-flight bootstrap or cycle, if any."""
        if self._task is not None and not self._task.done():
            await asyncio.wait([self._task])

    async def wait_closed(self) -> None:
        """Wait until the job is stopped, errored or suspended."""
        await self._finished.wait()

    # --- Lifecycle ---

    def _launch(self, coro: Coroutine[Any, Any, None]) -> None:
        self._task = asyncio.create_task(coro, name=f"job-{self.job_id}")
        self._task.add_done_callback(self._log_task_failure)

    async def _bootstrap_and_run(self) -> None:
        if await self._initialize():
            await self.run_cycle()
        await self._release_if_stopping()

    async def _timed_cycle(self) -> None:
        await self.run_cycle()
        await self._release_if_stopping()

    async def _initialize(self) -> bool:
        job = self._job
        job.status = JobStatus.INITIALIZING
        job.touch()
        self._commit()
        if self._should_stop():
            return False

        logger.info("Initializing session for job %s...", self.job_id)
        try:
            await self._acquire_session()
            if not self._session.verification_code:
                msg = (
                    "Verification code is required. Provide it or ensure it can be "
                    "extracted from the page."
                )
                raise SessionError(msg)
        except SessionError as e:
            if self._should_stop():
                return False
            logger.error("Failed to initialize session for job %s: %s", self.job_id, e)
            job.status = JobStatus.ERROR
            job.errors.append(
                ErrorEntry(unit_key=INIT_ERROR_KEY, error=f"Failed to initialize session: {e}"),
            )
            job.touch()
            self._commit()
            await self._release()
            return False

        if job.config.token:
            self._session.token = job.config.token

        if self._should_stop():
            return False

        job.status = JobStatus.RETRYING_ERRORS if job.retrying else JobStatus.RUNNING
        job.touch()
        self._commit()
        logger.info("Session initialized. Ready to poll for job %s", self.job_id)
        return True

    async def _acquire_session(self) -> None:
        previous_code = self._session.verification_code
        try:
            grant = await self._adapter.acquire_session(
                self._session, self._job.config.verification_code,
            )
        except SessionError:
            raise
        except Exception as e:  # errors never escape the engine
            logger.exception("Adapter raised while acquiring a session for job %s", self.job_id)
            msg = f"Unexpected error: {e}"
            raise SessionError(msg) from e
        if (
            grant.verification_code is None
            and previous_code
            and self._job.config.verification_mode == VerificationMode.PER_SESSION
        ):
            self._session.verification_code = previous_code

    def _schedule_next_cycle(self) -> None:
        minutes = self._job.config.interval_minutes
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(minutes * 60, self._on_timer)
        logger.info("Scheduled next poll cycle for job %s in %g minutes", self.job_id, minutes)

    def _on_timer(self) -> None:
        self._timer = None
        if self._stopping:
            return
        self._launch(self._timed_cycle())

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _busy(self) -> bool:
        current = asyncio.current_task()
        return (
            self._task is not None
            and not self._task.done()
            and self._task is not current
        )

    async def _release_if_stopping(self) -> None:
        if self._stopping:
            await self._release()

    async def _release(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._cancel_timer()
        self._session.clear()
        await self._adapter.aclose()
        self._finished.set()

    def _log_task_failure(self, task: "asyncio.Task[None]") -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Job %s task crashed", self.job_id, exc_info=exc)

    # --- Cycle ---

    async def _run_cycle_locked(self) -> None:
        job = self._job
        units = job.config.unit_keys
        resume_retry = job.retrying and bool(job.pending_retry)

        if not resume_retry:
            if job.cursor == 0:
                job.pending_retry = []
            job.status = JobStatus.RUNNING
            job.retrying = False
            job.touch()
            self._commit()

            for index in range(job.cursor, len(units)):
                if self._should_stop():
                    return
                unit_key = units[index]
                if await self._process_unit(unit_key) and unit_key not in job.pending_retry:
                    job.pending_retry.append(unit_key)
                job.cursor = index + 1
                job.touch()
                self._commit()
                await self._pause(self._polling.unit_delay_s)

        if self._should_stop():
            return

        if job.pending_retry:
            await self._retry_pass()
            if self._should_stop():
                return

        job.status = JobStatus.RUNNING
        job.retrying = False
        job.cursor = 0
        job.pending_retry = []
        job.cycles_completed += 1
        job.touch()
        self._commit()
        logger.info(
            "Cycle %d complete for job %s: %d unit(s) with matches, %d error(s)",
            job.cycles_completed, self.job_id, len(job.found_units), len(job.errors),
        )

    async def _process_unit(self, unit_key: str) -> bool:
        """Main-pass handling of one unit. Returns True if it belongs in the retry pass."""
        if not await self._refresh_code_for_unit(unit_key):
            return True

        outcome = await self._fetch(unit_key)
        if isinstance(outcome, FetchSuccess):
            self._absorb(unit_key, outcome.payload)
            return False

        if not outcome.session_expired:
            logger.warning("Fetch failed for %s: %s", unit_key, outcome.reason)
            self._job.record_error(unit_key, outcome.reason)
            return True

        logger.info("CSRF token expired for job %s. Reinitializing session...", self.job_id)
        try:
            await self._acquire_session()
        except SessionError as e:
            logger.error("Failed to reinitialize session for job %s: %s", self.job_id, e)
            self._job.record_error(unit_key, f"{outcome.reason} Refresh failed: {e}")
            return False

        retry = await self._fetch(unit_key)
        if isinstance(retry, FetchSuccess):
            self._absorb(unit_key, retry.payload)
            return False

        logger.warning("Retry after session refresh failed for %s: %s", unit_key, retry.reason)
        self._job.record_error(unit_key, retry.reason)
        return False

    async def _retry_pass(self) -> None:
        job = self._job
        job.status = JobStatus.RETRYING_ERRORS
        job.retrying = True
        job.touch()
        self._commit()
        logger.info("Retrying %d failed unit(s) for job %s", len(job.pending_retry), self.job_id)

        await self._pause(self._polling.retry_delay_s)

        for unit_key in list(job.pending_retry):
            if self._should_stop():
                return
            await self._retry_unit(unit_key)
            job.pending_retry.remove(unit_key)
            job.touch()
            self._commit()
            await self._pause(self._polling.unit_delay_s)

    async def _retry_unit(self, unit_key: str) -> None:
        if not await self._refresh_code_for_unit(unit_key, replace=True):
            return

        outcome = await self._fetch(unit_key)
        if isinstance(outcome, FetchSuccess):
            self._absorb(unit_key, outcome.payload)
            logger.info("Retry succeeded for %s", unit_key)
            return

        logger.warning("Retry failed for %s: %s", unit_key, outcome.reason)
        self._job.replace_errors(unit_key, outcome.reason)
        if outcome.session_expired:
            try:
                await self._acquire_session()
            except SessionError as e:
                logger.error("Failed to reinitialize session for job %s: %s", self.job_id, e)

    async def _refresh_code_for_unit(self, unit_key: str, *, replace: bool = False) -> bool:
        """Fetch a one-time verification code when the target demands one per request."""
        if self._job.config.verification_mode != VerificationMode.PER_UNIT:
            return True
        try:
            await self._acquire_session()
        except SessionError as e:
            reason = f"Could not refresh verification code: {e}"
            if replace:
                self._job.replace_errors(unit_key, reason)
            else:
                self._job.record_error(unit_key, reason)
            return False
        return True

    async def _fetch(self, unit_key: str) -> FetchOutcome:
        try:
            outcome = await self._adapter.fetch_unit(self._session, unit_key, self._job.config)
        except Exception as e:  # errors never escape the engine
            logger.exception("Adapter raised while fetching %s", unit_key)
            outcome = FetchFailure(reason=f"Unexpected error: {e}")
        self._job.total_requests += 1
        return outcome

    def _absorb(self, unit_key: str, payload: str) -> None:
        """Apply a successful payload to the job (in memory; caller commits)."""
        job = self._job
        records = self._adapter.extract(payload)

        if job.config.queries:
            matches = self._match(unit_key, records)
            existing = job.found_unit(unit_key)
            if matches or existing is not None:
                job.put_found_unit(merge_unit(existing, matches, unit_key, len(records)))
            if matches:
                logger.info(
                    "Found %d matching record(s) for %s on %s",
                    len(matches), job.config.queries, unit_key,
                )
        else:
            job.raw_records = append_raw(
                job.raw_records,
                [RawEntry(record=r, unit_key=unit_key) for r in records],
            )
            logger.debug("Collected %d record(s) for %s", len(records), unit_key)

        job.resolve_errors(unit_key)

    def _match(self, unit_key: str, records: list[Record]) -> list[MatchedEntry]:
        matches: list[MatchedEntry] = []
        for record in records:
            best = match_record(record, self._job.config.queries, self._matcher)
            if best is None:
                continue
            match_field, query, result = best
            if result.score < self._matching.min_score:
                logger.debug(
                    "Filtered out low-score match: %s (score: %.1f)", record.name, result.score,
                )
                continue
            matches.append(
                MatchedEntry(
                    record=record,
                    score=result.score,
                    matched_field=match_field,
                    matched_part=result.matched_part,
                    unit_key=unit_key,
                    query=query,
                ),
            )
        matches.sort(key=lambda m: m.score, reverse=True)
        return matches

    # --- Persistence & pacing ---

    def _should_stop(self) -> bool:
        if self._stopping:
            return True
        stored = self._store.load(self.job_id)
        if stored is None or stored.status == JobStatus.STOPPED:
            logger.info("Job %s was stopped or removed externally", self.job_id)
            self._stopping = True
            self._job.status = JobStatus.STOPPED
            self._job.retrying = False
            self._cancel_timer()
            return True
        return False

    def _commit(self) -> None:
        """Persist the whole job unless it was stopped or removed elsewhere.

        The write only lands on the exact record just read; a concurrent
        change (such as another process persisting ``stopped``) forces a re-read.
        """
        while True:
            stored, blob = self._store.load_versioned(self.job_id)
            if stored is None or blob is None:
                self._stopping = True
                return
            if stored.status == JobStatus.STOPPED and self._job.status != JobStatus.STOPPED:
                self._stopping = True
                self._job.status = JobStatus.STOPPED
                self._job.retrying = False
                self._cancel_timer()
            if self._store.save_if_unchanged(self._job, blob):
                return
            logger.debug("Job %s changed while committing, re-reading", self.job_id)

    @staticmethod
    async def _pause(seconds: float) -> None:
        if seconds > 0:
            await asyncio.sleep(seconds)
