"""Bounded-concurrency fan-out of one job to its backends."""

import asyncio
import contextlib
import logging
import weakref
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional, Set, Union

from securechain.backends.base import BackendAdapter
from securechain.backends.registry import BackendRegistry
from securechain.config.settings import BackendConfig, Settings
from securechain.core.aggregator import Aggregator
from securechain.core.cache import CacheKey, ResultCache, config_fingerprint
from securechain.core.retry import RetryPolicy
from securechain.errors import FatalBackendError
from securechain.models.finding import RawFinding
from securechain.models.identity import BackendIdentity
from securechain.models.job import AnalysisJob
from securechain.models.report import Report
from securechain.models.results import BackendTaskResult

logger = logging.getLogger(__name__)


class TaskState(str, Enum):
    """Lifecycle of one backend task within a job."""

    PENDING = "pending"
    QUEUED = "queued"
    RUNNING = "running"
    DONE = "done"


ProgressCallback = Callable[[BackendIdentity, TaskState], None]


@dataclass
class _WorkUnit:
    identity: BackendIdentity
    adapter: BackendAdapter
    config: BackendConfig
    key: CacheKey
    limit: Optional[asyncio.Semaphore]


@dataclass
class _JobRun:
    job: AnalysisJob
    deadline: float
    progress: Optional[ProgressCallback] = None
    stop: asyncio.Event = field(default_factory=asyncio.Event)
    results: Dict[BackendIdentity, BackendTaskResult] = field(default_factory=dict)
    states: Dict[BackendIdentity, TaskState] = field(default_factory=dict)
    attempts: Dict[BackendIdentity, int] = field(default_factory=dict)
    started: Dict[BackendIdentity, float] = field(default_factory=dict)

    def transition(self, identity: BackendIdentity, state: TaskState) -> None:
        self.states[identity] = state
        logger.debug(
            "event=task_state job=%s backend=%s state=%s", self.job.id, identity, state.value
        )
        if self.progress is None:
            return
        try:
            self.progress(identity, state)
        except Exception:
            logger.exception(
                "event=progress_callback_failed job=%s backend=%s state=%s",
                self.job.id,
                identity,
                state.value,
            )

    def finish(self, identity: BackendIdentity, result: BackendTaskResult) -> None:
        self.results[identity] = result
        self.transition(identity, TaskState.DONE)


class TaskScheduler:
    """Runs every requested backend of a job and aggregates the results.

    Backends run as independent tasks under a global ceiling shared by
    the job and an optional per-backend ceiling. Completion order is
    irrelevant to the report. When the job deadline passes, running
    tasks get the cancellation signal and a grace period, and are then
    recorded as timed out whatever they do.
    """

    def __init__(
        self,
        registry: BackendRegistry,
        aggregator: Aggregator,
        settings: Optional[Settings] = None,
        cache: Optional[ResultCache] = None,
        retry: Optional[RetryPolicy] = None,
    ):
        self.registry = registry
        self.aggregator = aggregator
        self.settings = settings or Settings()
        self.cache = cache
        self.retry = retry or RetryPolicy(self.settings.retry)
        # loop -> identity -> semaphore; a semaphore binds to the loop that first waits on it.
        self._backend_limits = weakref.WeakKeyDictionary()

    @property
    def cache_enabled(self) -> bool:
        return self.cache is not None and self.cache.config.enabled

    async def run(
        self,
        job: AnalysisJob,
        cancel_event: Optional[asyncio.Event] = None,
        progress: Optional[ProgressCallback] = None,
    ) -> Report:
        """Run a job to completion, deadline or cancellation.

        Args:
            job: The job to run
            cancel_event: Explicit cancellation; still yields a partial report
            progress: Called on every task state transition

        Returns:
            Report built from whatever results completed
        """
        started_at = self.aggregator.now()
        results = await self.execute(job, cancel_event, progress)
        return self.aggregator.aggregate(
            job, results, started_at=started_at, completed_at=self.aggregator.now()
        )

    async def execute(
        self,
        job: AnalysisJob,
        cancel_event: Optional[asyncio.Event] = None,
        progress: Optional[ProgressCallback] = None,
    ) -> Dict[BackendIdentity, BackendTaskResult]:
        """Run all backend tasks and return one terminal result per backend."""
        loop = asyncio.get_running_loop()
        run = _JobRun(job=job, deadline=loop.time() + job.timeout, progress=progress)
        global_limit = asyncio.Semaphore(
            job.max_concurrent_tasks or self.settings.max_concurrent_tasks
        )
        logger.info(
            "event=job_started job=%s contract=%s backends=%d timeout=%s",
            job.id,
            job.artifact.name,
            len(job.backends),
            job.timeout,
        )

        tasks: Dict[asyncio.Task, _WorkUnit] = {}
        for identity in job.backends:
            run.transition(identity, TaskState.PENDING)
            unit = self._prepare(run, identity)
            if isinstance(unit, BackendTaskResult):
                run.finish(identity, unit)
                continue
            task = asyncio.create_task(
                self._run_unit(run, unit, global_limit),
                name=f"securechain-{identity.key}",
            )
            tasks[task] = unit

        pending: Set[asyncio.Task] = set(tasks)
        try:
            cancelled = await self._wait(run, tasks, pending, cancel_event)
        except BaseException:
            for task in pending:
                task.cancel()
            raise

        if pending:
            await self._stop(run, pending)
            for task in sorted(pending, key=lambda t: tasks[t].identity):
                unit = tasks[task]
                if cancelled:
                    result = BackendTaskResult.skipped("cancelled")
                else:
                    logger.warning(
                        "event=task_timeout job=%s backend=%s", job.id, unit.identity
                    )
                    result = BackendTaskResult.timed_out(
                        attempts=run.attempts.get(unit.identity, 0),
                        reason=f"job deadline of {job.timeout}s exceeded",
                    )
                    if unit.identity in run.started:
                        result = result.timed(loop.time() - run.started[unit.identity])
                    self._store(unit, result)
                run.finish(unit.identity, result)

        logger.info(
            "event=job_finished job=%s succeeded=%d total=%d",
            job.id,
            sum(1 for r in run.results.values() if r.succeeded),
            len(job.backends),
        )
        return {identity: run.results[identity] for identity in job.backends}

    def _prepare(
        self, run: _JobRun, identity: BackendIdentity
    ) -> Union[_WorkUnit, BackendTaskResult]:
        """Resolve a backend to a work unit, or to an immediate result."""
        adapter = self.registry.lookup(identity)
        if adapter is None:
            return BackendTaskResult.skipped("backend not registered")
        config = adapter.config
        if not config.enabled:
            return BackendTaskResult.skipped("backend disabled")
        if config.max_concurrency == 0:
            return BackendTaskResult.skipped("per-backend concurrency ceiling is zero")

        key = CacheKey(run.job.artifact.fingerprint, identity, config_fingerprint(config))
        if self.cache_enabled and not run.job.bypass_cache:
            cached = self.cache.get(key)
            if cached is not None:
                logger.info("event=cache_hit job=%s backend=%s", run.job.id, identity)
                return cached.as_cached()

        return _WorkUnit(
            identity=identity,
            adapter=adapter,
            config=config,
            key=key,
            limit=self._backend_limit(identity, config),
        )

    def _backend_limit(
        self, identity: BackendIdentity, config: BackendConfig
    ) -> Optional[asyncio.Semaphore]:
        """Per-backend semaphore, shared by every job this scheduler runs on this loop."""
        if config.max_concurrency is None:
            return None
        limits = self._backend_limits.setdefault(asyncio.get_running_loop(), {})
        limit = limits.get(identity)
        if limit is None:
            limit = limits[identity] = asyncio.Semaphore(config.max_concurrency)
        return limit

    async def _run_unit(
        self,
        run: _JobRun,
        unit: _WorkUnit,
        global_limit: asyncio.Semaphore,
    ) -> BackendTaskResult:
        run.transition(unit.identity, TaskState.QUEUED)
        # Per-backend slot first so a throttled backend never holds a global slot idle.
        async with unit.limit or contextlib.nullcontext():
            async with global_limit:
                loop = asyncio.get_running_loop()
                started = run.started[unit.identity] = loop.time()
                run.transition(unit.identity, TaskState.RUNNING)
                result = await self.retry.run(
                    self._invocation(run, unit),
                    timeout=unit.config.timeout,
                    label=unit.identity.key,
                )
                return result.timed(loop.time() - started)

    def _invocation(self, run: _JobRun, unit: _WorkUnit) -> Callable:
        loop = asyncio.get_running_loop()

        async def invoke() -> List[RawFinding]:
            if run.stop.is_set():
                raise FatalBackendError("job stopped before attempt")
            run.attempts[unit.identity] = run.attempts.get(unit.identity, 0) + 1
            deadline = min(run.deadline, loop.time() + unit.config.timeout)
            return await unit.adapter.invoke(run.job.artifact, unit.config, run.stop, deadline)

        return invoke

    async def _wait(
        self,
        run: _JobRun,
        tasks: Dict[asyncio.Task, _WorkUnit],
        pending: Set[asyncio.Task],
        cancel_event: Optional[asyncio.Event],
    ) -> bool:
        """Collect results until all tasks finish, the deadline passes or a cancel.

        Finished tasks are removed from ``pending`` as they complete.

        Returns:
            True if stopped by ``cancel_event``
        """
        loop = asyncio.get_running_loop()
        canceller = asyncio.ensure_future(cancel_event.wait()) if cancel_event else None
        try:
            while pending:
                remaining = run.deadline - loop.time()
                if remaining <= 0:
                    return False
                watch = set(pending)
                if canceller is not None:
                    watch.add(canceller)
                done, _ = await asyncio.wait(
                    watch, timeout=remaining, return_when=asyncio.FIRST_COMPLETED
                )
                for task in done:
                    if task is canceller:
                        continue
                    pending.discard(task)
                    unit = tasks[task]
                    result = task.result()
                    self._store(unit, result)
                    run.finish(unit.identity, result)
                if canceller is not None and canceller in done:
                    logger.info("event=job_cancelled job=%s", run.job.id)
                    return True
            return False
        finally:
            if canceller is not None:
                canceller.cancel()

    async def _stop(self, run: _JobRun, pending: Set[asyncio.Task]) -> None:
        """Signal cooperative cancellation, then hard-cancel after the grace period."""
        run.stop.set()
        grace = self.settings.cancel_grace_period
        _, stragglers = await asyncio.wait(pending, timeout=grace)
        for task in stragglers:
            task.cancel()
            task.add_done_callback(_consume_outcome)
        if stragglers:
            logger.warning(
                "event=tasks_abandoned job=%s count=%d grace=%s",
                run.job.id,
                len(stragglers),
                grace,
            )
            # Let cancelled tasks unwind, but never wait on an adapter that ignores it.
            await asyncio.wait(stragglers, timeout=grace)
        for task in pending - stragglers:
            _consume_outcome(task)

    def _store(self, unit: _WorkUnit, result: BackendTaskResult) -> None:
        if self.cache_enabled and self.cache.put(unit.key, result):
            logger.debug("event=cache_store backend=%s status=%s", unit.identity, result.status.value)


def _consume_outcome(task: asyncio.Task) -> None:
    """Retrieve a discarded task's outcome so asyncio does not report it."""
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.debug("event=discarded_task_error task=%s error=%r", task.get_name(), exc)
