"""Main analysis pipeline orchestrator."""

import asyncio
import contextlib
import logging
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Union

from securechain.backends.registry import BackendRegistry
from securechain.config.settings import Platform, Settings
from securechain.core.aggregator import Aggregator
from securechain.core.cache import ResultCache
from securechain.core.normalizer import FindingNormalizer
from securechain.core.retry import RetryPolicy
from securechain.core.scheduler import ProgressCallback, TaskScheduler
from securechain.errors import ConfigurationError
from securechain.models.contract import ContractArtifact
from securechain.models.identity import BackendIdentity
from securechain.models.job import AnalysisJob
from securechain.models.report import Report

logger = logging.getLogger(__name__)

CACHE_SNAPSHOT = "results.json"


class AnalysisPipeline:
    """Main pipeline for orchestrating vulnerability analysis.

    Wires the registry, cache, retry policy, normalizer and aggregator
    into a :class:`TaskScheduler` and turns a target path into a job.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        registry: Optional[BackendRegistry] = None,
        cache: Optional[ResultCache] = None,
        retry: Optional[RetryPolicy] = None,
        clock: Optional[Callable] = None,
    ):
        """Initialize the pipeline with settings.

        Args:
            settings: Application settings
            registry: Backend adapters; built from settings if omitted
            cache: Result cache; a fresh one is created if omitted
            retry: Retry policy; built from settings if omitted
            clock: Report timestamp source
        """
        self.settings = settings or Settings()
        self.settings.ensure_directories()
        if registry is None:
            registry = BackendRegistry.from_settings(self.settings)
        self.registry = registry
        self.cache = cache if cache is not None else ResultCache(self.settings.cache)

        configs = dict(self.settings.backends)
        configs.update({adapter.name: adapter.config for adapter in self.registry})
        normalizer = FindingNormalizer(configs)
        if clock is None:
            self.aggregator = Aggregator(normalizer, self.settings.analysis)
        else:
            self.aggregator = Aggregator(normalizer, self.settings.analysis, clock=clock)

        self.scheduler = TaskScheduler(
            self.registry,
            self.aggregator,
            settings=self.settings,
            cache=self.cache,
            retry=retry or RetryPolicy(self.settings.retry),
        )

    @property
    def snapshot_path(self) -> Path:
        return self.settings.cache_dir / CACHE_SNAPSHOT

    def create_job(
        self,
        artifact: ContractArtifact,
        backends: Optional[Iterable[str]] = None,
        timeout: Optional[float] = None,
        use_cache: bool = True,
    ) -> AnalysisJob:
        """Build a job for an artifact.

        Args:
            artifact: Contract to analyze
            backends: Backend names to run; defaults to every backend
                applicable to the artifact's platform
            timeout: Job wall-clock limit; defaults to ``settings.job_timeout``
            use_cache: Consult the result cache before running backends

        Returns:
            AnalysisJob
        """
        identities = self.resolve_backends(artifact.platform, backends)
        if not identities:
            raise ConfigurationError(
                f"No backends configured for platform {artifact.platform.value}"
            )
        return AnalysisJob(
            artifact=artifact,
            backends=tuple(identities),
            timeout=timeout or self.settings.job_timeout,
            bypass_cache=not use_cache,
        )

    def resolve_backends(
        self, platform: Platform, names: Optional[Iterable[str]] = None
    ) -> List[BackendIdentity]:
        """Map backend names to identities, defaulting to platform dispatch."""
        if not names:
            return self.registry.identities_for(platform, self.settings)
        identities = []
        for name in names:
            adapter = self.registry.get(name)
            if adapter is not None:
                identities.append(adapter.identity)
            else:
                config = self.settings.get_backend_config(name)
                identities.append(BackendIdentity(name=name, version=config.version))
        return identities

    async def analyze(
        self,
        target: Union[str, Path, ContractArtifact],
        backends: Optional[Iterable[str]] = None,
        platform: Optional[Platform] = None,
        timeout: Optional[float] = None,
        use_cache: bool = True,
        cancel_event: Optional[asyncio.Event] = None,
        progress: Optional[ProgressCallback] = None,
    ) -> Report:
        """Run full analysis pipeline on target.

        Args:
            target: Source file, directory of sources, or a loaded artifact
            backends: Backend names to run
            platform: Platform override for path targets
            timeout: Job wall-clock limit in seconds
            use_cache: Consult the result cache
            cancel_event: Explicit cancellation
            progress: Task state callback

        Returns:
            Complete analysis report
        """
        if isinstance(target, ContractArtifact):
            artifact = target
        else:
            artifact = ContractArtifact.from_path(target, platform=platform)
        job = self.create_job(artifact, backends, timeout, use_cache)

        if self.settings.cache.persist:
            self.cache.load(self.snapshot_path)
        report = await self.run_job(job, cancel_event, progress)
        if self.settings.cache.persist:
            self.cache.save(self.snapshot_path)
        return report

    async def run_job(
        self,
        job: AnalysisJob,
        cancel_event: Optional[asyncio.Event] = None,
        progress: Optional[ProgressCallback] = None,
    ) -> Report:
        """Run a prepared job.

        The job's adapters are initialized for its duration and expired
        cache entries are swept before and during the run.
        """
        self.cache.sweep()
        async with contextlib.AsyncExitStack() as stack:
            for identity in job.backends:
                adapter = self.registry.lookup(identity)
                if adapter is not None and adapter.config.enabled:
                    await stack.enter_async_context(adapter)
            sweeper = asyncio.create_task(self.cache.run_sweeper())
            try:
                return await self.scheduler.run(job, cancel_event=cancel_event, progress=progress)
            finally:
                sweeper.cancel()

    def save_report(self, report: Report, output_path: Optional[Path] = None) -> Path:
        """Save analysis report to file as JSON.

        Defaults to ``<results_dir>/<contract>_<job id>.json``.
        """
        if output_path is None:
            output_path = self.settings.results_dir / f"{report.contract_name}_{report.job_id}.json"
        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_text(report.model_dump_json(indent=2), encoding="utf-8")
        logger.info("event=report_saved path=%s findings=%d", output_path, len(report.findings))
        return output_path
