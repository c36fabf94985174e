"""Shared fixtures."""

from pathlib import Path

import pytest

from securechain.backends.base import BackendAdapter
from securechain.backends.registry import BackendRegistry
from securechain.config.settings import CacheConfig, RetryConfig, Settings
from securechain.core.pipeline import AnalysisPipeline
from securechain.models.contract import ContractArtifact

from tests.fakes import FIXED_TIME, vault_artifact


@pytest.fixture
def artifact() -> ContractArtifact:
    return vault_artifact()


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        project_root=tmp_path,
        cache_dir=Path("cache"),
        results_dir=Path("results"),
        cancel_grace_period=0.1,
        retry=RetryConfig(max_retries=3, base_delay=0.0, multiplier=2.0, max_delay=0.0),
        cache=CacheConfig(enabled=True, ttl=3600),
    )


@pytest.fixture
def make_pipeline(settings):
    """Build a pipeline over the given fake adapters with a fixed clock."""

    def factory(*adapters: BackendAdapter, **overrides) -> AnalysisPipeline:
        pipeline_settings = settings.model_copy(update=overrides) if overrides else settings
        return AnalysisPipeline(
            settings=pipeline_settings,
            registry=BackendRegistry(list(adapters)),
            clock=lambda: FIXED_TIME,
        )

    return factory
