"""Base class for analysis backend adapters."""

import asyncio
from abc import ABC, abstractmethod
from typing import List

from securechain.config.settings import BackendConfig, BackendKind
from securechain.models.contract import ContractArtifact
from securechain.models.finding import RawFinding
from securechain.models.identity import BackendIdentity


class BackendAdapter(ABC):
    """Wraps one analysis tool or AI model.

    Implementations return raw findings or raise
    :class:`~securechain.errors.TransientBackendError` /
    :class:`~securechain.errors.FatalBackendError`. They must watch
    ``cancel_event`` and release any process or socket they own soon
    after it is set.
    """

    def __init__(self, name: str, config: BackendConfig):
        """Initialize backend adapter.

        Args:
            name: Backend name, the first half of its identity
            config: Backend configuration
        """
        self.name = name
        self.config = config
        self._initialized = False

    @property
    def identity(self) -> BackendIdentity:
        return BackendIdentity(name=self.name, version=self.config.version)

    @property
    def kind(self) -> BackendKind:
        return self.config.kind

    async def initialize(self) -> None:
        """Prepare the backend (check binaries, open sessions, etc.)."""
        self._initialized = True

    @abstractmethod
    async def invoke(
        self,
        artifact: ContractArtifact,
        config: BackendConfig,
        cancel_event: asyncio.Event,
        deadline: float,
    ) -> List[RawFinding]:
        """Analyze an artifact and return backend-native findings.

        Args:
            artifact: Contract to analyze
            config: Effective configuration for this run
            cancel_event: Set by the scheduler when the job is cancelled
            deadline: Event-loop time by which the attempt must finish

        Returns:
            Raw findings, possibly empty
        """

    async def cleanup(self) -> None:
        """Release resources held between invocations."""
        self._initialized = False

    def is_available(self) -> bool:
        """Check if the backend is ready to use."""
        return True

    async def __aenter__(self):
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.cleanup()
