"""Analysis job model."""

from typing import Optional, Tuple
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator

from securechain.models.contract import ContractArtifact
from securechain.models.identity import BackendIdentity


class AnalysisJob(BaseModel):
    """One submission: an artifact and the backends to run against it."""

    model_config = ConfigDict(frozen=True)

    id: UUID = Field(default_factory=uuid4)
    artifact: ContractArtifact
    backends: Tuple[BackendIdentity, ...]
    timeout: float = Field(default=1800, gt=0, description="Wall-clock limit in seconds")
    max_concurrent_tasks: Optional[int] = Field(
        default=None, ge=1, description="Overrides the scheduler's global ceiling"
    )
    bypass_cache: bool = False

    @field_validator("backends")
    @classmethod
    def dedupe_backends(cls, v: Tuple[BackendIdentity, ...]) -> Tuple[BackendIdentity, ...]:
        """Keep request order, drop repeats."""
        return tuple(dict.fromkeys(v))
