"""Per-backend task outcome models."""

from enum import Enum
from typing import Optional, Sequence, Tuple

from pydantic import BaseModel, ConfigDict, Field

from securechain.errors import ErrorKind
from securechain.models.finding import RawFinding


class TaskStatus(str, Enum):
    """Terminal status of one backend task."""

    SUCCESS = "success"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    SKIPPED = "skipped"


class BackendTaskResult(BaseModel):
    """Outcome of running one backend for one job.

    Exactly one of these is produced per (job, backend). Use the
    constructors rather than building instances by hand.
    """

    model_config = ConfigDict(frozen=True)

    status: TaskStatus
    findings: Tuple[RawFinding, ...] = ()
    error_kind: Optional[ErrorKind] = None
    attempts: int = 0
    reason: Optional[str] = None
    from_cache: bool = False
    duration: float = Field(default=0.0, ge=0.0, description="Seconds from first attempt to outcome")

    @classmethod
    def success(cls, findings: Sequence[RawFinding], attempts: int = 1) -> "BackendTaskResult":
        return cls(status=TaskStatus.SUCCESS, findings=tuple(findings), attempts=attempts)

    @classmethod
    def failed(
        cls, error_kind: ErrorKind, attempts: int, reason: Optional[str] = None
    ) -> "BackendTaskResult":
        return cls(
            status=TaskStatus.FAILED,
            error_kind=error_kind,
            attempts=attempts,
            reason=reason,
        )

    @classmethod
    def timed_out(cls, attempts: int = 0, reason: Optional[str] = None) -> "BackendTaskResult":
        return cls(status=TaskStatus.TIMED_OUT, attempts=attempts, reason=reason)

    @classmethod
    def skipped(cls, reason: str) -> "BackendTaskResult":
        return cls(status=TaskStatus.SKIPPED, reason=reason)

    @property
    def succeeded(self) -> bool:
        return self.status is TaskStatus.SUCCESS

    def as_cached(self) -> "BackendTaskResult":
        """Copy marked as served from the result cache."""
        return self.model_copy(update={"from_cache": True})

    def timed(self, seconds: float) -> "BackendTaskResult":
        return self.model_copy(update={"duration": round(max(0.0, seconds), 3)})
