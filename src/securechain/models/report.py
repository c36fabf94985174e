"""Analysis report data models."""

from datetime import datetime
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional, Tuple
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator

from securechain.config.settings import Platform, SeverityLevel
from securechain.errors import ErrorKind
from securechain.models.finding import Finding
from securechain.models.results import BackendTaskResult, TaskStatus


class CoverageEntry(BaseModel):
    """Terminal status of one backend, as shown to report consumers."""

    model_config = ConfigDict(frozen=True)

    status: TaskStatus
    error_kind: Optional[ErrorKind] = None
    attempts: int = 0
    reason: Optional[str] = None
    # Excluded from JSON so a replay from cache serializes identically.
    from_cache: bool = Field(default=False, exclude=True)
    findings_count: int = 0
    duration: float = Field(default=0.0, description="Seconds spent running the backend")

    @classmethod
    def from_result(cls, result: BackendTaskResult) -> "CoverageEntry":
        return cls(
            status=result.status,
            error_kind=result.error_kind,
            attempts=result.attempts,
            reason=result.reason,
            from_cache=result.from_cache,
            findings_count=len(result.findings),
            duration=result.duration,
        )


class Report(BaseModel):
    """Complete, immutable analysis report handed to renderers."""

    model_config = ConfigDict(frozen=True)

    job_id: UUID
    contract_name: str
    platform: Platform
    artifact_fingerprint: str
    findings: Tuple[Finding, ...] = ()
    security_score: Optional[int] = Field(default=None, ge=0, le=100)
    backend_coverage: Mapping[str, CoverageEntry] = Field(
        default_factory=dict, validate_default=True
    )
    filtered_count: int = Field(default=0, description="Merged findings dropped by filters")
    recommendations: Tuple[str, ...] = ()
    started_at: datetime
    completed_at: datetime
    generated_at: datetime

    @field_validator("backend_coverage", mode="after")
    @classmethod
    def freeze_coverage(cls, v: Mapping[str, CoverageEntry]) -> Mapping[str, CoverageEntry]:
        return MappingProxyType(dict(v))

    @field_serializer("backend_coverage")
    def dump_coverage(self, v: Mapping[str, CoverageEntry]) -> Dict[str, CoverageEntry]:
        return dict(v)

    @property
    def duration(self) -> float:
        """Seconds between job start and completion of the last backend."""
        return (self.completed_at - self.started_at).total_seconds()

    @property
    def has_full_coverage(self) -> bool:
        """True when every requested backend succeeded."""
        return all(e.status is TaskStatus.SUCCESS for e in self.backend_coverage.values())

    @property
    def failed_backends(self) -> List[str]:
        return [k for k, e in self.backend_coverage.items() if e.status is not TaskStatus.SUCCESS]

    @property
    def coverage_warning(self) -> Optional[str]:
        """User-facing caveat when the score rests on partial evidence."""
        if self.has_full_coverage:
            return None
        succeeded = len(self.backend_coverage) - len(self.failed_backends)
        if succeeded == 0:
            return (
                "No backend completed successfully; the absence of findings "
                "is not evidence that the contract is safe."
            )
        return (
            f"Only {succeeded} of {len(self.backend_coverage)} backends completed "
            f"(incomplete: {', '.join(self.failed_backends)}); findings may be missing."
        )

    @property
    def severity_counts(self) -> Dict[SeverityLevel, int]:
        counts = {s: 0 for s in SeverityLevel}
        for finding in self.findings:
            counts[finding.severity] += 1
        return counts

    @property
    def has_critical_findings(self) -> bool:
        """Check if any critical vulnerabilities found."""
        return any(f.severity is SeverityLevel.CRITICAL for f in self.findings)

    def to_summary(self) -> str:
        """Generate human-readable summary."""
        score = "withheld" if self.security_score is None else f"{self.security_score}/100"
        summary_parts = [
            f"Analysis Report for {self.contract_name} ({self.platform.value})",
            f"Job: {self.job_id}",
            "",
            "Findings Summary:",
            f"- Total Findings: {len(self.findings)}",
        ]

        for severity, count in self.severity_counts.items():
            if count > 0:
                summary_parts.append(f"  - {severity.value.upper()}: {count}")
        if self.filtered_count:
            summary_parts.append(f"- Filtered out: {self.filtered_count}")

        summary_parts.extend(["", "Backend Coverage:"])
        for key, entry in self.backend_coverage.items():
            detail = entry.reason or (entry.error_kind.value if entry.error_kind else "")
            cached = " (cached)" if entry.from_cache else ""
            summary_parts.append(
                f"  - {key}: {entry.status.value}{cached} in {entry.duration:.2f}s"
                + (f" [{detail}]" if detail else "")
            )

        summary_parts.extend(["", f"Security Score: {score}"])
        if self.coverage_warning:
            summary_parts.append(f"Warning: {self.coverage_warning}")
        if self.recommendations:
            summary_parts.extend(["", "Recommendations:"])
            summary_parts.extend(f"- {text}" for text in self.recommendations)
        summary_parts.append(f"Completed in {self.duration:.2f}s")

        return "\n".join(summary_parts)
