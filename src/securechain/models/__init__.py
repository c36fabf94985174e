"""Data models for SecureChain."""

from securechain.models.contract import ContractArtifact, ContractSource
from securechain.models.finding import (
    Finding,
    Location,
    RawFinding,
    RawLocation,
    VulnerabilityCategory,
)
from securechain.models.identity import BackendIdentity
from securechain.models.job import AnalysisJob
from securechain.models.report import CoverageEntry, Report
from securechain.models.results import BackendTaskResult, TaskStatus

__all__ = [
    "ContractArtifact",
    "ContractSource",
    "Finding",
    "Location",
    "RawFinding",
    "RawLocation",
    "VulnerabilityCategory",
    "BackendIdentity",
    "AnalysisJob",
    "CoverageEntry",
    "Report",
    "BackendTaskResult",
    "TaskStatus",
]
