"""Raw and canonical vulnerability finding models."""

import re
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from securechain.config.settings import SeverityLevel
from securechain.models.identity import BackendIdentity


class VulnerabilityCategory(str, Enum):
    """Canonical vulnerability taxonomy."""

    REENTRANCY = "reentrancy"
    ACCESS_CONTROL = "access-control"
    INTEGER_OVERFLOW = "integer-overflow"
    PRICE_MANIPULATION = "oracle-price-manipulation"
    UNCHECKED_CALL = "unchecked-call"
    DOS = "dos"
    TIMESTAMP_DEPENDENCE = "timestamp-dependence"
    RANDOMNESS = "randomness"
    CENTRALIZATION = "centralization"
    OTHER = "other"


class Location(BaseModel):
    """A line range, a function, or both.

    A function-only location has no line range and matches other
    locations by function name alone.
    """

    model_config = ConfigDict(frozen=True)

    start_line: Optional[int] = Field(default=None, ge=1)
    end_line: Optional[int] = Field(default=None, ge=1)
    function: Optional[str] = None

    @model_validator(mode="after")
    def check_range(self) -> "Location":
        if (self.start_line is None) != (self.end_line is None):
            raise ValueError("start_line and end_line must be given together")
        if self.start_line is None:
            if not self.function:
                raise ValueError("a location needs a line range or a function")
        elif self.end_line < self.start_line:
            raise ValueError("end_line must not precede start_line")
        return self

    @property
    def has_lines(self) -> bool:
        return self.start_line is not None

    @property
    def span(self) -> Optional[int]:
        """Lines covered, or None for a function-only location."""
        if not self.has_lines:
            return None
        return self.end_line - self.start_line + 1

    @property
    def sort_key(self) -> Tuple[bool, int, int, str]:
        """Line ranges in order, then function-only locations by name."""
        return (not self.has_lines, self.start_line or 0, self.end_line or 0, self.function or "")

    def overlaps(self, other: "Location") -> bool:
        """Share at least one line or name the same function."""
        if self.function and other.function and self.function == other.function:
            return True
        if not (self.has_lines and other.has_lines):
            return False
        return self.start_line <= other.end_line and other.start_line <= self.end_line

    def __str__(self) -> str:
        if not self.has_lines:
            return self.function
        lines = (
            str(self.start_line)
            if self.start_line == self.end_line
            else f"{self.start_line}-{self.end_line}"
        )
        return f"{self.function}:{lines}" if self.function else lines


class RawLocation(BaseModel):
    """Backend-reported location; any part may be missing."""

    model_config = ConfigDict(frozen=True)

    function: Optional[str] = None
    start_line: Optional[int] = None
    end_line: Optional[int] = None
    file_path: Optional[str] = None

    @classmethod
    def parse(cls, text: str) -> "RawLocation":
        """Parse ``"withdraw:10-15"``, ``"withdraw:12"``, ``"12"`` or ``"withdraw"``."""
        text = text.strip()
        function, _, lines = text.rpartition(":")
        if not _LINES_RE.match(lines):
            return cls(function=text or None)
        start, _, end = lines.partition("-")
        return cls(
            function=function or None,
            start_line=int(start),
            end_line=int(end) if end else int(start),
        )


_LINES_RE = re.compile(r"^\d+(-\d+)?$")


class RawFinding(BaseModel):
    """Backend-native finding, prior to normalization."""

    model_config = ConfigDict(frozen=True)

    title: str
    description: str = ""
    severity: Optional[str] = None
    confidence: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    detector: Optional[str] = Field(default=None, description="Detector id or SWC id")
    category: Optional[str] = Field(default=None, description="Backend's own label")
    locations: Tuple[RawLocation, ...] = ()
    trace: Optional[str] = Field(default=None, description="Reproducing transaction trace")
    extra: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("locations", mode="before")
    @classmethod
    def parse_locations(cls, v: Any) -> Any:
        if isinstance(v, (str, dict)):
            v = [v]
        return tuple(RawLocation.parse(item) if isinstance(item, str) else item for item in v)


class Finding(BaseModel):
    """A normalized vulnerability in the canonical taxonomy.

    ``sources`` is never empty and kept sorted so that serialized
    findings are reproducible.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    title: str
    category: VulnerabilityCategory
    severity: SeverityLevel
    confidence: float = Field(ge=0.0, le=1.0)
    locations: Tuple[Location, ...] = Field(min_length=1)
    sources: Tuple[BackendIdentity, ...] = Field(min_length=1)
    description: str = ""
    detectors: Tuple[str, ...] = ()

    @field_validator("sources")
    @classmethod
    def sort_sources(cls, v: Tuple[BackendIdentity, ...]) -> Tuple[BackendIdentity, ...]:
        return tuple(sorted(set(v)))

    @property
    def primary_location(self) -> Location:
        return self.locations[0]

    @property
    def sort_key(self) -> Tuple[int, Tuple[bool, int, int, str], str]:
        """Severity descending, then primary location, then category."""
        return (-self.severity.rank, self.primary_location.sort_key, self.category.value)


RawFindingList = List[RawFinding]
