"""Smart contract artifact models."""

import re
from functools import cached_property
from hashlib import sha256
from pathlib import Path
from typing import Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator

from securechain.config.settings import Platform
from securechain.errors import ConfigurationError

_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")


class ContractSource(BaseModel):
    """Source code information for a contract."""

    model_config = ConfigDict(frozen=True)

    file_path: str
    content: str

    @property
    def content_hash(self) -> str:
        """Get SHA256 hash of content for caching."""
        return sha256(self.content.encode()).hexdigest()

    @property
    def line_count(self) -> int:
        return max(1, len(self.content.splitlines()))


class ContractArtifact(BaseModel):
    """The unit of work submitted for analysis.

    The fingerprint covers every source file in order, so renaming a
    file or reordering sources produces a different unit of work.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    platform: Platform
    sources: Tuple[ContractSource, ...] = Field(min_length=1)
    address: Optional[str] = Field(None, description="On-chain address if deployed")
    compiler_version: Optional[str] = None

    @field_validator("address")
    @classmethod
    def validate_address(cls, v: Optional[str]) -> Optional[str]:
        """Validate hex address format."""
        if v is None:
            return v
        if not _ADDRESS_RE.match(v):
            raise ValueError("Invalid contract address format")
        return v.lower()

    @computed_field
    @cached_property
    def fingerprint(self) -> str:
        """Content hash identifying this artifact."""
        digest = sha256()
        for source in self.sources:
            digest.update(source.file_path.encode())
            digest.update(b"\0")
            digest.update(source.content_hash.encode())
        return digest.hexdigest()

    @property
    def main_source(self) -> ContractSource:
        return self.sources[0]

    @property
    def line_count(self) -> int:
        """Line count of the main source, used for contract-wide findings."""
        return self.main_source.line_count

    @property
    def is_multi_file(self) -> bool:
        """Check if contract spans multiple files."""
        return len(self.sources) > 1

    @classmethod
    def from_path(
        cls,
        path: Union[str, Path],
        platform: Optional[Platform] = None,
        name: Optional[str] = None,
    ) -> "ContractArtifact":
        """Load an artifact from a source file or a directory of sources.

        Args:
            path: File or directory
            platform: Target platform, detected from extensions if omitted
            name: Artifact name, defaults to the file or directory stem

        Returns:
            ContractArtifact with sources sorted by relative path

        Raises:
            ConfigurationError: If no source files are found or the
                platform cannot be determined
        """
        path = Path(path)
        if platform is None:
            platform = detect_platform(path)

        if path.is_file():
            files = [path]
            base = path.parent
        else:
            base = path
            files = sorted(
                p
                for ext in platform.source_extensions
                for p in path.rglob(f"*{ext}")
                if p.is_file()
            )
        if not files:
            raise ConfigurationError(f"No {platform.value} sources found in {path}")

        sources = tuple(
            ContractSource(
                file_path=str(f.relative_to(base)),
                content=f.read_text(encoding="utf-8"),
            )
            for f in files
        )
        return cls(name=name or path.stem, platform=platform, sources=sources)


def detect_platform(path: Path) -> Platform:
    """Guess the platform from source file extensions."""
    candidates = [path] if path.is_file() else [p for p in path.rglob("*") if p.is_file()]
    for platform in Platform:
        if any(p.suffix in platform.source_extensions for p in candidates):
            return platform
    raise ConfigurationError(f"Cannot determine contract platform for {path}")
