"""Configuration settings for SecureChain using Pydantic."""

from typing import Any, Dict, FrozenSet, List, Optional, Tuple, Type
from pathlib import Path
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, SecretStr, field_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    TomlConfigSettingsSource,
)


class SeverityLevel(str, Enum):
    """Canonical vulnerability severity levels."""

    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    INFORMATIONAL = "informational"

    @property
    def rank(self) -> int:
        """Ordinal impact, higher is worse."""
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {
    SeverityLevel.CRITICAL: 4,
    SeverityLevel.HIGH: 3,
    SeverityLevel.MEDIUM: 2,
    SeverityLevel.LOW: 1,
    SeverityLevel.INFORMATIONAL: 0,
}


class BackendKind(str, Enum):
    """Broad family of an analysis backend."""

    STATIC = "static"
    SYMBOLIC = "symbolic"
    FUZZER = "fuzzer"
    AI = "ai"


class Platform(str, Enum):
    """Supported smart contract platforms."""

    EVM = "evm"
    MOVE = "move"
    CAIRO = "cairo"
    INK = "ink"

    @property
    def default_backends(self) -> Tuple[str, ...]:
        """Backend names applicable to this platform, in request order."""
        return _PLATFORM_BACKENDS[self]

    @property
    def source_extensions(self) -> Tuple[str, ...]:
        return _PLATFORM_EXTENSIONS[self]


_PLATFORM_BACKENDS = {
    Platform.EVM: ("slither", "mythril", "echidna", "ai-auditor"),
    Platform.MOVE: ("move-prover", "ai-auditor"),
    Platform.CAIRO: ("caracal", "ai-auditor"),
    Platform.INK: ("cargo-contract", "ai-auditor"),
}

_PLATFORM_EXTENSIONS = {
    Platform.EVM: (".sol", ".vy"),
    Platform.MOVE: (".move",),
    Platform.CAIRO: (".cairo",),
    Platform.INK: (".rs",),
}


class BackendConfig(BaseModel):
    """Configuration for an individual analysis backend."""

    model_config = ConfigDict(frozen=True)

    enabled: bool = True
    version: str = "0.0.0"
    kind: BackendKind = BackendKind.STATIC
    timeout: float = Field(default=300, description="Per-attempt timeout in seconds")
    max_concurrency: Optional[int] = Field(
        default=None,
        ge=0,
        description="Per-backend ceiling below the global one (None = global only)",
    )
    platforms: FrozenSet[Platform] = Field(default_factory=lambda: frozenset(Platform))
    executable: Optional[str] = Field(default=None, description="External command to run")
    args: Tuple[str, ...] = ()
    default_confidence: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    options: Dict[str, Any] = Field(default_factory=dict)


class RetryConfig(BaseModel):
    """Bounded exponential backoff for backend invocations."""

    model_config = ConfigDict(frozen=True)

    max_retries: int = Field(default=3, ge=1, description="Total attempts per backend")
    base_delay: float = Field(default=1.0, ge=0.0)
    multiplier: float = Field(default=2.0, ge=1.0)
    max_delay: float = Field(default=30.0, ge=0.0)


class CacheConfig(BaseModel):
    """Result cache behaviour."""

    model_config = ConfigDict(frozen=True)

    enabled: bool = Field(default=True, description="Cache analysis results")
    ttl: float = Field(default=3600, ge=0, description="Entry time-to-live in seconds")
    cache_failures: bool = Field(default=False, description="Also cache Failed/TimedOut")
    sweep_interval: float = Field(default=60, gt=0)
    persist: bool = Field(default=False, description="Snapshot cache to cache_dir")


DEFAULT_SEVERITY_FILTERS = frozenset(
    {
        SeverityLevel.CRITICAL,
        SeverityLevel.HIGH,
        SeverityLevel.MEDIUM,
        SeverityLevel.LOW,
    }
)


class AnalysisConfig(BaseModel):
    """Report filtering applied by the aggregator."""

    model_config = ConfigDict(frozen=True)

    min_confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    severity_filters: FrozenSet[SeverityLevel] = DEFAULT_SEVERITY_FILTERS
    withhold_score_without_coverage: bool = Field(
        default=False,
        description="Report no score at all when no backend succeeded",
    )


def _default_backends() -> Dict[str, BackendConfig]:
    evm = frozenset({Platform.EVM})
    return {
        "slither": BackendConfig(
            version="0.10.0",
            kind=BackendKind.STATIC,
            timeout=300,
            platforms=evm,
        ),
        "mythril": BackendConfig(
            version="0.24.0",
            kind=BackendKind.SYMBOLIC,
            timeout=600,
            platforms=evm,
        ),
        "echidna": BackendConfig(
            version="2.2.0",
            kind=BackendKind.FUZZER,
            timeout=900,
            platforms=evm,
            options={"test-limit": 50000},
        ),
        "move-prover": BackendConfig(
            version="1.0.0",
            kind=BackendKind.SYMBOLIC,
            timeout=600,
            platforms=frozenset({Platform.MOVE}),
        ),
        "caracal": BackendConfig(
            version="0.2.0",
            kind=BackendKind.STATIC,
            timeout=300,
            platforms=frozenset({Platform.CAIRO}),
        ),
        "cargo-contract": BackendConfig(
            version="4.0.0",
            kind=BackendKind.STATIC,
            timeout=300,
            platforms=frozenset({Platform.INK}),
        ),
        "ai-auditor": BackendConfig(
            version="1",
            kind=BackendKind.AI,
            timeout=120,
            max_concurrency=1,
        ),
    }


class Settings(BaseSettings):
    """Global application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="SECURECHAIN_",
        env_nested_delimiter="__",
        case_sensitive=False,
        toml_file="securechain.toml",
        frozen=True,
    )

    # API keys
    etherscan_api_key: Optional[SecretStr] = None
    ai_backend: str = Field(default="local", description="AI backend: local, openai, anthropic")
    openai_api_key: Optional[SecretStr] = None
    anthropic_api_key: Optional[SecretStr] = None

    # Paths
    project_root: Path = Field(default=Path.cwd(), description="Project root directory")
    cache_dir: Path = Field(default=Path(".securechain_cache"), description="Cache directory")
    results_dir: Path = Field(default=Path("results"), description="Results output directory")

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")
    log_format: str = Field(default="rich", description="Log format (rich, text)")

    # Scheduling
    max_concurrent_tasks: int = Field(default=4, ge=1, description="Global concurrency ceiling")
    default_timeout: float = Field(default=300, gt=0, description="Fallback per-backend timeout")
    job_timeout: float = Field(default=1800, gt=0, description="Wall-clock limit per job")
    cancel_grace_period: float = Field(default=5, ge=0)

    retry: RetryConfig = Field(default_factory=RetryConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    analysis: AnalysisConfig = Field(default_factory=AnalysisConfig)
    backends: Dict[str, BackendConfig] = Field(default_factory=_default_backends)

    @field_validator("cache_dir", "results_dir", mode="before")
    @classmethod
    def resolve_paths(cls, v: Any, info) -> Path:
        """Resolve paths relative to project root."""
        v = Path(v)
        root = info.data.get("project_root")
        if not v.is_absolute() and root is not None:
            return Path(root) / v
        return v

    @field_validator("log_format")
    @classmethod
    def check_log_format(cls, v: str) -> str:
        if v not in ("rich", "text"):
            raise ValueError("log_format must be 'rich' or 'text'")
        return v

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: Type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> Tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            TomlConfigSettingsSource(settings_cls),
            file_secret_settings,
        )

    @classmethod
    def from_toml(cls, path: Path, **overrides: Any) -> "Settings":
        """Load settings from an explicit TOML file.

        Args:
            path: TOML file to read
            **overrides: Values taking precedence over the file

        Returns:
            Settings instance
        """
        data = TomlConfigSettingsSource(cls, toml_file=Path(path))()
        data.update(overrides)
        return cls(**data)

    def get_backend_config(self, name: str) -> BackendConfig:
        """Get configuration for a specific backend."""
        return self.backends.get(name, BackendConfig(timeout=self.default_timeout))

    def enabled_backends(self, platform: Platform) -> List[str]:
        """Names of enabled backends applicable to ``platform``."""
        return [
            name
            for name in platform.default_backends
            if self.get_backend_config(name).enabled
            and platform in self.get_backend_config(name).platforms
        ]

    def ensure_directories(self) -> None:
        """Create necessary directories if they don't exist."""
        for dir_path in [self.cache_dir, self.results_dir]:
            dir_path.mkdir(parents=True, exist_ok=True)
