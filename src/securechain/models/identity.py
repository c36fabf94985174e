"""Backend identity used for provenance and cache keys."""

from pydantic import BaseModel, ConfigDict


class BackendIdentity(BaseModel):
    """Stable name and version of a backend adapter."""

    model_config = ConfigDict(frozen=True)

    name: str
    version: str = "0.0.0"

    @property
    def key(self) -> str:
        return f"{self.name}@{self.version}"

    def __str__(self) -> str:
        return self.key

    def __lt__(self, other: "BackendIdentity") -> bool:
        return (self.name, self.version) < (other.name, other.version)
