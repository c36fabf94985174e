"""Registry of backend adapters and platform dispatch."""

import logging
from typing import Dict, Iterator, List, Optional

from securechain.backends.base import BackendAdapter
from securechain.backends.command import CommandBackend
from securechain.config.settings import BackendKind, Platform, Settings
from securechain.models.identity import BackendIdentity

logger = logging.getLogger(__name__)


class BackendRegistry:
    """Name-indexed collection of adapters."""

    def __init__(self, adapters: Optional[List[BackendAdapter]] = None):
        self._adapters: Dict[str, BackendAdapter] = {}
        for adapter in adapters or []:
            self.register(adapter)

    def register(self, adapter: BackendAdapter) -> None:
        """Add or replace the adapter registered under its name."""
        self._adapters[adapter.name] = adapter

    def get(self, name: str) -> Optional[BackendAdapter]:
        return self._adapters.get(name)

    def lookup(self, identity: BackendIdentity) -> Optional[BackendAdapter]:
        """Adapter matching both name and version, if registered."""
        adapter = self._adapters.get(identity.name)
        if adapter is not None and adapter.identity == identity:
            return adapter
        return None

    def __contains__(self, name: str) -> bool:
        return name in self._adapters

    def __iter__(self) -> Iterator[BackendAdapter]:
        return iter(self._adapters.values())

    def __len__(self) -> int:
        return len(self._adapters)

    def for_platform(self, platform: Platform) -> List[BackendAdapter]:
        """Registered adapters applicable to ``platform``, in platform order."""
        return [
            self._adapters[name]
            for name in platform.default_backends
            if name in self._adapters and platform in self._adapters[name].config.platforms
        ]

    def identities_for(self, platform: Platform, settings: Settings) -> List[BackendIdentity]:
        """Identities of the platform's applicable backends, in platform order.

        Backends that are applicable but not registered still get an
        identity (from settings) so the report shows them as skipped.
        """
        identities = []
        for name in platform.default_backends:
            config = settings.get_backend_config(name)
            if platform not in config.platforms:
                continue
            adapter = self._adapters.get(name)
            identities.append(
                adapter.identity if adapter else BackendIdentity(name=name, version=config.version)
            )
        return identities

    @classmethod
    def from_settings(cls, settings: Settings) -> "BackendRegistry":
        """Build command adapters for every backend with an executable."""
        registry = cls()
        for name, config in settings.backends.items():
            if not config.executable:
                logger.debug("event=backend_unconfigured backend=%s", name)
                continue
            environment = _credentials_for(config.kind, settings)
            registry.register(CommandBackend(name, config, environment=environment))
        return registry


def _credentials_for(kind: BackendKind, settings: Settings) -> Dict[str, str]:
    """Environment passed to AI wrappers for the selected provider."""
    if kind is not BackendKind.AI:
        return {}
    env = {"SECURECHAIN_AI_BACKEND": settings.ai_backend}
    if settings.ai_backend == "openai" and settings.openai_api_key:
        env["OPENAI_API_KEY"] = settings.openai_api_key.get_secret_value()
    elif settings.ai_backend == "anthropic" and settings.anthropic_api_key:
        env["ANTHROPIC_API_KEY"] = settings.anthropic_api_key.get_secret_value()
    return env
