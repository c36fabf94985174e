"""Backend adapter implementations for SecureChain."""

from securechain.backends.base import BackendAdapter
from securechain.backends.command import CommandBackend
from securechain.backends.registry import BackendRegistry

__all__ = [
    "BackendAdapter",
    "CommandBackend",
    "BackendRegistry",
]
