"""Backends — package-manager bindings behind one operation contract.

Public re-exports for convenient access.
"""

from upm.backends.base import LanguageBackend, Lockable, Quirks, supports_lock
from upm.backends.registry import BackendRegistry, default_registry

__all__ = [
    "BackendRegistry",
    "LanguageBackend",
    "Lockable",
    "Quirks",
    "default_registry",
    "supports_lock",
]
