"""
Backend registry — lookup by name and detection by project contents.

The registry is the single point of backend management. The CLI
never constructs backends itself: it asks the registry for one by
name, or lets the registry detect which backend the project uses.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from upm.backends.base import LanguageBackend, supports_lock
from upm.backends.languages.elisp import ElispBackend
from upm.backends.languages.python import PoetryBackend
from upm.core.errors import UnknownBackendError
from upm.core.models.config import UpmConfig
from upm.core.scanning import any_source_file

logger = logging.getLogger(__name__)


class BackendRegistry:
    """Central registry of language backends.

    Registration order matters for detection: earlier backends win
    ties, so the preferred flavor of an ecosystem goes first.
    """

    def __init__(self, ignored_paths: list[str] | None = None):
        self._backends: dict[str, LanguageBackend] = {}
        self._ignored_paths = list(ignored_paths or [])

    def register(self, backend: LanguageBackend) -> None:
        """Register a backend under its descriptor name."""
        name = backend.name
        if name in self._backends:
            logger.warning("Overwriting existing backend: %s", name)
        self._backends[name] = backend
        logger.debug("Registered backend: %s", name)

    def get(self, name: str) -> LanguageBackend:
        """Look up a backend by name.

        Raises:
            UnknownBackendError: If nothing is registered under ``name``.
        """
        backend = self._backends.get(name)
        if backend is None:
            valid = ", ".join(self._backends) or "none"
            raise UnknownBackendError(f"No such language: {name}. Valid: {valid}")
        return backend

    def list_backends(self) -> list[str]:
        """All registered backend names, in registration order."""
        return list(self._backends.keys())

    def describe(self) -> list[dict[str, Any]]:
        """Descriptor fields of every backend, for display."""
        return [
            {
                "name": b.name,
                "specfile": b.specfile,
                "lockfile": b.lockfile,
                "filename_patterns": list(b.filename_patterns),
                "quirks": [q.name for q in type(b.quirks) if q and q in b.quirks],
                "lock": supports_lock(b),
            }
            for b in self._backends.values()
        ]

    def detect(self, project_root: Path) -> LanguageBackend | None:
        """Pick the backend a project uses.

        A backend whose specfile exists wins outright; failing that,
        the first backend with a matching source file. Returns None if
        nothing matches.
        """
        for backend in self._backends.values():
            if (project_root / backend.specfile).is_file():
                logger.debug("Detected %s by %s", backend.name, backend.specfile)
                return backend

        for backend in self._backends.values():
            if any_source_file(project_root, backend.filename_patterns, self._ignored_paths):
                logger.debug("Detected %s by %s", backend.name, backend.filename_patterns)
                return backend

        return None


def default_registry(
    config: UpmConfig | None = None,
    project_root: Path | None = None,
) -> BackendRegistry:
    """Registry with every built-in backend, bound to one project."""
    config = config or UpmConfig()
    registry = BackendRegistry(ignored_paths=config.ignored_paths)
    registry.register(ElispBackend(config, project_root))
    registry.register(PoetryBackend(config, project_root, flavor="python3"))
    registry.register(PoetryBackend(config, project_root, flavor="python2"))
    return registry
