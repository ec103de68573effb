"""
Backend base — the contract between the CLI and a package manager.

Every language backend implements this interface. The CLI only talks
to backends through it, never directly to Cask, Poetry, or any other
tool, so disparate package managers can be driven identically.

Unlike most of the codebase, backend operations DO raise: any
``UpmError`` aborts the current command. There is no partial-success
mode.
"""

from __future__ import annotations

import enum
import re
from abc import ABC, abstractmethod
from pathlib import Path

from upm.core.models.config import UpmConfig
from upm.core.models.package import (
    PackageInfo,
    PackageName,
    PackageSpec,
    PackageVersion,
)


class Quirks(enum.Flag):
    """Documented deviations from the idealized operation contract."""

    NONE = 0
    # Search/info results depend on live remote state
    NOT_REPRODUCIBLE = enum.auto()
    # add/remove also install (and lock) as a side effect
    ADD_REMOVE_ALSO_INSTALLS = enum.auto()


class LanguageBackend(ABC):
    """Abstract base class for all language backends.

    Descriptor attributes are class-level and fixed per backend; the
    config and project root arrive at construction. All file paths are
    relative to ``root``, and every list/parse call re-reads from disk.

    To create a new backend:
        1. Subclass LanguageBackend (and Lockable if the tool can lock)
        2. Set the descriptor attributes and implement every operation
        3. Register it in the BackendRegistry
    """

    name: str = ""
    specfile: str = ""
    lockfile: str = ""
    filename_patterns: list[str] = []
    quirks: Quirks = Quirks.NONE

    def __init__(self, config: UpmConfig | None = None, root: Path | None = None):
        self.config = config or UpmConfig()
        self.root = (root or Path.cwd()).resolve()

    @property
    def specfile_path(self) -> Path:
        return self.root / self.specfile

    @property
    def lockfile_path(self) -> Path:
        return self.root / self.lockfile

    # ── Index queries ───────────────────────────────────────────

    @abstractmethod
    def search(self, query: str) -> list[PackageInfo]:
        """Free-text lookup against the package index.

        Returns an empty list, never an error, when nothing matches.
        Order is whatever the index returns.
        """

    @abstractmethod
    def info(self, name: PackageName) -> PackageInfo:
        """Metadata for one package; an empty record if unknown."""

    # ── Specfile edits ──────────────────────────────────────────

    @abstractmethod
    def add(self, pkgs: dict[PackageName, PackageSpec]) -> None:
        """Declare each package with its spec ("" = unconstrained)."""

    @abstractmethod
    def remove(self, pkgs: set[PackageName]) -> None:
        """Drop each package's declaration by exact name.

        Raises:
            SpecfileMissingError: If there is no specfile.
        """

    # ── Environment ─────────────────────────────────────────────

    @abstractmethod
    def install(self) -> None:
        """Make the local environment match the specfile/lockfile."""

    # ── Reads ───────────────────────────────────────────────────

    @abstractmethod
    def list_specfile(self) -> dict[PackageName, PackageSpec]:
        """Declared packages, parsed fresh from the specfile."""

    @abstractmethod
    def list_lockfile(self) -> dict[PackageName, PackageVersion]:
        """Resolved versions, parsed fresh from the lockfile."""

    # ── Guessing ────────────────────────────────────────────────

    @abstractmethod
    def guess(self) -> set[PackageName]:
        """Best-effort dependency names inferred from source files."""

    @abstractmethod
    def guess_regexps(self) -> list[re.Pattern[str]]:
        """The import/require regexes used for lightweight scanning."""

    # ── Helpers ─────────────────────────────────────────────────

    def has_specfile(self) -> bool:
        return self.specfile_path.is_file()

    def has_lockfile(self) -> bool:
        return self.lockfile_path.is_file()

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} name={self.name!r} root={str(self.root)!r}>"


class Lockable(ABC):
    """Optional capability: regenerate the lockfile from the specfile.

    Backends without it leave lock generation to ``install``.
    """

    @abstractmethod
    def lock(self) -> None:
        """Regenerate the lockfile by invoking the ecosystem tool."""


def supports_lock(backend: LanguageBackend) -> bool:
    """Whether ``backend`` has the optional lock capability."""
    return isinstance(backend, Lockable)
