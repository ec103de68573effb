"""
Configuration model — the values backends receive at construction.

Loaded from an optional upm.yml by ``upm.core.config.loader``. The
interpreter overrides (UPM_PYTHON2 / UPM_PYTHON3) are folded in by
the loader, so backends never read the environment themselves.
"""

from __future__ import annotations

from pydantic import BaseModel, Field

EPKGS_URL = "https://github.com/emacsmirror/epkgs/raw/master/epkg.sqlite"

DEFAULT_IGNORED_PATHS = [
    ".git",
    ".hg",
    ".svn",
    "node_modules",
    "__pycache__",
    ".venv",
    "venv",
    ".cask",
    ".upm",
    "elpa",
]


class UpmConfig(BaseModel):
    """Tool locations and limits for all backends."""

    # ── Interpreters / executables ───────────────────────────────
    python2: str = "python2"
    python3: str = "python3"
    emacs: str = "emacs"
    cask: str = "cask"

    # ── Network ──────────────────────────────────────────────────
    epkgs_url: str = EPKGS_URL
    download_timeout: int = 60

    # None = wait for the tool as long as it takes
    command_timeout: int | None = None

    # Directory names skipped by guess and detection
    ignored_paths: list[str] = Field(default_factory=lambda: list(DEFAULT_IGNORED_PATHS))
