"""
Shared test fixtures and configuration.
"""

import logging
from pathlib import Path

import pytest

from upm.core.models.config import UpmConfig


@pytest.fixture
def project_dir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """An empty project directory that is also the cwd."""
    root = tmp_path / "project"
    root.mkdir()
    monkeypatch.chdir(root)
    for var in ("UPM_PYTHON2", "UPM_PYTHON3", "UPM_LOG_LEVEL", "UPM_LOG_FILE"):
        monkeypatch.delenv(var, raising=False)
    return root


@pytest.fixture
def config() -> UpmConfig:
    """Config with recognizable tool names, so commands are easy to assert."""
    return UpmConfig(
        python2="py2-test",
        python3="py3-test",
        emacs="emacs-test",
        cask="cask-test",
        epkgs_url="https://example.invalid/epkg.sqlite",
    )


@pytest.fixture(autouse=True)
def _reset_upm_logger():
    """The CLI reconfigures the ``upm`` logger; undo it after each test."""
    yield
    pkg_logger = logging.getLogger("upm")
    for handler in list(pkg_logger.handlers):
        pkg_logger.removeHandler(handler)
        handler.close()
    pkg_logger.propagate = True
    pkg_logger.setLevel(logging.NOTSET)
