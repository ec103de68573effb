"""
Guess use case — which guessed dependencies are not declared yet.

Merges a backend's source-scan guess with its specfile so callers
(``upm add --guess``) only add what is actually new.
"""

from __future__ import annotations

import logging

from upm.backends.base import LanguageBackend
from upm.core.models.package import PackageName

logger = logging.getLogger(__name__)


def guess_missing(backend: LanguageBackend) -> set[PackageName]:
    """Guessed package names not already in the specfile.

    Without a specfile everything guessed is missing. Name comparison
    is exact; no normalization.
    """
    guessed = backend.guess()
    if not backend.has_specfile():
        return guessed

    declared = backend.list_specfile()
    missing = {name for name in guessed if name not in declared}
    logger.debug(
        "guess: %d found, %d already declared",
        len(guessed), len(guessed) - len(missing),
    )
    return missing
