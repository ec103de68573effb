"""
Source scanning — regex search across a project tree.

Used by dependency guessing and backend detection. Files are matched
by basename glob (``*.el``, ``*.py``); ignored directories are pruned
anywhere in the tree. Matches are best-effort: regexes may over- or
under-match, and unreadable files are skipped.
"""

from __future__ import annotations

import fnmatch
import logging
import os
import re
from collections.abc import Iterable, Iterator
from pathlib import Path

logger = logging.getLogger(__name__)


def iter_source_files(
    root: Path,
    patterns: Iterable[str],
    ignored: Iterable[str] = (),
) -> Iterator[Path]:
    """Yield files under ``root`` whose basename matches any pattern."""
    patterns = list(patterns)
    ignored = set(ignored)

    for dirpath, dirnames, filenames in os.walk(root):
        # Prune in place so ignored trees are never entered
        dirnames[:] = sorted(d for d in dirnames if d not in ignored)
        for filename in sorted(filenames):
            if filename in ignored:
                continue
            if any(fnmatch.fnmatch(filename, pattern) for pattern in patterns):
                yield Path(dirpath) / filename


def search_recursive(
    regex: re.Pattern[str],
    root: Path,
    patterns: Iterable[str],
    ignored: Iterable[str] = (),
) -> list[re.Match[str]]:
    """Return every match of ``regex`` in files matching ``patterns``.

    Args:
        regex: Compiled pattern; capture groups are up to the caller.
        root: Directory to scan recursively.
        patterns: Basename globs selecting which files to read.
        ignored: Directory names to skip at any depth.
    """
    matches: list[re.Match[str]] = []
    for path in iter_source_files(root, patterns, ignored):
        try:
            text = path.read_text(encoding="utf-8", errors="replace")
        except OSError as e:
            logger.debug("Skipping unreadable %s: %s", path, e)
            continue
        matches.extend(regex.finditer(text))
    return matches


def any_source_file(
    root: Path,
    patterns: Iterable[str],
    ignored: Iterable[str] = (),
) -> bool:
    """Whether at least one file under ``root`` matches ``patterns``."""
    return next(iter_source_files(root, patterns, ignored), None) is not None
