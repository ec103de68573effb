"""
Atomic file writes for specfiles and lockfiles.

Content goes to a temp file in the target's directory, then is
renamed over the target, so a crash mid-write never leaves a
truncated file behind. There is no cross-process lock: two racing
writers each produce a whole file and the last rename wins.
"""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path

logger = logging.getLogger(__name__)


def write_atomic(path: Path, content: str | bytes) -> None:
    """Replace ``path`` with ``content`` in a single rename.

    Args:
        path: Target file. Its parent directory must exist.
        content: Text (written as UTF-8) or raw bytes.
    """
    data = content.encode("utf-8") if isinstance(content, str) else content

    logger.info("write %s", path.name)

    fd, tmp_path = tempfile.mkstemp(
        dir=path.parent,
        prefix=f".{path.name}_",
        suffix=".tmp",
    )
    tmp = Path(tmp_path)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        if path.exists():
            # Keep the user's permissions on rewrite
            os.chmod(tmp, path.stat().st_mode & 0o7777)
        else:
            os.chmod(tmp, 0o644)
        os.replace(tmp, path)
        logger.debug("Wrote %d bytes to %s", len(data), path)
    except BaseException:
        tmp.unlink(missing_ok=True)
        raise
