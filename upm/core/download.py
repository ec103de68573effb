"""
Plain HTTP download to a local path.

Used to fetch index snapshots (the epkgs database). A single failed
attempt aborts the caller; there is no resume and no retry.
"""

from __future__ import annotations

import http.client
import logging
import shutil
import urllib.error
import urllib.request
from pathlib import Path

from upm.core.errors import ExternalToolError

logger = logging.getLogger(__name__)

_USER_AGENT = "upm/0.1"


def download_file(url: str, dest: Path, timeout: int = 60) -> None:
    """Download ``url`` to ``dest``.

    Raises:
        ExternalToolError: On a malformed URL or any HTTP or network
            failure, including a truncated body.
    """
    logger.info("download %s", url)

    try:
        req = urllib.request.Request(url, headers={"User-Agent": _USER_AGENT})
        with urllib.request.urlopen(req, timeout=timeout) as resp, open(dest, "wb") as f:
            shutil.copyfileobj(resp, f)
    except urllib.error.HTTPError as e:
        raise ExternalToolError(f"{url}: HTTP {e.code}") from e
    except (urllib.error.URLError, http.client.HTTPException, OSError, ValueError) as e:
        raise ExternalToolError(f"{url}: {e}") from e

    logger.debug("Downloaded %s → %s (%d bytes)", url, dest, dest.stat().st_size)
