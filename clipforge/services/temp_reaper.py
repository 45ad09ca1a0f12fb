"""
Temp Reaper - Removes stale files left behind in the work directory.

Crashed or killed renders can leave sources and partial outputs on disk.
``reap_stale_files`` is called explicitly by whoever owns scheduling (the
``POST /maintenance/reap`` route, a cron job); nothing runs in the background.
"""

import logging
import os
import time
from dataclasses import dataclass, field
from typing import Iterable, Optional

logger = logging.getLogger(__name__)


@dataclass
class ReapResult:
    """Outcome of one reaping pass."""

    removed: list[str] = field(default_factory=list)
    errors: list["CleanupWarning"] = field(default_factory=list)


def reap_stale_files(
    directory: str,
    ttl_seconds: float,
    now: Optional[float] = None,
    exclude: Iterable[str] = (),
) -> ReapResult:
    """
    Delete regular files under ``directory`` older than ``ttl_seconds``.

    Empty subdirectories left behind are removed as well. A missing
    directory is not an error. Top-level subdirectories named in ``exclude``
    (the work directories of batches still running) are left alone.

    Args:
        directory: Root to sweep (recursively)
        ttl_seconds: Files whose mtime is older than this are removed
        now: Reference timestamp (defaults to time.time())
        exclude: Names of top-level subdirectories to skip

    Returns:
        ReapResult listing removed paths and per-file failures
    """
    result = ReapResult()
    if not os.path.isdir(directory):
        return result

    cutoff = (now if now is not None else time.time()) - ttl_seconds
    skipped = set(exclude)

    for root, dirs, files in os.walk(directory, topdown=False):
        if root != directory and os.path.relpath(root, directory).split(os.sep)[0] in skipped:
            continue

        for name in files:
            path = os.path.join(root, name)
            try:
                if os.path.islink(path) or not os.path.isfile(path):
                    continue
                if os.path.getmtime(path) >= cutoff:
                    continue
                os.remove(path)
                result.removed.append(path)
            except FileNotFoundError:
                continue
            except OSError as e:
                warning = CleanupWarning(path, str(e))
                logger.warning(str(warning))
                result.errors.append(warning)

        if root != directory:
            try:
                os.rmdir(root)
            except OSError:
                # Not empty
                pass

    if result.removed:
        logger.info(f"Reaped {len(result.removed)} stale file(s) from {directory}")
    return result


class CleanupWarning(Exception):
    """
    A temp file that could not be removed.

    Returned and recorded, never raised: cleanup failures must not turn a
    finished batch into a failed one.
    """

    def __init__(self, path: str, message: str):
        super().__init__(f"Failed to remove {path}: {message}")
        self.path = path
        self.message = message
