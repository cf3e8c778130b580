"""Advisory file locks shared between processes."""

from __future__ import annotations

import fcntl
import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

logger = logging.getLogger(__name__)


@contextmanager
def file_lock(lock_path: Path | str, exclusive: bool = True) -> Iterator[None]:
    """Context manager for file locking to prevent races between processes.

    The lock file itself is left in place; only the flock is released.
    Each call opens its own file description, so threads in the same process
    serialize on the lock as well.
    """
    lock_path = Path(lock_path)
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    lock_file = open(lock_path, "a")
    try:
        logger.debug("acquiring lock %s", lock_path)
        fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX if exclusive else fcntl.LOCK_SH)
        logger.debug("acquired lock %s", lock_path)
        yield
    finally:
        fcntl.flock(lock_file.fileno(), fcntl.LOCK_UN)
        lock_file.close()
        logger.debug("released lock %s", lock_path)
