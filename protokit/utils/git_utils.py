"""Temporary git clones used to rebuild a historical schema snapshot."""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

from protokit.errors import GitError
from protokit.utils.file_utils import abs_clean

logger = logging.getLogger(__name__)

GIT_TIMEOUT = 300


def _run_git(args: list[str], cwd: Optional[str] = None) -> str:
    """Run a git command and return stdout.

    Raises:
        GitError: If git is missing or exits non-zero.
    """
    cmd = ["git", *args]
    logger.debug("running %s", " ".join(cmd))
    try:
        result = subprocess.run(
            cmd,
            cwd=cwd,
            capture_output=True,
            text=True,
            timeout=GIT_TIMEOUT,
        )
    except FileNotFoundError:
        raise GitError("git is not installed or not on PATH")
    except subprocess.TimeoutExpired:
        raise GitError(f"git {args[0]} timed out after {GIT_TIMEOUT}s", file=cwd)
    if result.returncode != 0:
        raise GitError(
            f"git {args[0]} failed: {result.stderr.strip() or result.stdout.strip()}",
            file=cwd,
        )
    return result.stdout


def get_toplevel(work_dir: Path | str) -> str:
    """Get the root of the git working tree containing work_dir.

    Raises:
        GitError: If work_dir is not inside a git repository.
    """
    return abs_clean(_run_git(["rev-parse", "--show-toplevel"], cwd=str(work_dir)).strip())


@contextmanager
def temporary_clone(work_dir: Path | str, ref: str) -> Iterator[str]:
    """Clone the repository holding work_dir and check out ref.

    Yields the directory inside the clone that corresponds to work_dir.
    The clone is removed on exit, including when the body raises.

    Raises:
        GitError: If work_dir is not in a repository or ref cannot be checked out.
    """
    work_dir = abs_clean(work_dir)
    toplevel = get_toplevel(work_dir)
    offset = os.path.relpath(os.path.realpath(work_dir), os.path.realpath(toplevel))

    clone_root = tempfile.mkdtemp(prefix="protokit-")
    try:
        _run_git(["clone", "--quiet", toplevel, clone_root])
        _run_git(["checkout", "--quiet", ref], cwd=clone_root)
        logger.debug("cloned %s at %s into %s", toplevel, ref, clone_root)
        yield abs_clean(os.path.join(clone_root, offset))
    finally:
        logger.debug("removing %s", clone_root)
        shutil.rmtree(clone_root, ignore_errors=True)
