"""Path helpers shared by the resolver, compiler, and runner."""

from __future__ import annotations

import os
from pathlib import Path


def abs_clean(path: Path | str) -> str:
    """Return an absolute, normalized path without resolving symlinks."""
    return os.path.normpath(os.path.abspath(str(path)))


def is_within(path: Path | str, directory: Path | str) -> bool:
    """Check whether path equals directory or lies below it.

    Compares whole path components, so '/a/bc' is not within '/a/b'.
    """
    path = abs_clean(path)
    directory = abs_clean(directory)
    if path == directory:
        return True
    prefix = directory if directory.endswith(os.sep) else directory + os.sep
    return path.startswith(prefix)


def display_path(path: Path | str, work_dir: Path | str) -> str:
    """Get the path to show users: relative to work_dir when inside it.

    Args:
        path: Absolute file path.
        work_dir: Working directory of the invocation.

    Returns:
        Relative path if path is under work_dir, otherwise the absolute path.
    """
    path = abs_clean(path)
    work_dir = abs_clean(work_dir)
    if is_within(path, work_dir) and path != work_dir:
        return os.path.relpath(path, work_dir)
    return path
