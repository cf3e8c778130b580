"""Workspace resolution: from a target path to a compilation unit.

The effective configuration of a directory is the nearest protokit.yaml at
or above it. Walking starts at the target directory (the containing
directory when the target is a file). A subdirectory with its own
protokit.yaml starts a nested scope: its files are resolved against that
configuration and attached to the unit as a nested unit, so one unit covers
the whole tree while every directory group keeps a single configuration.
"""

from __future__ import annotations

import logging
import os
import stat
import time
from dataclasses import dataclass
from types import MappingProxyType
from typing import Mapping, Optional

from protokit.config import CONFIG_FILENAME, Config, get_default_config, load_config, load_config_data
from protokit.errors import InvalidTargetError, NotFoundError, WalkTimeoutError
from protokit.utils.file_utils import abs_clean, display_path, is_within

logger = logging.getLogger(__name__)

PROTO_EXTENSION = ".proto"
DEFAULT_WALK_TIMEOUT = 3.0  # seconds


@dataclass(frozen=True)
class ProtoFile:
    """A schema source file."""

    path: str  # absolute
    display_path: str  # relative to the working directory when inside it


@dataclass(frozen=True)
class CompilationUnit:
    """Directory-partitioned files sharing one configuration scope.

    dir_path_to_files is ordered by directory; each group is compiled with
    a single protoc invocation. Subdirectories governed by their own
    protokit.yaml are held in nested_units, sorted by directory.
    """

    work_dir: str
    dir_path: str
    config: Config
    dir_path_to_files: Mapping[str, tuple[ProtoFile, ...]]
    single_filename: Optional[str] = None
    nested_units: tuple[CompilationUnit, ...] = ()

    @property
    def include_root(self) -> str:
        """The configuration directory, always the first include path."""
        return self.config.dir_path

    def scopes(self) -> list[CompilationUnit]:
        """This unit followed by every nested unit, depth first."""
        scopes = [self]
        for nested in self.nested_units:
            scopes.extend(nested.scopes())
        return scopes

    def files(self) -> list[ProtoFile]:
        """All files in the unit and its nested units, sorted by display path."""
        all_files = [
            f
            for scope in self.scopes()
            for files in scope.dir_path_to_files.values()
            for f in files
        ]
        return sorted(all_files, key=lambda f: f.display_path)

    def is_empty(self) -> bool:
        return not any(scope.dir_path_to_files for scope in self.scopes())


class WorkspaceResolver:
    """Resolve target paths into CompilationUnits.

    Config file lookups are cached per directory so resolving many
    directories under the same tree does not re-walk shared ancestors.
    """

    def __init__(
        self,
        walk_timeout: Optional[float] = DEFAULT_WALK_TIMEOUT,
        config_data: Optional[str] = None,
    ):
        """Initialize resolver.

        Args:
            walk_timeout: Maximum seconds for one directory walk; None disables it.
            config_data: Inline YAML used instead of any protokit.yaml file.
        """
        self.walk_timeout = walk_timeout
        self.config_data = config_data
        self._config_file_cache: dict[str, Optional[str]] = {}
        self._config_cache: dict[str, Config] = {}

    def find_config_file(self, dir_path: str) -> Optional[str]:
        """Find the nearest protokit.yaml at or above dir_path.

        Returns:
            Absolute path of the config file, or None if no ancestor has one.
        """
        dir_path = abs_clean(dir_path)
        chain = []
        current = dir_path
        found: Optional[str] = None

        while True:
            if current in self._config_file_cache:
                found = self._config_file_cache[current]
                break
            chain.append(current)
            candidate = os.path.join(current, CONFIG_FILENAME)
            if os.path.isfile(candidate):
                found = candidate
                break
            parent = os.path.dirname(current)
            if parent == current:
                break
            current = parent

        for visited in chain:
            self._config_file_cache[visited] = found
        return found

    def _get_config(self, work_dir: str, dir_path: str) -> Config:
        """Get the effective configuration for dir_path."""
        if self.config_data is not None:
            root = work_dir if is_within(dir_path, work_dir) else dir_path
            return load_config_data(self.config_data, root)

        config_file = self.find_config_file(dir_path)
        if config_file is None:
            logger.debug("no %s found for %s, using defaults", CONFIG_FILENAME, dir_path)
            return get_default_config(dir_path)
        if config_file not in self._config_cache:
            logger.debug("using config %s", config_file)
            self._config_cache[config_file] = load_config(config_file)
        return self._config_cache[config_file]

    def _is_excluded(self, path: str, config: Config) -> bool:
        return any(is_within(path, exclude) for exclude in config.excludes)

    def _walk(
        self, work_dir: str, dir_path: str, config: Config
    ) -> tuple[dict[str, tuple[ProtoFile, ...]], list[str]]:
        """Collect .proto files below dir_path that belong to config's scope.

        Returns:
            (groups, nested_dirs) where nested_dirs are the subdirectories
            that start a scope of their own and were not descended into.

        Raises:
            WalkTimeoutError: If the walk exceeds walk_timeout.
        """
        deadline = None
        if self.walk_timeout is not None:
            deadline = time.monotonic() + self.walk_timeout

        groups: dict[str, tuple[ProtoFile, ...]] = {}
        nested_dirs: list[str] = []

        for current, dirnames, filenames in os.walk(dir_path, followlinks=False):
            if deadline is not None and time.monotonic() > deadline:
                raise WalkTimeoutError(
                    f"Timed out after {self.walk_timeout}s walking for proto files",
                    file=dir_path,
                )

            kept = []
            for dirname in sorted(dirnames):
                child = os.path.join(current, dirname)
                if self._is_excluded(child, config):
                    logger.debug("skipping excluded directory %s", child)
                    continue
                if self.config_data is None and os.path.isfile(os.path.join(child, CONFIG_FILENAME)):
                    logger.debug("%s has its own %s", child, CONFIG_FILENAME)
                    nested_dirs.append(abs_clean(child))
                    continue
                kept.append(dirname)
            dirnames[:] = kept

            files = []
            for filename in sorted(filenames):
                if not filename.endswith(PROTO_EXTENSION):
                    continue
                path = abs_clean(os.path.join(current, filename))
                if self._is_excluded(path, config):
                    continue
                files.append(ProtoFile(path=path, display_path=display_path(path, work_dir)))

            if files:
                groups[abs_clean(current)] = tuple(files)

        return dict(sorted(groups.items())), sorted(nested_dirs)

    def _resolve_scope(
        self,
        work_dir: str,
        dir_path: str,
        single_filename: Optional[str] = None,
    ) -> CompilationUnit:
        """Resolve dir_path under its own configuration, recursing into nested scopes.

        A single-file unit does not pick up nested scopes.
        """
        config = self._get_config(work_dir, dir_path)
        groups, nested_dirs = self._walk(work_dir, dir_path, config)

        nested_units = ()
        if single_filename is None:
            nested_units = tuple(self._resolve_scope(work_dir, nested) for nested in nested_dirs)

        for files in groups.values():
            for proto_file in files:
                logger.debug("using file %s", proto_file.display_path)

        return CompilationUnit(
            work_dir=work_dir,
            dir_path=dir_path,
            config=config,
            dir_path_to_files=MappingProxyType(groups),
            single_filename=single_filename,
            nested_units=nested_units,
        )

    def resolve(self, work_dir: str, target: Optional[str] = None) -> CompilationUnit:
        """Resolve a file or directory target into a CompilationUnit.

        Args:
            work_dir: Working directory; relative targets are resolved against it.
            target: File or directory; defaults to work_dir.

        Raises:
            NotFoundError: If target does not exist.
            InvalidTargetError: If target is neither a regular file nor a directory.
            WalkTimeoutError: If walking the directory tree takes too long.
            ConfigError: If the governing protokit.yaml is invalid.
        """
        work_dir = abs_clean(work_dir)
        target = target or "."
        abs_target = abs_clean(os.path.join(work_dir, target))

        try:
            mode = os.stat(abs_target).st_mode
        except FileNotFoundError:
            raise NotFoundError(f"{target} does not exist", file=target)

        single_filename = None
        if stat.S_ISDIR(mode):
            dir_path = abs_target
        elif stat.S_ISREG(mode):
            dir_path = os.path.dirname(abs_target)
            single_filename = abs_target
        else:
            raise InvalidTargetError(
                f"{target} is not a directory or a regular file", file=target
            )

        return self._resolve_scope(work_dir, dir_path, single_filename)


def resolve(
    work_dir: str,
    target: Optional[str] = None,
    walk_timeout: Optional[float] = DEFAULT_WALK_TIMEOUT,
    config_data: Optional[str] = None,
) -> CompilationUnit:
    """Resolve target with a one-off WorkspaceResolver."""
    resolver = WorkspaceResolver(walk_timeout=walk_timeout, config_data=config_data)
    return resolver.resolve(work_dir, target)
