"""protoc invocation, diagnostic parsing, and descriptor collection.

Each directory group of a CompilationUnit, nested units included, is
compiled by its own protoc process with the include paths of its own
configuration. Every group runs even if an earlier one failed, and all
diagnostics are returned sorted, so one call reports every error in the
tree.
"""

from __future__ import annotations

import logging
import os
import re
import shlex
import subprocess
import tempfile
from dataclasses import dataclass, field
from typing import Optional, Sequence

from protokit.components.descriptors import (
    FileDescriptorSet,
    merge_descriptor_sets,
    read_descriptor_set,
)
from protokit.components.toolchain import Downloader, ProtocPaths
from protokit.components.workspace import CompilationUnit, ProtoFile
from protokit.errors import CompileError
from protokit.failures import Failure, sort_failures
from protokit.utils.file_utils import display_path

logger = logging.getLogger(__name__)

DEV_NULL = "/dev/null"

_LOCATION_RE = re.compile(
    r"^(?P<filename>[^:]+):(?P<line>\d+):(?P<column>\d+):\s*(?P<message>.*)$"
)
_FILE_MESSAGE_RE = re.compile(r"^(?P<filename>[^:\s][^:]*\.proto):\s*(?P<message>.+)$")
_UNUSED_IMPORT_RE = re.compile(r"^warning: Import (?P<import>\S+) (?:is unused|but not used)\.?$")
_WARNING_PREFIX = "warning:"


def _parse_message(
    filename: str,
    line: int,
    column: int,
    message: str,
    allow_unused_imports: bool,
) -> Optional[Failure]:
    """Turn one located message into a Failure, or None if it is only a warning."""
    message = message.strip()
    unused = _UNUSED_IMPORT_RE.match(message)
    if unused:
        if allow_unused_imports:
            return None
        return Failure(
            filename=filename,
            line=line,
            column=column,
            message=f'Import "{unused.group("import")}" was not used.',
        )
    if message.startswith(_WARNING_PREFIX):
        logger.warning("protoc: %s: %s", filename, message)
        return None
    return Failure(filename=filename, line=line, column=column, message=message)


def parse_protoc_output(output: str, allow_unused_imports: bool = False) -> list[Failure]:
    """Parse protoc's stderr into failures.

    Recognized shapes:
    - file:line:column: message
    - file.proto: message
    Anything else becomes a failure with no filename and a zero location.
    Warnings other than unused imports are logged and dropped.
    """
    failures = []
    for raw_line in output.splitlines():
        text = raw_line.strip()
        if not text:
            continue

        match = _LOCATION_RE.match(text)
        if match:
            failure = _parse_message(
                match.group("filename"),
                int(match.group("line")),
                int(match.group("column")),
                match.group("message"),
                allow_unused_imports,
            )
        else:
            match = _FILE_MESSAGE_RE.match(text)
            if match:
                failure = _parse_message(
                    match.group("filename"), 0, 0, match.group("message"), allow_unused_imports
                )
            else:
                failure = Failure(message=text)

        if failure is not None:
            failures.append(failure)
    return failures


@dataclass(frozen=True)
class CompileResult:
    """Outcome of compiling a unit.

    The descriptor set is only populated in descriptor-set mode and only
    when there were no failures.
    """

    descriptor_set: FileDescriptorSet = field(default_factory=FileDescriptorSet)
    failures: tuple[Failure, ...] = ()

    @property
    def ok(self) -> bool:
        return not self.failures


class Compiler:
    """Build and run protoc commands for a CompilationUnit."""

    def __init__(
        self,
        cache_path: Optional[str] = None,
        protoc_bin_path: Optional[str] = None,
        protoc_wkt_path: Optional[str] = None,
        protoc_url: Optional[str] = None,
        gen: bool = False,
        descriptor_set: bool = False,
        include_imports: bool = False,
        include_source_info: bool = False,
    ):
        """Initialize compiler.

        Args:
            cache_path: Custom toolchain cache root.
            protoc_bin_path: Explicit protoc binary (requires protoc_wkt_path).
            protoc_wkt_path: Explicit well-known types include directory.
            protoc_url: Custom protoc archive URL.
            gen: Run the configured generation plugins.
            descriptor_set: Collect a FileDescriptorSet from every group.
            include_imports: Pass --include_imports (descriptor_set only).
            include_source_info: Pass --include_source_info (descriptor_set only).

        Raises:
            ValueError: If include flags are set without descriptor_set.
        """
        if (include_imports or include_source_info) and not descriptor_set:
            raise ValueError("include_imports and include_source_info require descriptor_set")
        self.cache_path = cache_path
        self.protoc_bin_path = protoc_bin_path
        self.protoc_wkt_path = protoc_wkt_path
        self.protoc_url = protoc_url
        self.gen = gen
        self.descriptor_set = descriptor_set
        self.include_imports = include_imports
        self.include_source_info = include_source_info

    def _protoc_paths(self, unit: CompilationUnit) -> ProtocPaths:
        downloader = Downloader(
            unit.config,
            cache_path=self.cache_path,
            protoc_bin_path=self.protoc_bin_path,
            protoc_wkt_path=self.protoc_wkt_path,
            protoc_url=self.protoc_url,
        )
        return downloader.protoc_paths()

    def _include_paths(self, unit: CompilationUnit, paths: ProtocPaths) -> list[str]:
        """Include paths in search order, without duplicates."""
        include_paths: list[str] = []
        for include in (unit.include_root, *unit.config.protoc.includes, paths.wkt_path):
            if include not in include_paths:
                include_paths.append(include)
        return include_paths

    def _plugin_args(self, unit: CompilationUnit) -> list[str]:
        args = []
        for plugin in unit.config.generate.plugins:
            if plugin.path:
                args.append(f"--plugin=protoc-gen-{plugin.name}={plugin.path}")
            if plugin.flags:
                args.append(f"--{plugin.name}_out={plugin.flags}:{plugin.output}")
            else:
                args.append(f"--{plugin.name}_out={plugin.output}")
        return args

    def _build_args(
        self,
        unit: CompilationUnit,
        files: Sequence[ProtoFile],
        paths: ProtocPaths,
        output_path: Optional[str],
    ) -> list[str]:
        """Build the argument vector for one directory group.

        output_path is the descriptor set target; None means /dev/null.
        """
        args = [paths.bin_path]
        for include in self._include_paths(unit, paths):
            args.extend(["-I", include])
        if self.gen:
            args.extend(self._plugin_args(unit))
        if self.descriptor_set and output_path is not None:
            if self.include_imports:
                args.append("--include_imports")
            if self.include_source_info:
                args.append("--include_source_info")
            args.append(f"--descriptor_set_out={output_path}")
        elif not self.gen:
            args.append(f"--descriptor_set_out={DEV_NULL}")
        args.extend(proto_file.path for proto_file in files)
        return args

    def protoc_commands(self, unit: CompilationUnit) -> list[str]:
        """Get the commands compile() would run, without running them."""
        commands = []
        for scope in unit.scopes():
            if not scope.dir_path_to_files:
                continue
            paths = self._protoc_paths(scope)
            commands.extend(
                shlex.join(self._build_args(scope, files, paths, None))
                for files in scope.dir_path_to_files.values()
            )
        return commands

    def _best_filename(self, filename: str, include_paths: Sequence[str], work_dir: str) -> str:
        """Map a protoc-reported filename back to the path users see."""
        if not filename:
            return filename
        if os.path.isabs(filename):
            return display_path(filename, work_dir)
        for include in include_paths:
            candidate = os.path.join(include, filename)
            if os.path.isfile(candidate):
                return display_path(candidate, work_dir)
        return filename

    def _run(self, args: list[str], unit: CompilationUnit, include_paths: Sequence[str]) -> list[Failure]:
        """Run one protoc process and return its failures.

        Raises:
            CompileError: If protoc cannot be started.
        """
        logger.debug("running %s", shlex.join(args))
        try:
            result = subprocess.run(args, cwd=unit.work_dir, capture_output=True, text=True)
        except OSError as e:
            raise CompileError(f"Could not run protoc: {e}", file=args[0])

        failures = [
            failure.with_filename(self._best_filename(failure.filename, include_paths, unit.work_dir))
            for failure in parse_protoc_output(
                result.stderr, unit.config.protoc.allow_unused_imports
            )
        ]
        if result.returncode != 0 and not failures:
            message = f"protoc exited with status {result.returncode}"
            output = result.stderr.strip() or result.stdout.strip()
            if output:
                message = f"{message}: {output}"
            failures.append(Failure(message=message))
        return failures

    def _compile_scope(self, scope: CompilationUnit, output_paths: list[str]) -> list[Failure]:
        """Run protoc for every directory group of one configuration scope.

        Descriptor set temp files are appended to output_paths so the
        caller can read and remove them.
        """
        paths = self._protoc_paths(scope)
        include_paths = self._include_paths(scope, paths)
        if self.gen:
            for plugin in scope.config.generate.plugins:
                os.makedirs(plugin.output, exist_ok=True)

        failures: list[Failure] = []
        for files in scope.dir_path_to_files.values():
            output_path = None
            if self.descriptor_set:
                fd, output_path = tempfile.mkstemp(prefix="protokit-", suffix=".bin")
                os.close(fd)
                output_paths.append(output_path)
            args = self._build_args(scope, files, paths, output_path)
            failures.extend(self._run(args, scope, include_paths))
        return failures

    def compile(self, unit: CompilationUnit) -> CompileResult:
        """Compile every directory group of unit and of its nested units.

        Returns:
            CompileResult with sorted failures and, in descriptor-set mode
            with no failures, the merged descriptor set.

        Raises:
            ToolchainError: If protoc cannot be obtained.
            CompileError: If protoc cannot be executed.
            MergeConflictError: If groups disagree on a shared file.
        """
        if unit.is_empty():
            return CompileResult()

        failures: list[Failure] = []
        output_paths: list[str] = []
        try:
            for scope in unit.scopes():
                if scope.dir_path_to_files:
                    failures.extend(self._compile_scope(scope, output_paths))

            descriptor_sets = []
            if not failures:
                descriptor_sets = [read_descriptor_set(path) for path in output_paths]
        finally:
            for path in output_paths:
                try:
                    os.remove(path)
                except FileNotFoundError:
                    pass

        return CompileResult(
            descriptor_set=merge_descriptor_sets(descriptor_sets),
            failures=tuple(sort_failures(failures)),
        )
