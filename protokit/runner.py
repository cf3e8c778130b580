"""Command runner: glue between the CLI and the protokit core.

Each public method implements one command. Methods return an ExitCode for
expected outcomes (including reported failures) and raise ProtokitError
subclasses for everything else; only cli.main turns those into exit codes.
"""

from __future__ import annotations

import json
import logging
import os
import platform
import sys
import tempfile
from enum import IntEnum
from typing import BinaryIO, Iterable, Optional, TextIO

from protokit import DEFAULT_PROTOC_VERSION, __version__
from protokit.components import breaking
from protokit.components.compiler import CompileResult, Compiler
from protokit.components.descriptors import read_descriptor_set, serialize_descriptor_set
from protokit.components.package_graph import PackageSet, build_package_set
from protokit.components.toolchain import Downloader
from protokit.components.workspace import DEFAULT_WALK_TIMEOUT, CompilationUnit, WorkspaceResolver
from protokit.config import Config
from protokit.errors import InputError
from protokit.failures import DEFAULT_ERROR_FORMAT, Failure, parse_error_format, render_failures
from protokit.utils.file_utils import abs_clean, is_within
from protokit.utils.git_utils import temporary_clone

logger = logging.getLogger(__name__)

BREAK_ERROR_FORMAT = "message"


class ExitCode(IntEnum):
    """Process exit codes."""

    SUCCESS = 0
    ERROR = 1
    FAILURE = 255


class Runner:
    """Run protokit commands against a working directory."""

    def __init__(
        self,
        work_dir: Optional[str] = None,
        output: Optional[TextIO] = None,
        binary_output: Optional[BinaryIO] = None,
        cache_path: Optional[str] = None,
        config_data: Optional[str] = None,
        protoc_bin_path: Optional[str] = None,
        protoc_wkt_path: Optional[str] = None,
        protoc_url: Optional[str] = None,
        error_format: str = DEFAULT_ERROR_FORMAT,
        as_json: bool = False,
        walk_timeout: Optional[float] = DEFAULT_WALK_TIMEOUT,
    ):
        parse_error_format(error_format)
        self.work_dir = abs_clean(work_dir or os.getcwd())
        self.output = output if output is not None else sys.stdout
        self.binary_output = binary_output
        self.cache_path = cache_path
        self.config_data = config_data
        self.protoc_bin_path = protoc_bin_path
        self.protoc_wkt_path = protoc_wkt_path
        self.protoc_url = protoc_url
        self.error_format = error_format
        self.as_json = as_json
        self.walk_timeout = walk_timeout
        self.resolver = WorkspaceResolver(walk_timeout=walk_timeout, config_data=config_data)

    def clone_for_work_dir(self, work_dir: str) -> "Runner":
        """Copy this runner's settings onto another working directory."""
        return Runner(
            work_dir=work_dir,
            output=self.output,
            binary_output=self.binary_output,
            cache_path=self.cache_path,
            config_data=self.config_data,
            protoc_bin_path=self.protoc_bin_path,
            protoc_wkt_path=self.protoc_wkt_path,
            protoc_url=self.protoc_url,
            error_format=self.error_format,
            as_json=self.as_json,
            walk_timeout=self.walk_timeout,
        )

    # ------------------------------------------------------------------
    # Output helpers
    # ------------------------------------------------------------------

    def _println(self, text: str) -> None:
        if text:
            print(text, file=self.output)

    def _write_bytes(self, data: bytes) -> None:
        binary_output = self.binary_output
        if binary_output is None:
            binary_output = getattr(self.output, "buffer", None)
        if binary_output is None:
            self.output.write(data.decode("utf-8", errors="replace"))
            return
        self.output.flush()
        binary_output.write(data)
        binary_output.flush()

    def _should_print(self, failure: Failure, unit: Optional[CompilationUnit]) -> bool:
        """Filter failures down to the target file in single-file mode."""
        if unit is None or unit.single_filename is None or not failure.filename:
            return True
        absolute = abs_clean(os.path.join(unit.work_dir, failure.filename))
        return absolute == unit.single_filename

    def _print_failures(
        self,
        failures: Iterable[Failure],
        unit: Optional[CompilationUnit] = None,
        error_format: Optional[str] = None,
    ) -> None:
        shown = [failure for failure in failures if self._should_print(failure, unit)]
        for line in render_failures(shown, error_format or self.error_format, self.as_json):
            self._println(line)

    # ------------------------------------------------------------------
    # Core plumbing
    # ------------------------------------------------------------------

    def _resolve(self, target: Optional[str]) -> CompilationUnit:
        return self.resolver.resolve(self.work_dir, target)

    def _downloader(self, config: Optional[Config]) -> Downloader:
        return Downloader(
            config,
            cache_path=self.cache_path,
            protoc_bin_path=self.protoc_bin_path,
            protoc_wkt_path=self.protoc_wkt_path,
            protoc_url=self.protoc_url,
        )

    def _compiler(self, **options) -> Compiler:
        return Compiler(
            cache_path=self.cache_path,
            protoc_bin_path=self.protoc_bin_path,
            protoc_wkt_path=self.protoc_wkt_path,
            protoc_url=self.protoc_url,
            **options,
        )

    def _compile(self, unit: CompilationUnit, **options) -> CompileResult:
        result = self._compiler(**options).compile(unit)
        self._print_failures(result.failures, unit)
        return result

    def _get_package_set(self, target: Optional[str]) -> tuple[Optional[PackageSet], Config]:
        """Compile target and build its package set.

        Returns:
            (package set, config); the package set is None if compilation
            reported failures, which have already been printed.
        """
        unit = self._resolve(target)
        result = self._compile(unit, descriptor_set=True, include_imports=True, include_source_info=True)
        if not result.ok:
            return None, unit.config
        return build_package_set([result.descriptor_set]), unit.config

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def version(self) -> ExitCode:
        info = {
            "version": __version__,
            "default_protoc_version": DEFAULT_PROTOC_VERSION,
            "python_version": platform.python_version(),
            "platform": f"{sys.platform}/{platform.machine()}",
        }
        if self.as_json:
            self._println(json.dumps(info, indent=2))
            return ExitCode.SUCCESS
        self._println(f"{'Version:':<26}{info['version']}")
        self._println(f"{'Default protoc version:':<26}{info['default_protoc_version']}")
        self._println(f"{'Python version:':<26}{info['python_version']}")
        self._println(f"{'OS/Arch:':<26}{info['platform']}")
        return ExitCode.SUCCESS

    def cache_update(self, target: Optional[str] = None) -> ExitCode:
        """Download protoc for target's configuration ahead of time."""
        unit = self._resolve(target)
        for scope in unit.scopes():
            self._downloader(scope.config).protoc_paths()
        return ExitCode.SUCCESS

    def cache_delete(self) -> ExitCode:
        """Delete the default cache; custom cache paths are left alone."""
        self._downloader(None).delete()
        return ExitCode.SUCCESS

    def files(self, target: Optional[str] = None) -> ExitCode:
        """Print every file the target resolves to."""
        unit = self._resolve(target)
        for proto_file in unit.files():
            self._println(proto_file.display_path)
        return ExitCode.SUCCESS

    def compile(self, target: Optional[str] = None, dry_run: bool = False) -> ExitCode:
        return self._run_compile(target, dry_run, gen=False)

    def gen(self, target: Optional[str] = None, dry_run: bool = False) -> ExitCode:
        return self._run_compile(target, dry_run, gen=True)

    def _run_compile(self, target: Optional[str], dry_run: bool, gen: bool) -> ExitCode:
        unit = self._resolve(target)
        if dry_run:
            for command in self._compiler(gen=gen).protoc_commands(unit):
                self._println(command)
            return ExitCode.SUCCESS
        result = self._compile(unit, gen=gen)
        return ExitCode.SUCCESS if result.ok else ExitCode.FAILURE

    def descriptor_set(
        self,
        target: Optional[str] = None,
        include_imports: bool = False,
        include_source_info: bool = False,
        output_path: Optional[str] = None,
        tmp: bool = False,
    ) -> ExitCode:
        """Compile target and emit the merged descriptor set.

        Written to the binary output by default, to output_path if given,
        or to a new temporary file whose name is printed if tmp is set.
        """
        if output_path and tmp:
            raise InputError("can only set one of output-path, tmp")

        unit = self._resolve(target)
        result = self._compile(
            unit,
            descriptor_set=True,
            include_imports=include_imports,
            include_source_info=include_source_info,
        )
        if not result.ok:
            return ExitCode.FAILURE

        data = serialize_descriptor_set(result.descriptor_set, as_json=self.as_json)
        if output_path:
            try:
                with open(output_path, "wb") as f:
                    f.write(data)
            except OSError as e:
                raise InputError(f"Could not write descriptor set: {e.strerror}", file=output_path)
        elif tmp:
            with tempfile.NamedTemporaryFile(prefix="protokit-", delete=False) as f:
                f.write(data)
            self._println(f.name)
        else:
            self._write_bytes(data)
        return ExitCode.SUCCESS

    def break_descriptor_set(self, target: Optional[str] = None, output_path: Optional[str] = None) -> ExitCode:
        """Store a snapshot for a later break_check(descriptor_set_path=...)."""
        if not output_path:
            raise InputError("must set output-path")
        return self.descriptor_set(target, include_imports=True, output_path=output_path)

    def _print_package_names(self, names: Iterable[str]) -> None:
        for name in names:
            self._println(name)

    def inspect_packages(self, target: Optional[str] = None) -> ExitCode:
        package_set, _ = self._get_package_set(target)
        if package_set is None:
            return ExitCode.FAILURE
        self._print_package_names(package_set.package_names())
        return ExitCode.SUCCESS

    def _inspect_package(self, target: Optional[str], name: str, importers: bool) -> ExitCode:
        if not name:
            raise InputError("must set name")
        package_set, _ = self._get_package_set(target)
        if package_set is None:
            return ExitCode.FAILURE
        if name not in package_set:
            raise InputError(f"package not found: {name}")
        if importers:
            self._print_package_names(package_set.importer_names(name))
        else:
            self._print_package_names(package_set.dependency_names(name))
        return ExitCode.SUCCESS

    def inspect_package_deps(self, target: Optional[str] = None, name: str = "") -> ExitCode:
        return self._inspect_package(target, name, importers=False)

    def inspect_package_importers(self, target: Optional[str] = None, name: str = "") -> ExitCode:
        return self._inspect_package(target, name, importers=True)

    def _check_git_target(self, target: Optional[str]) -> str:
        """Validate a target that will be replayed inside a clone.

        Raises:
            InputError: If target is absolute or outside the working directory.
        """
        rel_target = target or "."
        if os.path.isabs(rel_target):
            raise InputError(f"input argument must be a relative path: {rel_target}")
        if not is_within(os.path.join(self.work_dir, rel_target), self.work_dir):
            raise InputError(f"input path must be within the working directory: {rel_target}")
        return rel_target

    def break_check(
        self,
        target: Optional[str] = None,
        git_branch: Optional[str] = None,
        descriptor_set_path: Optional[str] = None,
    ) -> ExitCode:
        """Check target for breaking changes against an earlier snapshot.

        The earlier snapshot is either a stored descriptor set or target
        rebuilt from a temporary clone at git_branch.
        """
        if git_branch and descriptor_set_path:
            raise InputError("can only set one of git-branch, descriptor-set-path")
        if not git_branch and not descriptor_set_path:
            raise InputError("must set one of git-branch, descriptor-set-path")

        rel_target = None
        if git_branch:
            rel_target = self._check_git_target(target)

        to_set, config = self._get_package_set(target)
        if to_set is None:
            return ExitCode.FAILURE

        if descriptor_set_path:
            from_set = build_package_set([read_descriptor_set(descriptor_set_path)])
        else:
            with temporary_clone(self.work_dir, git_branch) as clone_work_dir:
                from_set, _ = self.clone_for_work_dir(clone_work_dir)._get_package_set(rel_target)
            if from_set is None:
                return ExitCode.FAILURE

        failures = breaking.run(config.breaking, from_set, to_set)
        if failures:
            self._print_failures(failures, error_format=BREAK_ERROR_FORMAT)
            return ExitCode.FAILURE
        return ExitCode.SUCCESS
