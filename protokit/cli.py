"""Command-line interface for protokit."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import Callable, Optional

from protokit.components.workspace import DEFAULT_WALK_TIMEOUT
from protokit.errors import ProtokitError
from protokit.failures import DEFAULT_ERROR_FORMAT
from protokit.runner import ExitCode, Runner

LOG_PREFIX = "[protokit]"

logger = logging.getLogger(__name__)


def _setup_logging(debug: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format=f"{LOG_PREFIX} %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
        force=True,
    )


def _get_runner(args: argparse.Namespace) -> Runner:
    """Build a Runner from whichever flags the command accepts."""
    return Runner(
        cache_path=getattr(args, "cache_path", None),
        config_data=getattr(args, "config_data", None),
        protoc_bin_path=getattr(args, "protoc_bin_path", None),
        protoc_wkt_path=getattr(args, "protoc_wkt_path", None),
        protoc_url=getattr(args, "protoc_url", None),
        error_format=getattr(args, "error_format", DEFAULT_ERROR_FORMAT),
        as_json=getattr(args, "json", False),
        walk_timeout=getattr(args, "walk_timeout", DEFAULT_WALK_TIMEOUT),
    )


def cmd_version(args: argparse.Namespace) -> int:
    """Print version information."""
    return _get_runner(args).version()


def cmd_files(args: argparse.Namespace) -> int:
    """Print the files a target resolves to."""
    return _get_runner(args).files(args.target)


def cmd_compile(args: argparse.Namespace) -> int:
    """Compile with protoc to check for failures."""
    return _get_runner(args).compile(args.target, dry_run=args.dry_run)


def cmd_gen(args: argparse.Namespace) -> int:
    """Generate code with the configured plugins."""
    return _get_runner(args).gen(args.target, dry_run=args.dry_run)


def cmd_descriptor_set(args: argparse.Namespace) -> int:
    """Write the merged FileDescriptorSet."""
    return _get_runner(args).descriptor_set(
        args.target,
        include_imports=args.include_imports,
        include_source_info=args.include_source_info,
        output_path=args.output_path,
        tmp=args.tmp,
    )


def cmd_break_check(args: argparse.Namespace) -> int:
    """Check for breaking changes."""
    return _get_runner(args).break_check(
        args.target,
        git_branch=args.git_branch,
        descriptor_set_path=args.descriptor_set_path,
    )


def cmd_break_descriptor_set(args: argparse.Namespace) -> int:
    """Store a snapshot for later breaking change checks."""
    return _get_runner(args).break_descriptor_set(args.target, output_path=args.output_path)


def cmd_inspect_packages(args: argparse.Namespace) -> int:
    return _get_runner(args).inspect_packages(args.target)


def cmd_inspect_package_deps(args: argparse.Namespace) -> int:
    return _get_runner(args).inspect_package_deps(args.target, name=args.name)


def cmd_inspect_package_importers(args: argparse.Namespace) -> int:
    return _get_runner(args).inspect_package_importers(args.target, name=args.name)


def cmd_cache_update(args: argparse.Namespace) -> int:
    """Download protoc into the cache."""
    return _get_runner(args).cache_update(args.target)


def cmd_cache_delete(args: argparse.Namespace) -> int:
    """Delete the default cache."""
    return _get_runner(args).cache_delete()


def _add_debug_arg(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--debug", action="store_true", help="Run in debug mode")


def _add_target_args(parser: argparse.ArgumentParser) -> None:
    """Add the target argument and the flags needed to resolve it."""
    parser.add_argument(
        "target",
        nargs="?",
        default=None,
        help="Directory or .proto file (default: current directory)",
    )
    parser.add_argument(
        "--config-data",
        help="protokit.yaml contents to use instead of any configuration files",
    )
    parser.add_argument(
        "--walk-timeout",
        type=float,
        default=DEFAULT_WALK_TIMEOUT,
        help=f"Seconds allowed for walking the target directory (default: {DEFAULT_WALK_TIMEOUT})",
    )
    _add_debug_arg(parser)


def _add_protoc_args(parser: argparse.ArgumentParser) -> None:
    """Add the flags that select a protoc toolchain."""
    parser.add_argument("--cache-path", help="Cache root (default: platform cache directory)")
    parser.add_argument("--protoc-bin-path", help="protoc binary to use; requires --protoc-wkt-path")
    parser.add_argument("--protoc-wkt-path", help="Well-known types include directory for --protoc-bin-path")
    parser.add_argument("--protoc-url", help="Download protoc from this URL instead of GitHub releases")


def _add_output_args(parser: argparse.ArgumentParser) -> None:
    """Add the flags controlling how failures are printed."""
    parser.add_argument(
        "--error-format",
        default=DEFAULT_ERROR_FORMAT,
        help=f"Colon-separated failure fields (default: {DEFAULT_ERROR_FORMAT})",
    )
    parser.add_argument("--json", action="store_true", help="Output as JSON")


def _add_dry_run_arg(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Print the protoc commands that would be run instead of running them",
    )


def _add_compile_parser(subparsers, name: str, help_text: str) -> argparse.ArgumentParser:
    parser = subparsers.add_parser(name, help=help_text)
    _add_target_args(parser)
    _add_protoc_args(parser)
    _add_output_args(parser)
    return parser


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser for every command."""
    parser = argparse.ArgumentParser(
        prog="protokit",
        description="Workspace-aware build and analysis tool for Protocol Buffers",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    # version command
    version_parser = subparsers.add_parser("version", help="Print the version")
    version_parser.add_argument("--json", action="store_true", help="Output as JSON")
    _add_debug_arg(version_parser)

    # files command
    files_parser = subparsers.add_parser("files", help="Print all files that match the input")
    _add_target_args(files_parser)

    # compile and gen commands
    compile_parser = _add_compile_parser(subparsers, "compile", "Compile with protoc to check for failures")
    _add_dry_run_arg(compile_parser)
    gen_parser = _add_compile_parser(subparsers, "gen", "Generate code with protoc plugins")
    _add_dry_run_arg(gen_parser)

    # descriptor-set command
    descriptor_set_parser = _add_compile_parser(
        subparsers, "descriptor-set", "Write a merged FileDescriptorSet to stdout or a file"
    )
    descriptor_set_parser.add_argument(
        "--include-imports", action="store_true", help="Include all dependencies of the input files"
    )
    descriptor_set_parser.add_argument(
        "--include-source-info", action="store_true", help="Include source code info"
    )
    descriptor_set_parser.add_argument("--output-path", "-o", help="Write to this file")
    descriptor_set_parser.add_argument(
        "--tmp", action="store_true", help="Write to a temporary file and print its name"
    )

    # break commands
    break_parser = subparsers.add_parser("break", help="Check for breaking changes")
    break_subparsers = break_parser.add_subparsers(dest="subcommand", required=True)
    break_check_parser = _add_compile_parser(
        break_subparsers, "check", "Check for breaking changes against a git branch or snapshot"
    )
    break_check_parser.add_argument("--git-branch", help="Git branch or ref to compare against")
    break_check_parser.add_argument(
        "--descriptor-set-path", help="Descriptor set from 'break descriptor-set' to compare against"
    )
    break_descriptor_set_parser = _add_compile_parser(
        break_subparsers, "descriptor-set", "Store a snapshot for later 'break check'"
    )
    break_descriptor_set_parser.add_argument("--output-path", "-o", help="Write to this file")

    # inspect commands
    inspect_parser = subparsers.add_parser("inspect", help="Inspect the package graph")
    inspect_subparsers = inspect_parser.add_subparsers(dest="subcommand", required=True)
    _add_compile_parser(inspect_subparsers, "packages", "Print all packages")
    for name, help_text in (
        ("package-deps", "Print the packages a package imports"),
        ("package-importers", "Print the packages that import a package"),
    ):
        package_parser = _add_compile_parser(inspect_subparsers, name, help_text)
        package_parser.add_argument("--name", required=True, help="Package name")

    # cache commands
    cache_parser = subparsers.add_parser("cache", help="Manage the protoc cache")
    cache_subparsers = cache_parser.add_subparsers(dest="subcommand", required=True)
    cache_update_parser = cache_subparsers.add_parser("update", help="Download protoc into the cache")
    _add_target_args(cache_update_parser)
    _add_protoc_args(cache_update_parser)
    cache_delete_parser = cache_subparsers.add_parser("delete", help="Delete the default cache")
    cache_delete_parser.add_argument("--cache-path", help="Custom cache root (never deleted)")
    _add_debug_arg(cache_delete_parser)

    return parser


COMMANDS: dict[tuple[str, Optional[str]], Callable[[argparse.Namespace], int]] = {
    ("version", None): cmd_version,
    ("files", None): cmd_files,
    ("compile", None): cmd_compile,
    ("gen", None): cmd_gen,
    ("descriptor-set", None): cmd_descriptor_set,
    ("break", "check"): cmd_break_check,
    ("break", "descriptor-set"): cmd_break_descriptor_set,
    ("inspect", "packages"): cmd_inspect_packages,
    ("inspect", "package-deps"): cmd_inspect_package_deps,
    ("inspect", "package-importers"): cmd_inspect_package_importers,
    ("cache", "update"): cmd_cache_update,
    ("cache", "delete"): cmd_cache_delete,
}


def main(argv: Optional[list[str]] = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)
    _setup_logging(getattr(args, "debug", False))

    command = COMMANDS[(args.command, getattr(args, "subcommand", None))]
    try:
        return int(command(args))
    except ProtokitError as e:
        logger.debug("%s failed", args.command, exc_info=True)
        print(json.dumps(e.to_json()), file=sys.stderr)
        return ExitCode.ERROR


if __name__ == "__main__":
    sys.exit(main())
