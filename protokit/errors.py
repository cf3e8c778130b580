"""Error types shared across protokit.

Compiler diagnostics and breaking-change findings are not errors; they are
returned as Failure lists. Everything here aborts the current operation.
"""

from __future__ import annotations

from typing import Any, Optional


class ProtokitError(Exception):
    """Base error for protokit operations.

    Attributes:
        message: Human-readable error description.
        file: Path to the file or directory involved.
        line: Line number where the error was detected.
        error_type: Machine-readable error category.
    """

    default_error_type = "error"

    def __init__(
        self,
        message: str,
        file: Optional[str] = None,
        line: Optional[int] = None,
        error_type: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.file = file
        self.line = line
        self.error_type = error_type or self.default_error_type

    def to_json(self) -> dict[str, Any]:
        """Serialize error to JSON format for machine parsing."""
        result: dict[str, Any] = {
            "error": self.error_type,
            "message": self.message,
        }
        if self.file:
            result["file"] = self.file
        if self.line:
            result["line"] = self.line
        return result

    def __str__(self) -> str:
        parts = [self.message]
        if self.file:
            parts.append(f"file: {self.file}")
        if self.line:
            parts.append(f"line: {self.line}")
        return " | ".join(parts)


class InputError(ProtokitError):
    """Bad arguments: conflicting flags, invalid paths, unknown names."""

    default_error_type = "input_invalid"


class NotFoundError(InputError):
    """The target path does not exist."""

    default_error_type = "not_found"


class InvalidTargetError(InputError):
    """The target path is neither a regular file nor a directory."""

    default_error_type = "invalid_target"


class ConfigError(ProtokitError):
    """Error in a protokit.yaml configuration."""

    default_error_type = "config_invalid"


class WalkTimeoutError(ProtokitError):
    """Directory walk exceeded its time budget."""

    default_error_type = "walk_timeout"


class ToolchainError(ProtokitError):
    """protoc could not be located, downloaded, or extracted."""

    default_error_type = "toolchain_error"


class CompileError(ProtokitError):
    """protoc could not be executed or its output could not be read."""

    default_error_type = "compile_error"


class MergeConflictError(ProtokitError):
    """Two descriptor sets disagree on the content of the same file."""

    default_error_type = "merge_conflict"


class DescriptorGraphError(ProtokitError):
    """A descriptor set is internally inconsistent."""

    default_error_type = "descriptor_invalid"


class GitError(ProtokitError):
    """A git command failed."""

    default_error_type = "git_error"
