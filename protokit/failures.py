"""Failure records for compiler diagnostics and breaking-change findings."""

from __future__ import annotations

import json
from dataclasses import dataclass, field, replace
from typing import Any, Iterable

from protokit.errors import InputError

DEFAULT_ERROR_FORMAT = "filename:line:column:message"

FAILURE_FIELDS = ("filename", "line", "column", "id", "message")


@dataclass(frozen=True, order=True)
class Failure:
    """One diagnostic.

    Ordering is (filename, line, column, message); id does not take part so
    that output order is stable whichever check produced a failure.
    """

    filename: str = ""
    line: int = 0
    column: int = 0
    id: str = field(default="", compare=False)
    message: str = ""

    def with_filename(self, filename: str) -> "Failure":
        return replace(self, filename=filename)

    def to_json(self) -> dict[str, Any]:
        """Serialize to a dict, omitting empty fields."""
        result: dict[str, Any] = {}
        for name in FAILURE_FIELDS:
            value = getattr(self, name)
            if value:
                result[name] = value
        return result

    def format(self, fields: Iterable[str]) -> str:
        """Render as colon-separated text in the given field order.

        Zero line/column and empty strings render as empty fields, so the
        colon positions stay fixed for machine parsing.
        """
        parts = []
        for name in fields:
            value = getattr(self, name)
            parts.append(str(value) if value else "")
        return ":".join(parts)

    def __str__(self) -> str:
        return self.format(DEFAULT_ERROR_FORMAT.split(":"))


def parse_error_format(error_format: str) -> list[str]:
    """Parse a colon-separated error format such as 'filename:line:message'.

    Raises:
        InputError: On unknown or duplicated fields.
    """
    fields = error_format.split(":")
    seen: set[str] = set()
    for name in fields:
        if name not in FAILURE_FIELDS:
            raise InputError(
                f"Unknown error format field '{name}', "
                f"valid fields are {':'.join(FAILURE_FIELDS)}"
            )
        if name in seen:
            raise InputError(f"Duplicate error format field '{name}'")
        seen.add(name)
    return fields


def sort_failures(failures: Iterable[Failure]) -> list[Failure]:
    """Return failures in deterministic output order."""
    return sorted(failures)


def render_failures(
    failures: Iterable[Failure],
    error_format: str = DEFAULT_ERROR_FORMAT,
    as_json: bool = False,
) -> list[str]:
    """Render sorted failures, one line each."""
    fields = parse_error_format(error_format)
    lines = []
    for failure in sort_failures(failures):
        if as_json:
            lines.append(json.dumps(failure.to_json()))
        else:
            lines.append(failure.format(fields))
    return lines
