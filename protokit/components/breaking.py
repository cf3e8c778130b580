"""Breaking-change analysis between two package sets.

Every package, type, field, enum value, and method present in the "from"
set is looked up in the "to" set. Packages and types are matched by name,
fields and enum values by number, methods by name. Neither set is modified.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Iterator, Optional

from google.protobuf import descriptor_pb2

from protokit.components.descriptors import FileDescriptorProto
from protokit.components.package_graph import PackageSet
from protokit.config import BreakConfig
from protokit.failures import Failure, sort_failures

logger = logging.getLogger(__name__)

# Field numbers used in SourceCodeInfo paths
_FILE_PACKAGE = 2
_FILE_MESSAGE_TYPE = 4
_FILE_ENUM_TYPE = 5
_FILE_SERVICE = 6
_FILE_SYNTAX = 12
_MESSAGE_FIELD = 2
_MESSAGE_NESTED_TYPE = 3
_MESSAGE_ENUM_TYPE = 4
_ENUM_VALUE = 2
_SERVICE_METHOD = 2

_BETA_RE = re.compile(r"^v\d+(alpha|beta)\d*$")

FieldDescriptorProto = descriptor_pb2.FieldDescriptorProto


def is_beta_package(name: str) -> bool:
    """Check whether the last package component is vNalphaM or vNbetaM."""
    return bool(name) and bool(_BETA_RE.match(name.rsplit(".", 1)[-1]))


@dataclass(frozen=True)
class _Element:
    """A message, enum, or service with where it was declared."""

    full_name: str
    file: FileDescriptorProto
    path: tuple[int, ...]
    descriptor: object


@dataclass
class _PackageIndex:
    messages: dict[str, _Element]
    enums: dict[str, _Element]
    services: dict[str, _Element]
    files: dict[str, FileDescriptorProto]


def _join(prefix: str, name: str) -> str:
    return f"{prefix}.{name}" if prefix else name


def _walk_message(
    file: FileDescriptorProto,
    message: descriptor_pb2.DescriptorProto,
    prefix: str,
    path: tuple[int, ...],
    index: _PackageIndex,
) -> None:
    full_name = _join(prefix, message.name)
    index.messages[full_name] = _Element(full_name, file, path, message)
    for i, nested in enumerate(message.nested_type):
        _walk_message(file, nested, full_name, path + (_MESSAGE_NESTED_TYPE, i), index)
    for i, enum in enumerate(message.enum_type):
        enum_name = _join(full_name, enum.name)
        index.enums[enum_name] = _Element(enum_name, file, path + (_MESSAGE_ENUM_TYPE, i), enum)


def _index_package(package_set: PackageSet, package_name: str) -> _PackageIndex:
    index = _PackageIndex(messages={}, enums={}, services={}, files={})
    for file in package_set.file_descriptors(package_name):
        index.files[file.name] = file
        for i, message in enumerate(file.message_type):
            _walk_message(file, message, package_name, (_FILE_MESSAGE_TYPE, i), index)
        for i, enum in enumerate(file.enum_type):
            enum_name = _join(package_name, enum.name)
            index.enums[enum_name] = _Element(enum_name, file, (_FILE_ENUM_TYPE, i), enum)
        for i, service in enumerate(file.service):
            service_name = _join(package_name, service.name)
            index.services[service_name] = _Element(service_name, file, (_FILE_SERVICE, i), service)
    return index


def _type_name(field: FieldDescriptorProto) -> str:
    if field.type_name:
        return field.type_name.lstrip(".")
    return FieldDescriptorProto.Type.Name(field.type)[len("TYPE_"):].lower()


def _label_name(field: FieldDescriptorProto) -> str:
    return FieldDescriptorProto.Label.Name(field.label)[len("LABEL_"):].lower()


def _oneof_name(message: descriptor_pb2.DescriptorProto, field: FieldDescriptorProto) -> str:
    if not field.HasField("oneof_index") or field.proto3_optional:
        return ""
    return message.oneof_decl[field.oneof_index].name


def _syntax(file: FileDescriptorProto) -> str:
    return file.syntax or "proto2"


class BreakingChecker:
    """Compare two package sets and report incompatible changes."""

    def __init__(self, config: Optional[BreakConfig] = None):
        self.config = config or BreakConfig()
        self._locations: dict[str, dict[tuple[int, ...], tuple[int, int]]] = {}

    def _location_map(self, file: FileDescriptorProto) -> dict[tuple[int, ...], tuple[int, int]]:
        if file.name not in self._locations:
            locations = {}
            for location in file.source_code_info.location:
                if len(location.span) >= 2:
                    locations.setdefault(tuple(location.path), (location.span[0] + 1, location.span[1] + 1))
            self._locations[file.name] = locations
        return self._locations[file.name]

    def _failure(
        self,
        check_id: str,
        message: str,
        file: Optional[FileDescriptorProto] = None,
        path: tuple[int, ...] = (),
    ) -> Failure:
        """Build a failure located at path in file, if known."""
        if file is None:
            return Failure(id=check_id, message=message)
        line, column = self._location_map(file).get(path, (0, 0))
        return Failure(filename=file.name, line=line, column=column, id=check_id, message=message)

    def _parent_location(
        self,
        full_name: str,
        from_element: _Element,
        to_index: _PackageIndex,
    ) -> tuple[Optional[FileDescriptorProto], tuple[int, ...]]:
        """Find where to report a deleted type: its nearest surviving parent."""
        parent_name = full_name.rsplit(".", 1)[0] if "." in full_name else ""
        while parent_name:
            parent = to_index.messages.get(parent_name)
            if parent is not None:
                return parent.file, parent.path
            parent_name = parent_name.rsplit(".", 1)[0] if "." in parent_name else ""
        to_file = to_index.files.get(from_element.file.name)
        if to_file is not None:
            return to_file, (_FILE_PACKAGE,)
        return None, ()

    def _check_files(self, from_index: _PackageIndex, to_index: _PackageIndex) -> Iterator[Failure]:
        for name, from_file in from_index.files.items():
            to_file = to_index.files.get(name)
            if to_file is None:
                continue
            if _syntax(from_file) != _syntax(to_file):
                yield self._failure(
                    "FILES_SAME_SYNTAX",
                    f'File "{name}" changed syntax from "{_syntax(from_file)}" to "{_syntax(to_file)}".',
                    to_file,
                    (_FILE_SYNTAX,),
                )

    def _check_fields(self, from_element: _Element, to_element: _Element) -> Iterator[Failure]:
        from_message = from_element.descriptor
        to_message = to_element.descriptor
        to_fields = {
            field.number: (i, field) for i, field in enumerate(to_message.field)
        }
        name = from_element.full_name

        for from_field in from_message.field:
            number = from_field.number
            if number not in to_fields:
                yield self._failure(
                    "MESSAGE_FIELDS_NO_DELETE",
                    f'Message field "{from_field.name}" ({number}) on message "{name}" was deleted.',
                    to_element.file,
                    to_element.path,
                )
                continue

            i, to_field = to_fields[number]
            path = to_element.path + (_MESSAGE_FIELD, i)
            if from_field.name != to_field.name:
                yield self._failure(
                    "MESSAGE_FIELDS_SAME_NAME",
                    f'Message field "{number}" on message "{name}" changed name '
                    f'from "{from_field.name}" to "{to_field.name}".',
                    to_element.file,
                    path,
                )
            if _type_name(from_field) != _type_name(to_field):
                yield self._failure(
                    "MESSAGE_FIELDS_SAME_TYPE",
                    f'Message field "{number}" on message "{name}" changed type '
                    f'from "{_type_name(from_field)}" to "{_type_name(to_field)}".',
                    to_element.file,
                    path,
                )
            if from_field.label != to_field.label:
                yield self._failure(
                    "MESSAGE_FIELDS_SAME_LABEL",
                    f'Message field "{number}" on message "{name}" changed label '
                    f'from "{_label_name(from_field)}" to "{_label_name(to_field)}".',
                    to_element.file,
                    path,
                )
            from_oneof = _oneof_name(from_message, from_field)
            to_oneof = _oneof_name(to_message, to_field)
            if from_oneof != to_oneof:
                yield self._failure(
                    "MESSAGE_FIELDS_SAME_ONEOF",
                    f'Message field "{number}" on message "{name}" changed oneof '
                    f'from "{from_oneof}" to "{to_oneof}".',
                    to_element.file,
                    path,
                )

    def _check_messages(self, from_index: _PackageIndex, to_index: _PackageIndex) -> Iterator[Failure]:
        for full_name, from_element in from_index.messages.items():
            to_element = to_index.messages.get(full_name)
            if to_element is None:
                file, path = self._parent_location(full_name, from_element, to_index)
                yield self._failure(
                    "MESSAGES_NO_DELETE", f'Message "{full_name}" was deleted.', file, path
                )
                continue
            yield from self._check_fields(from_element, to_element)

    def _check_enums(self, from_index: _PackageIndex, to_index: _PackageIndex) -> Iterator[Failure]:
        for full_name, from_element in from_index.enums.items():
            to_element = to_index.enums.get(full_name)
            if to_element is None:
                file, path = self._parent_location(full_name, from_element, to_index)
                yield self._failure("ENUMS_NO_DELETE", f'Enum "{full_name}" was deleted.', file, path)
                continue

            from_values: dict[int, list[str]] = {}
            for value in from_element.descriptor.value:
                from_values.setdefault(value.number, []).append(value.name)
            to_values: dict[int, tuple[int, list[str]]] = {}
            for i, value in enumerate(to_element.descriptor.value):
                to_values.setdefault(value.number, (i, []))[1].append(value.name)

            for number, names in from_values.items():
                if number not in to_values:
                    yield self._failure(
                        "ENUM_VALUES_NO_DELETE",
                        f'Enum value "{names[0]}" ({number}) on enum "{full_name}" was deleted.',
                        to_element.file,
                        to_element.path,
                    )
                    continue
                i, to_names = to_values[number]
                if not set(names) & set(to_names):
                    yield self._failure(
                        "ENUM_VALUES_SAME_NAME",
                        f'Enum value "{number}" on enum "{full_name}" changed name '
                        f'from "{names[0]}" to "{to_names[0]}".',
                        to_element.file,
                        to_element.path + (_ENUM_VALUE, i),
                    )

    def _check_services(self, from_index: _PackageIndex, to_index: _PackageIndex) -> Iterator[Failure]:
        for full_name, from_element in from_index.services.items():
            to_element = to_index.services.get(full_name)
            if to_element is None:
                file = to_index.files.get(from_element.file.name)
                path = (_FILE_PACKAGE,) if file is not None else ()
                yield self._failure("SERVICES_NO_DELETE", f'Service "{full_name}" was deleted.', file, path)
                continue

            to_methods = {method.name: (i, method) for i, method in enumerate(to_element.descriptor.method)}
            for from_method in from_element.descriptor.method:
                method_name = f"{full_name}.{from_method.name}"
                if from_method.name not in to_methods:
                    yield self._failure(
                        "SERVICE_METHODS_NO_DELETE",
                        f'Service method "{method_name}" was deleted.',
                        to_element.file,
                        to_element.path,
                    )
                    continue
                i, to_method = to_methods[from_method.name]
                path = to_element.path + (_SERVICE_METHOD, i)
                comparisons = (
                    ("SERVICE_METHODS_SAME_INPUT_TYPE", "input type",
                     from_method.input_type.lstrip("."), to_method.input_type.lstrip(".")),
                    ("SERVICE_METHODS_SAME_OUTPUT_TYPE", "output type",
                     from_method.output_type.lstrip("."), to_method.output_type.lstrip(".")),
                    ("SERVICE_METHODS_SAME_CLIENT_STREAMING", "client streaming",
                     str(from_method.client_streaming).lower(), str(to_method.client_streaming).lower()),
                    ("SERVICE_METHODS_SAME_SERVER_STREAMING", "server streaming",
                     str(from_method.server_streaming).lower(), str(to_method.server_streaming).lower()),
                )
                for check_id, what, before, after in comparisons:
                    if before != after:
                        yield self._failure(
                            check_id,
                            f'Service method "{method_name}" changed {what} from "{before}" to "{after}".',
                            to_element.file,
                            path,
                        )

    def _check_beta_deps(self, to_set: PackageSet) -> Iterator[Failure]:
        for package_name in to_set.package_names():
            if is_beta_package(package_name):
                continue
            for dependency_name in to_set.dependency_names(package_name):
                if is_beta_package(dependency_name):
                    files = to_set.file_descriptors(package_name)
                    yield self._failure(
                        "PACKAGES_NO_BETA_DEPS",
                        f'Package "{package_name}" is not a beta package '
                        f'but depends on beta package "{dependency_name}".',
                        files[0] if files else None,
                        (_FILE_PACKAGE,) if files else (),
                    )

    def run(self, from_set: PackageSet, to_set: PackageSet) -> list[Failure]:
        """Compare from_set against to_set.

        Returns:
            Sorted failures, one per incompatible change.
        """
        failures: list[Failure] = []

        for package in sorted(from_set, key=lambda p: p.name):
            name = package.name
            if is_beta_package(name) and not self.config.include_beta:
                logger.debug("skipping beta package %s", name)
                continue
            if name and name not in to_set:
                failures.append(self._failure("PACKAGES_NO_DELETE", f'Package "{name}" was deleted.'))
                continue

            from_index = _index_package(from_set, name)
            to_index = _index_package(to_set, name)
            failures.extend(self._check_files(from_index, to_index))
            failures.extend(self._check_messages(from_index, to_index))
            failures.extend(self._check_enums(from_index, to_index))
            failures.extend(self._check_services(from_index, to_index))

        if not self.config.allow_beta_deps:
            failures.extend(self._check_beta_deps(to_set))

        return sort_failures(failures)


def run(config: Optional[BreakConfig], from_set: PackageSet, to_set: PackageSet) -> list[Failure]:
    """Report breaking changes from from_set to to_set."""
    return BreakingChecker(config).run(from_set, to_set)
