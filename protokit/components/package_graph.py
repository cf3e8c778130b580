"""Package graph built from compiled descriptor sets.

Package edges are derived from file-level imports once, at construction,
and stored read-only. Self-imports are not edges. The unnamed default
package is tracked but never listed.
"""

from __future__ import annotations

from dataclasses import dataclass
from types import MappingProxyType
from typing import Iterable, Iterator, Mapping, Optional

from protokit.components.descriptors import (
    FileDescriptorProto,
    FileDescriptorSet,
    merge_descriptor_sets,
)
from protokit.errors import DescriptorGraphError


@dataclass(frozen=True)
class Package:
    """A named schema namespace and its relations."""

    name: str
    files: tuple[str, ...]  # names of the files declaring this package
    dependency_names: frozenset[str]  # packages this package imports from
    importer_names: frozenset[str]  # packages that import this package


def sort_package_names(names: Iterable[str]) -> list[str]:
    """Sort package names for output, dropping the default package."""
    return sorted(name for name in names if name)


class PackageSet:
    """Read-only mapping from package name to Package."""

    def __init__(self, descriptor_set: FileDescriptorSet, packages: Mapping[str, Package]):
        self._descriptor_set = descriptor_set
        self._packages = MappingProxyType(dict(packages))
        self._files = MappingProxyType(
            {file_descriptor.name: file_descriptor for file_descriptor in descriptor_set.file}
        )

    @property
    def descriptor_set(self) -> FileDescriptorSet:
        return self._descriptor_set

    @property
    def packages(self) -> Mapping[str, Package]:
        return self._packages

    def __contains__(self, name: object) -> bool:
        return name in self._packages

    def __iter__(self) -> Iterator[Package]:
        return iter(self._packages.values())

    def __len__(self) -> int:
        return len(self._packages)

    def get(self, name: str) -> Optional[Package]:
        return self._packages.get(name)

    def package_names(self) -> list[str]:
        """Sorted package names, excluding the default package."""
        return sort_package_names(self._packages)

    def dependency_names(self, name: str) -> list[str]:
        """Sorted names of the packages that name imports from."""
        package = self._packages.get(name)
        if package is None:
            return []
        return sort_package_names(package.dependency_names)

    def importer_names(self, name: str) -> list[str]:
        """Sorted names of the packages that import name."""
        package = self._packages.get(name)
        if package is None:
            return []
        return sort_package_names(package.importer_names)

    def file_descriptor(self, file_name: str) -> Optional[FileDescriptorProto]:
        return self._files.get(file_name)

    def file_descriptors(self, package_name: str) -> list[FileDescriptorProto]:
        """Descriptors of the files declaring package_name, sorted by file name."""
        package = self._packages.get(package_name)
        if package is None:
            return []
        return [self._files[file_name] for file_name in package.files]


def build_package_set(descriptor_sets: Iterable[FileDescriptorSet]) -> PackageSet:
    """Build a PackageSet from one or more descriptor sets.

    Raises:
        MergeConflictError: If the inputs disagree on a file.
        DescriptorGraphError: If a file imports a file missing from the inputs.
    """
    merged = merge_descriptor_sets(descriptor_sets)

    file_to_package: dict[str, str] = {}
    package_files: dict[str, list[str]] = {}
    for file_descriptor in merged.file:
        file_to_package[file_descriptor.name] = file_descriptor.package
        package_files.setdefault(file_descriptor.package, []).append(file_descriptor.name)

    dependencies: dict[str, set[str]] = {name: set() for name in package_files}
    importers: dict[str, set[str]] = {name: set() for name in package_files}

    # First pass: package-level import edges
    for file_descriptor in merged.file:
        package_name = file_descriptor.package
        for imported in file_descriptor.dependency:
            if imported not in file_to_package:
                raise DescriptorGraphError(
                    f"{file_descriptor.name} imports {imported}, which is not in the descriptor set",
                    file=file_descriptor.name,
                )
            imported_package = file_to_package[imported]
            if imported_package != package_name:
                dependencies[package_name].add(imported_package)

    # Second pass: reverse edges
    for package_name, dependency_names in dependencies.items():
        for dependency_name in dependency_names:
            importers[dependency_name].add(package_name)

    packages = {
        name: Package(
            name=name,
            files=tuple(sorted(files)),
            dependency_names=frozenset(dependencies[name]),
            importer_names=frozenset(importers[name]),
        )
        for name, files in package_files.items()
    }
    return PackageSet(merged, packages)
