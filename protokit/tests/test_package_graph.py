"""Tests for the package graph."""

import pytest

from protokit.components.package_graph import build_package_set
from protokit.errors import DescriptorGraphError


@pytest.fixture
def foo_imports_bar(file_factory, set_factory):
    """foo imports bar; bar imports nothing; baz imports itself."""
    return set_factory(
        file_factory("bar/bar.proto", "bar"),
        file_factory("foo/foo.proto", "foo", dependencies=["bar/bar.proto", "foo/other.proto"]),
        file_factory("foo/other.proto", "foo"),
        file_factory("baz/a.proto", "baz", dependencies=["baz/b.proto"]),
        file_factory("baz/b.proto", "baz"),
        file_factory("loose.proto", ""),
    )


class TestPackageSet:
    """Tests for build_package_set."""

    def test_package_names_exclude_default(self, foo_imports_bar):
        """Names are sorted and the default package is not listed."""
        package_set = build_package_set([foo_imports_bar])

        assert package_set.package_names() == ["bar", "baz", "foo"]
        assert "" in package_set
        assert len(package_set) == 4

    def test_dependencies_and_importers(self, foo_imports_bar):
        """Import edges are reported in both directions."""
        package_set = build_package_set([foo_imports_bar])

        assert package_set.dependency_names("foo") == ["bar"]
        assert package_set.importer_names("bar") == ["foo"]
        assert package_set.importer_names("foo") == []

    def test_self_imports_are_not_edges(self, foo_imports_bar):
        """Files importing their own package add no edge."""
        package_set = build_package_set([foo_imports_bar])

        assert package_set.dependency_names("baz") == []
        assert package_set.importer_names("baz") == []

    def test_package_files(self, foo_imports_bar):
        """Each package lists its files sorted by name."""
        package_set = build_package_set([foo_imports_bar])

        assert package_set.get("foo").files == ("foo/foo.proto", "foo/other.proto")
        assert [f.name for f in package_set.file_descriptors("foo")] == ["foo/foo.proto", "foo/other.proto"]
        assert package_set.file_descriptor("bar/bar.proto").package == "bar"

    def test_unknown_package(self, foo_imports_bar):
        """Unknown packages have no relations."""
        package_set = build_package_set([foo_imports_bar])

        assert package_set.get("nope") is None
        assert package_set.dependency_names("nope") == []
        assert package_set.file_descriptors("nope") == []

    def test_read_only(self, foo_imports_bar):
        """The package mapping cannot be modified."""
        package_set = build_package_set([foo_imports_bar])

        with pytest.raises(TypeError):
            package_set.packages["new"] = None

    def test_unresolved_import(self, file_factory, set_factory):
        """An import missing from the inputs raises DescriptorGraphError."""
        descriptor_set = set_factory(file_factory("foo.proto", "foo", dependencies=["missing.proto"]))

        with pytest.raises(DescriptorGraphError, match="missing.proto"):
            build_package_set([descriptor_set])

    def test_multiple_inputs_merged(self, file_factory, set_factory):
        """Several descriptor sets are merged before building."""
        bar = file_factory("bar.proto", "bar")
        foo = file_factory("foo.proto", "foo", dependencies=["bar.proto"])

        package_set = build_package_set([set_factory(bar), set_factory(foo, bar)])

        assert package_set.dependency_names("foo") == ["bar"]
