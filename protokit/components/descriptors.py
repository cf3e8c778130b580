"""FileDescriptorSet reading, merging, and serialization."""

from __future__ import annotations

from pathlib import Path
from typing import Iterable

from google.protobuf import descriptor_pb2, json_format
from google.protobuf.message import DecodeError

from protokit.errors import DescriptorGraphError, MergeConflictError

FileDescriptorSet = descriptor_pb2.FileDescriptorSet
FileDescriptorProto = descriptor_pb2.FileDescriptorProto


def merge_descriptor_sets(descriptor_sets: Iterable[FileDescriptorSet]) -> FileDescriptorSet:
    """Merge descriptor sets into one, sorted and deduplicated by file name.

    The same file appearing twice with identical content is kept once.

    Raises:
        MergeConflictError: If two files share a name but differ in content.
    """
    by_name: dict[str, FileDescriptorProto] = {}
    serialized: dict[str, bytes] = {}

    for descriptor_set in descriptor_sets:
        for file_descriptor in descriptor_set.file:
            name = file_descriptor.name
            data = file_descriptor.SerializeToString(deterministic=True)
            if name in by_name:
                if serialized[name] != data:
                    raise MergeConflictError(
                        f"Descriptor sets contain different content for {name}",
                        file=name,
                    )
                continue
            by_name[name] = file_descriptor
            serialized[name] = data

    merged = FileDescriptorSet()
    for name in sorted(by_name):
        merged.file.add().CopyFrom(by_name[name])
    return merged


def parse_descriptor_set(data: bytes, source: str = "") -> FileDescriptorSet:
    """Parse a serialized FileDescriptorSet.

    Raises:
        DescriptorGraphError: If data is not a valid descriptor set.
    """
    descriptor_set = FileDescriptorSet()
    try:
        descriptor_set.ParseFromString(data)
    except DecodeError as e:
        raise DescriptorGraphError(f"Invalid descriptor set: {e}", file=source or None)
    return descriptor_set


def read_descriptor_set(path: Path | str) -> FileDescriptorSet:
    """Read a binary FileDescriptorSet from disk."""
    path = Path(path)
    try:
        data = path.read_bytes()
    except OSError as e:
        raise DescriptorGraphError(f"Could not read descriptor set: {e}", file=str(path))
    return parse_descriptor_set(data, str(path))


def serialize_descriptor_set(descriptor_set: FileDescriptorSet, as_json: bool = False) -> bytes:
    """Serialize to the binary wire format or to its JSON projection."""
    if as_json:
        return json_format.MessageToJson(descriptor_set).encode("utf-8")
    return descriptor_set.SerializeToString(deterministic=True)
