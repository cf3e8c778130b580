"""Shared fixtures for protokit tests."""

import io
import zipfile

import pytest
from google.protobuf import descriptor_pb2

FieldDescriptorProto = descriptor_pb2.FieldDescriptorProto

FAKE_PROTOC_SCRIPT = """#!/bin/sh
if [ -n "$FAKE_PROTOC_LOG" ]; then
  echo "$*" >> "$FAKE_PROTOC_LOG"
fi
out=""
file_failed=""
for arg in "$@"; do
  case "$arg" in
    --descriptor_set_out=*) out="${arg#--descriptor_set_out=}" ;;
    *.proto)
      stderr_file="$FAKE_PROTOC_STDERR_DIR/$(basename "$arg")"
      if [ -n "$FAKE_PROTOC_STDERR_DIR" ] && [ -f "$stderr_file" ]; then
        cat "$stderr_file" >&2
        file_failed=1
      fi
      ;;
  esac
done
if [ -n "$file_failed" ]; then
  exit 1
fi
if [ -n "$FAKE_PROTOC_STDERR" ]; then
  printf '%s\\n' "$FAKE_PROTOC_STDERR" >&2
  exit "${FAKE_PROTOC_EXIT:-1}"
fi
if [ -n "$FAKE_PROTOC_EXIT" ]; then
  exit "$FAKE_PROTOC_EXIT"
fi
if [ -n "$out" ] && [ "$out" != "/dev/null" ] && [ -n "$FAKE_PROTOC_DESCRIPTOR" ]; then
  cp "$FAKE_PROTOC_DESCRIPTOR" "$out"
fi
exit 0
"""


def make_file(name, package="", messages=None, dependencies=(), syntax="proto3"):
    """Build a FileDescriptorProto.

    messages maps message names to (field name, field number) pairs; every
    field is an optional string.
    """
    file = descriptor_pb2.FileDescriptorProto(name=name, package=package, syntax=syntax)
    file.dependency.extend(dependencies)
    for message_name, fields in (messages or {}).items():
        message = file.message_type.add(name=message_name)
        for field_name, number in fields:
            message.field.add(
                name=field_name,
                number=number,
                type=FieldDescriptorProto.TYPE_STRING,
                label=FieldDescriptorProto.LABEL_OPTIONAL,
            )
    return file


def make_set(*files):
    """Build a FileDescriptorSet from FileDescriptorProtos."""
    descriptor_set = descriptor_pb2.FileDescriptorSet()
    for file in files:
        descriptor_set.file.add().CopyFrom(file)
    return descriptor_set


class FakeProtoc:
    """A shell script standing in for protoc.

    Its behaviour is driven by environment variables set through
    monkeypatch, which subprocesses inherit.
    """

    def __init__(self, root, monkeypatch):
        self.monkeypatch = monkeypatch
        self.bin_path = root / "bin" / "protoc"
        self.wkt_path = root / "include"
        self.log_path = root / "protoc.log"
        self.descriptor_path = root / "descriptor.bin"
        self.stderr_dir = root / "stderr"

        self.bin_path.parent.mkdir(parents=True)
        self.wkt_path.mkdir(parents=True)
        self.bin_path.write_text(FAKE_PROTOC_SCRIPT)
        self.bin_path.chmod(0o755)

        monkeypatch.setenv("PROTOKIT_PROTOC_BIN_PATH", str(self.bin_path))
        monkeypatch.setenv("PROTOKIT_PROTOC_WKT_PATH", str(self.wkt_path))
        monkeypatch.setenv("FAKE_PROTOC_LOG", str(self.log_path))
        monkeypatch.delenv("FAKE_PROTOC_STDERR", raising=False)
        monkeypatch.delenv("FAKE_PROTOC_EXIT", raising=False)
        monkeypatch.delenv("FAKE_PROTOC_DESCRIPTOR", raising=False)
        monkeypatch.delenv("FAKE_PROTOC_STDERR_DIR", raising=False)

    def set_descriptor_set(self, descriptor_set):
        """Make every descriptor-set invocation write descriptor_set."""
        self.descriptor_path.write_bytes(descriptor_set.SerializeToString())
        self.monkeypatch.setenv("FAKE_PROTOC_DESCRIPTOR", str(self.descriptor_path))

    def fail(self, stderr, exit_code=1):
        """Make every invocation print stderr and exit with exit_code."""
        if stderr:
            self.monkeypatch.setenv("FAKE_PROTOC_STDERR", stderr)
        self.monkeypatch.setenv("FAKE_PROTOC_EXIT", str(exit_code))

    def fail_file(self, basename, stderr):
        """Make any invocation given a file named basename print stderr and exit 1."""
        self.stderr_dir.mkdir(exist_ok=True)
        (self.stderr_dir / basename).write_text(stderr + "\n")
        self.monkeypatch.setenv("FAKE_PROTOC_STDERR_DIR", str(self.stderr_dir))

    def invocations(self):
        """Argument lines of every invocation so far."""
        if not self.log_path.exists():
            return []
        return self.log_path.read_text().splitlines()


@pytest.fixture
def fake_protoc(tmp_path, monkeypatch):
    """Fake protoc binary configured through PROTOKIT_PROTOC_* variables."""
    return FakeProtoc(tmp_path / "toolchain", monkeypatch)


@pytest.fixture
def protoc_zip(tmp_path):
    """A protoc release archive on disk, addressed by a file:// URL."""
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        archive.writestr("bin/protoc", FAKE_PROTOC_SCRIPT)
        archive.writestr("include/google/protobuf/empty.proto", 'syntax = "proto3";\n')
        archive.writestr("readme.txt", "protoc\n")
    path = tmp_path / "protoc.zip"
    path.write_bytes(buffer.getvalue())
    return path


@pytest.fixture
def workspace(tmp_path):
    """Create a workspace directory; returns a function that adds files to it.

    add(relative_path, content="") writes the file and returns its path.
    """
    root = tmp_path / "workspace"
    root.mkdir()

    def add(relative_path, content=""):
        path = root / relative_path
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content)
        return path

    add.root = root
    return add


@pytest.fixture
def file_factory():
    """Factory for FileDescriptorProtos, see make_file."""
    return make_file


@pytest.fixture
def set_factory():
    """Factory for FileDescriptorSets, see make_set."""
    return make_set
