"""Workspace-aware build and analysis layer over protoc.

This package provides:
- Workspace resolution (protokit.yaml discovery, per-directory file groups)
- Toolchain caching (versioned protoc downloads guarded by a file lock)
- Compilation (protoc invocation, diagnostic parsing, descriptor merging)
- Package graphs and breaking-change analysis over descriptor sets
"""

__version__ = "0.1.0"

DEFAULT_PROTOC_VERSION = "3.11.0"
