"""Utility functions for protokit.

Provides:
- file_utils: Path normalization and display paths
- lock_utils: Cross-process advisory file locks
- git_utils: Temporary git clones for historical snapshots
"""
