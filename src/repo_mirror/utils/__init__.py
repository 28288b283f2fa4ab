"""Shared filesystem helpers."""

from repo_mirror.utils.fs import (
    atomic_write,
    overlay_copy,
    prune_untracked,
    relative_files,
    temp_directory,
)

__all__ = [
    "atomic_write",
    "overlay_copy",
    "prune_untracked",
    "relative_files",
    "temp_directory",
]
