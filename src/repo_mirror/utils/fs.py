"""
repo-mirror — filesystem utilities

File: src/repo_mirror/utils/fs.py

Purpose
- Atomic writes for checkpoint markers, scoped scratch directories, overlay copying
  and pruning of staged trees.

Functional requirements
- Atomic writes use temp files in the destination directory and replace in a single step.
- Scratch directories are removed on every exit path, including exceptions.
- Overlay copies overwrite existing files at conflicting paths.

Non-functional requirements
- Standard library only.
"""

from __future__ import annotations

import contextlib
import os
import shutil
import tempfile
from contextlib import contextmanager
from pathlib import Path, PurePosixPath
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator

PathLike = str | os.PathLike[str]

__all__ = [
    "atomic_write",
    "overlay_copy",
    "prune_untracked",
    "relative_files",
    "temp_directory",
]


def atomic_write(path: PathLike, data: bytes | str, *, encoding: str = "utf-8") -> None:
    """
    Atomically write ``data`` to ``path``.

    The write strategy is:
    1. create temp file in the same directory,
    2. write + flush + fsync file data,
    3. replace target via ``os.replace``.
    """

    target = Path(path)
    target_parent = target.parent.resolve(strict=True)
    if not target_parent.is_dir():
        raise NotADirectoryError(f"{target_parent!s} is not a directory")

    fd, temp_name = tempfile.mkstemp(
        prefix=f".{target.name}.",
        suffix=".tmp",
        dir=str(target_parent),
    )
    temp_path = Path(temp_name)

    try:
        payload = data if isinstance(data, bytes) else data.encode(encoding)
        with os.fdopen(fd, "wb") as file_handle:
            file_handle.write(payload)
            file_handle.flush()
            os.fsync(file_handle.fileno())

        os.replace(temp_path, target)
        _fsync_directory(target_parent)
    except Exception:
        with contextlib.suppress(OSError):
            temp_path.unlink(missing_ok=True)
        raise


@contextmanager
def temp_directory(
    prefix: str = "repo-mirror-", *, parent: PathLike | None = None
) -> Iterator[Path]:
    """Yield a fresh temporary directory and remove it on exit, whatever happens."""

    base: str | None = None
    if parent is not None:
        parent_path = Path(parent)
        parent_path.mkdir(parents=True, exist_ok=True)
        base = str(parent_path)

    path = Path(tempfile.mkdtemp(prefix=prefix, dir=base))
    try:
        yield path
    finally:
        shutil.rmtree(path, ignore_errors=True)


def relative_files(root: PathLike) -> tuple[str, ...]:
    """Return sorted POSIX paths of all files and symlinks below ``root``."""

    root_path = Path(root)
    found: list[str] = []
    for dirpath, dirnames, filenames in os.walk(root_path):
        current = Path(dirpath)
        for name in filenames:
            found.append((current / name).relative_to(root_path).as_posix())
        for name in list(dirnames):
            candidate = current / name
            if candidate.is_symlink():
                # os.walk does not descend into symlinked dirs; track the link itself.
                found.append(candidate.relative_to(root_path).as_posix())
    return tuple(sorted(found))


def prune_untracked(root: PathLike, keep: Iterable[str]) -> tuple[str, ...]:
    """Delete files below ``root`` that are not listed in ``keep``.

    Empty directories left behind are removed too. Returns the removed paths.
    """

    root_path = Path(root)
    keep_set = {PurePosixPath(item).as_posix() for item in keep}
    removed: list[str] = []

    for rel_path in relative_files(root_path):
        if rel_path in keep_set:
            continue
        (root_path / rel_path).unlink()
        removed.append(rel_path)

    for dirpath, _dirnames, _filenames in sorted(os.walk(root_path), reverse=True):
        current = Path(dirpath)
        if current == root_path:
            continue
        with contextlib.suppress(OSError):
            current.rmdir()

    return tuple(removed)


def overlay_copy(source: PathLike, target: PathLike) -> tuple[str, ...]:
    """Copy every file of ``source`` into ``target``, replacing conflicting paths."""

    source_path = Path(source)
    target_path = Path(target)
    if not source_path.is_dir():
        raise NotADirectoryError(f"{source_path!s} is not a directory")

    copied: list[str] = []
    for rel_path in relative_files(source_path):
        origin = source_path / rel_path
        destination = target_path / rel_path
        _clear_conflicting_parents(target_path, PurePosixPath(rel_path))
        if destination.is_dir() and not destination.is_symlink():
            shutil.rmtree(destination)
        elif destination.exists() or destination.is_symlink():
            destination.unlink()
        destination.parent.mkdir(parents=True, exist_ok=True)
        if origin.is_symlink():
            os.symlink(os.readlink(origin), destination)
        else:
            shutil.copy2(origin, destination)
        copied.append(rel_path)
    return tuple(copied)


def _clear_conflicting_parents(root: Path, rel_path: PurePosixPath) -> None:
    """Remove files that sit where the overlay needs a directory."""

    current = root
    for part in rel_path.parts[:-1]:
        current = current / part
        if current.is_symlink() or current.is_file():
            current.unlink()
            return


def _fsync_directory(path: Path) -> None:
    """
    Best-effort directory fsync for metadata durability after ``os.replace``.

    Some platforms/filesystems do not support fsync on directories.
    """

    if os.name == "nt":
        return

    flags = os.O_RDONLY
    if hasattr(os, "O_DIRECTORY"):
        flags |= os.O_DIRECTORY

    try:
        dir_fd = os.open(path, flags)
    except OSError:
        return

    try:
        os.fsync(dir_fd)
    except OSError:
        return
    finally:
        os.close(dir_fd)
