"""
repo-mirror — checkpoint store

File: src/repo_mirror/mirror/checkpoints.py

Purpose
- Durable mapping from a source commit id to the destination commit produced for it
  (or ``EMPTY`` when nothing has been produced on that lineage yet).

Functional requirements
- ``get``/``put`` only; the marker-file layout is an implementation detail.
- One marker file per source commit under ``<destination git dir>/mirror/checkpoints``.
- Marker writes are atomic; a crash never leaves a torn value behind.
- ``ROOT`` is seeded with ``EMPTY`` on initialization and never pruned.
- One writer at a time, enforced with an exclusive lock file.
"""

from __future__ import annotations

import contextlib
import logging
import os
import socket
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

from repo_mirror.constants import CHECKPOINTS_DIR, CHECKPOINTS_LOCK, EMPTY, ROOT_KEY
from repo_mirror.domain.models import is_object_id
from repo_mirror.utils.fs import atomic_write
from repo_mirror.vcs.git_engine import BackendFailure

if TYPE_CHECKING:
    from collections.abc import Iterator

logger = logging.getLogger(__name__)


class CheckpointStoreError(BackendFailure):
    """Raised when persisted checkpoint state cannot be read or written."""


class CheckpointLockedError(CheckpointStoreError):
    """Raised when another process already holds the checkpoint store lock."""


class CheckpointStore(Protocol):
    """Key-value view of recorded per-commit outcomes."""

    def get(self, key: str) -> str | None: ...

    def put(self, key: str, value: str) -> None: ...


class MemoryCheckpointStore:
    """In-process store, seeded like the persistent one."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._values: dict[str, str] = {ROOT_KEY: EMPTY}
        if initial:
            for key, value in initial.items():
                self.put(key, value)

    def get(self, key: str) -> str | None:
        return self._values.get(_validate_key(key))

    def put(self, key: str, value: str) -> None:
        self._values[_validate_key(key)] = _validate_value(value)

    def __len__(self) -> int:
        return len(self._values)

    def items(self) -> tuple[tuple[str, str], ...]:
        return tuple(sorted(self._values.items()))


class FileCheckpointStore:
    """Checkpoint markers stored as small files inside the destination git directory."""

    def __init__(self, git_dir: Path | str) -> None:
        self.git_dir = Path(git_dir)
        self.root = self.git_dir / CHECKPOINTS_DIR
        self.lock_path = self.git_dir / CHECKPOINTS_LOCK

    def __repr__(self) -> str:
        return f"FileCheckpointStore({self.root.as_posix()!r})"

    def exists(self) -> bool:
        return self._marker_path(ROOT_KEY).is_file()

    def initialize(self) -> bool:
        """Create the store and seed ``ROOT -> EMPTY``. Returns ``False`` if it existed."""

        if self.exists():
            return False
        try:
            self.root.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise CheckpointStoreError(f"unable to create checkpoint store {self.root}: {exc}") from exc
        self.put(ROOT_KEY, EMPTY)
        logger.info("checkpoint store initialized", extra={"path": self.root.as_posix()})
        return True

    def get(self, key: str) -> str | None:
        marker = self._marker_path(key)
        try:
            raw = marker.read_text(encoding="ascii")
        except FileNotFoundError:
            return None
        except (OSError, UnicodeDecodeError) as exc:
            raise CheckpointStoreError(f"unreadable checkpoint marker {marker}: {exc}") from exc

        value = raw.strip()
        try:
            return _validate_value(value)
        except ValueError as exc:
            raise CheckpointStoreError(f"corrupt checkpoint marker {marker}: {exc}") from exc

    def put(self, key: str, value: str) -> None:
        marker = self._marker_path(key)
        payload = _validate_value(value) + "\n"
        try:
            marker.parent.mkdir(parents=True, exist_ok=True)
            atomic_write(marker, payload, encoding="ascii")
        except OSError as exc:
            raise CheckpointStoreError(f"unable to write checkpoint marker {marker}: {exc}") from exc

    def keys(self) -> tuple[str, ...]:
        """Return every recorded key, sorted."""

        if not self.root.is_dir():
            return ()
        found: list[str] = []
        for entry in self.root.iterdir():
            if entry.is_file() and entry.name == ROOT_KEY:
                found.append(ROOT_KEY)
            elif entry.is_dir() and len(entry.name) == 2:
                found.extend(
                    entry.name + marker.name
                    for marker in entry.iterdir()
                    if marker.is_file() and not marker.name.startswith(".")
                )
        return tuple(sorted(found))

    def __len__(self) -> int:
        return len(self.keys())

    @contextmanager
    def locked(self) -> Iterator[FileCheckpointStore]:
        """Hold the exclusive writer lock for the duration of the block.

        A lock left behind by a process that no longer runs on this host is removed
        and the acquisition retried once.
        """

        self.lock_path.parent.mkdir(parents=True, exist_ok=True)
        fd = self._create_lock()
        if fd is None and self._lock_is_stale():
            logger.warning("removing stale checkpoint lock", extra={"lock": str(self.lock_path)})
            with contextlib.suppress(FileNotFoundError):
                self.lock_path.unlink()
            fd = self._create_lock()
        if fd is None:
            raise CheckpointLockedError(
                f"checkpoint store is locked by another process ({self.lock_path}); "
                "remove the lock file if no other run is active"
            )

        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(f"{os.getpid()}\n{socket.gethostname()}\n")
            yield self
        finally:
            with contextlib.suppress(FileNotFoundError):
                self.lock_path.unlink()

    def _create_lock(self) -> int | None:
        try:
            return os.open(self.lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            return None
        except OSError as exc:
            raise CheckpointStoreError(f"unable to create lock {self.lock_path}: {exc}") from exc

    def _lock_is_stale(self) -> bool:
        try:
            lines = self.lock_path.read_text(encoding="utf-8").splitlines()
        except FileNotFoundError:
            return True
        except OSError as exc:
            raise CheckpointStoreError(f"unable to read lock {self.lock_path}: {exc}") from exc

        if not lines:
            # The holder has created the file but not written its pid yet.
            return False
        try:
            pid = int(lines[0].strip())
        except ValueError:
            return True
        if len(lines) > 1 and lines[1].strip() not in ("", socket.gethostname()):
            return False
        if pid <= 0:
            return True
        if pid == os.getpid():
            return False
        return not _process_alive(pid)

    def _marker_path(self, key: str) -> Path:
        validated = _validate_key(key)
        if validated == ROOT_KEY:
            return self.root / ROOT_KEY
        return self.root / validated[:2] / validated[2:]


def _process_alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True


def _validate_key(key: str) -> str:
    if key == ROOT_KEY or is_object_id(key):
        return key
    raise ValueError(f"checkpoint key must be {ROOT_KEY!r} or a full commit id, got {key!r}")


def _validate_value(value: str) -> str:
    if value == EMPTY or is_object_id(value):
        return value
    raise ValueError(f"checkpoint value must be {EMPTY!r} or a full commit id, got {value!r}")


__all__ = [
    "CheckpointLockedError",
    "CheckpointStore",
    "CheckpointStoreError",
    "FileCheckpointStore",
    "MemoryCheckpointStore",
]
