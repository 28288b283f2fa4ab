"""Stable constants shared across the mirror pipeline."""

from __future__ import annotations

from pathlib import PurePosixPath
from typing import Final

# Checkpoint sentinels.
ROOT_KEY: Final[str] = "ROOT"
EMPTY: Final[str] = "EMPTY"

# Source refs that are mirrored.
MIRRORED_REF_PREFIXES: Final[tuple[str, ...]] = ("refs/heads/", "refs/tags/")

# Default remote name for both local clones.
DEFAULT_REMOTE: Final[str] = "origin"
DEFAULT_BRANCH: Final[str] = "main"

# Layout inside the destination git dir.
CHECKPOINTS_DIR: Final[PurePosixPath] = PurePosixPath("mirror/checkpoints")
CHECKPOINTS_LOCK: Final[PurePosixPath] = PurePosixPath("mirror/checkpoints.lock")

# Default committer identity for produced commits.
DEFAULT_IDENTITY_NAME: Final[str] = "repo-mirror"
DEFAULT_IDENTITY_EMAIL: Final[str] = "repo-mirror@localhost"

SEED_COMMIT_MESSAGE: Final[str] = "Initialize mirror with overlay content\n"

CONFIG_SCHEMA_VERSION: Final[int] = 1

__all__ = [
    "CHECKPOINTS_DIR",
    "CHECKPOINTS_LOCK",
    "CONFIG_SCHEMA_VERSION",
    "DEFAULT_BRANCH",
    "DEFAULT_IDENTITY_EMAIL",
    "DEFAULT_IDENTITY_NAME",
    "DEFAULT_REMOTE",
    "EMPTY",
    "MIRRORED_REF_PREFIXES",
    "ROOT_KEY",
    "SEED_COMMIT_MESSAGE",
]
