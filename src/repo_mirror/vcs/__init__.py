"""Version-control backend: a thin, explicit-handle wrapper around the git CLI."""

from repo_mirror.vcs.git_engine import (
    BackendFailure,
    CommandResult,
    CommitIdentity,
    GitCommandError,
    GitEngine,
    GitEngineError,
    IndexEntry,
    RefEntry,
)

__all__ = [
    "BackendFailure",
    "CommandResult",
    "CommitIdentity",
    "GitCommandError",
    "GitEngine",
    "GitEngineError",
    "IndexEntry",
    "RefEntry",
]
