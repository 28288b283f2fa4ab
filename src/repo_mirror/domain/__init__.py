"""Domain models shared by the mirror pipeline and the CLI."""

from repo_mirror.domain.models import (
    Chain,
    CommitOutcome,
    CommitRecord,
    RefAction,
    RefReport,
    SkipReason,
    TransformReport,
    is_object_id,
)

__all__ = [
    "Chain",
    "CommitOutcome",
    "CommitRecord",
    "RefAction",
    "RefReport",
    "SkipReason",
    "TransformReport",
    "is_object_id",
]
