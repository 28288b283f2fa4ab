"""Dataclass domain models with strict validation and canonical serialization."""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from enum import StrEnum
from typing import NoReturn

from repo_mirror.constants import EMPTY

JSONScalar = str | int | float | bool | None
JSONValue = JSONScalar | list["JSONValue"] | dict[str, "JSONValue"]

_SCHEMA_VERSION = 1
_OBJECT_ID_RE = re.compile(r"^[0-9a-f]{40}([0-9a-f]{24})?$")


class CommitOutcome(StrEnum):
    """Final, permanent decision recorded for one source commit."""

    MATERIALIZED = "materialized"
    SKIPPED = "skipped"


class SkipReason(StrEnum):
    MISSING_PATHSPEC = "missing_pathspec"
    HOOK_REJECTED = "hook_rejected"


class RefAction(StrEnum):
    UPDATED = "updated"
    UNCHANGED = "unchanged"
    SUPPRESSED = "suppressed"
    IGNORED = "ignored"


def _fail(path: str, message: str) -> NoReturn:
    raise ValueError(f"{path}: {message}")


def _canonical_json(value: JSONValue) -> str:
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def is_object_id(value: object) -> bool:
    """Return ``True`` for a full-length (SHA-1 or SHA-256) hex object name."""

    return isinstance(value, str) and _OBJECT_ID_RE.fullmatch(value) is not None


def _require_commit_id(value: object, path: str) -> str:
    if not is_object_id(value):
        _fail(path, f"expected a full hex commit id, got {value!r}")
    assert isinstance(value, str)
    return value


def _require_baseline(value: object, path: str) -> str:
    if value == EMPTY:
        return EMPTY
    return _require_commit_id(value, path)


@dataclass(frozen=True, slots=True)
class Chain:
    """Unresolved source commits of one lineage, oldest first, plus their baseline."""

    commits: tuple[str, ...]
    baseline: str

    def __post_init__(self) -> None:
        for index, commit in enumerate(self.commits):
            _require_commit_id(commit, f"Chain.commits[{index}]")
        _require_baseline(self.baseline, "Chain.baseline")

    def __len__(self) -> int:
        return len(self.commits)

    @property
    def is_resolved(self) -> bool:
        """``True`` when every commit of the lineage already has a checkpoint."""

        return not self.commits


@dataclass(frozen=True, slots=True)
class CommitRecord:
    """Outcome of replaying one chain element."""

    source_commit: str
    outcome: CommitOutcome
    destination_commit: str
    reason: SkipReason | None = None

    def __post_init__(self) -> None:
        _require_commit_id(self.source_commit, "CommitRecord.source_commit")
        _require_baseline(self.destination_commit, "CommitRecord.destination_commit")
        if self.outcome is CommitOutcome.SKIPPED and self.reason is None:
            _fail("CommitRecord.reason", "skipped commits must carry a reason")
        if self.outcome is CommitOutcome.MATERIALIZED:
            if self.reason is not None:
                _fail("CommitRecord.reason", "materialized commits carry no reason")
            if self.destination_commit == EMPTY:
                _fail("CommitRecord.destination_commit", "materialized commit must be real")

    def to_dict(self) -> dict[str, JSONValue]:
        payload: dict[str, JSONValue] = {
            "source": self.source_commit,
            "outcome": self.outcome.value,
            "destination": self.destination_commit,
        }
        if self.reason is not None:
            payload["reason"] = self.reason.value
        return payload


@dataclass(frozen=True, slots=True)
class RefReport:
    """What happened to one source ref during a transform."""

    ref: str
    source_tip: str | None
    baseline: str
    action: RefAction
    records: tuple[CommitRecord, ...] = ()

    @property
    def materialized(self) -> int:
        return sum(1 for record in self.records if record.outcome is CommitOutcome.MATERIALIZED)

    @property
    def skipped(self) -> int:
        return sum(1 for record in self.records if record.outcome is CommitOutcome.SKIPPED)

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "ref": self.ref,
            "source_tip": self.source_tip,
            "baseline": self.baseline,
            "action": self.action.value,
            "materialized": self.materialized,
            "skipped": self.skipped,
            "commits": [record.to_dict() for record in self.records],
        }


@dataclass(frozen=True, slots=True)
class TransformReport:
    """Aggregate result of a transform run across every source ref."""

    run_id: str
    refs: tuple[RefReport, ...] = field(default_factory=tuple)

    @property
    def materialized(self) -> int:
        return sum(report.materialized for report in self.refs)

    @property
    def skipped(self) -> int:
        return sum(report.skipped for report in self.refs)

    @property
    def updated_refs(self) -> tuple[str, ...]:
        return tuple(report.ref for report in self.refs if report.action is RefAction.UPDATED)

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "schema_version": _SCHEMA_VERSION,
            "run_id": self.run_id,
            "materialized": self.materialized,
            "skipped": self.skipped,
            "refs": [report.to_dict() for report in self.refs],
        }

    def to_json(self) -> str:
        return _canonical_json(self.to_dict())


__all__ = [
    "Chain",
    "CommitOutcome",
    "CommitRecord",
    "JSONScalar",
    "JSONValue",
    "RefAction",
    "RefReport",
    "SkipReason",
    "TransformReport",
    "is_object_id",
]
