"""
repo-mirror — worktree stager

File: src/repo_mirror/mirror/stager.py

Purpose
- Materialize one source commit's filtered content into a scoped scratch directory,
  copy the overlay over it and run the optional transform hook.

Functional requirements
- The scratch directory is released on every exit path (success, skip, failure).
- A pathspec element that matches nothing in the commit raises ``MissingPathspec``.
- A hook that reports failure raises ``HookRejected``.
- The staged tree reflects exactly the filtered commit plus the overlay; submodule
  entries are never materialized.
- Any other failure is a ``BackendFailure`` and propagates.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from repo_mirror.domain.models import SkipReason
from repo_mirror.utils.fs import overlay_copy, prune_untracked, temp_directory

if TYPE_CHECKING:
    from collections.abc import Iterator, Sequence

    from repo_mirror.mirror.hooks import TransformHook
    from repo_mirror.vcs.git_engine import GitEngine

logger = logging.getLogger(__name__)

_SOURCE_INDEX = "source"
_TREE_DIR = "tree"


class SkipCommit(Exception):
    """Per-commit condition that quarantines the commit instead of failing the run."""

    reason: SkipReason

    def __init__(self, commit: str, detail: str) -> None:
        self.commit = commit
        self.detail = detail
        super().__init__(f"{commit}: {detail}")


class MissingPathspec(SkipCommit):
    """The configured path restriction matches nothing in this commit."""

    reason = SkipReason.MISSING_PATHSPEC


class HookRejected(SkipCommit):
    """The transform hook reported failure for this commit."""

    reason = SkipReason.HOOK_REJECTED


@dataclass(frozen=True, slots=True)
class StagedTree:
    """Filtered, overlaid content of one source commit, ready to be committed."""

    source_commit: str
    root: Path
    workspace: Path

    def index_path(self, name: str) -> Path:
        """Private index file location that lives outside the staged tree."""

        return self.workspace / f"{name}.index"


class WorktreeStager:
    """Builds ``StagedTree`` values from source commits."""

    def __init__(
        self,
        source: GitEngine,
        *,
        pathspec: Sequence[str] = (),
        overlay_dir: Path | None = None,
        hook: TransformHook | None = None,
        scratch_parent: Path | None = None,
    ) -> None:
        self.source = source
        self.pathspec = tuple(pathspec)
        self.overlay_dir = overlay_dir
        self.hook = hook
        self.scratch_parent = scratch_parent

    @contextmanager
    def stage(self, commit: str) -> Iterator[StagedTree]:
        """Yield the staged tree of ``commit``; the scratch area is removed afterwards."""

        with temp_directory(prefix="repo-mirror-stage-", parent=self.scratch_parent) as workspace:
            tree_root = workspace / _TREE_DIR
            tree_root.mkdir()
            staged = StagedTree(source_commit=commit, root=tree_root, workspace=workspace)

            self._checkout(staged)
            if self.overlay_dir is not None:
                copied = overlay_copy(self.overlay_dir, tree_root)
                logger.debug("overlay applied", extra={"paths": len(copied)})
            if self.hook is not None and not self.hook(staged):
                raise HookRejected(commit, "transform hook reported failure")

            yield staged

    def _checkout(self, staged: StagedTree) -> None:
        index_file = staged.index_path(_SOURCE_INDEX)
        self.source.read_tree(staged.source_commit, index_file=index_file)
        entries = self.source.list_index(index_file=index_file, pathspec=self.pathspec)
        if entries is None:
            raise MissingPathspec(
                staged.source_commit,
                f"pathspec {' '.join(self.pathspec)!r} matches nothing",
            )

        paths = [entry.path for entry in entries if not entry.is_gitlink]
        self.source.checkout_index(paths, index_file=index_file, worktree=staged.root)
        removed = prune_untracked(staged.root, paths)
        if removed:
            logger.debug("pruned leftovers from scratch tree", extra={"paths": len(removed)})
        logger.debug(
            "commit content checked out",
            extra={"paths": len(paths), "gitlinks": len(entries) - len(paths)},
        )


__all__ = [
    "HookRejected",
    "MissingPathspec",
    "SkipCommit",
    "StagedTree",
    "WorktreeStager",
]
