"""Destination commit creation and checkpoint recording."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from repo_mirror.constants import EMPTY

if TYPE_CHECKING:
    from repo_mirror.mirror.checkpoints import CheckpointStore
    from repo_mirror.mirror.stager import StagedTree
    from repo_mirror.vcs.git_engine import CommitIdentity, GitEngine

logger = logging.getLogger(__name__)

_DESTINATION_INDEX = "destination"


class CommitWriter:
    """Turns staged trees into single-parent destination commits."""

    def __init__(
        self,
        destination: GitEngine,
        store: CheckpointStore,
        *,
        identity: CommitIdentity,
    ) -> None:
        self.destination = destination
        self.store = store
        self.identity = identity

    def write(
        self,
        staged: StagedTree,
        baseline: str,
        *,
        message: bytes,
        dates: tuple[str, str] | None = None,
        encoding: str | None = None,
    ) -> str:
        """Commit ``staged`` on top of ``baseline`` and checkpoint the source commit.

        The private index starts from the baseline tree (the empty tree for ``EMPTY``)
        so the new commit differs from its parent only by what this commit changed.
        ``message`` is stored byte-for-byte under the source's ``encoding`` header, if any;
        ``dates`` is ``(author, committer)``.
        """

        index_file = staged.index_path(_DESTINATION_INDEX)
        parent = None if baseline == EMPTY else baseline
        self.destination.read_tree(parent, index_file=index_file)
        self.destination.add_all(staged.root, index_file=index_file)
        tree = self.destination.write_tree(index_file=index_file)

        author_date, committer_date = dates if dates is not None else (None, None)
        commit = self.destination.commit_tree(
            tree,
            parents=() if parent is None else (parent,),
            message=message,
            identity=self.identity,
            author_date=author_date,
            committer_date=committer_date,
            encoding=encoding,
        )
        self.store.put(staged.source_commit, commit)
        logger.debug("commit materialized", extra={"tree": tree, "destination": commit})
        return commit

    def quarantine(self, source_commit: str, baseline: str) -> str:
        """Record ``source_commit`` as contributing nothing; the baseline carries on."""

        self.store.put(source_commit, baseline)
        return baseline


__all__ = ["CommitWriter"]
