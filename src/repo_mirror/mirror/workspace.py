"""
repo-mirror — local workspace operations

File: src/repo_mirror/mirror/workspace.py

Purpose
- Own the two local clones and expose the repository-level commands:
  ``init``, ``sync``, ``transform`` and ``push``.

Functional requirements
- ``init`` is idempotent: clone what is missing, re-point remotes that changed and
  create the checkpoint store. A destination created here is seeded with a commit
  of the overlay content.
- ``sync`` force-overwrites local heads and tags with the source remote's and prunes
  deleted ones.
- ``transform`` holds the checkpoint store lock for the whole run.
- ``push`` force-pushes every destination head and tag; it requires a destination.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from repo_mirror.constants import DEFAULT_BRANCH, DEFAULT_REMOTE, SEED_COMMIT_MESSAGE
from repo_mirror.mirror.checkpoints import FileCheckpointStore
from repo_mirror.mirror.pipeline import MirrorPipeline
from repo_mirror.utils.fs import overlay_copy, temp_directory
from repo_mirror.vcs.git_engine import GitEngine

if TYPE_CHECKING:
    from repo_mirror.config.settings import MirrorConfig
    from repo_mirror.domain.models import TransformReport
    from repo_mirror.mirror.hooks import TransformHook

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class InitResult:
    """What ``init`` had to create on this invocation."""

    source_cloned: bool
    destination_created: bool
    store_created: bool
    seed_commit: str | None


class MirrorWorkspace:
    """Repository handles and commands for one configured mirror."""

    def __init__(self, config: MirrorConfig) -> None:
        self.config = config
        self.source = GitEngine(config.source_clone)
        self.destination = GitEngine(config.destination_clone)

    @property
    def store(self) -> FileCheckpointStore:
        return FileCheckpointStore(self.destination.git_dir)

    def init(self) -> InitResult:
        """Prepare both clones and the checkpoint store; safe to repeat."""

        source_url = self.config.require_source()

        source_cloned = False
        if self.source.exists():
            self.source.set_remote_url(DEFAULT_REMOTE, source_url)
        else:
            logger.info("cloning source repository", extra={"url": source_url})
            self.source.clone(source_url, mirror=True)
            source_cloned = True

        destination_created = False
        if self.destination.exists():
            if self.config.destination_url:
                self.destination.set_remote_url(DEFAULT_REMOTE, self.config.destination_url)
        elif self.config.destination_url:
            logger.info(
                "cloning destination repository", extra={"url": self.config.destination_url}
            )
            self.destination.clone(self.config.destination_url)
            destination_created = True
        else:
            self.destination.init_bare(initial_branch=DEFAULT_BRANCH)
            destination_created = True

        store_created = self.store.initialize()
        seed_commit: str | None = None
        if store_created and self.config.overlay_dir is not None:
            seed_commit = self._seed_overlay()

        result = InitResult(
            source_cloned=source_cloned,
            destination_created=destination_created,
            store_created=store_created,
            seed_commit=seed_commit,
        )
        logger.debug("workspace initialized", extra={"result": repr(result)})
        return result

    def sync(self) -> None:
        """Refresh every source head and tag from the source remote."""

        self.source.set_remote_url(DEFAULT_REMOTE, self.config.require_source())
        self.source.fetch_mirror(DEFAULT_REMOTE)
        logger.info("source refs synchronized")

    def transform(
        self,
        *,
        run_id: str,
        hook: TransformHook | None = None,
    ) -> TransformReport:
        """Run the ref pipeline while holding the checkpoint store lock."""

        store = self.store
        with store.locked():
            pipeline = MirrorPipeline.build(
                self.config,
                source=self.source,
                destination=self.destination,
                store=store,
                hook=hook,
            )
            return pipeline.transform(run_id=run_id)

    def push(self) -> bool:
        """Force-push destination heads and tags. Returns ``False`` if there were none."""

        destination_url = self.config.require_destination()
        self.destination.set_remote_url(DEFAULT_REMOTE, destination_url)
        pushed = self.destination.push_mirror(DEFAULT_REMOTE)
        if pushed:
            logger.info("destination refs pushed", extra={"url": destination_url})
        else:
            logger.info("destination has no refs; nothing to push")
        return pushed

    def _seed_overlay(self) -> str | None:
        """Commit the overlay content as the first destination commit, if it has no refs."""

        if self.destination.list_refs("refs/heads/", "refs/tags/"):
            return None

        overlay_dir = self.config.overlay_dir
        assert overlay_dir is not None
        scratch_parent = self.config.scratch_dir
        with temp_directory(prefix="repo-mirror-seed-", parent=scratch_parent) as workspace:
            tree_root = workspace / "tree"
            tree_root.mkdir()
            index_file = workspace / "seed.index"
            overlay_copy(overlay_dir, tree_root)
            self.destination.read_tree(None, index_file=index_file)
            self.destination.add_all(tree_root, index_file=index_file)
            tree = self.destination.write_tree(index_file=index_file)
            commit = self.destination.commit_tree(
                tree,
                parents=(),
                message=SEED_COMMIT_MESSAGE.encode("utf-8"),
                identity=self.config.identity,
            )
        self.destination.update_ref(f"refs/heads/{DEFAULT_BRANCH}", commit)
        logger.info("destination seeded with overlay content", extra={"destination": commit})
        return commit


__all__ = ["InitResult", "MirrorWorkspace"]
