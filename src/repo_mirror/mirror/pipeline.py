"""
repo-mirror — transform pipeline

File: src/repo_mirror/mirror/pipeline.py

Purpose
- Drive the per-ref replay: enumerate source refs, resolve each chain, stage and
  write every chain element, then update the destination ref.

Functional requirements
- Refs are processed one at a time in refname order so later refs reuse the
  checkpoints written for earlier ones.
- Only ``MissingPathspec`` and ``HookRejected`` are downgraded to a quarantine;
  every other exception propagates and aborts the run.
- A recorded outcome is never recomputed: a chain stops at the first checkpointed
  ancestor, so re-running without new source commits does no work.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import TYPE_CHECKING

from repo_mirror.constants import EMPTY
from repo_mirror.domain.models import (
    CommitOutcome,
    CommitRecord,
    RefAction,
    RefReport,
    TransformReport,
)
from repo_mirror.mirror.chain import HistoryGraph, resolve_chain
from repo_mirror.mirror.hooks import ShellCommandHook
from repo_mirror.mirror.refs import RefEnumerator, RefUpdater
from repo_mirror.mirror.stager import SkipCommit, WorktreeStager
from repo_mirror.mirror.writer import CommitWriter
from repo_mirror.observability.logging import correlation_scope

if TYPE_CHECKING:
    from repo_mirror.config.settings import MirrorConfig
    from repo_mirror.domain.models import Chain
    from repo_mirror.mirror.checkpoints import CheckpointStore
    from repo_mirror.mirror.hooks import TransformHook
    from repo_mirror.vcs.git_engine import GitEngine, RefEntry

logger = logging.getLogger(__name__)

ChainResolverFn = Callable[[str, "CheckpointStore", HistoryGraph], "Chain"]


class MirrorPipeline:
    """Replays source history into the destination, one ref at a time."""

    def __init__(
        self,
        *,
        source: GitEngine,
        store: CheckpointStore,
        stager: WorktreeStager,
        writer: CommitWriter,
        enumerator: RefEnumerator,
        updater: RefUpdater,
        resolver: ChainResolverFn = resolve_chain,
    ) -> None:
        self.source = source
        self.store = store
        self.stager = stager
        self.writer = writer
        self.enumerator = enumerator
        self.updater = updater
        self.resolver = resolver

    @classmethod
    def build(
        cls,
        config: MirrorConfig,
        *,
        source: GitEngine,
        destination: GitEngine,
        store: CheckpointStore,
        hook: TransformHook | None = None,
        resolver: ChainResolverFn = resolve_chain,
    ) -> MirrorPipeline:
        """Wire a pipeline from settings; ``hook`` overrides ``hook_command``."""

        if hook is None and config.hook_command:
            hook = ShellCommandHook(config.hook_command, environ=config.hook_environment)
        stager = WorktreeStager(
            source,
            pathspec=config.pathspec,
            overlay_dir=config.overlay_dir,
            hook=hook,
            scratch_parent=config.scratch_dir,
        )
        writer = CommitWriter(destination, store, identity=config.identity)
        return cls(
            source=source,
            store=store,
            stager=stager,
            writer=writer,
            enumerator=RefEnumerator(source),
            updater=RefUpdater(destination),
            resolver=resolver,
        )

    def transform(self, *, run_id: str) -> TransformReport:
        """Process every source head and tag."""

        reports: list[RefReport] = []
        for entry in self.enumerator.enumerate():
            with correlation_scope(ref=entry.name):
                reports.append(self.process_ref(entry))

        report = TransformReport(run_id=run_id, refs=tuple(reports))
        logger.info(
            "transform finished",
            extra={
                "refs": len(report.refs),
                "materialized": report.materialized,
                "skipped": report.skipped,
                "updated_refs": len(report.updated_refs),
            },
        )
        return report

    def process_ref(self, entry: RefEntry) -> RefReport:
        if entry.commit is None:
            logger.info(
                "ignoring ref that does not point at a commit",
                extra={"object_type": entry.object_type},
            )
            return RefReport(
                ref=entry.name, source_tip=None, baseline=EMPTY, action=RefAction.IGNORED
            )

        chain = self.resolver(entry.commit, self.store, self.source)
        if not chain.is_resolved:
            logger.info(
                "replaying chain",
                extra={"commits": len(chain.commits), "baseline": chain.baseline},
            )
        baseline, records = self.replay(chain)
        action = self.updater.update(entry.name, baseline)
        return RefReport(
            ref=entry.name,
            source_tip=entry.commit,
            baseline=baseline,
            action=action,
            records=records,
        )

    def replay(self, chain: Chain) -> tuple[str, tuple[CommitRecord, ...]]:
        """Stage and write each chain element in order; returns the final baseline."""

        baseline = chain.baseline
        records: list[CommitRecord] = []
        for commit in chain.commits:
            with correlation_scope(commit=commit):
                record = self._replay_commit(commit, baseline)
            baseline = record.destination_commit
            records.append(record)
        return baseline, tuple(records)

    def _replay_commit(self, commit: str, baseline: str) -> CommitRecord:
        try:
            with self.stager.stage(commit) as staged:
                produced = self.writer.write(
                    staged,
                    baseline,
                    message=self.source.commit_message(commit),
                    dates=self.source.commit_dates(commit),
                    encoding=self.source.commit_encoding(commit),
                )
        except SkipCommit as skip:
            self.writer.quarantine(commit, baseline)
            logger.warning(
                "commit quarantined",
                extra={"reason": skip.reason.value, "detail": skip.detail},
            )
            return CommitRecord(
                source_commit=commit,
                outcome=CommitOutcome.SKIPPED,
                destination_commit=baseline,
                reason=skip.reason,
            )

        return CommitRecord(
            source_commit=commit,
            outcome=CommitOutcome.MATERIALIZED,
            destination_commit=produced,
        )


__all__ = ["ChainResolverFn", "MirrorPipeline"]
