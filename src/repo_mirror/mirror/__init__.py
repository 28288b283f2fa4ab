"""Incremental, transforming history mirror: checkpoints, chains, staging and commits."""

from repo_mirror.mirror.chain import HistoryGraph, resolve_chain, resolve_chain_forward
from repo_mirror.mirror.checkpoints import (
    CheckpointLockedError,
    CheckpointStore,
    CheckpointStoreError,
    FileCheckpointStore,
    MemoryCheckpointStore,
)
from repo_mirror.mirror.hooks import HookExecutionError, ShellCommandHook, TransformHook
from repo_mirror.mirror.pipeline import MirrorPipeline
from repo_mirror.mirror.refs import RefEnumerator, RefUpdater
from repo_mirror.mirror.stager import (
    HookRejected,
    MissingPathspec,
    SkipCommit,
    StagedTree,
    WorktreeStager,
)
from repo_mirror.mirror.workspace import InitResult, MirrorWorkspace
from repo_mirror.mirror.writer import CommitWriter

__all__ = [
    "CheckpointLockedError",
    "CheckpointStore",
    "CheckpointStoreError",
    "CommitWriter",
    "FileCheckpointStore",
    "HistoryGraph",
    "HookExecutionError",
    "HookRejected",
    "InitResult",
    "MemoryCheckpointStore",
    "MirrorPipeline",
    "MirrorWorkspace",
    "MissingPathspec",
    "RefEnumerator",
    "RefUpdater",
    "ShellCommandHook",
    "SkipCommit",
    "StagedTree",
    "TransformHook",
    "WorktreeStager",
    "resolve_chain",
    "resolve_chain_forward",
]
