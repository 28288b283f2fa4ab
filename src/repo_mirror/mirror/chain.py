"""First-parent chain resolution against the checkpoint store."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

from repo_mirror.constants import EMPTY, ROOT_KEY
from repo_mirror.domain.models import Chain

if TYPE_CHECKING:
    from repo_mirror.mirror.checkpoints import CheckpointStore


class HistoryGraph(Protocol):
    """Read-only first-parent view of a commit graph."""

    def first_parent(self, commit: str) -> str | None: ...

    def first_parent_lineage(self, tip: str) -> tuple[str, ...]: ...


def resolve_chain(tip: str, store: CheckpointStore, graph: HistoryGraph) -> Chain:
    """Walk first parents back from ``tip`` to the nearest checkpointed commit.

    Returns the unresolved commits oldest first. The baseline is the stored value of
    the commit the walk stopped at, or the ``ROOT`` value when it ran off the graph
    root. Merge parents other than the first are never visited.
    """

    pending: list[str] = []
    current: str | None = tip
    baseline: str | None = None
    while current is not None:
        recorded = store.get(current)
        if recorded is not None:
            baseline = recorded
            break
        pending.append(current)
        current = graph.first_parent(current)

    if baseline is None:
        baseline = _root_baseline(store)

    pending.reverse()
    return Chain(commits=tuple(pending), baseline=baseline)


def resolve_chain_forward(tip: str, store: CheckpointStore, graph: HistoryGraph) -> Chain:
    """Single forward pass over the precomputed oldest-first lineage of ``tip``.

    Produces the same ``Chain`` as ``resolve_chain`` for the same store state.
    """

    lineage = graph.first_parent_lineage(tip)
    if not lineage or lineage[-1] != tip:
        raise ValueError(f"lineage of {tip} must end at the tip")

    start = 0
    baseline = _root_baseline(store)
    for index, commit in enumerate(lineage):
        recorded = store.get(commit)
        if recorded is not None:
            start = index + 1
            baseline = recorded
    return Chain(commits=tuple(lineage[start:]), baseline=baseline)


def _root_baseline(store: CheckpointStore) -> str:
    return store.get(ROOT_KEY) or EMPTY


__all__ = ["HistoryGraph", "resolve_chain", "resolve_chain_forward"]
