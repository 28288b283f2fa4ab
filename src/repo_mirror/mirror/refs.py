"""Source ref enumeration and destination ref updates."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from repo_mirror.constants import EMPTY, MIRRORED_REF_PREFIXES
from repo_mirror.domain.models import RefAction

if TYPE_CHECKING:
    from repo_mirror.vcs.git_engine import GitEngine, RefEntry

logger = logging.getLogger(__name__)


class RefEnumerator:
    """Lists the source heads and tags to mirror, in refname order."""

    def __init__(
        self, source: GitEngine, *, prefixes: tuple[str, ...] = MIRRORED_REF_PREFIXES
    ) -> None:
        self.source = source
        self.prefixes = prefixes

    def enumerate(self) -> tuple[RefEntry, ...]:
        """Return every mirrored ref; ``commit`` is ``None`` for tags of trees or blobs."""

        refs = self.source.list_refs(*self.prefixes)
        logger.debug("source refs enumerated", extra={"count": len(refs)})
        return refs


class RefUpdater:
    """Points destination refs at the final baseline of their lineage."""

    def __init__(self, destination: GitEngine) -> None:
        self.destination = destination

    def update(self, ref: str, baseline: str) -> RefAction:
        """Move ``ref`` to ``baseline`` unless nothing was ever produced for it."""

        if baseline == EMPTY:
            logger.info(
                "lineage produced no content; destination ref left untouched",
                extra={"ref": ref},
            )
            return RefAction.SUPPRESSED

        current = self.destination.read_ref(ref)
        if current == baseline:
            return RefAction.UNCHANGED

        self.destination.update_ref(ref, baseline)
        logger.info(
            "destination ref updated",
            extra={"ref": ref, "old": current, "new": baseline},
        )
        return RefAction.UPDATED


__all__ = ["RefEnumerator", "RefUpdater"]
