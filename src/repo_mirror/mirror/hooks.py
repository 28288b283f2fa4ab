"""Transform hooks invoked once per staged commit."""

from __future__ import annotations

import logging
import subprocess
from typing import TYPE_CHECKING, Protocol

from repo_mirror.vcs.git_engine import BackendFailure

if TYPE_CHECKING:
    from collections.abc import Mapping

    from repo_mirror.mirror.stager import StagedTree

logger = logging.getLogger(__name__)

_SHELL = "/bin/sh"


class HookExecutionError(BackendFailure):
    """Raised when a hook cannot be started at all (as opposed to rejecting a commit)."""


class TransformHook(Protocol):
    """Mutate a staged tree in place; return ``False`` to reject the commit."""

    def __call__(self, tree: StagedTree) -> bool: ...


class ShellCommandHook:
    """Run a shell command inside the staged tree; a non-zero exit rejects the commit.

    The command sees ``MIRROR_SOURCE_COMMIT`` and ``MIRROR_STAGED_TREE`` in its
    environment on top of ``environ`` and runs with the staged tree as its working
    directory.
    """

    def __init__(self, command: str, *, environ: Mapping[str, str]) -> None:
        if not command.strip():
            raise ValueError("hook command must not be empty")
        self.command = command
        self._environ = dict(environ)

    def __repr__(self) -> str:
        return f"ShellCommandHook({self.command!r})"

    def __call__(self, tree: StagedTree) -> bool:
        env = dict(self._environ)
        env["MIRROR_SOURCE_COMMIT"] = tree.source_commit
        env["MIRROR_STAGED_TREE"] = str(tree.root)
        try:
            completed = subprocess.run(
                [_SHELL, "-c", self.command],
                cwd=tree.root,
                env=env,
                capture_output=True,
                text=True,
                errors="replace",
                check=False,
            )
        except OSError as exc:
            raise HookExecutionError(f"unable to run hook {self.command!r}: {exc}") from exc

        if completed.returncode != 0:
            logger.info(
                "hook exited non-zero",
                extra={
                    "returncode": completed.returncode,
                    "stderr": completed.stderr.strip()[-2000:],
                },
            )
            return False
        if completed.stdout.strip():
            logger.debug("hook output", extra={"stdout": completed.stdout.strip()[-2000:]})
        return True


__all__ = ["HookExecutionError", "ShellCommandHook", "TransformHook"]
