"""Deterministic git plumbing for the mirror pipeline.

Every operation runs against an explicit repository handle. Failures are raised as
``GitCommandError`` and are fatal for the run.
"""

from __future__ import annotations

import os
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

_FS_ENCODING = "utf-8"
_FS_ERRORS = "surrogateescape"
_GITLINK_MODE = "160000"
_ENCODING_HEADER = b"encoding "

# Inherited variables that would redirect git away from the explicit repository handle.
_AMBIENT_GIT_VARIABLES = (
    "GIT_DIR",
    "GIT_WORK_TREE",
    "GIT_INDEX_FILE",
    "GIT_OBJECT_DIRECTORY",
    "GIT_ALTERNATE_OBJECT_DIRECTORIES",
    "GIT_NAMESPACE",
)

_MIRROR_REFSPECS = ("+refs/heads/*:refs/heads/*", "+refs/tags/*:refs/tags/*")


class BackendFailure(RuntimeError):
    """Fatal failure of the version-control backend or of persisted mirror state."""


class GitEngineError(BackendFailure):
    """Base error for git engine failures."""


class GitCommandError(GitEngineError):
    """Raised when a git subprocess command exits non-zero."""

    def __init__(
        self,
        *,
        command: Sequence[str],
        returncode: int,
        stdout: str,
        stderr: str,
    ) -> None:
        self.command = tuple(command)
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr
        message = f"git command failed ({returncode}): {' '.join(command)}"
        if stderr.strip():
            message = f"{message}: {stderr.strip()}"
        super().__init__(message)


@dataclass(frozen=True, slots=True)
class CommandResult:
    """Normalized subprocess result for deterministic git wrapper behavior."""

    command: tuple[str, ...]
    cwd: str
    returncode: int
    stdout: str
    stderr: str
    raw_stdout: bytes = b""


@dataclass(frozen=True, slots=True)
class RefEntry:
    """A ref and the commit it ultimately names (``None`` for non-commit targets)."""

    name: str
    object_id: str
    object_type: str
    commit: str | None


@dataclass(frozen=True, slots=True)
class IndexEntry:
    """One staged path as reported by ``git ls-files --stage``."""

    mode: str
    object_id: str
    path: str

    @property
    def is_gitlink(self) -> bool:
        return self.mode == _GITLINK_MODE


@dataclass(frozen=True, slots=True)
class CommitIdentity:
    """Author/committer identity stamped on produced commits."""

    name: str
    email: str


class GitEngine:
    """Deterministic wrapper around the git CLI bound to one repository."""

    def __init__(
        self,
        repo_path: Path | str,
        *,
        env_overrides: Mapping[str, str] | None = None,
    ) -> None:
        self.repo_path = Path(repo_path).expanduser().resolve()
        self._env_overrides = dict(env_overrides or {})
        self._git_dir: Path | None = None

    def __repr__(self) -> str:
        return f"GitEngine({self.repo_path.as_posix()!r})"

    # ------------------------------------------------------------------
    # Repository lifecycle
    # ------------------------------------------------------------------

    def exists(self) -> bool:
        """Return ``True`` when ``repo_path`` holds a git repository."""

        if not self.repo_path.is_dir():
            return False
        probe = self._run_git(["rev-parse", "--git-dir"], check=False)
        return probe.returncode == 0

    def init_bare(self, *, initial_branch: str) -> None:
        """Create an empty bare repository at ``repo_path``."""

        self.repo_path.mkdir(parents=True, exist_ok=True)
        self._run_git(["init", "--bare", "--initial-branch", initial_branch])
        self._git_dir = None

    def clone(self, url: str, *, mirror: bool = False) -> None:
        """Clone ``url`` into ``repo_path`` as a bare (or mirror) repository."""

        parent = self.repo_path.parent
        parent.mkdir(parents=True, exist_ok=True)
        mode = "--mirror" if mirror else "--bare"
        self._run_git(["clone", mode, "--", url, str(self.repo_path)], cwd=parent)
        self._git_dir = None

    @property
    def git_dir(self) -> Path:
        """Absolute path of the repository's git directory."""

        if self._git_dir is None:
            raw = self._run_git(["rev-parse", "--absolute-git-dir"]).stdout.strip()
            self._git_dir = Path(raw)
        return self._git_dir

    def set_remote_url(self, name: str, url: str) -> None:
        """Point remote ``name`` at ``url``, creating it when missing."""

        existing = self._run_git(["remote", "get-url", name], check=False)
        if existing.returncode == 0:
            if existing.stdout.strip() != url:
                self._run_git(["remote", "set-url", name, url])
            return
        self._run_git(["remote", "add", name, url])

    def fetch_mirror(self, remote: str) -> None:
        """Fetch all heads and tags, force-overwriting and pruning local refs."""

        self._run_git(["fetch", "--prune", "--force", "--tags", remote, *_MIRROR_REFSPECS])

    def push_mirror(self, remote: str) -> bool:
        """Force-push all heads and tags. Returns ``False`` when there is nothing to push."""

        if not self.list_refs("refs/heads/", "refs/tags/"):
            return False
        self._run_git(["push", "--force", remote, *_MIRROR_REFSPECS])
        return True

    # ------------------------------------------------------------------
    # History queries
    # ------------------------------------------------------------------

    def resolve_commit(self, rev: str) -> str | None:
        """Return the commit named by ``rev`` or ``None`` when it does not exist."""

        result = self._run_git(
            ["rev-parse", "--verify", "--quiet", f"{rev}^{{commit}}"],
            check=False,
        )
        if result.returncode != 0:
            return None
        return result.stdout.strip() or None

    def read_ref(self, ref: str) -> str | None:
        """Return the object a fully qualified ref points at, or ``None``."""

        result = self._run_git(["rev-parse", "--verify", "--quiet", ref], check=False)
        if result.returncode != 0:
            return None
        return result.stdout.strip() or None

    def first_parent(self, commit: str) -> str | None:
        """Return the first parent of ``commit`` or ``None`` for a root commit."""

        output = self._run_git(["rev-list", "--parents", "-n", "1", commit, "--"]).stdout
        tokens = output.split()
        if not tokens:
            raise GitEngineError(f"Unknown commit: {commit}")
        return tokens[1] if len(tokens) > 1 else None

    def first_parent_lineage(self, tip: str) -> tuple[str, ...]:
        """Return the first-parent ancestry of ``tip``, oldest first, tip last."""

        output = self._run_git(["rev-list", "--first-parent", "--reverse", tip, "--"]).stdout
        return tuple(line.strip() for line in output.splitlines() if line.strip())

    def commit_message(self, commit: str) -> bytes:
        """Return the raw message bytes of ``commit`` exactly as stored."""

        raw = self._run_git(["cat-file", "commit", commit]).raw_stdout
        _headers, separator, message = raw.partition(b"\n\n")
        if not separator:
            return b""
        return message

    def commit_encoding(self, commit: str) -> str | None:
        """Return the ``encoding`` header of ``commit``, or ``None`` when it has none."""

        raw = self._run_git(["cat-file", "commit", commit]).raw_stdout
        headers, _separator, _message = raw.partition(b"\n\n")
        for line in headers.split(b"\n"):
            if line.startswith(_ENCODING_HEADER):
                value = line[len(_ENCODING_HEADER) :].decode("ascii", errors="replace")
                return value.strip() or None
        return None

    def commit_dates(self, commit: str) -> tuple[str, str]:
        """Return ``(author_date, committer_date)`` in git's ``@<epoch> <tz>`` form."""

        output = self._run_git(
            ["log", "-1", "--format=%ad%x00%cd", "--date=raw", commit, "--"]
        ).stdout.strip()
        author, _, committer = output.partition("\x00")
        if not author or not committer:
            raise GitEngineError(f"Unable to read dates of commit {commit}")
        return f"@{author.strip()}", f"@{committer.strip()}"

    def list_refs(self, *prefixes: str) -> tuple[RefEntry, ...]:
        """List refs under ``prefixes`` sorted by name, peeling annotated tags."""

        patterns = [prefix.rstrip("/") for prefix in prefixes]
        output = self._run_git(
            [
                "for-each-ref",
                "--format=%(refname)%00%(objectname)%00%(objecttype)%00%(*objectname)%00%(*objecttype)",
                *patterns,
            ]
        ).stdout

        entries: list[RefEntry] = []
        for line in output.splitlines():
            if not line.strip():
                continue
            name, object_id, object_type, peeled_id, peeled_type = line.split("\x00")
            commit: str | None = None
            if object_type == "commit":
                commit = object_id
            elif object_type == "tag" and peeled_type == "commit":
                commit = peeled_id
            elif object_type == "tag" and peeled_id:
                # Nested tags: let git peel all the way down.
                commit = self.resolve_commit(object_id)
            entries.append(
                RefEntry(name=name, object_id=object_id, object_type=object_type, commit=commit)
            )
        return tuple(sorted(entries, key=lambda entry: entry.name))

    def update_ref(self, ref: str, new_value: str) -> None:
        """Point ``ref`` at ``new_value``."""

        self._run_git(["update-ref", ref, new_value])

    # ------------------------------------------------------------------
    # Private-index plumbing
    # ------------------------------------------------------------------

    def read_tree(self, treeish: str | None, *, index_file: Path) -> None:
        """Reset ``index_file`` to ``treeish`` (the empty tree when ``None``)."""

        args = ["read-tree", "--empty"] if treeish is None else ["read-tree", treeish]
        self._run_git(args, extra_env=_index_env(index_file))

    def list_index(
        self,
        *,
        index_file: Path,
        pathspec: Sequence[str] = (),
    ) -> tuple[IndexEntry, ...] | None:
        """Return index entries matching ``pathspec``.

        Returns ``None`` when any pathspec element matches nothing, mirroring the
        behavior of ``git checkout <commit> -- <pathspec>``.
        """

        env = _index_env(index_file)
        for element in pathspec:
            matched = self._run_git(["ls-files", "-z", "--stage", "--", element], extra_env=env)
            if not matched.raw_stdout:
                return None

        args = ["ls-files", "-z", "--stage"]
        if pathspec:
            args.extend(["--", *pathspec])
        return _parse_stage_output(self._run_git(args, extra_env=env).raw_stdout)

    def checkout_index(
        self,
        paths: Sequence[str],
        *,
        index_file: Path,
        worktree: Path,
    ) -> None:
        """Write ``paths`` from ``index_file`` into the directory ``worktree``."""

        if not paths:
            return
        payload = b"\x00".join(os.fsencode(path) for path in paths) + b"\x00"
        work_tree = worktree.resolve()
        self._run_git(
            [
                "--git-dir",
                str(self.git_dir),
                "--work-tree",
                str(work_tree),
                "checkout-index",
                "--force",
                "-z",
                "--stdin",
            ],
            cwd=work_tree,
            input_data=payload,
            extra_env=_index_env(index_file),
        )

    def add_all(self, worktree: Path, *, index_file: Path) -> None:
        """Stage every file of ``worktree`` into ``index_file``, ignoring ``.gitignore``."""

        work_tree = worktree.resolve()
        self._run_git(
            [
                "--git-dir",
                str(self.git_dir),
                "--work-tree",
                str(work_tree),
                "add",
                "--all",
                "--force",
                "--",
                ".",
            ],
            cwd=work_tree,
            extra_env=_index_env(index_file),
        )

    def write_tree(self, *, index_file: Path) -> str:
        """Write ``index_file`` as a tree object and return its id."""

        return self._run_git(["write-tree"], extra_env=_index_env(index_file)).stdout.strip()

    def commit_tree(
        self,
        tree: str,
        *,
        parents: Sequence[str],
        message: bytes,
        identity: CommitIdentity,
        author_date: str | None = None,
        committer_date: str | None = None,
        encoding: str | None = None,
    ) -> str:
        """Create a commit object for ``tree`` with a verbatim ``message``.

        ``encoding`` is recorded as the commit's ``encoding`` header when given.
        """

        args = ["commit-tree", "--no-gpg-sign", tree]
        if encoding is not None:
            args = ["-c", f"i18n.commitEncoding={encoding}", *args]
        for parent in parents:
            args.extend(["-p", parent])

        env = {
            "GIT_AUTHOR_NAME": identity.name,
            "GIT_AUTHOR_EMAIL": identity.email,
            "GIT_COMMITTER_NAME": identity.name,
            "GIT_COMMITTER_EMAIL": identity.email,
        }
        if author_date is not None:
            env["GIT_AUTHOR_DATE"] = author_date
        if committer_date is not None:
            env["GIT_COMMITTER_DATE"] = committer_date

        result = self._run_git(args, input_data=message, extra_env=env)
        return result.stdout.strip()

    # ------------------------------------------------------------------
    # Subprocess plumbing
    # ------------------------------------------------------------------

    def _run_git(
        self,
        args: Sequence[str],
        *,
        cwd: Path | None = None,
        check: bool = True,
        input_data: bytes | None = None,
        extra_env: Mapping[str, str] | None = None,
    ) -> CommandResult:
        command = ("git", *args)
        run_cwd = (cwd if cwd is not None else self.repo_path).resolve()
        env = os.environ.copy()
        for name in _AMBIENT_GIT_VARIABLES:
            env.pop(name, None)
        env["GIT_TERMINAL_PROMPT"] = "0"
        env["LC_ALL"] = "C"
        env["LANGUAGE"] = ""
        env.setdefault("GIT_CONFIG_NOSYSTEM", "1")
        env.update(self._env_overrides)
        if extra_env:
            env.update(extra_env)

        completed = subprocess.run(
            command,
            cwd=run_cwd,
            env=env,
            capture_output=True,
            input=input_data if input_data is not None else b"",
            check=False,
        )

        result = CommandResult(
            command=command,
            cwd=run_cwd.as_posix(),
            returncode=completed.returncode,
            stdout=completed.stdout.decode(_FS_ENCODING, errors=_FS_ERRORS),
            stderr=completed.stderr.decode(_FS_ENCODING, errors="replace"),
            raw_stdout=completed.stdout,
        )

        if check and result.returncode != 0:
            raise GitCommandError(
                command=result.command,
                returncode=result.returncode,
                stdout=result.stdout,
                stderr=result.stderr,
            )

        return result


def _index_env(index_file: Path) -> dict[str, str]:
    return {"GIT_INDEX_FILE": str(index_file.resolve())}


def _parse_stage_output(raw: bytes) -> tuple[IndexEntry, ...]:
    entries: list[IndexEntry] = []
    for record in raw.split(b"\x00"):
        if not record:
            continue
        meta, separator, raw_path = record.partition(b"\t")
        if not separator:
            continue
        fields = meta.decode("ascii").split()
        if len(fields) < 3 or fields[2] != "0":
            continue
        entries.append(
            IndexEntry(
                mode=fields[0],
                object_id=fields[1],
                path=raw_path.decode(_FS_ENCODING, errors=_FS_ERRORS),
            )
        )
    return tuple(entries)


__all__ = [
    "BackendFailure",
    "CommandResult",
    "CommitIdentity",
    "GitCommandError",
    "GitEngine",
    "GitEngineError",
    "IndexEntry",
    "RefEntry",
]
