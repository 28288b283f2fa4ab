"""Shared fixtures: isolated git environment and throwaway working repositories."""

from __future__ import annotations

import os
import subprocess
from collections.abc import Callable, Mapping
from pathlib import Path
from typing import Any

import pytest

from repo_mirror.config import MirrorConfig, default_config, merge_config


def run_git(
    cwd: Path,
    *args: str,
    check: bool = True,
    input_data: bytes | None = None,
    env: Mapping[str, str] | None = None,
) -> subprocess.CompletedProcess[bytes]:
    merged_env = os.environ.copy()
    merged_env["GIT_TERMINAL_PROMPT"] = "0"
    merged_env.setdefault("GIT_CONFIG_NOSYSTEM", "1")
    if env:
        merged_env.update(env)
    completed = subprocess.run(
        ["git", *args],
        cwd=cwd,
        env=merged_env,
        input=input_data,
        capture_output=True,
        check=False,
    )
    if check and completed.returncode != 0:
        msg = (
            f"git command failed: git {' '.join(args)}\n"
            f"stdout:\n{completed.stdout.decode(errors='replace')}\n"
            f"stderr:\n{completed.stderr.decode(errors='replace')}"
        )
        raise AssertionError(msg)
    return completed


def git_text(cwd: Path, *args: str) -> str:
    return run_git(cwd, *args).stdout.decode("utf-8").strip()


class WorkRepo:
    """Non-bare repository used to author source history in tests."""

    def __init__(self, path: Path) -> None:
        self.path = path
        self._clock = 1_700_000_000
        path.mkdir(parents=True, exist_ok=True)
        run_git(path, "init", "--initial-branch", "main")
        run_git(path, "config", "user.name", "Source Author")
        run_git(path, "config", "user.email", "author@example.com")
        run_git(path, "config", "commit.gpgsign", "false")

    @property
    def url(self) -> str:
        return str(self.path)

    def commit(
        self,
        message: str | bytes,
        files: Mapping[str, str | bytes] | None = None,
        *,
        remove: tuple[str, ...] = (),
    ) -> str:
        for rel_path, content in (files or {}).items():
            target = self.path / rel_path
            target.parent.mkdir(parents=True, exist_ok=True)
            if isinstance(content, bytes):
                target.write_bytes(content)
            else:
                target.write_text(content, encoding="utf-8")
        for rel_path in remove:
            run_git(self.path, "rm", "-r", "-q", "--", rel_path)
        run_git(self.path, "add", "--all")

        raw = message if isinstance(message, bytes) else message.encode("utf-8")
        self._clock += 60
        stamp = f"@{self._clock} +0000"
        run_git(
            self.path,
            "commit",
            "--allow-empty",
            "--allow-empty-message",
            "--cleanup=verbatim",
            "-q",
            "-F",
            "-",
            input_data=raw,
            env={"GIT_AUTHOR_DATE": stamp, "GIT_COMMITTER_DATE": stamp},
        )
        return self.head()

    def head(self) -> str:
        return git_text(self.path, "rev-parse", "HEAD")

    def checkout(self, branch: str, *, create: bool = False) -> None:
        if create:
            run_git(self.path, "checkout", "-q", "-b", branch)
        else:
            run_git(self.path, "checkout", "-q", branch)

    def merge(self, branch: str, message: str) -> str:
        self._clock += 60
        stamp = f"@{self._clock} +0000"
        run_git(
            self.path,
            "merge",
            "--no-ff",
            "-q",
            "-m",
            message,
            branch,
            env={"GIT_AUTHOR_DATE": stamp, "GIT_COMMITTER_DATE": stamp},
        )
        return self.head()

    def tag(self, name: str, *, message: str | None = None, target: str = "HEAD") -> None:
        if message is None:
            run_git(self.path, "tag", name, target)
        else:
            run_git(self.path, "tag", "-a", name, "-m", message, target)


@pytest.fixture(autouse=True)
def isolated_git_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    home = tmp_path / "home"
    xdg = tmp_path / "xdg"
    home.mkdir()
    xdg.mkdir()

    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setenv("XDG_CONFIG_HOME", str(xdg))
    monkeypatch.setenv("GIT_CONFIG_NOSYSTEM", "1")
    monkeypatch.setenv("GIT_TERMINAL_PROMPT", "0")
    for name in list(os.environ):
        if name.startswith("REPO_MIRROR_"):
            monkeypatch.delenv(name)


@pytest.fixture
def source_repo(tmp_path: Path) -> WorkRepo:
    return WorkRepo(tmp_path / "upstream")


@pytest.fixture
def make_repo(tmp_path: Path) -> Callable[[str], WorkRepo]:
    def _make(name: str) -> WorkRepo:
        return WorkRepo(tmp_path / name)

    return _make


@pytest.fixture
def mirror_config(tmp_path: Path, source_repo: WorkRepo) -> Callable[..., MirrorConfig]:
    """Build a ``MirrorConfig`` rooted in ``tmp_path``; keyword sections override defaults."""

    def _build(**sections: Mapping[str, Any]) -> MirrorConfig:
        base: dict[str, Any] = merge_config(
            default_config(),
            {
                "source": {"url": source_repo.url},
                "paths": {
                    "source_clone": str(tmp_path / "work" / "source.git"),
                    "destination_clone": str(tmp_path / "work" / "destination.git"),
                    "scratch_dir": str(tmp_path / "scratch"),
                },
                "observability": {
                    "log_dir": str(tmp_path / "logs"),
                    "log_to_stderr": False,
                },
            },
        )
        return MirrorConfig.from_mapping(merge_config(base, sections), hook_environment=os.environ)

    return _build


@pytest.fixture
def git() -> Callable[..., subprocess.CompletedProcess[bytes]]:
    return run_git


@pytest.fixture
def git_out() -> Callable[..., str]:
    return git_text


@pytest.fixture
def work_repo_type() -> type[WorkRepo]:
    return WorkRepo
