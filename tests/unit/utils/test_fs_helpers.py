"""Filesystem helpers: atomic writes, scratch directories, overlay and pruning."""

from __future__ import annotations

import os
from typing import TYPE_CHECKING

import pytest

from repo_mirror.utils.fs import (
    atomic_write,
    overlay_copy,
    prune_untracked,
    relative_files,
    temp_directory,
)

if TYPE_CHECKING:
    from pathlib import Path


def test_atomic_write_replaces_content_without_leftovers(tmp_path: Path) -> None:
    store = tmp_path / "store"
    store.mkdir()
    target = store / "marker"
    atomic_write(target, "first\n")
    atomic_write(target, b"second\n")

    assert target.read_bytes() == b"second\n"
    assert sorted(os.listdir(store)) == ["marker"]


def test_atomic_write_requires_existing_parent(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        atomic_write(tmp_path / "missing" / "marker", "x")


def test_temp_directory_is_removed_on_error(tmp_path: Path) -> None:
    parent = tmp_path / "scratch"
    created: list[Path] = []

    with pytest.raises(RuntimeError), temp_directory(prefix="t-", parent=parent) as path:
        created.append(path)
        (path / "file").write_text("x")
        raise RuntimeError("boom")

    assert created and created[0].parent == parent
    assert not created[0].exists()
    assert os.listdir(parent) == []


def test_relative_files_lists_files_and_symlinked_dirs(tmp_path: Path) -> None:
    (tmp_path / "a" / "b").mkdir(parents=True)
    (tmp_path / "a" / "b" / "c.txt").write_text("c")
    (tmp_path / "top.txt").write_text("t")
    os.symlink("a", tmp_path / "alias")

    assert relative_files(tmp_path) == ("a/b/c.txt", "alias", "top.txt")


def test_prune_untracked_removes_files_and_empty_dirs(tmp_path: Path) -> None:
    (tmp_path / "keep").mkdir()
    (tmp_path / "drop" / "deep").mkdir(parents=True)
    (tmp_path / "keep" / "k.txt").write_text("k")
    (tmp_path / "drop" / "deep" / "d.txt").write_text("d")
    (tmp_path / "stray.txt").write_text("s")

    removed = prune_untracked(tmp_path, ["keep/k.txt"])

    assert removed == ("drop/deep/d.txt", "stray.txt")
    assert relative_files(tmp_path) == ("keep/k.txt",)
    assert not (tmp_path / "drop").exists()


def test_overlay_copy_overwrites_and_reshapes_paths(tmp_path: Path) -> None:
    overlay = tmp_path / "overlay"
    target = tmp_path / "target"
    (overlay / "dir").mkdir(parents=True)
    (overlay / "dir" / "nested.txt").write_text("overlay nested")
    (overlay / "file").write_text("overlay file")
    (overlay / "plain.txt").write_text("overlay plain")
    (target / "file").mkdir(parents=True)
    (target / "file" / "inner.txt").write_text("source inner")
    (target / "dir").write_text("source file where overlay has a dir")
    (target / "plain.txt").write_text("source plain")
    (target / "untouched.txt").write_text("source")

    copied = overlay_copy(overlay, target)

    assert copied == ("dir/nested.txt", "file", "plain.txt")
    assert relative_files(target) == ("dir/nested.txt", "file", "plain.txt", "untouched.txt")
    assert (target / "file").read_text() == "overlay file"
    assert (target / "plain.txt").read_text() == "overlay plain"
    assert (target / "untouched.txt").read_text() == "source"


def test_overlay_copy_rejects_missing_source(tmp_path: Path) -> None:
    with pytest.raises(NotADirectoryError):
        overlay_copy(tmp_path / "nope", tmp_path)
