"""End-to-end pipeline behavior over real source and destination repositories."""

from __future__ import annotations

import socket
import subprocess
import sys
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from repo_mirror.config import MirrorConfig
from repo_mirror.constants import EMPTY
from repo_mirror.domain.models import CommitOutcome, RefAction, SkipReason
from repo_mirror.mirror.chain import resolve_chain_forward
from repo_mirror.mirror.checkpoints import CheckpointLockedError
from repo_mirror.mirror.pipeline import MirrorPipeline
from repo_mirror.mirror.stager import StagedTree
from repo_mirror.mirror.workspace import MirrorWorkspace
from repo_mirror.vcs import GitEngineError

BuildConfig = Callable[..., MirrorConfig]


def ready_workspace(config: MirrorConfig) -> MirrorWorkspace:
    workspace = MirrorWorkspace(config)
    workspace.init()
    return workspace


def dest_refs(workspace: MirrorWorkspace) -> dict[str, str]:
    return {
        entry.name: entry.object_id
        for entry in workspace.destination.list_refs("refs/heads/", "refs/tags/")
    }


def parents(git_out: Any, repo: Path, commit: str) -> list[str]:
    return git_out(repo, "rev-list", "--parents", "-n", "1", commit).split()[1:]


def files_at(git_out: Any, repo: Path, commit: str) -> dict[str, str]:
    names = git_out(repo, "ls-tree", "-r", "--name-only", commit).splitlines()
    return {name: git_out(repo, "show", f"{commit}:{name}") for name in names}


def test_docs_scenario_quarantines_commit_without_pathspec(
    source_repo: Any, mirror_config: BuildConfig, tmp_path: Path, git_out: Any
) -> None:
    overlay = tmp_path / "overlay"
    overlay.mkdir()
    (overlay / "NOTICE").write_text("mirrored\n")
    c1 = source_repo.commit("C1\n", {"docs/index.md": "v1", "src/main.c": "int main;"})
    c2 = source_repo.commit("C2 drops docs\n", remove=("docs",))
    c3 = source_repo.commit("C3\n", {"docs/index.md": "v3", "docs/NOTICE": "src"})

    config = mirror_config(transform={"pathspec": ["docs"], "overlay_dir": str(overlay)})
    workspace = ready_workspace(config)
    report = workspace.transform(run_id="run-1")

    store = workspace.store
    d1 = store.get(c1)
    d2 = store.get(c3)
    assert d1 is not None and d1 != EMPTY
    assert store.get(c2) == d1
    assert d2 is not None and d2 != d1

    repo = workspace.destination.repo_path
    assert parents(git_out, repo, d2) == [d1]
    assert parents(git_out, repo, d1) == []
    assert files_at(git_out, repo, d1) == {"NOTICE": "mirrored", "docs/index.md": "v1"}
    assert files_at(git_out, repo, d2) == {
        "NOTICE": "mirrored",
        "docs/NOTICE": "src",
        "docs/index.md": "v3",
    }
    assert dest_refs(workspace)["refs/heads/main"] == d2

    (main_report,) = report.refs
    assert [record.outcome for record in main_report.records] == [
        CommitOutcome.MATERIALIZED,
        CommitOutcome.SKIPPED,
        CommitOutcome.MATERIALIZED,
    ]
    assert main_report.records[1].reason is SkipReason.MISSING_PATHSPEC
    assert main_report.action is RefAction.UPDATED


def test_second_run_without_new_commits_is_a_no_op(
    source_repo: Any, mirror_config: BuildConfig
) -> None:
    source_repo.commit("one", {"a.txt": "1"})
    source_repo.commit("two", {"a.txt": "2"})
    source_repo.checkout("feature", create=True)
    source_repo.commit("three", {"b.txt": "3"})
    source_repo.tag("v1")

    workspace = ready_workspace(mirror_config())
    workspace.transform(run_id="first")
    refs_before = dest_refs(workspace)
    keys_before = workspace.store.keys()

    report = workspace.transform(run_id="second")

    assert dest_refs(workspace) == refs_before
    assert workspace.store.keys() == keys_before
    assert report.materialized == 0 and report.skipped == 0
    assert {ref.action for ref in report.refs} == {RefAction.UNCHANGED}


def test_incremental_run_matches_from_scratch_run(
    source_repo: Any, mirror_config: BuildConfig, tmp_path: Path
) -> None:
    source_repo.commit("one", {"a.txt": "1"})
    source_repo.commit("two", {"a.txt": "2"})
    incremental = ready_workspace(mirror_config())
    incremental.transform(run_id="initial")

    source_repo.commit("three", {"a.txt": "3"})
    source_repo.checkout("topic", create=True)
    source_repo.commit("four", {"t.txt": "4"})
    incremental.sync()
    report = incremental.transform(run_id="incremental")

    # Only the two new commits were replayed.
    assert report.materialized == 2

    fresh = ready_workspace(
        mirror_config(
            paths={
                "source_clone": str(tmp_path / "fresh" / "source.git"),
                "destination_clone": str(tmp_path / "fresh" / "destination.git"),
            }
        )
    )
    fresh.transform(run_id="fresh")

    assert dest_refs(fresh) == dest_refs(incremental)


def test_hook_rejection_quarantines_only_that_commit(
    source_repo: Any, mirror_config: BuildConfig, git_out: Any
) -> None:
    c1 = source_repo.commit("one", {"a.txt": "1"})
    c2 = source_repo.commit("two [skip-mirror]", {"a.txt": "2"})
    c3 = source_repo.commit("three", {"a.txt": "3"})
    invoked: list[str] = []

    def hook(tree: StagedTree) -> bool:
        invoked.append(tree.source_commit)
        return tree.source_commit != c2

    workspace = ready_workspace(mirror_config())
    report = workspace.transform(run_id="hooked", hook=hook)

    store = workspace.store
    assert invoked == [c1, c2, c3]
    assert store.get(c2) == store.get(c1)
    d3 = store.get(c3)
    assert d3 is not None
    repo = workspace.destination.repo_path
    assert parents(git_out, repo, d3) == [store.get(c1)]
    assert git_out(repo, "rev-list", "--count", d3) == "2"
    assert report.refs[0].records[1].reason is SkipReason.HOOK_REJECTED


def test_missing_pathspec_is_quarantined_under_a_translated_locale(
    source_repo: Any, mirror_config: BuildConfig, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("LANGUAGE", "de")
    monkeypatch.setenv("LC_ALL", "de_DE.UTF-8")
    c1 = source_repo.commit("with docs", {"docs/a.md": "a"})
    c2 = source_repo.commit("without docs", remove=("docs",))

    workspace = ready_workspace(mirror_config(transform={"pathspec": ["docs"]}))
    report = workspace.transform(run_id="localized")

    (main_report,) = report.refs
    assert [record.outcome for record in main_report.records] == [
        CommitOutcome.MATERIALIZED,
        CommitOutcome.SKIPPED,
    ]
    assert main_report.records[1].reason is SkipReason.MISSING_PATHSPEC
    assert workspace.store.get(c2) == workspace.store.get(c1)


def test_hook_command_environment_is_fixed_when_config_is_built(
    source_repo: Any, mirror_config: BuildConfig, monkeypatch: pytest.MonkeyPatch
) -> None:
    source_repo.commit("one", {"a.txt": "1"})
    hook_command = 'test "$MIRROR_FLAVOR" = docs'
    monkeypatch.delenv("MIRROR_FLAVOR", raising=False)
    config = mirror_config(transform={"hook_command": hook_command})
    monkeypatch.setenv("MIRROR_FLAVOR", "docs")

    report = ready_workspace(config).transform(run_id="snapshot")

    assert report.refs[0].records[0].reason is SkipReason.HOOK_REJECTED
    assert "MIRROR_FLAVOR" not in config.hook_environment


def test_hook_command_runs_with_configured_environment(
    source_repo: Any, mirror_config: BuildConfig, monkeypatch: pytest.MonkeyPatch
) -> None:
    source_repo.commit("one", {"a.txt": "1"})
    monkeypatch.setenv("MIRROR_FLAVOR", "docs")
    config = mirror_config(transform={"hook_command": 'test "$MIRROR_FLAVOR" = docs'})
    monkeypatch.delenv("MIRROR_FLAVOR")

    report = ready_workspace(config).transform(run_id="configured")

    assert report.refs[0].records[0].outcome is CommitOutcome.MATERIALIZED


def test_lineage_that_never_produces_content_leaves_ref_absent(
    source_repo: Any, mirror_config: BuildConfig, git: Any
) -> None:
    source_repo.commit("one", {"docs/a.md": "a"})
    # An orphan branch without docs: every commit on it is quarantined.
    git(source_repo.path, "checkout", "-q", "--orphan", "nodocs")
    git(source_repo.path, "rm", "-rqf", ".")
    source_repo.commit("orphan one", {"other.txt": "1"})
    source_repo.commit("orphan two", {"other.txt": "2"})

    workspace = ready_workspace(mirror_config(transform={"pathspec": ["docs"]}))
    report = workspace.transform(run_id="suppress")

    refs = dest_refs(workspace)
    assert "refs/heads/nodocs" not in refs
    assert "refs/heads/main" in refs
    nodocs = next(ref for ref in report.refs if ref.ref == "refs/heads/nodocs")
    assert nodocs.action is RefAction.SUPPRESSED
    assert nodocs.baseline == EMPTY
    assert nodocs.skipped == 2


def test_merge_history_is_linearized_through_first_parents(
    source_repo: Any, mirror_config: BuildConfig, git: Any, git_out: Any
) -> None:
    source_repo.commit("base", {"a.txt": "0"})
    source_repo.checkout("topic", create=True)
    t1 = source_repo.commit("topic one", {"t.txt": "1"})
    t2 = source_repo.commit("topic two", {"t.txt": "2"})
    source_repo.checkout("main")
    source_repo.commit("main one", {"a.txt": "1"})
    merge = source_repo.merge("topic", "merge topic")
    git(source_repo.path, "branch", "-D", "topic")

    workspace = ready_workspace(mirror_config())
    workspace.transform(run_id="merge")

    store = workspace.store
    assert store.get(t1) is None
    assert store.get(t2) is None
    d_merge = store.get(merge)
    assert d_merge is not None
    repo = workspace.destination.repo_path
    assert git_out(repo, "rev-list", "--count", d_merge) == "3"
    assert git_out(repo, "rev-list", "--min-parents=2", "--count", d_merge) == "0"
    # The merge result carries the topic content, flattened onto one parent.
    assert files_at(git_out, repo, d_merge) == {"a.txt": "1", "t.txt": "2"}


def test_branches_share_work_for_common_ancestry(
    source_repo: Any, mirror_config: BuildConfig, git_out: Any
) -> None:
    fork = source_repo.commit("shared", {"a.txt": "shared"})
    source_repo.checkout("feature", create=True)
    feature_tip = source_repo.commit("feature", {"f.txt": "f"})
    source_repo.checkout("main")
    main_tip = source_repo.commit("main", {"m.txt": "m"})

    workspace = ready_workspace(mirror_config())
    report = workspace.transform(run_id="shared")

    store = workspace.store
    d_fork = store.get(fork)
    repo = workspace.destination.repo_path
    assert parents(git_out, repo, store.get(feature_tip)) == [d_fork]
    assert parents(git_out, repo, store.get(main_tip)) == [d_fork]
    # refs/heads/feature sorts first and materializes the fork; main reuses it.
    assert report.materialized == 3
    by_ref = {ref.ref: ref for ref in report.refs}
    assert len(by_ref["refs/heads/feature"].records) == 2
    assert len(by_ref["refs/heads/main"].records) == 1


def test_tags_are_mirrored_as_lightweight_tags(
    source_repo: Any, mirror_config: BuildConfig, git_out: Any
) -> None:
    first = source_repo.commit("one", {"a.txt": "1"})
    source_repo.tag("v1.0", message="release 1.0")
    source_repo.tag("light", target=first)
    source_repo.commit("two", {"a.txt": "2"})

    workspace = ready_workspace(mirror_config())
    workspace.transform(run_id="tags")

    refs = dest_refs(workspace)
    d_first = workspace.store.get(first)
    assert refs["refs/tags/v1.0"] == d_first
    assert refs["refs/tags/light"] == d_first
    repo = workspace.destination.repo_path
    assert git_out(repo, "cat-file", "-t", "refs/tags/v1.0") == "commit"


def test_tag_of_a_tree_is_ignored(
    source_repo: Any, mirror_config: BuildConfig, git: Any, git_out: Any
) -> None:
    source_repo.commit("one", {"a.txt": "1"})
    tree = git_out(source_repo.path, "rev-parse", "HEAD^{tree}")
    git(source_repo.path, "tag", "-a", "tree-tag", "-m", "points at a tree", tree)

    workspace = ready_workspace(mirror_config())
    report = workspace.transform(run_id="tree-tag")

    by_ref = {ref.ref: ref for ref in report.refs}
    assert by_ref["refs/tags/tree-tag"].action is RefAction.IGNORED
    assert "refs/tags/tree-tag" not in dest_refs(workspace)


def test_messages_are_propagated_verbatim(
    source_repo: Any, mirror_config: BuildConfig
) -> None:
    message = b"Subject line\n\n  indented body\n\n\n# hash line\ntrailing spaces   \n\n"
    commit = source_repo.commit(message, {"a.txt": "1"})

    workspace = ready_workspace(mirror_config())
    workspace.transform(run_id="messages")

    produced = workspace.store.get(commit)
    assert produced is not None
    assert workspace.destination.commit_message(produced) == workspace.source.commit_message(commit)


def test_message_encoding_header_is_carried_over(
    source_repo: Any, mirror_config: BuildConfig, git: Any
) -> None:
    (source_repo.path / "a.txt").write_text("1")
    git(source_repo.path, "add", "a.txt")
    git(
        source_repo.path,
        "-c",
        "i18n.commitEncoding=ISO-8859-1",
        "commit",
        "-q",
        "-F",
        "-",
        input_data=b"R\xe9sum\xe9\n",
    )
    commit = source_repo.head()

    workspace = ready_workspace(mirror_config())
    workspace.transform(run_id="encoding")

    produced = workspace.store.get(commit)
    assert produced is not None
    assert workspace.source.commit_encoding(commit) == "ISO-8859-1"
    assert workspace.destination.commit_encoding(produced) == "ISO-8859-1"
    assert workspace.destination.commit_message(produced) == b"R\xe9sum\xe9\n"


def test_run_resumes_after_a_fatal_failure(
    source_repo: Any, mirror_config: BuildConfig, tmp_path: Path
) -> None:
    c1 = source_repo.commit("one", {"a.txt": "1"})
    c2 = source_repo.commit("two", {"a.txt": "2"})
    c3 = source_repo.commit("three", {"a.txt": "3"})

    def failing_hook(tree: StagedTree) -> bool:
        if tree.source_commit == c3:
            raise GitEngineError("simulated backend crash")
        return True

    workspace = ready_workspace(mirror_config())
    with pytest.raises(GitEngineError):
        workspace.transform(run_id="crash", hook=failing_hook)

    store = workspace.store
    assert store.get(c1) is not None and store.get(c2) is not None
    assert store.get(c3) is None
    assert "refs/heads/main" not in dest_refs(workspace)
    assert not store.lock_path.exists()

    report = workspace.transform(run_id="resume", hook=lambda tree: True)
    assert [record.source_commit for record in report.refs[0].records] == [c3]

    fresh = ready_workspace(
        mirror_config(
            paths={
                "source_clone": str(tmp_path / "fresh" / "source.git"),
                "destination_clone": str(tmp_path / "fresh" / "destination.git"),
            }
        )
    )
    fresh.transform(run_id="fresh")
    assert dest_refs(fresh) == dest_refs(workspace)


def test_skip_decisions_are_permanent(source_repo: Any, mirror_config: BuildConfig) -> None:
    c1 = source_repo.commit("one", {"docs/a.md": "a"})
    c2 = source_repo.commit("two", {"src.c": "x"}, remove=("docs",))

    skipping = ready_workspace(mirror_config(transform={"pathspec": ["docs"]}))
    skipping.transform(run_id="filtered")
    assert skipping.store.get(c2) == skipping.store.get(c1)

    unfiltered = ready_workspace(mirror_config())
    report = unfiltered.transform(run_id="unfiltered")

    assert report.materialized == 0
    assert unfiltered.store.get(c2) == unfiltered.store.get(c1)


def test_transform_refuses_to_run_while_locked(
    source_repo: Any, mirror_config: BuildConfig
) -> None:
    source_repo.commit("one", {"a.txt": "1"})
    workspace = ready_workspace(mirror_config())

    with workspace.store.locked(), pytest.raises(CheckpointLockedError):
        workspace.transform(run_id="blocked")


def test_transform_recovers_a_lock_left_by_a_killed_run(
    source_repo: Any, mirror_config: BuildConfig
) -> None:
    source_repo.commit("one", {"a.txt": "1"})
    workspace = ready_workspace(mirror_config())
    process = subprocess.Popen([sys.executable, "-c", "pass"])
    process.wait()
    workspace.store.lock_path.write_text(f"{process.pid}\n{socket.gethostname()}\n")

    report = workspace.transform(run_id="after-crash")

    assert report.materialized == 1
    assert not workspace.store.lock_path.exists()


def test_forward_resolver_produces_identical_destination(
    source_repo: Any, mirror_config: BuildConfig, tmp_path: Path
) -> None:
    source_repo.commit("one", {"a.txt": "1"})
    source_repo.checkout("topic", create=True)
    source_repo.commit("topic", {"t.txt": "t"})
    source_repo.checkout("main")
    source_repo.commit("two", {"a.txt": "2"})
    source_repo.merge("topic", "merge")

    backward = ready_workspace(mirror_config())
    backward.transform(run_id="backward")

    forward_config = mirror_config(
        paths={
            "source_clone": str(tmp_path / "fwd" / "source.git"),
            "destination_clone": str(tmp_path / "fwd" / "destination.git"),
        }
    )
    forward = ready_workspace(forward_config)
    store = forward.store
    with store.locked():
        pipeline = MirrorPipeline.build(
            forward_config,
            source=forward.source,
            destination=forward.destination,
            store=store,
            resolver=resolve_chain_forward,
        )
        pipeline.transform(run_id="forward")

    assert dest_refs(forward) == dest_refs(backward)
