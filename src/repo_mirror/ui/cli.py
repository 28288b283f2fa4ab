"""Command-line interface router for repo-mirror."""

from __future__ import annotations

import argparse
import json
import os
import secrets
import sys
import time
from collections.abc import Iterator, Mapping, Sequence
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Final

from repo_mirror.config import (
    ConfigurationError,
    MirrorConfig,
    effective_config,
    load_config,
)
from repo_mirror.domain.models import RefAction, TransformReport
from repo_mirror.mirror.workspace import MirrorWorkspace
from repo_mirror.observability.logging import correlation_scope, setup_logging, shutdown_logging
from repo_mirror.ui.render import CLIRenderer, create_renderer

PROG: Final[str] = "repo-mirror"


@dataclass(frozen=True, slots=True)
class CLIError(RuntimeError):
    """Typed CLI failure with an explicit process exit code."""

    message: str
    exit_code: int = 1

    def __str__(self) -> str:
        return self.message


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse command router for all supported CLI workflows."""

    parser = argparse.ArgumentParser(
        prog=PROG,
        description=(
            "repo-mirror — incremental, transforming git history mirror.\n\n"
            "Common workflows:\n"
            "  repo-mirror init            Prepare local clones and the checkpoint store\n"
            "  repo-mirror mirror          Sync, transform and push in one go\n"
            "  repo-mirror transform       Replay new source commits into the destination\n"
            "  repo-mirror config          Show the effective configuration\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--repo-root",
        default=".",
        help="Directory searched for mirror.toml (default: current working directory).",
    )
    common.add_argument(
        "--config",
        dest="config_path",
        default=None,
        help="Path to mirror TOML config (default: <repo-root>/mirror.toml if present).",
    )
    common.add_argument(
        "--source",
        dest="source_url",
        default=None,
        help="Source repository URL (overrides [source] url).",
    )
    common.add_argument(
        "--destination",
        dest="destination_url",
        default=None,
        help="Destination repository URL (overrides [destination] url).",
    )
    common.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        default=False,
        help="Log at DEBUG level.",
    )
    common.add_argument(
        "--no-color",
        action="store_true",
        default=False,
        help="Disable colored output (also respects NO_COLOR env var).",
    )

    subparsers = parser.add_subparsers(dest="command")

    init_parser = subparsers.add_parser(
        "init",
        parents=[common],
        help="Prepare local clones and the checkpoint store",
        description=(
            "Clone the source (and destination, when configured) if missing and create the\n"
            "checkpoint store. A destination created here is seeded with the overlay content.\n"
            "Safe to run repeatedly."
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    init_parser.set_defaults(handler=_cmd_init, command_parser=init_parser)

    sync_parser = subparsers.add_parser(
        "sync",
        parents=[common],
        help="Refresh all source heads and tags from the source remote",
    )
    sync_parser.set_defaults(handler=_cmd_sync, command_parser=sync_parser)

    transform_parser = subparsers.add_parser(
        "transform",
        parents=[common],
        help="Replay unprocessed source commits into the destination",
        description=(
            "Enumerate source heads and tags and replay every commit that has no checkpoint.\n\n"
            "Examples:\n"
            "  repo-mirror transform\n"
            "  repo-mirror transform --json\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    transform_parser.add_argument("--json", action="store_true", help="Emit the report as JSON")
    transform_parser.set_defaults(handler=_cmd_transform, command_parser=transform_parser)

    push_parser = subparsers.add_parser(
        "push",
        parents=[common],
        help="Force-push all destination heads and tags",
    )
    push_parser.set_defaults(handler=_cmd_push, command_parser=push_parser)

    mirror_parser = subparsers.add_parser(
        "mirror",
        parents=[common],
        help="sync + transform + push",
        description=(
            "Run sync, transform and push in sequence. Push is skipped when no destination\n"
            "URL is configured."
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    mirror_parser.add_argument("--json", action="store_true", help="Emit the report as JSON")
    mirror_parser.set_defaults(handler=_cmd_mirror, command_parser=mirror_parser)

    config_parser = subparsers.add_parser(
        "config",
        parents=[common],
        help="Show effective configuration (redacted)",
        description=(
            "Display the effective config after merging defaults, file, env and flags.\n"
            "Credentials embedded in URLs are redacted.\n\n"
            "Examples:\n"
            "  repo-mirror config\n"
            "  repo-mirror config --json\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    config_parser.add_argument("--json", action="store_true", help="Emit JSON output")
    config_parser.set_defaults(handler=_cmd_config, command_parser=config_parser)

    help_parser = subparsers.add_parser("help", help="Show help for a command")
    help_parser.add_argument("topic", nargs="?", default=None, help="Command to describe")
    help_parser.set_defaults(handler=_cmd_help, command_parser=help_parser, root_parser=parser)

    return parser


# ---------------------------------------------------------------------------
# Entrypoints
# ---------------------------------------------------------------------------


def run_cli(argv: Sequence[str] | None = None) -> int:
    """Parse argv, route to a command handler, and return process exit code."""

    parser = build_parser()
    namespace = parser.parse_args(list(argv) if argv is not None else None)
    handler = getattr(namespace, "handler", None)
    if not callable(handler):
        parser.print_help(sys.stderr)
        return 2

    try:
        result = handler(namespace)
    except CLIError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return exc.exit_code
    except ConfigurationError as exc:
        command_parser = getattr(namespace, "command_parser", parser)
        command_parser.print_usage(sys.stderr)
        print(f"error: {exc}", file=sys.stderr)
        return 2
    return int(result)


def main(argv: Sequence[str] | None = None) -> int:
    """Compatibility wrapper for main-module wiring."""

    return run_cli(argv)


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------


def _cmd_init(args: argparse.Namespace) -> int:
    config = _load_mirror_config(args)
    config.require_source()
    renderer = _get_renderer(args)
    with _logging_session(config, "init"):
        result = MirrorWorkspace(config).init()

    renderer.heading("Mirror initialized")
    renderer.kv(
        "Source clone",
        f"{config.source_clone} ({'cloned' if result.source_cloned else 'present'})",
    )
    renderer.kv(
        "Destination clone",
        f"{config.destination_clone} ({'created' if result.destination_created else 'present'})",
    )
    renderer.kv("Checkpoint store", "created" if result.store_created else "present")
    if result.seed_commit is not None:
        renderer.kv("Seed commit", result.seed_commit)
    return 0


def _cmd_sync(args: argparse.Namespace) -> int:
    config = _load_mirror_config(args)
    config.require_source()
    with _logging_session(config, "sync"):
        workspace = MirrorWorkspace(config)
        workspace.init()
        workspace.sync()
    _get_renderer(args).ok("source refs synchronized")
    return 0


def _cmd_transform(args: argparse.Namespace) -> int:
    config = _load_mirror_config(args)
    config.require_source()
    with _logging_session(config, "transform") as run_id:
        workspace = MirrorWorkspace(config)
        workspace.init()
        report = workspace.transform(run_id=run_id)
    _render_report(args, report, command="transform")
    return 0


def _cmd_push(args: argparse.Namespace) -> int:
    config = _load_mirror_config(args)
    config.require_source()
    config.require_destination()
    with _logging_session(config, "push"):
        workspace = MirrorWorkspace(config)
        workspace.init()
        pushed = workspace.push()
    renderer = _get_renderer(args)
    if pushed:
        renderer.ok("destination refs pushed")
    else:
        renderer.warning("destination has no refs; nothing was pushed")
    return 0


def _cmd_mirror(args: argparse.Namespace) -> int:
    config = _load_mirror_config(args)
    config.require_source()
    pushed: bool | None = None
    with _logging_session(config, "mirror") as run_id:
        workspace = MirrorWorkspace(config)
        workspace.init()
        workspace.sync()
        report = workspace.transform(run_id=run_id)
        if config.publishing_enabled:
            pushed = workspace.push()

    _render_report(args, report, command="mirror", pushed=pushed)
    return 0


def _cmd_config(args: argparse.Namespace) -> int:
    loaded = _load_effective_config(args)
    redacted = effective_config(loaded)

    if _flag(args, "json"):
        _emit_json({"command": "config", "config": redacted})
        return 0

    renderer = _get_renderer(args)
    renderer.text(json.dumps(redacted, indent=2, sort_keys=True, ensure_ascii=False))
    return 0


def _cmd_help(args: argparse.Namespace) -> int:
    root: argparse.ArgumentParser = args.root_parser
    topic = getattr(args, "topic", None)
    if topic is None:
        root.print_help()
        return 0

    subparsers = _subparsers(root)
    if topic not in subparsers:
        raise CLIError(f"unknown command: {topic}", exit_code=2)
    subparsers[topic].print_help()
    return 0


# ---------------------------------------------------------------------------
# Rendering helpers
# ---------------------------------------------------------------------------


def _emit_json(payload: Mapping[str, object]) -> None:
    """Emit a JSON payload to stdout with deterministic formatting."""

    print(json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False))


def _get_renderer(args: argparse.Namespace) -> CLIRenderer:
    """Retrieve or create a CLI renderer from the parsed namespace."""

    no_color = _flag(args, "no_color")
    verbose = _flag(args, "verbose")
    return create_renderer(no_color=no_color, verbose=verbose)


def _render_report(
    args: argparse.Namespace,
    report: TransformReport,
    *,
    command: str,
    pushed: bool | None = None,
) -> None:
    if _flag(args, "json"):
        payload: dict[str, object] = {"command": command, "report": report.to_dict()}
        if pushed is not None:
            payload["pushed"] = pushed
        _emit_json(payload)
        return

    renderer = _get_renderer(args)
    renderer.heading(f"Transform {report.run_id}")
    renderer.kv("Commits materialized", report.materialized)
    renderer.kv("Commits quarantined", report.skipped)
    rows = [
        [ref.ref, ref.action.value, str(ref.materialized), str(ref.skipped), _short(ref.baseline)]
        for ref in report.refs
        if renderer.verbose or ref.action is not RefAction.UNCHANGED
    ]
    renderer.table(("ref", "action", "new", "skipped", "head"), rows, title="Refs:")
    if pushed is True:
        renderer.ok("destination refs pushed")
    elif pushed is False:
        renderer.warning("destination has no refs; nothing was pushed")


def _short(object_id: str) -> str:
    return object_id[:12] if len(object_id) >= 40 else object_id


# ---------------------------------------------------------------------------
# Helpers — config, logging
# ---------------------------------------------------------------------------


def _repo_root(args: argparse.Namespace) -> Path:
    raw = getattr(args, "repo_root", None) or "."
    candidate = Path(raw).expanduser().resolve()
    if not candidate.is_dir():
        raise CLIError(f"repo root is not a directory: {candidate}", exit_code=2)
    return candidate


def _cli_overrides(args: argparse.Namespace) -> dict[str, object]:
    overrides: dict[str, object] = {
        "source.url": getattr(args, "source_url", None),
        "destination.url": getattr(args, "destination_url", None),
    }
    if _flag(args, "verbose"):
        overrides["observability.log_level"] = "DEBUG"
    return overrides


def _load_effective_config(args: argparse.Namespace) -> dict[str, object]:
    return load_config(
        getattr(args, "config_path", None),
        search_dir=_repo_root(args),
        cli_overrides=_cli_overrides(args),
    )


def _load_mirror_config(args: argparse.Namespace) -> MirrorConfig:
    return MirrorConfig.from_mapping(_load_effective_config(args), hook_environment=os.environ)


@contextmanager
def _logging_session(config: MirrorConfig, command: str) -> Iterator[str]:
    """Structured logging for one command; yields the run id."""

    run_id = _new_run_id()
    handle = setup_logging(config, run_id=run_id)
    try:
        with correlation_scope(command=command):
            handle.logger.info("command started", extra={"config": config.describe()})
            yield run_id
            handle.logger.info("command finished")
    except BaseException:
        handle.logger.exception("command failed")
        raise
    finally:
        shutdown_logging(handle)


def _new_run_id() -> str:
    return f"{time.strftime('%Y%m%dT%H%M%SZ', time.gmtime())}-{secrets.token_hex(4)}"


def _subparsers(parser: argparse.ArgumentParser) -> dict[str, argparse.ArgumentParser]:
    for action in parser._actions:
        if isinstance(action, argparse._SubParsersAction):
            return dict(action.choices)
    return {}


def _flag(args: argparse.Namespace, name: str) -> bool:
    return bool(getattr(args, name, False))


__all__ = ["CLIError", "build_parser", "main", "run_cli"]
