"""Immutable runtime settings built once from the validated config payload."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

from repo_mirror.config.schema import ConfigurationError, assert_valid_config, redact_url
from repo_mirror.vcs.git_engine import CommitIdentity

if TYPE_CHECKING:
    from collections.abc import Mapping


@dataclass(frozen=True, slots=True)
class MirrorConfig:
    """Every setting the mirror pipeline needs, fixed for the lifetime of a process."""

    source_url: str
    destination_url: str
    source_clone: Path
    destination_clone: Path
    scratch_dir: Path | None
    overlay_dir: Path | None
    pathspec: tuple[str, ...]
    hook_command: str | None
    identity: CommitIdentity
    log_level: str
    log_dir: Path
    log_to_stderr: bool
    redact_secrets: bool
    hook_environment: Mapping[str, str] = field(default_factory=dict, repr=False, compare=False)

    @classmethod
    def from_mapping(
        cls,
        payload: Mapping[str, object],
        *,
        hook_environment: Mapping[str, str] | None = None,
    ) -> MirrorConfig:
        """Build settings from a loader payload (validated again here).

        ``hook_environment`` is snapshotted as the base environment of the hook command.
        """

        config = assert_valid_config(payload)
        source = config["source"]
        destination = config["destination"]
        paths = config["paths"]
        transform = config["transform"]
        identity = config["identity"]
        observability = config["observability"]

        return cls(
            source_url=source["url"],
            destination_url=destination["url"],
            source_clone=Path(paths["source_clone"]),
            destination_clone=Path(paths["destination_clone"]),
            scratch_dir=_optional_path(paths.get("scratch_dir", "")),
            overlay_dir=_optional_path(transform["overlay_dir"]),
            pathspec=tuple(transform["pathspec"]),
            hook_command=transform["hook_command"] or None,
            identity=CommitIdentity(name=identity["name"], email=identity["email"]),
            log_level=observability["log_level"],
            log_dir=Path(observability["log_dir"]),
            log_to_stderr=observability["log_to_stderr"],
            redact_secrets=observability["redact_secrets"],
            hook_environment=dict(hook_environment or {}),
        )

    @property
    def publishing_enabled(self) -> bool:
        return bool(self.destination_url)

    def require_source(self) -> str:
        """Return the source URL or fail before any repository work begins."""

        if not self.source_url:
            raise ConfigurationError(
                "source repository is not configured; set [source] url in mirror.toml "
                "or REPO_MIRROR_SOURCE_URL"
            )
        return self.source_url

    def require_destination(self) -> str:
        """Return the destination URL; pushing without one is a configuration error."""

        if not self.destination_url:
            raise ConfigurationError(
                "destination repository is not configured; set [destination] url in "
                "mirror.toml or REPO_MIRROR_DESTINATION_URL to enable push"
            )
        return self.destination_url

    def describe(self) -> dict[str, object]:
        """Short, redacted summary for log records."""

        return {
            "source_url": redact_url(self.source_url),
            "destination_url": redact_url(self.destination_url),
            "source_clone": self.source_clone.as_posix(),
            "destination_clone": self.destination_clone.as_posix(),
            "overlay_dir": self.overlay_dir.as_posix() if self.overlay_dir else None,
            "pathspec": list(self.pathspec),
            "hook": bool(self.hook_command),
        }


def _optional_path(raw: object) -> Path | None:
    if isinstance(raw, str) and raw:
        return Path(raw)
    return None


__all__ = ["MirrorConfig"]
