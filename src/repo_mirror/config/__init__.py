"""
repo-mirror config package public API.

File: src/repo_mirror/config/__init__.py

Purpose
- Export config loading/validation entrypoints, the immutable ``MirrorConfig`` and
  public error types.

Functional requirements
- Support loading from ``mirror.toml`` + ``REPO_MIRROR_`` env overrides.
- Fail fast with clear structured validation/load errors.
"""

from repo_mirror.config.loader import (
    DEFAULT_CONFIG_FILE,
    ENV_PREFIX,
    ConfigLoadError,
    dump_effective_config,
    effective_config,
    load_config,
    load_config_file,
    normalize_paths,
)
from repo_mirror.config.schema import (
    DEFAULT_CONFIG,
    PATH_FIELDS,
    URL_FIELDS,
    ConfigSchemaVersion,
    ConfigurationError,
    ConfigValidationError,
    ConfigValidationIssue,
    ConfigValidationResult,
    MirrorConfigPayload,
    assert_valid_config,
    default_config,
    merge_config,
    migration_guidance,
    redact_config,
    redact_url,
    validate_config,
)
from repo_mirror.config.settings import MirrorConfig

__all__ = [
    "ConfigLoadError",
    "ConfigSchemaVersion",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "ConfigValidationResult",
    "ConfigurationError",
    "DEFAULT_CONFIG",
    "DEFAULT_CONFIG_FILE",
    "ENV_PREFIX",
    "MirrorConfig",
    "MirrorConfigPayload",
    "PATH_FIELDS",
    "URL_FIELDS",
    "assert_valid_config",
    "default_config",
    "dump_effective_config",
    "effective_config",
    "load_config",
    "load_config_file",
    "merge_config",
    "migration_guidance",
    "normalize_paths",
    "redact_config",
    "redact_url",
    "validate_config",
]
