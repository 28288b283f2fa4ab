"""Module entrypoint for ``python -m repo_mirror``."""

from __future__ import annotations

from repo_mirror.main import cli_entrypoint

if __name__ == "__main__":
    raise SystemExit(cli_entrypoint())
