"""
repo-mirror — incremental, transforming git history mirror.

File: src/repo_mirror/__init__.py

Purpose
- Package root. Replays the first-parent history of every head and tag of a source
  repository into a destination repository, filtering paths, injecting overlay
  content and running an optional hook per commit.
- Work is memoized per source commit, so repeated runs only touch new commits.

Import boundary
- No side effects at import time (no config loading, no logging init).
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
