"""hgflow: branch-aware merge orchestration and tag-based versioning for Mercurial.

What hgflow provides
- A merge orchestrator (`hgflow.merge.merge`) that merges a branch or revision into the
  checked-out branch (or an explicit destination branch), resolves multi-head branches to
  their most recent head, and classifies the result as a `MergeOutcome`:
  `success`, `unresolved_files`, `no_merge_needed` or `aborted`.
- A version resolver (`hgflow.versions.resolve_next_version`) that finds the highest
  version tag reachable from a branch head and applies a pluggable increment strategy.
- A thin command gateway (`hgflow.hg_ops.HgClient`) over the `hg` binary.
- A CLI (`hgflow.cli:main`, runnable via `python -m hgflow`).

What hgflow does not do
- Implement any part of Mercurial itself; every repository operation is an `hg` call.
- Retry, lock or time out: calls block until hg returns, and callers must not run
  operations on the same repository concurrently.

Important invariants
- A `success` merge creates exactly one commit whose parents are the previous working
  parent and the resolved source head. Every other outcome leaves no new commit and a
  clean working copy.
- Version resolution never writes; tagging is a separate explicit step.

Key exports from this module
- `__version__`: the package version string. (`__all__` is intentionally limited to this.)
"""

from __future__ import annotations

__all__ = ["__version__"]

__version__ = "0.1.0"
