"""Module entrypoint for ``python -m hgflow``.

A thin wrapper around :func:`hgflow.cli.main`: argument parsing and all work happen in the
CLI module, and ``SystemExit(main())`` turns its return code into the process exit status.
This is equivalent to the ``hgflow`` console script (``hgflow.cli:main`` in
``pyproject.toml``).

Exit status
- ``0``: merge succeeded, or a version was printed/tagged.
- ``1``: the merge did not produce a commit (``unresolved_files`` / ``no_merge_needed``),
  or ``current-version`` found no version tag.
- ``2``: argument parsing error (from ``argparse``).
- Uncaught ``hgflow.errors.HgFlowError`` subclasses (``PreconditionViolated``,
  ``AmbiguousReference``, ``GatewayFailure``, ``MergeAborted``) exit non-zero with a
  traceback.
"""

from __future__ import annotations

from .cli import main

if __name__ == "__main__":
    raise SystemExit(main())
