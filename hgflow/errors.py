"""Error types raised by hgflow.

Merge conflicts and no-op merges are not errors: they are reported in-band as
`hgflow.merge.MergeOutcome` values. Everything here is out-of-band and means the caller
has to intervene (fix the repository, pick another reference, repair the environment).

- `PreconditionViolated`: the repository path is missing, is not a Mercurial
  repository, has no commits, or has a dirty working copy / a merge in progress.
- `AmbiguousReference`: a branch or revision name resolved to zero commits.
- `GatewayFailure`: an `hg` invocation failed for reasons unrelated to merge conflicts
  (missing binary, crash, lock timeout, permission error).
- `MergeAborted`: the merge primitive itself failed after the merge was started; the
  working copy was rolled back and `outcome` is `MergeOutcome.ABORTED`.
"""

from __future__ import annotations

import subprocess
from typing import Any


class HgFlowError(RuntimeError):
    """Base class for all hgflow errors."""


class PreconditionViolated(HgFlowError):
    pass


class AmbiguousReference(HgFlowError):
    def __init__(self, ref: str, reason: str = "resolves to no commit") -> None:
        super().__init__(f"{ref!r} {reason}")
        self.ref = ref


class GatewayFailure(HgFlowError):
    def __init__(self, message: str, *, args: list[str] | None = None, returncode: int | None = None, output: str = "") -> None:
        super().__init__(message)
        self.hg_args = list(args or [])
        self.returncode = returncode
        self.output = output

    @classmethod
    def from_called_process_error(cls, exc: subprocess.CalledProcessError) -> "GatewayFailure":
        output = "\n".join(s for s in (_text(exc.stdout), _text(exc.stderr)) if s.strip())
        cmd = list(exc.cmd) if isinstance(exc.cmd, (list, tuple)) else [str(exc.cmd)]
        detail = output.strip().splitlines()[-1] if output.strip() else "no output"
        return cls(
            f"hg {' '.join(cmd[1:])} exited {exc.returncode}: {detail}",
            args=cmd,
            returncode=exc.returncode,
            output=output,
        )


class MergeAborted(HgFlowError):
    def __init__(self, message: str, *, outcome: Any) -> None:
        super().__init__(message)
        self.outcome = outcome


def _text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return str(value)
