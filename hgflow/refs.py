"""Reference resolution shared by the merge orchestrator and the version resolver.

A branch name is a one-to-many relation: several commits may carry the same branch name
when diverging work has not been merged yet. `resolve_head()` makes the choice explicit:
it takes the branch's open heads (ordered oldest first by local revision number) and
selects the most recent one. Anything that is not a branch name is looked up as a single
revision (hash, `tip`, `.`, ...). A reference that resolves to nothing raises
`AmbiguousReference` instead of being guessed.
"""

from __future__ import annotations

from pathlib import Path

from .errors import AmbiguousReference
from .hg_ops import CommitInfo, HgClient


def select_head(heads: list[CommitInfo]) -> CommitInfo | None:
    """Pick the most recent head (highest revision number)."""
    if not heads:
        return None
    return max(heads, key=lambda c: c.rev)


def resolve_head(hg: HgClient, ref: str, *, cwd: Path) -> CommitInfo:
    head = select_head(hg.heads(ref, cwd=cwd))
    if head is not None:
        return head
    commit = hg.identify(ref, cwd=cwd)
    if commit is None:
        raise AmbiguousReference(ref)
    return commit
