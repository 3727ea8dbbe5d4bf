"""Branch-aware merge orchestration on top of `hgflow.hg_ops.HgClient`.

`merge(repo_path, target, destination_branch)` merges `target` (a branch name or a
revision) into the checked-out branch, or into `destination_branch` when one is given,
and classifies the result as a `MergeOutcome`.

Lifecycle
1. Preconditions: the path exists, holds a Mercurial repository with at least one commit,
   has no merge in progress and no added/modified/removed/missing files. Violations raise
   `PreconditionViolated` before anything is touched.
2. Resolve `target` to one commit (`hgflow.refs.resolve_head`: most recent open head of a
   branch, otherwise a single revision). Zero matches raise `AmbiguousReference`.
3. If `destination_branch` is not the working branch, update the working copy to that
   branch's most recent head. This decides which commit becomes the left parent. If the
   update fails, the original checkout is restored before the error propagates.
4. Record the working parent (the left parent of any merge commit).
5. Source is the left parent itself -> `NO_MERGE_NEEDED`; there is no history to merge.
6. Run `hg merge` with the resolved source hash:
   - clean merge: commit `Merge with <target>` and check the new commit's parents
     (left = recorded parent, right = source) -> `SUCCESS`;
   - unresolved files, or hg refusing the merge (e.g. the source is already an ancestor
     of the left parent because it was merged before): roll the working copy back ->
     `UNRESOLVED_FILES`. Re-merging a branch is therefore a failed attempt, not a no-op;
   - any gateway failure while merging or committing: roll back, then raise
     `MergeAborted` (its `outcome` is `ABORTED`) chained to the `GatewayFailure`.

Rollback
Every non-success path leaves the working copy exactly as it was found: `hg update
--clean` to the commit that was checked out before the call (which also drops the pending
merge state), plus removal of `.orig` backups that the merge tool created. A rollback that
still leaves a dirty working copy raises `MergeAborted`.

Nothing here retries. Conflicts are ordinary results for the caller to resolve manually;
infrastructure errors outside the merge primitive propagate unchanged.
"""

from __future__ import annotations

import sys
from enum import Enum
from pathlib import Path

from .errors import GatewayFailure, MergeAborted, PreconditionViolated
from .hg_ops import DIRTY_STATES, CommitInfo, FileState, HgClient
from .refs import resolve_head


class MergeOutcome(str, Enum):
    SUCCESS = "success"
    UNRESOLVED_FILES = "unresolved_files"
    NO_MERGE_NEEDED = "no_merge_needed"
    ABORTED = "aborted"


class MergeOrchestrator:
    def __init__(self, hg: HgClient) -> None:
        self.hg = hg

    def merge(self, repo_path: Path, target: str, destination_branch: str | None = None) -> MergeOutcome:
        cwd = self._check_preconditions(Path(repo_path))
        original = self._working_parent(cwd)
        unknown_before = self._unknown_files(cwd)

        source = resolve_head(self.hg, target, cwd=cwd)
        branch = self.hg.current_branch(cwd=cwd)
        if destination_branch is not None and destination_branch != branch:
            destination = resolve_head(self.hg, destination_branch, cwd=cwd)
            print(f"[hgflow] update to {destination_branch} ({destination.hash[:12]})", file=sys.stderr)
            branch = destination_branch
            try:
                self.hg.update(destination.hash, cwd=cwd)
                left = self._working_parent(cwd)
            except GatewayFailure:
                self._restore_checkout(original=original, cwd=cwd)
                raise
        else:
            left = original

        print(
            f"[hgflow] merge {target} ({source.hash[:12]}) -> {branch} ({left.hash[:12]})",
            file=sys.stderr,
        )

        if source.hash == left.hash:
            print(f"[hgflow] {target} is the working parent; nothing to merge", file=sys.stderr)
            if left.hash != original.hash:
                self._restore_checkout(original=original, cwd=cwd)
            return MergeOutcome.NO_MERGE_NEEDED

        try:
            attempt = self.hg.merge(source.hash, cwd=cwd)
        except GatewayFailure as exc:
            self._abort(original=original, unknown_before=unknown_before, cwd=cwd)
            raise MergeAborted(f"merge of {target} into {branch} failed: {exc}", outcome=MergeOutcome.ABORTED) from exc

        if not attempt.succeeded:
            reason = "unresolved files" if attempt.conflicted else "merge refused"
            print(f"[hgflow] {reason}; rolling back to {original.hash[:12]}", file=sys.stderr)
            self._roll_back(original=original, unknown_before=unknown_before, cwd=cwd)
            return MergeOutcome.UNRESOLVED_FILES

        try:
            commit = self.hg.commit(f"Merge with {target}", cwd=cwd)
        except GatewayFailure as exc:
            self._abort(original=original, unknown_before=unknown_before, cwd=cwd)
            raise MergeAborted(f"commit of merge {target} into {branch} failed: {exc}", outcome=MergeOutcome.ABORTED) from exc

        if commit.left_parent_hash != left.hash or commit.right_parent_hash != source.hash:
            raise MergeAborted(
                f"merge commit {commit.hash[:12]} has parents "
                f"{commit.left_parent_hash}/{commit.right_parent_hash}, expected {left.hash}/{source.hash}",
                outcome=MergeOutcome.ABORTED,
            )
        print(f"[hgflow] merged {target} into {branch} as {commit.hash[:12]}", file=sys.stderr)
        return MergeOutcome.SUCCESS

    def _check_preconditions(self, repo_path: Path) -> Path:
        if not repo_path.is_dir():
            raise PreconditionViolated(f"repository path does not exist: {repo_path}")
        cwd = repo_path.resolve()
        if not self.hg.is_repository(cwd=cwd):
            raise PreconditionViolated(f"not a Mercurial repository: {cwd}")
        if self.hg.parent(cwd=cwd) is None:
            raise PreconditionViolated(f"repository has no commits: {cwd}")
        if self.hg.merge_in_progress(cwd=cwd):
            raise PreconditionViolated(f"uncommitted merge in progress: {cwd}")
        dirty = sorted(s.path for s in self.hg.status(cwd=cwd) if s.state in DIRTY_STATES)
        if dirty:
            raise PreconditionViolated(f"working copy has uncommitted changes: {', '.join(dirty)}")
        return cwd

    def _working_parent(self, cwd: Path) -> CommitInfo:
        parent = self.hg.parent(cwd=cwd)
        if parent is None:
            raise PreconditionViolated(f"repository has no commits: {cwd}")
        return parent

    def _unknown_files(self, cwd: Path) -> set[str]:
        return {s.path for s in self.hg.status(cwd=cwd) if s.state == FileState.UNKNOWN}

    def _restore_checkout(self, *, original: CommitInfo, cwd: Path) -> None:
        # Only reached before `hg merge` runs, so nothing uncommitted is discarded.
        self.hg.update(original.hash, clean=True, cwd=cwd)

    def _roll_back(self, *, original: CommitInfo, unknown_before: set[str], cwd: Path) -> None:
        self.hg.update(original.hash, clean=True, cwd=cwd)
        for status in self.hg.status(cwd=cwd):
            if status.state != FileState.UNKNOWN or status.path in unknown_before:
                continue
            if status.path.endswith(".orig"):
                (cwd / status.path).unlink(missing_ok=True)

        dirty = [s.path for s in self.hg.status(cwd=cwd) if s.state in DIRTY_STATES]
        if dirty or self.hg.merge_in_progress(cwd=cwd):
            raise MergeAborted(
                f"rollback to {original.hash[:12]} left a dirty working copy: {', '.join(dirty) or 'merge state'}",
                outcome=MergeOutcome.ABORTED,
            )

    def _abort(self, *, original: CommitInfo, unknown_before: set[str], cwd: Path) -> None:
        try:
            self._roll_back(original=original, unknown_before=unknown_before, cwd=cwd)
        except (GatewayFailure, MergeAborted) as exc:
            # The caller raises MergeAborted for the original failure either way.
            print(f"[hgflow] rollback failed: {exc}", file=sys.stderr)


def merge(
    repo_path: Path | str,
    target: str,
    destination_branch: str | None = None,
    *,
    hg: HgClient | None = None,
) -> MergeOutcome:
    """Merge `target` into the working branch (or `destination_branch`) of `repo_path`."""
    return MergeOrchestrator(hg or HgClient()).merge(Path(repo_path), target, destination_branch)
