from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

import pytest

from hgflow.errors import GatewayFailure
from hgflow.hg_ops import CommitInfo, FileState, FileStatus, MergeAttempt, TagInfo


class FakeHg:
    """In-memory stand-in for `HgClient` with a real commit DAG and file-level three-way merges.

    Tracked file contents live in memory (per-commit snapshots plus the working copy);
    untracked files are real files under `root` so that cleanup of merge backups can be observed.
    """

    def __init__(self, root: Path) -> None:
        self.root = root
        (root / ".hg").mkdir(parents=True, exist_ok=True)
        self.commits: list[CommitInfo] = []
        self.snapshots: dict[str, dict[str, str]] = {}
        self.working: dict[str, str] = {}
        self.working_parent: str | None = None
        self.working_branch = "default"
        self.pending_merge: str | None = None
        self.tag_list: list[TagInfo] = []
        self.merge_error: Exception | None = None
        self.commit_error: Exception | None = None
        self.refuse_merge = False
        self.calls: list[tuple[str, object]] = []

    # -- test helpers ---------------------------------------------------------

    def write(self, path: str, content: str) -> None:
        self.working[path] = content

    def commit_files(self, message: str, files: dict[str, str]) -> CommitInfo:
        for path, content in files.items():
            self.write(path, content)
        return self.commit(message, cwd=self.root)

    def by_hash(self, node: str) -> CommitInfo:
        return next(c for c in self.commits if c.hash == node)

    # -- gateway surface ------------------------------------------------------

    def is_repository(self, *, cwd: Path) -> bool:
        return (cwd / ".hg").is_dir()

    def commit(self, message: str, *, add_remove: bool = False, cwd: Path) -> CommitInfo:
        self.calls.append(("commit", message))
        if self.commit_error is not None:
            raise self.commit_error
        parent_files = self.snapshots.get(self.working_parent or "", {})
        if self.working == parent_files and self.pending_merge is None:
            raise GatewayFailure("nothing changed", returncode=1)
        rev = len(self.commits)
        commit = CommitInfo(
            rev=rev,
            hash=f"{rev:040x}",
            branch=self.working_branch,
            left_parent_hash=self.working_parent,
            right_parent_hash=self.pending_merge,
            message=message,
            timestamp=datetime(2024, 1, 1, tzinfo=timezone.utc),
        )
        self.commits.append(commit)
        self.snapshots[commit.hash] = dict(self.working)
        self.working_parent = commit.hash
        self.pending_merge = None
        return commit

    def update(self, rev: str, *, clean: bool = False, cwd: Path) -> None:
        self.calls.append(("update", (rev, clean)))
        if not clean and (self._dirty() or self.pending_merge):
            raise GatewayFailure("abort: uncommitted changes", returncode=255)
        target = self.identify(rev, cwd=cwd)
        if target is None:
            raise GatewayFailure(f"abort: unknown revision '{rev}'", returncode=255)
        self.working_parent = target.hash
        self.working = dict(self.snapshots[target.hash])
        self.working_branch = target.branch
        self.pending_merge = None

    def branch(self, name: str, *, cwd: Path) -> None:
        self.working_branch = name

    def current_branch(self, *, cwd: Path) -> str:
        return self.working_branch

    def branches(self, *, cwd: Path) -> list[str]:
        return sorted({c.branch for c in self.commits})

    def identify(self, rev: str, *, cwd: Path) -> CommitInfo | None:
        if not self.commits:
            return None
        if rev == ".":
            return self.by_hash(self.working_parent) if self.working_parent else None
        if rev == "tip":
            return self.commits[-1]
        for c in self.commits:
            if c.hash == rev:
                return c
        on_branch = [c for c in self.commits if c.branch == rev]
        return on_branch[-1] if on_branch else None

    def tip(self, *, cwd: Path) -> CommitInfo | None:
        return self.identify("tip", cwd=cwd)

    def parent(self, *, cwd: Path) -> CommitInfo | None:
        return self.identify(".", cwd=cwd)

    def heads(self, branch: str, *, cwd: Path) -> list[CommitInfo]:
        self.calls.append(("heads", branch))
        on_branch = [c for c in self.commits if c.branch == branch]
        with_children = {
            p
            for c in on_branch
            for p in (c.left_parent_hash, c.right_parent_hash)
            if p is not None
        }
        return [c for c in on_branch if c.hash not in with_children]

    def is_ancestor(self, ancestor: str, descendant: str, *, cwd: Path) -> bool:
        return ancestor in self._ancestors(descendant)

    def status(self, *, cwd: Path) -> list[FileStatus]:
        parent_files = self.snapshots.get(self.working_parent or "", {})
        result: list[FileStatus] = []
        for path in sorted(set(parent_files) | set(self.working)):
            if path not in parent_files:
                state = FileState.ADDED
            elif path not in self.working:
                state = FileState.REMOVED
            elif parent_files[path] != self.working[path]:
                state = FileState.MODIFIED
            else:
                state = FileState.CLEAN
            result.append(FileStatus(path=path, state=state))
        for p in sorted(self.root.rglob("*")):
            rel = p.relative_to(self.root).as_posix()
            if p.is_file() and not rel.startswith(".hg/") and rel not in self.working:
                result.append(FileStatus(path=rel, state=FileState.UNKNOWN))
        return result

    def merge_in_progress(self, *, cwd: Path) -> bool:
        return self.pending_merge is not None

    def merge(self, rev: str, *, cwd: Path) -> MergeAttempt:
        self.calls.append(("merge", rev))
        if self.merge_error is not None:
            # Leave a half-applied merge behind, as a crashed hg process would.
            self.pending_merge = rev
            raise self.merge_error
        if self.refuse_merge:
            return MergeAttempt(succeeded=False, conflicted=False, message="abort: nothing to merge")
        if rev in self._ancestors(self.working_parent or ""):
            message = "abort: merging with a working directory ancestor has no effect"
            return MergeAttempt(succeeded=False, conflicted=False, message=message)
        base = self._common_ancestor(self.working_parent or "", rev)
        base_files = self.snapshots.get(base or "", {})
        other_files = self.snapshots[rev]
        merged: dict[str, str] = {}
        conflicts: list[str] = []
        for path in sorted(set(base_files) | set(self.working) | set(other_files)):
            b, local, other = base_files.get(path), self.working.get(path), other_files.get(path)
            if local == other or b == other:
                value = local
            elif b == local:
                value = other
            else:
                conflicts.append(path)
                value = f"<<<<<<< local\n{local}\n=======\n{other}\n>>>>>>> other\n"
            if value is not None:
                merged[path] = value
        self.working = merged
        self.pending_merge = rev
        for path in conflicts:
            (self.root / f"{path}.orig").write_text(self.snapshots[self.working_parent or ""].get(path, ""))
        if conflicts:
            return MergeAttempt(succeeded=False, conflicted=True, message="unresolved: " + ", ".join(conflicts))
        return MergeAttempt(succeeded=True, conflicted=False)

    def tags(self, *, cwd: Path) -> list[TagInfo]:
        return list(self.tag_list)

    def tag(self, name: str, *, rev: str, message: str | None = None, cwd: Path) -> None:
        self.calls.append(("tag", (name, rev, message)))
        self.tag_list.append(TagInfo(name=name, hash=rev))

    # -- internals ------------------------------------------------------------

    def _dirty(self) -> bool:
        return any(s.state not in (FileState.CLEAN, FileState.UNKNOWN) for s in self.status(cwd=self.root))

    def _ancestors(self, node: str) -> set[str]:
        seen: set[str] = set()
        stack = [node]
        while stack:
            current = stack.pop()
            if not current or current in seen:
                continue
            seen.add(current)
            c = self.by_hash(current)
            stack.extend(p for p in (c.left_parent_hash, c.right_parent_hash) if p)
        return seen

    def _common_ancestor(self, a: str, b: str) -> str | None:
        common = self._ancestors(a) & self._ancestors(b)
        if not common:
            return None
        return max(common, key=lambda h: self.by_hash(h).rev)


@pytest.fixture
def fake_hg(tmp_path: Path) -> FakeHg:
    repo = tmp_path / "repo"
    repo.mkdir()
    return FakeHg(repo)
