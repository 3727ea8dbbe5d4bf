"""Mercurial command gateway for hgflow.

`HgClient` is the only place hgflow touches a repository. It shells out to the `hg`
binary via `subprocess`; every public method maps to one hg command and takes the
repository path as an explicit `cwd` keyword, so callers never depend on the process
working directory.

Data model (all frozen dataclasses)
- `CommitInfo`: `(rev, hash, branch, left_parent_hash, right_parent_hash, message,
  timestamp)`. A null parent is `None`; a commit with both parents set is a merge commit.
- `FileStatus`: `(path, state)` where `state` is a `FileState`.
- `TagInfo`: `(name, hash)`.
- `MergeAttempt`: `(succeeded, conflicted, message)` as reported by `hg merge`.

HgClient API (public methods)
- `init(cwd=...)`, `commit(message, add_remove=..., cwd=...) -> CommitInfo`
- `update(rev, clean=..., cwd=...)`, `branch(name, cwd=...)`, `current_branch(cwd=...)`
- `branches(cwd=...) -> list[str]` (closed branches included)
- `tip(cwd=...)`, `parent(cwd=...)`, `identify(rev, cwd=...)` -> `CommitInfo | None`
  (`None` for the null revision or an unknown reference)
- `log(revspec, cwd=...) -> list[CommitInfo]`
- `heads(branch, cwd=...) -> list[CommitInfo]`: open heads of a named branch, oldest
  first. Unknown branches yield `[]`.
- `is_ancestor(ancestor, descendant, cwd=...) -> bool` (a commit is its own ancestor)
- `status(cwd=...) -> list[FileStatus]`, `merge_in_progress(cwd=...) -> bool`
- `merge(rev, cwd=...) -> MergeAttempt`
- `tags(cwd=...) -> list[TagInfo]` (the `tip` pseudo-tag is skipped),
  `tag(name, rev=..., message=..., cwd=...)`
- `is_repository(cwd=...) -> bool`

Invocation details
- `HGPLAIN=1` is exported so output is not affected by user aliases, i18n or pagers;
  `--noninteractive` keeps hg from prompting.
- Log output uses a template with ASCII unit (0x1f) and record (0x1e) separators so
  multi-line commit messages parse unambiguously.
- `hg merge` runs with `--tool <merge_tool>` (default `internal:merge`), which leaves
  conflict markers instead of launching an external tool. Exit status 1 means unresolved
  files; exit status 255 with "nothing to merge" / "has no effect" is a refusal. Both are
  reported in-band through `MergeAttempt`.
- Every other non-zero exit, and a missing `hg` binary, raises `GatewayFailure`.
"""

from __future__ import annotations

import os
import subprocess
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from pathlib import Path

from .errors import GatewayFailure

NULL_HASH = "0" * 40

_FIELD = "\x1f"
_RECORD = "\x1e"
LOG_TEMPLATE = _FIELD.join(
    ["{rev}", "{node}", "{branch}", "{p1node}", "{p2node}", "{date|hgdate}", "{desc}"]
) + _RECORD

_LOOKUP_ERRORS = ("unknown revision", "ambiguous identifier", "does not exist")
_MERGE_REFUSALS = ("nothing to merge", "has no effect")


class FileState(str, Enum):
    ADDED = "added"
    MODIFIED = "modified"
    REMOVED = "removed"
    UNKNOWN = "unknown"
    MISSING = "missing"
    CLEAN = "clean"


_STATUS_CODES = {
    "A": FileState.ADDED,
    "M": FileState.MODIFIED,
    "R": FileState.REMOVED,
    "?": FileState.UNKNOWN,
    "!": FileState.MISSING,
    "C": FileState.CLEAN,
}

# States that make a working copy dirty. Unknown files do not block `hg merge`.
DIRTY_STATES = frozenset({FileState.ADDED, FileState.MODIFIED, FileState.REMOVED, FileState.MISSING})


@dataclass(frozen=True)
class CommitInfo:
    rev: int
    hash: str
    branch: str
    left_parent_hash: str | None
    right_parent_hash: str | None
    message: str
    timestamp: datetime

    @property
    def is_merge(self) -> bool:
        return self.left_parent_hash is not None and self.right_parent_hash is not None


@dataclass(frozen=True)
class FileStatus:
    path: str
    state: FileState


@dataclass(frozen=True)
class TagInfo:
    name: str
    hash: str


@dataclass(frozen=True)
class MergeAttempt:
    succeeded: bool
    conflicted: bool
    message: str = ""


class HgClient:
    def __init__(self, *, hg_cmd: str = "hg", username: str | None = None, merge_tool: str = "internal:merge") -> None:
        self.hg_cmd = hg_cmd
        self.username = username
        self.merge_tool = merge_tool

    def is_repository(self, *, cwd: Path) -> bool:
        return (cwd / ".hg").is_dir()

    def init(self, *, cwd: Path) -> None:
        cwd.mkdir(parents=True, exist_ok=True)
        self._hg(["init"], cwd=cwd)

    def commit(self, message: str, *, add_remove: bool = False, cwd: Path) -> CommitInfo:
        args = ["commit", "-m", message]
        if add_remove:
            args.append("--addremove")
        self._hg(args, cwd=cwd)
        committed = self.parent(cwd=cwd)
        if committed is None:
            raise GatewayFailure(f"hg commit in {cwd} left no working parent", args=args)
        return committed

    def update(self, rev: str, *, clean: bool = False, cwd: Path) -> None:
        args = ["update", "-r", rev]
        if clean:
            # Discards uncommitted changes and any pending merge state.
            args.append("--clean")
        self._hg(args, cwd=cwd)

    def branch(self, name: str, *, cwd: Path) -> None:
        self._hg(["branch", name], cwd=cwd)

    def current_branch(self, *, cwd: Path) -> str:
        return self._hg(["branch"], cwd=cwd).strip()

    def branches(self, *, cwd: Path) -> list[str]:
        out = self._hg(["branches", "--closed", "--template", "{branch}\n"], cwd=cwd)
        return [line.strip() for line in out.splitlines() if line.strip()]

    def log(self, revspec: str, *, cwd: Path) -> list[CommitInfo]:
        out = self._hg(["log", "-r", revspec, "--template", LOG_TEMPLATE], cwd=cwd)
        return [_parse_commit(record) for record in out.split(_RECORD) if record.strip()]

    def identify(self, rev: str, *, cwd: Path) -> CommitInfo | None:
        try:
            commits = self.log(revset_quote(rev), cwd=cwd)
        except GatewayFailure as exc:
            if _is_lookup_error(exc.output):
                return None
            raise
        commits = [c for c in commits if c.rev >= 0]
        return commits[-1] if commits else None

    def tip(self, *, cwd: Path) -> CommitInfo | None:
        return self.identify("tip", cwd=cwd)

    def parent(self, *, cwd: Path) -> CommitInfo | None:
        return self.identify(".", cwd=cwd)

    def heads(self, branch: str, *, cwd: Path) -> list[CommitInfo]:
        if branch not in self.branches(cwd=cwd):
            return []
        revset = f"head() and not closed() and branch({revset_quote('literal:' + branch)})"
        return sorted(self.log(revset, cwd=cwd), key=lambda c: c.rev)

    def is_ancestor(self, ancestor: str, descendant: str, *, cwd: Path) -> bool:
        revset = f"{revset_quote(ancestor)} and ancestors({revset_quote(descendant)})"
        return bool(self.log(revset, cwd=cwd))

    def status(self, *, cwd: Path) -> list[FileStatus]:
        out = self._hg(
            ["status", "--modified", "--added", "--removed", "--deleted", "--clean", "--unknown"],
            cwd=cwd,
        )
        result: list[FileStatus] = []
        for line in out.splitlines():
            if len(line) < 3 or line[0] not in _STATUS_CODES:
                continue
            result.append(FileStatus(path=line[2:], state=_STATUS_CODES[line[0]]))
        return result

    def merge_in_progress(self, *, cwd: Path) -> bool:
        return any(c.rev >= 0 for c in self.log("p2()", cwd=cwd))

    def merge(self, rev: str, *, cwd: Path) -> MergeAttempt:
        p = self._run(["merge", "--tool", self.merge_tool, "-r", rev], cwd=cwd)
        output = "\n".join(s for s in (p.stdout, p.stderr) if s and s.strip())
        if p.returncode == 0:
            return MergeAttempt(succeeded=True, conflicted=False, message=output)
        if p.returncode == 1:
            return MergeAttempt(succeeded=False, conflicted=True, message=output)
        if any(marker in output for marker in _MERGE_REFUSALS):
            return MergeAttempt(succeeded=False, conflicted=False, message=output)
        raise GatewayFailure.from_called_process_error(
            subprocess.CalledProcessError(p.returncode, p.args, p.stdout, p.stderr)
        )

    def tags(self, *, cwd: Path) -> list[TagInfo]:
        out = self._hg(["tags", "--template", "{tag}" + _FIELD + "{node}\n"], cwd=cwd)
        result: list[TagInfo] = []
        for line in out.splitlines():
            name, sep, node = line.partition(_FIELD)
            if not sep or name == "tip":
                continue
            result.append(TagInfo(name=name, hash=node.strip()))
        return result

    def tag(self, name: str, *, rev: str, message: str | None = None, cwd: Path) -> None:
        args = ["tag", "-r", rev]
        if message:
            args += ["-m", message]
        self._hg([*args, name], cwd=cwd)

    def _hg(self, args: list[str], *, cwd: Path) -> str:
        p = self._run(args, cwd=cwd)
        if p.returncode != 0:
            raise GatewayFailure.from_called_process_error(
                subprocess.CalledProcessError(p.returncode, p.args, p.stdout, p.stderr)
            )
        return p.stdout

    def _run(self, args: list[str], *, cwd: Path) -> subprocess.CompletedProcess[str]:
        cmd = [self.hg_cmd, "--noninteractive", *self._config_args(), *args]
        try:
            return subprocess.run(
                cmd,
                cwd=cwd,
                text=True,
                check=False,
                capture_output=True,
                env={**os.environ, "HGPLAIN": "1"},
            )
        except OSError as e:
            raise GatewayFailure(f"could not run {self.hg_cmd!r} in {cwd}: {e}", args=cmd) from e

    def _config_args(self) -> list[str]:
        if not self.username:
            return []
        return ["--config", f"ui.username={self.username}"]


def revset_quote(value: str) -> str:
    """Quote `value` as a revset string literal."""
    escaped = value.replace("\\", "\\\\").replace("'", "\\'")
    return f"'{escaped}'"


def _parse_commit(record: str) -> CommitInfo:
    fields = record.lstrip("\n").split(_FIELD)
    if len(fields) != 7:
        raise GatewayFailure(f"unexpected hg log record: {record!r}")
    rev, node, branch, p1, p2, date, desc = fields
    return CommitInfo(
        rev=int(rev),
        hash=node,
        branch=branch,
        left_parent_hash=_parent_hash(p1),
        right_parent_hash=_parent_hash(p2),
        message=desc,
        timestamp=_parse_hgdate(date),
    )


def _parent_hash(node: str) -> str | None:
    node = node.strip()
    if not node or node == NULL_HASH:
        return None
    return node


def _parse_hgdate(text: str) -> datetime:
    # hgdate is "<unix seconds> <offset>", where offset is seconds west of UTC.
    seconds, _, offset = text.strip().partition(" ")
    tz = timezone(timedelta(seconds=-int(offset or "0")))
    return datetime.fromtimestamp(float(seconds), tz=tz)


def _is_lookup_error(output: str) -> bool:
    return any(marker in output for marker in _LOOKUP_ERRORS)
