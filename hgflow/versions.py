"""Version derivation from Mercurial tags.

`resolve_next_version(repo_path, branch, increment)` returns the version that should be
released next from the given branch:

1. Take the most recent open head of `branch` (see `hgflow.refs.resolve_head`).
2. Collect the tags whose changeset is that head or one of its ancestors, strip
   `tag_prefix`, and parse the rest as a `Version`. Tags that do not parse (e.g.
   `nightly`, `before-refactor`) are ignored. Equal versions tagged on different commits
   count once.
3. Take the maximum, or the baseline `0.1` when there is none, and apply `increment`.

Resolution is a pure read. Persisting the result as a tag is a separate, explicit call
(`tag_version`, or `hgflow tag-next` on the command line).

Version model
`Version(major, minor, build=-1, revision=-1)` mirrors the four-part release numbers used
in tags. `-1` marks an unset trailing component; unset components are omitted when
formatting (`Version(1, 2)` prints as `1.2`). Ordering is plain tuple ordering, so an
unset component sorts before any set one: `1.2 < 1.2.0 < 1.2.1 < 1.3`.

Increment strategies
An increment strategy is any `Callable[[Version], Version]`. `default_increment` bumps
the most specific component already in use (revision, else build, else minor), so a
repository that has moved to finer-grained numbers stays there. `INCREMENT_STRATEGIES`
maps the names accepted by the CLI to the built-in strategies.
"""

from __future__ import annotations

import re
import sys
from collections.abc import Callable
from dataclasses import dataclass, replace
from pathlib import Path

from .errors import AmbiguousReference, PreconditionViolated
from .hg_ops import HgClient
from .refs import resolve_head

UNSET = -1

_VERSION_RE = re.compile(r"[0-9]+(\.[0-9]+){1,3}")


@dataclass(frozen=True, order=True)
class Version:
    major: int
    minor: int
    build: int = UNSET
    revision: int = UNSET

    def __post_init__(self) -> None:
        parts = self.as_tuple()
        for name, value in zip(("major", "minor", "build", "revision"), parts):
            if value < UNSET:
                raise ValueError(f"{name} must be >= 0 or unset, got {value}")
        if self.major == UNSET or self.minor == UNSET:
            raise ValueError("major and minor must be set")
        if self.build == UNSET and self.revision != UNSET:
            raise ValueError(f"revision {self.revision} set without build")

    @classmethod
    def parse(cls, text: str) -> "Version":
        text = text.strip()
        if not _VERSION_RE.fullmatch(text):
            raise ValueError(f"not a version: {text!r}")
        return cls(*(int(p) for p in text.split(".")))

    @classmethod
    def try_parse(cls, text: str) -> "Version | None":
        try:
            return cls.parse(text)
        except ValueError:
            return None

    def as_tuple(self) -> tuple[int, int, int, int]:
        return (self.major, self.minor, self.build, self.revision)

    def __str__(self) -> str:
        return ".".join(str(p) for p in self.as_tuple() if p != UNSET)


BASELINE = Version(0, 1)

IncrementStrategy = Callable[[Version], Version]


def default_increment(version: Version) -> Version:
    if version.revision != UNSET:
        return replace(version, revision=version.revision + 1)
    if version.build != UNSET:
        return replace(version, build=version.build + 1)
    return replace(version, minor=version.minor + 1)


def _zero_if_set(value: int) -> int:
    return UNSET if value == UNSET else 0


def bump_major(version: Version) -> Version:
    return Version(version.major + 1, 0, _zero_if_set(version.build), _zero_if_set(version.revision))


def bump_minor(version: Version) -> Version:
    return Version(version.major, version.minor + 1, _zero_if_set(version.build), _zero_if_set(version.revision))


def bump_build(version: Version) -> Version:
    return Version(version.major, version.minor, max(version.build, 0) + 1, _zero_if_set(version.revision))


def bump_revision(version: Version) -> Version:
    return Version(version.major, version.minor, max(version.build, 0), max(version.revision, 0) + 1)


INCREMENT_STRATEGIES: dict[str, IncrementStrategy] = {
    "default": default_increment,
    "major": bump_major,
    "minor": bump_minor,
    "build": bump_build,
    "revision": bump_revision,
}


@dataclass(frozen=True)
class VersionTag:
    name: str
    hash: str
    version: Version


@dataclass(frozen=True)
class IncrementVersionSettings:
    branch: str = "default"
    increment: IncrementStrategy = default_increment
    tag_prefix: str = ""


class VersionResolver:
    def __init__(self, hg: HgClient) -> None:
        self.hg = hg

    def version_tags(self, repo_path: Path, branch: str = "default", *, tag_prefix: str = "") -> list[VersionTag]:
        """Version tags reachable from the head of `branch`, oldest version first."""
        cwd = self._repository(Path(repo_path))
        if self.hg.tip(cwd=cwd) is None:
            return []
        head = resolve_head(self.hg, branch, cwd=cwd)

        by_version: dict[Version, VersionTag] = {}
        for tag in self.hg.tags(cwd=cwd):
            if not tag.name.startswith(tag_prefix):
                continue
            version = Version.try_parse(tag.name[len(tag_prefix) :])
            if version is None or not self.hg.is_ancestor(tag.hash, head.hash, cwd=cwd):
                continue
            if version in by_version:
                continue
            by_version[version] = VersionTag(name=tag.name, hash=tag.hash, version=version)
        return [by_version[v] for v in sorted(by_version)]

    def current_version(self, repo_path: Path, branch: str = "default", *, tag_prefix: str = "") -> Version | None:
        tags = self.version_tags(repo_path, branch, tag_prefix=tag_prefix)
        return tags[-1].version if tags else None

    def next_version(self, repo_path: Path, settings: IncrementVersionSettings | None = None) -> Version:
        settings = settings or IncrementVersionSettings()
        current = self.current_version(repo_path, settings.branch, tag_prefix=settings.tag_prefix)
        base = current if current is not None else BASELINE
        result = settings.increment(base)
        print(
            f"[hgflow] {settings.branch}: latest={current or 'none'} base={base} next={result}",
            file=sys.stderr,
        )
        return result

    def tag_version(
        self,
        repo_path: Path,
        version: Version,
        *,
        rev: str | None = None,
        tag_prefix: str = "",
        message: str | None = None,
    ) -> str:
        cwd = self._repository(Path(repo_path))
        name = f"{tag_prefix}{version}"
        if any(t.name == name for t in self.hg.tags(cwd=cwd)):
            raise PreconditionViolated(f"tag {name!r} already exists")
        target = self.hg.identify(rev or ".", cwd=cwd)
        if target is None:
            raise AmbiguousReference(rev or ".")
        self.hg.tag(name, rev=target.hash, message=message or f"Added tag {name} for changeset {target.hash[:12]}", cwd=cwd)
        print(f"[hgflow] tagged {target.hash[:12]} as {name}", file=sys.stderr)
        return name

    def _repository(self, repo_path: Path) -> Path:
        if not repo_path.is_dir():
            raise PreconditionViolated(f"repository path does not exist: {repo_path}")
        cwd = repo_path.resolve()
        if not self.hg.is_repository(cwd=cwd):
            raise PreconditionViolated(f"not a Mercurial repository: {cwd}")
        return cwd


def resolve_next_version(
    repo_path: Path | str,
    branch: str = "default",
    increment: IncrementStrategy = default_increment,
    *,
    tag_prefix: str = "",
    hg: HgClient | None = None,
) -> Version:
    settings = IncrementVersionSettings(branch=branch, increment=increment, tag_prefix=tag_prefix)
    return VersionResolver(hg or HgClient()).next_version(Path(repo_path), settings)


def resolve_current_version(
    repo_path: Path | str,
    branch: str = "default",
    *,
    tag_prefix: str = "",
    hg: HgClient | None = None,
) -> Version | None:
    return VersionResolver(hg or HgClient()).current_version(Path(repo_path), branch, tag_prefix=tag_prefix)


def tag_version(
    repo_path: Path | str,
    version: Version,
    *,
    rev: str | None = None,
    tag_prefix: str = "",
    message: str | None = None,
    hg: HgClient | None = None,
) -> str:
    return VersionResolver(hg or HgClient()).tag_version(
        Path(repo_path), version, rev=rev, tag_prefix=tag_prefix, message=message
    )
