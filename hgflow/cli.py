"""hgflow.cli

Command-line entrypoint for hgflow: branch-aware merges and tag-based version
derivation for Mercurial repositories.

Entry points
- `hgflow.cli:main`
- `python3 -m hgflow ...` (delegates to this module)

Subcommands
- `merge TARGET [--into BRANCH]`: merge TARGET (branch name or revision) into the
  checked-out branch, or into BRANCH. Prints the `MergeOutcome` value on stdout and exits
  0 on `success`, 1 on any other outcome (`unresolved_files`, `no_merge_needed`).
- `next-version [--branch B] [--strategy NAME] [--tag-prefix P]`: print the next version
  for branch B (default `default`). NAME is one of `hgflow.versions.INCREMENT_STRATEGIES`.
- `current-version [--branch B] [--tag-prefix P]`: print the latest tagged version
  reachable from B; exits 1 when there is none.
- `tag-next [--branch B] [--strategy NAME] [--tag-prefix P] [--rev R]`: compute the next
  version and record it as a tag on R (default: the working parent).

Global flags
- `--repo <path>`: repository to operate on.

Environment
- `HGFLOW_REPO`: default for `--repo`; otherwise the current working directory.
- `HGFLOW_HG`: hg executable (default `hg`).
- `HGFLOW_USER`: commit username passed to hg as `ui.username` (merge and tag commits).
- `HGFLOW_TAG_PREFIX`: default for `--tag-prefix`.

Output
Progress lines go to stderr (prefixed with `[hgflow]`); results go to stdout.

Failures
Exceptions are not caught here: precondition violations, unknown references, gateway
failures and aborted merges surface as a traceback and a non-zero exit status.
"""

from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path

from .hg_ops import HgClient
from .merge import MergeOrchestrator, MergeOutcome
from .versions import INCREMENT_STRATEGIES, IncrementVersionSettings, VersionResolver


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="hgflow", description="Branch-aware merges and version tags for Mercurial.")
    p.add_argument(
        "--repo",
        default=None,
        help="Repository path (default: $HGFLOW_REPO or the current directory).",
    )
    sub = p.add_subparsers(dest="command", required=True)

    merge_p = sub.add_parser("merge", help="Merge a branch or revision into the working (or given) branch.")
    merge_p.add_argument("target", help="Branch name or revision to merge in.")
    merge_p.add_argument(
        "--into",
        default=None,
        help="Destination branch. Defaults to the currently checked-out branch.",
    )

    tag_prefix_default = os.environ.get("HGFLOW_TAG_PREFIX", "")
    for name, help_text in (
        ("next-version", "Print the next version derived from tags."),
        ("current-version", "Print the latest tagged version."),
        ("tag-next", "Tag the working parent (or --rev) with the next version."),
    ):
        vp = sub.add_parser(name, help=help_text)
        vp.add_argument("--branch", default="default", help="Branch whose history is scanned (default: default).")
        vp.add_argument(
            "--tag-prefix",
            default=tag_prefix_default,
            help="Prefix in front of version tags, e.g. 'v' (default: $HGFLOW_TAG_PREFIX or none).",
        )
        if name != "current-version":
            vp.add_argument(
                "--strategy",
                default="default",
                choices=sorted(INCREMENT_STRATEGIES),
                help="Increment strategy (default: bump the most specific set component).",
            )
        if name == "tag-next":
            vp.add_argument("--rev", default=None, help="Revision to tag (default: working parent).")
    return p


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(sys.argv[1:] if argv is None else argv)

    repo_env = os.environ.get("HGFLOW_REPO")
    repo = Path(args.repo or repo_env or Path.cwd()).resolve()
    hg = HgClient(
        hg_cmd=os.environ.get("HGFLOW_HG", "hg"),
        username=os.environ.get("HGFLOW_USER") or None,
    )

    if args.command == "merge":
        outcome = MergeOrchestrator(hg).merge(repo, args.target, args.into)
        print(outcome.value)
        return 0 if outcome == MergeOutcome.SUCCESS else 1

    resolver = VersionResolver(hg)
    if args.command == "current-version":
        current = resolver.current_version(repo, args.branch, tag_prefix=args.tag_prefix)
        if current is None:
            print(f"[hgflow] no version tags reachable from {args.branch}", file=sys.stderr)
            return 1
        print(current)
        return 0

    settings = IncrementVersionSettings(
        branch=args.branch,
        increment=INCREMENT_STRATEGIES[args.strategy],
        tag_prefix=args.tag_prefix,
    )
    version = resolver.next_version(repo, settings)
    if args.command == "tag-next":
        print(resolver.tag_version(repo, version, rev=args.rev, tag_prefix=args.tag_prefix))
        return 0
    print(version)
    return 0
