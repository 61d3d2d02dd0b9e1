"""
Command-line interface for skipci.

Notes
-----
The CLI is intentionally thin. It builds the configuration once from the CI
environment, delegates to the engine, prints a status line and maps the
decision signal to a process exit code.

Exit codes (check command)
--------------------------
- 0: skip the guarded step (tree found, or already decided "skip" in this job).
- 1: configuration error.
- 2: fatal error (git or API failure).
- 3: already decided "no-skip" in this job (or forced).
- 4: tree not found in history.
- 5: empty tree for the configured paths.

Usage in a job script::

    ./skipci check || run-the-tests.sh
"""

from __future__ import annotations

import argparse
import logging
import os
from pathlib import Path
from typing import Mapping

from skip_engine.config import HISTORY_FILE_NAME, config_from_env, parse_paths
from skip_engine.data_models import EXIT_CODES, DecisionResult, DecisionSignal, HistoryStrategy
from skip_engine.decision import CURRENT_REVISION, build_engine
from skip_engine.errors import ConfigError, SkipError
from skip_engine.fingerprint import GitTreeFingerprint, digest
from skip_engine.history.local_log import LocalHistoryLog
from skip_engine.trace import SKIP_CI_DONE_KEY, oldest_ancestor_line

LOG_FORMAT = "%(levelname)s %(name)s: %(message)s"


def configure_logging(verbose: bool) -> None:
    """
    Configure process-wide logging.

    Parameters
    ----------
    verbose:
        DEBUG when True, WARNING otherwise.
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format=LOG_FORMAT,
        force=True,
    )


def build_parser() -> argparse.ArgumentParser:
    """
    Build and return the top-level argument parser.

    Returns
    -------
    argparse.ArgumentParser
        Configured parser.
    """
    parser = argparse.ArgumentParser(
        prog="skipci",
        description="Skip a CI job when its tree already succeeded in the past",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    check_p = sub.add_parser(
        "check",
        help="Decide whether the current job can be skipped (exit 0 = skip)",
    )
    check_p.add_argument(
        "--strategy",
        choices=[s.value for s in HistoryStrategy],
        default=None,
        help="History strategy: 'api' scans past jobs, 'cache' reads the local history log. "
        "Defaults to SKIP_CI_STRATEGY, then 'api'.",
    )
    check_p.add_argument(
        "--no-artifact",
        action="store_true",
        help="Do not download the artifacts of the matched job (same as SKIP_CI_NO_ARTIFACT=true).",
    )
    check_p.add_argument(
        "--verbose",
        action="store_true",
        help="Enable debug logging (same as SKIP_CI_VERBOSE=true).",
    )

    fp_p = sub.add_parser(
        "fingerprint",
        help="Print the fingerprint and digest of the configured paths",
    )
    fp_p.add_argument(
        "--revision",
        default=CURRENT_REVISION,
        help=f"Revision to fingerprint (default: {CURRENT_REVISION}).",
    )
    fp_p.add_argument(
        "--repo",
        type=Path,
        default=None,
        help="Repository directory (default: CI_PROJECT_DIR, then the current directory).",
    )
    fp_p.add_argument(
        "--paths",
        default=None,
        help="Space-separated paths (default: SKIP_IF_TREE_OK_IN_PAST).",
    )
    fp_p.add_argument("--verbose", action="store_true", help="Enable debug logging.")

    hist_p = sub.add_parser(
        "history",
        help="Print the entries of the local history log, newest first",
    )
    hist_p.add_argument(
        "--file",
        type=Path,
        default=None,
        help=f"History log path (default: <CI_PROJECT_DIR or .>/{HISTORY_FILE_NAME}).",
    )
    hist_p.add_argument(
        "--limit",
        type=int,
        default=20,
        help="Maximum number of entries to print (default: 20).",
    )

    return parser


def _print_result(result: DecisionResult) -> None:
    signal = result.signal
    if signal.is_skip and result.job_id is not None:
        print(f"tree found in job {result.job_url or result.job_id}")
        if result.oldest_ancestor:
            print(oldest_ancestor_line(result.oldest_ancestor))
        if signal is DecisionSignal.ARTIFACT_FETCH_FAILED_BUT_SKIPPED:
            print(f"WARNING: artifacts not restored: {result.message}")
    elif signal is DecisionSignal.NOT_FOUND:
        print("tree not found in the history of successful jobs")
    elif signal is DecisionSignal.TREE_EMPTY:
        print(f"ERROR: tree empty: {result.message}")
    elif signal in (DecisionSignal.CONFIG_ERROR, DecisionSignal.FATAL_ERROR):
        print(f"ERROR: {result.message}")


def _run_check(args: argparse.Namespace, environ: Mapping[str, str]) -> int:
    strategy = HistoryStrategy(args.strategy) if args.strategy else None
    try:
        config = config_from_env(
            environ,
            strategy=strategy,
            fetch_artifacts=False if args.no_artifact else None,
            verbose=True if args.verbose else None,
        )
    except ConfigError as exc:
        print(f"ERROR: {exc}")
        return EXIT_CODES[DecisionSignal.CONFIG_ERROR]

    configure_logging(config.verbose)
    logging.getLogger(__name__).debug("config =\n%s", config.describe())

    try:
        result = build_engine(config).decide()
    except SkipError as exc:
        print(f"ERROR: {exc}")
        return EXIT_CODES[DecisionSignal.FATAL_ERROR]

    _print_result(result)
    if result.signal not in (DecisionSignal.CONFIG_ERROR, DecisionSignal.FATAL_ERROR):
        print(SKIP_CI_DONE_KEY)
    return result.exit_code


def _project_dir(environ: Mapping[str, str]) -> Path:
    return Path(environ.get("CI_PROJECT_DIR") or ".")


def _run_fingerprint(args: argparse.Namespace, environ: Mapping[str, str]) -> int:
    configure_logging(args.verbose)
    raw_paths = args.paths if args.paths is not None else environ.get("SKIP_IF_TREE_OK_IN_PAST", "")
    paths = parse_paths(raw_paths)
    if not paths:
        print("ERROR: no paths given (use --paths or SKIP_IF_TREE_OK_IN_PAST)")
        return 1

    repo = args.repo if args.repo is not None else _project_dir(environ)
    try:
        listing = GitTreeFingerprint(repo_root=repo).fingerprint(args.revision, paths)
    except SkipError as exc:
        print(f"ERROR: {exc}")
        return 2
    print(listing, end="" if listing.endswith("\n") else "\n")
    print(f"digest: {digest(listing)}")
    return 0


def _run_history(args: argparse.Namespace, environ: Mapping[str, str]) -> int:
    path = args.file if args.file is not None else _project_dir(environ) / HISTORY_FILE_NAME
    entries = LocalHistoryLog(path=path, job_id="").read_entries()
    print(f"{len(entries)} entries in {path}")
    for entry in entries[: max(args.limit, 0)]:
        print(entry.to_line())
    return 0


def main(argv: list[str] | None = None, *, environ: Mapping[str, str] | None = None) -> int:
    """
    CLI entry point.

    Parameters
    ----------
    argv:
        Optional argument vector. If None, argparse uses sys.argv.
    environ:
        Optional environment mapping. If None, ``os.environ`` is used.

    Returns
    -------
    int
        Process exit code.
    """
    parser = build_parser()
    args = parser.parse_args(argv)
    env = environ if environ is not None else os.environ

    if args.command == "check":
        return _run_check(args, env)
    if args.command == "fingerprint":
        return _run_fingerprint(args, env)
    if args.command == "history":
        return _run_history(args, env)

    parser.print_help()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
