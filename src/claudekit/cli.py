"""Command-line entry point for updating a ClaudeKit installation.

Usage:
    claudekit-update                        # Show the plan and ask before applying
    claudekit-update --check                # Report installed and latest versions
    claudekit-update --auto                 # Update without prompting
    claudekit-update --auto --dry-run       # Show what an update would change
    claudekit-update --rollback             # Restore the newest backup (asks first)
    claudekit-update --rollback --auto      # Restore the newest backup without asking
    claudekit-update --rollback --snapshot 20260101-120000-000000
    claudekit-update --list-backups
    claudekit-update --prune 3              # Keep only the three newest backups

The release origin defaults to ``CLAUDEKIT_RAW_URL`` and may be an http(s)
URL, a file:// URL or a local directory.
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import sys
from enum import IntEnum
from pathlib import Path

from claudekit import __version__
from claudekit.config import get_settings
from claudekit.constants import LATEST
from claudekit.logging import get_logger, setup_logging
from claudekit.updater.errors import UpdaterError
from claudekit.updater.models import Installation, UpdateResult, UpdateState
from claudekit.updater.orchestrator import UpdateOrchestrator
from claudekit.updater.policy import PreservationPolicy
from claudekit.updater.source import create_release_source

log = get_logger("claudekit.cli")


class ExitCode(IntEnum):
    """Process exit codes (2 is left to argparse usage errors)."""

    OK = 0
    ERROR = 1
    FETCH_FAILED = 3
    BACKUP_FAILED = 4
    APPLY_FAILED = 5
    ROLLBACK_FAILED = 6
    TIMEOUT = 7
    INTERRUPTED = 130


_FETCH_CODES = frozenset({"FETCH_FAILED", "MANIFEST_INVALID", "CHECKSUM_MISMATCH"})


def exit_code_for(result: UpdateResult) -> ExitCode:
    """Map an operation result to the process exit code."""
    if result.ok:
        return ExitCode.OK
    if result.status is UpdateState.ROLLBACK_FAILED:
        return ExitCode.ROLLBACK_FAILED
    if result.status is UpdateState.ROLLED_BACK:
        return ExitCode.APPLY_FAILED
    if result.error_code in _FETCH_CODES:
        return ExitCode.FETCH_FAILED
    if result.error_code == "BACKUP_FAILED":
        return ExitCode.BACKUP_FAILED
    return ExitCode.ERROR


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="claudekit-update",
        description="Update, back up and roll back a ClaudeKit installation",
    )
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument("--check", action="store_true", help="Only report version status")
    mode.add_argument("--rollback", action="store_true", help="Restore a backup")
    mode.add_argument("--list-backups", action="store_true", help="List available backups")
    mode.add_argument(
        "--prune",
        type=int,
        nargs="?",
        const=-1,
        metavar="KEEP",
        help="Delete all but the newest KEEP backups (default: CLAUDEKIT_BACKUP_KEEP)",
    )
    parser.add_argument("--auto", action="store_true", help="Do not ask for confirmation")
    parser.add_argument("--snapshot", metavar="ID", help="Backup to restore with --rollback")
    parser.add_argument("--target", default=LATEST, help="Release to install (default: latest)")
    parser.add_argument("--origin", help="Release origin (default: CLAUDEKIT_RAW_URL)")
    parser.add_argument("--project-dir", help="Project root holding .claude (default: cwd)")
    parser.add_argument("--dry-run", action="store_true", help="Plan the update only")
    parser.add_argument("--force", action="store_true", help="Reinstall even if up to date")
    parser.add_argument("--timeout", type=float, help="Abort (and roll back) after N seconds")
    parser.add_argument("-v", "--verbose", action="count", default=0, help="More log output")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


# ---------------------------------------------------------------------------
# Reporting
# ---------------------------------------------------------------------------


def _print_header() -> None:
    print("ClaudeKit Update")
    print("=" * 16)


def _print_versions(result: UpdateResult) -> None:
    print(f"Current Version: {result.current_version or 'unknown'}")
    if result.target_version is not None:
        print(f"Latest Version:  {result.target_version}")
    if result.update_available is not None:
        print(f"Update available: {'yes' if result.update_available else 'no'}")


def _print_plan(result: UpdateResult) -> None:
    plan = result.plan
    if plan is None:
        return
    print(f"Files to install: {len(plan.writes)}")
    for path in plan.writes:
        print(f"  + {path}")
    if plan.deletes:
        print(f"Files to remove: {len(plan.deletes)}")
        for path in plan.deletes:
            print(f"  - {path}")
    if plan.preserved:
        print("Preserved (not touched):")
        for path in plan.preserved:
            print(f"  = {path}")
    if plan.review:
        print("Review required (not touched):")
        for action in plan.review:
            print(f"  ? {action.path}: {action.reason}")


def _print_failure(result: UpdateResult, backup_root: Path) -> None:
    print(f"Error: {result.error} [{result.error_code}]", file=sys.stderr)
    if result.status is UpdateState.ROLLED_BACK:
        print(f"Changes were rolled back from backup {result.snapshot_id}.")
    elif result.status is UpdateState.ROLLBACK_FAILED and result.snapshot_id:
        print(
            "Automatic rollback FAILED. Restore manually with:\n"
            f"  claudekit-update --rollback --snapshot {result.snapshot_id}\n"
            f"  (backup directory under {backup_root})",
            file=sys.stderr,
        )


def _print_update(result: UpdateResult, backup_root: Path) -> None:
    _print_versions(result)
    if not result.ok:
        _print_failure(result, backup_root)
        return
    if result.dry_run:
        print("Dry run, no changes made.")
        _print_plan(result)
    elif result.status is UpdateState.SUCCEEDED:
        print(f"Updated to {result.target_version}")
        print(f"Backup: {result.snapshot_id}")
        _print_plan(result)
    else:
        print("Already up to date.")


def _print_rollback(result: UpdateResult, backup_root: Path) -> None:
    if not result.ok:
        _print_failure(result, backup_root)
        return
    print(f"Restored backup {result.snapshot_id}")
    print(f"Current Version: {result.current_version or 'unknown'}")


def _interactive() -> bool:
    return sys.stdin is not None and sys.stdin.isatty()


def _confirm(question: str) -> bool:
    try:
        answer = input(f"{question} [y/N] ")
    except EOFError:
        return False
    return answer.strip().lower() in ("y", "yes")


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


def _list_backups(orchestrator: UpdateOrchestrator) -> ExitCode:
    snapshots = orchestrator.backups.list_snapshots()
    if not snapshots:
        print("No backups found.")
        return ExitCode.OK
    print(f"{'ID':<24} {'VERSION':<12} {'FILES':>5}  CREATED")
    for s in snapshots:
        print(
            f"{s.id:<24} {s.source_version or '-':<12} {len(s.files):>5}  "
            f"{s.created_at.isoformat(timespec='seconds')}"
        )
    return ExitCode.OK


def _prune(orchestrator: UpdateOrchestrator, keep: int) -> ExitCode:
    removed = orchestrator.backups.prune(keep)
    for snapshot_id in removed:
        print(f"Removed backup {snapshot_id}")
    print(f"{len(removed)} backup(s) removed, keeping up to {keep}.")
    return ExitCode.OK


async def _run(args: argparse.Namespace, orchestrator: UpdateOrchestrator) -> ExitCode:
    backup_root = orchestrator.backups.backup_root

    if args.rollback:
        if not args.auto:
            which = args.snapshot or "the newest backup"
            if not _confirm(f"Restore {which}? Current files will be replaced."):
                print("Rollback cancelled.")
                return ExitCode.OK
        result = await orchestrator.rollback(args.snapshot)
        _print_rollback(result, backup_root)
        return exit_code_for(result)

    _print_header()
    if args.check or (not args.auto and not args.dry_run and not _interactive()):
        result = await orchestrator.check(args.target)
        _print_versions(result)
        if not result.ok:
            _print_failure(result, backup_root)
        return exit_code_for(result)

    if args.auto or args.dry_run:
        result = await orchestrator.apply(args.target, dry_run=args.dry_run, force=args.force)
        _print_update(result, backup_root)
        return exit_code_for(result)

    # Interactive: show the plan, then ask
    preview = await orchestrator.apply(args.target, dry_run=True, force=args.force)
    _print_update(preview, backup_root)
    if not preview.ok or not preview.dry_run:
        return exit_code_for(preview)
    if not _confirm("Apply this update?"):
        print("Update cancelled.")
        return ExitCode.OK
    print()
    result = await orchestrator.apply(args.target, force=args.force)
    _print_update(result, backup_root)
    return exit_code_for(result)


async def _run_with_timeout(
    args: argparse.Namespace, orchestrator: UpdateOrchestrator
) -> ExitCode:
    timeout = asyncio.timeout(args.timeout) if args.timeout else contextlib.nullcontext()
    async with timeout:
        return await _run(args, orchestrator)


def main(argv: list[str] | None = None) -> int:
    """Parse ``argv``, run the requested operation and return the exit code."""
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.snapshot and not args.rollback:
        parser.error("--snapshot requires --rollback")
    if args.timeout is not None and args.timeout <= 0:
        parser.error("--timeout must be > 0")

    settings = get_settings()
    level = {0: None, 1: "INFO"}.get(args.verbose, "DEBUG")
    setup_logging(level)

    installation = Installation(root=Path(args.project_dir or settings.project_dir).resolve())
    policy = PreservationPolicy.default(
        extra_preserved=settings.extra_preserve_patterns,
        extra_review=settings.extra_review_patterns,
    )
    origin = args.origin or settings.raw_url
    source = create_release_source(origin, timeout=settings.http_timeout)

    def progress(state: UpdateState, message: str) -> None:
        if args.verbose:
            print(f"[{state.value}] {message}".rstrip(), file=sys.stderr)

    orchestrator = UpdateOrchestrator(installation, source, policy=policy, progress=progress)
    log.debug("cli_started", project=str(installation.root), origin=origin)

    if args.list_backups:
        return _list_backups(orchestrator)

    try:
        if args.prune is not None:
            return _prune(orchestrator, settings.backup_keep if args.prune < 0 else args.prune)
        return asyncio.run(_run_with_timeout(args, orchestrator))
    except TimeoutError:
        print(f"Error: timed out after {args.timeout}s", file=sys.stderr)
        if orchestrator.last_result is not None:
            _print_failure(orchestrator.last_result, orchestrator.backups.backup_root)
        return ExitCode.TIMEOUT
    except KeyboardInterrupt:
        print("Interrupted.", file=sys.stderr)
        return ExitCode.INTERRUPTED
    except (UpdaterError, ValueError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return ExitCode.ERROR


def run() -> None:
    """Console script entry point."""
    sys.exit(main())


if __name__ == "__main__":
    run()
