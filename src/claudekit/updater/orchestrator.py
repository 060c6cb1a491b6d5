"""Update orchestrator: check, apply with automatic rollback, manual rollback.

Lifecycle of an update:
1. Read the installed version and fetch the target manifest
2. Download the content of every file the update will write
3. Snapshot the installation (nothing has changed on disk before this)
4. Plan the file actions against the preservation policy
5. Apply the plan; on any failure or cancellation restore the snapshot
6. Write the new version marker last; that write commits the update
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from datetime import UTC, datetime

from claudekit.constants import LATEST
from claudekit.logging import get_logger
from claudekit.updater.backup import BackupManager
from claudekit.updater.errors import (
    ApplyError,
    BackupError,
    FetchError,
    ManifestError,
    OperationInProgressError,
    RollbackError,
    SnapshotNotFoundError,
    UpdaterError,
    VersionWriteError,
)
from claudekit.updater.fs import atomic_write_bytes, remove_empty_parents
from claudekit.updater.models import (
    ActionKind,
    Installation,
    Manifest,
    Snapshot,
    UpdatePlan,
    UpdateResult,
    UpdateState,
)
from claudekit.updater.planner import UpdatePlanner
from claudekit.updater.policy import PreservationPolicy
from claudekit.updater.source import ReleaseSource
from claudekit.updater.version import (
    Version,
    VersionStore,
    is_update_available,
    parse_version,
)

log = get_logger("claudekit.updater.orchestrator")

ProgressCallback = Callable[[UpdateState, str], None]


def _now_iso() -> str:
    return datetime.now(UTC).isoformat()


def _record_error(result: UpdateResult, exc: BaseException) -> None:
    result.error = exc.message if isinstance(exc, UpdaterError) else str(exc) or repr(exc)
    result.error_code = exc.code if isinstance(exc, UpdaterError) else "UNEXPECTED_ERROR"


class UpdateOrchestrator:
    """Runs update operations against one installation, one at a time.

    The lock only serializes operations within this process. Callers must
    make sure no other process updates or rolls back the same installation
    concurrently.
    """

    def __init__(
        self,
        installation: Installation,
        source: ReleaseSource,
        *,
        policy: PreservationPolicy | None = None,
        version_store: VersionStore | None = None,
        backups: BackupManager | None = None,
        planner: UpdatePlanner | None = None,
        progress: ProgressCallback | None = None,
    ) -> None:
        self._installation = installation
        self._source = source
        self._policy = policy or PreservationPolicy.default()
        self._versions = version_store or VersionStore()
        self._backups = backups or BackupManager(installation)
        self._planner = planner or UpdatePlanner(self._policy)
        self._progress = progress
        self._lock = asyncio.Lock()
        self._state = UpdateState.IDLE
        self.last_result: UpdateResult | None = None

    # ------------------------------------------------------------------
    # Public status surface
    # ------------------------------------------------------------------

    @property
    def state(self) -> UpdateState:
        return self._state

    @property
    def is_busy(self) -> bool:
        return self._lock.locked()

    @property
    def installation(self) -> Installation:
        return self._installation

    @property
    def backups(self) -> BackupManager:
        return self._backups

    # ------------------------------------------------------------------
    # Primary flows
    # ------------------------------------------------------------------

    async def check(self, target: str = LATEST) -> UpdateResult:
        """Report the installed and target versions without touching disk."""
        async with self._exclusive() as result:
            try:
                await self._check(result, target)
            except FetchError as exc:
                self._fail(result, exc)
            return result

    async def apply(
        self, target: str = LATEST, *, dry_run: bool = False, force: bool = False
    ) -> UpdateResult:
        """Update the installation to ``target``.

        With ``dry_run`` the plan is computed and returned but no snapshot is
        taken and nothing is written. With ``force`` the release is applied
        even when the installed version is not older.
        """
        async with self._exclusive() as result:
            try:
                current, manifest, available = await self._check(result, target)
            except FetchError as exc:
                self._fail(result, exc)
                return result
            if not available and not force:
                return result

            self._transition(result, UpdateState.DOWNLOADING, f"fetching {manifest.version}")
            try:
                manifest = await self._source.resolve_content(
                    manifest, self._planner.content_paths(self._installation, manifest)
                )
            except FetchError as exc:
                self._fail(result, exc)
                return result

            if dry_run:
                self._transition(result, UpdateState.PLANNING)
                try:
                    result.plan = self._planner.plan(self._installation, manifest)
                except ValueError as exc:
                    self._fail(result, exc)
                    return result
                result.dry_run = True
                self._transition(result, UpdateState.UPDATE_AVAILABLE, "dry run; no changes made")
                return result

            self._transition(result, UpdateState.BACKING_UP)
            try:
                snapshot = self._backups.create(str(current) if current else None)
            except BackupError as exc:
                self._fail(result, exc)
                return result
            result.snapshot_id = snapshot.id

            self._transition(result, UpdateState.PLANNING)
            try:
                plan = self._planner.plan(self._installation, manifest)
            except ValueError as exc:
                self._fail(result, exc)
                return result
            result.plan = plan

            self._transition(result, UpdateState.APPLYING, f"{len(plan.actions)} actions")
            try:
                await self._apply_plan(plan, snapshot.id)
                self._versions.write(self._installation, manifest.version)
            except asyncio.CancelledError as exc:
                self._recover(result, snapshot, exc)
                raise
            except Exception as exc:
                log.exception("update_apply_failed", snapshot_id=snapshot.id)
                self._recover(result, snapshot, exc)
                return result

            self._transition(result, UpdateState.SUCCEEDED, f"now at {manifest.version}")
            log.info(
                "update_succeeded",
                version=manifest.version,
                snapshot_id=snapshot.id,
                writes=len(plan.writes),
                deletes=len(plan.deletes),
            )
            return result

    async def rollback(self, snapshot_id: str | None = None) -> UpdateResult:
        """Restore the newest snapshot, or the one named by ``snapshot_id``."""
        async with self._exclusive() as result:
            current = self._versions.read_or_none(self._installation)
            result.current_version = str(current) if current else None
            self._transition(result, UpdateState.ROLLING_BACK, snapshot_id or "latest snapshot")
            try:
                if snapshot_id:
                    snapshot = self._backups.get(snapshot_id)
                else:
                    latest = self._backups.latest()
                    if latest is None:
                        raise SnapshotNotFoundError(LATEST)
                    snapshot = latest
                result.snapshot_id = snapshot.id
                result.target_version = snapshot.source_version
                self._restore(snapshot)
            except (SnapshotNotFoundError, RollbackError, VersionWriteError) as exc:
                _record_error(result, exc)
                self._transition(result, UpdateState.ROLLBACK_FAILED, result.error or "")
                return result

            result.current_version = snapshot.source_version
            self._transition(result, UpdateState.ROLLED_BACK, f"restored {snapshot.id}")
            return result

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def _exclusive(self) -> AsyncIterator[UpdateResult]:
        if self._lock.locked():
            raise OperationInProgressError("Another update operation is already running")
        async with self._lock:
            result = UpdateResult(status=UpdateState.IDLE)
            self._state = UpdateState.IDLE
            try:
                yield result
            finally:
                result.completed_at = _now_iso()
                self.last_result = result
                self._state = UpdateState.IDLE

    def _transition(self, result: UpdateResult, state: UpdateState, message: str = "") -> None:
        self._state = state
        result.status = state
        result.transitions.append(state.value)
        log.info("update_state_changed", state=state.value, detail=message)
        if self._progress is not None:
            self._progress(state, message)

    def _fail(self, result: UpdateResult, exc: BaseException) -> None:
        _record_error(result, exc)
        log.error("update_failed", error=result.error, code=result.error_code)
        self._transition(result, UpdateState.FAILED, result.error or "")

    async def _check(
        self, result: UpdateResult, target: str
    ) -> tuple[Version | None, Manifest, bool]:
        self._transition(result, UpdateState.CHECKING_VERSION)
        current = self._versions.read_or_none(self._installation)
        result.current_version = str(current) if current else None

        manifest = await self._source.fetch_manifest(target)
        try:
            latest = parse_version(manifest.version)
        except ValueError as exc:
            raise ManifestError(
                f"Release version is not valid: {manifest.version}",
                details={"version": manifest.version},
                cause=exc,
            ) from exc
        result.target_version = manifest.version

        untracked = [p for p in manifest.paths if not self._installation.tracks(p)]
        if untracked:
            raise ManifestError(
                f"Release ships paths outside {self._installation.kit_dir}/: "
                + ", ".join(untracked),
                details={"version": manifest.version, "paths": untracked},
            )

        available = is_update_available(current, latest)
        result.update_available = available
        if available:
            self._transition(result, UpdateState.UPDATE_AVAILABLE, manifest.version)
        else:
            self._transition(result, UpdateState.UP_TO_DATE, manifest.version)
        return current, manifest, available

    async def _apply_plan(self, plan: UpdatePlan, snapshot_id: str) -> None:
        inst = self._installation
        for action in plan.actions:
            if not action.mutates:
                continue
            path = inst.path_for(action.path)
            try:
                if action.kind is ActionKind.WRITE:
                    if path.is_dir() and not path.is_symlink():
                        raise IsADirectoryError(str(path))
                    atomic_write_bytes(path, action.content or b"")
                else:
                    path.unlink(missing_ok=True)
                    remove_empty_parents(path, inst.kit_path)
            except OSError as exc:
                raise ApplyError(
                    action.path, action.kind.value, cause=exc, snapshot_id=snapshot_id
                ) from exc
            log.debug("update_action_applied", kind=action.kind.value, path=action.path)
            # Cancellation point between file actions
            await asyncio.sleep(0)

    def _restore(self, snapshot: Snapshot) -> None:
        self._backups.restore(snapshot, self._policy)
        if snapshot.source_version is not None:
            self._versions.write(self._installation, snapshot.source_version)

    def _recover(self, result: UpdateResult, snapshot: Snapshot, exc: BaseException) -> None:
        """Restore ``snapshot`` after a failed or cancelled apply."""
        if isinstance(exc, asyncio.CancelledError):
            result.error = "update cancelled"
            result.error_code = "CANCELLED"
        else:
            _record_error(result, exc)
        self._transition(result, UpdateState.FAILED, result.error or "")
        self._transition(result, UpdateState.ROLLING_BACK, snapshot.id)
        try:
            self._restore(snapshot)
        except (RollbackError, VersionWriteError) as rb_exc:
            log.critical(
                "update_rollback_failed",
                snapshot_id=snapshot.id,
                error=str(rb_exc),
                original_error=result.error,
            )
            result.error = f"{result.error}; rollback failed: {rb_exc.message}"
            result.error_code = rb_exc.code
            self._transition(result, UpdateState.ROLLBACK_FAILED, f"restore {snapshot.id} by hand")
            return
        self._transition(result, UpdateState.ROLLED_BACK, f"restored {snapshot.id}")
