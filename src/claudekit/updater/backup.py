"""Snapshot creation, listing, pruning and restore.

A snapshot is a directory next to the kit directory::

    <project>/.claude-backup-<id>/
        snapshot.json     id, created_at, source_version, digests, directories
        files/<relpath>   a copy of every tracked file

Snapshots are built under a ``.partial`` name and renamed into place only
once complete, so a snapshot either exists in full or not at all.
"""

from __future__ import annotations

import json
import shutil
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from pathlib import Path

from claudekit.constants import BACKUP_PREFIX, PARTIAL_SUFFIX, SNAPSHOT_ID_FORMAT, SNAPSHOT_METADATA
from claudekit.logging import get_logger
from claudekit.updater.errors import BackupError, RollbackError, SnapshotNotFoundError
from claudekit.updater.fs import atomic_copy, atomic_write_bytes, sha256_file
from claudekit.updater.models import Installation, Snapshot
from claudekit.updater.policy import PreservationPolicy

log = get_logger("claudekit.updater.backup")


def _utcnow() -> datetime:
    return datetime.now(UTC)


class BackupManager:
    """Creates and restores immutable snapshots of one installation."""

    def __init__(
        self,
        installation: Installation,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._installation = installation
        self._clock = clock or _utcnow

    @property
    def backup_root(self) -> Path:
        return self._installation.root

    def _snapshot_dir(self, snapshot_id: str) -> Path:
        return self.backup_root / f"{BACKUP_PREFIX}{snapshot_id}"

    def _new_id(self) -> tuple[str, datetime]:
        now = self._clock()
        snapshot_id = now.strftime(SNAPSHOT_ID_FORMAT)
        while self._snapshot_dir(snapshot_id).exists():
            now += timedelta(microseconds=1)
            snapshot_id = now.strftime(SNAPSHOT_ID_FORMAT)
        return snapshot_id, now

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    def create(self, source_version: str | None) -> Snapshot:
        """Copy every tracked file of the installation into a new snapshot.

        Raises BackupError on any I/O failure; the partial copy is removed
        and the installation is left untouched.
        """
        inst = self._installation
        snapshot_id, created_at = self._new_id()
        final_dir = self._snapshot_dir(snapshot_id)
        partial_dir = final_dir.with_name(final_dir.name + PARTIAL_SUFFIX)

        try:
            if partial_dir.exists():
                shutil.rmtree(partial_dir)
            snapshot = Snapshot(
                id=snapshot_id,
                created_at=created_at,
                source_version=source_version,
                path=partial_dir,
                directories=tuple(inst.directories()),
            )
            snapshot.files_root.mkdir(parents=True)

            for relpath in inst.inventory():
                dst = snapshot.files_root / relpath
                dst.parent.mkdir(parents=True, exist_ok=True)
                shutil.copy2(inst.path_for(relpath), dst, follow_symlinks=False)
                snapshot.files[relpath] = sha256_file(dst)

            atomic_write_bytes(
                partial_dir / SNAPSHOT_METADATA,
                json.dumps(snapshot.to_dict(), indent=2).encode("utf-8"),
            )
            partial_dir.rename(final_dir)
        except OSError as exc:
            shutil.rmtree(partial_dir, ignore_errors=True)
            log.error("snapshot_create_failed", snapshot_id=snapshot_id, error=str(exc))
            raise BackupError(
                f"Failed to create snapshot {snapshot_id}: {exc}",
                details={"snapshot_id": snapshot_id, "path": str(partial_dir)},
                cause=exc,
            ) from exc

        log.info(
            "snapshot_created",
            snapshot_id=snapshot_id,
            source_version=source_version,
            files=len(snapshot.files),
        )
        return Snapshot(
            id=snapshot.id,
            created_at=snapshot.created_at,
            source_version=snapshot.source_version,
            path=final_dir,
            files=snapshot.files,
            directories=snapshot.directories,
        )

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def _load(self, path: Path) -> Snapshot:
        data = json.loads((path / SNAPSHOT_METADATA).read_text(encoding="utf-8"))
        return Snapshot.from_dict(data, path)

    def list_snapshots(self) -> list[Snapshot]:
        """Return complete snapshots, newest first.

        Partial directories and snapshots with unreadable metadata are skipped.
        """
        snapshots: list[Snapshot] = []
        if not self.backup_root.is_dir():
            return snapshots
        for path in self.backup_root.glob(f"{BACKUP_PREFIX}*"):
            if not path.is_dir() or path.name.endswith(PARTIAL_SUFFIX):
                continue
            try:
                snapshots.append(self._load(path))
            except (OSError, ValueError, KeyError, TypeError) as exc:
                log.warning("snapshot_metadata_unreadable", path=str(path), error=str(exc))
        snapshots.sort(key=lambda s: (s.created_at, s.id), reverse=True)
        return snapshots

    def latest(self) -> Snapshot | None:
        snapshots = self.list_snapshots()
        return snapshots[0] if snapshots else None

    def get(self, snapshot_id: str) -> Snapshot:
        """Load one snapshot by id.

        Raises SnapshotNotFoundError if there is no such snapshot and
        RollbackError if its metadata cannot be read.
        """
        if not snapshot_id or "/" in snapshot_id or "\\" in snapshot_id:
            raise SnapshotNotFoundError(snapshot_id)
        path = self._snapshot_dir(snapshot_id)
        if not path.is_dir():
            raise SnapshotNotFoundError(snapshot_id)
        try:
            return self._load(path)
        except (OSError, ValueError, KeyError, TypeError) as exc:
            raise RollbackError(
                snapshot_id, "snapshot metadata unreadable", cause=exc
            ) from exc

    # ------------------------------------------------------------------
    # Restore
    # ------------------------------------------------------------------

    def _verify(self, snapshot: Snapshot) -> None:
        for relpath, digest in snapshot.files.items():
            stored = snapshot.files_root / relpath
            if not (stored.exists() or stored.is_symlink()):
                raise RollbackError(snapshot.id, "snapshot file missing", path=relpath)
            if sha256_file(stored) != digest:
                raise RollbackError(snapshot.id, "snapshot file corrupted", path=relpath)

    def restore(self, snapshot: Snapshot, policy: PreservationPolicy | None = None) -> None:
        """Make the tracked tree match ``snapshot`` exactly.

        With a ``policy``, preserved files present on disk are left as they
        are; preserved files missing on disk are restored from the snapshot.
        The live version marker is never consulted.

        Raises RollbackError if the snapshot is damaged or any step fails.
        """
        inst = self._installation

        def keep_live(relpath: str) -> bool:
            return policy is not None and policy.is_preserved(relpath)

        current = ""
        try:
            self._verify(snapshot)
            for relpath in inst.inventory():
                if relpath in snapshot.files or keep_live(relpath):
                    continue
                current = relpath
                inst.path_for(relpath).unlink()

            restored: list[str] = []
            for relpath in sorted(snapshot.files):
                live = inst.path_for(relpath)
                if keep_live(relpath) and (live.exists() or live.is_symlink()):
                    continue
                current = relpath
                atomic_copy(snapshot.files_root / relpath, live)
                restored.append(relpath)

            current = ""
            recorded = set(snapshot.directories)
            for relpath in snapshot.directories:
                inst.path_for(relpath).mkdir(parents=True, exist_ok=True)
            for relpath in sorted(inst.directories(), reverse=True):
                path = inst.path_for(relpath)
                if relpath not in recorded and not any(path.iterdir()):
                    path.rmdir()

            for relpath in restored:
                if sha256_file(inst.path_for(relpath)) != snapshot.files[relpath]:
                    raise RollbackError(
                        snapshot.id, "restored file does not match", path=relpath
                    )
        except OSError as exc:
            log.error("snapshot_restore_failed", snapshot_id=snapshot.id, path=current)
            raise RollbackError(
                snapshot.id, str(exc), path=current or None, cause=exc
            ) from exc

        log.info("snapshot_restored", snapshot_id=snapshot.id, files=len(restored))

    # ------------------------------------------------------------------
    # Retention
    # ------------------------------------------------------------------

    def prune(self, keep: int) -> list[str]:
        """Delete all but the newest ``keep`` snapshots and any stale partials.

        Returns the ids of removed snapshots.
        """
        if keep < 0:
            raise ValueError("keep must be >= 0")
        removed: list[str] = []
        for snapshot in self.list_snapshots()[keep:]:
            try:
                shutil.rmtree(snapshot.path)
            except OSError as exc:
                raise BackupError(
                    f"Failed to remove snapshot {snapshot.id}: {exc}",
                    details={"snapshot_id": snapshot.id},
                    cause=exc,
                ) from exc
            removed.append(snapshot.id)
        for partial in self.backup_root.glob(f"{BACKUP_PREFIX}*{PARTIAL_SUFFIX}"):
            shutil.rmtree(partial, ignore_errors=True)
        if removed:
            log.info("snapshots_pruned", removed=removed, kept=keep)
        return removed
