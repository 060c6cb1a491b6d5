"""Error hierarchy for the update engine.

Every error carries a machine-readable ``code`` and a ``details`` mapping
(path, operation, snapshot id, ...) so a failure can be diagnosed from the
log line or CLI report alone.
"""

from __future__ import annotations

from typing import Any


class UpdaterError(Exception):
    """Base class for all update engine errors."""

    default_code = "UPDATER_ERROR"

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        details: dict[str, Any] | None = None,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.details = details or {}
        self.cause = cause

    def __str__(self) -> str:
        s = f"[{self.code}] {self.message}"
        if self.details:
            s += f" (details: {self.details})"
        if self.cause is not None:
            s += f" caused by: {self.cause}"
        return s

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": self.code,
            "message": self.message,
            "details": self.details,
        }


class VersionReadError(UpdaterError):
    """The version marker is missing or unparsable.

    Non-fatal: the installation is treated as unversioned.
    """

    default_code = "VERSION_UNREADABLE"

    def __init__(self, path: str, reason: str, cause: BaseException | None = None) -> None:
        super().__init__(
            f"Cannot read version marker {path}: {reason}",
            details={"path": path, "reason": reason},
            cause=cause,
        )
        self.reason = reason


class VersionWriteError(UpdaterError):
    """Writing the version marker failed."""

    default_code = "VERSION_WRITE_FAILED"

    def __init__(self, path: str, version: str, cause: BaseException | None = None) -> None:
        super().__init__(
            f"Cannot write version {version} to {path}",
            details={"path": path, "version": version},
            cause=cause,
        )


class FetchError(UpdaterError):
    """A release could not be fetched from its origin."""

    default_code = "FETCH_FAILED"


class ManifestError(FetchError):
    """A fetched manifest is malformed or inconsistent."""

    default_code = "MANIFEST_INVALID"


class ChecksumError(FetchError):
    """Fetched content does not match the digest published in the manifest."""

    default_code = "CHECKSUM_MISMATCH"

    def __init__(self, path: str, expected: str, actual: str) -> None:
        super().__init__(
            f"Checksum mismatch for {path}",
            details={"path": path, "expected": expected, "actual": actual},
        )


class BackupError(UpdaterError):
    """A snapshot could not be created; nothing has been modified."""

    default_code = "BACKUP_FAILED"


class SnapshotNotFoundError(UpdaterError):
    """The requested snapshot does not exist."""

    default_code = "SNAPSHOT_NOT_FOUND"

    def __init__(self, snapshot_id: str) -> None:
        super().__init__(
            f"Snapshot not found: {snapshot_id}",
            details={"snapshot_id": snapshot_id},
        )


class ApplyError(UpdaterError):
    """A single write/delete of an update plan failed."""

    default_code = "APPLY_FAILED"

    def __init__(
        self,
        path: str,
        operation: str,
        cause: BaseException | None = None,
        snapshot_id: str | None = None,
    ) -> None:
        super().__init__(
            f"Failed to {operation} {path}",
            details={"path": path, "operation": operation, "snapshot_id": snapshot_id},
            cause=cause,
        )


class RollbackError(UpdaterError):
    """Restoring a snapshot failed; manual recovery is required."""

    default_code = "ROLLBACK_FAILED"

    def __init__(
        self,
        snapshot_id: str,
        reason: str,
        path: str | None = None,
        cause: BaseException | None = None,
    ) -> None:
        details: dict[str, Any] = {"snapshot_id": snapshot_id, "reason": reason}
        if path is not None:
            details["path"] = path
        super().__init__(
            f"Failed to restore snapshot {snapshot_id}: {reason}",
            details=details,
            cause=cause,
        )
        self.snapshot_id = snapshot_id


class OperationInProgressError(UpdaterError):
    """Another update or rollback is already running on this orchestrator."""

    default_code = "OPERATION_IN_PROGRESS"
