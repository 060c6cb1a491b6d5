"""Transactional update engine for ClaudeKit installations.

Checks a release origin for a newer kit, snapshots the installation,
applies the release while leaving user-owned files alone, and restores
the snapshot when anything goes wrong.
"""

from claudekit.updater.backup import BackupManager
from claudekit.updater.errors import (
    ApplyError,
    BackupError,
    ChecksumError,
    FetchError,
    ManifestError,
    OperationInProgressError,
    RollbackError,
    SnapshotNotFoundError,
    UpdaterError,
    VersionReadError,
    VersionWriteError,
)
from claudekit.updater.models import (
    ActionKind,
    FileAction,
    Installation,
    Manifest,
    ManifestEntry,
    Snapshot,
    UpdatePlan,
    UpdateResult,
    UpdateState,
)
from claudekit.updater.orchestrator import UpdateOrchestrator
from claudekit.updater.planner import UpdatePlanner
from claudekit.updater.policy import Classification, PreservationPolicy, PreservationRule
from claudekit.updater.source import (
    HttpReleaseSource,
    LocalReleaseSource,
    ReleaseSource,
    create_release_source,
)
from claudekit.updater.version import Version, VersionStore, compare_versions, parse_version

__all__ = [
    "ActionKind",
    "ApplyError",
    "BackupError",
    "BackupManager",
    "ChecksumError",
    "Classification",
    "FetchError",
    "FileAction",
    "HttpReleaseSource",
    "Installation",
    "LocalReleaseSource",
    "Manifest",
    "ManifestEntry",
    "ManifestError",
    "OperationInProgressError",
    "PreservationPolicy",
    "PreservationRule",
    "ReleaseSource",
    "RollbackError",
    "Snapshot",
    "SnapshotNotFoundError",
    "UpdateOrchestrator",
    "UpdatePlan",
    "UpdatePlanner",
    "UpdateResult",
    "UpdateState",
    "UpdaterError",
    "Version",
    "VersionReadError",
    "VersionStore",
    "VersionWriteError",
    "compare_versions",
    "create_release_source",
    "parse_version",
]
