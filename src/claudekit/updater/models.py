"""Data models for the update engine.

Plain dataclasses with ``to_dict``/``from_dict`` where they cross a
serialization boundary (manifest JSON, snapshot metadata, CLI reports).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path, PurePosixPath
from typing import Any

from claudekit.constants import KIT_DIR, ROOT_FILES, SNAPSHOT_FILES_DIR, VERSION_MARKER
from claudekit.updater.fs import walk_tree

# ------------------------------------------------------------------
# Paths
# ------------------------------------------------------------------


def normalize_relpath(path: str) -> str:
    """Normalize a manifest or inventory path to relative POSIX form.

    Raises ValueError for empty, absolute or root-escaping paths.
    """
    raw = path.replace("\\", "/").strip()
    if not raw:
        raise ValueError("empty path")
    pure = PurePosixPath(raw)
    if pure.is_absolute() or (pure.parts and pure.parts[0].endswith(":")):
        raise ValueError(f"absolute path not allowed: {path}")
    parts = [p for p in pure.parts if p not in ("", ".")]
    if not parts:
        raise ValueError(f"path resolves to the root: {path}")
    if ".." in parts:
        raise ValueError(f"path escapes the installation root: {path}")
    return "/".join(parts)


# ------------------------------------------------------------------
# Installation
# ------------------------------------------------------------------


@dataclass(frozen=True)
class Installation:
    """A ClaudeKit installation inside a project directory.

    The tracked tree is everything under ``kit_dir`` plus the root-level
    user files; the rest of the project is never looked at.
    """

    root: Path
    kit_dir: str = KIT_DIR
    root_files: tuple[str, ...] = ROOT_FILES
    marker: str = VERSION_MARKER

    @property
    def kit_path(self) -> Path:
        return self.root / self.kit_dir

    @property
    def marker_path(self) -> Path:
        return self.root / self.marker

    def path_for(self, relpath: str) -> Path:
        """Resolve a relative path inside the installation root."""
        return self.root / normalize_relpath(relpath)

    def tracks(self, relpath: str) -> bool:
        """True if ``relpath`` lies in the tracked tree that snapshots cover."""
        path = normalize_relpath(relpath)
        return path in self.root_files or path.startswith(f"{self.kit_dir}/")

    def inventory(self) -> list[str]:
        """Sorted relative paths of every tracked file currently on disk."""
        files, _ = walk_tree(self.kit_path)
        paths = [f"{self.kit_dir}/{f}" for f in files]
        for name in self.root_files:
            candidate = self.root / name
            if candidate.is_file() or candidate.is_symlink():
                paths.append(name)
        return sorted(paths)

    def directories(self) -> list[str]:
        """Sorted relative paths of the kit directory and its subdirectories."""
        if not self.kit_path.is_dir():
            return []
        _, dirs = walk_tree(self.kit_path)
        return [self.kit_dir] + [f"{self.kit_dir}/{d}" for d in dirs]


# ------------------------------------------------------------------
# Manifest
# ------------------------------------------------------------------


@dataclass(frozen=True)
class ManifestEntry:
    """One file of a release."""

    path: str
    content: bytes | None = None
    managed: bool = True
    sha256: str | None = None

    def with_content(self, content: bytes) -> ManifestEntry:
        return ManifestEntry(
            path=self.path, content=content, managed=self.managed, sha256=self.sha256
        )


@dataclass(frozen=True)
class Manifest:
    """A target release: its version and ordered file entries."""

    version: str
    entries: tuple[ManifestEntry, ...] = ()
    base: str = ""  # origin location the entries are fetched relative to

    @property
    def paths(self) -> list[str]:
        return [e.path for e in self.entries]

    def entry(self, path: str) -> ManifestEntry | None:
        for e in self.entries:
            if e.path == path:
                return e
        return None

    def replace_entries(self, entries: list[ManifestEntry]) -> Manifest:
        return Manifest(version=self.version, entries=tuple(entries), base=self.base)

    @classmethod
    def from_dict(cls, data: dict[str, Any], base: str = "") -> Manifest:
        """Build and validate a manifest from its JSON document.

        Raises ValueError describing the first problem found.
        """
        if not isinstance(data, dict):
            raise ValueError("manifest must be a JSON object")
        version = str(data.get("version", "")).strip()
        if not version:
            raise ValueError("manifest has no version")
        files = data.get("files", [])
        if not isinstance(files, list):
            raise ValueError("manifest 'files' must be a list")

        entries: list[ManifestEntry] = []
        seen: set[str] = set()
        for item in files:
            if isinstance(item, str):
                item = {"path": item}
            if not isinstance(item, dict) or "path" not in item:
                raise ValueError(f"invalid manifest entry: {item!r}")
            path = normalize_relpath(str(item["path"]))
            if path in seen:
                raise ValueError(f"duplicate manifest path: {path}")
            seen.add(path)
            inline = item.get("content")
            entries.append(
                ManifestEntry(
                    path=path,
                    content=inline.encode("utf-8") if isinstance(inline, str) else None,
                    managed=bool(item.get("managed", True)),
                    sha256=item.get("sha256") or None,
                )
            )
        return cls(version=version, entries=tuple(entries), base=base)

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "files": [
                {"path": e.path, "managed": e.managed, "sha256": e.sha256}
                for e in self.entries
            ],
        }


# ------------------------------------------------------------------
# Plan
# ------------------------------------------------------------------


class ActionKind(Enum):
    """Kind of a planned file action."""

    WRITE = "write"
    DELETE = "delete"
    SKIP_PRESERVED = "skip_preserved"
    FLAG_REVIEW = "flag_review"


@dataclass(frozen=True)
class FileAction:
    """A single planned operation on one path."""

    kind: ActionKind
    path: str
    content: bytes | None = None
    reason: str = ""

    @property
    def mutates(self) -> bool:
        return self.kind in (ActionKind.WRITE, ActionKind.DELETE)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"kind": self.kind.value, "path": self.path}
        if self.reason:
            data["reason"] = self.reason
        return data


@dataclass(frozen=True)
class UpdatePlan:
    """Ordered, deterministic set of file actions for one update."""

    target_version: str
    actions: tuple[FileAction, ...] = ()

    def of_kind(self, kind: ActionKind) -> list[FileAction]:
        return [a for a in self.actions if a.kind is kind]

    @property
    def writes(self) -> list[str]:
        return [a.path for a in self.of_kind(ActionKind.WRITE)]

    @property
    def deletes(self) -> list[str]:
        return [a.path for a in self.of_kind(ActionKind.DELETE)]

    @property
    def preserved(self) -> list[str]:
        return [a.path for a in self.of_kind(ActionKind.SKIP_PRESERVED)]

    @property
    def review(self) -> list[FileAction]:
        return self.of_kind(ActionKind.FLAG_REVIEW)

    def to_dict(self) -> dict[str, Any]:
        return {
            "target_version": self.target_version,
            "actions": [a.to_dict() for a in self.actions],
        }


# ------------------------------------------------------------------
# Snapshot
# ------------------------------------------------------------------


@dataclass(frozen=True)
class Snapshot:
    """An immutable pre-update copy of an installation."""

    id: str
    created_at: datetime
    source_version: str | None
    path: Path
    files: dict[str, str] = field(default_factory=dict)  # relpath -> sha256
    directories: tuple[str, ...] = ()

    @property
    def files_root(self) -> Path:
        return self.path / SNAPSHOT_FILES_DIR

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "created_at": self.created_at.isoformat(),
            "source_version": self.source_version,
            "files": dict(sorted(self.files.items())),
            "directories": list(self.directories),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any], path: Path) -> Snapshot:
        return cls(
            id=str(data["id"]),
            created_at=datetime.fromisoformat(data["created_at"]),
            source_version=data.get("source_version"),
            path=path,
            files={str(k): str(v) for k, v in data.get("files", {}).items()},
            directories=tuple(data.get("directories", [])),
        )


# ------------------------------------------------------------------
# Orchestration
# ------------------------------------------------------------------


class UpdateState(Enum):
    """States of the update orchestrator."""

    IDLE = "idle"
    CHECKING_VERSION = "checking_version"
    UP_TO_DATE = "up_to_date"
    UPDATE_AVAILABLE = "update_available"
    DOWNLOADING = "downloading"
    BACKING_UP = "backing_up"
    PLANNING = "planning"
    APPLYING = "applying"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    ROLLING_BACK = "rolling_back"
    ROLLED_BACK = "rolled_back"
    ROLLBACK_FAILED = "rollback_failed"


@dataclass
class UpdateResult:
    """Outcome of a check, update or rollback."""

    status: UpdateState
    current_version: str | None = None
    target_version: str | None = None
    update_available: bool | None = None
    snapshot_id: str | None = None
    plan: UpdatePlan | None = None
    dry_run: bool = False
    error: str | None = None
    error_code: str | None = None
    transitions: list[str] = field(default_factory=list)
    started_at: str = field(default_factory=lambda: datetime.now(UTC).isoformat())
    completed_at: str | None = None

    @property
    def ok(self) -> bool:
        return self.status in (
            UpdateState.UP_TO_DATE,
            UpdateState.UPDATE_AVAILABLE,
            UpdateState.SUCCEEDED,
            UpdateState.ROLLED_BACK,
        ) and self.error is None

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "current_version": self.current_version,
            "target_version": self.target_version,
            "update_available": self.update_available,
            "snapshot_id": self.snapshot_id,
            "plan": self.plan.to_dict() if self.plan else None,
            "dry_run": self.dry_run,
            "error": self.error,
            "error_code": self.error_code,
            "transitions": self.transitions,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
        }
