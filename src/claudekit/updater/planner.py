"""Turn a target manifest and the installed tree into an ordered update plan."""

from __future__ import annotations

from claudekit.logging import get_logger
from claudekit.updater.fs import sha256_bytes, sha256_file
from claudekit.updater.models import (
    ActionKind,
    FileAction,
    Installation,
    Manifest,
    ManifestEntry,
    UpdatePlan,
)
from claudekit.updater.policy import Classification, PreservationPolicy

log = get_logger("claudekit.updater.planner")


class UpdatePlanner:
    """Pure planning: reads the installation, never writes to it.

    Action order is manifest order for release files, followed by deletions
    of managed files the release no longer ships, in path order. The same
    installation and manifest always produce the same plan.
    """

    def __init__(self, policy: PreservationPolicy) -> None:
        self._policy = policy

    def _decide(self, entry: ManifestEntry) -> ActionKind:
        if not entry.managed:
            return ActionKind.SKIP_PRESERVED
        classification = self._policy.classify(entry.path)
        if classification is Classification.PRESERVED:
            return ActionKind.SKIP_PRESERVED
        if classification is Classification.REVIEW_REQUIRED:
            return ActionKind.FLAG_REVIEW
        return ActionKind.WRITE

    def content_paths(self, installation: Installation, manifest: Manifest) -> list[str]:
        """Paths whose release content the plan needs (writes and reviews)."""
        return [
            e.path
            for e in manifest.entries
            if e.path != installation.marker
            and self._decide(e) in (ActionKind.WRITE, ActionKind.FLAG_REVIEW)
        ]

    def _review_reason(self, installation: Installation, entry: ManifestEntry) -> str:
        local = installation.path_for(entry.path)
        if not (local.exists() or local.is_symlink()):
            return "not installed locally; release copy available for review"
        if entry.content is None:
            return "local copy may differ from release; review manually"
        if sha256_file(local) == sha256_bytes(entry.content):
            return "local copy matches release"
        return "local copy differs from release; review manually"

    def plan(self, installation: Installation, manifest: Manifest) -> UpdatePlan:
        """Build the plan for moving ``installation`` to ``manifest``.

        Raises ValueError if the manifest ships a path outside the tracked
        tree or a file to be written has no resolved content.
        """
        actions: list[FileAction] = []
        shipped: set[str] = set()

        for entry in manifest.entries:
            if not installation.tracks(entry.path):
                raise ValueError(f"path outside the installation: {entry.path}")
            shipped.add(entry.path)
            if entry.path == installation.marker:
                continue
            kind = self._decide(entry)
            if kind is ActionKind.WRITE:
                if entry.content is None:
                    raise ValueError(f"no content resolved for {entry.path}")
                actions.append(FileAction(kind, entry.path, content=entry.content))
            elif kind is ActionKind.FLAG_REVIEW:
                actions.append(
                    FileAction(kind, entry.path, reason=self._review_reason(installation, entry))
                )
            else:
                reason = "user-owned" if entry.managed else "not managed by the release"
                actions.append(FileAction(kind, entry.path, reason=reason))

        for relpath in installation.inventory():
            if relpath in shipped or relpath == installation.marker:
                continue
            if self._policy.classify(relpath) is Classification.MANAGED:
                actions.append(
                    FileAction(ActionKind.DELETE, relpath, reason="no longer shipped")
                )

        plan = UpdatePlan(target_version=manifest.version, actions=tuple(actions))
        log.debug(
            "update_planned",
            target_version=manifest.version,
            writes=len(plan.writes),
            deletes=len(plan.deletes),
            preserved=len(plan.preserved),
            review=len(plan.review),
        )
        return plan
