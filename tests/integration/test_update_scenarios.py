"""End-to-end update scenarios against a 0.9.0 installation.

These drive the real command line and orchestrator against on-disk
releases, covering the guarantees users rely on: user-owned files are never
touched, the version marker moves last, and a rollback puts back exactly
what was there before.
"""

from __future__ import annotations

from pathlib import Path
from unittest.mock import patch
from urllib.parse import unquote

import httpx
import pytest
from conftest import OLD_INSTALL, USER_OWNED, read_tree

from claudekit.cli import ExitCode, main
from claudekit.updater.backup import BackupManager
from claudekit.updater.fs import atomic_write_bytes
from claudekit.updater.models import Installation, UpdateState
from claudekit.updater.planner import UpdatePlanner
from claudekit.updater.policy import PreservationPolicy
from claudekit.updater.source import HttpReleaseSource, LocalReleaseSource

ORIGIN_URL = "https://raw.example.test/claudekit/main"


def _argv(project: Path, origin: Path, *extra: str) -> list[str]:
    return ["--project-dir", str(project), "--origin", str(origin), *extra]


def _marker(project: Path) -> str:
    return (project / ".claude" / "VERSION").read_text(encoding="utf-8").strip()


def _backups(project: Path) -> list[Path]:
    return sorted(project.glob(".claude-backup-*"))


def _serve(origin: Path) -> httpx.MockTransport:
    """Serve ``origin`` the way a raw file host would."""
    prefix = httpx.URL(ORIGIN_URL).path.rstrip("/") + "/"

    def handler(request: httpx.Request) -> httpx.Response:
        path = unquote(request.url.path)
        if not path.startswith(prefix):
            return httpx.Response(404)
        target = origin / path[len(prefix) :]
        if not target.is_file():
            return httpx.Response(404, text="404: Not Found")
        return httpx.Response(200, content=target.read_bytes())

    return httpx.MockTransport(handler)


# ---------------------------------------------------------------------------
# Command line scenarios
# ---------------------------------------------------------------------------


class TestCheckThenUpdate:
    """Check reports the pending release, --auto installs it."""

    def test_check_then_auto(self, project: Path, origin: Path, capsys):
        before = read_tree(project)

        assert main(_argv(project, origin, "--check")) == ExitCode.OK
        out = capsys.readouterr().out
        assert "Current Version: 0.9.0" in out
        assert "Latest Version:  1.0.0" in out
        assert read_tree(project) == before

        assert main(_argv(project, origin, "--auto")) == ExitCode.OK
        assert _marker(project) == "1.0.0"
        assert len(_backups(project)) == 1

        for relpath in USER_OWNED:
            assert (project / relpath).read_bytes() == before[relpath]

        template = project / ".claude" / "commands" / "update-template.md"
        assert template.is_file()
        assert "description:" in template.read_text(encoding="utf-8")

    def test_update_replaces_managed_and_drops_retired(self, project: Path, origin: Path):
        assert main(_argv(project, origin, "--auto")) == ExitCode.OK

        focus = (project / ".claude" / "commands" / "focus.md").read_text(encoding="utf-8")
        assert focus.startswith("---\ndescription: Focus on one task")
        assert (project / ".claude" / "skills" / "project-builder" / "SKILL.md").is_file()
        assert not (project / ".claude" / "commands" / "legacy.md").exists()

    def test_review_file_left_alone(self, project: Path, origin: Path, capsys):
        assert main(_argv(project, origin, "--auto")) == ExitCode.OK

        guidelines = project / ".claude" / "memory" / "CONTRIBUTION_GUIDELINES.md"
        assert guidelines.read_text(encoding="utf-8") == (
            OLD_INSTALL[".claude/memory/CONTRIBUTION_GUIDELINES.md"]
        )
        assert "CONTRIBUTION_GUIDELINES.md" in capsys.readouterr().out

    def test_memory_notes_survive(self, project: Path, origin: Path):
        note = project / ".claude" / "memory" / "archive" / "2025-q3.md"
        note.parent.mkdir(parents=True)
        note.write_text("# Q3 notes\n", encoding="utf-8")

        assert main(_argv(project, origin, "--auto")) == ExitCode.OK
        assert note.read_text(encoding="utf-8") == "# Q3 notes\n"

    def test_second_auto_is_a_no_op(self, project: Path, origin: Path, capsys):
        assert main(_argv(project, origin, "--auto")) == ExitCode.OK
        after_first = read_tree(project)

        assert main(_argv(project, origin, "--auto")) == ExitCode.OK
        assert "Already up to date." in capsys.readouterr().out
        assert read_tree(project) == after_first
        assert len(_backups(project)) == 1

    def test_extra_preserve_pattern_from_environment(
        self, project: Path, origin: Path, monkeypatch
    ):
        monkeypatch.setenv("CLAUDEKIT_EXTRA_PRESERVE_PATTERNS", '[".claude/commands/focus.md"]')

        assert main(_argv(project, origin, "--auto")) == ExitCode.OK
        assert (project / ".claude" / "commands" / "focus.md").read_text(encoding="utf-8") == (
            OLD_INSTALL[".claude/commands/focus.md"]
        )


class TestRollbackScenario:
    """A damaged update is undone with --rollback."""

    def test_rollback_after_marker_damage(self, project: Path, origin: Path):
        original = read_tree(project)
        assert main(_argv(project, origin, "--auto")) == ExitCode.OK

        (project / ".claude" / "VERSION").write_text("1.0.0-modified\n", encoding="utf-8")
        assert main(_argv(project, origin, "--rollback", "--auto")) == ExitCode.OK

        assert _marker(project) == "0.9.0"
        assert read_tree(project) == original

    def test_rollback_to_named_snapshot(self, project: Path, origin: Path):
        assert main(_argv(project, origin, "--auto")) == ExitCode.OK
        assert main(_argv(project, origin, "--auto", "--force")) == ExitCode.OK

        snapshots = BackupManager(Installation(root=project)).list_snapshots()
        assert [s.source_version for s in snapshots] == ["1.0.0", "0.9.0"]

        oldest = snapshots[-1].id
        code = main(_argv(project, origin, "--rollback", "--snapshot", oldest, "--auto"))

        assert code == ExitCode.OK
        assert _marker(project) == "0.9.0"

    def test_unknown_snapshot_fails(self, project: Path, origin: Path, capsys):
        assert main(_argv(project, origin, "--auto")) == ExitCode.OK

        code = main(_argv(project, origin, "--rollback", "--snapshot", "nope", "--auto"))

        assert code == ExitCode.ROLLBACK_FAILED
        assert "SNAPSHOT_NOT_FOUND" in capsys.readouterr().err
        assert _marker(project) == "1.0.0"


# ---------------------------------------------------------------------------
# Properties
# ---------------------------------------------------------------------------


class TestUpdateProperties:
    """Invariants that hold for every update."""

    @pytest.mark.asyncio
    async def test_marker_is_written_last(self, make_orchestrator, installation: Installation):
        seen: list[str] = []

        def spy(path, data):
            seen.append(installation.marker_path.read_text(encoding="utf-8"))
            atomic_write_bytes(path, data)

        with patch("claudekit.updater.orchestrator.atomic_write_bytes", side_effect=spy):
            result = await make_orchestrator().apply()

        assert result.status is UpdateState.SUCCEEDED
        assert seen
        assert set(seen) == {"0.9.0\n"}
        assert installation.marker_path.read_text(encoding="utf-8") == "1.0.0\n"

    @pytest.mark.asyncio
    async def test_rollback_round_trip(self, make_orchestrator, installation: Installation):
        original = read_tree(installation.root)
        orch = make_orchestrator()

        applied = await orch.apply()
        assert read_tree(installation.root) != original

        rolled = await orch.rollback(applied.snapshot_id)

        assert rolled.status is UpdateState.ROLLED_BACK
        assert read_tree(installation.root) == original

    @pytest.mark.asyncio
    async def test_rollback_keeps_later_user_edits(
        self, make_orchestrator, installation: Installation
    ):
        orch = make_orchestrator()
        await orch.apply()
        notes = installation.root / "CLAUDE.md"
        notes.write_text("# Edited after the update\n", encoding="utf-8")

        await orch.rollback()

        assert notes.read_text(encoding="utf-8") == "# Edited after the update\n"
        assert installation.marker_path.read_text(encoding="utf-8") == "0.9.0\n"

    @pytest.mark.asyncio
    async def test_check_is_idempotent(self, make_orchestrator, installation: Installation):
        before = read_tree(installation.root)
        orch = make_orchestrator()

        results = [await orch.check() for _ in range(3)]

        assert {(r.status, r.current_version, r.target_version) for r in results} == {
            (UpdateState.UPDATE_AVAILABLE, "0.9.0", "1.0.0")
        }
        assert read_tree(installation.root) == before

    @pytest.mark.asyncio
    async def test_plan_is_deterministic(
        self, installation: Installation, origin: Path, policy: PreservationPolicy
    ):
        source = LocalReleaseSource(origin)
        planner = UpdatePlanner(policy)
        manifest = await source.fetch_manifest()
        manifest = await source.resolve_content(
            manifest, planner.content_paths(installation, manifest)
        )

        first = planner.plan(installation, manifest)
        second = planner.plan(installation, manifest)

        assert first == second
        assert first.to_dict() == second.to_dict()
        for relpath in USER_OWNED:
            assert relpath not in first.writes
            assert relpath not in first.deletes


# ---------------------------------------------------------------------------
# HTTP origin
# ---------------------------------------------------------------------------


class TestHttpOrigin:
    """The same update served over HTTP."""

    @pytest.mark.asyncio
    async def test_update_over_http(self, make_orchestrator, installation, origin: Path):
        source = HttpReleaseSource(ORIGIN_URL, transport=_serve(origin))
        result = await make_orchestrator(source=source).apply()

        assert result.status is UpdateState.SUCCEEDED
        assert installation.marker_path.read_text(encoding="utf-8") == "1.0.0\n"
        template = installation.root / ".claude" / "commands" / "update-template.md"
        assert "description:" in template.read_text(encoding="utf-8")

    @pytest.mark.asyncio
    async def test_pinned_release_over_http(self, make_orchestrator, installation, origin):
        installation.marker_path.write_text("0.8.0\n", encoding="utf-8")
        source = HttpReleaseSource(ORIGIN_URL, transport=_serve(origin))

        result = await make_orchestrator(source=source).apply("0.9.0")

        assert result.status is UpdateState.SUCCEEDED
        assert installation.marker_path.read_text(encoding="utf-8") == "0.9.0\n"

    @pytest.mark.asyncio
    async def test_missing_file_fails_without_changes(
        self, make_orchestrator, installation, origin: Path
    ):
        (origin / ".claude" / "commands" / "update-template.md").unlink()
        before = read_tree(installation.root)
        source = HttpReleaseSource(ORIGIN_URL, transport=_serve(origin))

        result = await make_orchestrator(source=source).apply()

        assert result.status is UpdateState.FAILED
        assert result.error_code == "FETCH_FAILED"
        assert read_tree(installation.root) == before
        assert _backups(installation.root) == []
