"""Shared fixtures: a 0.9.0 ClaudeKit installation and a local release origin."""

from __future__ import annotations

import hashlib
import json
import os
from collections.abc import Callable
from pathlib import Path

import pytest

from claudekit.config import get_settings
from claudekit.updater.models import Installation
from claudekit.updater.orchestrator import UpdateOrchestrator
from claudekit.updater.policy import PreservationPolicy
from claudekit.updater.source import LocalReleaseSource

# ---------------------------------------------------------------------------
# Installation and release contents
# ---------------------------------------------------------------------------

OLD_INSTALL: dict[str, str] = {
    ".claude/VERSION": "0.9.0\n",
    ".claude/commands/focus.md": "# Old focus command\n",
    ".claude/commands/investigate.md": "# Old investigate command\n",
    ".claude/commands/legacy.md": "# Dropped in 1.0.0\n",
    ".claude/memory/active/quick-reference.md": "# My custom patterns - DO NOT OVERWRITE\n",
    ".claude/pain-points/active-pain-points.md": "# My pain points - DO NOT OVERWRITE\n",
    ".claude/memory/CONTRIBUTION_GUIDELINES.md": "# Custom contribution guidelines\n",
    "CLAUDE.md": "# My Project Config - DO NOT OVERWRITE\n",
}

RELEASE_FILES: dict[str, str] = {
    ".claude/commands/focus.md": "---\ndescription: Focus on one task\n---\n# Focus\n",
    ".claude/commands/investigate.md": "---\ndescription: Investigate a bug\n---\n# Investigate\n",
    ".claude/commands/update-template.md": "---\ndescription: Update the kit\n---\n# Update\n",
    ".claude/skills/project-builder/SKILL.md": "---\nname: project-builder\n---\n",
    ".claude/memory/active/quick-reference.md": "# Quick reference template\n",
    ".claude/memory/CONTRIBUTION_GUIDELINES.md": "# Contribution guidelines v1\n",
    "CLAUDE.md": "# CLAUDE.md template\n",
}

USER_OWNED = (
    "CLAUDE.md",
    ".claude/memory/active/quick-reference.md",
    ".claude/pain-points/active-pain-points.md",
)


def write_tree(root: Path, files: dict[str, str]) -> None:
    for relpath, text in files.items():
        path = root / relpath
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding="utf-8")


def read_tree(root: Path) -> dict[str, bytes]:
    """Every file under .claude plus CLAUDE.md, keyed by relative path."""
    tree = {
        p.relative_to(root).as_posix(): p.read_bytes()
        for p in (root / ".claude").rglob("*")
        if p.is_file()
    }
    if (root / "CLAUDE.md").is_file():
        tree["CLAUDE.md"] = (root / "CLAUDE.md").read_bytes()
    return tree


def publish_release(
    base: Path,
    version: str,
    files: dict[str, str],
    *,
    unmanaged: tuple[str, ...] = (),
) -> Path:
    """Write ``manifest.json`` and file contents for one release under ``base``."""
    entries = []
    for relpath, text in files.items():
        data = text.encode("utf-8")
        entries.append(
            {
                "path": relpath,
                "managed": relpath not in unmanaged,
                "sha256": hashlib.sha256(data).hexdigest(),
            }
        )
        target = base / relpath
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)
    base.mkdir(parents=True, exist_ok=True)
    (base / "manifest.json").write_text(
        json.dumps({"version": version, "files": entries}, indent=2), encoding="utf-8"
    )
    return base


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _isolated_settings(monkeypatch: pytest.MonkeyPatch, tmp_path: Path):
    """Keep CLAUDEKIT_* variables and .env files out of every test."""
    for key in list(os.environ):
        if key.upper().startswith("CLAUDEKIT_"):
            monkeypatch.delenv(key)
    monkeypatch.chdir(tmp_path)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def project(tmp_path: Path) -> Path:
    """A project directory with a ClaudeKit 0.9.0 installation."""
    root = tmp_path / "project"
    write_tree(root, OLD_INSTALL)
    return root


@pytest.fixture
def origin(tmp_path: Path) -> Path:
    """A local release origin: latest is 1.0.0, 0.9.0 is also published."""
    root = tmp_path / "origin"
    publish_release(root, "1.0.0", RELEASE_FILES)
    publish_release(root / "releases" / "1.0.0", "1.0.0", RELEASE_FILES)
    old = {k: v for k, v in OLD_INSTALL.items() if k != ".claude/VERSION"}
    publish_release(root / "releases" / "0.9.0", "0.9.0", old)
    return root


@pytest.fixture
def installation(project: Path) -> Installation:
    return Installation(root=project)


@pytest.fixture
def policy() -> PreservationPolicy:
    return PreservationPolicy.default()


@pytest.fixture
def make_orchestrator(
    installation: Installation, origin: Path, policy: PreservationPolicy
) -> Callable[..., UpdateOrchestrator]:
    def _make(**kwargs) -> UpdateOrchestrator:
        kwargs.setdefault("policy", policy)
        source = kwargs.pop("source", None) or LocalReleaseSource(origin)
        return UpdateOrchestrator(installation, source, **kwargs)

    return _make
