"""Filesystem helpers shared by the version store, backups and plan application."""

from __future__ import annotations

import hashlib
import os
import shutil
from pathlib import Path


def sha256_bytes(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def sha256_file(path: Path) -> str:
    """Digest a file; symlinks are digested by their target string."""
    if path.is_symlink():
        return sha256_bytes(os.readlink(path).encode("utf-8"))
    h = hashlib.sha256()
    with path.open("rb") as f:
        for chunk in iter(lambda: f.read(1024 * 1024), b""):
            h.update(chunk)
    return h.hexdigest()


def atomic_write_bytes(path: Path, data: bytes) -> None:
    """Write ``data`` to ``path`` via a sibling temp file and ``replace``.

    Readers see either the old or the new content, never a torn file.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(f".{path.name}.tmp")
    try:
        tmp_path.write_bytes(data)
        if path.exists() and not path.is_symlink():
            shutil.copymode(path, tmp_path)
        tmp_path.replace(path)
    except OSError:
        tmp_path.unlink(missing_ok=True)
        raise


def atomic_copy(src: Path, dst: Path) -> None:
    """Copy ``src`` over ``dst`` (metadata and symlinks included) atomically."""
    dst.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = dst.with_name(f".{dst.name}.tmp")
    try:
        tmp_path.unlink(missing_ok=True)
        shutil.copy2(src, tmp_path, follow_symlinks=False)
        if dst.is_dir() and not dst.is_symlink():
            shutil.rmtree(dst)
        tmp_path.replace(dst)
    except OSError:
        tmp_path.unlink(missing_ok=True)
        raise


def walk_tree(root: Path) -> tuple[list[str], list[str]]:
    """Return sorted relative POSIX paths of (files, directories) under ``root``.

    Symlinks are reported as files and never followed.
    """
    files: list[str] = []
    dirs: list[str] = []
    if not root.is_dir():
        return files, dirs
    for dirpath, dirnames, filenames in os.walk(root):
        base = Path(dirpath)
        for name in list(dirnames):
            entry = base / name
            if entry.is_symlink():
                dirnames.remove(name)
                files.append(entry.relative_to(root).as_posix())
            else:
                dirs.append(entry.relative_to(root).as_posix())
        for name in filenames:
            files.append((base / name).relative_to(root).as_posix())
    return sorted(files), sorted(dirs)


def remove_empty_parents(path: Path, stop: Path) -> None:
    """Remove now-empty directories from ``path.parent`` up to (excluding) ``stop``."""
    current = path.parent
    stop = stop.resolve()
    while current.resolve() != stop and stop in current.resolve().parents:
        try:
            current.rmdir()
        except OSError:
            return
        current = current.parent
