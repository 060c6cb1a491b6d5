"""Release sources: where manifests and file contents come from.

The orchestrator only sees :class:`ReleaseSource`; the HTTP transport and
the local/offline transport resolve the same origin layout::

    <origin>/manifest.json                      latest release
    <origin>/<path>                             latest release files
    <origin>/releases/<version>/manifest.json   a pinned release
    <origin>/releases/<version>/<path>          pinned release files
"""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from collections.abc import Iterable
from pathlib import Path
from urllib.parse import quote, unquote, urlparse

import httpx

from claudekit.constants import HTTP_TIMEOUT_SECONDS, LATEST, MANIFEST_NAME, RELEASES_DIR
from claudekit.logging import get_logger
from claudekit.updater.errors import ChecksumError, FetchError, ManifestError
from claudekit.updater.fs import sha256_bytes
from claudekit.updater.models import Manifest, ManifestEntry, normalize_relpath

log = get_logger("claudekit.updater.source")


def _release_prefix(target: str) -> str:
    if target == LATEST:
        return ""
    return f"{RELEASES_DIR}/{normalize_relpath(target)}/"


def _parse_manifest(raw: bytes, target: str, base: str, origin: str) -> Manifest:
    try:
        data = json.loads(raw.decode("utf-8"))
        manifest = Manifest.from_dict(data, base=base)
    except (UnicodeDecodeError, json.JSONDecodeError, ValueError) as exc:
        raise ManifestError(
            f"Invalid manifest for {target}: {exc}",
            details={"origin": origin, "target": target},
            cause=exc,
        ) from exc
    if target != LATEST and manifest.version.lstrip("v") != target.lstrip("v"):
        raise ManifestError(
            f"Manifest version {manifest.version} does not match requested {target}",
            details={"origin": origin, "target": target, "version": manifest.version},
        )
    return manifest


class ReleaseSource(ABC):
    """Transport-agnostic access to released manifests and files."""

    origin: str

    @abstractmethod
    async def fetch_manifest(self, target: str = LATEST) -> Manifest:
        """Fetch the manifest for ``target`` (a version or ``"latest"``).

        Raises FetchError if the release does not exist or cannot be read.
        """

    @abstractmethod
    async def fetch_content(self, manifest: Manifest, path: str) -> bytes:
        """Fetch the bytes of one file of ``manifest``."""

    async def resolve_content(self, manifest: Manifest, paths: Iterable[str]) -> Manifest:
        """Return a copy of ``manifest`` with content loaded for ``paths``.

        Entries that already carry inline content are kept as they are.
        Published digests are verified for every resolved entry.
        """
        wanted = set(paths)
        entries: list[ManifestEntry] = []
        for entry in manifest.entries:
            if entry.path in wanted and entry.content is None:
                entry = entry.with_content(await self.fetch_content(manifest, entry.path))
            if entry.path in wanted and entry.sha256 and entry.content is not None:
                actual = sha256_bytes(entry.content)
                if actual != entry.sha256.lower():
                    raise ChecksumError(entry.path, entry.sha256, actual)
            entries.append(entry)
        log.debug("release_content_resolved", version=manifest.version, files=len(wanted))
        return manifest.replace_entries(entries)


class HttpReleaseSource(ReleaseSource):
    """Fetches releases from an HTTP(S) origin such as a raw GitHub URL."""

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = HTTP_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not base_url:
            raise ValueError("base_url is required")
        self.origin = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self._timeout,
            transport=self._transport,
            follow_redirects=True,
        )

    async def _get(self, url: str, what: str) -> bytes:
        try:
            async with self._client() as client:
                resp = await client.get(url)
        except httpx.RequestError as exc:
            raise FetchError(
                f"Request for {what} failed: {exc}",
                details={"url": url},
                cause=exc,
            ) from exc

        if resp.status_code == 404:
            raise FetchError(f"{what} not found at origin", details={"url": url, "status": 404})
        if resp.status_code != 200:
            raise FetchError(
                f"Origin returned HTTP {resp.status_code} for {what}",
                details={"url": url, "status": resp.status_code},
            )
        return resp.content

    async def fetch_manifest(self, target: str = LATEST) -> Manifest:
        base = f"{self.origin}/{_release_prefix(target)}"
        raw = await self._get(f"{base}{MANIFEST_NAME}", f"release {target}")
        manifest = _parse_manifest(raw, target, base, self.origin)
        log.info("release_manifest_fetched", origin=self.origin, version=manifest.version)
        return manifest

    async def fetch_content(self, manifest: Manifest, path: str) -> bytes:
        relpath = normalize_relpath(path)
        url = f"{manifest.base}{quote(relpath)}"
        return await self._get(url, relpath)


class LocalReleaseSource(ReleaseSource):
    """Reads releases from a directory on disk (offline installs and tests)."""

    def __init__(self, root: str | Path) -> None:
        self._root = Path(root)
        self.origin = str(self._root)

    def _read(self, path: Path, what: str) -> bytes:
        try:
            return path.read_bytes()
        except FileNotFoundError as exc:
            raise FetchError(
                f"{what} not found at origin", details={"path": str(path)}, cause=exc
            ) from exc
        except OSError as exc:
            raise FetchError(
                f"Cannot read {what}: {exc}", details={"path": str(path)}, cause=exc
            ) from exc

    async def fetch_manifest(self, target: str = LATEST) -> Manifest:
        if not self._root.is_dir():
            raise FetchError(
                "Release origin directory does not exist", details={"path": self.origin}
            )
        base = str(self._root / _release_prefix(target)) if target != LATEST else self.origin
        raw = self._read(Path(base) / MANIFEST_NAME, f"release {target}")
        manifest = _parse_manifest(raw, target, base, self.origin)
        log.info("release_manifest_fetched", origin=self.origin, version=manifest.version)
        return manifest

    async def fetch_content(self, manifest: Manifest, path: str) -> bytes:
        relpath = normalize_relpath(path)
        return self._read(Path(manifest.base or self.origin) / relpath, relpath)


def create_release_source(
    origin: str, *, timeout: float = HTTP_TIMEOUT_SECONDS
) -> ReleaseSource:
    """Pick the transport for ``origin``: http(s) URL, file:// URL or a path."""
    parsed = urlparse(origin)
    if parsed.scheme in ("http", "https"):
        return HttpReleaseSource(origin, timeout=timeout)
    if parsed.scheme == "file":
        return LocalReleaseSource(unquote(parsed.path))
    return LocalReleaseSource(Path(origin).expanduser())
