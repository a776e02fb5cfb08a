"""Shared fixtures: installation roots, jar factory, fake registry and downloader."""

import io
import json
import os
import zipfile
from typing import Dict, List, Optional

import pytest

from modsync.core.api.errors import NetworkError, NotFoundError
from modsync.core.api.models import ProjectInfo, VersionRecord


def build_jar_bytes(entries: Dict[str, object]) -> bytes:
    """Zip bytes holding the given entries (dict/list values are JSON encoded)."""
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        for name, content in entries.items():
            if isinstance(content, (dict, list)):
                content = json.dumps(content)
            archive.writestr(name, content)
    return buffer.getvalue()


def fabric_entries(mod_id: str, name: str, version: str, minecraft="1.20.4") -> Dict[str, object]:
    manifest = {"schemaVersion": 1, "id": mod_id, "name": name, "version": version}
    if minecraft is not None:
        manifest["depends"] = {"fabricloader": ">=0.15", "minecraft": minecraft}
    return {"fabric.mod.json": manifest}


@pytest.fixture
def make_jar():
    """Writes a jar at a path; returns the path."""

    def _make(path, entries: Optional[Dict[str, object]] = None) -> str:
        path = str(path)
        os.makedirs(os.path.dirname(path), exist_ok=True)
        with open(path, "wb") as f:
            f.write(build_jar_bytes(entries or {"placeholder.txt": "x"}))
        return path

    return _make


@pytest.fixture
def make_fabric_jar(make_jar):
    def _make(path, mod_id="examplemod", name="Example Mod", version="1.0.0", minecraft="1.20.4"):
        return make_jar(path, fabric_entries(mod_id, name, version, minecraft))

    return _make


@pytest.fixture
def root(tmp_path):
    """Empty installation root"""
    path = tmp_path / "instance"
    path.mkdir()
    return str(path)


def make_version(
    version_id: str,
    number: str,
    game_versions: Optional[List[str]] = None,
    loaders: Optional[List[str]] = None,
    date: str = "2024-01-01T00:00:00Z",
    version_type: str = "release",
    url: Optional[str] = None,
    project_id: Optional[str] = None
) -> VersionRecord:
    return VersionRecord.from_api({
        "id": version_id,
        "version_number": number,
        "name": number,
        "game_versions": game_versions or ["1.20.4"],
        "loaders": loaders or ["fabric"],
        "date_published": date,
        "version_type": version_type,
        "project_id": project_id,
        "files": [{
            "url": url or f"https://cdn.example/{version_id}.jar",
            "filename": f"{version_id}.jar",
            "primary": True,
            "size": 10
        }]
    })


@pytest.fixture
def version_factory():
    return make_version


class FakeRegistry:
    """In-memory stand-in for RegistryClient"""

    def __init__(self, versions: Optional[Dict[str, List[VersionRecord]]] = None,
                 titles: Optional[Dict[str, str]] = None):
        self.versions = versions or {}
        self.titles = titles or {}
        self.failures: Dict[str, Exception] = {}
        self.invalidated: List[Optional[str]] = []
        self.queries: List[tuple] = []

    def _filtered(self, project_id, loader, runtime_version):
        if project_id in self.failures:
            raise self.failures[project_id]
        if project_id not in self.versions:
            raise NotFoundError(f"Not found on Modrinth (404): project {project_id}")
        return [
            v for v in self.versions[project_id]
            if (not loader or loader in v.loaders)
            and (not runtime_version or runtime_version in v.game_versions)
        ]

    def query_versions(self, project_id, loader=None, runtime_version=None, latest_only=False):
        self.queries.append((project_id, loader, runtime_version, latest_only))
        found = self._filtered(project_id, loader, runtime_version)
        return found[:1] if latest_only else found

    def get_latest_version_info(self, project_id, runtime_version=None, loader=None):
        try:
            found = self._filtered(project_id, loader, runtime_version)
        except NotFoundError:
            return None
        return found[0] if found else None

    def get_version_detail(self, version_id, project_id=None, runtime_version=None, loader=None):
        for versions in self.versions.values():
            for version in versions:
                if version.id == version_id:
                    return version
        raise NotFoundError(f"Not found on Modrinth (404): version {version_id}")

    def get_project_info(self, project_id):
        if project_id not in self.titles:
            raise NotFoundError(f"Not found on Modrinth (404): project {project_id}")
        return ProjectInfo(id=project_id, title=self.titles[project_id])

    def invalidate_cache(self, project_id=None):
        self.invalidated.append(project_id)


@pytest.fixture
def fake_registry():
    return FakeRegistry()


class FakeDownloader:
    """Writes preset bytes to the destination instead of downloading"""

    def __init__(self):
        self.payloads: Dict[str, bytes] = {}
        self.downloads: List[tuple] = []

    def add(self, url: str, entries: Dict[str, object]):
        self.payloads[url] = build_jar_bytes(entries)

    def download(self, url, destination, name="", event_id=None, progress_callback=None):
        self.downloads.append((url, destination))
        if url not in self.payloads:
            raise NetworkError(f"Network error downloading {name}: 404 for {url}", status_code=404)
        os.makedirs(os.path.dirname(destination), exist_ok=True)
        with open(destination, "wb") as f:
            f.write(self.payloads[url])
        if progress_callback:
            progress_callback({"id": event_id, "name": name, "progress": 100, "completed": True})
        return destination


@pytest.fixture
def fake_downloader():
    return FakeDownloader()
