"""
Mod archive introspection

Reads the loader manifest packed inside a mod jar. Three dialects are
supported and tried in a fixed order:

1. fabric.mod.json
2. quilt.mod.json
3. META-INF/mods.toml / META-INF/neoforge.mods.toml

Any archive that cannot be opened or parsed reads as "no metadata".
"""

import json
import re
import threading
import time
import tomllib
import zipfile
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple

from ...core.api.errors import MetadataParseError
from ...core.compat.loaders import LoaderKind
from ...core.compat.matcher import collapse_versions


@dataclass
class ArchiveMetadata:
    """Metadata extracted from a mod archive"""
    loader_kind: LoaderKind
    mod_id: Optional[str] = None
    name: Optional[str] = None
    version: Optional[str] = None
    description: str = ""
    authors: List[str] = field(default_factory=list)
    minecraft_version: Optional[object] = None
    environment: Optional[str] = None
    dependencies: Dict[str, object] = field(default_factory=dict)

    @property
    def project_id(self) -> Optional[str]:
        """Identity declared by the archive (the mod id)"""
        return self.mod_id


def _find_entry(archive: zipfile.ZipFile, entry_name: str) -> Optional[str]:
    """Entry matching a name exactly or by path suffix"""
    names = archive.namelist()
    if entry_name in names:
        return entry_name
    suffix = "/" + entry_name
    for name in names:
        if name.endswith(suffix):
            return name
    return None


def _read_text(archive: zipfile.ZipFile, entry_name: str) -> Optional[str]:
    found = _find_entry(archive, entry_name)
    if not found:
        return None
    return archive.read(found).decode("utf-8", errors="replace")


def _read_json(archive: zipfile.ZipFile, entry_name: str) -> Optional[Dict]:
    content = _read_text(archive, entry_name)
    if content is None:
        return None
    try:
        data = json.loads(content, strict=False)
    except ValueError as e:
        raise MetadataParseError(f"Invalid {entry_name}: {e}", cause=e)
    if not isinstance(data, dict):
        raise MetadataParseError(f"Invalid {entry_name}: not an object")
    return data


def _person_names(people) -> List[str]:
    """Authors come as strings, {"name": ...} objects or a name->role map"""
    if isinstance(people, dict):
        return [str(k) for k in people.keys()]
    names = []
    for person in people or []:
        if isinstance(person, str):
            names.append(person)
        elif isinstance(person, dict) and person.get("name"):
            names.append(str(person["name"]))
    return names


def _minecraft_constraint(value):
    """
    Normalizes a declared minecraft dependency

    A string is kept as is, a one-element list becomes its element, a longer
    list is collapsed into ">=min <=max".
    """
    if isinstance(value, str):
        return value.strip() or None
    if isinstance(value, (list, tuple)):
        items = [str(v) for v in value if isinstance(v, str) and v.strip()]
        if not items:
            return None
        if len(items) == 1:
            return items[0]
        if any(re.search(r'[<>=~*x\[\](),\s]', v) for v in items):
            # Already constraint expressions, any of them may match
            return items
        return collapse_versions(items)
    return None


# ==================== FABRIC ====================

def parse_fabric(archive: zipfile.ZipFile) -> Optional[ArchiveMetadata]:
    data = _read_json(archive, "fabric.mod.json")
    if data is None:
        return None

    depends = data.get("depends") if isinstance(data.get("depends"), dict) else {}
    authors = _person_names(data.get("authors")) or _person_names(data.get("contributors"))
    if not authors and data.get("author"):
        authors = [str(data["author"])]

    mod_id = data.get("id")
    return ArchiveMetadata(
        loader_kind=LoaderKind.FABRIC,
        mod_id=mod_id,
        name=data.get("name") or mod_id,
        version=data.get("version"),
        description=data.get("description") or "",
        authors=authors,
        minecraft_version=_minecraft_constraint(depends.get("minecraft")),
        environment=data.get("environment"),
        dependencies=dict(depends)
    )


# ==================== QUILT ====================

def parse_quilt(archive: zipfile.ZipFile) -> Optional[ArchiveMetadata]:
    data = _read_json(archive, "quilt.mod.json")
    if data is None:
        return None

    loader = data.get("quilt_loader") if isinstance(data.get("quilt_loader"), dict) else data
    metadata = loader.get("metadata") if isinstance(loader.get("metadata"), dict) else {}

    dependencies: Dict[str, object] = {}
    for dep in loader.get("depends") or []:
        if isinstance(dep, str):
            dependencies[dep] = "*"
        elif isinstance(dep, dict) and dep.get("id"):
            dependencies[dep["id"]] = dep.get("versions", "*")

    authors = _person_names(metadata.get("contributors")) or _person_names(data.get("contributors"))

    environment = None
    minecraft_section = data.get("minecraft")
    if isinstance(minecraft_section, dict):
        environment = minecraft_section.get("environment")

    mod_id = loader.get("id")
    return ArchiveMetadata(
        loader_kind=LoaderKind.QUILT,
        mod_id=mod_id,
        name=metadata.get("name") or mod_id,
        version=loader.get("version"),
        description=metadata.get("description") or "",
        authors=authors,
        minecraft_version=_minecraft_constraint(dependencies.get("minecraft")),
        environment=environment,
        dependencies=dependencies
    )


# ==================== FORGE / NEOFORGE ====================

def _read_mods_toml(content: str) -> Tuple[Dict, List[Dict], Dict[str, List[Dict]]]:
    """
    Decodes a mods.toml document

    Returns:
        Tuple of (top-level keys, [[mods]] tables, [[dependencies.<id>]] tables by id)
    """
    try:
        data = tomllib.loads(content)
    except tomllib.TOMLDecodeError as e:
        raise MetadataParseError(f"Invalid mods.toml: {e}", cause=e)

    mods = [m for m in data.get("mods") or [] if isinstance(m, dict)]
    dependencies: Dict[str, List[Dict]] = {}
    raw_deps = data.get("dependencies")
    if isinstance(raw_deps, dict):
        for owner, tables in raw_deps.items():
            if isinstance(tables, list):
                dependencies[owner] = [t for t in tables if isinstance(t, dict)]
    return data, mods, dependencies


def _defined(value) -> Optional[str]:
    """Build placeholders such as ${file.jarVersion} count as absent"""
    if value is None:
        return None
    text = str(value).strip()
    if not text or "${" in text:
        return None
    return text


def parse_mods_toml(archive: zipfile.ZipFile) -> Optional[ArchiveMetadata]:
    loader_kind = LoaderKind.NEOFORGE
    content = _read_text(archive, "META-INF/neoforge.mods.toml")
    if content is None:
        loader_kind = LoaderKind.FORGE
        content = _read_text(archive, "META-INF/mods.toml")
    if content is None:
        return None

    top, mods, dependencies = _read_mods_toml(content)
    mod = mods[0] if mods else {}
    mod_id = _defined(mod.get("modId")) or _defined(top.get("modId"))

    own_deps = dependencies.get(mod_id or "", [])
    if not own_deps and len(dependencies) == 1:
        own_deps = next(iter(dependencies.values()))

    declared: Dict[str, object] = {}
    minecraft_version = None
    environment = None
    for dep in own_deps:
        dep_id = dep.get("modId")
        if not dep_id:
            continue
        version_range = _defined(dep.get("versionRange"))
        declared[dep_id] = version_range or "*"
        if dep_id == "neoforge":
            loader_kind = LoaderKind.NEOFORGE
        if dep_id == "minecraft":
            minecraft_version = version_range
            side = str(dep.get("side", "")).lower()
            if side in ("client", "server"):
                environment = side

    authors_value = mod.get("authors") or top.get("authors")
    if isinstance(authors_value, list):
        authors = [str(a) for a in authors_value]
    elif authors_value:
        authors = [a.strip() for a in str(authors_value).split(",") if a.strip()]
    else:
        authors = []

    return ArchiveMetadata(
        loader_kind=loader_kind,
        mod_id=mod_id,
        name=_defined(mod.get("displayName")) or mod_id,
        version=_defined(mod.get("version")),
        description=mod.get("description") or "",
        authors=authors,
        minecraft_version=minecraft_version,
        environment=environment,
        dependencies=declared
    )


PARSERS: List[Callable[[zipfile.ZipFile], Optional[ArchiveMetadata]]] = [
    parse_fabric,
    parse_quilt,
    parse_mods_toml,
]


class ArchiveMetadataReader:
    """Reads and caches archive metadata"""

    def __init__(self, cache_window: int = 60, clock: Callable[[], float] = time.time):
        """
        Args:
            cache_window: Width in seconds of the cache time bucket
            clock: Wall clock, injectable for tests
        """
        self.cache_window = max(1, int(cache_window))
        self._clock = clock
        # path -> (bucket, result), only the latest bucket is kept per path
        self._cache: Dict[str, Tuple[int, Optional[ArchiveMetadata]]] = {}
        self._lock = threading.Lock()

    def _bucket(self) -> int:
        return int(self._clock() // self.cache_window)

    def read_metadata(self, archive_path: str) -> Optional[ArchiveMetadata]:
        """
        Extracts metadata from a mod archive

        Args:
            archive_path: Path to the jar (enabled or disabled)

        Returns:
            ArchiveMetadata or None if no dialect could be read
        """
        path = str(archive_path)
        bucket = self._bucket()
        with self._lock:
            cached = self._cache.get(path)
            if cached is not None and cached[0] == bucket:
                return cached[1]

        result = self._extract(path)

        with self._lock:
            self._cache[path] = (bucket, result)
        return result

    def _extract(self, archive_path: str) -> Optional[ArchiveMetadata]:
        try:
            with zipfile.ZipFile(archive_path) as archive:
                for parser in PARSERS:
                    result = parser(archive)
                    if result is not None:
                        return result
        except (MetadataParseError, OSError, zipfile.BadZipFile, ValueError, KeyError, RuntimeError):
            # Unreadable archive or manifest: no metadata
            return None
        return None

    def invalidate(self, archive_path: Optional[str] = None):
        """
        Drops the cached result for a path, or everything

        Must be called whenever a file at that path is replaced.
        """
        with self._lock:
            if archive_path is None:
                self._cache.clear()
                return
            self._cache.pop(str(archive_path), None)
