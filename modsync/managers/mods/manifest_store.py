"""
Sidecar manifests of installed mods

Each archive may have a JSON sidecar in the minecraft-core-manifests folder of
the tree that holds it. Records are always rebuilt from disk: the sidecar is
merged with metadata freshly extracted from the archive.
"""

import json
import os
import re
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Tuple

from ...core.api.errors import FilesystemError
from ...core.compat.matcher import extract_version_from_filename
from .archive_reader import ArchiveMetadata, ArchiveMetadataReader
from .layout import (
    ARCHIVE_EXTENSION,
    MANIFESTS_FOLDER,
    MODS_FOLDER,
    InstallationLayout,
    ModTree
)
from .records import Location, PackageRecord

REGISTRY_ID = re.compile(r'^[A-Za-z0-9]{8}$')
UNKNOWN_VERSIONS = ("", "unknown")


def is_registry_project_id(value) -> bool:
    """True when the value is shaped like a Modrinth project ID (8 alphanumerics)"""
    return isinstance(value, str) and bool(REGISTRY_ID.match(value))


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


class ManifestStore:
    """Reads installed mods and reads/writes their sidecars"""

    def __init__(
        self,
        reader: Optional[ArchiveMetadataReader] = None,
        log_callback: Optional[Callable[[str], None]] = None
    ):
        self.reader = reader or ArchiveMetadataReader()
        self.log_callback = log_callback

    def _log(self, message: str):
        if self.log_callback:
            self.log_callback(message)

    # ==================== SIDECAR FILES ====================

    def _load_sidecar(self, path: str) -> Optional[Dict]:
        if not os.path.isfile(path):
            return None
        try:
            with open(path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            self._log(f"[Manifests] Ignoring unreadable sidecar {path}: {e}\n")
            return None
        return data if isinstance(data, dict) else None

    def write_sidecar(self, root: str, file_name: str, fields: Dict, tree: str = "server") -> Dict:
        """
        Merges fields into the sidecar of a mod and stamps updatedAt

        Args:
            root: Installation root
            file_name: Archive filename (without .disabled)
            fields: camelCase sidecar fields (projectId, name, versionNumber, ...)
            tree: "server" or "client"

        Returns:
            The sidecar as written

        Raises:
            FilesystemError: If the sidecar could not be written
        """
        mod_tree = InstallationLayout(root).tree(tree)
        return self.write_tree_sidecar(mod_tree, file_name, fields)

    def write_tree_sidecar(self, mod_tree: ModTree, file_name: str, fields: Dict) -> Dict:
        """Same as write_sidecar, for an explicit tree (standalone client roots)"""
        path = mod_tree.sidecar_path(file_name)
        sidecar = self._load_sidecar(path) or {}
        sidecar.update({k: v for k, v in fields.items() if v is not None})
        sidecar["fileName"] = file_name
        sidecar["updatedAt"] = utc_timestamp()

        try:
            os.makedirs(mod_tree.manifest_dir, exist_ok=True)
            with open(path, 'w', encoding='utf-8') as f:
                json.dump(sidecar, f, indent=2)
        except OSError as e:
            raise FilesystemError(f"Could not write sidecar {path}: {e}", cause=e)

        self._log(f"[Manifests] Wrote {mod_tree.name} sidecar for {file_name}\n")
        return sidecar

    def read_sidecar(self, root: str, file_name: str, tree: str = "server") -> Optional[Dict]:
        return self.read_tree_sidecar(InstallationLayout(root).tree(tree), file_name)

    def read_tree_sidecar(self, mod_tree: ModTree, file_name: str) -> Optional[Dict]:
        return self._load_sidecar(mod_tree.sidecar_path(file_name))

    def delete_sidecar(self, root: str, file_name: str, tree: Optional[str] = None) -> int:
        """
        Deletes the sidecar of a mod

        Args:
            root: Installation root
            file_name: Archive filename
            tree: "server", "client" or None for both

        Returns:
            Number of sidecars deleted
        """
        layout = InstallationLayout(root)
        trees = [layout.tree(tree)] if tree else layout.trees
        deleted = 0
        for mod_tree in trees:
            path = mod_tree.sidecar_path(file_name)
            if os.path.isfile(path):
                try:
                    os.remove(path)
                except OSError as e:
                    raise FilesystemError(f"Could not delete sidecar {path}: {e}", cause=e)
                deleted += 1
        return deleted

    def find_sidecars_by_project(self, root: str, project_id: str) -> List[Tuple[str, str]]:
        """
        Sidecars that belong to a project

        Returns:
            List of (tree name, file name)
        """
        if not project_id:
            return []
        found = []
        for mod_tree in InstallationLayout(root).trees:
            for file_name in mod_tree.list_sidecar_names():
                sidecar = self._load_sidecar(mod_tree.sidecar_path(file_name))
                if sidecar and sidecar.get("projectId") == project_id:
                    found.append((mod_tree.name, file_name))
        return found

    # ==================== RECORDS ====================

    @staticmethod
    def _merge(
        file_name: str,
        sidecar: Optional[Dict],
        metadata: Optional[ArchiveMetadata]
    ) -> PackageRecord:
        """
        Builds a record from a sidecar and freshly extracted archive metadata

        Compatibility fields always come from the archive. Sidecar name and
        versionNumber win when present. A well-formed sidecar projectId is
        kept over whatever the archive declares.
        """
        sidecar = sidecar or {}
        record = PackageRecord(file_name=file_name)

        sidecar_project = sidecar.get("projectId")
        archive_project = metadata.project_id if metadata else None
        if is_registry_project_id(sidecar_project):
            record.project_id = sidecar_project
        else:
            record.project_id = archive_project or sidecar_project or None

        sidecar_version = sidecar.get("versionNumber")
        if sidecar_version and str(sidecar_version).strip().lower() not in UNKNOWN_VERSIONS:
            record.version_number = str(sidecar_version)
        elif metadata and metadata.version and str(metadata.version).lower() not in UNKNOWN_VERSIONS:
            record.version_number = metadata.version
        else:
            record.version_number = extract_version_from_filename(file_name)

        record.name = sidecar.get("name") or (metadata.name if metadata else None)
        if not record.name:
            record.name = file_name[:-len(ARCHIVE_EXTENSION)] if file_name.endswith(ARCHIVE_EXTENSION) else file_name

        record.version_id = sidecar.get("versionId")
        record.source = sidecar.get("source")
        record.updated_at = sidecar.get("updatedAt") or sidecar.get("installedAt")

        if metadata:
            record.loader_kind = metadata.loader_kind
            record.environment = metadata.environment
            record.minecraft_version = metadata.minecraft_version or sidecar.get("minecraftVersion")
        else:
            record.minecraft_version = sidecar.get("minecraftVersion")

        return record

    def _collect(
        self,
        trees: List[Tuple[ModTree, Location]],
        legacy_dir: Optional[str],
        file_name: str
    ) -> PackageRecord:
        locations = set()
        # Probe order: server enabled, server disabled, client enabled, client disabled
        probes: List[Tuple[str, ModTree]] = []
        for mod_tree, location in trees:
            if mod_tree.has_enabled(file_name):
                locations.add(location)
                probes.append((mod_tree.archive_path(file_name), mod_tree))
            if mod_tree.has_disabled(file_name):
                locations.add(Location.DISABLED)
                probes.append((mod_tree.disabled_path(file_name), mod_tree))
        legacy_path = os.path.join(legacy_dir, file_name) if legacy_dir else None
        if legacy_path and os.path.isfile(legacy_path):
            locations.add(Location.DISABLED)
            probes.append((legacy_path, trees[0][0]))

        archive_path, home_tree = probes[0] if probes else (None, None)

        # Sidecar of the tree holding the archive first, then the others
        tree_order = [t for t, _ in trees]
        if home_tree is not None:
            tree_order.remove(home_tree)
            tree_order.insert(0, home_tree)
        sidecar = None
        for mod_tree in tree_order:
            sidecar = self._load_sidecar(mod_tree.sidecar_path(file_name))
            if sidecar is not None:
                break

        if sidecar is None and archive_path is None:
            return PackageRecord(file_name=file_name)

        metadata = self.reader.read_metadata(archive_path) if archive_path else None

        record = self._merge(file_name, sidecar, metadata)
        record.locations = frozenset(locations)
        record.archive_path = archive_path
        return record

    def read_installed(self, root: str) -> List[PackageRecord]:
        """
        Every mod present as an enabled or disabled archive

        Args:
            root: Installation root

        Returns:
            Records sorted by filename
        """
        layout = InstallationLayout(root)
        names = set(layout.server.list_file_names())
        names.update(layout.client.list_file_names())
        names.update(layout.list_legacy_disabled())

        trees = [(layout.server, Location.SERVER), (layout.client, Location.CLIENT)]
        return [
            self._collect(trees, layout.legacy_disabled_dir, file_name)
            for file_name in sorted(names)
        ]

    def read_installed_at_client(self, client_root: str) -> List[PackageRecord]:
        """Every mod present in a standalone client installation"""
        client_tree = ModTree(
            "client",
            os.path.join(str(client_root), MODS_FOLDER),
            os.path.join(str(client_root), MANIFESTS_FOLDER)
        )
        trees = [(client_tree, Location.CLIENT)]
        return [
            self._collect(trees, None, file_name)
            for file_name in client_tree.list_file_names()
        ]

    def read_record(self, root: str, file_name: str) -> PackageRecord:
        """
        Record of one mod

        With no sidecar and no archive the record only carries its filename.
        """
        layout = InstallationLayout(root)
        trees = [(layout.server, Location.SERVER), (layout.client, Location.CLIENT)]
        return self._collect(trees, layout.legacy_disabled_dir, file_name)
