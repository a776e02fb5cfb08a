"""
Installation root layout

    <root>/mods/*.jar[.disabled]
    <root>/minecraft-core-manifests/<fileName>.json
    <root>/client/mods/*.jar[.disabled]
    <root>/client/minecraft-core-manifests/<fileName>.json
    <root>/mods_disabled/*.jar        (legacy, migrated on first touch)
"""

import os
from dataclasses import dataclass
from typing import List, Optional

MODS_FOLDER = "mods"
MANIFESTS_FOLDER = "minecraft-core-manifests"
CLIENT_FOLDER = "client"
LEGACY_DISABLED_FOLDER = "mods_disabled"
DISABLED_SUFFIX = ".disabled"
ARCHIVE_EXTENSION = ".jar"


def strip_disabled_suffix(file_name: str) -> str:
    if file_name.endswith(DISABLED_SUFFIX):
        return file_name[:-len(DISABLED_SUFFIX)]
    return file_name


def is_archive_name(file_name: str) -> bool:
    """True for "x.jar" and "x.jar.disabled" entries"""
    return strip_disabled_suffix(file_name).lower().endswith(ARCHIVE_EXTENSION)


@dataclass(frozen=True)
class ModTree:
    """One mods folder with its sidecar folder"""
    name: str
    mods_dir: str
    manifest_dir: str

    def archive_path(self, file_name: str) -> str:
        return os.path.join(self.mods_dir, file_name)

    def disabled_path(self, file_name: str) -> str:
        return os.path.join(self.mods_dir, file_name + DISABLED_SUFFIX)

    def sidecar_path(self, file_name: str) -> str:
        return os.path.join(self.manifest_dir, file_name + ".json")

    def has_enabled(self, file_name: str) -> bool:
        return os.path.isfile(self.archive_path(file_name))

    def has_disabled(self, file_name: str) -> bool:
        return os.path.isfile(self.disabled_path(file_name))

    def list_file_names(self) -> List[str]:
        """Archive filenames in this tree, without the disabled suffix"""
        if not os.path.isdir(self.mods_dir):
            return []
        names = []
        for entry in sorted(os.listdir(self.mods_dir)):
            if is_archive_name(entry) and os.path.isfile(os.path.join(self.mods_dir, entry)):
                names.append(strip_disabled_suffix(entry))
        return names

    def list_sidecar_names(self) -> List[str]:
        """Filenames that have a sidecar in this tree"""
        if not os.path.isdir(self.manifest_dir):
            return []
        return [
            entry[:-len(".json")] for entry in sorted(os.listdir(self.manifest_dir))
            if entry.endswith(".json")
        ]


class InstallationLayout:
    """Paths of a dual-location installation (server tree + client tree)"""

    def __init__(self, root: str, client_root: Optional[str] = None):
        """
        Args:
            root: Installation root holding the server tree
            client_root: Client tree root (defaults to <root>/client)
        """
        self.root = str(root)
        self.client_root = str(client_root) if client_root else os.path.join(self.root, CLIENT_FOLDER)
        self.server = ModTree(
            "server",
            os.path.join(self.root, MODS_FOLDER),
            os.path.join(self.root, MANIFESTS_FOLDER)
        )
        self.client = ModTree(
            "client",
            os.path.join(self.client_root, MODS_FOLDER),
            os.path.join(self.client_root, MANIFESTS_FOLDER)
        )
        self.legacy_disabled_dir = os.path.join(self.root, LEGACY_DISABLED_FOLDER)

    @property
    def trees(self) -> List[ModTree]:
        return [self.server, self.client]

    def tree(self, name: str) -> ModTree:
        return self.client if name == "client" else self.server

    def legacy_disabled_path(self, file_name: str) -> str:
        return os.path.join(self.legacy_disabled_dir, file_name)

    def has_legacy_disabled(self, file_name: str) -> bool:
        return os.path.isfile(self.legacy_disabled_path(file_name))

    def list_legacy_disabled(self) -> List[str]:
        if not os.path.isdir(self.legacy_disabled_dir):
            return []
        return [
            entry for entry in sorted(os.listdir(self.legacy_disabled_dir))
            if entry.lower().endswith(ARCHIVE_EXTENSION)
            and os.path.isfile(os.path.join(self.legacy_disabled_dir, entry))
        ]

