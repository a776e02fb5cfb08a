"""
Mod installation pipeline

Installs and updates mods in the server/client trees of an installation:
resolve a download URL, download, optionally rename from archive metadata,
replicate, write sidecars and invalidate caches. Failures come back as
InstallResult/BatchResult objects; nothing raises across this boundary.
"""

import os
import re
import shutil
from dataclasses import dataclass, fields
from typing import Callable, Dict, Iterable, List, Optional, Tuple, Union

from ...core.api.errors import (
    FilesystemError,
    InvalidInputError,
    ModSyncError,
    NotFoundError
)
from ...core.api.models import VersionRecord
from ...core.api.registry import RegistryClient
from ...core.download.downloader import ModDownloader, progress_event
from .archive_reader import ArchiveMetadataReader
from .layout import ARCHIVE_EXTENSION, InstallationLayout, ModTree
from .manifest_store import ManifestStore
from .reconciler import LocationReconciler
from .records import Category, Location
from .results import BatchResult, InstallResult

_UNSAFE_CHARS = re.compile(r'[^a-zA-Z0-9_.-]')


def sanitize_file_name(name: str) -> str:
    """
    Filesystem-safe archive name derived from a display name

    Args:
        name: Display name (ej: "Sodium Extra")

    Returns:
        Filename with .jar extension (ej: "Sodium_Extra.jar")
    """
    base = _UNSAFE_CHARS.sub('_', name)
    if base.lower().endswith(ARCHIVE_EXTENSION):
        return base
    return f"{base}{ARCHIVE_EXTENSION}"


@dataclass
class PackageDetails:
    """What to install"""
    project_id: str
    name: str
    source: str = "modrinth"
    download_url: Optional[str] = None
    selected_version_id: Optional[str] = None
    version_number: Optional[str] = None
    runtime_version: Optional[str] = None
    loader: Optional[str] = None
    force_reinstall: bool = False
    old_file_name: Optional[str] = None
    target_category: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict) -> "PackageDetails":
        """Accepts snake_case keys plus the camelCase names used in sidecars"""
        aliases = {
            "id": "project_id",
            "projectId": "project_id",
            "downloadUrl": "download_url",
            "selectedVersionId": "selected_version_id",
            "versionNumber": "version_number",
            "version": "runtime_version",
            "forceReinstall": "force_reinstall",
            "oldFileName": "old_file_name",
            "targetCategory": "target_category",
        }
        known = {f.name for f in fields(cls)}
        values = {}
        for key, value in data.items():
            key = aliases.get(key, key)
            if key in known:
                values[key] = value
        # Missing required fields are reported by validation, not here
        values.setdefault("project_id", "")
        values.setdefault("name", "")
        return cls(**values)

    @property
    def identifier(self) -> str:
        return self.old_file_name or self.project_id or self.name or "unknown"


DetailsLike = Union[PackageDetails, Dict]


class InstallationPipeline:
    """Installs, updates and disables mods"""

    def __init__(
        self,
        registry: RegistryClient,
        downloader: Optional[ModDownloader] = None,
        reader: Optional[ArchiveMetadataReader] = None,
        store: Optional[ManifestStore] = None,
        reconciler: Optional[LocationReconciler] = None,
        log_callback: Optional[Callable[[str], None]] = None
    ):
        """
        Args:
            registry: Shared registry client
            downloader: File downloader (a default one is created if None)
            reader: Archive metadata reader shared with the store
            store: Sidecar store
            reconciler: Used by the bulk disable operation
            log_callback: Optional callback for logging messages
        """
        self.registry = registry
        self.downloader = downloader or ModDownloader(log_callback=log_callback)
        self.reader = reader or (store.reader if store else ArchiveMetadataReader())
        self.store = store or ManifestStore(reader=self.reader, log_callback=log_callback)
        self.reconciler = reconciler or LocationReconciler(reader=self.reader, log_callback=log_callback)
        self.log_callback = log_callback

    def _log(self, message: str):
        if self.log_callback:
            self.log_callback(message)

    # ==================== HELPERS ====================

    @staticmethod
    def _details(details: DetailsLike) -> PackageDetails:
        if isinstance(details, PackageDetails):
            return details
        if isinstance(details, dict):
            return PackageDetails.from_dict(details)
        raise InvalidInputError("Invalid mod details")

    @staticmethod
    def _validate(details: PackageDetails):
        if not details.project_id or not details.name:
            raise InvalidInputError("Invalid mod details: project id and name are required")
        if details.target_category:
            try:
                Category.parse(details.target_category)
            except ValueError:
                raise InvalidInputError(f"Invalid target category: {details.target_category}")

    @staticmethod
    def _target_file_name(details: PackageDetails) -> str:
        # Updates keep the installed filename
        if details.force_reinstall and details.old_file_name:
            return details.old_file_name
        return sanitize_file_name(details.name)

    @staticmethod
    def _probe_category(layout: InstallationLayout, file_name: str, fallback: Optional[str]) -> Category:
        server = layout.server.has_enabled(file_name)
        client = layout.client.has_enabled(file_name)
        if server and client:
            return Category.BOTH
        if client:
            return Category.CLIENT_ONLY
        if server:
            return Category.SERVER_ONLY
        if fallback:
            category = Category.parse(fallback)
            if category != Category.DISABLED:
                return category
        return Category.SERVER_ONLY

    def _resolve_download(self, details: PackageDetails) -> Tuple[str, Optional[VersionRecord]]:
        """
        Download URL for a mod: direct URL, selected version or latest match

        Returns:
            Tuple of (url, version record if one was looked up)
        """
        version: Optional[VersionRecord] = None

        if details.download_url:
            # Version details only feed the sidecar here
            if details.selected_version_id:
                try:
                    version = self.registry.get_version_detail(
                        details.selected_version_id,
                        project_id=details.project_id,
                        runtime_version=details.runtime_version,
                        loader=details.loader
                    )
                except ModSyncError as e:
                    self._log(f"[Installer] Version info unavailable for {details.name}: {e}\n")
            return details.download_url, version

        if details.selected_version_id:
            version = self.registry.get_version_detail(
                details.selected_version_id,
                project_id=details.project_id,
                runtime_version=details.runtime_version,
                loader=details.loader
            )

        if version is None:
            version = self.registry.get_latest_version_info(
                details.project_id, details.runtime_version, details.loader
            )
            if version is None:
                raise NotFoundError(f"No matching versions found for {details.name}")

        primary = version.primary_file()
        if primary is None:
            raise NotFoundError(f"No files found for {details.name} version {version.version_number}")
        return primary.url, version

    def _sidecar_fields(
        self,
        details: PackageDetails,
        file_name: str,
        version: Optional[VersionRecord],
        minecraft_version=None
    ) -> Dict:
        version_number = (version.version_number if version else None) or details.version_number or "unknown"
        data = {
            "projectId": details.project_id,
            "name": details.name,
            "fileName": file_name,
            "versionId": (version.id if version else None) or details.selected_version_id or "unknown",
            "versionNumber": version_number,
            "source": details.source,
            "minecraftVersion": minecraft_version
        }
        if version is not None and version.fallback_from_404:
            data["fallbackFrom404"] = True
            data["originalVersionId"] = version.original_version_id
        return data

    def _remove_stale_copies(self, root: str, layout: InstallationLayout, project_id: str,
                             keep_file_name: str, trees: Iterable[str]):
        """Removes enabled copies and sidecars of older files of the same project"""
        affected = set(trees)
        for tree_name, file_name in self.store.find_sidecars_by_project(root, project_id):
            if file_name == keep_file_name or tree_name not in affected:
                continue
            mod_tree = layout.tree(tree_name)
            if mod_tree.has_disabled(file_name):
                continue
            archive = mod_tree.archive_path(file_name)
            try:
                if os.path.isfile(archive):
                    os.remove(archive)
                    self.reader.invalidate(archive)
                self.store.delete_sidecar(root, file_name, tree=tree_name)
            except OSError as e:
                raise FilesystemError(f"Could not remove old file {file_name}: {e}", cause=e)
            self._log(f"[Installer] Removed previous {tree_name} file {file_name}\n")

    # ==================== INSTALL ====================

    def install(
        self,
        root: str,
        details: DetailsLike,
        progress_callback: Optional[Callable[[Dict], None]] = None
    ) -> InstallResult:
        """
        Installs or updates a mod in an installation

        Args:
            root: Installation root
            details: PackageDetails (or an equivalent dict)
            progress_callback: Receives download progress events

        Returns:
            InstallResult
        """
        file_name = None
        name = ""
        event_id = "mod"
        try:
            if not root:
                raise InvalidInputError("Server path not provided")
            details = self._details(details)
            name = details.name or ""
            event_id = f"mod-{details.project_id}"
            self._validate(details)
            file_name = self._target_file_name(details)
            return self._install(str(root), details, file_name, event_id, progress_callback)
        except OSError as e:
            error = FilesystemError(f"Filesystem error installing {name}: {e}", cause=e)
            self._log(f"[Installer] {error}\n")
            if progress_callback:
                progress_callback(progress_event(event_id, name, error=str(error)))
            return InstallResult.failure(error, file_name)
        except ModSyncError as e:
            self._log(f"[Installer] Failed to install {name or file_name}: {e}\n")
            if progress_callback:
                progress_callback(progress_event(event_id, name, error=str(e)))
            return InstallResult.failure(e, file_name)

    def _install(
        self,
        root: str,
        details: PackageDetails,
        file_name: str,
        event_id: str,
        progress_callback: Optional[Callable[[Dict], None]]
    ) -> InstallResult:
        layout = InstallationLayout(root)
        updating = bool(details.force_reinstall)

        category = self._probe_category(layout, details.old_file_name or file_name, details.target_category)
        self._log(f"[Installer] Installing {details.name} as {file_name} ({category.value})\n")

        url, version = self._resolve_download(details)

        primary_tree = layout.client if category == Category.CLIENT_ONLY else layout.server
        target_path = primary_tree.archive_path(file_name)
        self.downloader.download(
            url,
            target_path,
            name=details.name,
            event_id=event_id,
            progress_callback=progress_callback
        )
        self.reader.invalidate(target_path)

        metadata = self.reader.read_metadata(target_path)

        # Clean filename from archive metadata, not for updates
        if metadata and metadata.name and not updating:
            clean_name = sanitize_file_name(metadata.name)
            if clean_name != file_name:
                clean_path = primary_tree.archive_path(clean_name)
                try:
                    os.replace(target_path, clean_path)
                except OSError as e:
                    raise FilesystemError(f"Could not rename {file_name}: {e}", cause=e)
                self.reader.invalidate(target_path)
                self.reader.invalidate(clean_path)
                self._log(f"[Installer] Renamed {file_name} to {clean_name}\n")
                file_name, target_path = clean_name, clean_path

        trees: List[ModTree] = [primary_tree]
        if category == Category.BOTH:
            other_tree = layout.client if primary_tree is layout.server else layout.server
            other_path = other_tree.archive_path(file_name)
            try:
                os.makedirs(other_tree.mods_dir, exist_ok=True)
                shutil.copy2(target_path, other_path)
            except OSError as e:
                raise FilesystemError(f"Could not copy {file_name} to {other_tree.name}: {e}", cause=e)
            self.reader.invalidate(other_path)
            trees.append(other_tree)

        self._remove_stale_copies(root, layout, details.project_id, file_name, [t.name for t in trees])
        if details.old_file_name and details.old_file_name != file_name:
            for mod_tree in trees:
                old_path = mod_tree.archive_path(details.old_file_name)
                if os.path.isfile(old_path):
                    os.remove(old_path)
                    self.reader.invalidate(old_path)
                self.store.delete_sidecar(root, details.old_file_name, tree=mod_tree.name)

        sidecar = self._sidecar_fields(details, file_name, version,
                                       metadata.minecraft_version if metadata else None)
        for mod_tree in trees:
            self.store.write_tree_sidecar(mod_tree, file_name, sidecar)

        self.registry.invalidate_cache(details.project_id)

        self._log(f"[Installer] Installed {details.name} ({file_name})\n")
        return InstallResult(
            success=True,
            file_name=file_name,
            category=category.value,
            version_number=sidecar["versionNumber"],
            paths=[t.archive_path(file_name) for t in trees]
        )

    def install_to_client(
        self,
        client_root: str,
        details: DetailsLike,
        progress_callback: Optional[Callable[[Dict], None]] = None
    ) -> InstallResult:
        """
        Installs a mod into a standalone client installation

        Args:
            client_root: Client root holding mods/ and minecraft-core-manifests/
            details: PackageDetails (or an equivalent dict)
            progress_callback: Receives download progress events

        Returns:
            InstallResult (an already installed file without update is a success)
        """
        file_name = None
        name = ""
        event_id = "client-mod"
        try:
            if not client_root:
                raise InvalidInputError("Client path is required for client mod installation")
            details = self._details(details)
            name = details.name or ""
            event_id = f"client-mod-{details.project_id}"
            self._validate(details)
            file_name = sanitize_file_name(details.name)

            client_tree = InstallationLayout(client_root, client_root=client_root).client
            target_path = client_tree.archive_path(file_name)

            if os.path.isfile(target_path) and not details.force_reinstall:
                return InstallResult(success=True, file_name=file_name, category=Category.CLIENT_ONLY.value,
                                     paths=[target_path], message="Mod already installed")

            url, version = self._resolve_client_download(details)

            self.downloader.download(url, target_path, name=details.name, event_id=event_id,
                                     progress_callback=progress_callback)
            self.reader.invalidate(target_path)

            if details.force_reinstall:
                self._remove_stale_client_copies(client_tree, details.project_id, file_name)

            metadata = self.reader.read_metadata(target_path)
            sidecar = self._sidecar_fields(details, file_name, version,
                                           metadata.minecraft_version if metadata else None)
            self.store.write_tree_sidecar(client_tree, file_name, sidecar)
            self.registry.invalidate_cache(details.project_id)

            self._log(f"[Installer] Installed {details.name} to client ({file_name})\n")
            return InstallResult(
                success=True,
                file_name=file_name,
                category=Category.CLIENT_ONLY.value,
                version_number=sidecar["versionNumber"],
                paths=[target_path]
            )
        except OSError as e:
            error = FilesystemError(f"Filesystem error installing {name}: {e}", cause=e)
            self._log(f"[Installer] {error}\n")
            if progress_callback:
                progress_callback(progress_event(event_id, name, error=str(error)))
            return InstallResult.failure(error, file_name)
        except ModSyncError as e:
            self._log(f"[Installer] Failed to install client mod {name or file_name}: {e}\n")
            if progress_callback:
                progress_callback(progress_event(event_id, name, error=str(e)))
            return InstallResult.failure(e, file_name)

    def _resolve_client_download(self, details: PackageDetails) -> Tuple[str, Optional[VersionRecord]]:
        """A selected version that does not fit the loader/runtime falls back to the best match"""
        if details.download_url:
            return self._resolve_download(details)

        version = None
        if details.selected_version_id:
            try:
                version = self.registry.get_version_detail(
                    details.selected_version_id, project_id=details.project_id,
                    runtime_version=details.runtime_version, loader=details.loader
                )
            except NotFoundError:
                version = None
            if version is not None:
                loaders = [l.lower() for l in version.loaders]
                if (details.loader and details.loader.lower() not in loaders) or \
                        (details.runtime_version and details.runtime_version not in version.game_versions):
                    version = None

        if version is None:
            candidates = self.registry.query_versions(
                details.project_id, details.loader, details.runtime_version, latest_only=True
            )
            if not candidates:
                raise NotFoundError("No compatible versions found for this mod")
            version = candidates[0]

        primary = version.primary_file()
        if primary is None:
            raise NotFoundError("No files found for this mod version")
        return primary.url, version

    def _remove_stale_client_copies(self, client_tree: ModTree, project_id: str, keep_file_name: str):
        for file_name in client_tree.list_sidecar_names():
            if file_name == keep_file_name:
                continue
            sidecar = self.store.read_tree_sidecar(client_tree, file_name)
            if not sidecar or sidecar.get("projectId") != project_id:
                continue
            try:
                archive = client_tree.archive_path(file_name)
                if os.path.isfile(archive):
                    os.remove(archive)
                    self.reader.invalidate(archive)
                os.remove(client_tree.sidecar_path(file_name))
            except OSError as e:
                raise FilesystemError(f"Could not remove old client file {file_name}: {e}", cause=e)

    # ==================== BATCH ====================

    def update_many(
        self,
        root: str,
        items: Iterable[DetailsLike],
        progress_callback: Optional[Callable[[Dict], None]] = None
    ) -> BatchResult:
        """
        Updates several mods; one failure never stops the others

        Each item keeps its installed filename (old_file_name) and is
        reinstalled in place.

        Returns:
            BatchResult with the number of mods updated
        """
        result = BatchResult()
        for item in items:
            try:
                details = self._details(item)
            except ModSyncError as e:
                result.add_failure(str(item), str(e))
                continue
            details.force_reinstall = True

            outcome = self.install(root, details, progress_callback)
            if outcome.success:
                result.count += 1
            else:
                result.add_failure(details.identifier, outcome.error or "Unknown error")
                self._log(f"[Installer] Update failed for {details.identifier}: {outcome.error}\n")

        if result.failures:
            self._log(f"[Installer] {result.error}\n")
        return result

    def disable_many(self, root: str, file_names: Iterable[str]) -> BatchResult:
        """Disables several mods; failures are collected per file"""
        result = BatchResult()
        for file_name in file_names:
            outcome = self.reconciler.reconcile(file_name, Category.DISABLED, root)
            if outcome.success:
                result.count += 1
            else:
                result.add_failure(file_name, outcome.error or "Unknown error")
                self._log(f"[Installer] Could not disable {file_name}: {outcome.error}\n")
        if result.failures:
            self._log(f"[Installer] {result.error}\n")
        return result

    def enable_and_update(
        self,
        root: str,
        file_name: str,
        project_id: str,
        version_id: str,
        runtime_version: Optional[str] = None,
        loader: Optional[str] = None,
        progress_callback: Optional[Callable[[Dict], None]] = None
    ) -> InstallResult:
        """
        Installs a new version of a disabled mod under its original filename

        The disabled copies are only removed once the new version is in place.

        Returns:
            InstallResult
        """
        try:
            if not root or not file_name or not project_id or not version_id:
                raise InvalidInputError("Missing required parameters for enable and update operation")

            layout = InstallationLayout(root)
            locations = LocationReconciler.locations_of(layout, file_name)
            if Location.DISABLED not in locations or Location.SERVER in locations or Location.CLIENT in locations:
                raise InvalidInputError(f"Mod {file_name} is not disabled")

            version = self.registry.get_version_detail(
                version_id, project_id=project_id, runtime_version=runtime_version, loader=loader
            )
            primary = version.primary_file()
            if primary is None:
                raise NotFoundError(f"Target version {version_id} has no files")

            try:
                name = self.registry.get_project_info(project_id).title or version.name or project_id
            except ModSyncError:
                name = version.name or project_id

            disabled_in_server = layout.server.has_disabled(file_name) or layout.has_legacy_disabled(file_name)
            details = PackageDetails(
                project_id=project_id,
                name=name,
                download_url=primary.url,
                selected_version_id=version.id,
                runtime_version=runtime_version,
                loader=loader,
                force_reinstall=True,
                old_file_name=file_name,
                target_category=None if disabled_in_server else Category.CLIENT_ONLY.value
            )
        except ModSyncError as e:
            self._log(f"[Installer] Enable and update failed for {file_name}: {e}\n")
            return InstallResult.failure(e, file_name)

        outcome = self.install(root, details, progress_callback)
        if not outcome.success:
            return outcome

        installed_trees = [t for t in layout.trees if t.has_enabled(outcome.file_name)]
        try:
            for stale in (layout.server.disabled_path(file_name),
                          layout.client.disabled_path(file_name),
                          layout.legacy_disabled_path(file_name)):
                if os.path.isfile(stale):
                    os.remove(stale)
                    self.reader.invalidate(stale)
            for mod_tree in layout.trees:
                if mod_tree not in installed_trees:
                    self.store.delete_sidecar(root, file_name, tree=mod_tree.name)
        except (OSError, ModSyncError) as e:
            self._log(f"[Installer] Could not remove disabled copies of {file_name}: {e}\n")
            return InstallResult(success=False, file_name=outcome.file_name, error=str(e),
                                 error_kind=getattr(e, "kind", "filesystem"))

        outcome.message = f"Mod {file_name} successfully enabled and updated to version {outcome.version_number}"
        return outcome
