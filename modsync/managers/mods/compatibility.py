"""
Compatibility reports

Checks every installed mod against a target Minecraft version and tells
which ones can stay, which need an update and which have no usable version.
"""

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional

from ...core.api.errors import ModSyncError, NotFoundError
from ...core.api.models import VersionRecord
from ...core.api.registry import RegistryClient
from ...core.compat.matcher import matches
from .manifest_store import ManifestStore
from .records import PackageRecord


class CompatibilityStatus(Enum):
    COMPATIBLE = "compatible"
    INCOMPATIBLE = "incompatible"
    NEEDS_UPDATE = "needs-update"
    UNKNOWN = "unknown"
    ERROR = "error"


@dataclass
class ReportEntry:
    """Verdict for one mod"""
    record: PackageRecord
    status: CompatibilityStatus
    reason: str = ""
    upgrade: Optional[VersionRecord] = None

    def to_dict(self) -> Dict:
        data = {
            "fileName": self.record.file_name,
            "projectId": self.record.project_id,
            "name": self.record.name,
            "currentVersion": self.record.version_number,
            "status": self.status.value,
            "reason": self.reason
        }
        if self.upgrade is not None:
            data["latestVersion"] = self.upgrade.version_number
            data["upgrade"] = self.upgrade.to_dict()
        return data


@dataclass
class CompatibilityReport:
    target_runtime_version: str
    entries: List[ReportEntry] = field(default_factory=list)

    def by_status(self, status: CompatibilityStatus) -> List[ReportEntry]:
        return [e for e in self.entries if e.status == status]

    def grouped(self) -> Dict[CompatibilityStatus, List[ReportEntry]]:
        groups: Dict[CompatibilityStatus, List[ReportEntry]] = {s: [] for s in CompatibilityStatus}
        for entry in self.entries:
            groups[entry.status].append(entry)
        return groups

    def get(self, file_name: str) -> Optional[ReportEntry]:
        for entry in self.entries:
            if entry.record.file_name == file_name:
                return entry
        return None

    def to_dict(self) -> Dict:
        return {
            "targetVersion": self.target_runtime_version,
            "entries": [e.to_dict() for e in self.entries]
        }


class CompatibilityReportBuilder:
    """Builds compatibility reports for an installation"""

    def __init__(
        self,
        registry: RegistryClient,
        store: Optional[ManifestStore] = None,
        max_workers: int = 4,
        log_callback: Optional[Callable[[str], None]] = None
    ):
        """
        Args:
            registry: Shared registry client (its rate gate serializes the queries)
            store: Manifest store used to read installed mods
            max_workers: Registry queries issued concurrently
            log_callback: Optional callback for logging messages
        """
        self.registry = registry
        self.store = store or ManifestStore(log_callback=log_callback)
        self.max_workers = max(1, max_workers)
        self.log_callback = log_callback

    def _log(self, message: str):
        if self.log_callback:
            self.log_callback(message)

    @staticmethod
    def _loader_for(record: PackageRecord, loader: Optional[str]) -> Optional[str]:
        if loader:
            return loader
        return record.loader_kind.value if record.loader_kind else None

    def _run(self, records: List[PackageRecord], evaluate) -> List[ReportEntry]:
        if self.max_workers == 1 or len(records) <= 1:
            return [evaluate(r) for r in records]
        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            return list(executor.map(evaluate, records))

    def _guard(self, record: PackageRecord, check) -> ReportEntry:
        """Turns registry errors into unknown/error entries"""
        try:
            return check()
        except NotFoundError as e:
            return ReportEntry(record, CompatibilityStatus.UNKNOWN, f"Not found on registry: {e}")
        except ModSyncError as e:
            self._log(f"[Compatibility] {record.file_name}: {e}\n")
            return ReportEntry(record, CompatibilityStatus.ERROR, str(e))

    # ==================== ENABLED MODS ====================

    def _evaluate(self, record: PackageRecord, target: str, loader: Optional[str]) -> ReportEntry:
        if not record.project_id:
            return ReportEntry(record, CompatibilityStatus.COMPATIBLE, "No registry identity to check")

        def check() -> ReportEntry:
            loader_name = self._loader_for(record, loader)
            versions = self.registry.query_versions(record.project_id, loader_name, target)
            if not versions:
                return ReportEntry(record, CompatibilityStatus.INCOMPATIBLE, "no versions for target runtime")

            constraint_ok = matches(record.minecraft_version, target) if record.minecraft_version else True
            present = any(
                v.version_number == record.version_number or (record.version_id and v.id == record.version_id)
                for v in versions
            )
            if constraint_ok and present:
                return ReportEntry(record, CompatibilityStatus.COMPATIBLE,
                                   f"Installed version supports {target}")

            latest = self.registry.query_versions(record.project_id, loader_name, target, latest_only=True)
            upgrade = latest[0] if latest else None
            if upgrade is not None and upgrade.version_number != record.version_number:
                return ReportEntry(
                    record,
                    CompatibilityStatus.NEEDS_UPDATE,
                    f"Update available: {record.version_number} -> {upgrade.version_number}",
                    upgrade=upgrade
                )
            return ReportEntry(record, CompatibilityStatus.INCOMPATIBLE,
                               f"Installed version does not support {target}")

        return self._guard(record, check)

    def build_report(self, root: str, target_runtime_version: str,
                     loader: Optional[str] = None) -> CompatibilityReport:
        """
        Checks every enabled mod against a target Minecraft version

        Args:
            root: Installation root
            target_runtime_version: Minecraft version to check (ej: "1.20.4")
            loader: Loader to query for (defaults to each archive's loader)

        Returns:
            CompatibilityReport
        """
        records = [r for r in self.store.read_installed(root) if r.is_enabled]
        self._log(f"[Compatibility] Checking {len(records)} mod(s) against {target_runtime_version}\n")
        entries = self._run(records, lambda r: self._evaluate(r, target_runtime_version, loader))
        return CompatibilityReport(target_runtime_version, entries)

    # ==================== DISABLED MODS ====================

    def _evaluate_disabled(self, record: PackageRecord, target: str, loader: Optional[str]) -> ReportEntry:
        if not record.project_id:
            return ReportEntry(record, CompatibilityStatus.UNKNOWN, "No project ID available")

        if record.minecraft_version and matches(record.minecraft_version, target):
            return ReportEntry(record, CompatibilityStatus.COMPATIBLE,
                               f"Current version is compatible with {target}, can be re-enabled")

        def check() -> ReportEntry:
            latest = self.registry.query_versions(
                record.project_id, self._loader_for(record, loader), target, latest_only=True
            )
            upgrade = latest[0] if latest else None
            if upgrade is not None and upgrade.version_number != record.version_number:
                return ReportEntry(
                    record,
                    CompatibilityStatus.NEEDS_UPDATE,
                    f"Re-enable with update: {record.version_number} -> {upgrade.version_number}",
                    upgrade=upgrade
                )
            reason = "Current version is latest" if upgrade else "No compatible versions found"
            return ReportEntry(record, CompatibilityStatus.INCOMPATIBLE, reason)

        return self._guard(record, check)

    def build_disabled_report(self, root: str, target_runtime_version: str,
                              loader: Optional[str] = None) -> CompatibilityReport:
        """Recommends re-enabling (as is or with an update) disabled mods"""
        records = [r for r in self.store.read_installed(root) if r.is_disabled]
        entries = self._run(records, lambda r: self._evaluate_disabled(r, target_runtime_version, loader))
        return CompatibilityReport(target_runtime_version, entries)
