"""
Mods Package - Installed mod records, reconciliation, installs and reports.
"""

from .archive_reader import ArchiveMetadata, ArchiveMetadataReader
from .compatibility import (
    CompatibilityReport,
    CompatibilityReportBuilder,
    CompatibilityStatus,
    ReportEntry
)
from .installer import InstallationPipeline, PackageDetails, sanitize_file_name
from .layout import InstallationLayout, ModTree
from .manifest_store import ManifestStore
from .reconciler import LocationReconciler, ReconcilePlan, ReconcileResult
from .records import Category, Location, PackageRecord
from .results import BatchResult, InstallResult

__all__ = [
    "ArchiveMetadata",
    "ArchiveMetadataReader",
    "CompatibilityReport",
    "CompatibilityReportBuilder",
    "CompatibilityStatus",
    "ReportEntry",
    "InstallationPipeline",
    "PackageDetails",
    "sanitize_file_name",
    "InstallationLayout",
    "ModTree",
    "ManifestStore",
    "LocationReconciler",
    "ReconcilePlan",
    "ReconcileResult",
    "Category",
    "Location",
    "PackageRecord",
    "BatchResult",
    "InstallResult",
]
