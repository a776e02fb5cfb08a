"""
modsync - Minecraft mod version resolution and synchronization
Command line entry point to inspect, check and move the mods of an installation
"""

import argparse
import json
import sys

from modsync.core.api import ModSyncError, RegistryClient
from modsync.managers.mods import (
    CompatibilityReportBuilder,
    CompatibilityStatus,
    LocationReconciler,
    ManifestStore
)
from modsync.utils.config import ConfigStore


def _log_to_stderr(message: str):
    sys.stderr.write(message)


def _registry(args) -> RegistryClient:
    config = ConfigStore().load()
    return RegistryClient.from_config(config, log_callback=_log_to_stderr if args.verbose else None)


def cmd_list(args) -> int:
    """Lists the installed mods of a root"""
    store = ManifestStore()
    records = store.read_installed_at_client(args.root) if args.client else store.read_installed(args.root)
    if args.json:
        print(json.dumps([r.to_dict() for r in records], indent=2))
        return 0

    for record in records:
        category = record.category.value if record.category else "-"
        print(f"{record.file_name:<50} {category:<12} {record.version_number or '?':<16} "
              f"{record.project_id or '-'}")
    print(f"{len(records)} mod(s)")
    return 0


def cmd_report(args) -> int:
    """Checks the installed (or disabled) mods against a Minecraft version"""
    builder = CompatibilityReportBuilder(
        _registry(args),
        max_workers=args.workers,
        log_callback=_log_to_stderr if args.verbose else None
    )
    if args.disabled:
        report = builder.build_disabled_report(args.root, args.target, args.loader)
    else:
        report = builder.build_report(args.root, args.target, args.loader)

    if args.json:
        print(json.dumps(report.to_dict(), indent=2))
        return 0

    for status, entries in report.grouped().items():
        if not entries:
            continue
        print(f"\n{status.value} ({len(entries)})")
        for entry in entries:
            print(f"  {entry.record.file_name}: {entry.reason}")
    return 1 if report.by_status(CompatibilityStatus.INCOMPATIBLE) else 0


def cmd_reconcile(args) -> int:
    """Moves a mod to a category"""
    reconciler = LocationReconciler(log_callback=_log_to_stderr if args.verbose else None)
    if args.dry_run:
        try:
            plan = reconciler.plan(args.file_name, args.category, args.root)
        except ModSyncError as e:
            print(f"Error: {e}")
            return 1
        for step in plan.steps:
            print(step.describe())
        if plan.is_noop:
            print("Nothing to do")
        return 0

    result = reconciler.reconcile(args.file_name, args.category, args.root)
    print(json.dumps(result.to_dict(), indent=2))
    return 0 if result.success else 1


def cmd_search(args) -> int:
    """Searches mods on Modrinth"""
    try:
        hits, total = _registry(args).search(
            args.query, loader=args.loader, runtime_version=args.version, side=args.side,
            limit=args.limit
        )
    except ModSyncError as e:
        print(f"Error: {e}")
        return 1
    for hit in hits:
        print(f"{hit.get('project_id', ''):<10} {hit.get('title', '')}")
    print(f"{len(hits)} of {total} result(s)")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="modsync", description="Minecraft mod synchronization")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log engine activity to stderr")
    subparsers = parser.add_subparsers(dest="command", required=True)

    list_parser = subparsers.add_parser("list", help="List installed mods")
    list_parser.add_argument("root", help="Installation root")
    list_parser.add_argument("--client", action="store_true", help="Root is a standalone client")
    list_parser.add_argument("--json", action="store_true", help="JSON output")
    list_parser.set_defaults(func=cmd_list)

    report_parser = subparsers.add_parser("report", help="Compatibility report for a Minecraft version")
    report_parser.add_argument("root", help="Installation root")
    report_parser.add_argument("--target", required=True, help="Target Minecraft version (ej: 1.20.4)")
    report_parser.add_argument("--loader", help="Loader to check (defaults to each mod's loader)")
    report_parser.add_argument("--disabled", action="store_true", help="Check disabled mods instead")
    report_parser.add_argument("--workers", type=int, default=4, help="Concurrent registry queries")
    report_parser.add_argument("--json", action="store_true", help="JSON output")
    report_parser.set_defaults(func=cmd_report)

    reconcile_parser = subparsers.add_parser("reconcile", help="Move a mod to a category")
    reconcile_parser.add_argument("root", help="Installation root")
    reconcile_parser.add_argument("file_name", help="Archive filename (ej: sodium.jar)")
    reconcile_parser.add_argument(
        "category",
        choices=["server-only", "client-only", "both", "disabled"],
        help="Target category"
    )
    reconcile_parser.add_argument("--dry-run", action="store_true", help="Only print the plan")
    reconcile_parser.set_defaults(func=cmd_reconcile)

    search_parser = subparsers.add_parser("search", help="Search mods on Modrinth")
    search_parser.add_argument("query", nargs="?", default="", help="Search text")
    search_parser.add_argument("--loader", help="Loader facet")
    search_parser.add_argument("--version", help="Minecraft version facet")
    search_parser.add_argument("--side", choices=["client", "server", "both"], help="Required side")
    search_parser.add_argument("--limit", type=int, default=20, help="Results per page")
    search_parser.set_defaults(func=cmd_search)

    return parser


def main(argv=None) -> int:
    """Application entry point"""
    args = build_parser().parse_args(argv)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
