"""Tests for location reconciliation."""

import json
import os

import pytest

from modsync.managers.mods.archive_reader import ArchiveMetadataReader
from modsync.managers.mods.layout import InstallationLayout
from modsync.managers.mods.reconciler import DELETE, LocationReconciler
from modsync.managers.mods.records import Category, Location

FILE = "mod.jar"

STARTING_STATES = {
    "server-only": ["server"],
    "client-only": ["client"],
    "both": ["server", "client"],
    "disabled-server": ["server-disabled"],
    "disabled-client": ["client-disabled"],
    "legacy": ["legacy"],
    "server-and-stale-disabled": ["server", "client-disabled"],
}


def place(layout, make_jar, slots):
    paths = {
        "server": layout.server.archive_path(FILE),
        "client": layout.client.archive_path(FILE),
        "server-disabled": layout.server.disabled_path(FILE),
        "client-disabled": layout.client.disabled_path(FILE),
        "legacy": layout.legacy_disabled_path(FILE),
    }
    for slot in slots:
        make_jar(paths[slot])


def physical_copies(layout):
    return [
        p for p in (
            layout.server.archive_path(FILE),
            layout.client.archive_path(FILE),
            layout.server.disabled_path(FILE),
            layout.client.disabled_path(FILE),
            layout.legacy_disabled_path(FILE),
        ) if os.path.isfile(p)
    ]


def write_sidecar(mod_tree, data):
    os.makedirs(mod_tree.manifest_dir, exist_ok=True)
    with open(mod_tree.sidecar_path(FILE), "w", encoding="utf-8") as f:
        json.dump(data, f)


@pytest.fixture
def layout(root):
    return InstallationLayout(root)


@pytest.fixture
def reconciler():
    return LocationReconciler()


class TestReconcile:
    def test_idempotent_server_only(self, reconciler, layout, make_jar):
        place(layout, make_jar, ["client"])

        first = reconciler.reconcile(FILE, "server-only", layout.root)
        second = reconciler.reconcile(FILE, "server-only", layout.root)

        assert first.success and second.success
        assert first.locations == frozenset({Location.SERVER})
        assert second.locations == frozenset({Location.SERVER})
        assert second.steps == []

    @pytest.mark.parametrize("start", sorted(STARTING_STATES))
    @pytest.mark.parametrize("target", [c.value for c in Category])
    def test_never_loses_the_last_copy(self, reconciler, layout, make_jar, start, target):
        place(layout, make_jar, STARTING_STATES[start])

        result = reconciler.reconcile(FILE, target, layout.root)

        assert result.success, result.error
        assert physical_copies(layout)
        assert result.locations == Category(target).locations

    @pytest.mark.parametrize("start", sorted(STARTING_STATES))
    def test_chained_reconciles_keep_a_copy(self, reconciler, layout, make_jar, start):
        place(layout, make_jar, STARTING_STATES[start])
        for target in ("disabled", "both", "client-only", "disabled", "server-only", "both", "disabled"):
            reconciler.reconcile(FILE, target, layout.root)
            assert physical_copies(layout)

    def test_disable_in_place_keeps_sidecar(self, reconciler, layout, make_jar):
        place(layout, make_jar, ["server"])
        write_sidecar(layout.server, {"projectId": "AbCdEfGh"})

        result = reconciler.reconcile(FILE, Category.DISABLED, layout.root)

        assert result.success
        assert os.path.isfile(layout.server.disabled_path(FILE))
        assert not os.path.exists(layout.server.archive_path(FILE))
        assert os.path.isfile(layout.server.sidecar_path(FILE))

    def test_disable_client_only_mod_stays_in_client_tree(self, reconciler, layout, make_jar):
        place(layout, make_jar, ["client"])
        reconciler.reconcile(FILE, "disabled", layout.root)
        assert physical_copies(layout) == [layout.client.disabled_path(FILE)]

    def test_sidecar_follows_archive_to_client(self, reconciler, layout, make_jar):
        place(layout, make_jar, ["server"])
        write_sidecar(layout.server, {"projectId": "AbCdEfGh"})

        reconciler.reconcile(FILE, "client-only", layout.root)

        assert os.path.isfile(layout.client.sidecar_path(FILE))
        assert not os.path.exists(layout.server.sidecar_path(FILE))

    def test_sidecar_copied_for_both(self, reconciler, layout, make_jar):
        place(layout, make_jar, ["server"])
        write_sidecar(layout.server, {"projectId": "AbCdEfGh"})

        reconciler.reconcile(FILE, "both", layout.root)

        assert os.path.isfile(layout.client.sidecar_path(FILE))
        assert os.path.isfile(layout.server.sidecar_path(FILE))

    def test_both_from_disabled_removes_every_disabled_copy(self, reconciler, layout, make_jar):
        place(layout, make_jar, ["server-disabled", "client-disabled"])

        result = reconciler.reconcile(FILE, "both", layout.root)

        assert result.locations == frozenset({Location.SERVER, Location.CLIENT})
        assert sorted(physical_copies(layout)) == sorted([
            layout.server.archive_path(FILE), layout.client.archive_path(FILE)
        ])

    def test_legacy_file_is_migrated(self, reconciler, layout, make_jar):
        place(layout, make_jar, ["legacy"])

        result = reconciler.reconcile(FILE, "disabled", layout.root)

        assert result.success
        assert physical_copies(layout) == [layout.server.disabled_path(FILE)]

    def test_missing_archive(self, reconciler, layout):
        result = reconciler.reconcile(FILE, "both", layout.root)

        assert result.success is False
        assert result.error_kind == "not_found"
        assert not os.path.exists(layout.server.mods_dir)

    def test_unknown_category(self, reconciler, layout, make_jar):
        place(layout, make_jar, ["server"])
        result = reconciler.reconcile(FILE, "everywhere", layout.root)
        assert result.success is False
        assert result.error_kind == "invalid_input"

    def test_invalidates_metadata_cache(self, layout, make_fabric_jar):
        reader = ArchiveMetadataReader()
        make_fabric_jar(layout.server.archive_path(FILE))
        reader.read_metadata(layout.server.archive_path(FILE))

        LocationReconciler(reader=reader).reconcile(FILE, "disabled", layout.root)

        assert reader.read_metadata(layout.server.archive_path(FILE)) is None

    def test_failed_step_stops_execution(self, reconciler, layout, make_jar, monkeypatch):
        place(layout, make_jar, ["server"])

        def failing_copy(src, dst):
            raise PermissionError("read-only filesystem")

        monkeypatch.setattr("modsync.managers.mods.reconciler.shutil.copy2", failing_copy)
        result = reconciler.reconcile(FILE, "both", layout.root)

        assert result.success is False
        assert result.error_kind == "filesystem"
        assert result.failed_step.action == "copy"
        assert result.locations == frozenset({Location.SERVER})


class TestPlan:
    def test_plan_orders_copies_before_deletes(self, reconciler, layout, make_jar):
        place(layout, make_jar, ["server", "client"])

        plan = reconciler.plan(FILE, "disabled", layout.root)

        actions = [s.action for s in plan.steps if s.target == "archive"]
        assert actions == ["move", DELETE]

    def test_noop_plan(self, reconciler, layout, make_jar):
        place(layout, make_jar, ["server", "client"])
        assert reconciler.plan(FILE, "both", layout.root).is_noop


class TestReconcileDirectory:
    def test_flips_suffixes_in_both_trees(self, reconciler, layout, make_jar):
        make_jar(layout.server.archive_path("a.jar"))
        make_jar(layout.client.archive_path("a.jar"))
        make_jar(layout.server.disabled_path("b.jar"))
        make_jar(layout.server.archive_path("c.jar"))

        result = reconciler.reconcile_directory(layout.root, {"a.jar"})

        assert result.success
        assert result.count == 3
        assert layout.server.has_disabled("a.jar") and layout.client.has_disabled("a.jar")
        assert layout.server.has_enabled("b.jar")
        assert layout.server.has_enabled("c.jar")

    def test_migrates_legacy_folder(self, reconciler, layout, make_jar):
        make_jar(layout.legacy_disabled_path("old.jar"))

        reconciler.reconcile_directory(layout.root, {"old.jar"})

        assert layout.server.has_disabled("old.jar")
        assert not layout.has_legacy_disabled("old.jar")

    def test_failures_are_collected(self, reconciler, layout, make_jar, monkeypatch):
        make_jar(layout.server.archive_path("a.jar"))
        make_jar(layout.server.archive_path("b.jar"))
        real_replace = os.replace

        def flaky_replace(src, dst):
            if src.endswith("a.jar"):
                raise PermissionError("locked")
            return real_replace(src, dst)

        monkeypatch.setattr("modsync.managers.mods.reconciler.os.replace", flaky_replace)
        result = reconciler.reconcile_directory(layout.root, {"a.jar", "b.jar"})

        assert result.count == 1
        assert result.failed_identifiers == ["a.jar"]
        assert result.error.startswith("1 items failed: a.jar")
