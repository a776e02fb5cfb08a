"""
Location reconciliation

Moves, copies and deletes a mod archive (and its sidecar) across the server
tree, the client tree and the disabled state so that it ends up in the
requested Category.

Every change is computed up front as a plan of copy/move/delete steps. Steps
run in order and execution stops at the first failing one, so a partial run
can be diagnosed from the result. Deletes always come after the copies they
rely on, and each archive delete re-checks that another copy still exists.
"""

import os
import shutil
from dataclasses import dataclass, field
from typing import Callable, Dict, FrozenSet, Iterable, List, Optional, Set

from ...core.api.errors import FilesystemError, NotFoundError
from .archive_reader import ArchiveMetadataReader
from .layout import InstallationLayout
from .records import Category, Location
from .results import BatchResult

COPY = "copy"
MOVE = "move"
DELETE = "delete"

# Archive slots of one filename
SERVER = "server"
CLIENT = "client"
SERVER_DISABLED = "server-disabled"
CLIENT_DISABLED = "client-disabled"
LEGACY_DISABLED = "legacy-disabled"

_SLOT_TREE = {
    SERVER: "server",
    SERVER_DISABLED: "server",
    LEGACY_DISABLED: "server",
    CLIENT: "client",
    CLIENT_DISABLED: "client",
}

# Where to take a copy from when a slot has to be filled (enabled copies first)
_SOURCE_PREFERENCE = {
    SERVER: [CLIENT, SERVER_DISABLED, CLIENT_DISABLED],
    CLIENT: [SERVER, CLIENT_DISABLED, SERVER_DISABLED],
    SERVER_DISABLED: [SERVER, CLIENT, CLIENT_DISABLED],
    CLIENT_DISABLED: [CLIENT, SERVER, SERVER_DISABLED],
}


@dataclass
class PlanStep:
    """One filesystem operation of a reconcile plan"""
    action: str
    src: str
    dst: Optional[str] = None
    target: str = "archive"  # "archive" or "sidecar"

    def describe(self) -> str:
        if self.action == DELETE:
            return f"delete {self.target} {self.src}"
        return f"{self.action} {self.target} {self.src} -> {self.dst}"


@dataclass
class ReconcilePlan:
    file_name: str
    category: Category
    steps: List[PlanStep] = field(default_factory=list)

    @property
    def is_noop(self) -> bool:
        return not self.steps


@dataclass
class ReconcileResult:
    success: bool
    file_name: str
    category: Optional[Category] = None
    locations: FrozenSet[Location] = field(default_factory=frozenset)
    steps: List[PlanStep] = field(default_factory=list)
    failed_step: Optional[PlanStep] = None
    error: Optional[str] = None
    error_kind: Optional[str] = None

    def to_dict(self) -> Dict:
        data = {
            "success": self.success,
            "fileName": self.file_name,
            "category": self.category.value if self.category else None,
            "locations": sorted(l.value for l in self.locations),
            "steps": [s.describe() for s in self.steps],
        }
        if self.failed_step:
            data["failedStep"] = self.failed_step.describe()
        if self.error:
            data["error"] = self.error
        return data


class LocationReconciler:
    """Puts a mod archive in the locations required by a Category"""

    def __init__(
        self,
        reader: Optional[ArchiveMetadataReader] = None,
        log_callback: Optional[Callable[[str], None]] = None
    ):
        """
        Args:
            reader: Metadata reader whose cache is invalidated for touched paths
            log_callback: Optional callback for logging messages
        """
        self.reader = reader
        self.log_callback = log_callback

    def _log(self, message: str):
        if self.log_callback:
            self.log_callback(message)

    # ==================== STATE ====================

    @staticmethod
    def _slot_paths(layout: InstallationLayout, file_name: str) -> Dict[str, str]:
        return {
            SERVER: layout.server.archive_path(file_name),
            CLIENT: layout.client.archive_path(file_name),
            SERVER_DISABLED: layout.server.disabled_path(file_name),
            CLIENT_DISABLED: layout.client.disabled_path(file_name),
            LEGACY_DISABLED: layout.legacy_disabled_path(file_name),
        }

    @staticmethod
    def locations_of(layout: InstallationLayout, file_name: str) -> FrozenSet[Location]:
        """Locations currently holding an archive for a filename"""
        locations = set()
        if layout.server.has_enabled(file_name):
            locations.add(Location.SERVER)
        if layout.client.has_enabled(file_name):
            locations.add(Location.CLIENT)
        if (layout.server.has_disabled(file_name) or layout.client.has_disabled(file_name)
                or layout.has_legacy_disabled(file_name)):
            locations.add(Location.DISABLED)
        return frozenset(locations)

    # ==================== PLANNING ====================

    def plan(self, file_name: str, category, root: str) -> ReconcilePlan:
        """
        Computes the steps needed to put a mod in a category

        Args:
            file_name: Archive filename (without .disabled)
            category: Category or its string value
            root: Installation root

        Returns:
            ReconcilePlan (empty when nothing has to change)

        Raises:
            NotFoundError: No archive exists for the filename
            ValueError: Unknown category
        """
        category = Category.parse(category)
        layout = InstallationLayout(root)
        paths = self._slot_paths(layout, file_name)
        present: Set[str] = {slot for slot, path in paths.items() if os.path.isfile(path)}

        if not present:
            raise NotFoundError(f"Mod file {file_name} not found in any location")

        plan = ReconcilePlan(file_name=file_name, category=category)

        # Legacy mods_disabled/<f> becomes mods/<f>.disabled first
        if LEGACY_DISABLED in present:
            if SERVER_DISABLED in present:
                plan.steps.append(PlanStep(DELETE, paths[LEGACY_DISABLED]))
            else:
                plan.steps.append(PlanStep(MOVE, paths[LEGACY_DISABLED], paths[SERVER_DISABLED]))
                present.add(SERVER_DISABLED)
            present.discard(LEGACY_DISABLED)

        targets = self._target_slots(category, present)
        archive_steps = self._archive_steps(paths, present, targets)
        plan.steps.extend(archive_steps)
        plan.steps.extend(self._sidecar_steps(layout, file_name, present, targets))
        return plan

    @staticmethod
    def _target_slots(category: Category, present: Set[str]) -> List[str]:
        if category == Category.SERVER_ONLY:
            return [SERVER]
        if category == Category.CLIENT_ONLY:
            return [CLIENT]
        if category == Category.BOTH:
            return [SERVER, CLIENT]
        # Disabled in place: server tree when it has a copy there, else client tree
        if present & {SERVER, SERVER_DISABLED}:
            return [SERVER_DISABLED]
        return [CLIENT_DISABLED]

    @staticmethod
    def _archive_steps(paths: Dict[str, str], present: Set[str], targets: List[str]) -> List[PlanStep]:
        steps: List[PlanStep] = []
        available = set(present)

        fills = []
        for slot in targets:
            if slot in available:
                continue
            source = next(s for s in _SOURCE_PREFERENCE[slot] if s in available)
            fills.append((slot, source))

        for index, (slot, source) in enumerate(fills):
            still_needed = source in targets or any(src == source for _, src in fills[index + 1:])
            if still_needed:
                steps.append(PlanStep(COPY, paths[source], paths[slot]))
            else:
                steps.append(PlanStep(MOVE, paths[source], paths[slot]))
                available.discard(source)
            available.add(slot)

        for slot in (SERVER, CLIENT, SERVER_DISABLED, CLIENT_DISABLED):
            if slot in available and slot not in targets:
                steps.append(PlanStep(DELETE, paths[slot]))

        return steps

    @staticmethod
    def _sidecar_steps(
        layout: InstallationLayout,
        file_name: str,
        present: Set[str],
        targets: List[str]
    ) -> List[PlanStep]:
        """Sidecars follow the archive across the server/client boundary"""
        steps: List[PlanStep] = []
        holds_after = {_SLOT_TREE[slot] for slot in targets}
        sidecars = {
            tree.name: tree.sidecar_path(file_name)
            for tree in layout.trees
            if os.path.isfile(tree.sidecar_path(file_name))
        }

        for tree_name in ("server", "client"):
            other = "client" if tree_name == "server" else "server"
            if tree_name in holds_after and tree_name not in sidecars and other in sidecars:
                destination = layout.tree(tree_name).sidecar_path(file_name)
                if other in holds_after:
                    steps.append(PlanStep(COPY, sidecars[other], destination, target="sidecar"))
                else:
                    steps.append(PlanStep(MOVE, sidecars[other], destination, target="sidecar"))
                    del sidecars[other]
                sidecars[tree_name] = destination

        for tree_name, path in list(sidecars.items()):
            if tree_name not in holds_after:
                steps.append(PlanStep(DELETE, path, target="sidecar"))

        return steps

    # ==================== EXECUTION ====================

    def _other_copy_exists(self, paths: Iterable[str], deleting: str) -> bool:
        return any(os.path.isfile(p) for p in paths if p != deleting)

    def _execute_step(self, step: PlanStep, archive_paths: List[str]):
        try:
            if step.action == COPY:
                os.makedirs(os.path.dirname(step.dst), exist_ok=True)
                shutil.copy2(step.src, step.dst)
            elif step.action == MOVE:
                os.makedirs(os.path.dirname(step.dst), exist_ok=True)
                shutil.move(step.src, step.dst)
            elif step.action == DELETE:
                if step.target == "archive" and not self._other_copy_exists(archive_paths, step.src):
                    raise FilesystemError(f"Refusing to delete the last copy of {step.src}")
                os.remove(step.src)
            else:
                raise ValueError(f"Unknown plan action: {step.action}")
        except OSError as e:
            raise FilesystemError(f"Could not {step.describe()}: {e}", cause=e)

        if self.reader:
            for path in (step.src, step.dst):
                if path:
                    self.reader.invalidate(path)

    def reconcile(self, file_name: str, category, root: str) -> ReconcileResult:
        """
        Puts a mod archive in the locations required by a category

        Args:
            file_name: Archive filename (without .disabled)
            category: "server-only", "client-only", "both", "disabled" or a Category
            root: Installation root

        Returns:
            ReconcileResult (never raises)
        """
        if not file_name:
            return ReconcileResult(success=False, file_name="", error="Filename is required",
                                   error_kind="invalid_input")
        try:
            category = Category.parse(category)
        except ValueError:
            return ReconcileResult(success=False, file_name=file_name,
                                   error=f"Unknown category: {category}", error_kind="invalid_input")

        layout = InstallationLayout(root)
        try:
            plan = self.plan(file_name, category, root)
        except NotFoundError as e:
            self._log(f"[Reconciler] {e}\n")
            return ReconcileResult(success=False, file_name=file_name, category=category,
                                   error=str(e), error_kind=e.kind)

        archive_paths = list(self._slot_paths(layout, file_name).values())
        executed: List[PlanStep] = []
        for step in plan.steps:
            try:
                self._execute_step(step, archive_paths)
            except FilesystemError as e:
                self._log(f"[Reconciler] {file_name}: {e}\n")
                return ReconcileResult(
                    success=False,
                    file_name=file_name,
                    category=category,
                    locations=self.locations_of(layout, file_name),
                    steps=executed,
                    failed_step=step,
                    error=str(e),
                    error_kind=e.kind
                )
            executed.append(step)

        if executed:
            self._log(f"[Reconciler] Moved {file_name} to {category.value} ({len(executed)} step(s))\n")

        return ReconcileResult(
            success=True,
            file_name=file_name,
            category=category,
            locations=self.locations_of(layout, file_name),
            steps=executed
        )

    def reconcile_directory(self, root: str, desired_disabled: Iterable[str]) -> BatchResult:
        """
        Flips the disabled suffix of every archive to match a set

        Server and client trees are processed independently. One failing
        file never stops the rest.

        Args:
            root: Installation root
            desired_disabled: Filenames that should end up disabled

        Returns:
            BatchResult with the number of archives changed
        """
        layout = InstallationLayout(root)
        should_disable = set(desired_disabled)
        result = BatchResult()

        for file_name in layout.list_legacy_disabled():
            try:
                self._migrate_legacy(layout, file_name)
            except FilesystemError as e:
                self._log(f"[Reconciler] {file_name}: {e}\n")
                result.add_failure(file_name, str(e))

        for tree in layout.trees:
            for file_name in tree.list_file_names():
                enabled = tree.archive_path(file_name)
                disabled = tree.disabled_path(file_name)
                try:
                    if file_name in should_disable and os.path.isfile(enabled):
                        os.replace(enabled, disabled)
                    elif file_name not in should_disable and os.path.isfile(disabled) \
                            and not os.path.isfile(enabled):
                        os.replace(disabled, enabled)
                    else:
                        continue
                except OSError as e:
                    message = f"Could not update {tree.name} file: {e}"
                    self._log(f"[Reconciler] {file_name}: {message}\n")
                    result.add_failure(file_name, message)
                    continue

                if self.reader:
                    self.reader.invalidate(enabled)
                    self.reader.invalidate(disabled)
                result.count += 1

        if result.failures:
            self._log(f"[Reconciler] {result.error}\n")
        return result

    def _migrate_legacy(self, layout: InstallationLayout, file_name: str):
        legacy = layout.legacy_disabled_path(file_name)
        target = layout.server.disabled_path(file_name)
        try:
            if os.path.isfile(target):
                os.remove(legacy)
            else:
                os.makedirs(layout.server.mods_dir, exist_ok=True)
                shutil.move(legacy, target)
        except OSError as e:
            raise FilesystemError(f"Could not migrate legacy disabled file: {e}", cause=e)
