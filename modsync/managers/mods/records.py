"""
Data model of installed mods: locations, categories and package records
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, FrozenSet, Iterable, Optional

from ...core.compat.loaders import LoaderKind


class Location(Enum):
    """Physical places an archive can live in"""
    SERVER = "server"
    CLIENT = "client"
    DISABLED = "disabled"


class Category(Enum):
    """Desired placement of a mod across server/client/disabled"""
    SERVER_ONLY = "server-only"
    CLIENT_ONLY = "client-only"
    BOTH = "both"
    DISABLED = "disabled"

    @property
    def locations(self) -> FrozenSet[Location]:
        return _CATEGORY_LOCATIONS[self]

    @classmethod
    def parse(cls, value) -> "Category":
        """Accepts a Category or its string value"""
        if isinstance(value, cls):
            return value
        return cls(str(value).strip().lower())

    @classmethod
    def from_locations(cls, locations: Iterable[Location]) -> Optional["Category"]:
        """
        Category implied by a set of enabled/disabled locations

        Enabled copies win over disabled ones, so a server copy plus a
        stale disabled copy still reads as server-only.

        Returns:
            Category or None when there is no location at all
        """
        present = set(locations)
        server = Location.SERVER in present
        client = Location.CLIENT in present
        if server and client:
            return cls.BOTH
        if server:
            return cls.SERVER_ONLY
        if client:
            return cls.CLIENT_ONLY
        if Location.DISABLED in present:
            return cls.DISABLED
        return None


_CATEGORY_LOCATIONS = {
    Category.SERVER_ONLY: frozenset({Location.SERVER}),
    Category.CLIENT_ONLY: frozenset({Location.CLIENT}),
    Category.BOTH: frozenset({Location.SERVER, Location.CLIENT}),
    Category.DISABLED: frozenset({Location.DISABLED}),
}


@dataclass
class PackageRecord:
    """One installed mod, keyed by its archive filename"""
    file_name: str
    project_id: Optional[str] = None
    name: Optional[str] = None
    version_number: Optional[str] = None
    version_id: Optional[str] = None
    minecraft_version: Optional[object] = None
    loader_kind: Optional[LoaderKind] = None
    locations: FrozenSet[Location] = field(default_factory=frozenset)
    source: Optional[str] = None
    updated_at: Optional[str] = None
    environment: Optional[str] = None
    archive_path: Optional[str] = None

    @property
    def category(self) -> Optional[Category]:
        return Category.from_locations(self.locations)

    @property
    def is_enabled(self) -> bool:
        return Location.SERVER in self.locations or Location.CLIENT in self.locations

    @property
    def is_disabled(self) -> bool:
        return not self.is_enabled and Location.DISABLED in self.locations

    def to_dict(self) -> Dict:
        category = self.category
        return {
            "fileName": self.file_name,
            "projectId": self.project_id,
            "name": self.name,
            "versionNumber": self.version_number,
            "versionId": self.version_id,
            "minecraftVersion": self.minecraft_version,
            "loader": self.loader_kind.value if self.loader_kind else None,
            "locations": sorted(l.value for l in self.locations),
            "category": category.value if category else None,
            "source": self.source,
            "updatedAt": self.updated_at,
            "environment": self.environment
        }
