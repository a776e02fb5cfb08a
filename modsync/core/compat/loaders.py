from enum import Enum
from typing import Optional


class LoaderKind(Enum):
    """Mod loading ecosystems understood by the engine"""
    FABRIC = "fabric"
    QUILT = "quilt"
    FORGE = "forge"
    NEOFORGE = "neoforge"

    @classmethod
    def parse(cls, value) -> Optional["LoaderKind"]:
        """
        Resolves a loader name, accepting the aliases seen in registry data

        Args:
            value: LoaderKind, loader name or alias (ej: "fabric-loader", "neo-forge")

        Returns:
            LoaderKind or None if the name is unknown
        """
        if value is None:
            return None
        if isinstance(value, cls):
            return value
        name = LOADER_ALIASES.get(str(value).strip().lower(), str(value).strip().lower())
        try:
            return cls(name)
        except ValueError:
            return None


LOADER_ALIASES = {
    "fabric-loader": "fabric",
    "fabricmc": "fabric",
    "neo-forge": "neoforge",
    "neoforged": "neoforge",
    "forge-loader": "forge",
    "minecraftforge": "forge",
    "quilt-loader": "quilt",
    "quiltmc": "quilt",
}


def normalize_loader(value) -> Optional[str]:
    """Canonical lowercase loader name, or the lowercased input when unknown"""
    if value is None or value == "":
        return None
    kind = LoaderKind.parse(value)
    if kind:
        return kind.value
    return str(value).strip().lower()
