from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional


@dataclass
class VersionFile:
    """One downloadable file of a registry version"""
    url: str
    filename: str = ""
    primary: bool = False
    size: int = 0

    @classmethod
    def from_api(cls, data: Dict) -> "VersionFile":
        return cls(
            url=data.get("url", ""),
            filename=data.get("filename", ""),
            primary=bool(data.get("primary", False)),
            size=int(data.get("size") or 0)
        )


@dataclass
class VersionRecord:
    """Normalized version entry returned by the registry"""
    id: str
    version_number: str
    name: str = ""
    game_versions: List[str] = field(default_factory=list)
    loaders: List[str] = field(default_factory=list)
    dependencies: List[Dict] = field(default_factory=list)
    date_published: str = ""
    is_stable: bool = True
    files: List[VersionFile] = field(default_factory=list)
    downloads: int = 0
    project_id: Optional[str] = None
    fallback_from_404: bool = False
    original_version_id: Optional[str] = None

    @classmethod
    def from_api(cls, data: Dict) -> "VersionRecord":
        """
        Builds a record from a raw /version payload

        Args:
            data: JSON object as returned by the registry

        Returns:
            VersionRecord
        """
        version_type = (data.get("version_type") or "release").lower()
        return cls(
            id=data.get("id", ""),
            version_number=data.get("version_number") or data.get("name") or "",
            name=data.get("name", ""),
            game_versions=list(data.get("game_versions") or []),
            loaders=list(data.get("loaders") or []),
            dependencies=list(data.get("dependencies") or []),
            date_published=data.get("date_published", ""),
            is_stable="alpha" not in version_type and "beta" not in version_type,
            files=[VersionFile.from_api(f) for f in data.get("files") or []],
            downloads=int(data.get("downloads") or 0),
            project_id=data.get("project_id")
        )

    @property
    def published_at(self) -> datetime:
        """Publish date as an aware datetime (epoch when unparseable)"""
        value = self.date_published or ""
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return datetime.fromtimestamp(0, tz=timezone.utc)
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed

    def primary_file(self) -> Optional[VersionFile]:
        """Primary file of the version, or the first one listed"""
        for version_file in self.files:
            if version_file.primary and version_file.url:
                return version_file
        for version_file in self.files:
            if version_file.url:
                return version_file
        return None

    def to_dict(self) -> Dict:
        return {
            "id": self.id,
            "versionNumber": self.version_number,
            "name": self.name,
            "gameVersions": self.game_versions,
            "loaders": self.loaders,
            "datePublished": self.date_published,
            "isStable": self.is_stable,
            "files": [
                {"url": f.url, "filename": f.filename, "primary": f.primary, "size": f.size}
                for f in self.files
            ]
        }


@dataclass
class ProjectInfo:
    """Subset of a registry project used by the engine"""
    id: str
    slug: str = ""
    title: str = ""
    description: str = ""
    client_side: str = "unknown"
    server_side: str = "unknown"
    game_versions: List[str] = field(default_factory=list)
    loaders: List[str] = field(default_factory=list)
    versions: List[str] = field(default_factory=list)

    @classmethod
    def from_api(cls, data: Dict) -> "ProjectInfo":
        return cls(
            id=data.get("id", ""),
            slug=data.get("slug", ""),
            title=data.get("title", ""),
            description=data.get("description", ""),
            client_side=data.get("client_side", "unknown"),
            server_side=data.get("server_side", "unknown"),
            game_versions=list(data.get("game_versions") or []),
            loaders=list(data.get("loaders") or []),
            versions=list(data.get("versions") or [])
        )
