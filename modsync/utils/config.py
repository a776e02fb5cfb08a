"""
Engine configuration - defaults plus optional JSON overrides in ~/.modsync
"""

import json
from dataclasses import dataclass, asdict, fields
from pathlib import Path
from typing import Dict, Optional


@dataclass
class EngineConfig:
    """Tunables for the registry client, downloader and metadata cache"""
    api_base_url: str = "https://api.modrinth.com/v2"
    user_agent: str = "modsync/1.0.0 (mod version resolution engine)"
    rate_limit_ms: int = 500
    request_timeout: float = 15.0
    max_retries: int = 3
    retry_base_delay: float = 1.0
    cache_ttl: Optional[float] = None  # seconds, None = until invalidated
    download_timeout: float = 60.0
    download_retries: int = 3
    metadata_cache_window: int = 60

    @classmethod
    def from_dict(cls, data: Dict) -> "EngineConfig":
        """Builds a config from a dict, ignoring unknown keys"""
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})

    def to_dict(self) -> Dict:
        return asdict(self)


class ConfigStore:
    """Manages the persisted engine configuration"""

    def __init__(self, config_dir: Optional[Path] = None):
        self.config_dir = Path(config_dir) if config_dir else Path.home() / ".modsync"
        self.config_file = self.config_dir / "config.json"

    def load_config(self) -> Dict:
        """Loads raw overrides (empty dict when missing or unreadable)"""
        if self.config_file.exists():
            try:
                with open(self.config_file, 'r', encoding='utf-8') as f:
                    data = json.load(f)
                    return data if isinstance(data, dict) else {}
            except (OSError, ValueError):
                return {}
        return {}

    def load(self) -> EngineConfig:
        """Returns the defaults merged with the persisted overrides"""
        return EngineConfig.from_dict(self.load_config())

    def save(self, config: EngineConfig) -> bool:
        """Saves the full configuration"""
        try:
            self.config_dir.mkdir(parents=True, exist_ok=True)
            with open(self.config_file, 'w', encoding='utf-8') as f:
                json.dump(config.to_dict(), f, indent=2)
            return True
        except OSError as e:
            print(f"Error saving configuration: {e}")
            return False

    def clear_config(self) -> bool:
        """Deletes the persisted overrides"""
        try:
            if self.config_file.exists():
                self.config_file.unlink()
            return True
        except OSError as e:
            print(f"Error clearing configuration: {e}")
            return False
