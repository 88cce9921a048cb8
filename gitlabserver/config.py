"""
Connection profile management for gitlabserver.

"Configuration is just organized preferences. Save them wisely." — schema.cx
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any

import yaml

from .models import Config


@dataclass
class ServerProfile:
    """
    A saved GitLab connection profile.

    Tokens are never stored here; they come from --token or GITLAB_TOKEN.

    "Profiles are just memories for your settings." — schema.cx
    """

    name: str
    url: str

    # Pagination and concurrency
    per_page: int = 100
    max_workers: int = 8
    page_timeout: float = 30.0

    include_archived: bool = False
    verify_ssl: bool = True

    # Metadata
    created_at: str = field(default_factory=lambda: datetime.now().isoformat())
    updated_at: str = field(default_factory=lambda: datetime.now().isoformat())
    description: str = ""

    def to_dict(self) -> dict[str, Any]:
        """Convert profile to dictionary."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ServerProfile":
        """Create profile from dictionary."""
        # Handle missing fields with defaults
        return cls(
            name=data.get("name", "unnamed"),
            url=data.get("url", ""),
            per_page=data.get("per_page", 100),
            max_workers=data.get("max_workers", 8),
            page_timeout=data.get("page_timeout", 30.0),
            include_archived=data.get("include_archived", False),
            verify_ssl=data.get("verify_ssl", True),
            created_at=data.get("created_at", datetime.now().isoformat()),
            updated_at=data.get("updated_at", datetime.now().isoformat()),
            description=data.get("description", ""),
        )

    def to_config(self, token: str | None = None) -> Config:
        """Build a client Config from this profile."""
        return Config(
            url=self.url,
            token=token,
            per_page=self.per_page,
            max_workers=self.max_workers,
            page_timeout=self.page_timeout,
            include_archived=self.include_archived,
            verify_ssl=self.verify_ssl,
        )


class ConfigManager:
    """
    Manages saved connection profiles.

    "A good manager knows where everything is. Even your configs." — schema.cx
    """

    DEFAULT_CONFIG_DIR = Path.home() / ".config" / "gitlabserver"
    PROFILES_FILE = "profiles.yaml"

    def __init__(self, config_dir: Path | None = None) -> None:
        """Initialize the configuration manager."""
        self.config_dir = config_dir or self.DEFAULT_CONFIG_DIR
        self.profiles_path = self.config_dir / self.PROFILES_FILE

    def _load_profiles(self) -> dict[str, dict[str, Any]]:
        """Load all profiles from the profiles file."""
        if not self.profiles_path.exists():
            return {}

        with open(self.profiles_path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        return data.get("profiles", {}) or {}

    def _save_profiles(self, profiles: dict[str, dict[str, Any]]) -> None:
        """Save all profiles to the profiles file."""
        self.config_dir.mkdir(parents=True, exist_ok=True)
        with open(self.profiles_path, "w", encoding="utf-8") as f:
            yaml.dump({"profiles": profiles}, f, default_flow_style=False, sort_keys=False)

    def save_profile(self, profile: ServerProfile) -> None:
        """
        Save a connection profile, replacing any profile with the same name.

        Args:
            profile: The profile to save
        """
        profiles = self._load_profiles()
        profile.updated_at = datetime.now().isoformat()
        profiles[profile.name] = profile.to_dict()
        self._save_profiles(profiles)

    def load_profile(self, name: str) -> ServerProfile | None:
        """
        Load a connection profile by name.

        Returns:
            The profile if found, None otherwise
        """
        profiles = self._load_profiles()
        if name not in profiles:
            return None
        return ServerProfile.from_dict(profiles[name])

    def delete_profile(self, name: str) -> bool:
        """
        Delete a connection profile.

        Returns:
            True if deleted, False if not found
        """
        profiles = self._load_profiles()
        if name not in profiles:
            return False
        del profiles[name]
        self._save_profiles(profiles)
        return True

    def list_profiles(self) -> list[ServerProfile]:
        """List all saved profiles."""
        profiles = self._load_profiles()
        return [ServerProfile.from_dict(data) for data in profiles.values()]

    def get_profile_path(self) -> Path:
        """Get the path to the profiles file."""
        return self.profiles_path
