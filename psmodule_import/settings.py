"""Settings manager for psmodule settings.yaml files.

Manages three-scope settings system:
- User global (~/.psmodule/settings.yaml)
- Project (.psmodule/settings.yaml)
- Local (.psmodule/settings.local.yaml)

Environment variables override file settings:
- PSMODULE_PATH: extra search path entries (os.pathsep separated, highest precedence)
- PSMODULE_STAGING_ROOT: staging root for remote modules
"""

from __future__ import annotations

import logging
import os
import re
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel
from pydantic import Field
from pydantic import ValidationError

from .errors import MalformedInputError
from .remote.staging import default_staging_root

logger = logging.getLogger(__name__)

SEARCH_PATH_ENV = "PSMODULE_PATH"
STAGING_ROOT_ENV = "PSMODULE_STAGING_ROOT"

ENV_PATTERN = re.compile(r"\$\{([^}:]+)(?::([^}]*))?}")


def expand_env_vars(value: Any) -> Any:
    """Expand ${VAR} and ${VAR:default} references within settings values."""

    def _replace_match(match: re.Match[str]) -> str:
        default = match.group(2)
        return os.environ.get(match.group(1), default if default is not None else "")

    if isinstance(value, str):
        return ENV_PATTERN.sub(_replace_match, value)
    if isinstance(value, dict):
        return {k: expand_env_vars(v) for k, v in value.items()}
    if isinstance(value, list):
        return [expand_env_vars(item) for item in value]
    return value


class ModulesSettings(BaseModel):
    """Module resolution settings."""

    search_paths: list[str] = Field(default_factory=list, description="Module search path, highest precedence first")
    staging_root: str | None = Field(None, description="Root directory for remote module staging directories")
    use_resolution_cache: bool = Field(default=True, description="Cache bare-name resolutions for the process")


class RemoteSettings(BaseModel):
    """Remote transport settings."""

    timeout: float = Field(default=30.0, description="HTTP request timeout in seconds")


class ImportSettings(BaseModel):
    """Complete settings document."""

    modules: ModulesSettings = Field(default_factory=ModulesSettings)
    remote: RemoteSettings = Field(default_factory=RemoteSettings)


class SettingsManager:
    """Manages settings across user/project/local scopes."""

    def __init__(self, settings_dir: Path | None = None, user_dir: Path | None = None):
        """Initialize settings manager with standard paths.

        Args:
            settings_dir: Base directory for project/local settings (for testing).
                          If None, uses .psmodule in current directory.
            user_dir: Base directory for user settings (for testing).
                      If None, uses ~/.psmodule.
        """
        if settings_dir is None:
            settings_dir = Path(".psmodule")
        if user_dir is None:
            user_dir = Path.home() / ".psmodule"

        self.user_settings_file = user_dir / "settings.yaml"
        self.project_settings_file = settings_dir / "settings.yaml"
        self.local_settings_file = settings_dir / "settings.local.yaml"

    def _scope_file(self, scope: str) -> Path:
        file_map = {
            "user": self.user_settings_file,
            "project": self.project_settings_file,
            "local": self.local_settings_file,
        }
        return file_map.get(scope, self.project_settings_file)

    def get_import_settings(self) -> ImportSettings:
        """Merged, env-expanded and validated settings.

        Raises:
            MalformedInputError: Settings do not match the schema
        """
        merged = expand_env_vars(self.get_merged_settings())
        try:
            return ImportSettings.model_validate(merged)
        except ValidationError as e:
            raise MalformedInputError(f"Invalid settings: {e}") from e

    def get_search_paths(self) -> list[tuple[Path, str]]:
        """Effective module search path with the source of each entry.

        Resolution order:
        1. PSMODULE_PATH entries
        2. modules.search_paths from merged settings (local > project > user)

        Returns:
            List of (directory, source) tuples, duplicates removed
        """
        entries: list[tuple[Path, str]] = []
        env_value = os.environ.get(SEARCH_PATH_ENV, "")
        for item in env_value.split(os.pathsep):
            if item.strip():
                entries.append((Path(item.strip()).expanduser(), "env"))
        for item in self.get_import_settings().modules.search_paths:
            if item.strip():
                entries.append((Path(item.strip()).expanduser(), "settings"))

        seen: set[str] = set()
        unique = []
        for path, source in entries:
            key = os.path.normcase(os.path.abspath(path))
            if key in seen:
                continue
            seen.add(key)
            unique.append((path, source))
        return unique

    def get_staging_root(self) -> Path:
        env_value = os.environ.get(STAGING_ROOT_ENV)
        if env_value:
            return Path(env_value).expanduser()
        configured = self.get_import_settings().modules.staging_root
        if configured:
            return Path(configured).expanduser()
        return default_staging_root()

    def add_search_path(self, path: str, scope: str = "project") -> None:
        """Append a directory to modules.search_paths in one scope.

        Args:
            path: Directory to add
            scope: "user", "project", or "local"
        """
        target_file = self._scope_file(scope)
        settings = self._read_settings(target_file) or {}
        modules = settings.setdefault("modules", {})
        search_paths = modules.setdefault("search_paths", [])
        if path in search_paths:
            return
        search_paths.append(path)
        self._write_settings(target_file, settings)
        logger.info(f"Added {scope} search path: {path}")

    def remove_search_path(self, path: str, scope: str = "project") -> bool:
        """Remove a directory from modules.search_paths in one scope.

        Returns:
            True if removed, False if not found
        """
        target_file = self._scope_file(scope)
        settings = self._read_settings(target_file)

        if not settings or path not in settings.get("modules", {}).get("search_paths", []):
            return False

        settings["modules"]["search_paths"].remove(path)

        # Clean up empty sections
        if not settings["modules"]["search_paths"]:
            del settings["modules"]["search_paths"]
        if not settings["modules"]:
            del settings["modules"]

        self._write_settings(target_file, settings)
        logger.info(f"Removed {scope} search path: {path}")
        return True

    def get_merged_settings(self) -> dict[str, Any]:
        """Get merged settings from all scopes.

        Merge order (later overrides earlier):
        1. User settings
        2. Project settings
        3. Local settings

        Returns:
            Merged settings dictionary
        """
        merged: dict[str, Any] = {}

        for path in (self.user_settings_file, self.project_settings_file, self.local_settings_file):
            settings = self._read_settings(path)
            if settings:
                merged = self._deep_merge(merged, settings)

        return merged

    def _read_settings(self, path: Path) -> dict[str, Any] | None:
        """Read settings from YAML file.

        Args:
            path: Path to settings file

        Returns:
            Settings dict or None if file doesn't exist or is unreadable
        """
        if not path.exists():
            return None

        try:
            with open(path, encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            logger.warning(f"Failed to read settings from {path}: {e}")
            return None
        if data is None:
            return {}
        if not isinstance(data, dict):
            logger.warning(f"Ignoring settings file {path}: top level must be a mapping")
            return None
        return data

    def _write_settings(self, path: Path, settings: dict[str, Any]) -> None:
        """Write settings to YAML file.

        Args:
            path: Path to settings file
            settings: Settings dictionary
        """
        # Ensure directory exists
        path.parent.mkdir(parents=True, exist_ok=True)

        try:
            with open(path, "w", encoding="utf-8") as f:
                yaml.dump(settings, f, default_flow_style=False, sort_keys=False)
        except OSError as e:
            logger.error(f"Failed to write settings to {path}: {e}")
            raise

    def _deep_merge(self, base: dict[str, Any], overlay: dict[str, Any]) -> dict[str, Any]:
        """Deep merge two dictionaries.

        Args:
            base: Base dictionary
            overlay: Overlay dictionary (takes precedence)

        Returns:
            Merged dictionary
        """
        result = base.copy()

        for key, value in overlay.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._deep_merge(result[key], value)
            else:
                result[key] = value

        return result
