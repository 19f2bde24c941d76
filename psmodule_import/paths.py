"""CLI path policy and dependency injection helpers.

Libraries receive paths via injection; this module provides the CLI's choices.
"""

from __future__ import annotations

from pathlib import Path

from .orchestrator import ImportOrchestrator
from .remote.staging import StagingArea
from .settings import SettingsManager
from .state import ModuleState


def create_settings_manager(settings_dir: Path | None = None) -> SettingsManager:
    """Settings manager rooted at ./.psmodule (or the given directory)."""
    return SettingsManager(settings_dir=settings_dir)


def create_staging_area(settings: SettingsManager | None = None) -> StagingArea:
    settings = settings or create_settings_manager()
    return StagingArea(settings.get_staging_root())


def create_orchestrator(settings: SettingsManager | None = None) -> ImportOrchestrator:
    """Orchestrator wired to the effective search path and staging root.

    The search path is re-read on every bare-name search, so settings and
    PSMODULE_PATH changes made during the process are picked up.
    """
    settings = settings or create_settings_manager()
    import_settings = settings.get_import_settings()
    state = ModuleState(use_resolution_cache=import_settings.modules.use_resolution_cache)
    return ImportOrchestrator(
        state=state,
        search_paths=lambda: [path for path, _source in settings.get_search_paths()],
        staging=create_staging_area(settings),
    )
