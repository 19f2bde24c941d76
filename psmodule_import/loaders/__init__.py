"""Module artifact loaders."""

from .artifacts import DEFAULT_CMDLET_ADAPTER
from .artifacts import PROXY_MARKER
from .artifacts import ArtifactLoader
from .artifacts import DefaultArtifactLoader
from .manifest_loader import ModuleLoader

__all__ = [
    "ArtifactLoader",
    "DEFAULT_CMDLET_ADAPTER",
    "DefaultArtifactLoader",
    "ModuleLoader",
    "PROXY_MARKER",
]
