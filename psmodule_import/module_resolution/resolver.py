"""Local module resolver.

Resolution order (first match wins):
1. Already loaded: the module table holds the literal path (or the cached path)
2. Resolution cache: bare name -> last resolved path (no version or GUID constraint)
3. Rooted existing path: file, multi-version directory, or default member
4. Rooted missing path with a module extension: no other extension is tried
5. Rooted missing path without an extension: try each module extension
6. Bare name: search each module search path directory in order

Each step returns a descriptor or None. None means "try the next step"; hard
failures (an unreadable manifest, for example) propagate.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Callable
from collections.abc import Iterable
from dataclasses import dataclass
from dataclasses import field
from pathlib import Path

from ..errors import ModuleNotFoundError
from ..manifest import as_guid
from ..manifest import as_version
from ..manifest import load_manifest_file
from ..models import MODULE_EXTENSIONS
from ..models import ModuleType
from ..models import ResolvedModuleDescriptor
from ..state import ModuleState
from .versions import ModuleSpecification
from .versions import is_compatible
from .versions import is_guid_compatible
from .versions import try_parse_version

logger = logging.getLogger(__name__)

SearchPathProvider = Callable[[], Iterable[Path]]


def is_rooted(name: str) -> bool:
    """Classify a module reference as a path (absolute or relative) or a bare name."""
    expanded = os.path.expanduser(name)
    if os.path.isabs(expanded) or name.startswith("~"):
        return True
    if name in (".", ".."):
        return True
    return "/" in name or "\\" in name


def has_wildcard(name: str) -> bool:
    return any(char in name for char in "*?[")


def _native(name: str) -> str:
    return name.replace("\\", os.sep) if os.sep != "\\" else name


@dataclass
class _Request:
    name: str
    constraint: ModuleSpecification | None
    force: bool
    rooted_path: Path | None = None
    from_cache: bool = False
    version_mismatches: list[str] = field(default_factory=list)

    @property
    def cacheable(self) -> bool:
        """Requests without version or GUID constraints share the name cache."""
        constraint = self.constraint
        return constraint is None or not (constraint.has_version_constraint or constraint.guid is not None)


class LocalResolver:
    """Resolve module names and paths to concrete module artifacts."""

    def __init__(
        self,
        state: ModuleState,
        search_paths: Iterable[Path | str] | SearchPathProvider = (),
        base_dir: Path | None = None,
    ):
        """Initialize resolver.

        Args:
            state: Shared module state (module table and resolution cache)
            search_paths: Ordered module search path (highest precedence first),
                or a callable returning it (read on every bare-name search)
            base_dir: Directory that relative paths are resolved against
                (default: current working directory at resolve time)
        """
        self.state = state
        self._search_paths = search_paths
        self.base_dir = base_dir

    @property
    def search_paths(self) -> list[Path]:
        paths = self._search_paths() if callable(self._search_paths) else self._search_paths
        return [Path(os.path.expanduser(str(p))) for p in paths]

    def resolve(
        self,
        name_or_path: str | Path,
        constraint: ModuleSpecification | None = None,
        force: bool = False,
    ) -> ResolvedModuleDescriptor | None:
        """Resolve a module reference.

        Args:
            name_or_path: Bare module name, or absolute/relative path
            constraint: Optional version/GUID constraint
            force: Bypass the already-loaded check and the resolution cache

        Returns:
            Descriptor of the resolved artifact, or None if nothing matched
        """
        request = _Request(name=str(name_or_path), constraint=constraint, force=force)
        steps = (
            self._step_already_loaded,
            self._step_cache,
            self._step_rooted_existing,
            self._step_rooted_missing,
            self._step_module_path,
        )
        for step in steps:
            descriptor = step(request)
            if descriptor is not None:
                return descriptor
        logger.debug(f"[module:resolve] {request.name} -> not found")
        return None

    def resolve_or_raise(
        self,
        name_or_path: str | Path,
        constraint: ModuleSpecification | None = None,
        force: bool = False,
    ) -> ResolvedModuleDescriptor:
        """Resolve a module reference, raising ModuleNotFoundError when nothing matched."""
        descriptor = self.resolve(name_or_path, constraint, force)
        if descriptor is None:
            raise self.not_found_error(str(name_or_path), constraint)
        return descriptor

    @staticmethod
    def not_found_error(name: str, constraint: ModuleSpecification | None) -> ModuleNotFoundError:
        if constraint is None or not constraint.has_version_constraint:
            message = (
                f"The specified module '{name}' was not loaded because no valid module file was found "
                f"in any module directory."
            )
        elif constraint.required_version is not None:
            message = f"The module '{name}' with version {constraint.required_version} could not be found."
        elif constraint.minimum_version is not None and constraint.maximum_version is not None:
            message = (
                f"The module '{name}' with minimum version {constraint.minimum_version} and maximum version "
                f"{constraint.maximum_version} could not be found."
            )
        elif constraint.minimum_version is not None:
            message = f"The module '{name}' with version {constraint.minimum_version} could not be found."
        else:
            message = f"The module '{name}' with maximum version {constraint.maximum_version} could not be found."
        return ModuleNotFoundError(message, name, constraint)

    # ------------------------------------------------------------------
    # Resolution steps
    # ------------------------------------------------------------------

    def _step_already_loaded(self, request: _Request) -> ResolvedModuleDescriptor | None:
        if request.force or not is_rooted(request.name):
            return None
        return self._loaded_descriptor(self._absolute(request.name), request.constraint)

    def _step_cache(self, request: _Request) -> ResolvedModuleDescriptor | None:
        if request.force or not request.cacheable:
            return None
        cached = self.state.cache_lookup(request.name)
        if cached is None:
            return None
        logger.debug(f"[module:resolve] {request.name} -> cache ({cached})")
        request.rooted_path = Path(cached)
        request.from_cache = True
        return self._loaded_descriptor(request.rooted_path, request.constraint)

    def _step_rooted_existing(self, request: _Request) -> ResolvedModuleDescriptor | None:
        if request.rooted_path is None and is_rooted(request.name):
            request.rooted_path = self._absolute(request.name)
        path = request.rooted_path
        if path is None:
            return None

        if path.is_file():
            logger.debug(f"[module:resolve] {request.name} -> file {path}")
            return self._describe(path, request)

        if path.is_dir():
            descriptor = self._resolve_versioned(path, path.name, request)
            if descriptor is None:
                descriptor = self._try_extensions(path / path.name, request)
            if descriptor is not None:
                logger.debug(f"[module:resolve] {request.name} -> directory member {descriptor.key}")
            return descriptor
        return None

    def _step_rooted_missing(self, request: _Request) -> ResolvedModuleDescriptor | None:
        if not is_rooted(request.name):
            return None
        path = self._absolute(request.name)
        if path.exists():
            # Existing paths were handled by the previous step
            return None
        if ModuleType.from_path(path) is not None:
            # A missing file with a module extension resolves to nothing
            return None
        return self._try_extensions(path, request)

    def _step_module_path(self, request: _Request) -> ResolvedModuleDescriptor | None:
        if is_rooted(request.name) or request.from_cache:
            return None
        name = request.name
        for search_dir in self.search_paths:
            module_dir = search_dir / name
            if not module_dir.is_dir():
                continue
            descriptor = self._resolve_versioned(module_dir, name, request)
            if descriptor is None:
                descriptor = self._try_extensions(module_dir / name, request)
            if descriptor is None:
                continue
            logger.debug(f"[module:resolve] {name} -> module path {descriptor.key}")
            if request.cacheable:
                self.state.cache_store(name, descriptor.key)
            return descriptor
        return None

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _absolute(self, name: str) -> Path:
        path = Path(os.path.expanduser(_native(name)))
        if not path.is_absolute():
            path = (self.base_dir or Path.cwd()) / path
        return Path(os.path.normpath(path))

    def _loaded_descriptor(
        self, path: Path, constraint: ModuleSpecification | None
    ) -> ResolvedModuleDescriptor | None:
        module = self.state.get_module(path)
        if module is None:
            return None
        if not is_compatible(module.version, constraint, module.module_type):
            return None
        if not is_guid_compatible(module.guid, constraint):
            return None
        logger.debug(f"[module:resolve] {module.name} -> already loaded ({module.path})")
        return module.to_descriptor()

    def _resolve_versioned(
        self, module_dir: Path, name: str, request: _Request
    ) -> ResolvedModuleDescriptor | None:
        """Pick the highest version subdirectory whose default member resolves.

        Subdirectory names that do not parse as versions are skipped.
        """
        versioned = []
        try:
            children = list(module_dir.iterdir())
        except OSError as e:
            logger.debug(f"Cannot list {module_dir}: {e}")
            return None
        for child in children:
            if not child.is_dir():
                continue
            version = try_parse_version(child.name)
            if version is not None:
                versioned.append((version, child))

        for version, child in sorted(versioned, key=lambda item: item[0], reverse=True):
            descriptor = self._try_extensions(child / name, request)
            if descriptor is not None:
                return descriptor
        return None

    def _try_extensions(self, base: Path, request: _Request) -> ResolvedModuleDescriptor | None:
        """Try base.<ext> in precedence order; the first existing file decides."""
        for extension in MODULE_EXTENSIONS:
            candidate = base.with_name(base.name + extension)
            if candidate.is_file():
                return self._describe(candidate, request)
        return None

    def _describe(self, path: Path, request: _Request) -> ResolvedModuleDescriptor | None:
        module_type = ModuleType.from_path(path)
        if module_type is None:
            logger.debug(f"[module:resolve] {path} has no recognized module extension")
            return None

        loaded = self._loaded_descriptor(path, request.constraint) if not request.force else None
        if loaded is not None:
            return loaded

        version = None
        guid = None
        if module_type == ModuleType.MANIFEST:
            data = load_manifest_file(str(path))
            version = as_version(data, "ModuleVersion", str(path))
            guid = as_guid(data, "GUID", str(path))

        constraint = request.constraint
        if not is_compatible(version, constraint, module_type) or not is_guid_compatible(guid, constraint):
            logger.debug(f"[module:resolve] {path} (version {version}) does not satisfy {constraint}")
            request.version_mismatches.append(str(path))
            return None

        return ResolvedModuleDescriptor(
            key=str(path),
            module_type=module_type,
            name=path.stem,
            version=version,
            guid=guid,
        )
