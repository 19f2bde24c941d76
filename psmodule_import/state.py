"""Process-scoped shared state: module tables and the resolution cache.

A single ModuleState instance is created by the host and passed to every
component that needs it. All reads and writes go through its lock so that an
existence check and the following insertion are atomic with respect to other
importers.
"""

from __future__ import annotations

import contextlib
import fnmatch
import logging
import os
import threading
from collections.abc import Iterable
from collections.abc import Iterator
from pathlib import Path

from .models import CommandInfo
from .models import ModuleInfo

logger = logging.getLogger(__name__)


def normalize_key(key: str | Path) -> str:
    """Normalize a module table key.

    Filesystem paths become absolute and case-normalized; synthetic keys
    (e.g. "dynamic_code_module_<name>") are returned unchanged.
    """
    text = str(key)
    if text.startswith("dynamic_code_module_"):
        return text
    return os.path.normcase(os.path.abspath(os.path.expanduser(text)))


def apply_prefix(name: str, prefix: str | None) -> str:
    """Insert a prefix into a command name (Verb-Noun -> Verb-PrefixNoun)."""
    if not prefix:
        return name
    verb, sep, noun = name.partition("-")
    if sep and noun:
        return f"{verb}-{prefix}{noun}"
    return f"{prefix}{name}"


class Scope:
    """A binding scope holding imported members and its own module table."""

    def __init__(self, name: str = "Global"):
        self.name = name
        self.modules: dict[str, ModuleInfo] = {}
        self.commands: dict[str, CommandInfo] = {}
        self.variables: dict[str, object] = {}
        # member name -> key of the module that bound it
        self.member_owners: dict[str, str] = {}

    def __repr__(self) -> str:
        return f"Scope({self.name}, modules={len(self.modules)}, commands={len(self.commands)})"


class ModuleState:
    """Owner of the "all sessions" module table and the resolution cache."""

    def __init__(self, use_resolution_cache: bool = True):
        self.lock = threading.RLock()
        self.use_resolution_cache = use_resolution_cache
        self._modules: dict[str, ModuleInfo] = {}
        self._resolution_cache: dict[str, str] = {}
        # key -> (lock, number of holders and waiters)
        self._key_locks: dict[str, tuple[threading.RLock, int]] = {}

    # ------------------------------------------------------------------
    # Resolution cache
    # ------------------------------------------------------------------

    def cache_lookup(self, name: str) -> str | None:
        """Return the cached path for a name, evicting it if the file is gone."""
        if not self.use_resolution_cache:
            return None
        cache_key = name.lower()
        with self.lock:
            cached = self._resolution_cache.get(cache_key)
            if cached is None:
                return None
            if Path(cached).is_file():
                return cached
            logger.debug(f"[module:cache] evicting stale entry {name} -> {cached}")
            del self._resolution_cache[cache_key]
            return None

    def cache_store(self, name: str, path: str | Path) -> None:
        if not self.use_resolution_cache:
            return
        with self.lock:
            self._resolution_cache[name.lower()] = str(path)

    def cache_evict(self, name: str) -> None:
        with self.lock:
            self._resolution_cache.pop(name.lower(), None)

    def cache_clear(self) -> None:
        with self.lock:
            self._resolution_cache.clear()

    def cache_entries(self) -> dict[str, str]:
        with self.lock:
            return dict(self._resolution_cache)

    # ------------------------------------------------------------------
    # Module table
    # ------------------------------------------------------------------

    def get_module(self, key: str | Path) -> ModuleInfo | None:
        with self.lock:
            return self._modules.get(normalize_key(key))

    def has_module(self, key: str | Path) -> bool:
        with self.lock:
            return normalize_key(key) in self._modules

    def list_modules(self, name_pattern: str | None = None) -> list[ModuleInfo]:
        """List loaded modules, optionally filtered by a wildcard name pattern."""
        with self.lock:
            modules = list(self._modules.values())
        if name_pattern:
            pattern = name_pattern.lower()
            modules = [m for m in modules if fnmatch.fnmatchcase(m.name.lower(), pattern)]
        return modules

    def add_module(self, module: ModuleInfo, scope: Scope | None = None) -> ModuleInfo:
        """Register a module in the global table and, if given, the scope table.

        If a module with the same key is already registered it is kept and
        returned instead; both tables are updated under one lock acquisition.
        """
        key = normalize_key(module.path)
        with self.lock:
            existing = self._modules.get(key)
            if existing is not None and existing is not module:
                logger.debug(f"[module:table] {key} already registered, keeping existing entry")
                module = existing
            self._modules[key] = module
            if scope is not None:
                scope.modules[key] = module
        return module

    def remove_module(self, module: ModuleInfo, scopes: Iterable[Scope] = ()) -> list[BaseException]:
        """Unregister a module everywhere and run its removal hooks.

        Returns:
            Exceptions raised by removal hooks
        """
        key = normalize_key(module.path)
        with self.lock:
            current = self._modules.get(key)
            if current is module:
                del self._modules[key]
            for scope in scopes:
                if scope.modules.get(key) is module:
                    del scope.modules[key]
                for member_name, owner in list(scope.member_owners.items()):
                    if owner != key:
                        continue
                    scope.commands.pop(member_name, None)
                    scope.variables.pop(member_name, None)
                    del scope.member_owners[member_name]
        logger.debug(f"[module:table] removed {module.name} ({key})")
        return module.run_removal_hooks()

    def import_members(
        self,
        scope: Scope,
        module: ModuleInfo,
        prefix: str | None = None,
        no_clobber: bool = False,
        name_patterns: list[str] | None = None,
    ) -> list[str]:
        """Bind a module's exported commands and variables into a scope.

        Existing names are skipped when no_clobber is set. The read of
        existing names and the writes happen under the table lock.

        Returns:
            Names that were bound
        """
        key = normalize_key(module.path)
        patterns = [p.lower() for p in name_patterns or []]
        bound: list[str] = []
        with self.lock:
            for command in module.exported_commands.values():
                if patterns and not any(fnmatch.fnmatchcase(command.name.lower(), p) for p in patterns):
                    continue
                target_name = apply_prefix(command.name, prefix)
                if no_clobber and target_name in scope.commands:
                    logger.debug(f"[module:import] skipping {target_name}, already present in scope {scope.name}")
                    continue
                scope.commands[target_name] = command.renamed(target_name) if target_name != command.name else command
                scope.member_owners[target_name] = key
                bound.append(target_name)
            for variable_name, value in module.exported_variables.items():
                if no_clobber and variable_name in scope.variables:
                    continue
                scope.variables[variable_name] = value
                scope.member_owners[variable_name] = key
                bound.append(variable_name)
        return bound

    @contextlib.contextmanager
    def exclusive(self, key: str | Path) -> Iterator[None]:
        """Serialize work on one module key (a module path or staging path).

        Imports of different keys proceed in parallel; imports of the same
        key wait for each other. A key's lock is dropped once nobody holds
        or waits for it.
        """
        normalized = normalize_key(key)
        with self.lock:
            key_lock, users = self._key_locks.get(normalized, (None, 0))
            if key_lock is None:
                key_lock = threading.RLock()
            self._key_locks[normalized] = (key_lock, users + 1)
        try:
            with key_lock:
                yield
        finally:
            with self.lock:
                key_lock, users = self._key_locks[normalized]
                if users <= 1:
                    del self._key_locks[normalized]
                else:
                    self._key_locks[normalized] = (key_lock, users - 1)
