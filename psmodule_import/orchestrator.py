"""Import orchestrator: top-level entry point for module imports.

Dispatches each selector (names, paths, fully-qualified specifications,
module records, remote sessions, inventory endpoints) to the local resolver or
one of the remote importers, then performs the shared post-steps: register the
module in the "all sessions" table and the target scope's table, and bind its
members into the scope.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from collections.abc import Iterable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from dataclasses import field
from pathlib import Path
from typing import Any

from .cancellation import CancellationToken
from .errors import ImportResult
from .errors import InvalidArgumentError
from .errors import ManifestError
from .errors import ModuleImportError
from .errors import OperationCancelledError
from .loaders import ArtifactLoader
from .loaders import ModuleLoader
from .models import ModuleInfo
from .models import ResolvedModuleDescriptor
from .module_resolution import LocalResolver
from .module_resolution import ModuleSpecification
from .module_resolution import is_compatible
from .module_resolution import is_guid_compatible
from .remote.inventory import InventoryEndpoint
from .remote.inventory import RemoteInventoryImporter
from .remote.session import ProxyGenerator
from .remote.session import Register
from .remote.session import RemoteSession
from .remote.session import RemoteSessionImporter
from .remote.staging import StagingArea
from .state import ModuleState
from .state import Scope

logger = logging.getLogger(__name__)


@dataclass
class ImportOptions:
    """Options shared by every item of one import call.

    Version options apply to requests given by name or path. Conflicting
    options (required version with a range, minimum above maximum) are
    rejected when the options are created, before anything is resolved.
    """

    prefix: str | None = None
    no_clobber: bool = False
    force: bool = False
    name_patterns: list[str] | None = None
    argument_list: list[Any] | None = None
    scope: Scope | None = None
    required_version: Any = None
    minimum_version: Any = None
    maximum_version: Any = None
    guid: Any = None
    max_workers: int = 1
    _template: ModuleSpecification | None = field(default=None, init=False, repr=False)

    def __post_init__(self):
        if any(v is not None for v in (self.required_version, self.minimum_version, self.maximum_version, self.guid)):
            self._template = ModuleSpecification.create(
                "*",
                guid=self.guid,
                required_version=self.required_version,
                minimum_version=self.minimum_version,
                maximum_version=self.maximum_version,
            )

    def constraint_for(self, name: str) -> ModuleSpecification | None:
        return self._template.with_name(name) if self._template is not None else None


class ImportOrchestrator:
    """Resolve, fetch, load and register modules."""

    def __init__(
        self,
        state: ModuleState | None = None,
        search_paths: Iterable[Path | str] | Callable[[], Iterable[Path]] = (),
        staging: StagingArea | None = None,
        artifact_loader: ArtifactLoader | None = None,
        proxy_generator: ProxyGenerator | None = None,
        base_dir: Path | None = None,
    ):
        """Initialize orchestrator.

        Args:
            state: Shared module state (a new one if omitted)
            search_paths: Ordered module search path, or a callable returning it
            staging: Staging area for remote modules
            artifact_loader: Loader for non-manifest artifacts
            proxy_generator: Proxy writer for session imports
            base_dir: Directory relative paths are resolved against
        """
        self.state = state or ModuleState()
        self.global_scope = Scope("Global")
        self._scopes: list[Scope] = [self.global_scope]
        self._sessions: dict[str, RemoteSession] = {}
        self._requirement_stack = threading.local()

        self.resolver = LocalResolver(self.state, search_paths, base_dir)
        self.loader = ModuleLoader(artifact_loader, self.resolver, requirement_importer=self._import_requirement)
        self.staging = staging or StagingArea()
        self.session_importer = RemoteSessionImporter(
            self.state, self.loader, self.staging, proxy_generator, remover=self.remove_module
        )
        self.inventory_importer = RemoteInventoryImporter(
            self.state, self.loader, self.staging, remover=self.remove_module
        )

    # ------------------------------------------------------------------
    # Selectors
    # ------------------------------------------------------------------

    def import_names(self, names: Iterable[str], options: ImportOptions | None = None) -> ImportResult:
        """Import modules by bare name or by path."""
        options = options or ImportOptions()
        register = self._registrar(options)

        def import_one(name: str) -> ImportResult:
            return ImportResult(modules=[self._import_local(name, options.constraint_for(name), options, register)])

        return self._run_batch(list(names), import_one, str, options)

    def import_specifications(
        self, specifications: Iterable[ModuleSpecification | dict[str, Any]], options: ImportOptions | None = None
    ) -> ImportResult:
        """Import modules by fully-qualified specification."""
        options = options or ImportOptions()
        specs = [ModuleSpecification.from_value(s) for s in specifications]

        register = self._registrar(options)

        def import_one(spec: ModuleSpecification) -> ImportResult:
            return ImportResult(modules=[self._import_local(spec.name, spec, options, register)])

        return self._run_batch(specs, import_one, lambda s: s.name, options)

    def import_modules(
        self,
        modules: Iterable[ModuleInfo | ResolvedModuleDescriptor],
        options: ImportOptions | None = None,
        cancel: CancellationToken | None = None,
    ) -> ImportResult:
        """Import already-loaded records or already-resolved descriptors.

        Remote descriptors are dispatched to the session they came from.
        """
        options = options or ImportOptions()
        register = self._registrar(options)

        def import_one(item: ModuleInfo | ResolvedModuleDescriptor) -> ImportResult:
            if isinstance(item, ModuleInfo):
                return ImportResult(modules=[register(item)])
            if item.is_remote:
                session = self._sessions.get(item.source_host or "")
                if session is None:
                    raise InvalidArgumentError(
                        f"No open session to '{item.source_host}' for module '{item.name}'", item.name
                    )
                return self.session_importer.import_request(
                    session, item.name, options.argument_list, options.force, cancel, register
                )
            module = self._load_descriptor(item, options.constraint_for(item.name), options, register)
            return ImportResult(modules=[module])

        return self._run_batch(list(modules), import_one, lambda m: m.name, options)

    def import_from_session(
        self,
        session: RemoteSession,
        requests: Iterable[str | ModuleSpecification],
        options: ImportOptions | None = None,
        cancel: CancellationToken | None = None,
    ) -> ImportResult:
        """Import modules over an interactive remote session as local proxies."""
        options = options or ImportOptions()
        self._sessions[session.computer_name] = session
        register = self._registrar(options)

        def import_one(request: str | ModuleSpecification) -> ImportResult:
            if isinstance(request, str) and options.constraint_for(request) is not None:
                request = options.constraint_for(request)
            return self.session_importer.import_request(
                session, request, options.argument_list, options.force, cancel, register
            )

        return self._run_batch(
            list(requests), import_one, lambda r: r.name if isinstance(r, ModuleSpecification) else r, options
        )

    def import_from_inventory(
        self,
        endpoint: InventoryEndpoint,
        names: Iterable[str],
        options: ImportOptions | None = None,
        resource_uri: str | None = None,
        namespace: str | None = None,
        cancel: CancellationToken | None = None,
    ) -> ImportResult:
        """Import modules from a management/inventory endpoint.

        Version options apply to every module the endpoint returns.
        """
        options = options or ImportOptions()
        names = list(names)
        result = ImportResult()
        try:
            fetched = self.inventory_importer.import_modules(
                endpoint,
                names,
                resource_uri=resource_uri,
                namespace=namespace,
                constraint=options.constraint_for(names[0]) if names else None,
                force=options.force,
                cancel=cancel,
                register=self._registrar(options),
            )
        except OperationCancelledError:
            raise
        except ModuleImportError as e:
            logger.error(f"Import from {endpoint.computer_name} failed: {e}")
            result.add_error(e, ", ".join(names))
            return result

        result.errors.extend(fetched.errors)
        result.warnings.extend(fetched.warnings)
        result.modules.extend(fetched.modules)
        return result

    # ------------------------------------------------------------------
    # Queries and removal
    # ------------------------------------------------------------------

    def get_module(self, key: str | Path) -> ModuleInfo | None:
        return self.state.get_module(key)

    def list_modules(self, name_pattern: str | None = None) -> list[ModuleInfo]:
        return self.state.list_modules(name_pattern)

    def remove_module(self, module: ModuleInfo) -> list[BaseException]:
        """Unload a module from every table and scope and run its removal hooks.

        Returns:
            Exceptions raised by removal hooks (the remaining hooks still ran)
        """
        with self.state.lock:
            scopes = list(self._scopes)
        failures = self.state.remove_module(module, scopes)
        logger.info(f"Removed module {module.name}")
        return failures

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _import_local(
        self, name: str, constraint: ModuleSpecification | None, options: ImportOptions, register: Register
    ) -> ModuleInfo:
        if options.force:
            descriptor = self.resolver.resolve_or_raise(name, constraint, force=True)
            existing = self.state.get_module(descriptor.key)
            if existing is not None:
                logger.debug(f"[module:resolve] force reload of {existing.name}")
                self.remove_module(existing)
        else:
            descriptor = self.resolver.resolve_or_raise(name, constraint)
        return self._load_descriptor(descriptor, constraint, options, register)

    def _load_descriptor(
        self,
        descriptor: ResolvedModuleDescriptor,
        constraint: ModuleSpecification | None,
        options: ImportOptions,
        register: Register,
    ) -> ModuleInfo:
        with self.state.exclusive(descriptor.key):
            module = self.state.get_module(descriptor.key)
            if module is not None:
                if is_compatible(module.version, constraint, module.module_type) and is_guid_compatible(
                    module.guid, constraint
                ):
                    return register(module)
                # Stale copy; reload from disk
                logger.debug(f"[module:resolve] loaded {module.name} {module.version} does not satisfy {constraint}")
                self.remove_module(module)
            module = self.loader.load(descriptor, options.argument_list, constraint)
            module = register(module)
        logger.info(f"Imported module {module.name} {module.version or ''} from {module.path}")
        return module

    def _import_requirement(self, spec: ModuleSpecification) -> ModuleInfo:
        stack = getattr(self._requirement_stack, "names", None)
        if stack is None:
            stack = self._requirement_stack.names = []
        key = spec.name.lower()
        if key in stack:
            raise ManifestError(f"Circular module dependency: {' -> '.join([*stack, key])}", spec.name)
        stack.append(key)
        try:
            return self._import_local(spec.name, spec, ImportOptions(), self.state.add_module)
        finally:
            stack.pop()

    def _registrar(self, options: ImportOptions) -> Register:
        def register(module: ModuleInfo) -> ModuleInfo:
            return self._finish(module, options)

        return register

    def _finish(self, module: ModuleInfo, options: ImportOptions) -> ModuleInfo:
        """Register in both tables and bind members, atomically."""
        scope = options.scope or self.global_scope
        with self.state.lock:
            if not any(s is scope for s in self._scopes):
                self._scopes.append(scope)
            module = self.state.add_module(module, scope)
            bound = self.state.import_members(scope, module, options.prefix, options.no_clobber, options.name_patterns)
        logger.debug(f"[module:import] {module.name}: bound {len(bound)} members into {scope.name}")
        return module

    def _run_batch(
        self,
        items: list[Any],
        import_one: Callable[[Any], ImportResult],
        identify: Callable[[Any], str],
        options: ImportOptions,
    ) -> ImportResult:
        """Run one import per item; failures become error records, cancellation aborts."""

        def run(item: Any) -> ImportResult:
            try:
                return import_one(item)
            except OperationCancelledError:
                raise
            except ModuleImportError as e:
                logger.debug(f"Import of '{identify(item)}' failed: {e}")
                failed = ImportResult()
                failed.add_error(e, identify(item))
                return failed

        result = ImportResult()
        if options.max_workers > 1 and len(items) > 1:
            with ThreadPoolExecutor(max_workers=options.max_workers) as executor:
                futures = [executor.submit(run, item) for item in items]
            cancelled = None
            for future in futures:
                error = future.exception()
                if isinstance(error, OperationCancelledError):
                    cancelled = cancelled or error
                elif error is not None:
                    raise error
                else:
                    result.extend(future.result())
            if cancelled is not None:
                raise cancelled
            return result

        for item in items:
            result.extend(run(item))
        return result
