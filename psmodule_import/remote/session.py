"""Import modules over an interactive remote session.

The remote host imports the module, a local proxy module is generated into a
staging directory, and the proxy is loaded like any other local manifest with
the session as its argument. Proxy commands forward invocations back to the
session.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from pathlib import Path
from typing import Any
from typing import Protocol

from packaging.version import Version

from ..cancellation import CancellationToken
from ..errors import ImportResult
from ..errors import ModuleImportError
from ..errors import ModuleNotFoundError
from ..errors import NothingToImportError
from ..errors import OperationCancelledError
from ..errors import TransportError
from ..loaders import PROXY_MARKER
from ..loaders import ModuleLoader
from ..manifest import dump_manifest
from ..models import ModuleInfo
from ..models import ModuleType
from ..models import ResolvedModuleDescriptor
from ..module_resolution.resolver import has_wildcard
from ..module_resolution.versions import ModuleSpecification
from ..module_resolution.versions import try_parse_version
from ..state import ModuleState
from .staging import StagingArea
from .staging import cleanup_hook
from .staging import staging_directory

logger = logging.getLogger(__name__)

Register = Callable[[ModuleInfo], ModuleInfo]


class RemoteSession(Protocol):
    """Opaque handle to an interactive remote session."""

    computer_name: str

    def invoke(
        self, command: str, parameters: dict[str, Any], cancel: CancellationToken | None = None
    ) -> list[dict[str, Any]]: ...


class ProxyGenerator(Protocol):
    """Writes proxy module files for a remote module; returns the files produced."""

    def generate(
        self,
        session: RemoteSession,
        module_name: str,
        output_dir: Path,
        version: Version | None = None,
        guid: uuid.UUID | None = None,
        cancel: CancellationToken | None = None,
    ) -> list[Path]: ...


def invoke_remote(
    session: RemoteSession,
    command: str,
    parameters: dict[str, Any],
    cancel: CancellationToken,
    identifier: str,
) -> list[dict[str, Any]]:
    """Invoke a remote command, wrapping transport failures with the module identifier."""
    cancel.raise_if_cancelled(identifier)
    try:
        results = session.invoke(command, parameters, cancel)
    except ModuleImportError:
        raise
    except OSError as e:
        raise TransportError(
            f"Running the '{command}' command on '{session.computer_name}' failed for '{identifier}': {e}", identifier
        ) from e
    cancel.raise_if_cancelled(identifier)
    return list(results or [])


def _proxy_function(command_name: str) -> str:
    return (
        f"function {command_name} {{\n"
        f"    param()\n"
        f"    $__psmoduleSession.Invoke('{command_name}', $PSBoundParameters)\n"
        f"}}\n"
    )


class SessionProxyGenerator:
    """Default proxy generator.

    Asks the session for the module's commands and writes
    ``<basename>.psm1`` (forwarding functions) and ``<basename>.psd1``
    (manifest pointing at it), where basename is the output directory name.
    A module without commands produces no files.
    """

    def generate(
        self,
        session: RemoteSession,
        module_name: str,
        output_dir: Path,
        version: Version | None = None,
        guid: uuid.UUID | None = None,
        cancel: CancellationToken | None = None,
    ) -> list[Path]:
        cancel = cancel or CancellationToken()
        results = invoke_remote(session, "Get-Command", {"Module": module_name}, cancel, module_name)
        names = []
        for result in results:
            name = result.get("Name")
            if name and name not in names:
                names.append(str(name))
        if not names:
            logger.debug(f"[module:remote] {module_name} exposes no commands on {session.computer_name}")
            return []

        basename = output_dir.name
        script_path = output_dir / f"{basename}.psm1"
        manifest_path = output_dir / f"{basename}.psd1"

        lines = [PROXY_MARKER, f"# Module: {module_name}", f"# Source: {session.computer_name}", ""]
        lines.extend(_proxy_function(name) for name in names)
        script_path.write_text("\n".join(lines), encoding="utf-8")

        manifest = {
            "RootModule": script_path.name,
            "ModuleVersion": str(version) if version is not None else "1.0",
            "GUID": str(guid or uuid.uuid4()),
            "Description": f"Implicit remoting proxy for module '{module_name}' on {session.computer_name}",
            "FunctionsToExport": names,
            "PrivateData": {"ImplicitRemoting": True},
        }
        manifest_path.write_text(dump_manifest(manifest), encoding="utf-8")
        logger.debug(f"[module:remote] generated proxy for {module_name} with {len(names)} commands in {output_dir}")
        return [script_path, manifest_path]


def _import_parameters(
    request: str | ModuleSpecification, argument_list: list[Any] | None, force: bool
) -> dict[str, Any]:
    parameters: dict[str, Any] = {"PassThru": True}
    if isinstance(request, ModuleSpecification):
        qualified: dict[str, Any] = {"ModuleName": request.name}
        if request.guid is not None:
            qualified["GUID"] = str(request.guid)
        if request.required_version is not None:
            qualified["RequiredVersion"] = str(request.required_version)
        if request.minimum_version is not None:
            qualified["ModuleVersion"] = str(request.minimum_version)
        if request.maximum_version is not None:
            qualified["MaximumVersion"] = str(request.maximum_version)
        parameters["FullyQualifiedName"] = qualified
    else:
        parameters["Name"] = request
    if argument_list:
        parameters["ArgumentList"] = list(argument_list)
    if force:
        parameters["Force"] = True
    return parameters


def _parse_guid(value: Any) -> uuid.UUID | None:
    if value is None:
        return None
    try:
        guid = uuid.UUID(str(value).strip("{}"))
    except ValueError:
        return None
    return None if guid.int == 0 else guid


class RemoteSessionImporter:
    """Import modules from an interactive remote session as local proxy modules."""

    def __init__(
        self,
        state: ModuleState,
        loader: ModuleLoader,
        staging: StagingArea,
        proxy_generator: ProxyGenerator | None = None,
        remover: Callable[[ModuleInfo], Any] | None = None,
    ):
        """Initialize importer.

        Args:
            state: Shared module state
            loader: Loader for the generated proxy manifest
            staging: Staging area for proxy files
            proxy_generator: Proxy writer (default: SessionProxyGenerator)
            remover: Unloads an existing module when force is requested
                (default: remove from the global table only)
        """
        self.state = state
        self.loader = loader
        self.staging = staging
        self.proxy_generator = proxy_generator or SessionProxyGenerator()
        self.remover = remover or state.remove_module

    def import_module(
        self,
        session: RemoteSession,
        request: str | ModuleSpecification,
        argument_list: list[Any] | None = None,
        force: bool = False,
        cancel: CancellationToken | None = None,
        register: Register | None = None,
    ) -> list[ModuleInfo]:
        """Import one requested name (or specification) from the session.

        A wildcard name may import several modules.

        Raises:
            ModuleImportError: Any failure for this request
        """
        result = self.import_request(session, request, argument_list, force, cancel, register)
        if result.errors:
            raise result.errors[0].exception
        return result.modules

    def import_request(
        self,
        session: RemoteSession,
        request: str | ModuleSpecification,
        argument_list: list[Any] | None = None,
        force: bool = False,
        cancel: CancellationToken | None = None,
        register: Register | None = None,
    ) -> ImportResult:
        """Import every module the remote host returns for one request.

        Each returned module is imported on its own; a failure is recorded
        against that module's name and the others still load. ``register``
        adds a loaded module to the module tables (default: the global table
        only) and is called inside the staging path's exclusive section.

        Raises:
            ModuleNotFoundError: A non-wildcard request matched nothing
            TransportError: The remote Import-Module call failed
            OperationCancelledError: Cancelled while importing
        """
        cancel = cancel or CancellationToken()
        register = register or self.state.add_module
        identifier = request.name if isinstance(request, ModuleSpecification) else request
        logger.debug(f"[module:remote] importing {identifier} from {session.computer_name}")
        results = invoke_remote(
            session, "Import-Module", _import_parameters(request, argument_list, force), cancel, identifier
        )

        imported = ImportResult()
        for result in results:
            remote_name = result.get("Name")
            if not remote_name:
                continue
            remote_name = str(remote_name)
            version = try_parse_version(result.get("Version"))
            guid = _parse_guid(result.get("Guid"))
            help_info_uri = result.get("HelpInfoUri") or None

            try:
                module = self._import_single(
                    session, remote_name, version, guid, help_info_uri, force, cancel, register
                )
            except OperationCancelledError:
                raise
            except ModuleImportError as e:
                logger.debug(f"[module:remote] {remote_name} failed: {e}")
                imported.add_error(e, remote_name)
                continue
            imported.modules.append(module)

        if not imported.modules and not imported.errors and not has_wildcard(identifier):
            raise ModuleNotFoundError(
                f"The specified module '{identifier}' was not loaded because no valid module was found "
                f"on '{session.computer_name}'",
                identifier,
                request if isinstance(request, ModuleSpecification) else None,
            )
        return imported

    def _import_single(
        self,
        session: RemoteSession,
        name: str,
        version: Version | None,
        guid: uuid.UUID | None,
        help_info_uri: Any,
        force: bool,
        cancel: CancellationToken,
        register: Register,
    ) -> ModuleInfo:
        staging_dir = self.staging.path_for(name, version, session.computer_name)
        manifest_path = staging_dir / f"{name}.psd1"

        with self.state.exclusive(staging_dir):
            existing = self.state.get_module(manifest_path)
            if existing is not None:
                if not force:
                    logger.debug(f"[module:remote] {name} already imported from {session.computer_name}")
                    return register(existing)
                self.remover(existing)

            with staging_directory(staging_dir):
                produced = self.proxy_generator.generate(session, name, staging_dir, version, guid, cancel)
                cancel.raise_if_cancelled(name)
                if not produced:
                    raise NothingToImportError(
                        f"Proxy generation for module '{name}' on '{session.computer_name}' produced no files", name
                    )

                generated_manifest = staging_dir / f"{staging_dir.name}.psd1"
                generated_manifest.replace(manifest_path)

                descriptor = ResolvedModuleDescriptor(
                    key=str(manifest_path),
                    module_type=ModuleType.MANIFEST,
                    name=name,
                    version=version,
                    source_host=session.computer_name,
                )
                module = self.loader.load(descriptor, argument_list=[session])
                cancel.raise_if_cancelled(name)

                if not module.help_info_uri and help_info_uri:
                    module.help_info_uri = str(help_info_uri)
                if guid is not None:
                    module.guid = guid
                module.source_host = session.computer_name
                module.add_removal_hook(cleanup_hook(staging_dir))
                module = register(module)

        logger.info(f"Imported remote module {name} {version or ''} from {session.computer_name}")
        return module
