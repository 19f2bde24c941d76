"""Import modules from a management/inventory endpoint.

No interactive session is involved: the endpoint serves raw module files.
Cmdlet-adapter definitions and types/format tables are flattened into a
staging directory under random names, the manifest is rewritten to point at
them, and the module is loaded from the in-memory rewritten manifest.
"""

from __future__ import annotations

import fnmatch
import logging
from collections.abc import Callable
from collections.abc import Mapping
from pathlib import Path
from pathlib import PurePath
from typing import Any
from typing import Protocol

from ..cancellation import CancellationToken
from ..errors import ErrorCategory
from ..errors import ImportErrorRecord
from ..errors import ImportResult
from ..errors import ManifestError
from ..errors import ModuleImportError
from ..errors import ModuleNotFoundError
from ..errors import OperationCancelledError
from ..errors import SessionOnlyModuleError
from ..errors import TransportError
from ..errors import UnsupportedAdapterError
from ..errors import VersionMismatchError
from ..loaders import ModuleLoader
from ..loaders.artifacts import PRIVATE_DATA_CMDLET_ADAPTER
from ..loaders.artifacts import PRIVATE_DATA_CMDLETS_OVER_OBJECTS
from ..loaders.artifacts import PRIVATE_DATA_DEFAULT_SESSION
from ..loaders.artifacts import adapter_type_name
from ..loaders.artifacts import is_default_adapter
from ..manifest import as_list
from ..manifest import as_string_list
from ..manifest import as_version
from ..manifest import is_non_empty_field
from ..manifest import parse_manifest_text
from ..manifest import rewrite_manifest
from ..manifest import root_module_entry
from ..models import FileKind
from ..models import ModuleInfo
from ..models import RemoteModule
from ..models import RemoteModuleFile
from ..module_resolution.versions import ModuleSpecification
from ..module_resolution.versions import is_compatible
from ..module_resolution.versions import is_guid_compatible
from ..state import ModuleState
from .staging import StagingArea
from .staging import cleanup_hook
from .staging import mark_zone_of_origin
from .staging import random_file_name
from .staging import staging_directory

logger = logging.getLogger(__name__)

Register = Callable[[ModuleInfo], ModuleInfo]

PS1XML_EXTENSION = ".ps1xml"


class InventoryEndpoint(Protocol):
    """Opaque handle to a management/inventory endpoint."""

    computer_name: str

    def query_modules(
        self,
        names: list[str],
        resource_uri: str | None = None,
        namespace: str | None = None,
        cancel: CancellationToken | None = None,
    ) -> list[RemoteModule]: ...


def _present_in_entries(file_name: str, entries: list[str]) -> bool:
    lowered = file_name.lower()
    for entry in entries:
        candidate = entry.lower()
        if candidate.endswith(lowered):
            return True
        if not candidate.endswith(PS1XML_EXTENSION) and (candidate + PS1XML_EXTENSION).endswith(lowered):
            return True
    return False


def _is_table_file(module_file: RemoteModuleFile, data: Mapping[str, Any], listed_in: str, not_listed_in: str) -> bool:
    if PurePath(module_file.file_name).suffix.lower() != PS1XML_EXTENSION:
        return False
    wanted = as_string_list(data, listed_in)
    unwanted = as_string_list(data, not_listed_in)
    return _present_in_entries(module_file.file_name, wanted) and not _present_in_entries(
        module_file.file_name, unwanted
    )


def is_types_file(module_file: RemoteModuleFile, data: Mapping[str, Any]) -> bool:
    return _is_table_file(module_file, data, "TypesToProcess", "FormatsToProcess")


def is_format_file(module_file: RemoteModuleFile, data: Mapping[str, Any]) -> bool:
    return _is_table_file(module_file, data, "FormatsToProcess", "TypesToProcess")


def is_cmdletization_file(module_file: RemoteModuleFile) -> bool:
    return module_file.file_kind == FileKind.CMDLETIZATION


def is_mixed_mode(remote_module: RemoteModule, data: Mapping[str, Any] | None) -> bool:
    """True when part of the module cannot be served without an interactive session.

    That is the case when the manifest runs scripts or loads assemblies, or
    declares more elements (root plus nested modules) than the endpoint
    serves cmdlet-adapter definitions for.
    """
    if remote_module.main_manifest is None or data is None:
        return True
    if is_non_empty_field(data, "ScriptsToProcess") or is_non_empty_field(data, "RequiredAssemblies"):
        return True

    submodules = len(as_list(data, "NestedModules"))
    if root_module_entry(data):
        submodules += 1
    cmdletization_files = sum(1 for f in remote_module.files if is_cmdletization_file(f))
    return submodules > cmdletization_files


class RemoteInventoryImporter:
    """Import management-capable modules from an inventory endpoint."""

    def __init__(
        self,
        state: ModuleState,
        loader: ModuleLoader,
        staging: StagingArea,
        remover: Callable[[ModuleInfo], Any] | None = None,
    ):
        self.state = state
        self.loader = loader
        self.staging = staging
        self.remover = remover or state.remove_module

    def import_modules(
        self,
        endpoint: InventoryEndpoint,
        names: list[str],
        resource_uri: str | None = None,
        namespace: str | None = None,
        constraint: ModuleSpecification | None = None,
        force: bool = False,
        cancel: CancellationToken | None = None,
        register: Register | None = None,
    ) -> ImportResult:
        """Import every module matching the requested (wildcard) names.

        Per-module failures are reported as error records; cancellation
        propagates after cleanup. The version part of ``constraint`` applies
        to every matched module, whatever its name. ``register`` adds a loaded
        module to the module tables (default: the global table only).

        Raises:
            TransportError: The endpoint query failed
            OperationCancelledError: Cancelled while importing
        """
        cancel = cancel or CancellationToken()
        register = register or self.state.add_module
        result = ImportResult()
        identifier = ", ".join(names)
        cancel.raise_if_cancelled(identifier)

        try:
            remote_modules = list(endpoint.query_modules(list(names), resource_uri, namespace, cancel))
        except ModuleImportError:
            raise
        except OSError as e:
            raise TransportError(
                f"Querying modules {identifier} on '{endpoint.computer_name}' failed: {e}", identifier
            ) from e
        cancel.raise_if_cancelled(identifier)
        logger.debug(f"[module:inventory] {endpoint.computer_name} returned {len(remote_modules)} modules for {names}")

        for remote_module in remote_modules:
            if not remote_module.is_management_capable:
                result.add_error(
                    SessionOnlyModuleError(
                        f"Module '{remote_module.module_name}' cannot be imported over a management endpoint; "
                        f"use an interactive session instead",
                        remote_module.module_name,
                    )
                )

        found = [m.module_name.lower() for m in remote_modules]
        for requested in names:
            pattern = requested.lower()
            if not any(fnmatch.fnmatchcase(name, pattern) for name in found):
                result.add_error(
                    ModuleNotFoundError(
                        f"The specified module '{requested}' was not found on '{endpoint.computer_name}'", requested
                    )
                )

        host_identity = f"{endpoint.computer_name}|{resource_uri or ''}|{namespace or ''}"
        for remote_module in remote_modules:
            if not remote_module.is_management_capable:
                continue
            module_constraint = constraint.with_name(remote_module.module_name) if constraint is not None else None
            try:
                module, mixed_mode = self._import_single(
                    endpoint, remote_module, host_identity, module_constraint, force, cancel, register
                )
            except OperationCancelledError:
                raise
            except ModuleImportError as e:
                logger.debug(f"[module:inventory] {remote_module.module_name} failed: {e}")
                result.add_error(e, remote_module.module_name)
                continue

            result.modules.append(module)
            if mixed_mode:
                message = (
                    f"Module '{remote_module.module_name}' was only partially imported; commands that need "
                    f"an interactive session are not available"
                )
                logger.warning(message)
                result.warnings.append(
                    ImportErrorRecord.warning(ErrorCategory.PARTIAL_CAPABILITY, remote_module.module_name, message)
                )
        return result

    def _import_single(
        self,
        endpoint: InventoryEndpoint,
        remote_module: RemoteModule,
        host_identity: str,
        constraint: ModuleSpecification | None,
        force: bool,
        cancel: CancellationToken,
        register: Register,
    ) -> tuple[ModuleInfo, bool]:
        name = remote_module.module_name
        main_manifest = remote_module.main_manifest
        if main_manifest is None:
            raise ManifestError(f"The module manifest '{name}.psd1' is missing or empty", name)

        unversioned_dir = self.staging.path_for(name, None, host_identity)
        data = parse_manifest_text(main_manifest.text, str(unversioned_dir / f"{name}.psd1"))

        # The directory depends on the declared version, known only after parsing
        version = as_version(data, "ModuleVersion", name)
        staging_dir = self.staging.path_for(name, version, host_identity)
        manifest_path = staging_dir / f"{name}.psd1"

        with self.state.exclusive(staging_dir):
            existing = self.state.get_module(manifest_path)
            if existing is not None:
                if not force:
                    compatible = is_compatible(existing.version, constraint) and is_guid_compatible(
                        existing.guid, constraint
                    )
                    if not compatible:
                        raise VersionMismatchError(
                            f"Module '{name}' ({existing.version}) does not satisfy {constraint.describe_constraint()}",
                            name,
                        )
                    logger.debug(f"[module:inventory] {name} already imported from {endpoint.computer_name}")
                    return register(existing), False
                self.remover(existing)

            with staging_directory(staging_dir):
                types_files = self._write_files(
                    remote_module, staging_dir, ".types.ps1xml", lambda f: is_types_file(f, data)
                )
                format_files = self._write_files(
                    remote_module, staging_dir, ".format.ps1xml", lambda f: is_format_file(f, data)
                )
                nested_files = self._write_files(remote_module, staging_dir, ".cdxml", is_cmdletization_file)
                cancel.raise_if_cancelled(name)

                rewritten = rewrite_manifest(data, nested_files, types_files, format_files)
                localized = rewrite_manifest(data)
                module = self.loader.load_manifest_data(manifest_path, rewritten, localized, constraint=constraint)
                cancel.raise_if_cancelled(name)

                for nested in module.nested_modules:
                    adapter_data = nested.private_data.setdefault(PRIVATE_DATA_CMDLETS_OVER_OBJECTS, {})
                    adapter = adapter_data.get(PRIVATE_DATA_CMDLET_ADAPTER)
                    if not is_default_adapter(adapter):
                        raise UnsupportedAdapterError(
                            f"Module '{name}' uses the unsupported cmdlet adapter "
                            f"'{adapter_type_name(adapter or '')}'",
                            name,
                        )
                mixed_mode = is_mixed_mode(remote_module, data)

                for nested in module.nested_modules:
                    nested.private_data[PRIVATE_DATA_CMDLETS_OVER_OBJECTS][PRIVATE_DATA_DEFAULT_SESSION] = endpoint
                    nested.source_host = endpoint.computer_name

                module.source_host = endpoint.computer_name
                module.add_removal_hook(cleanup_hook(staging_dir))
                module = register(module)

        logger.info(f"Imported module {name} {version or ''} from inventory endpoint {endpoint.computer_name}")
        return module, mixed_mode

    @staticmethod
    def _write_files(
        remote_module: RemoteModule,
        staging_dir: Path,
        suffix: str,
        include: Callable[[RemoteModuleFile], bool],
    ) -> list[str]:
        """Write matching files under random names; returns names relative to the staging directory."""
        written = []
        for module_file in remote_module.files:
            if not include(module_file):
                continue
            original_name = PurePath(module_file.file_name.replace("\\", "/")).name
            file_name = random_file_name(original_name, suffix)
            full_path = staging_dir / file_name
            full_path.write_bytes(module_file.raw_bytes)
            mark_zone_of_origin(full_path)
            written.append(file_name)
        return written
