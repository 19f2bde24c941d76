"""Manifest loading.

Turns manifest data into a loaded module record: version and GUID checks,
required modules, root and nested module elements, types/format files and
export filtering. Non-manifest elements are delegated to an ArtifactLoader.
"""

from __future__ import annotations

import fnmatch
import logging
import os
from collections.abc import Callable
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from packaging.version import Version

from ..errors import MalformedInputError
from ..errors import ManifestError
from ..errors import ModuleNotFoundError
from ..errors import VersionMismatchError
from ..manifest import as_guid
from ..manifest import as_list
from ..manifest import as_string
from ..manifest import as_string_list
from ..manifest import as_table
from ..manifest import as_version
from ..manifest import load_manifest_file
from ..manifest import root_module_entry
from ..models import MODULE_EXTENSIONS
from ..models import CommandInfo
from ..models import CommandType
from ..models import ModuleInfo
from ..models import ModuleType
from ..models import ResolvedModuleDescriptor
from ..module_resolution.versions import ModuleSpecification
from ..module_resolution.versions import is_compatible
from ..module_resolution.versions import is_guid_compatible
from .artifacts import ArtifactLoader
from .artifacts import DefaultArtifactLoader

logger = logging.getLogger(__name__)

DEFAULT_MANIFEST_VERSION = Version("0.0")

RequirementImporter = Callable[[ModuleSpecification], ModuleInfo]

_EXPORT_KEYS = {
    CommandType.FUNCTION: "FunctionsToExport",
    CommandType.CMDLET: "CmdletsToExport",
    CommandType.ALIAS: "AliasesToExport",
}


def _relative_entry(entry: str) -> Path:
    """Manifest entries may use either separator."""
    return Path(entry.replace("\\", "/"))


def _matches_any(name: str, patterns: list[str]) -> bool:
    lowered = name.lower()
    return any(fnmatch.fnmatchcase(lowered, pattern.lower()) for pattern in patterns)


class ModuleLoader:
    """Load resolved module artifacts into module records."""

    def __init__(
        self,
        artifact_loader: ArtifactLoader | None = None,
        resolver: Any = None,
        requirement_importer: RequirementImporter | None = None,
    ):
        """Initialize loader.

        Args:
            artifact_loader: Loader for script, binary and cmdlet-adapter files
            resolver: LocalResolver used for nested modules given by bare name
            requirement_importer: Callback that imports a RequiredModules entry
                (registering it globally); defaults to resolve-and-load
        """
        self.artifact_loader = artifact_loader or DefaultArtifactLoader()
        self.resolver = resolver
        self.requirement_importer = requirement_importer

    def load(
        self,
        descriptor: ResolvedModuleDescriptor,
        argument_list: list[Any] | None = None,
        constraint: ModuleSpecification | None = None,
    ) -> ModuleInfo:
        """Load any resolved artifact."""
        if descriptor.module_type != ModuleType.MANIFEST:
            module = self.artifact_loader.load(descriptor, argument_list)
            if constraint is not None and not is_compatible(module.version, constraint, module.module_type):
                raise VersionMismatchError(
                    f"Module '{module.name}' does not satisfy version constraint {constraint.describe_constraint()}",
                    module.name,
                )
            return module

        data = load_manifest_file(descriptor.key)
        module = self.load_manifest_data(
            descriptor.path, data, constraint=constraint, argument_list=argument_list
        )
        if descriptor.source_host and not module.source_host:
            module.source_host = descriptor.source_host
        return module

    def load_manifest_data(
        self,
        manifest_path: str | Path,
        data: Mapping[str, Any],
        localized_data: Mapping[str, Any] | None = None,
        constraint: ModuleSpecification | None = None,
        argument_list: list[Any] | None = None,
    ) -> ModuleInfo:
        """Load a module from already-parsed manifest data.

        The manifest file itself need not exist; relative entries are
        resolved against its directory.

        Raises:
            VersionMismatchError: Declared version/GUID does not satisfy the constraint
            ManifestError: A referenced element or file is missing or invalid
            ModuleNotFoundError: A required module could not be imported
        """
        manifest_path = Path(manifest_path)
        path_text = str(manifest_path)
        name = manifest_path.stem
        base_dir = manifest_path.parent

        version = as_version(data, "ModuleVersion", path_text) or DEFAULT_MANIFEST_VERSION
        guid = as_guid(data, "GUID", path_text)
        if not is_compatible(version, constraint, ModuleType.MANIFEST):
            raise VersionMismatchError(
                f"The version of module '{name}' ({version}) does not satisfy "
                f"{constraint.describe_constraint() if constraint else 'the constraint'}",
                name,
            )
        if not is_guid_compatible(guid, constraint):
            raise VersionMismatchError(
                f"The GUID of module '{name}' ({guid}) does not match the requested GUID {constraint.guid}", name
            )

        required = [self._import_requirement(entry, name, path_text) for entry in as_list(data, "RequiredModules")]

        root_module = None
        root_entry = root_module_entry(data, path_text)
        if root_entry:
            root_module = self._load_element(base_dir, root_entry, "RootModule", path_text, argument_list)

        nested: list[ModuleInfo] = []
        for entry in as_list(data, "NestedModules"):
            if isinstance(entry, Mapping):
                spec = self._specification(entry, path_text)
                nested.append(self._load_by_name(spec.name, spec, "NestedModules", path_text))
            else:
                nested.append(self._load_element(base_dir, str(entry), "NestedModules", path_text, None))

        types_files = self._existing_files(base_dir, data, "TypesToProcess", path_text)
        format_files = self._existing_files(base_dir, data, "FormatsToProcess", path_text)

        # Root module members win over same-named nested ones
        commands: dict[str, CommandInfo] = {}
        variables: dict[str, Any] = {}
        for element in [*nested, *([root_module] if root_module else [])]:
            commands.update(element.exported_commands)
            variables.update(element.exported_variables)

        description = as_string(data, "Description", path_text) or ""
        if localized_data is not None:
            description = as_string(localized_data, "Description", path_text) or description

        module = ModuleInfo(
            name=name,
            path=path_text,
            module_type=ModuleType.MANIFEST,
            version=version,
            guid=guid,
            description=description,
            help_info_uri=as_string(data, "HelpInfoURI", path_text),
            source_host=root_module.source_host if root_module else None,
            exported_commands=self._filter_commands(commands, data, path_text),
            exported_variables=self._filter_variables(variables, data, path_text),
            nested_modules=nested,
            required_modules=required,
            private_data=as_table(data, "PrivateData", path_text),
            types_files=types_files,
            format_files=format_files,
            scripts_to_process=as_string_list(data, "ScriptsToProcess", path_text),
            required_assemblies=as_string_list(data, "RequiredAssemblies", path_text),
            argument_list=list(argument_list or []),
            is_proxy=bool(root_module and root_module.is_proxy),
        )
        logger.debug(
            f"Loaded manifest {path_text}: version={version}, "
            f"{len(module.exported_commands)} commands, {len(nested)} nested modules"
        )
        return module

    # ------------------------------------------------------------------
    # Elements
    # ------------------------------------------------------------------

    def _load_element(
        self,
        base_dir: Path,
        entry: str,
        field_name: str,
        manifest_path: str,
        argument_list: list[Any] | None,
    ) -> ModuleInfo:
        relative = _relative_entry(entry)
        candidate = relative if relative.is_absolute() else base_dir / relative

        descriptor = None
        if candidate.is_file():
            descriptor = self._descriptor_for(candidate)
        elif not candidate.suffix or ModuleType.from_path(candidate) is None:
            for extension in MODULE_EXTENSIONS:
                sibling = candidate.with_name(candidate.name + extension)
                if sibling.is_file():
                    descriptor = self._descriptor_for(sibling)
                    break
            else:
                if candidate.is_dir():
                    for extension in MODULE_EXTENSIONS:
                        sibling = candidate / f"{candidate.name}{extension}"
                        if sibling.is_file():
                            descriptor = self._descriptor_for(sibling)
                            break

        if descriptor is None and self.resolver is not None and len(relative.parts) == 1 and not relative.suffix:
            descriptor = self.resolver.resolve(entry)

        if descriptor is None:
            raise ManifestError(
                f"The module to process '{entry}', listed in field '{field_name}' of module manifest "
                f"'{manifest_path}' was not processed because no valid module was found",
                manifest_path,
            )
        logger.debug(f"Loading {field_name} element {descriptor.key} for {manifest_path}")
        return self.load(descriptor, argument_list)

    def _load_by_name(
        self, name: str, constraint: ModuleSpecification, field_name: str, manifest_path: str
    ) -> ModuleInfo:
        if self.resolver is None:
            raise ManifestError(
                f"Cannot resolve '{name}' listed in field '{field_name}' of '{manifest_path}' without a resolver",
                manifest_path,
            )
        descriptor = self.resolver.resolve_or_raise(name, constraint)
        return self.load(descriptor, constraint=constraint)

    def _import_requirement(self, entry: Any, name: str, manifest_path: str) -> ModuleInfo:
        spec = self._specification(entry, manifest_path)
        try:
            if self.requirement_importer is not None:
                return self.requirement_importer(spec)
            return self._load_by_name(spec.name, spec, "RequiredModules", manifest_path)
        except ModuleNotFoundError as e:
            raise ModuleNotFoundError(
                f"The required module '{spec.name}' is not loaded and could not be imported for '{name}': {e}",
                name,
                spec,
            ) from e

    @staticmethod
    def _specification(entry: Any, manifest_path: str) -> ModuleSpecification:
        try:
            return ModuleSpecification.from_value(entry)
        except MalformedInputError as e:
            raise ManifestError(f"Invalid module specification in '{manifest_path}': {e}", manifest_path) from e

    @staticmethod
    def _descriptor_for(path: Path) -> ResolvedModuleDescriptor | None:
        module_type = ModuleType.from_path(path)
        if module_type is None:
            return None
        return ResolvedModuleDescriptor(key=os.path.normpath(str(path)), module_type=module_type, name=path.stem)

    @staticmethod
    def _existing_files(base_dir: Path, data: Mapping[str, Any], key: str, manifest_path: str) -> list[str]:
        files = []
        for entry in as_string_list(data, key, manifest_path):
            relative = _relative_entry(entry)
            path = relative if relative.is_absolute() else base_dir / relative
            if not path.is_file():
                raise ManifestError(
                    f"The file '{entry}' listed in field '{key}' of module manifest '{manifest_path}' was not found",
                    manifest_path,
                )
            files.append(str(path))
        return files

    # ------------------------------------------------------------------
    # Export filtering
    # ------------------------------------------------------------------

    @staticmethod
    def _filter_commands(
        commands: dict[str, CommandInfo], data: Mapping[str, Any], manifest_path: str
    ) -> dict[str, CommandInfo]:
        """Apply *ToExport lists; an absent key exports everything of that type."""
        patterns = {
            command_type: (as_string_list(data, key, manifest_path) if key in data else None)
            for command_type, key in _EXPORT_KEYS.items()
        }
        exported = {}
        for name, command in commands.items():
            allowed = patterns.get(command.command_type)
            if allowed is None or _matches_any(name, allowed):
                exported[name] = command
        return exported

    @staticmethod
    def _filter_variables(variables: dict[str, Any], data: Mapping[str, Any], manifest_path: str) -> dict[str, Any]:
        if "VariablesToExport" not in data:
            return dict(variables)
        allowed = as_string_list(data, "VariablesToExport", manifest_path)
        return {name: value for name, value in variables.items() if _matches_any(name, allowed)}

