"""Data model for resolved and loaded modules.

Defines:
- ModuleType: Kind of module artifact
- ResolvedModuleDescriptor: Immutable result of resolution
- CommandInfo: An exported command (optionally forwarding to a remote session)
- ModuleInfo: The loaded module record kept in the module tables
- FileKind / RemoteModuleFile / RemoteModule: Inventory endpoint payloads
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from dataclasses import field
from enum import Enum
from pathlib import Path
from typing import Any

from packaging.version import Version

logger = logging.getLogger(__name__)

MANIFEST_EXTENSION = ".psd1"
BINARY_EXTENSION = ".dll"
SCRIPT_MODULE_EXTENSION = ".psm1"
CIM_EXTENSION = ".cdxml"
SCRIPT_EXTENSION = ".ps1"

# Precedence when several extensions are tried for the same base path
MODULE_EXTENSIONS = (
    MANIFEST_EXTENSION,
    BINARY_EXTENSION,
    SCRIPT_MODULE_EXTENSION,
    CIM_EXTENSION,
    SCRIPT_EXTENSION,
)


class ModuleType(str, Enum):
    """Kind of module artifact."""

    SCRIPT = "Script"
    BINARY = "Binary"
    MANIFEST = "Manifest"
    CIM = "Cim"

    @classmethod
    def from_path(cls, path: str | Path) -> ModuleType | None:
        """Infer module type from file extension, None if unrecognized."""
        suffix = Path(path).suffix.lower()
        if suffix == MANIFEST_EXTENSION:
            return cls.MANIFEST
        if suffix == BINARY_EXTENSION:
            return cls.BINARY
        if suffix in (SCRIPT_MODULE_EXTENSION, SCRIPT_EXTENSION):
            return cls.SCRIPT
        if suffix == CIM_EXTENSION:
            return cls.CIM
        return None


@dataclass(frozen=True)
class ResolvedModuleDescriptor:
    """Result of resolving a module reference.

    Attributes:
        key: Absolute path of the artifact, or a synthetic key for in-memory modules
        module_type: Kind of artifact
        name: Module name (file stem for path-based modules)
        version: Declared version (manifests only)
        guid: Declared GUID (manifests only)
        source_host: Remote computer/session the artifact came from, if any
    """

    key: str
    module_type: ModuleType
    name: str
    version: Version | None = None
    guid: uuid.UUID | None = None
    source_host: str | None = None

    @property
    def path(self) -> Path:
        return Path(self.key)

    @property
    def is_remote(self) -> bool:
        return self.source_host is not None


class CommandType(str, Enum):
    FUNCTION = "Function"
    CMDLET = "Cmdlet"
    ALIAS = "Alias"


@dataclass
class CommandInfo:
    """An exported module command.

    Proxy commands carry the remote session they forward to.
    """

    name: str
    command_type: CommandType = CommandType.FUNCTION
    module_name: str = ""
    forward_to: Any = None

    @property
    def is_proxy(self) -> bool:
        return self.forward_to is not None

    def invoke(self, **parameters: Any) -> list[dict[str, Any]]:
        """Forward an invocation of this command to its remote session."""
        if self.forward_to is None:
            raise TypeError(f"Command '{self.name}' is not a remote proxy command")
        return self.forward_to.invoke(self.name, parameters)

    def renamed(self, name: str) -> CommandInfo:
        return CommandInfo(
            name=name, command_type=self.command_type, module_name=self.module_name, forward_to=self.forward_to
        )


RemovalHook = Callable[["ModuleInfo"], None]


@dataclass
class ModuleInfo:
    """A loaded module record.

    Removal hooks run front-to-back when the module is unloaded. Newer
    cleanup actions are inserted at the front so they run before hooks that
    were already attached.
    """

    name: str
    path: str
    module_type: ModuleType
    version: Version | None = None
    guid: uuid.UUID | None = None
    description: str = ""
    help_info_uri: str | None = None
    source_host: str | None = None
    exported_commands: dict[str, CommandInfo] = field(default_factory=dict)
    exported_variables: dict[str, Any] = field(default_factory=dict)
    nested_modules: list[ModuleInfo] = field(default_factory=list)
    required_modules: list[ModuleInfo] = field(default_factory=list)
    private_data: dict[str, Any] = field(default_factory=dict)
    types_files: list[str] = field(default_factory=list)
    format_files: list[str] = field(default_factory=list)
    scripts_to_process: list[str] = field(default_factory=list)
    required_assemblies: list[str] = field(default_factory=list)
    argument_list: list[Any] = field(default_factory=list)
    removal_hooks: list[RemovalHook] = field(default_factory=list)
    is_proxy: bool = False

    @property
    def module_base(self) -> Path:
        return Path(self.path).parent

    def add_removal_hook(self, hook: RemovalHook) -> None:
        """Attach a cleanup action that runs before any existing ones."""
        self.removal_hooks.insert(0, hook)

    def run_removal_hooks(self) -> list[BaseException]:
        """Run all removal hooks in order.

        A failing hook does not stop the remaining ones.

        Returns:
            Exceptions raised by hooks, in order
        """
        failures: list[BaseException] = []
        hooks, self.removal_hooks = self.removal_hooks, []
        for hook in hooks:
            try:
                hook(self)
            except Exception as e:
                logger.warning(f"Removal hook for module '{self.name}' failed: {e}")
                failures.append(e)
        return failures

    def to_descriptor(self) -> ResolvedModuleDescriptor:
        return ResolvedModuleDescriptor(
            key=self.path,
            module_type=self.module_type,
            name=self.name,
            version=self.version,
            guid=self.guid,
            source_host=self.source_host,
        )


class FileKind(str, Enum):
    """Classification of files served by an inventory endpoint."""

    CMDLETIZATION = "Cmdletization"
    TYPES_TABLE = "TypesTable"
    FORMATS_TABLE = "FormatsTable"
    MANIFEST = "Manifest"
    OTHER = "Other"


@dataclass(frozen=True)
class RemoteModuleFile:
    """One raw file of a remote module."""

    file_name: str
    file_kind: FileKind
    raw_bytes: bytes

    @property
    def text(self) -> str:
        return self.raw_bytes.decode("utf-8-sig")


@dataclass
class RemoteModule:
    """Module descriptor returned by an inventory endpoint.

    Attributes:
        module_name: Name of the module on the remote host
        is_management_capable: True if the module can be flattened and loaded
            without an interactive session
        files: Raw files of the module
    """

    module_name: str
    is_management_capable: bool
    files: list[RemoteModuleFile] = field(default_factory=list)

    @property
    def main_manifest(self) -> RemoteModuleFile | None:
        """The manifest named after the module, if the endpoint served one."""
        expected = f"{self.module_name}{MANIFEST_EXTENSION}".lower()
        for module_file in self.files:
            if module_file.file_kind != FileKind.MANIFEST:
                continue
            if Path(module_file.file_name).name.lower() == expected:
                return module_file
        return None
