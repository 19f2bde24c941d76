"""Loaders for non-manifest module artifacts.

Script execution and binary loading belong to the host's execution engine.
These loaders only build the module record the engine would produce:

- Script and script-module files: exported functions are discovered from
  ``function Name`` declarations. Files generated as implicit-remoting proxies
  bind their functions to the remote session passed in the argument list.
- Binary files: a record without discovered members.
- Cmdlet-adapter definitions (.cdxml): commands and the adapter type are read
  from the XML definition.
"""

from __future__ import annotations

import logging
import re
import xml.etree.ElementTree as ET
from pathlib import Path
from typing import Any
from typing import Protocol

from ..errors import ManifestError
from ..errors import ModuleNotFoundError
from ..models import CommandInfo
from ..models import CommandType
from ..models import ModuleInfo
from ..models import ModuleType
from ..models import ResolvedModuleDescriptor

logger = logging.getLogger(__name__)

PROXY_MARKER = "# psmodule-import: implicit remoting proxy"

DEFAULT_CMDLET_ADAPTER = "Microsoft.PowerShell.Cmdletization.Cim.CimCmdletAdapter"
PRIVATE_DATA_CMDLETS_OVER_OBJECTS = "CmdletsOverObjects"
PRIVATE_DATA_CMDLET_ADAPTER = "CmdletAdapter"
PRIVATE_DATA_DEFAULT_SESSION = "DefaultSession"

_FUNCTION_RE = re.compile(r"^\s*function\s+(?:global:|script:)?([A-Za-z_][\w-]*)", re.IGNORECASE | re.MULTILINE)


class ArtifactLoader(Protocol):
    """Turns a non-manifest artifact into a module record."""

    def load(self, descriptor: ResolvedModuleDescriptor, argument_list: list[Any] | None = None) -> ModuleInfo: ...


def adapter_type_name(adapter: str) -> str:
    """Strip assembly qualification from an adapter type name."""
    return adapter.split(",", 1)[0].strip()


def is_default_adapter(adapter: str | None) -> bool:
    return adapter is not None and adapter_type_name(adapter).lower() == DEFAULT_CMDLET_ADAPTER.lower()


def _find_session(argument_list: list[Any] | None) -> Any:
    for argument in argument_list or []:
        if hasattr(argument, "invoke") and hasattr(argument, "computer_name"):
            return argument
    return None


def _local_name(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


class DefaultArtifactLoader:
    """Builds module records for script, binary and cmdlet-adapter artifacts."""

    def load(self, descriptor: ResolvedModuleDescriptor, argument_list: list[Any] | None = None) -> ModuleInfo:
        path = descriptor.path
        if not path.is_file():
            raise ModuleNotFoundError(f"Module file '{path}' was not found", str(path))

        if descriptor.module_type == ModuleType.SCRIPT:
            return self._load_script(descriptor, argument_list)
        if descriptor.module_type == ModuleType.CIM:
            return self._load_cmdletization(descriptor, argument_list)
        if descriptor.module_type == ModuleType.BINARY:
            logger.debug(f"Binary module {path} registered without member discovery")
            return ModuleInfo(
                name=descriptor.name,
                path=str(path),
                module_type=ModuleType.BINARY,
                source_host=descriptor.source_host,
                argument_list=list(argument_list or []),
            )
        raise ManifestError(f"Cannot load '{path}' as a {descriptor.module_type.value} artifact", str(path))

    def _load_script(self, descriptor: ResolvedModuleDescriptor, argument_list: list[Any] | None) -> ModuleInfo:
        path = descriptor.path
        text = path.read_text(encoding="utf-8-sig")
        is_proxy = text.lstrip().startswith(PROXY_MARKER)
        session = _find_session(argument_list) if is_proxy else None
        if is_proxy and session is None:
            logger.warning(f"Proxy module {path} loaded without a remote session; its commands cannot forward")

        commands: dict[str, CommandInfo] = {}
        for match in _FUNCTION_RE.finditer(text):
            name = match.group(1)
            commands[name] = CommandInfo(
                name=name,
                command_type=CommandType.FUNCTION,
                module_name=descriptor.name,
                forward_to=session,
            )

        return ModuleInfo(
            name=descriptor.name,
            path=str(path),
            module_type=ModuleType.SCRIPT,
            source_host=descriptor.source_host or (getattr(session, "computer_name", None) if session else None),
            exported_commands=commands,
            argument_list=list(argument_list or []),
            is_proxy=is_proxy,
        )

    def _load_cmdletization(self, descriptor: ResolvedModuleDescriptor, argument_list: list[Any] | None) -> ModuleInfo:
        path = descriptor.path
        try:
            root = ET.parse(path).getroot()
        except ET.ParseError as e:
            raise ManifestError(f"Cannot parse cmdlet definition '{path}': {e}", str(path)) from e

        class_element = next((el for el in root.iter() if _local_name(el.tag) == "Class"), None)
        if class_element is None:
            raise ManifestError(f"Cmdlet definition '{path}' has no Class element", str(path))

        adapter = class_element.get("CmdletAdapter") or DEFAULT_CMDLET_ADAPTER
        class_name = class_element.get("ClassName", "")
        default_noun = ""
        for child in class_element:
            if _local_name(child.tag) == "DefaultNoun":
                default_noun = (child.text or "").strip()

        commands: dict[str, CommandInfo] = {}

        def add_command(verb: str, noun: str) -> None:
            if not verb or not noun:
                return
            name = f"{verb}-{noun}"
            commands[name] = CommandInfo(name=name, command_type=CommandType.CMDLET, module_name=descriptor.name)

        for element in class_element.iter():
            tag = _local_name(element.tag)
            if tag == "InstanceCmdlets":
                add_command("Get", default_noun)
            elif tag == "CmdletMetadata":
                add_command(element.get("Verb", ""), element.get("Noun") or default_noun)

        return ModuleInfo(
            name=descriptor.name,
            path=str(path),
            module_type=ModuleType.CIM,
            source_host=descriptor.source_host,
            exported_commands=commands,
            private_data={
                PRIVATE_DATA_CMDLETS_OVER_OBJECTS: {
                    PRIVATE_DATA_CMDLET_ADAPTER: adapter,
                    "ClassName": class_name,
                }
            },
            argument_list=list(argument_list or []),
        )
