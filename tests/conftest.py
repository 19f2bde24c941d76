"""Pytest configuration and shared fixtures for psmodule-import tests."""

from __future__ import annotations

import fnmatch
from pathlib import Path
from typing import Any

import pytest
import yaml

from psmodule_import.models import FileKind
from psmodule_import.models import RemoteModule
from psmodule_import.models import RemoteModuleFile
from psmodule_import.orchestrator import ImportOrchestrator
from psmodule_import.remote.staging import StagingArea
from psmodule_import.state import ModuleState


def write_manifest(path: Path, **fields: Any) -> Path:
    """Write a YAML module manifest, creating parent directories."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(yaml.safe_dump(fields, sort_keys=False), encoding="utf-8")
    return path


def write_script(path: Path, *functions: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    body = "\n".join(f"function {name} {{ }}" for name in functions)
    path.write_text(body + "\n", encoding="utf-8")
    return path


def cdxml(noun: str, adapter: str | None = None) -> str:
    adapter_attr = f' CmdletAdapter="{adapter}"' if adapter else ""
    return (
        '<?xml version="1.0" encoding="utf-8"?>\n'
        '<PowerShellMetadata xmlns="http://schemas.microsoft.com/cmdlets-over-objects/2009/11">\n'
        f'  <Class ClassName="root/cimv2/Win32_{noun}"{adapter_attr}>\n'
        "    <Version>1.0</Version>\n"
        f"    <DefaultNoun>{noun}</DefaultNoun>\n"
        "    <InstanceCmdlets />\n"
        "    <StaticCmdlets>\n"
        '      <Cmdlet><CmdletMetadata Verb="Set" /></Cmdlet>\n'
        "    </StaticCmdlets>\n"
        "  </Class>\n"
        "</PowerShellMetadata>\n"
    )


class FakeSession:
    """In-memory remote session answering Import-Module and Get-Command."""

    def __init__(self, modules: dict[str, list[str]], computer_name: str = "server01", version: str = "1.0"):
        self.computer_name = computer_name
        self.modules = modules
        self.version = version
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self.fail_with: BaseException | None = None

    def invoke(self, command, parameters, cancel=None):
        self.calls.append((command, parameters))
        if self.fail_with is not None:
            raise self.fail_with
        if command == "Import-Module":
            pattern = parameters.get("Name") or parameters["FullyQualifiedName"]["ModuleName"]
            return [
                {"Name": name, "Version": self.version, "Guid": "00000000-0000-0000-0000-000000000000"}
                for name in self.modules
                if fnmatch.fnmatchcase(name, pattern)
            ]
        if command == "Get-Command":
            return [{"Name": command_name} for command_name in self.modules.get(parameters["Module"], [])]
        return [{"Command": command, "Parameters": parameters}]


class FakeEndpoint:
    """In-memory inventory endpoint."""

    def __init__(self, modules: list[RemoteModule], computer_name: str = "cim01"):
        self.computer_name = computer_name
        self.modules = modules
        self.queries: list[list[str]] = []

    def query_modules(self, names, resource_uri=None, namespace=None, cancel=None):
        self.queries.append(list(names))
        return list(self.modules)


def inventory_module(
    name: str,
    manifest: dict[str, Any] | None,
    extra_files: list[RemoteModuleFile] = (),
    capable: bool = True,
) -> RemoteModule:
    files = list(extra_files)
    if manifest is not None:
        files.insert(
            0,
            RemoteModuleFile(
                f"{name}.psd1", FileKind.MANIFEST, yaml.safe_dump(manifest, sort_keys=False).encode("utf-8")
            ),
        )
    return RemoteModule(module_name=name, is_management_capable=capable, files=files)


@pytest.fixture
def module_root(tmp_path):
    root = tmp_path / "modules"
    root.mkdir()
    return root


@pytest.fixture
def staging(tmp_path):
    return StagingArea(tmp_path / "staging", process_key="test")


@pytest.fixture
def state():
    return ModuleState()


@pytest.fixture
def orchestrator(state, module_root, staging, tmp_path):
    return ImportOrchestrator(state=state, search_paths=[module_root], staging=staging, base_dir=tmp_path)
