"""Tests for importing modules over an interactive remote session."""

import pytest
from conftest import FakeSession
from packaging.version import Version

from psmodule_import.cancellation import CancellationToken
from psmodule_import.errors import ErrorCategory
from psmodule_import.errors import ModuleNotFoundError
from psmodule_import.errors import NothingToImportError
from psmodule_import.errors import OperationCancelledError
from psmodule_import.errors import TransportError
from psmodule_import.loaders import ModuleLoader
from psmodule_import.module_resolution import ModuleSpecification
from psmodule_import.remote.session import RemoteSessionImporter
from psmodule_import.remote.session import SessionProxyGenerator
from psmodule_import.state import Scope


class CountingGenerator(SessionProxyGenerator):
    def __init__(self, on_generate=None):
        self.calls = 0
        self.on_generate = on_generate

    def generate(self, session, module_name, output_dir, version=None, guid=None, cancel=None):
        self.calls += 1
        produced = super().generate(session, module_name, output_dir, version, guid, cancel)
        if self.on_generate is not None:
            self.on_generate()
        return produced


@pytest.fixture
def generator():
    return CountingGenerator()


@pytest.fixture
def importer(state, staging, generator):
    return RemoteSessionImporter(state, ModuleLoader(), staging, generator)


def test_proxy_module_forwards_to_session(importer, state, staging):
    session = FakeSession({"Tools": ["Get-Thing", "Set-Thing"]})

    modules = importer.import_module(session, "Tools")

    assert len(modules) == 1
    module = modules[0]
    assert module.name == "Tools"
    assert module.version == Version("1.0")
    assert module.source_host == "server01"
    assert module.is_proxy
    assert set(module.exported_commands) == {"Get-Thing", "Set-Thing"}
    assert module.exported_commands["Get-Thing"].invoke(Path="C:\\") == [
        {"Command": "Get-Thing", "Parameters": {"Path": "C:\\"}}
    ]
    assert state.list_modules() == [module]
    assert len(staging.list_directories()) == 1


def test_second_import_reuses_staging_directory(importer, generator, state, staging):
    session = FakeSession({"Tools": ["Get-Thing"]})

    first = importer.import_module(session, "Tools")
    second = importer.import_module(session, "Tools")

    assert first[0] is second[0]
    assert generator.calls == 1
    assert len(state.list_modules()) == 1
    assert len(staging.list_directories()) == 1


def test_force_regenerates_proxy(importer, generator, state, staging):
    session = FakeSession({"Tools": ["Get-Thing"]})

    first = importer.import_module(session, "Tools")
    second = importer.import_module(session, "Tools", force=True)

    assert first[0] is not second[0]
    assert generator.calls == 2
    assert state.list_modules() == second
    assert len(staging.list_directories()) == 1


def test_removal_deletes_staging_directory(importer, state, staging):
    session = FakeSession({"Tools": ["Get-Thing"]})
    module = importer.import_module(session, "Tools")[0]

    state.remove_module(module)

    assert staging.list_directories() == []


def test_cancellation_leaves_nothing_behind(state, staging):
    token = CancellationToken()
    generator = CountingGenerator(on_generate=token.cancel)
    importer = RemoteSessionImporter(state, ModuleLoader(), staging, generator)

    with pytest.raises(OperationCancelledError):
        importer.import_module(FakeSession({"Tools": ["Get-Thing"]}), "Tools", cancel=token)

    assert state.list_modules() == []
    assert staging.list_directories() == []


def test_cancelled_before_start(importer, generator):
    token = CancellationToken()
    token.cancel()

    with pytest.raises(OperationCancelledError):
        importer.import_module(FakeSession({"Tools": ["Get-Thing"]}), "Tools", cancel=token)
    assert generator.calls == 0


def test_module_without_commands_is_nothing_to_import(importer, state, staging):
    with pytest.raises(NothingToImportError):
        importer.import_module(FakeSession({"Empty": []}), "Empty")

    assert state.list_modules() == []
    assert staging.list_directories() == []


def test_unknown_module_is_not_found(importer):
    with pytest.raises(ModuleNotFoundError):
        importer.import_module(FakeSession({}), "Missing")


def test_unmatched_wildcard_imports_nothing(importer):
    assert importer.import_module(FakeSession({}), "Tool*") == []


def test_transport_failure_is_wrapped(importer):
    session = FakeSession({"Tools": ["Get-Thing"]})
    session.fail_with = ConnectionRefusedError("refused")

    with pytest.raises(TransportError) as exc_info:
        importer.import_module(session, "Tools")
    assert exc_info.value.identifier == "Tools"


def test_specification_is_sent_as_fully_qualified_name(importer):
    session = FakeSession({"Tools": ["Get-Thing"]})
    spec = ModuleSpecification.create("Tools", minimum_version="1.0", maximum_version="2.0")

    importer.import_module(session, spec, argument_list=["a"], force=True)

    command, parameters = session.calls[0]
    assert command == "Import-Module"
    assert parameters["FullyQualifiedName"] == {"ModuleName": "Tools", "ModuleVersion": "1.0", "MaximumVersion": "2.0"}
    assert parameters["ArgumentList"] == ["a"]
    assert parameters["Force"] is True
    assert parameters["PassThru"] is True


def test_zero_guid_falls_back_to_manifest_guid(importer):
    module = importer.import_module(FakeSession({"Tools": ["Get-Thing"]}), "Tools")[0]

    assert module.guid is not None


def test_wildcard_failures_are_per_module(importer, state, staging):
    session = FakeSession({"ToolsA": ["Get-A"], "ToolsB": []})

    result = importer.import_request(session, "Tools*")

    assert [m.name for m in result.modules] == ["ToolsA"]
    assert [(e.category, e.identifier) for e in result.errors] == [(ErrorCategory.NOTHING_TO_IMPORT, "ToolsB")]
    assert state.list_modules() == result.modules
    assert len(staging.list_directories()) == 1


def test_register_receives_new_and_reused_modules(importer, state):
    scope = Scope("Script")
    registered = []

    def register(module):
        registered.append(module)
        return state.add_module(module, scope)

    first = importer.import_module(FakeSession({"Tools": ["Get-Thing"]}), "Tools", register=register)
    second = importer.import_module(FakeSession({"Tools": ["Get-Thing"]}), "Tools", register=register)

    assert registered == [first[0], first[0]]
    assert second == first
    assert list(scope.modules.values()) == first
