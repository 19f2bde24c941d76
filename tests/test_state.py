"""Tests for module tables, member binding and removal hooks."""

import threading

import pytest

from psmodule_import.models import CommandInfo
from psmodule_import.models import ModuleInfo
from psmodule_import.models import ModuleType
from psmodule_import.state import ModuleState
from psmodule_import.state import Scope
from psmodule_import.state import apply_prefix
from psmodule_import.state import normalize_key


def _module(tmp_path, name="Foo", commands=("Get-Foo",), variables=None):
    return ModuleInfo(
        name=name,
        path=str(tmp_path / name / f"{name}.psd1"),
        module_type=ModuleType.MANIFEST,
        exported_commands={c: CommandInfo(name=c, module_name=name) for c in commands},
        exported_variables=dict(variables or {}),
    )


def test_apply_prefix():
    assert apply_prefix("Get-Item", "Remote") == "Get-RemoteItem"
    assert apply_prefix("Helper", "Remote") == "RemoteHelper"
    assert apply_prefix("Get-Item", None) == "Get-Item"


def test_normalize_key_keeps_synthetic_keys():
    assert normalize_key("dynamic_code_module_Foo") == "dynamic_code_module_Foo"


def test_add_module_keeps_existing_entry(tmp_path):
    state = ModuleState()
    first = _module(tmp_path)
    second = _module(tmp_path)

    assert state.add_module(first) is first
    assert state.add_module(second) is first
    assert len(state.list_modules()) == 1


def test_add_module_updates_scope_table(tmp_path):
    state = ModuleState()
    scope = Scope("Script")
    module = _module(tmp_path)

    state.add_module(module, scope)

    assert list(scope.modules.values()) == [module]


def test_list_modules_filters_by_wildcard(tmp_path):
    state = ModuleState()
    state.add_module(_module(tmp_path, "Foo"))
    state.add_module(_module(tmp_path, "Bar"))

    assert [m.name for m in state.list_modules("f*")] == ["Foo"]


def test_import_members_with_prefix(tmp_path):
    state = ModuleState()
    scope = Scope()
    module = _module(tmp_path, commands=("Get-Foo", "Set-Foo"), variables={"FooPreference": 1})

    bound = state.import_members(scope, module, prefix="X")

    assert set(bound) == {"Get-XFoo", "Set-XFoo", "FooPreference"}
    assert scope.commands["Get-XFoo"].name == "Get-XFoo"
    assert module.exported_commands["Get-Foo"].name == "Get-Foo"


def test_no_clobber_keeps_existing_commands(tmp_path):
    state = ModuleState()
    scope = Scope()
    original = CommandInfo(name="Get-Foo", module_name="Other")
    scope.commands["Get-Foo"] = original

    bound = state.import_members(scope, _module(tmp_path, commands=("Get-Foo", "Set-Foo")), no_clobber=True)

    assert bound == ["Set-Foo"]
    assert scope.commands["Get-Foo"] is original


def test_name_patterns_limit_bound_commands(tmp_path):
    state = ModuleState()
    scope = Scope()

    bound = state.import_members(scope, _module(tmp_path, commands=("Get-Foo", "Set-Foo")), name_patterns=["get-*"])

    assert bound == ["Get-Foo"]


def test_remove_unbinds_members_and_runs_hooks_newest_first(tmp_path):
    state = ModuleState()
    scope = Scope()
    module = _module(tmp_path)
    state.add_module(module, scope)
    state.import_members(scope, module)

    order = []
    module.add_removal_hook(lambda m: order.append("first"))
    module.add_removal_hook(lambda m: order.append("second"))

    failures = state.remove_module(module, [scope])

    assert failures == []
    assert order == ["second", "first"]
    assert state.get_module(module.path) is None
    assert scope.commands == {}
    assert scope.modules == {}


def test_failing_hook_does_not_stop_others(tmp_path):
    state = ModuleState()
    module = _module(tmp_path)
    state.add_module(module)
    ran = []

    def broken(m):
        raise RuntimeError("boom")

    module.add_removal_hook(lambda m: ran.append("older"))
    module.add_removal_hook(broken)

    failures = state.remove_module(module)

    assert ran == ["older"]
    assert len(failures) == 1
    assert isinstance(failures[0], RuntimeError)


def test_hooks_run_once(tmp_path):
    state = ModuleState()
    module = _module(tmp_path)
    calls = []
    module.add_removal_hook(lambda m: calls.append(m.name))

    state.remove_module(module)
    state.remove_module(module)

    assert calls == ["Foo"]


def test_exclusive_serializes_same_key(tmp_path):
    state = ModuleState()
    inside = []
    overlap = []
    barrier = threading.Barrier(4)

    def worker():
        barrier.wait()
        with state.exclusive(tmp_path / "key"):
            inside.append(1)
            if len(inside) > 1:
                overlap.append(True)
            inside.pop()

    threads = [threading.Thread(target=worker) for _ in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert overlap == []
    assert state._key_locks == {}


def test_exclusive_drops_lock_when_released(tmp_path):
    state = ModuleState()

    with state.exclusive(tmp_path / "a"):
        with state.exclusive(tmp_path / "a"):
            assert len(state._key_locks) == 1
        with state.exclusive(tmp_path / "b"):
            assert len(state._key_locks) == 2

    assert state._key_locks == {}


def test_exclusive_drops_lock_after_error(tmp_path):
    state = ModuleState()

    with pytest.raises(RuntimeError):
        with state.exclusive(tmp_path / "a"):
            raise RuntimeError("boom")

    assert state._key_locks == {}
