"""Tests for staging directories of remote modules."""

import os
import re

import pytest
from packaging.version import Version

from psmodule_import.models import ModuleInfo
from psmodule_import.models import ModuleType
from psmodule_import.remote.staging import INTRANET_ZONE
from psmodule_import.remote.staging import STAGING_PREFIX
from psmodule_import.remote.staging import StagingArea
from psmodule_import.remote.staging import cleanup_hook
from psmodule_import.remote.staging import mark_zone_of_origin
from psmodule_import.remote.staging import random_file_name
from psmodule_import.remote.staging import staging_directory
from psmodule_import.remote.staging import zone_of_origin


def test_path_is_deterministic(staging):
    first = staging.path_for("Tools", Version("1.0"), "server01")
    second = staging.path_for("Tools", Version("1.0"), "server01")

    assert first == second
    assert first.parent == staging.root
    assert first.name.startswith(f"{STAGING_PREFIX}_Tools_1.0_server01_")
    assert first.name.endswith("_test")


def test_path_discriminates_inputs(staging):
    base = staging.path_for("Tools", "1.0", "server01")

    assert staging.path_for("Tools", "2.0", "server01") != base
    assert staging.path_for("Tools", "1.0", "server02") != base
    assert staging.path_for("Tools", "1.0", "server01|root/cimv2|") != base
    assert staging.path_for("Other", "1.0", "server01") != base


def test_unversioned_path_uses_zero_version(staging):
    assert "_0.0_" in staging.path_for("Tools", None, "server01").name


def test_process_key_defaults_to_pid(tmp_path):
    assert StagingArea(tmp_path).process_key == str(os.getpid())


def test_unsafe_characters_are_replaced(staging):
    name = staging.path_for("Bad/Name", "1.0", "host:5985").name
    assert "/" not in name
    assert ":" not in name


def test_staging_directory_rolls_back_on_error(tmp_path):
    target = tmp_path / "stage"

    with pytest.raises(RuntimeError):
        with staging_directory(target):
            (target / "partial.txt").write_text("x")
            raise RuntimeError("boom")

    assert not target.exists()


def test_staging_directory_rolls_back_on_keyboard_interrupt(tmp_path):
    target = tmp_path / "stage"

    with pytest.raises(KeyboardInterrupt):
        with staging_directory(target):
            raise KeyboardInterrupt

    assert not target.exists()


def test_staging_directory_survives_success(tmp_path):
    target = tmp_path / "stage"
    with staging_directory(target):
        (target / "done.txt").write_text("x")

    assert (target / "done.txt").exists()


def test_cleanup_hook_removes_directory(tmp_path):
    target = tmp_path / "stage"
    target.mkdir()
    module = ModuleInfo(name="Foo", path=str(target / "Foo.psd1"), module_type=ModuleType.MANIFEST)

    cleanup_hook(target)(module)

    assert not target.exists()


def test_random_file_name_format():
    name = random_file_name("AVeryLongFileNameForTesting.cdxml", ".cdxml")

    assert re.fullmatch(r"AVeryLongFileNameFor_[0-9a-f]{12}\.cdxml", name)
    assert random_file_name("a.cdxml", ".cdxml") != random_file_name("a.cdxml", ".cdxml")


def test_zone_of_origin_record(tmp_path):
    target = tmp_path / "file.cdxml"
    target.write_text("<x />")

    mark_zone_of_origin(target)

    assert zone_of_origin(target) == INTRANET_ZONE
    assert zone_of_origin(tmp_path / "other.cdxml") is None


def test_list_and_clear(staging):
    first = staging.path_for("A", "1.0", "h")
    second = staging.path_for("B", "1.0", "h")
    first.mkdir(parents=True)
    second.mkdir(parents=True)
    (staging.root / "unrelated").mkdir()

    assert staging.list_directories() == sorted([first, second])
    assert staging.clear() == 2
    assert staging.list_directories() == []
    assert (staging.root / "unrelated").exists()
