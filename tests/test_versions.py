"""Tests for version parsing, module specifications and constraint matching."""

import uuid

import pytest
from packaging.version import Version

from psmodule_import.errors import MalformedInputError
from psmodule_import.errors import MalformedVersionError
from psmodule_import.models import ModuleType
from psmodule_import.module_resolution import ModuleSpecification
from psmodule_import.module_resolution import is_compatible
from psmodule_import.module_resolution import is_guid_compatible
from psmodule_import.module_resolution import parse_version


class TestParseVersion:
    def test_parses_strings_and_numbers(self):
        assert parse_version("1.2.3") == Version("1.2.3")
        assert parse_version(2) == Version("2")

    def test_trailing_zero_components_compare_equal(self):
        assert parse_version("1.0") == parse_version("1.0.0")

    def test_empty_version_is_malformed(self):
        with pytest.raises(MalformedVersionError):
            parse_version("  ", "Foo")

    def test_garbage_is_malformed(self):
        with pytest.raises(MalformedVersionError) as exc_info:
            parse_version("one.two", "Foo")
        assert exc_info.value.identifier == "Foo"


class TestModuleSpecification:
    def test_minimum_above_maximum_is_rejected(self):
        with pytest.raises(MalformedInputError, match="greater than the maximum"):
            ModuleSpecification.create("Foo", minimum_version="2.0", maximum_version="1.0")

    def test_required_with_range_is_rejected(self):
        with pytest.raises(MalformedInputError):
            ModuleSpecification.create("Foo", required_version="1.0", minimum_version="0.5")

    def test_empty_name_is_rejected(self):
        with pytest.raises(MalformedInputError):
            ModuleSpecification(name="")

    def test_from_mapping_is_case_insensitive(self):
        guid = uuid.uuid4()
        spec = ModuleSpecification.from_value(
            {"modulename": "Foo", "ModuleVersion": "1.2", "maximumversion": "3.0", "Guid": str(guid)}
        )
        assert spec.name == "Foo"
        assert spec.minimum_version == Version("1.2")
        assert spec.maximum_version == Version("3.0")
        assert spec.guid == guid

    def test_from_mapping_without_name_is_rejected(self):
        with pytest.raises(MalformedInputError):
            ModuleSpecification.from_value({"ModuleVersion": "1.0"})

    def test_from_string(self):
        spec = ModuleSpecification.from_value("Foo")
        assert spec.name == "Foo"
        assert not spec.has_version_constraint

    def test_with_name_keeps_constraint(self):
        spec = ModuleSpecification.create("*", minimum_version="1.0").with_name("Bar")
        assert spec.name == "Bar"
        assert spec.minimum_version == Version("1.0")


class TestIsCompatible:
    @pytest.mark.parametrize(
        ("candidate", "kwargs", "expected"),
        [
            ("1.0", {"required_version": "1.0.0"}, True),
            ("1.1", {"required_version": "1.0"}, False),
            ("1.5", {"minimum_version": "1.0", "maximum_version": "2.0"}, True),
            ("2.1", {"minimum_version": "1.0", "maximum_version": "2.0"}, False),
            ("1.0", {"minimum_version": "1.0"}, True),
            ("0.9", {"minimum_version": "1.0"}, False),
            ("2.0", {"maximum_version": "2.0"}, True),
            ("2.0.1", {"maximum_version": "2.0"}, False),
        ],
    )
    def test_manifest_versions(self, candidate, kwargs, expected):
        spec = ModuleSpecification.create("Foo", **kwargs)
        assert is_compatible(Version(candidate), spec) is expected

    def test_no_constraint_accepts_anything(self):
        assert is_compatible(None, None)
        assert is_compatible(Version("9.9"), ModuleSpecification("Foo"))

    def test_unversioned_artifacts_pass_ranges(self):
        spec = ModuleSpecification.create("Foo", minimum_version="1.0")
        assert is_compatible(None, spec, ModuleType.SCRIPT)

    def test_unversioned_artifacts_fail_required_version(self):
        spec = ModuleSpecification.create("Foo", required_version="1.0")
        assert not is_compatible(None, spec, ModuleType.SCRIPT)

    def test_guid_constraint(self):
        guid = uuid.uuid4()
        spec = ModuleSpecification.create("Foo", guid=guid)
        assert is_guid_compatible(guid, spec)
        assert not is_guid_compatible(uuid.uuid4(), spec)
        assert not is_guid_compatible(None, spec)
        assert is_guid_compatible(None, None)
