"""Version parsing, module specifications and constraint matching."""

from __future__ import annotations

import uuid
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from packaging.version import InvalidVersion
from packaging.version import Version

from ..errors import MalformedInputError
from ..errors import MalformedVersionError
from ..models import ModuleType


def parse_version(value: Any, identifier: str | None = None) -> Version:
    """Parse a version at the input boundary.

    Args:
        value: Version instance, string or number (e.g. "1.2.3", 2)
        identifier: Module name used in the error, if any

    Returns:
        Parsed Version

    Raises:
        MalformedVersionError: Value is not a valid version
    """
    if isinstance(value, Version):
        return value
    text = str(value).strip() if value is not None else ""
    if not text:
        raise MalformedVersionError(f"Version string is empty for '{identifier or '<unknown>'}'", identifier)
    try:
        return Version(text)
    except InvalidVersion as e:
        raise MalformedVersionError(f"Cannot parse '{text}' as a module version", identifier) from e


def try_parse_version(value: Any) -> Version | None:
    """Parse a version, returning None instead of raising."""
    try:
        return parse_version(value)
    except MalformedVersionError:
        return None


def parse_guid(value: Any, identifier: str | None = None) -> uuid.UUID:
    """Parse a GUID string, raising MalformedInputError on failure."""
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value).strip().strip("{}"))
    except ValueError as e:
        raise MalformedInputError(f"Cannot parse '{value}' as a GUID", identifier) from e


@dataclass(frozen=True)
class ModuleSpecification:
    """A module name plus optional GUID and version constraints.

    required_version is mutually exclusive with minimum_version/maximum_version,
    and minimum_version must not exceed maximum_version. Both rules are checked
    at construction.
    """

    name: str
    guid: uuid.UUID | None = None
    required_version: Version | None = None
    minimum_version: Version | None = None
    maximum_version: Version | None = None

    def __post_init__(self):
        if not self.name:
            raise MalformedInputError("Module name must not be empty")
        if self.required_version is not None and (
            self.minimum_version is not None or self.maximum_version is not None
        ):
            raise MalformedInputError(
                f"RequiredVersion cannot be combined with MinimumVersion or MaximumVersion for '{self.name}'",
                self.name,
            )
        if (
            self.minimum_version is not None
            and self.maximum_version is not None
            and self.minimum_version > self.maximum_version
        ):
            raise MalformedInputError(
                f"The minimum version {self.minimum_version} is greater than the maximum version "
                f"{self.maximum_version} for '{self.name}'",
                self.name,
            )

    @classmethod
    def create(
        cls,
        name: str,
        *,
        guid: Any = None,
        required_version: Any = None,
        minimum_version: Any = None,
        maximum_version: Any = None,
    ) -> ModuleSpecification:
        """Build a specification from loosely typed values (strings, numbers)."""
        return cls(
            name=name,
            guid=parse_guid(guid, name) if guid is not None else None,
            required_version=parse_version(required_version, name) if required_version is not None else None,
            minimum_version=parse_version(minimum_version, name) if minimum_version is not None else None,
            maximum_version=parse_version(maximum_version, name) if maximum_version is not None else None,
        )

    @classmethod
    def from_value(cls, value: Any) -> ModuleSpecification:
        """Build a specification from a bare name or a hashtable-style mapping.

        Mapping keys follow the manifest form: ModuleName, GUID, ModuleVersion
        (minimum), RequiredVersion, MaximumVersion. Matching is case-insensitive.

        Raises:
            MalformedInputError: Value has no usable module name
        """
        if isinstance(value, ModuleSpecification):
            return value
        if isinstance(value, str):
            return cls(name=value)
        if isinstance(value, Mapping):
            lowered = {str(k).lower(): v for k, v in value.items()}
            name = lowered.get("modulename") or lowered.get("name")
            if not name:
                raise MalformedInputError(f"Module specification is missing ModuleName: {dict(value)}")
            return cls.create(
                str(name),
                guid=lowered.get("guid"),
                required_version=lowered.get("requiredversion"),
                minimum_version=lowered.get("moduleversion") or lowered.get("minimumversion"),
                maximum_version=lowered.get("maximumversion"),
            )
        raise MalformedInputError(f"Unsupported module specification: {value!r}")

    @property
    def has_version_constraint(self) -> bool:
        return (
            self.required_version is not None
            or self.minimum_version is not None
            or self.maximum_version is not None
        )

    def with_name(self, name: str) -> ModuleSpecification:
        """Copy this constraint onto a different name or path."""
        return ModuleSpecification(
            name=name,
            guid=self.guid,
            required_version=self.required_version,
            minimum_version=self.minimum_version,
            maximum_version=self.maximum_version,
        )

    def describe_constraint(self) -> str:
        if self.required_version is not None:
            return f"version {self.required_version}"
        if self.minimum_version is not None and self.maximum_version is not None:
            return f"version between {self.minimum_version} and {self.maximum_version}"
        if self.minimum_version is not None:
            return f"version {self.minimum_version} or later"
        if self.maximum_version is not None:
            return f"version {self.maximum_version} or earlier"
        return "any version"

    def __str__(self) -> str:
        if not self.has_version_constraint:
            return self.name
        return f"{self.name} ({self.describe_constraint()})"


def is_compatible(
    candidate: Version | None,
    constraint: ModuleSpecification | None,
    module_type: ModuleType = ModuleType.MANIFEST,
) -> bool:
    """Decide whether a candidate version satisfies a constraint.

    Rules in priority order: required version (exact), min+max range, minimum
    only, maximum only, no constraint. Non-manifest artifacts declare no
    version and pass the range rules vacuously; only a required version can
    reject them.
    """
    if constraint is None:
        return True

    if constraint.required_version is not None:
        return candidate is not None and candidate == constraint.required_version

    if module_type != ModuleType.MANIFEST:
        return True

    minimum = constraint.minimum_version
    maximum = constraint.maximum_version
    if minimum is not None and maximum is not None:
        return candidate is not None and minimum <= candidate <= maximum
    if minimum is not None:
        return candidate is not None and candidate >= minimum
    if maximum is not None:
        return candidate is not None and candidate <= maximum
    return True


def is_guid_compatible(candidate: uuid.UUID | None, constraint: ModuleSpecification | None) -> bool:
    """A GUID constraint only matches a module declaring the same GUID."""
    if constraint is None or constraint.guid is None:
        return True
    return candidate is not None and candidate == constraint.guid
