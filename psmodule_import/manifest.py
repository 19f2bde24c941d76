"""Manifest data handling.

Manifests are key/value data, never code. Text is parsed with
``yaml.safe_load`` and values are classified into a small tagged union
(string, string list, table, opaque) with explicit, fallible conversions.
"""

from __future__ import annotations

import copy
import logging
import uuid
from collections.abc import Iterable
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any

import yaml
from packaging.version import InvalidVersion
from packaging.version import Version

from .errors import ManifestError

logger = logging.getLogger(__name__)

KNOWN_KEYS = (
    "RootModule",
    "ModuleToProcess",
    "ModuleVersion",
    "GUID",
    "Author",
    "CompanyName",
    "Copyright",
    "Description",
    "HelpInfoURI",
    "PowerShellVersion",
    "NestedModules",
    "RequiredModules",
    "RequiredAssemblies",
    "TypesToProcess",
    "FormatsToProcess",
    "ScriptsToProcess",
    "FileList",
    "ModuleList",
    "FunctionsToExport",
    "CmdletsToExport",
    "VariablesToExport",
    "AliasesToExport",
    "PrivateData",
)
_CANONICAL = {key.lower(): key for key in KNOWN_KEYS}

PSDATA_KEYS = ("Tags", "LicenseUri", "ProjectUri", "IconUri", "ReleaseNotes")

# Keys dropped when a manifest is flattened for local loading of remote content
REWRITE_REMOVED_KEYS = (
    "RootModule",
    "ModuleToProcess",
    "ScriptsToProcess",
    "RequiredAssemblies",
    "RequiredModules",
    "FileList",
    "ModuleList",
)


class ValueKind(str, Enum):
    STRING = "string"
    STRING_LIST = "string-list"
    TABLE = "table"
    OPAQUE = "opaque"


@dataclass(frozen=True)
class ManifestValue:
    """A manifest value tagged with its kind."""

    kind: ValueKind
    value: Any

    @classmethod
    def of(cls, raw: Any) -> ManifestValue:
        if isinstance(raw, str):
            return cls(ValueKind.STRING, raw)
        if isinstance(raw, Mapping):
            return cls(ValueKind.TABLE, dict(raw))
        if isinstance(raw, (list, tuple)) and all(isinstance(item, str) for item in raw):
            return cls(ValueKind.STRING_LIST, list(raw))
        return cls(ValueKind.OPAQUE, raw)


def parse_manifest_text(text: str, path: str) -> dict[str, Any]:
    """Parse manifest text into a normalized data table.

    Known keys are canonicalized (matching is case-insensitive); unknown keys
    are passed through into PrivateData.

    Raises:
        ManifestError: Text is not valid YAML or not a mapping
    """
    try:
        raw = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise ManifestError(f"Cannot parse module manifest '{path}': {e}", path) from e
    if raw is None:
        raise ManifestError(f"Module manifest '{path}' is empty", path)
    if not isinstance(raw, Mapping):
        raise ManifestError(f"Module manifest '{path}' must contain a key/value table", path)
    return normalize_manifest(raw, path)


def normalize_manifest(raw: Mapping[str, Any], path: str) -> dict[str, Any]:
    data: dict[str, Any] = {}
    unknown: dict[str, Any] = {}
    for key, value in raw.items():
        canonical = _CANONICAL.get(str(key).lower())
        if canonical is None:
            unknown[str(key)] = value
        else:
            data[canonical] = value

    if "PrivateData" in data and data["PrivateData"] is not None:
        private = ManifestValue.of(data["PrivateData"])
        if private.kind != ValueKind.TABLE:
            raise ManifestError(f"PrivateData in '{path}' must be a table", path)
        data["PrivateData"] = private.value
    if unknown:
        logger.debug(f"Manifest {path}: passing unknown keys through PrivateData: {sorted(unknown)}")
        private_data = data.setdefault("PrivateData", {}) or {}
        for key, value in unknown.items():
            private_data.setdefault(key, value)
        data["PrivateData"] = private_data
    return data


def load_manifest_file(path: str) -> dict[str, Any]:
    """Read and parse a manifest file from disk."""
    try:
        with open(path, encoding="utf-8-sig") as f:
            text = f.read()
    except OSError as e:
        raise ManifestError(f"Cannot read module manifest '{path}': {e}", path) from e
    return parse_manifest_text(text, path)


def as_string(data: Mapping[str, Any], key: str, path: str = "") -> str | None:
    """Coerce a manifest field to a string; None when absent."""
    raw = data.get(key)
    if raw is None:
        return None
    value = ManifestValue.of(raw)
    if value.kind == ValueKind.STRING:
        return value.value
    if value.kind == ValueKind.OPAQUE and isinstance(value.value, (int, float)) and not isinstance(value.value, bool):
        return str(value.value)
    if value.kind == ValueKind.STRING_LIST and len(value.value) == 1:
        return value.value[0]
    raise ManifestError(f"Field '{key}' in manifest '{path}' must be a string", path)


def as_string_list(data: Mapping[str, Any], key: str, path: str = "") -> list[str]:
    """Coerce a manifest field to a list of strings; empty when absent."""
    raw = data.get(key)
    if raw is None:
        return []
    value = ManifestValue.of(raw)
    if value.kind == ValueKind.STRING:
        return [value.value] if value.value else []
    if value.kind == ValueKind.STRING_LIST:
        return list(value.value)
    if value.kind == ValueKind.OPAQUE and isinstance(value.value, (list, tuple)):
        items = []
        for item in value.value:
            if isinstance(item, (str, int, float)) and not isinstance(item, bool):
                items.append(str(item))
            else:
                raise ManifestError(f"Field '{key}' in manifest '{path}' must be a list of strings", path)
        return items
    raise ManifestError(f"Field '{key}' in manifest '{path}' must be a list of strings", path)


def as_list(data: Mapping[str, Any], key: str) -> list[Any]:
    """Return a field as a list of raw entries (strings or tables)."""
    raw = data.get(key)
    if raw is None:
        return []
    if isinstance(raw, (list, tuple)):
        return list(raw)
    return [raw]


def as_version(data: Mapping[str, Any], key: str, path: str = "") -> Version | None:
    """Coerce a manifest field to a Version; None when absent."""
    text = as_string(data, key, path)
    if text is None:
        return None
    try:
        return Version(text.strip())
    except InvalidVersion as e:
        raise ManifestError(f"Field '{key}' in manifest '{path}' is not a valid version: '{text}'", path) from e


def as_guid(data: Mapping[str, Any], key: str, path: str = "") -> uuid.UUID | None:
    text = as_string(data, key, path)
    if text is None:
        return None
    try:
        return uuid.UUID(text.strip().strip("{}"))
    except ValueError as e:
        raise ManifestError(f"Field '{key}' in manifest '{path}' is not a valid GUID: '{text}'", path) from e


def as_table(data: Mapping[str, Any], key: str, path: str = "") -> dict[str, Any]:
    raw = data.get(key)
    if raw is None:
        return {}
    value = ManifestValue.of(raw)
    if value.kind != ValueKind.TABLE:
        raise ManifestError(f"Field '{key}' in manifest '{path}' must be a table", path)
    return value.value


def is_non_empty_field(data: Mapping[str, Any], key: str) -> bool:
    """True if the field is present and, when list-like, has entries."""
    raw = data.get(key)
    if raw is None:
        return False
    if isinstance(raw, (list, tuple)):
        return len(raw) != 0
    return True


def root_module_entry(data: Mapping[str, Any], path: str = "") -> str | None:
    """RootModule, falling back to the legacy ModuleToProcess key."""
    if data.get("RootModule") is not None:
        return as_string(data, "RootModule", path) or None
    return as_string(data, "ModuleToProcess", path) or None


def psdata(data: Mapping[str, Any], path: str = "") -> dict[str, Any]:
    """The reserved PrivateData.PSData table (marketplace metadata)."""
    private_data = as_table(data, "PrivateData", path)
    raw = private_data.get("PSData")
    if raw is None:
        return {}
    if not isinstance(raw, Mapping):
        raise ManifestError(f"PrivateData.PSData in manifest '{path}' must be a table", path)
    return {k: raw[k] for k in raw if k in PSDATA_KEYS}


def rewrite_manifest(
    data: Mapping[str, Any],
    nested_modules: Iterable[str] = (),
    types_to_process: Iterable[str] = (),
    formats_to_process: Iterable[str] = (),
) -> dict[str, Any]:
    """Point a manifest's file lists at flattened local files.

    The input is not modified. Fields that reference content which cannot be
    materialized locally are dropped.
    """
    rewritten = copy.deepcopy(dict(data))
    for key in REWRITE_REMOVED_KEYS:
        rewritten.pop(key, None)
    rewritten["NestedModules"] = list(nested_modules)
    rewritten["TypesToProcess"] = list(types_to_process)
    rewritten["FormatsToProcess"] = list(formats_to_process)
    return rewritten


def dump_manifest(data: Mapping[str, Any]) -> str:
    """Serialize manifest data back to text."""
    return yaml.safe_dump(dict(data), default_flow_style=False, sort_keys=False)
