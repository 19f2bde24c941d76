"""Module resolution: version constraints and the local resolver."""

from .resolver import LocalResolver
from .resolver import has_wildcard
from .resolver import is_rooted
from .versions import ModuleSpecification
from .versions import is_compatible
from .versions import is_guid_compatible
from .versions import parse_version

__all__ = [
    "LocalResolver",
    "ModuleSpecification",
    "has_wildcard",
    "is_compatible",
    "is_guid_compatible",
    "is_rooted",
    "parse_version",
]
