"""Error taxonomy for module resolution and import.

Every failure carries a stable category plus the offending identifier so batch
operations can report per-item records without aborting sibling imports.
"""

from __future__ import annotations

from dataclasses import dataclass
from dataclasses import field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Stable error categories surfaced to callers."""

    NOT_FOUND = "NotFound"
    VERSION_MISMATCH = "VersionMismatch"
    MALFORMED_INPUT = "MalformedInput"
    NOTHING_TO_IMPORT = "NothingToImport"
    UNSUPPORTED_ADAPTER = "UnsupportedAdapter"
    PARTIAL_CAPABILITY = "PartialCapability"
    TRANSPORT_FAILURE = "TransportFailure"
    INVALID_ARGUMENT = "InvalidArgument"
    CANCELLED = "Cancelled"


class ModuleImportError(Exception):
    """Base class for all import engine failures."""

    category: ErrorCategory = ErrorCategory.INVALID_ARGUMENT
    error_id: str = "ModuleImportError"

    def __init__(self, message: str, identifier: str | None = None):
        super().__init__(message)
        self.identifier = identifier


class ModuleNotFoundError(ModuleImportError):
    """Raised when no candidate resolved for a name or path.

    When a version constraint was given the error is the distinguishable
    "not found at that version" case and carries the constraint.
    """

    category = ErrorCategory.NOT_FOUND
    error_id = "Modules_ModuleNotFound"

    def __init__(self, message: str, identifier: str | None = None, constraint: Any = None):
        super().__init__(message, identifier)
        self.constraint = constraint
        if constraint is not None and constraint.has_version_constraint:
            self.error_id = "Modules_ModuleWithVersionNotFound"


class VersionMismatchError(ModuleImportError):
    """Raised when a module was found but its version or GUID is incompatible."""

    category = ErrorCategory.VERSION_MISMATCH
    error_id = "Modules_VersionMismatch"


class MalformedInputError(ModuleImportError):
    """Raised for invalid constraints or unparseable input."""

    category = ErrorCategory.MALFORMED_INPUT
    error_id = "Modules_MalformedInput"


class MalformedVersionError(MalformedInputError):
    """Raised when a version string cannot be parsed."""

    error_id = "Modules_MalformedVersion"


class ManifestError(MalformedInputError):
    """Raised when manifest data is invalid or references missing files."""

    error_id = "Modules_InvalidManifest"


class NothingToImportError(ModuleImportError):
    """Raised when proxy generation produced zero artifacts."""

    category = ErrorCategory.NOTHING_TO_IMPORT
    error_id = "Modules_NothingToImport"


class UnsupportedAdapterError(ModuleImportError):
    """Raised when a nested module declares a cmdlet adapter other than the default one."""

    category = ErrorCategory.UNSUPPORTED_ADAPTER
    error_id = "UnsupportedCmdletAdapter"


class InvalidArgumentError(ModuleImportError):
    """Raised when a request cannot be served with the given arguments."""

    category = ErrorCategory.INVALID_ARGUMENT
    error_id = "Modules_InvalidArgument"


class SessionOnlyModuleError(InvalidArgumentError):
    """Raised when an inventory module can only be imported over an interactive session."""

    error_id = "PsModuleOverCimSessionError"


class TransportError(ModuleImportError):
    """Wraps a network or session failure with the module identifier."""

    category = ErrorCategory.TRANSPORT_FAILURE
    error_id = "RemoteDiscoveryFailure"


class OperationCancelledError(ModuleImportError):
    """Raised when a cancellation signal interrupts a remote import."""

    category = ErrorCategory.CANCELLED
    error_id = "OperationCancelled"


@dataclass
class ImportErrorRecord:
    """One per-item error or warning reported by a batch operation."""

    category: ErrorCategory
    identifier: str | None
    message: str
    error_id: str = ""
    exception: BaseException | None = None

    @classmethod
    def from_exception(cls, exc: ModuleImportError, identifier: str | None = None) -> ImportErrorRecord:
        return cls(
            category=exc.category,
            identifier=exc.identifier if exc.identifier is not None else identifier,
            message=str(exc),
            error_id=exc.error_id,
            exception=exc,
        )

    @classmethod
    def warning(cls, category: ErrorCategory, identifier: str | None, message: str) -> ImportErrorRecord:
        return cls(category=category, identifier=identifier, message=message, error_id=category.value)


@dataclass
class ImportResult:
    """Outcome of a batch import: loaded modules plus per-item errors and warnings."""

    modules: list[Any] = field(default_factory=list)
    errors: list[ImportErrorRecord] = field(default_factory=list)
    warnings: list[ImportErrorRecord] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return not self.errors

    def extend(self, other: ImportResult) -> None:
        self.modules.extend(other.modules)
        self.errors.extend(other.errors)
        self.warnings.extend(other.warnings)

    def add_error(self, exc: ModuleImportError, identifier: str | None = None) -> None:
        self.errors.append(ImportErrorRecord.from_exception(exc, identifier))
