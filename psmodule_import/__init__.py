"""Module resolution and remote import engine.

Resolves module references (names, paths, fully-qualified specifications) to
loadable artifacts, and fetches modules from remote sessions and inventory
endpoints into local proxy modules.
"""

from .cancellation import CancellationToken
from .errors import ErrorCategory
from .errors import ImportErrorRecord
from .errors import ImportResult
from .errors import ModuleImportError
from .models import ModuleInfo
from .models import ModuleType
from .models import ResolvedModuleDescriptor
from .module_resolution import LocalResolver
from .module_resolution import ModuleSpecification
from .module_resolution import is_compatible
from .orchestrator import ImportOptions
from .orchestrator import ImportOrchestrator
from .state import ModuleState
from .state import Scope

__all__ = [
    "CancellationToken",
    "ErrorCategory",
    "ImportErrorRecord",
    "ImportOptions",
    "ImportOrchestrator",
    "ImportResult",
    "LocalResolver",
    "ModuleImportError",
    "ModuleInfo",
    "ModuleSpecification",
    "ModuleState",
    "ModuleType",
    "ResolvedModuleDescriptor",
    "Scope",
    "is_compatible",
]
