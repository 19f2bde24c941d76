"""Remote module acquisition: interactive sessions and inventory endpoints."""

from .http import HttpInventoryEndpoint
from .http import HttpRemoteSession
from .inventory import InventoryEndpoint
from .inventory import RemoteInventoryImporter
from .session import RemoteSession
from .session import RemoteSessionImporter
from .session import SessionProxyGenerator
from .staging import StagingArea

__all__ = [
    "HttpInventoryEndpoint",
    "HttpRemoteSession",
    "InventoryEndpoint",
    "RemoteInventoryImporter",
    "RemoteSession",
    "RemoteSessionImporter",
    "SessionProxyGenerator",
    "StagingArea",
]
