"""
Storage Services Package

Local key-value backends for the Entity Store and hosted-store
implementations for cloud sync. Google Sheets is the hosted backend,
but every consumer depends on the abstract interfaces only.
"""

from odrna.services.storage.interface import (
    ConnectionError,
    HostedStoreInterface,
    NotFoundError,
    StorageBackend,
    StorageError,
    UserDataRow,
)
from odrna.services.storage.local import InMemoryBackend, JsonFileBackend
from odrna.services.storage.memory import InMemoryHostedStore
from odrna.services.storage.google_sheets import (
    GoogleSheetsClient,
    GoogleSheetsHostedStore,
)

__all__ = [
    # Interfaces
    "HostedStoreInterface",
    "StorageBackend",
    "UserDataRow",
    # Exceptions
    "ConnectionError",
    "NotFoundError",
    "StorageError",
    # Local backends
    "InMemoryBackend",
    "JsonFileBackend",
    # Hosted stores
    "GoogleSheetsClient",
    "GoogleSheetsHostedStore",
    "InMemoryHostedStore",
]
