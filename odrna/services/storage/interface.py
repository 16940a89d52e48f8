"""
Abstract Storage Interfaces

DESIGN DECISION: We define abstract interfaces for both storage layers.
This allows us to:
1. Swap the local backend (JSON files, memory) without touching the store
2. Swap Google Sheets for a real database as the hosted store later
3. Use in-memory storage for testing
4. Keep business logic decoupled from storage implementation

Two layers exist:
- StorageBackend: durable key-value storage local to the running client.
  The Entity Store writes one JSON document per collection into it.
- HostedStoreInterface: the cloud copy, one row per user holding all
  collections, plus subscription status keyed by email.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field

from odrna.models.entities import EntityType, SubscriptionStatus, utc_now


class StorageBackend(ABC):
    """
    Abstract local key-value storage.

    Values are opaque strings (JSON documents written by the Entity Store).
    """

    @abstractmethod
    def read(self, key: str) -> Optional[str]:
        """
        Read the value stored under a key.

        Returns:
            The stored string, or None if nothing was ever written

        Raises:
            StorageError: If the backend cannot be read
        """
        pass

    @abstractmethod
    def write(self, key: str, value: str) -> None:
        """
        Replace the value stored under a key.

        Raises:
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    def remove(self, key: str) -> None:
        """Remove a key. Removing a missing key is not an error."""
        pass


class UserDataRow(BaseModel):
    """
    The hosted record for one user.

    A collection set to None has never been synced; an empty list was
    synced empty. Both exist on purpose: they mean different things when
    a new device pulls.
    """

    user_id: str = Field(..., min_length=1)
    tasks: Optional[list[dict[str, Any]]] = None
    events: Optional[list[dict[str, Any]]] = None
    transactions: Optional[list[dict[str, Any]]] = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    def collection(self, entity_type: EntityType) -> Optional[list[dict[str, Any]]]:
        return getattr(self, entity_type.collection_name)

    def with_collection(
        self,
        entity_type: EntityType,
        records: list[dict[str, Any]],
    ) -> "UserDataRow":
        """Copy of the row with one collection replaced and a fresh timestamp."""
        return self.model_copy(
            update={
                entity_type.collection_name: list(records),
                "updated_at": utc_now(),
            }
        )


class HostedStoreInterface(ABC):
    """
    Abstract interface for the hosted (cloud) store.

    Any implementation (Google Sheets, PostgreSQL, etc.)
    must implement these methods.
    """

    @abstractmethod
    async def fetch_user_row(self, user_id: str) -> Optional[UserDataRow]:
        """
        Fetch the row for a user.

        Returns:
            The row if found, None otherwise

        Raises:
            StorageError: If the hosted store cannot be reached
        """
        pass

    @abstractmethod
    async def upsert_user_row(self, row: UserDataRow) -> None:
        """
        Insert or replace the row for `row.user_id`.

        Raises:
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    async def fetch_subscription(self, email: str) -> Optional[SubscriptionStatus]:
        """
        Fetch the subscription status for an account email.

        Returns:
            The status if the account exists, None otherwise
        """
        pass

    @abstractmethod
    async def update_subscription(
        self,
        email: str,
        status: SubscriptionStatus,
    ) -> bool:
        """
        Write the subscription status of an existing account.

        Returns:
            True if an account with this email was updated,
            False if no such account exists
        """
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class ConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass
