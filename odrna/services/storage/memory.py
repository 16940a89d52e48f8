"""
In-Memory Hosted Store

Same contract as the Google Sheets store, kept in process memory.
Used by tests and when no spreadsheet is configured.
"""

from typing import Optional

from odrna.models.entities import SubscriptionStatus
from odrna.services.storage.interface import (
    HostedStoreInterface,
    UserDataRow,
)


class InMemoryHostedStore(HostedStoreInterface):
    """
    Dict-backed hosted store.

    `fail_with` makes every call raise the given exception, to simulate
    an unreachable backend.
    """

    def __init__(self):
        self._rows: dict[str, UserDataRow] = {}
        self._accounts: dict[str, SubscriptionStatus] = {}
        self.fail_with: Optional[Exception] = None
        self.upsert_count = 0

    def _check_available(self) -> None:
        if self.fail_with is not None:
            raise self.fail_with

    def register_account(
        self,
        email: str,
        status: Optional[SubscriptionStatus] = None,
    ) -> None:
        """Create an account row (accounts are created by sign-up, not here)."""
        self._accounts[email.strip().lower()] = status or SubscriptionStatus.free()

    async def fetch_user_row(self, user_id: str) -> Optional[UserDataRow]:
        self._check_available()
        row = self._rows.get(user_id)
        return row.model_copy(deep=True) if row else None

    async def upsert_user_row(self, row: UserDataRow) -> None:
        self._check_available()
        self._rows[row.user_id] = row.model_copy(deep=True)
        self.upsert_count += 1

    async def fetch_subscription(self, email: str) -> Optional[SubscriptionStatus]:
        self._check_available()
        status = self._accounts.get(email.strip().lower())
        return status.model_copy() if status else None

    async def update_subscription(self, email: str, status: SubscriptionStatus) -> bool:
        self._check_available()
        key = email.strip().lower()
        if key not in self._accounts:
            return False
        self._accounts[key] = status.model_copy()
        return True
