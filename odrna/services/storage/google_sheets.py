"""
Google Sheets Hosted Store

DESIGN DECISION: Google Sheets is the hosted copy of user data because:
1. The account owner can inspect and fix data directly in Sheets
2. No database setup required
3. Built-in backup (Google's infrastructure)
4. Easy to export/migrate later

Layout:
- `UserData` worksheet: one row per user id, each collection JSON-encoded
  in its own cell. An EMPTY cell means the collection was never synced;
  "[]" means it was synced empty.
- `Users` worksheet: one row per account email with the subscription
  columns written by the payment webhook.

TRADEOFFS:
- Whole-collection cells, so writes are last-write-wins per collection
- A cell holds at most 50,000 characters (a few hundred records). A
  collection over that limit is refused with a StorageError before
  anything is written, so the push fails loudly and the row is intact
- Write retries stop once the sync timeout is spent
- gspread is blocking; every call runs in a worker thread
- No query capabilities (we scan rows in Python)
"""

import asyncio
import json
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

import gspread
import structlog
from google.oauth2.service_account import Credentials
from tenacity import (
    Retrying,
    retry,
    retry_if_not_exception_type,
    stop_after_attempt,
    stop_before_delay,
    wait_exponential,
)

from odrna.config import GoogleSheetsSettings, get_settings
from odrna.models.entities import EntityType, PlanName, SubscriptionStatus
from odrna.services.storage.interface import (
    ConnectionError,
    HostedStoreInterface,
    StorageError,
    UserDataRow,
)


logger = structlog.get_logger(__name__)


USER_DATA_COLUMNS = [
    "user_id",
    "tasks_json",
    "events_json",
    "transactions_json",
    "created_at",
    "updated_at",
]

USERS_COLUMNS = [
    "email",
    "name",
    "is_premium",
    "plan_name",
    "price",
    "start_date",
    "renewal_date",
    "updated_at",
]

MAX_CELL_CHARACTERS = 50_000

_COLLECTION_COLUMN = {
    EntityType.TASK: 1,
    EntityType.EVENT: 2,
    EntityType.TRANSACTION: 3,
}


class GoogleSheetsClient:
    """
    Low-level Google Sheets client wrapper.

    Handles authentication and provides retry logic for API calls.
    All methods are blocking.
    """

    def __init__(self, settings: Optional[GoogleSheetsSettings] = None):
        self._client: Optional[gspread.Client] = None
        self._spreadsheet: Optional[gspread.Spreadsheet] = None
        self._settings = settings or get_settings().google_sheets

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def connect(self) -> gspread.Client:
        """
        Establish connection to Google Sheets.

        Uses service account credentials for authentication.
        """
        if self._client is None:
            try:
                credentials = Credentials.from_service_account_file(
                    self._settings.credentials_path,
                    scopes=[
                        "https://www.googleapis.com/auth/spreadsheets",
                        "https://www.googleapis.com/auth/drive",
                    ],
                )
                self._client = gspread.authorize(credentials)
            except FileNotFoundError:
                raise ConnectionError(
                    f"Google credentials file not found: {self._settings.credentials_path}"
                )
            except Exception as e:
                raise ConnectionError(f"Failed to connect to Google Sheets: {e}")

        return self._client

    def get_spreadsheet(self) -> gspread.Spreadsheet:
        if self._spreadsheet is None:
            client = self.connect()
            try:
                self._spreadsheet = client.open_by_key(self._settings.spreadsheet_id)
            except gspread.SpreadsheetNotFound:
                raise ConnectionError(
                    f"Spreadsheet not found: {self._settings.spreadsheet_id}"
                )
        return self._spreadsheet

    def _worksheet(self, title: str, columns: list[str]) -> gspread.Worksheet:
        """Get a worksheet, creating it with a header row if missing."""
        spreadsheet = self.get_spreadsheet()
        try:
            return spreadsheet.worksheet(title)
        except gspread.WorksheetNotFound:
            sheet = spreadsheet.add_worksheet(
                title=title,
                rows=1000,
                cols=len(columns),
            )
            sheet.append_row(columns)
            return sheet

    def get_user_data_sheet(self) -> gspread.Worksheet:
        return self._worksheet(self._settings.user_data_sheet_name, USER_DATA_COLUMNS)

    def get_users_sheet(self) -> gspread.Worksheet:
        return self._worksheet(self._settings.users_sheet_name, USERS_COLUMNS)


def _find_row(
    all_rows: list[list[str]],
    key: str,
    ignore_case: bool = False,
) -> Optional[int]:
    """1-based sheet row index of the first data row whose first cell is `key`."""
    if ignore_case:
        key = key.lower()
    for idx, row in enumerate(all_rows[1:], start=2):
        if not row:
            continue
        cell = row[0].strip()
        if (cell.lower() if ignore_case else cell) == key:
            return idx
    return None


class GoogleSheetsHostedStore(HostedStoreInterface):
    """
    Google Sheets implementation of the hosted store.

    Collections are JSON-serialized into cells; subscription fields are
    plain cells on the Users sheet.
    """

    def __init__(
        self,
        client: Optional[GoogleSheetsClient] = None,
        retry_budget_seconds: Optional[float] = None,
    ):
        """
        Args:
            client: Sheets client (built from settings if omitted)
            retry_budget_seconds: No write retry starts after this many
                seconds, so retries stay inside the caller's timeout
        """
        self._client = client or GoogleSheetsClient()
        self._retry_budget = retry_budget_seconds

    def _retrying(self) -> Retrying:
        stop = stop_after_attempt(3)
        if self._retry_budget is not None:
            stop = stop | stop_before_delay(self._retry_budget)
        return Retrying(
            stop=stop,
            wait=wait_exponential(multiplier=1, min=2, max=10),
            retry=retry_if_not_exception_type(StorageError),
            reraise=True,
        )

    # -------------------------------------------------------------------------
    # Row conversion
    # -------------------------------------------------------------------------

    @staticmethod
    def _encode_collection(records: Optional[list[dict[str, Any]]]) -> str:
        if records is None:
            return ""
        encoded = json.dumps(records, ensure_ascii=False)
        if len(encoded) > MAX_CELL_CHARACTERS:
            raise StorageError(
                f"Collection of {len(records)} records is {len(encoded)} characters, "
                f"over the {MAX_CELL_CHARACTERS} a Google Sheets cell can hold"
            )
        return encoded

    @staticmethod
    def _decode_collection(cell: str) -> Optional[list[dict[str, Any]]]:
        if not cell or not cell.strip():
            return None
        decoded = json.loads(cell)
        if not isinstance(decoded, list):
            raise StorageError("Collection cell does not hold a JSON array")
        return [item for item in decoded if isinstance(item, dict)]

    def _user_row_to_cells(self, row: UserDataRow) -> list[str]:
        return [
            row.user_id,
            self._encode_collection(row.tasks),
            self._encode_collection(row.events),
            self._encode_collection(row.transactions),
            row.created_at.isoformat(),
            row.updated_at.isoformat(),
        ]

    def _cells_to_user_row(self, cells: list[str]) -> UserDataRow:
        def safe_get(index: int, default: str = "") -> str:
            try:
                return cells[index] if cells[index] else default
            except IndexError:
                return default

        values: dict[str, Any] = {"user_id": safe_get(0)}
        for entity_type, column in _COLLECTION_COLUMN.items():
            values[entity_type.collection_name] = self._decode_collection(safe_get(column))
        if safe_get(4):
            values["created_at"] = datetime.fromisoformat(safe_get(4))
        if safe_get(5):
            values["updated_at"] = datetime.fromisoformat(safe_get(5))
        return UserDataRow(**values)

    @staticmethod
    def _cells_to_subscription(cells: list[str]) -> SubscriptionStatus:
        def safe_get(index: int) -> str:
            try:
                return cells[index].strip()
            except IndexError:
                return ""

        is_premium = safe_get(2).lower() in ("true", "1", "yes", "sim")
        return SubscriptionStatus(
            is_premium=is_premium,
            plan_name=safe_get(3) or (PlanName.PREMIUM if is_premium else PlanName.FREE),
            price=Decimal(safe_get(4)) if safe_get(4) else None,
            start_date=safe_get(5) or None,
            renewal_date=safe_get(6) or None,
        )

    # -------------------------------------------------------------------------
    # Blocking operations (run in a worker thread)
    # -------------------------------------------------------------------------

    def _fetch_user_row_sync(self, user_id: str) -> Optional[UserDataRow]:
        sheet = self._client.get_user_data_sheet()
        all_rows = sheet.get_all_values()
        idx = _find_row(all_rows, user_id)
        if idx is None:
            return None
        return self._cells_to_user_row(all_rows[idx - 1])

    def _upsert_user_row_sync(self, row: UserDataRow) -> None:
        sheet = self._client.get_user_data_sheet()
        all_rows = sheet.get_all_values()
        idx = _find_row(all_rows, row.user_id)
        cells = self._user_row_to_cells(row)
        if idx is None:
            sheet.append_row(cells, value_input_option="RAW")
        else:
            sheet.update(
                range_name=f"A{idx}:F{idx}",
                values=[cells],
                value_input_option="RAW",
            )

    def _fetch_subscription_sync(self, email: str) -> Optional[SubscriptionStatus]:
        sheet = self._client.get_users_sheet()
        all_rows = sheet.get_all_values()
        idx = _find_row(all_rows, email, ignore_case=True)
        if idx is None:
            return None
        return self._cells_to_subscription(all_rows[idx - 1])

    def _update_subscription_sync(self, email: str, status: SubscriptionStatus) -> bool:
        sheet = self._client.get_users_sheet()
        all_rows = sheet.get_all_values()
        idx = _find_row(all_rows, email, ignore_case=True)
        if idx is None:
            return False
        sheet.update(
            range_name=f"C{idx}:H{idx}",
            values=[[
                "TRUE" if status.is_premium else "FALSE",
                status.plan_name.value,
                str(status.price) if status.price is not None else "",
                status.start_date.isoformat() if status.start_date else "",
                status.renewal_date.isoformat() if status.renewal_date else "",
                datetime.now().isoformat(),
            ]],
            value_input_option="RAW",
        )
        return True

    # -------------------------------------------------------------------------
    # HostedStoreInterface
    # -------------------------------------------------------------------------

    async def fetch_user_row(self, user_id: str) -> Optional[UserDataRow]:
        try:
            return await asyncio.to_thread(self._fetch_user_row_sync, user_id)
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to fetch user data: {e}")

    async def upsert_user_row(self, row: UserDataRow) -> None:
        try:
            await asyncio.to_thread(self._retrying(), self._upsert_user_row_sync, row)
            logger.debug("user_row_upserted", user_id=row.user_id)
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to save user data: {e}")

    async def fetch_subscription(self, email: str) -> Optional[SubscriptionStatus]:
        try:
            return await asyncio.to_thread(self._fetch_subscription_sync, email)
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to fetch subscription: {e}")

    async def update_subscription(self, email: str, status: SubscriptionStatus) -> bool:
        try:
            return await asyncio.to_thread(self._retrying(), self._update_subscription_sync, email, status)
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to update subscription: {e}")
