"""
Tests for the Google Sheets hosted store.

The gspread worksheet is replaced by an in-memory FakeWorksheet that
keeps rows as lists of cell strings, the way get_all_values returns them.
"""

import time
from datetime import date
from decimal import Decimal

import pytest

from odrna.config import SyncSettings
from odrna.models.entities import EntityType, PlanName, SubscriptionStatus
from odrna.services.storage import StorageError, UserDataRow
from odrna.services.storage.google_sheets import (
    MAX_CELL_CHARACTERS,
    USER_DATA_COLUMNS,
    USERS_COLUMNS,
    GoogleSheetsHostedStore,
    _find_row,
)
from odrna.services.sync import BackgroundSyncQueue, SyncService


class FakeWorksheet:
    """In-memory stand-in for a gspread Worksheet."""

    def __init__(self, header, rows=None, write_delays=(), write_error=None):
        self.rows = [list(header)] + [list(row) for row in rows or []]
        self.write_delays = list(write_delays)
        self.write_error = write_error
        self.appends = 0
        self.updates = 0
        self.write_attempts = 0

    def _before_write(self):
        self.write_attempts += 1
        if self.write_error is not None:
            raise self.write_error
        if self.write_delays:
            time.sleep(self.write_delays.pop(0))

    def get_all_values(self):
        return [list(row) for row in self.rows]

    def append_row(self, values, value_input_option=None):
        self._before_write()
        self.appends += 1
        self.rows.append(list(values))

    def update(self, range_name=None, values=None, value_input_option=None):
        self._before_write()
        self.updates += 1
        start = range_name.split(":")[0]
        column, index = ord(start[0]) - ord("A"), int(start[1:])
        row = self.rows[index - 1]
        cells = values[0]
        row.extend([""] * (column + len(cells) - len(row)))
        row[column:column + len(cells)] = cells


class FakeSheetsClient:
    def __init__(self, user_data=None, users=None):
        self.user_data = user_data or FakeWorksheet(USER_DATA_COLUMNS)
        self.users = users or FakeWorksheet(USERS_COLUMNS)

    def get_user_data_sheet(self):
        return self.user_data

    def get_users_sheet(self):
        return self.users


@pytest.fixture
def client():
    return FakeSheetsClient()


@pytest.fixture
def sheets_store(client):
    return GoogleSheetsHostedStore(client)


class TestCollectionCells:
    """Tests for the JSON cell encoding."""

    def test_never_synced_vs_synced_empty(self):
        """Test None is an empty cell and [] is '[]'."""
        assert GoogleSheetsHostedStore._encode_collection(None) == ""
        assert GoogleSheetsHostedStore._encode_collection([]) == "[]"
        assert GoogleSheetsHostedStore._decode_collection("") is None
        assert GoogleSheetsHostedStore._decode_collection("   ") is None
        assert GoogleSheetsHostedStore._decode_collection("[]") == []

    def test_non_array_cell_rejected(self):
        """Test a cell holding a JSON object is an error."""
        with pytest.raises(StorageError):
            GoogleSheetsHostedStore._decode_collection('{"title": "x"}')

    def test_accents_kept_readable(self):
        """Test non-ASCII text is stored as-is."""
        assert "Reunião" in GoogleSheetsHostedStore._encode_collection([{"title": "Reunião"}])

    def test_oversized_collection_rejected(self):
        """Test a collection that does not fit in one cell is refused."""
        records = [{"title": "x" * 1000} for _ in range(MAX_CELL_CHARACTERS // 1000 + 1)]
        with pytest.raises(StorageError, match="cell"):
            GoogleSheetsHostedStore._encode_collection(records)

    async def test_synced_empty_round_trip(self, sheets_store, client):
        """Test the sheet keeps [] and None apart."""
        await sheets_store.upsert_user_row(UserDataRow(user_id="u-1", tasks=[]))

        assert client.user_data.rows[1][1:4] == ["[]", "", ""]
        row = await sheets_store.fetch_user_row("u-1")
        assert row.tasks == []
        assert row.events is None
        assert row.transactions is None


class TestFindRow:
    """Tests for row lookup."""

    ROWS = [
        ["email", "name"],
        [],
        ["Maria@Example.com ", "Maria"],
        ["joao@example.com", "João"],
    ]

    def test_returns_sheet_row_number(self):
        """Test the index is 1-based and counts the header."""
        assert _find_row(self.ROWS, "joao@example.com") == 4

    def test_case_sensitive_by_default(self):
        """Test user ids must match exactly."""
        assert _find_row(self.ROWS, "maria@example.com") is None

    def test_ignore_case(self):
        """Test emails match regardless of case and padding."""
        assert _find_row(self.ROWS, "MARIA@example.com", ignore_case=True) == 3

    def test_header_is_never_a_match(self):
        """Test the header row is skipped."""
        assert _find_row(self.ROWS, "email") is None


class TestUserRows:
    """Tests for user data rows."""

    async def test_missing_user(self, sheets_store):
        """Test an unknown user has no row."""
        assert await sheets_store.fetch_user_row("u-1") is None

    async def test_first_write_appends_then_updates(self, sheets_store, client):
        """Test a new user gets a row and later writes update it in place."""
        await sheets_store.upsert_user_row(UserDataRow(user_id="u-1", tasks=[{"title": "a"}]))
        await sheets_store.upsert_user_row(UserDataRow(user_id="u-1", tasks=[{"title": "b"}]))

        assert client.user_data.appends == 1
        assert client.user_data.updates == 1
        assert len(client.user_data.rows) == 2
        row = await sheets_store.fetch_user_row("u-1")
        assert row.tasks == [{"title": "b"}]

    async def test_users_do_not_share_rows(self, sheets_store):
        """Test each user id has its own row."""
        await sheets_store.upsert_user_row(UserDataRow(user_id="u-1", tasks=[{"title": "a"}]))
        await sheets_store.upsert_user_row(UserDataRow(user_id="u-2", events=[]))

        assert (await sheets_store.fetch_user_row("u-1")).events is None
        assert (await sheets_store.fetch_user_row("u-2")).tasks is None

    async def test_oversized_write_touches_nothing(self, sheets_store, client):
        """Test a refused collection leaves the sheet unchanged and is not retried."""
        records = [{"title": "x" * 1000} for _ in range(MAX_CELL_CHARACTERS // 1000 + 1)]

        with pytest.raises(StorageError):
            await sheets_store.upsert_user_row(UserDataRow(user_id="u-1", tasks=records))

        assert client.user_data.write_attempts == 0
        assert len(client.user_data.rows) == 1

    async def test_retries_stop_within_budget(self):
        """Test a failing write is not retried past the retry budget."""
        client = FakeSheetsClient(user_data=FakeWorksheet(
            USER_DATA_COLUMNS, write_error=RuntimeError("quota exceeded"),
        ))
        sheets_store = GoogleSheetsHostedStore(client, retry_budget_seconds=1.0)

        with pytest.raises(StorageError, match="quota exceeded"):
            await sheets_store.upsert_user_row(UserDataRow(user_id="u-1", tasks=[]))

        assert client.user_data.write_attempts == 1


class TestSubscriptionCells:
    """Tests for the Users sheet."""

    def test_premium_row(self):
        """Test every subscription column is parsed."""
        status = GoogleSheetsHostedStore._cells_to_subscription([
            "maria@example.com", "Maria", "TRUE", "premium", "19.90", "2024-01-15", "2024-02-15",
        ])
        assert status.is_premium is True
        assert status.plan_name == PlanName.PREMIUM
        assert status.price == Decimal("19.90")
        assert status.start_date == date(2024, 1, 15)
        assert status.renewal_date == date(2024, 2, 15)

    def test_short_free_row(self):
        """Test missing columns read as the free plan."""
        status = GoogleSheetsHostedStore._cells_to_subscription(["joao@example.com", "João"])
        assert status.is_premium is False
        assert status.plan_name == PlanName.FREE
        assert status.price is None

    def test_premium_flag_without_plan(self):
        """Test a premium flag alone implies the premium plan."""
        status = GoogleSheetsHostedStore._cells_to_subscription(["x@example.com", "", "sim"])
        assert status.is_premium is True
        assert status.plan_name == PlanName.PREMIUM

    async def test_fetch_and_update_by_email(self):
        """Test lookups ignore case and updates write columns C to H."""
        users = FakeWorksheet(USERS_COLUMNS, rows=[["Maria@Example.com", "Maria", "FALSE"]])
        sheets_store = GoogleSheetsHostedStore(FakeSheetsClient(users=users))

        updated = await sheets_store.update_subscription(
            "maria@example.com",
            SubscriptionStatus(is_premium=True, plan_name=PlanName.PREMIUM, price=Decimal("19.90")),
        )

        assert updated is True
        assert users.rows[1][:5] == ["Maria@Example.com", "Maria", "TRUE", "premium", "19.90"]
        status = await sheets_store.fetch_subscription("MARIA@EXAMPLE.COM")
        assert status.is_premium is True

    async def test_unknown_email(self, sheets_store):
        """Test an unknown account is neither found nor created."""
        assert await sheets_store.fetch_subscription("ghost@example.com") is None
        assert await sheets_store.update_subscription("ghost@example.com", SubscriptionStatus.free()) is False


class TestWriteOrdering:
    """Tests for pushes whose write outlives the sync timeout."""

    async def test_late_write_never_overwrites_a_newer_one(self):
        """Test a timed-out write lands before the next push, not after it."""
        client = FakeSheetsClient(user_data=FakeWorksheet(USER_DATA_COLUMNS, write_delays=[0.6]))
        sheets_store = GoogleSheetsHostedStore(client, retry_budget_seconds=0.3)
        sync = SyncService(sheets_store, SyncSettings(enabled=True, timeout_seconds=0.3))
        queue = BackgroundSyncQueue(sync, user_id="u-1")

        queue.enqueue(EntityType.TASK, [{"v": "old"}])
        queue.enqueue(EntityType.TASK, [{"v": "new"}])
        await queue.join()

        assert queue.failed == 1
        assert queue.pushed == 1
        row = await sheets_store.fetch_user_row("u-1")
        assert row.tasks == [{"v": "new"}]
        await queue.stop()
