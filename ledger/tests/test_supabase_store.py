"""
Tests for the Supabase storage adapter against a fake client.
"""

import pytest
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import MagicMock
from uuid import UUID

from ledger.config import Settings
from ledger.errors import BackendUnavailableError, NotFoundError
from ledger.models import Transaction, TransactionStatus, TransactionType
from ledger.service import LedgerService
from ledger.supabase_store import SupabaseStorage


USER_ID = UUID("550e8400-e29b-41d4-a716-446655440000")
TX_ID = UUID("11111111-1111-1111-1111-111111111111")


class FakeQuery:
    """Chainable stand-in for a postgrest query builder."""

    def __init__(self, data=None, error=None):
        self.data = data or []
        self.error = error
        self.calls = []

    def __getattr__(self, name):
        def method(*args, **kwargs):
            self.calls.append((name, args))
            return self
        return method

    def execute(self):
        if self.error:
            raise self.error
        return SimpleNamespace(data=self.data)


def fake_client(query):
    client = MagicMock()
    client.table.return_value = query
    return client


def row(**overrides):
    data = {
        "id": str(TX_ID),
        "user_id": str(USER_ID),
        "amount": "25.00",
        "type": "deposit",
        "status": "completed",
        "is_demo": False,
        "created_at": "2024-01-01T00:00:00+00:00",
        "updated_at": None,
        "details": {},
    }
    data.update(overrides)
    return data


class TestTransactions:
    """Tests for the transactions table."""

    def test_get_transaction_parses_row(self):
        """Rows come back as typed transactions."""
        query = FakeQuery([row()])
        storage = SupabaseStorage(fake_client(query))

        transaction = storage.get_transaction(TX_ID)

        assert transaction.amount == Decimal("25.00")
        assert transaction.type == TransactionType.DEPOSIT
        assert ("eq", ("id", str(TX_ID))) in query.calls

    def test_query_filters(self):
        """Filters are pushed down to the query."""
        query = FakeQuery([])
        storage = SupabaseStorage(fake_client(query))

        storage.query_transactions(user_id=USER_ID, is_demo=True, type=TransactionType.WITHDRAWAL,
                                   status=TransactionStatus.PENDING, limit=10)

        assert ("eq", ("user_id", str(USER_ID))) in query.calls
        assert ("eq", ("is_demo", True)) in query.calls
        assert ("eq", ("type", "withdrawal")) in query.calls
        assert ("eq", ("status", "pending")) in query.calls
        assert ("order", ("created_at",)) in query.calls
        assert ("limit", (10,)) in query.calls

    def test_privileged_insert_uses_service_client(self):
        """Privileged writes go through the service-role client."""
        user_query, service_query = FakeQuery(), FakeQuery()
        client, service = fake_client(user_query), fake_client(service_query)
        storage = SupabaseStorage(client, service)
        record = Transaction(user_id=USER_ID, amount=Decimal("100.00"), type=TransactionType.DEPOSIT,
                             status=TransactionStatus.COMPLETED, is_demo=True)

        storage.insert_transaction(record, privileged=True)

        service.table.assert_called_with("transactions")
        client.table.assert_not_called()
        name, args = service_query.calls[0]
        assert name == "insert"
        assert args[0]["amount"] == "100.00"

    def test_backend_failure(self):
        """Client errors surface as BackendUnavailableError."""
        storage = SupabaseStorage(fake_client(FakeQuery(error=ConnectionError("timeout"))))

        with pytest.raises(BackendUnavailableError):
            storage.query_transactions(user_id=USER_ID)

    def test_update_missing_row(self):
        """An update touching no rows means the row does not exist."""
        storage = SupabaseStorage(fake_client(FakeQuery([])))

        with pytest.raises(NotFoundError):
            storage.update_transaction_status(TX_ID, TransactionStatus.COMPLETED)

    def test_balance_from_backend_rows(self):
        """The ledger derives balances from backend rows."""
        rows = [
            row(),
            row(id="22222222-2222-2222-2222-222222222222", type="purchase", amount="5.50"),
            row(id="33333333-3333-3333-3333-333333333333", type="deposit", status="pending", amount="90.00"),
        ]
        ledger = LedgerService(SupabaseStorage(fake_client(FakeQuery(rows))), Settings())

        assert ledger.compute_balance(USER_ID, is_demo=False) == Decimal("19.50")

    def test_null_details_and_flags(self):
        """NULL details and is_demo columns read as empty details on the real side."""
        rows = [
            row(details=None, is_demo=None),
            row(id="22222222-2222-2222-2222-222222222222", type="winnings", amount="4.50",
                details='{"round_id": "abc", "game": "dice"}'),
        ]
        query = FakeQuery(rows)
        ledger = LedgerService(SupabaseStorage(fake_client(query)), Settings())

        assert ledger.compute_balance(USER_ID, is_demo=False) == Decimal("29.50")
        assert ("or_", ("is_demo.eq.false,is_demo.is.null",)) in query.calls
        first, second = ledger.storage.query_transactions(user_id=USER_ID)
        assert first.details == {}
        assert first.is_demo is False
        assert second.details == {"round_id": "abc", "game": "dice"}
        assert ledger.find_by_detail(USER_ID, False, "round_id", "abc") == [second]


class TestProfiles:
    """Tests for the profiles table."""

    def test_profile_id_maps_to_user_id(self):
        """The profiles primary key is the user id."""
        query = FakeQuery([{"id": str(USER_ID), "account_type": "demo", "is_admin": False, "email": None,
                            "created_at": "2024-01-01T00:00:00+00:00"}])
        storage = SupabaseStorage(fake_client(query))

        account = storage.get_account(USER_ID)

        assert account.user_id == USER_ID
        assert account.is_demo

    def test_missing_profile(self):
        """No row means no account yet."""
        storage = SupabaseStorage(fake_client(FakeQuery([])))

        assert storage.get_account(USER_ID) is None
