"""Order store row mapping and retry behavior."""

from datetime import datetime, timezone
from types import SimpleNamespace

import pytest

from depositscan.db import client as db_client
from depositscan.db.client import OrderStore, order_from_row


def test_row_with_deposit_address():
    order = order_from_row({
        "id": "order-1",
        "created_at": "2024-03-01T12:00:00.123456+00:00",
        "deposit_address": {"address": "0xabc"},
    })
    assert order.id == "order-1"
    assert order.created_at == datetime(2024, 3, 1, 12, 0, 0, 123456, tzinfo=timezone.utc)
    assert order.deposit_address == "0xabc"


def test_row_without_deposit_address():
    order = order_from_row({"id": 7, "created_at": "2024-03-01T12:00:00Z", "deposit_address": None})
    assert order.id == "7"
    assert order.deposit_address is None


def test_naive_timestamp_is_utc_and_list_embed_is_accepted():
    order = order_from_row({
        "id": "order-1",
        "created_at": "2024-03-01T12:00:00",
        "deposit_address": [{"address": "0xdef"}],
    })
    assert order.created_at.tzinfo == timezone.utc
    assert order.deposit_address == "0xdef"


class FakeQuery:
    """Chainable stand-in for a supabase table query."""

    def __init__(self, table, rows, failures):
        self.table = table
        self.rows = rows
        self.failures = failures
        self.filters = {}

    def select(self, columns):
        self.table.columns = columns
        return self

    def eq(self, column, value):
        self.filters[column] = value
        return self

    def limit(self, n):
        return self

    def execute(self):
        if self.failures:
            raise self.failures.pop(0)
        data = [r for r in self.rows if all(r.get(k) == v for k, v in self.filters.items())]
        return SimpleNamespace(data=data)


class FakeClient:
    def __init__(self, rows, failures=()):
        self.rows = rows
        self.failures = list(failures)
        self.columns = None

    def table(self, name):
        assert name == "orders"
        return FakeQuery(self, self.rows, self.failures)


ROW = {"id": "order-1", "created_at": "2024-03-01T12:00:00+00:00", "deposit_address": {"address": "0xabc"}}


@pytest.mark.asyncio
async def test_get_order_selects_embedded_address():
    client = FakeClient([ROW])
    order = await OrderStore(client).get_order("order-1")
    assert order.deposit_address == "0xabc"
    assert "deposit_addresses(address)" in client.columns


@pytest.mark.asyncio
async def test_get_order_missing_returns_none():
    assert await OrderStore(FakeClient([ROW])).get_order("order-2") is None


@pytest.mark.asyncio
async def test_transient_error_is_retried(monkeypatch):
    monkeypatch.setattr(db_client, "DB_RETRY_BASE_DELAY", 0)
    store = OrderStore(FakeClient([ROW], failures=[ConnectionError("connection reset by peer")]))
    order = await store.get_order("order-1")
    assert order.id == "order-1"
    assert store.metrics()["retries"] == 1


@pytest.mark.asyncio
async def test_non_transient_error_propagates():
    store = OrderStore(FakeClient([ROW], failures=[ValueError("invalid input syntax for type uuid")]))
    with pytest.raises(ValueError):
        await store.get_order("order-1")
