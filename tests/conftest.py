"""
Shared builders and in-memory fakes for the deposit scanner tests.
"""

import asyncio
from datetime import datetime, timezone

import pytest

from depositscan.db.client import Order
from depositscan.errors import LedgerError
from depositscan.feed.etherscan import TransactionRecord

ACCOUNT = "0x1111111111111111111111111111111111111111"
DEPOSIT = "0x2222222222222222222222222222222222222222"
OTHER = "0x3333333333333333333333333333333333333333"


def raw_tx(n=1, **overrides) -> dict:
    """A txlist entry as Etherscan returns it (all strings)."""
    tx = {
        "blockNumber": "19000000",
        "timeStamp": "1300",
        "hash": f"0x{n:064x}",
        "nonce": "0",
        "from": DEPOSIT,
        "to": ACCOUNT,
        "value": "1000",
        "gas": "21000",
        "gasPrice": "10",
        "gasUsed": "21000",
        "isError": "0",
        "input": "0x",
    }
    tx.update(overrides)
    return tx


def make_tx(n=1, **overrides) -> TransactionRecord:
    return TransactionRecord.model_validate(raw_tx(n, **overrides))


def order_at(ts: int, order_id="order-1", address=DEPOSIT) -> Order:
    return Order(id=order_id, created_at=datetime.fromtimestamp(ts, tz=timezone.utc), deposit_address=address)


class FakeLedger:
    """Ledger with a unique constraint on uniqueId."""

    def __init__(self, fail_txids=(), delay: float = 0.0):
        self.deposits = {}
        self.calls = []
        self.fail_txids = set(fail_txids)
        self.delay = delay

    async def maybe_create_deposit(self, order_id, txid, amount, unique_id):
        self.calls.append({"orderId": order_id, "txid": txid, "amount": amount, "uniqueId": unique_id})
        if self.delay:
            await asyncio.sleep(self.delay)
        if txid in self.fail_txids:
            raise LedgerError(f"HTTP 503 from ledger")
        if unique_id in self.deposits:
            return False
        self.deposits[unique_id] = {"orderId": order_id, "txid": txid, "amount": amount}
        return True


class FakeFeed:
    def __init__(self, records=None, error: Exception = None):
        self.records = list(records or [])
        self.error = error
        self.addresses = []

    async def fetch(self, address):
        self.addresses.append(address)
        if self.error:
            raise self.error
        return list(self.records)


class FakeOrders:
    def __init__(self, *orders):
        self.orders = {o.id: o for o in orders}

    async def get_order(self, order_id):
        return self.orders.get(order_id)


class FakeResponse:
    def __init__(self, status=200, body=None, json_error: Exception = None):
        self.status = status
        self._body = body
        self._json_error = json_error

    async def json(self, content_type="application/json"):
        if self._json_error:
            raise self._json_error
        return self._body

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False


class FakeSession:
    """Stand-in for aiohttp.ClientSession: records requests, replays one response."""

    def __init__(self, response: FakeResponse = None, error: Exception = None):
        self.response = response or FakeResponse()
        self.error = error
        self.requests = []
        self.closed = False

    def _request(self, method, url, **kwargs):
        self.requests.append({"method": method, "url": url, **kwargs})
        if self.error:
            raise self.error
        return self.response

    def get(self, url, **kwargs):
        return self._request("GET", url, **kwargs)

    def post(self, url, **kwargs):
        return self._request("POST", url, **kwargs)

    async def close(self):
        self.closed = True


@pytest.fixture
def ledger():
    return FakeLedger()
