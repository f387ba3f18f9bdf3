"""Ledger GraphQL client and credit applier."""

import asyncio

import aiohttp
import pytest
from conftest import FakeLedger, FakeResponse, FakeSession

from depositscan.errors import CreditError, LedgerError
from depositscan.ledger.credit import CreditApplier, CreditOutcome, deposit_unique_id
from depositscan.ledger.graphql import LedgerClient

TX = "0xAbC0000000000000000000000000000000000000000000000000000000000001"


# ---------------------------------------------------------------------------
# Unique id
# ---------------------------------------------------------------------------

def test_unique_id_is_deterministic_and_case_normalized():
    assert deposit_unique_id("eth", TX) == deposit_unique_id("ETH", TX.lower())
    assert deposit_unique_id("eth", TX) == f"eth:{TX.lower()}"


def test_unique_id_differs_per_method():
    assert deposit_unique_id("eth", TX) != deposit_unique_id("ethbase", TX)


# ---------------------------------------------------------------------------
# CreditApplier
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_apply_twice_credits_once(ledger):
    applier = CreditApplier(ledger)

    first = await applier.apply("order-1", TX, "eth", 42500)
    second = await applier.apply("order-1", TX, "eth", 42500)

    assert (first, second) == (CreditOutcome.CREDITED, CreditOutcome.ALREADY_CREDITED)
    assert len(ledger.deposits) == 1
    assert ledger.calls[0] == {
        "orderId": "order-1",
        "txid": TX,
        "amount": "0.0000000000000425",
        "uniqueId": f"eth:{TX.lower()}",
    }


@pytest.mark.asyncio
async def test_concurrent_apply_credits_once():
    ledger = FakeLedger(delay=0.01)
    applier = CreditApplier(ledger)

    outcomes = await asyncio.gather(*(applier.apply("order-1", TX, "eth", 10**18) for _ in range(5)))

    assert outcomes.count(CreditOutcome.CREDITED) == 1
    assert outcomes.count(CreditOutcome.ALREADY_CREDITED) == 4
    assert ledger.deposits[f"eth:{TX.lower()}"]["amount"] == "1"


@pytest.mark.asyncio
@pytest.mark.parametrize("total_wei, amount", [
    (10**19, "10"),
    (10**28 + 1, "10000000000.000000000000000001"),
    (123456789 * 10**27 + 1, "123456789000000000.000000000000000001"),
])
async def test_apply_sends_every_significant_digit(ledger, total_wei, amount):
    await CreditApplier(ledger).apply("order-1", TX, "eth", total_wei)
    assert ledger.calls[0]["amount"] == amount


@pytest.mark.asyncio
async def test_apply_propagates_ledger_error():
    applier = CreditApplier(FakeLedger(fail_txids={TX}))
    with pytest.raises(LedgerError):
        await applier.apply("order-1", TX, "eth", 1)


@pytest.mark.asyncio
async def test_apply_wraps_unexpected_errors():
    class BrokenLedger:
        async def maybe_create_deposit(self, **kwargs):
            raise KeyError("orderId")

    with pytest.raises(CreditError):
        await CreditApplier(BrokenLedger()).apply("order-1", TX, "eth", 1)


@pytest.mark.asyncio
async def test_apply_refuses_non_positive_amount(ledger):
    with pytest.raises(CreditError):
        await CreditApplier(ledger).apply("order-1", TX, "eth", 0)
    assert ledger.calls == []


# ---------------------------------------------------------------------------
# LedgerClient
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_client_posts_mutation_and_returns_flag():
    session = FakeSession(FakeResponse(200, {"data": {"maybeInternalCreateDeposit": True}}))
    client = LedgerClient("https://ledger.example/graphql", session=session)

    created = await client.maybe_create_deposit("order-1", TX, "0.5", "eth:0xabc")

    assert created is True
    req = session.requests[0]
    assert req["method"] == "POST"
    assert "maybeInternalCreateDeposit" in req["json"]["query"]
    assert req["json"]["variables"] == {
        "input": {"orderId": "order-1", "tx": {"txid": TX}, "amount": "0.5", "uniqueId": "eth:0xabc"},
    }


@pytest.mark.asyncio
async def test_client_false_means_already_existed():
    session = FakeSession(FakeResponse(200, {"data": {"maybeInternalCreateDeposit": False}}))
    client = LedgerClient("https://ledger.example/graphql", session=session)
    assert await client.maybe_create_deposit("order-1", TX, "0.5", "k") is False


@pytest.mark.asyncio
@pytest.mark.parametrize("response,error", [
    (FakeResponse(500, {}), None),
    (FakeResponse(200, {"errors": [{"message": "order not found"}], "data": None}), None),
    (FakeResponse(200, {"data": None}), None),
    (FakeResponse(200, {"data": {"maybeInternalCreateDeposit": "yes"}}), None),
    (FakeResponse(200, ["not", "an", "object"]), None),
    (FakeResponse(200, json_error=ValueError("bad json")), None),
    (None, asyncio.TimeoutError()),
    (None, aiohttp.ClientConnectionError("reset by peer")),
])
async def test_client_failures_raise_ledger_error(response, error):
    client = LedgerClient("https://ledger.example/graphql", session=FakeSession(response, error=error))
    with pytest.raises(LedgerError):
        await client.maybe_create_deposit("order-1", TX, "0.5", "k")
    assert client.metrics()["errors"] == 1
