"""
Internal ledger GraphQL client — the one mutation the scanner needs.

mutation maybeInternalCreateDeposit($input: InternalCreateDepositInput!)
  → Boolean  (true = new deposit stored, false = uniqueId already existed)

The ledger enforces uniqueness on `uniqueId`; that constraint is what makes
repeat scans of the same order harmless.
"""

import asyncio
from typing import Optional

import aiohttp

from depositscan.errors import LedgerError

HTTP_TIMEOUT_SEC = 15

MAYBE_CREATE_DEPOSIT = """
mutation maybeInternalCreateDeposit($input: InternalCreateDepositInput!) {
  maybeInternalCreateDeposit(input: $input)
}
""".strip()


class LedgerClient:
    """Async GraphQL client for the internal ledger. Construct once, inject."""

    def __init__(
        self,
        url: str,
        api_token: str = "",
        timeout: float = HTTP_TIMEOUT_SEC,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.url = url
        self.api_token = api_token
        self.timeout = timeout
        self._session = session
        self._owns_session = session is None
        # Metrics
        self._call_count = 0
        self._call_errors = 0

    async def _ensure_session(self):
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(total=self.timeout)
            headers = {"Content-Type": "application/json"}
            if self.api_token:
                headers["Authorization"] = f"Bearer {self.api_token}"
            self._session = aiohttp.ClientSession(timeout=timeout, headers=headers)
            self._owns_session = True

    async def close(self):
        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()

    async def _execute(self, query: str, variables: dict) -> dict:
        await self._ensure_session()
        self._call_count += 1
        try:
            async with self._session.post(self.url, json={"query": query, "variables": variables}) as resp:
                if resp.status < 200 or resp.status >= 300:
                    self._call_errors += 1
                    raise LedgerError(f"HTTP {resp.status} from ledger")
                try:
                    body = await resp.json(content_type=None)
                except ValueError as e:
                    self._call_errors += 1
                    raise LedgerError(f"Ledger returned non-JSON body: {e}") from e
        except asyncio.TimeoutError as e:
            self._call_errors += 1
            raise LedgerError(f"Ledger call timed out after {self.timeout}s") from e
        except aiohttp.ClientError as e:
            self._call_errors += 1
            raise LedgerError(f"Ledger call failed: {e}") from e

        if not isinstance(body, dict):
            self._call_errors += 1
            raise LedgerError("Ledger response is not a JSON object")
        if body.get("errors"):
            self._call_errors += 1
            messages = "; ".join(str(err.get("message", err)) if isinstance(err, dict) else str(err)
                                 for err in body["errors"])
            raise LedgerError(f"Ledger GraphQL error: {messages}")
        data = body.get("data")
        if not isinstance(data, dict):
            self._call_errors += 1
            raise LedgerError("Ledger response has no data")
        return data

    async def maybe_create_deposit(self, order_id: str, txid: str, amount: str, unique_id: str) -> bool:
        """Create a deposit credit unless `unique_id` already exists.

        Returns True if a new credit was stored, False if it already existed.
        """
        data = await self._execute(MAYBE_CREATE_DEPOSIT, {
            "input": {
                "orderId": order_id,
                "tx": {"txid": txid},
                "amount": amount,
                "uniqueId": unique_id,
            },
        })
        created = data.get("maybeInternalCreateDeposit")
        if not isinstance(created, bool):
            self._call_errors += 1
            raise LedgerError(f"Unexpected maybeInternalCreateDeposit result: {created!r}")
        return created

    def metrics(self) -> dict:
        return {
            "calls": self._call_count,
            "errors": self._call_errors,
        }
