"""
Etherscan account txlist client — fetches normal transactions for one address.

API: GET {ETHERSCAN_API_URL}?module=account&action=txlist&address=..&sort=desc&apikey=..
Single page only (no pagination); results come back most-recent-first.

Response envelope:
  status:  "1" ok, "0" error or empty
  message: "OK" | "NOTOK" | "No transactions found"
  result:  list of tx dicts, or an error string when status == "0"

Per-tx fields we use (all strings on the wire):
  hash, from, to ("" for contract creation), value (wei), timeStamp (unix s),
  gasPrice (wei, may be missing on some tx types), gas (limit), gasUsed
"""

import asyncio
from typing import List, Optional

import aiohttp
from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator

from depositscan.errors import FeedProviderError, FeedTransportError, FeedValidationError
from depositscan.log import log

HTTP_TIMEOUT_SEC = 15


def _uint(v) -> int:
    """Decode a base-10 unsigned integer string. No floats, no hex, no signs."""
    if isinstance(v, bool):
        raise ValueError("expected an integer string")
    if isinstance(v, int):
        if v < 0:
            raise ValueError("must be non-negative")
        return v
    if not isinstance(v, str) or not v.isdigit():
        raise ValueError(f"expected a non-negative integer string, got {v!r}")
    return int(v)


class TransactionRecord(BaseModel):
    """One normal transaction as listed by the feed. Immutable once decoded."""
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    hash: str = Field(min_length=1)
    from_address: str = Field(alias="from")
    to: Optional[str] = None
    value: int
    timestamp: int = Field(alias="timeStamp")
    gas_price: Optional[int] = Field(default=None, alias="gasPrice")
    gas: int
    gas_used: int = Field(alias="gasUsed")

    @field_validator("to", mode="before")
    @classmethod
    def _empty_to_is_creation(cls, v):
        return v or None

    @field_validator("gas_price", mode="before")
    @classmethod
    def _empty_gas_price(cls, v):
        if v is None or v == "":
            return None
        return _uint(v)

    @field_validator("value", "timestamp", "gas", "gas_used", mode="before")
    @classmethod
    def _uint_fields(cls, v):
        return _uint(v)


_records_adapter = TypeAdapter(List[TransactionRecord])


def parse_txlist_response(data) -> List[TransactionRecord]:
    """Decode a txlist response body into records.

    Raises FeedProviderError when the provider reports an error and
    FeedValidationError when the body does not match the expected shape.
    """
    if not isinstance(data, dict) or "status" not in data or "result" not in data:
        raise FeedValidationError("txlist response missing status/result envelope")

    status = str(data["status"])
    result = data["result"]

    if status == "0" and result:
        raise FeedProviderError(result)

    if result is None or result == "":
        return []

    try:
        return _records_adapter.validate_python(result)
    except ValidationError as e:
        raise FeedValidationError(
            f"txlist result failed validation ({e.error_count()} errors)",
            errors=e.errors(include_url=False),
        ) from e


class EtherscanClient:
    """Async Etherscan txlist client. One request per fetch, never retries."""

    def __init__(
        self,
        api_key: str,
        api_url: str = "https://api.etherscan.io/api",
        timeout: float = HTTP_TIMEOUT_SEC,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.api_key = api_key
        self.api_url = api_url
        self.timeout = timeout
        self._session = session
        self._owns_session = session is None
        # Metrics
        self._fetch_count = 0
        self._fetch_errors = 0

    async def _ensure_session(self):
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(total=self.timeout)
            self._session = aiohttp.ClientSession(timeout=timeout)
            self._owns_session = True

    async def close(self):
        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()

    async def fetch(self, address: str) -> List[TransactionRecord]:
        """Return transactions for `address`, most-recent-first.

        Raises FeedTransportError, FeedProviderError or FeedValidationError.
        """
        await self._ensure_session()
        params = {
            "module": "account",
            "action": "txlist",
            "address": address,
            "sort": "desc",
            "apikey": self.api_key,
        }

        try:
            async with self._session.get(self.api_url, params=params) as resp:
                if resp.status < 200 or resp.status >= 300:
                    self._fetch_errors += 1
                    raise FeedTransportError(f"HTTP {resp.status} from Etherscan API", status=resp.status)
                try:
                    data = await resp.json(content_type=None)
                except ValueError as e:
                    self._fetch_errors += 1
                    raise FeedValidationError(f"Etherscan returned non-JSON body: {e}") from e
        except asyncio.TimeoutError as e:
            self._fetch_errors += 1
            raise FeedTransportError(f"Timeout fetching txlist ({self.timeout}s)") from e
        except aiohttp.ClientError as e:
            self._fetch_errors += 1
            raise FeedTransportError(f"Error fetching txlist: {e}") from e

        try:
            records = parse_txlist_response(data)
        except (FeedProviderError, FeedValidationError):
            self._fetch_errors += 1
            raise

        self._fetch_count += 1
        log("FEED", f"Fetched {len(records)} txs for {address[:10]}...", "DEBUG")
        return records

    def metrics(self) -> dict:
        return {
            "fetch_count": self._fetch_count,
            "fetch_errors": self._fetch_errors,
        }
