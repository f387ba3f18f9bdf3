"""
Supabase order store — read-only order + deposit address lookups.
Includes retry on transient errors, operation timeouts, and metrics.

Schema used:
  orders(id, created_at, deposit_address_id)
  deposit_addresses(id, address)
"""

import asyncio
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from supabase import create_client, Client

from depositscan.log import log

DB_OPERATION_TIMEOUT = 10.0    # seconds per DB operation
DB_RETRY_ATTEMPTS = 3          # retries on transient errors
DB_RETRY_BASE_DELAY = 0.5     # seconds, exponential backoff base

# Transient error substrings that trigger retry
_TRANSIENT_ERRORS = (
    "timeout", "connection", "unavailable", "502", "503", "504",
    "broken pipe", "reset by peer", "socket", "network",
    "too many requests", "rate limit",
)

ORDER_COLUMNS = "id, created_at, deposit_address:deposit_addresses(address)"


@dataclass(frozen=True)
class Order:
    id: str
    created_at: datetime
    deposit_address: Optional[str] = None


def init_supabase(url: str, key: str) -> Client:
    """Initialize and return a Supabase client."""
    return create_client(url, key)


async def health_check(client: Client) -> bool:
    """Health check — actually queries Supabase to verify connectivity."""
    try:
        if client is None or not hasattr(client, "table"):
            return False
        result = await asyncio.to_thread(
            lambda: client.table("orders").select("id", count="exact").limit(0).execute()
        )
        return result is not None
    except Exception as e:
        log("DB", f"Health check failed: {e}", "WARNING")
        return False


def _is_transient(e: Exception) -> bool:
    """Check if an exception is transient and worth retrying."""
    msg = str(e).lower()
    return any(kw in msg for kw in _TRANSIENT_ERRORS)


def _parse_timestamp(raw) -> datetime:
    """Parse a PostgREST timestamp into an aware UTC datetime."""
    if isinstance(raw, datetime):
        dt = raw
    else:
        text = str(raw).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        dt = datetime.fromisoformat(text)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def order_from_row(row: dict) -> Order:
    """Map an `orders` row (with embedded deposit_address) to an Order."""
    embedded = row.get("deposit_address")
    # to-one embeds come back as a dict, but tolerate list form
    if isinstance(embedded, list):
        embedded = embedded[0] if embedded else None
    address = embedded.get("address") if isinstance(embedded, dict) else None
    return Order(
        id=str(row["id"]),
        created_at=_parse_timestamp(row["created_at"]),
        deposit_address=address or None,
    )


class OrderStore:
    """Async wrapper around the Supabase client for order lookups.

    All operations retry on transient errors with exponential backoff
    and have a per-operation timeout.
    """

    def __init__(self, client: Client):
        self.client = client
        # Metrics
        self._op_count = 0
        self._op_errors = 0
        self._op_retries = 0
        self._total_latency_ms = 0.0

    async def _exec(self, fn, label: str = "db_op"):
        """Execute a Supabase operation with retry, timeout, and metrics.

        Args:
            fn: callable returning a Supabase execute() result
            label: operation name for logging
        """
        last_err = None
        for attempt in range(DB_RETRY_ATTEMPTS):
            t0 = time.monotonic()
            try:
                result = await asyncio.wait_for(
                    asyncio.to_thread(fn),
                    timeout=DB_OPERATION_TIMEOUT,
                )
                latency = (time.monotonic() - t0) * 1000
                self._op_count += 1
                self._total_latency_ms += latency
                return result
            except asyncio.TimeoutError:
                self._op_errors += 1
                last_err = RuntimeError(f"DB operation '{label}' timed out after {DB_OPERATION_TIMEOUT}s")
                self._op_retries += 1
            except Exception as e:
                self._op_errors += 1
                last_err = e
                if _is_transient(e) and attempt < DB_RETRY_ATTEMPTS - 1:
                    delay = DB_RETRY_BASE_DELAY * (2 ** attempt)
                    log("DB", f"{label} transient error (attempt {attempt+1}): {e}. "
                              f"Retry in {delay:.1f}s", "WARNING")
                    self._op_retries += 1
                    await asyncio.sleep(delay)
                    continue
                raise  # non-transient or last attempt

        raise last_err

    async def get_order(self, order_id: str) -> Optional[Order]:
        """Get a single order with its deposit address, or None."""
        result = await self._exec(
            lambda: self.client.table("orders").select(ORDER_COLUMNS).eq("id", order_id).limit(1).execute(),
            f"get_order({order_id[:8]})",
        )
        return order_from_row(result.data[0]) if result.data else None

    def metrics(self) -> dict:
        avg_lat = (self._total_latency_ms / max(self._op_count, 1))
        return {
            "operations": self._op_count,
            "errors": self._op_errors,
            "retries": self._op_retries,
            "avg_latency_ms": round(avg_lat, 1),
        }
