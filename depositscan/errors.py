"""
Error taxonomy for the deposit scanner.

  NotFound (order / deposit address)  → task skipped, not retried
  FeedError (transport / provider / validation) → task failed, queue retries
  MissingFeeDataError                 → one transaction skipped
  CreditError (ledger)                → one transaction failed, others continue
"""


class ScanError(Exception):
    """Base class for every error raised by the scanner."""


# ---------------------------------------------------------------------------
# NotFound
# ---------------------------------------------------------------------------

class NotFoundError(ScanError):
    """Order or its deposit address is absent. The task is skipped."""

    reason = "not_found"


class OrderNotFoundError(NotFoundError):
    reason = "order_not_found"

    def __init__(self, order_id: str):
        super().__init__(f"Order {order_id} not found")
        self.order_id = order_id


class NoDepositAddressError(NotFoundError):
    reason = "no_deposit_address"

    def __init__(self, order_id: str):
        super().__init__(f"Order {order_id} has no deposit address")
        self.order_id = order_id


# ---------------------------------------------------------------------------
# Feed
# ---------------------------------------------------------------------------

class FeedError(ScanError):
    """Transaction feed could not produce a usable list."""


class FeedTransportError(FeedError):
    """Timeout, connection failure or non-2xx HTTP status."""

    def __init__(self, message: str, status: int = None):
        super().__init__(message)
        self.status = status


class FeedProviderError(FeedError):
    """Provider answered with status "0" and a non-empty error result."""

    def __init__(self, result):
        super().__init__(f"Received error {result} from Etherscan API")
        self.result = result


class FeedValidationError(FeedError):
    """Response body does not match the expected txlist shape."""

    def __init__(self, message: str, errors: list = None):
        super().__init__(message)
        self.errors = errors or []


# ---------------------------------------------------------------------------
# Per-transaction
# ---------------------------------------------------------------------------

class MissingFeeDataError(ScanError):
    """Transaction has no gasPrice (EIP-1559 sweep); fee model unsupported."""

    def __init__(self, tx_hash: str):
        super().__init__(f"Unsupported EIP-1559 sweep transaction {tx_hash}: gasPrice missing")
        self.tx_hash = tx_hash


class CreditError(ScanError):
    """Credit could not be applied for one transaction."""


class LedgerError(CreditError):
    """Ledger call failed (transport, HTTP status, GraphQL errors, bad body)."""
