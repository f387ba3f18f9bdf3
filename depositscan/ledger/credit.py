"""
Credit applier — turns a settlement into exactly one ledger deposit.

The unique id is a pure function of (method id, tx hash), so every scan of
the same sweep submits the same id and the ledger stores it once.
"""

import enum

from depositscan.deposits.settlement import format_ether
from depositscan.errors import CreditError


class CreditOutcome(enum.Enum):
    CREDITED = "credited"
    ALREADY_CREDITED = "already_credited"


def deposit_unique_id(method_id: str, tx_hash: str) -> str:
    """Deterministic idempotency key for a native deposit."""
    return f"{method_id.lower()}:{tx_hash.lower()}"


def _amount_string(total_wei: int) -> str:
    """Whole-ether decimal string with every significant digit kept."""
    text = format_ether(total_wei)
    return text[:-2] if text.endswith(".0") else text


class CreditApplier:
    """Submits deposit credits to the ledger. Holds no state between calls."""

    def __init__(self, ledger):
        self.ledger = ledger

    async def apply(self, order_id: str, tx_hash: str, method_id: str, total_wei: int) -> CreditOutcome:
        """Credit `total_wei` to `order_id` for `tx_hash`.

        ALREADY_CREDITED is a success: the same sweep was stored by an
        earlier (or concurrent) scan. Raises CreditError on ledger failure.
        """
        if total_wei <= 0:
            raise CreditError(f"Refusing to credit non-positive amount {total_wei} for {tx_hash}")

        unique_id = deposit_unique_id(method_id, tx_hash)
        try:
            created = await self.ledger.maybe_create_deposit(
                order_id=order_id,
                txid=tx_hash,
                amount=_amount_string(total_wei),
                unique_id=unique_id,
            )
        except CreditError:
            raise
        except Exception as e:
            raise CreditError(f"Credit for {tx_hash} failed: {e}") from e

        return CreditOutcome.CREDITED if created else CreditOutcome.ALREADY_CREDITED
