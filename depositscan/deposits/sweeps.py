"""
Sweep filter — narrows a raw txlist down to sweeps into our account.

A candidate must:
  1. have a `to` (no contract creation)
  2. be sent to the consolidation account (case-insensitive)
  3. carry a positive value
  4. be mined at/after the order was created (deposit addresses get
     re-assigned; an older transfer belongs to the previous order)

Survivors keep the feed's order (most-recent-first) and are capped.
"""

from datetime import datetime
from typing import Iterable, List, Union

from depositscan.feed.etherscan import TransactionRecord

MAX_CANDIDATES = 10

# Rejection reasons (returned by rejection_reason, used in logs)
REASON_CONTRACT_CREATION = "contract_creation"
REASON_NOT_SWEEP = "not_sweep"
REASON_ZERO_VALUE = "zero_value"
REASON_BEFORE_ORDER = "before_order"


def _to_epoch_seconds(created_at: Union[datetime, int, float]) -> float:
    if isinstance(created_at, datetime):
        return created_at.timestamp()
    return float(created_at)


def rejection_reason(tx: TransactionRecord, account_address: str,
                     order_created_at: Union[datetime, int, float]):
    """Return why `tx` is not a candidate, or None if it is one."""
    if not tx.to:
        return REASON_CONTRACT_CREATION
    if tx.to.lower() != account_address.lower():
        return REASON_NOT_SWEEP
    if tx.value <= 0:
        return REASON_ZERO_VALUE
    if tx.timestamp < _to_epoch_seconds(order_created_at):
        return REASON_BEFORE_ORDER
    return None


def select_sweeps(
    records: Iterable[TransactionRecord],
    account_address: str,
    order_created_at: Union[datetime, int, float],
    limit: int = MAX_CANDIDATES,
) -> List[TransactionRecord]:
    """Eligible sweeps to `account_address`, first `limit` in feed order."""
    selected = []
    for tx in records:
        if rejection_reason(tx, account_address, order_created_at) is None:
            selected.append(tx)
            if len(selected) >= limit:
                break
    return selected
