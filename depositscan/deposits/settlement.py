"""
Settlement amount for a sweep: value + gas cost paid by the deposit address.

The sweep moved `value` to us and burned gas from the same balance, so the
customer's deposit was value + fee. All math is on wei integers straight
from the feed; Decimal is only used for the 18-decimal display.

Gas quantity policy:
  gas_limit (default) — uses the feed's `gas` field. This is the behavior
                        existing credits were computed with. It overstates
                        the fee whenever gasUsed < gas limit.
  gas_used            — uses `gasUsed`, the fee actually burned. Opt-in.
"""

from dataclasses import dataclass
from decimal import Decimal

from web3 import Web3

from depositscan.errors import MissingFeeDataError
from depositscan.feed.etherscan import TransactionRecord

GAS_LIMIT = "gas_limit"
GAS_USED = "gas_used"


@dataclass(frozen=True)
class SettlementResult:
    tx_hash: str
    value_wei: int
    fee_wei: int
    total_wei: int

    @property
    def total_ether(self) -> Decimal:
        return wei_to_ether(self.total_wei)

    @property
    def value_display(self) -> str:
        return format_ether(self.value_wei)

    @property
    def total_display(self) -> str:
        return format_ether(self.total_wei)


def wei_to_ether(amount_wei: int) -> Decimal:
    """Exact wei → ether conversion (Decimal, no rounding)."""
    return Decimal(Web3.from_wei(amount_wei, "ether"))


def format_ether(amount_wei: int) -> str:
    """Plain decimal string of `amount_wei` in ether, never exponent notation."""
    text = format(wei_to_ether(amount_wei), "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    if "." not in text:
        text += ".0"
    return text


def compute_settlement(tx: TransactionRecord, gas_policy: str = GAS_LIMIT) -> SettlementResult:
    """Total credited for `tx` in wei.

    Raises MissingFeeDataError when the tx has no gasPrice (EIP-1559 sweeps
    are listed without one and are not supported here).
    """
    if tx.gas_price is None:
        raise MissingFeeDataError(tx.hash)

    if gas_policy == GAS_USED:
        gas_quantity = tx.gas_used
    elif gas_policy == GAS_LIMIT:
        gas_quantity = tx.gas
    else:
        raise ValueError(f"Unknown gas policy: {gas_policy}")

    fee = gas_quantity * tx.gas_price
    return SettlementResult(
        tx_hash=tx.hash,
        value_wei=tx.value,
        fee_wei=fee,
        total_wei=tx.value + fee,
    )
