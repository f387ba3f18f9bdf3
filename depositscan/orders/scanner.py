"""
Deposit Scanner — per-order scan: load order → fetch txlist → select sweeps
→ settle + credit each candidate.

Task outcome:
  SKIPPED    order missing or has no deposit address (not retried)
  FAILED     txlist fetch failed, or a credit attempt errored (queue retries;
             credits already stored come back as ALREADY_CREDITED)
  COMPLETED  everything else, including "no candidates"

Candidates run concurrently (bounded) and independently: a failing tx never
stops the others. There is no local "seen" set; the ledger's uniqueId
constraint is the only dedup, so overlapping scans of one order are safe.
"""

import asyncio
import enum
from collections import Counter
from dataclasses import dataclass, field
from typing import List, Optional

from depositscan.deposits.settlement import GAS_LIMIT, GAS_USED, compute_settlement
from depositscan.deposits.sweeps import MAX_CANDIDATES, REASON_BEFORE_ORDER, rejection_reason, select_sweeps
from depositscan.errors import (
    CreditError,
    FeedError,
    MissingFeeDataError,
    NoDepositAddressError,
    NotFoundError,
    OrderNotFoundError,
)
from depositscan.ledger.credit import CreditOutcome
from depositscan.log import log

DEFAULT_CONCURRENCY = 4
DEFAULT_CANDIDATE_TIMEOUT = 30.0    # seconds per tx (settle + credit)


class ScanStatus(enum.Enum):
    COMPLETED = "completed"
    SKIPPED = "skipped"
    FAILED = "failed"


class TxStatus(enum.Enum):
    CREDITED = "credited"
    ALREADY_CREDITED = "already_credited"
    MISSING_FEE_DATA = "missing_fee_data"
    CREDIT_ERROR = "credit_error"
    TIMEOUT = "timeout"


# Outcomes that leave the tx possibly uncredited and justify a retry
RETRYABLE_TX_STATUSES = (TxStatus.CREDIT_ERROR, TxStatus.TIMEOUT)


@dataclass
class TxOutcome:
    tx_hash: str
    status: TxStatus
    total_wei: Optional[int] = None
    error: str = ""


@dataclass
class ScanReport:
    order_id: str
    status: ScanStatus
    reason: str = ""
    fetched: int = 0
    candidates: int = 0
    outcomes: List[TxOutcome] = field(default_factory=list)

    @property
    def credited(self) -> List[TxOutcome]:
        return [o for o in self.outcomes if o.status == TxStatus.CREDITED]

    @property
    def retryable_errors(self) -> List[TxOutcome]:
        return [o for o in self.outcomes if o.status in RETRYABLE_TX_STATUSES]

    def summary(self) -> str:
        counts = Counter(o.status.value for o in self.outcomes)
        parts = ", ".join(f"{k}={v}" for k, v in sorted(counts.items())) or "none"
        text = (f"order={self.order_id} status={self.status.value} "
                f"fetched={self.fetched} candidates={self.candidates} outcomes: {parts}")
        if self.reason:
            text += f" ({self.reason})"
        return text


class DepositScanner:
    """Scans one order's deposit address and credits swept deposits."""

    def __init__(
        self,
        orders,
        feed,
        credits,
        account_address: str,
        method_id: str,
        asset: str = "ETH",
        max_candidates: int = MAX_CANDIDATES,
        concurrency: int = DEFAULT_CONCURRENCY,
        candidate_timeout: float = DEFAULT_CANDIDATE_TIMEOUT,
        gas_policy: str = GAS_LIMIT,
        fail_on_credit_error: bool = True,
    ):
        if gas_policy not in (GAS_LIMIT, GAS_USED):
            raise ValueError(f"Unknown gas policy: {gas_policy}")
        self.orders = orders
        self.feed = feed
        self.credits = credits
        self.account_address = account_address
        self.method_id = method_id
        self.asset = asset
        self.max_candidates = max_candidates
        self.concurrency = max(1, concurrency)
        self.candidate_timeout = candidate_timeout
        self.gas_policy = gas_policy
        self.fail_on_credit_error = fail_on_credit_error

    @classmethod
    def from_config(cls, config, orders, feed, credits) -> "DepositScanner":
        return cls(
            orders=orders,
            feed=feed,
            credits=credits,
            account_address=config.evm_account,
            method_id=config.native_method_id,
            asset=config.native_asset,
            max_candidates=config.max_scan_candidates,
            concurrency=config.scan_concurrency,
            candidate_timeout=config.candidate_timeout,
            gas_policy=config.settlement_gas_policy,
            fail_on_credit_error=config.fail_task_on_credit_error,
        )

    async def handle(self, order_id: str) -> ScanStatus:
        """Queue handler: scan and return only the final status."""
        report = await self.scan_order(order_id)
        return report.status

    # ------------------------------------------------------------------
    # Per-order scan
    # ------------------------------------------------------------------

    async def scan_order(self, order_id: str) -> ScanReport:
        log("SCAN", f"Processing queued task to look at order {order_id} for deposits")

        try:
            order = await self._load_order(order_id)
        except NotFoundError as e:
            log("SCAN", str(e), "ERROR")
            return ScanReport(order_id, ScanStatus.SKIPPED, reason=e.reason)

        try:
            txs = await self.feed.fetch(order.deposit_address)
        except FeedError as e:
            log("SCAN", f"Error fetching txs for order {order_id}: {e}", "ERROR")
            return ScanReport(order_id, ScanStatus.FAILED, reason=f"feed_error: {e}")

        self._log_rejections(order, txs)
        candidates = select_sweeps(txs, self.account_address, order.created_at, self.max_candidates)
        log("SCAN", f"Found {len(candidates)} transactions for order {order_id}")

        report = ScanReport(order_id, ScanStatus.COMPLETED, fetched=len(txs), candidates=len(candidates))
        if not candidates:
            return report

        sem = asyncio.Semaphore(self.concurrency)

        async def _guarded(tx):
            async with sem:
                return await self._process_with_deadline(order, tx)

        report.outcomes = list(await asyncio.gather(*(_guarded(tx) for tx in candidates)))

        if report.retryable_errors and self.fail_on_credit_error:
            report.status = ScanStatus.FAILED
            report.reason = f"{len(report.retryable_errors)} credit attempt(s) failed"

        log("SCAN", report.summary())
        return report

    async def _load_order(self, order_id: str):
        order = await self.orders.get_order(order_id)
        if not order:
            raise OrderNotFoundError(order_id)
        if not order.deposit_address:
            # The deposit address may have been unassigned
            raise NoDepositAddressError(order_id)
        return order

    def _log_rejections(self, order, txs):
        """Warn about sweeps that predate the order (re-assigned address)."""
        for tx in txs:
            if rejection_reason(tx, self.account_address, order.created_at) == REASON_BEFORE_ORDER:
                log("SCAN", f"Ignoring tx {tx.hash} that happened before order {order.id} was created",
                    "WARNING")

    # ------------------------------------------------------------------
    # Per-transaction
    # ------------------------------------------------------------------

    async def _process_with_deadline(self, order, tx) -> TxOutcome:
        try:
            return await asyncio.wait_for(self._process_tx(order, tx), timeout=self.candidate_timeout)
        except asyncio.TimeoutError:
            log("CREDIT", f"Tx {tx.hash} for order {order.id} timed out after "
                          f"{self.candidate_timeout}s", "ERROR")
            return TxOutcome(tx.hash, TxStatus.TIMEOUT, error=f"timed out after {self.candidate_timeout}s")

    async def _process_tx(self, order, tx) -> TxOutcome:
        log("SCAN", f"Scanning tx {tx.hash}")

        try:
            settlement = compute_settlement(tx, self.gas_policy)
        except MissingFeeDataError as e:
            log("CREDIT", f"Skipping tx {tx.hash} for order {order.id}: {e}", "WARNING")
            return TxOutcome(tx.hash, TxStatus.MISSING_FEE_DATA, error=str(e))

        try:
            outcome = await self.credits.apply(order.id, tx.hash, self.method_id, settlement.total_wei)
        except CreditError as e:
            log("CREDIT", f"Credit failed for tx {tx.hash} order {order.id}: {e}", "ERROR")
            return TxOutcome(tx.hash, TxStatus.CREDIT_ERROR, settlement.total_wei, error=str(e))

        if outcome == CreditOutcome.ALREADY_CREDITED:
            log("CREDIT", f"Tx {tx.hash} already credited to order {order.id}", "DEBUG")
            return TxOutcome(tx.hash, TxStatus.ALREADY_CREDITED, settlement.total_wei)

        log("CREDIT", f"Stored deposit. {tx.hash}. {settlement.value_display} {self.asset} "
                      f"(total {settlement.total_display} incl. fee) for order {order.id}")
        return TxOutcome(tx.hash, TxStatus.CREDITED, settlement.total_wei)
