"""
Worker loop — one task at a time: receive → handle → ack / fail.

COMPLETED and SKIPPED are acked; FAILED (or a handler crash) is handed back
to the source for redelivery. Retry timing is the source's business.
"""

import asyncio
from typing import Awaitable, Callable, Optional

from depositscan.log import log
from depositscan.orders.scanner import ScanStatus
from depositscan.queue.source import DEFAULT_RECEIVE_TIMEOUT, TaskSource


class Worker:
    """Consumes order ids from a TaskSource and runs the scan handler."""

    def __init__(self, source: TaskSource, handler: Callable[[str], Awaitable[ScanStatus]],
                 receive_timeout: float = DEFAULT_RECEIVE_TIMEOUT):
        self.source = source
        self.handler = handler
        self.receive_timeout = receive_timeout
        # Metrics
        self.processed = 0
        self.completed = 0
        self.skipped = 0
        self.failed = 0

    async def run_once(self) -> Optional[ScanStatus]:
        """Process at most one task. Returns its status, or None if idle."""
        task = await self.source.receive(timeout=self.receive_timeout)
        if task is None:
            return None

        try:
            status = await self.handler(task.order_id)
        except asyncio.CancelledError:
            await self.source.fail(task)
            raise
        except Exception as e:
            log("WORKER", f"Handler crashed for order {task.order_id}: {e!r}", "ERROR")
            status = ScanStatus.FAILED

        self.processed += 1
        if status == ScanStatus.FAILED:
            self.failed += 1
            await self.source.fail(task)
        else:
            if status == ScanStatus.SKIPPED:
                self.skipped += 1
            else:
                self.completed += 1
            await self.source.ack(task)

        log("WORKER", f"Order {task.order_id} → {status.value} (attempt {task.attempts})")
        return status

    async def run(self, stop_event: Optional[asyncio.Event] = None, drain: bool = False):
        """Run until `stop_event` is set. With drain=True, stop once idle."""
        stop_event = stop_event or asyncio.Event()
        log("WORKER", "Worker started")
        while not stop_event.is_set():
            status = await self.run_once()
            if status is None and drain:
                break
        log("WORKER", f"Worker stopped — {self.summary()}")

    def metrics(self) -> dict:
        return {
            "processed": self.processed,
            "completed": self.completed,
            "skipped": self.skipped,
            "failed": self.failed,
        }

    def summary(self) -> str:
        m = self.metrics()
        return ", ".join(f"{k}={v}" for k, v in m.items())
