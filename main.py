"""
Deposit Scanner — Entry point.
Wires the feed, ledger, order store and queue, then runs the worker.

Usage:
    python3 main.py                      # Worker (Redis queue) until Ctrl+C
    python3 main.py --smoke              # Smoke test only (connect + exit)
    python3 main.py --order ID [--order ID ...]   # Scan given orders once
"""

import argparse
import asyncio
import signal
import sys

from depositscan.config import load_config, print_config_summary
from depositscan.db.client import OrderStore, health_check, init_supabase
from depositscan.errors import FeedError
from depositscan.feed.etherscan import EtherscanClient
from depositscan.ledger.credit import CreditApplier
from depositscan.ledger.graphql import LedgerClient
from depositscan.log import log, set_level
from depositscan.orders.scanner import DepositScanner, ScanStatus
from depositscan.queue.source import MemoryTaskSource, RedisTaskSource
from depositscan.queue.worker import Worker


def _build(config):
    """Construct every long-lived client once and inject them."""
    feed = EtherscanClient(
        api_key=config.etherscan_api_key,
        api_url=config.etherscan_api_url,
        timeout=config.feed_timeout,
    )
    ledger = LedgerClient(
        url=config.ledger_graphql_url,
        api_token=config.ledger_api_token,
        timeout=config.ledger_timeout,
    )
    store = OrderStore(init_supabase(config.supabase_url, config.supabase_key))
    scanner = DepositScanner.from_config(config, store, feed, CreditApplier(ledger))
    return feed, ledger, store, scanner


async def smoke_test(config) -> bool:
    """Smoke test: Supabase, Redis and one txlist call, then exit."""
    print("=" * 50)
    print("  Deposit Scanner — Smoke Test")
    print("=" * 50)
    print()
    print_config_summary(config)
    print()

    ok = True

    print("[DB] Connecting to Supabase...")
    sb = init_supabase(config.supabase_url, config.supabase_key)
    db_ok = await health_check(sb)
    print(f"[DB] {'✅ supabase ok' if db_ok else '❌ Client init failed'}")
    ok = ok and db_ok

    print("[QUEUE] Connecting to Redis...")
    source = RedisTaskSource.from_url(
        config.redis_url, config.queue_name, config.queue_visibility_timeout,
        max_attempts=config.queue_max_attempts, retry_delay=config.queue_retry_delay,
    )
    try:
        depth = await source.depth()
        print(f"[QUEUE] ✅ {config.queue_name}: {depth['pending']} pending, {depth['processing']} processing, "
              f"{depth['delayed']} delayed, {depth['dead']} dead")
    except Exception as e:
        print(f"[QUEUE] ❌ Redis unavailable: {e}", file=sys.stderr)
        ok = False
    finally:
        await source.close()

    print("[FEED] Fetching txlist for account...")
    feed = EtherscanClient(config.etherscan_api_key, config.etherscan_api_url, config.feed_timeout)
    try:
        txs = await feed.fetch(config.evm_account)
        print(f"[FEED] ✅ {len(txs)} txs returned for {config.evm_account[:10]}...")
    except FeedError as e:
        print(f"[FEED] ❌ {type(e).__name__}: {e}", file=sys.stderr)
        ok = False
    finally:
        await feed.close()

    print()
    print("=" * 50)
    print(f"  {'✅ SMOKE TEST PASSED' if ok else '❌ SMOKE TEST FAILED'}")
    print("=" * 50)
    return ok


async def scan_orders(config, order_ids) -> bool:
    """Scan the given orders once through an in-memory source."""
    feed, ledger, _, scanner = _build(config)
    source = MemoryTaskSource(order_ids, max_attempts=1)
    reports = []

    async def _handler(order_id: str) -> ScanStatus:
        report = await scanner.scan_order(order_id)
        reports.append(report)
        return report.status

    worker = Worker(source, _handler, receive_timeout=0.1)
    try:
        await worker.run(drain=True)
    finally:
        await feed.close()
        await ledger.close()

    print()
    for report in reports:
        print(f"[REPORT] {report.summary()}")
        for outcome in report.outcomes:
            extra = f" total={outcome.total_wei}" if outcome.total_wei is not None else ""
            err = f" error={outcome.error}" if outcome.error else ""
            print(f"  - {outcome.tx_hash} {outcome.status.value}{extra}{err}")
    return all(r.status != ScanStatus.FAILED for r in reports)


async def run_worker(config):
    """Full worker: consume order ids from Redis until interrupted."""
    print("=" * 50)
    print("  Deposit Scanner — Starting")
    print("=" * 50)
    print()
    print_config_summary(config)
    print()

    feed, ledger, store, scanner = _build(config)
    source = RedisTaskSource.from_url(
        config.redis_url, config.queue_name, config.queue_visibility_timeout,
        max_attempts=config.queue_max_attempts, retry_delay=config.queue_retry_delay,
    )

    # Startup recovery: tasks orphaned by a previous crash
    moved = await source.requeue_stale()
    log("INIT", f"Startup recovery requeued {moved} stale task(s)")

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            pass

    worker = Worker(source, scanner.handle)
    log("INIT", f"Consuming {config.queue_name} (account {config.evm_account[:10]}...)")
    try:
        await worker.run(stop_event)
    finally:
        log("INIT", f"Shutting down — feed={feed.metrics()} ledger={ledger.metrics()} db={store.metrics()}")
        await feed.close()
        await ledger.close()
        await source.close()


def main():
    parser = argparse.ArgumentParser(description="Deposit Scanner")
    parser.add_argument("--smoke", action="store_true", help="Smoke test only (connect + exit)")
    parser.add_argument("--order", action="append", default=[], metavar="ORDER_ID",
                        help="Scan this order once (repeatable)")
    args = parser.parse_args()

    config = load_config()
    set_level(config.log_level)

    if not config.etherscan_api_key:
        log("INIT", "Etherscan not configured", "ERROR")
        sys.exit(1)

    try:
        if args.smoke:
            ok = asyncio.run(smoke_test(config))
        elif args.order:
            ok = asyncio.run(scan_orders(config, args.order))
        else:
            asyncio.run(run_worker(config))
            ok = True
    except KeyboardInterrupt:
        print("\nStopped.")
        ok = True
    sys.exit(0 if ok else 1)


if __name__ == "__main__":
    main()
