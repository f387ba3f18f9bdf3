"""
Push order ids onto the scan queue (manual re-scan).

Usage:
    python3 scripts/enqueue_orders.py ORDER_ID [ORDER_ID ...]

Requires: .env with REDIS_URL (optional) and NETWORK or QUEUE_NAME
"""

import asyncio
import os
import sys

# Add project root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from dotenv import load_dotenv
load_dotenv(os.path.join(os.path.dirname(__file__), "..", ".env"))

from depositscan.config import DEFAULT_REDIS_URL
from depositscan.queue.source import RedisTaskSource


async def enqueue(order_ids):
    network = os.getenv("NETWORK", "ethereum")
    name = os.getenv("QUEUE_NAME") or f"evm-native-confirm:{network}"
    source = RedisTaskSource.from_url(os.getenv("REDIS_URL", DEFAULT_REDIS_URL), name)
    try:
        length = await source.enqueue(*order_ids)
        print(f"[OK] Enqueued {len(order_ids)} order(s) on {name} (queue length {length})")
    finally:
        await source.close()


def main():
    order_ids = [a.strip() for a in sys.argv[1:] if a.strip()]
    if not order_ids:
        print("[FAIL] Usage: enqueue_orders.py ORDER_ID [ORDER_ID ...]")
        sys.exit(1)
    asyncio.run(enqueue(order_ids))


if __name__ == "__main__":
    main()
