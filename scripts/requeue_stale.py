"""
Move tasks stuck in the processing list back to pending.

A task stays in <queue>:processing if the worker died mid-scan. Anything
claimed longer than QUEUE_VISIBILITY_TIMEOUT seconds ago, or with no claim
recorded at all, is requeued.

Usage:
    python3 scripts/requeue_stale.py
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


async def requeue():
    network = os.getenv("NETWORK", "ethereum")
    name = os.getenv("QUEUE_NAME") or f"evm-native-confirm:{network}"
    visibility = int(os.getenv("QUEUE_VISIBILITY_TIMEOUT", "300"))
    source = RedisTaskSource.from_url(os.getenv("REDIS_URL", DEFAULT_REDIS_URL), name, visibility)
    try:
        before = await source.depth()
        moved = await source.requeue_stale()
        after = await source.depth()
        print(f"[OK] {name}: requeued {moved} stale task(s)")
        print(f"     before: {before}  after: {after}")
    finally:
        await source.close()


if __name__ == "__main__":
    asyncio.run(requeue())
