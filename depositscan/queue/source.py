"""
Task sources — where order ids to scan come from.

The worker only needs three operations:
  receive(timeout) → Task | None
  ack(task)        → done, drop it
  fail(task)       → hand it back for redelivery (queue decides when)

MemoryTaskSource backs tests and `main.py --order`. RedisTaskSource is the
production queue (reliable-list pattern):

  LPUSH <name>                        enqueue
  claim script                        receive: promote due retries from
                                      <name>:delayed, LMOVE one id to
                                      <name>:processing, count the attempt,
                                      record the claim time
  LREM <name>:processing              ack
  ZADD <name>:delayed (retry-at)      fail, with exponential backoff
  LPUSH <name>:dead                   fail after max_attempts
  requeue_stale()                     crash recovery for stale or unclaimed
                                      processing entries
"""

import abc
import asyncio
import time
from dataclasses import dataclass
from typing import Iterable, Optional

import redis.asyncio as aioredis

from depositscan.log import log

DEFAULT_RECEIVE_TIMEOUT = 5.0      # seconds to block waiting for a task
DEFAULT_MAX_ATTEMPTS = 3           # MemoryTaskSource redelivery cap


@dataclass
class Task:
    order_id: str
    attempts: int = 1


class TaskSource(abc.ABC):
    """Queue interface consumed by the worker loop."""

    @abc.abstractmethod
    async def receive(self, timeout: float = DEFAULT_RECEIVE_TIMEOUT) -> Optional[Task]:
        """Return the next task, or None if nothing arrived within `timeout`."""

    @abc.abstractmethod
    async def ack(self, task: Task) -> None:
        """Mark `task` done."""

    @abc.abstractmethod
    async def fail(self, task: Task) -> None:
        """Release `task` for redelivery."""

    async def close(self) -> None:
        pass


# ---------------------------------------------------------------------------
# In-memory
# ---------------------------------------------------------------------------

class MemoryTaskSource(TaskSource):
    """asyncio.Queue-backed source. Failed tasks go to the back of the queue
    until they have been delivered `max_attempts` times."""

    def __init__(self, order_ids: Iterable[str] = (), max_attempts: int = DEFAULT_MAX_ATTEMPTS):
        self._queue: asyncio.Queue = asyncio.Queue()
        self.max_attempts = max_attempts
        self.acked = []
        self.dropped = []
        for order_id in order_ids:
            self.put(order_id)

    def put(self, order_id: str):
        self._queue.put_nowait(Task(order_id))

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    async def receive(self, timeout: float = DEFAULT_RECEIVE_TIMEOUT) -> Optional[Task]:
        try:
            return await asyncio.wait_for(self._queue.get(), timeout=timeout)
        except asyncio.TimeoutError:
            return None

    async def ack(self, task: Task) -> None:
        self.acked.append(task)

    async def fail(self, task: Task) -> None:
        if task.attempts >= self.max_attempts:
            log("QUEUE", f"Order {task.order_id} dropped after {task.attempts} attempts", "ERROR")
            self.dropped.append(task)
            return
        self._queue.put_nowait(Task(task.order_id, attempts=task.attempts + 1))




# ---------------------------------------------------------------------------
# Redis
# ---------------------------------------------------------------------------

# Atomic claim: promote due retries, move one id to processing, count the
# attempt and record the claim time. A crash can never leave a processing
# entry without a claim.
CLAIM_LUA_SCRIPT = """
-- KEYS[1] = pending list, KEYS[2] = processing list, KEYS[3] = claimed hash
-- KEYS[4] = attempts hash, KEYS[5] = delayed zset
-- ARGV[1] = now (epoch seconds), ARGV[2] = max retries promoted per call
-- Returns: {order_id, attempts} or false when nothing is pending

local due = redis.call('ZRANGEBYSCORE', KEYS[5], '-inf', ARGV[1], 'LIMIT', 0, tonumber(ARGV[2]))
for _, id in ipairs(due) do
    redis.call('ZREM', KEYS[5], id)
    redis.call('LPUSH', KEYS[1], id)
end

local id = redis.call('LMOVE', KEYS[1], KEYS[2], 'RIGHT', 'LEFT')
if not id then
    return false
end
local attempts = redis.call('HINCRBY', KEYS[4], id, 1)
redis.call('HSET', KEYS[3], id, ARGV[1])
return {id, attempts}
"""

DEFAULT_POLL_INTERVAL = 0.5       # seconds between empty claims
DEFAULT_RETRY_DELAY = 30          # seconds before the first redelivery
MAX_RETRY_DELAY = 900             # backoff ceiling
PROMOTE_BATCH = 100               # delayed retries promoted per claim


class RedisTaskSource(TaskSource):
    """Reliable Redis list queue of order ids with delayed retries."""

    def __init__(self, client: aioredis.Redis, name: str, visibility_timeout: int = 300,
                 max_attempts: int = 5, retry_delay: int = DEFAULT_RETRY_DELAY,
                 poll_interval: float = DEFAULT_POLL_INTERVAL):
        self.client = client
        self.name = name
        self.processing_key = f"{name}:processing"
        self.claimed_key = f"{name}:claimed"
        self.attempts_key = f"{name}:attempts"
        self.delayed_key = f"{name}:delayed"
        self.dead_key = f"{name}:dead"
        self.visibility_timeout = visibility_timeout
        self.max_attempts = max(1, max_attempts)
        self.retry_delay = retry_delay
        self.poll_interval = poll_interval
        self._claim = client.register_script(CLAIM_LUA_SCRIPT)

    @classmethod
    def from_url(cls, url: str, name: str, visibility_timeout: int = 300, **kwargs) -> "RedisTaskSource":
        client = aioredis.from_url(url, encoding="utf-8", decode_responses=True)
        return cls(client, name, visibility_timeout, **kwargs)

    async def enqueue(self, *order_ids: str) -> int:
        if not order_ids:
            return 0
        return await self.client.lpush(self.name, *order_ids)

    async def receive(self, timeout: float = DEFAULT_RECEIVE_TIMEOUT) -> Optional[Task]:
        deadline = time.monotonic() + timeout
        while True:
            claimed = await self._claim(
                keys=[self.name, self.processing_key, self.claimed_key, self.attempts_key, self.delayed_key],
                args=[time.time(), PROMOTE_BATCH],
            )
            if claimed:
                order_id, attempts = claimed
                return Task(order_id, attempts=int(attempts))
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return None
            await asyncio.sleep(min(self.poll_interval, remaining))

    async def ack(self, task: Task) -> None:
        async with self.client.pipeline(transaction=True) as pipe:
            pipe.lrem(self.processing_key, 1, task.order_id)
            pipe.hdel(self.claimed_key, task.order_id)
            pipe.hdel(self.attempts_key, task.order_id)
            await pipe.execute()

    def retry_delay_for(self, attempts: int) -> float:
        """Exponential backoff: retry_delay, 2x, 4x ... capped at MAX_RETRY_DELAY."""
        return min(self.retry_delay * 2 ** max(0, attempts - 1), MAX_RETRY_DELAY)

    async def fail(self, task: Task, now: Optional[float] = None) -> None:
        """Schedule a delayed retry, or dead-letter the task after max_attempts."""
        now = time.time() if now is None else now
        async with self.client.pipeline(transaction=True) as pipe:
            pipe.lrem(self.processing_key, 1, task.order_id)
            pipe.hdel(self.claimed_key, task.order_id)
            if task.attempts >= self.max_attempts:
                pipe.hdel(self.attempts_key, task.order_id)
                pipe.lpush(self.dead_key, task.order_id)
            else:
                pipe.zadd(self.delayed_key, {task.order_id: now + self.retry_delay_for(task.attempts)})
            await pipe.execute()

        if task.attempts >= self.max_attempts:
            log("QUEUE", f"Order {task.order_id} dead-lettered to {self.dead_key} "
                         f"after {task.attempts} attempts", "ERROR")
        else:
            log("QUEUE", f"Order {task.order_id} retry in {self.retry_delay_for(task.attempts):.0f}s "
                         f"(attempt {task.attempts}/{self.max_attempts})", "WARNING")

    async def requeue_stale(self, now: Optional[float] = None) -> int:
        """Move tasks claimed longer than the visibility timeout back to pending.

        Processing entries with no claim at all are orphans and move too.
        """
        now = time.time() if now is None else now
        claims = await self.client.hgetall(self.claimed_key)
        processing = await self.client.lrange(self.processing_key, 0, -1)

        stale = {}
        for order_id, claimed_at in claims.items():
            age = now - float(claimed_at)
            if age >= self.visibility_timeout:
                stale[order_id] = f"claimed {age:.0f}s ago"
        for order_id in processing:
            if order_id not in claims:
                stale[order_id] = "no claim recorded"

        for order_id, why in stale.items():
            async with self.client.pipeline(transaction=True) as pipe:
                pipe.lrem(self.processing_key, 1, order_id)
                pipe.hdel(self.claimed_key, order_id)
                pipe.lpush(self.name, order_id)
                await pipe.execute()
            log("QUEUE", f"Requeued stale task for order {order_id} ({why})", "WARNING")
        return len(stale)

    async def depth(self) -> dict:
        return {
            "pending": await self.client.llen(self.name),
            "processing": await self.client.llen(self.processing_key),
            "delayed": await self.client.zcard(self.delayed_key),
            "dead": await self.client.llen(self.dead_key),
        }

    async def close(self) -> None:
        await self.client.aclose()
