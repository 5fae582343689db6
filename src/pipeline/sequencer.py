# ABOUTME: Per-key single-writer queue for the mastery read-modify-write.
# ABOUTME: Runs work for one (student, skill) strictly in server-timestamp order without blocking other keys.

from __future__ import annotations

import asyncio
import heapq
import itertools
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import AsyncIterator, Dict, Hashable, List, Optional


@dataclass(frozen=True, order=True)
class Ticket:
    timestamp: datetime
    sequence: int
    key: Hashable = field(compare=False)


@dataclass
class _KeyQueue:
    pending: List[Ticket] = field(default_factory=list)
    running: Optional[Ticket] = None
    waiters: Dict[Ticket, asyncio.Future] = field(default_factory=dict)


class KeyedSequencer:
    """
    Tickets are registered synchronously when the attempt is logged, then
    awaited. A ticket's turn comes when it is the oldest pending ticket of its
    key and nothing else for that key is running, so a slow earlier attempt
    holds back later ones of the same key only.
    """

    def __init__(self) -> None:
        self._queues: Dict[Hashable, _KeyQueue] = {}
        self._counter = itertools.count()

    def register(self, key: Hashable, timestamp: datetime) -> Ticket:
        ticket = Ticket(timestamp, next(self._counter), key)
        queue = self._queues.setdefault(key, _KeyQueue())
        heapq.heappush(queue.pending, ticket)
        return ticket

    def pending(self, key: Hashable) -> int:
        queue = self._queues.get(key)
        if queue is None:
            return 0
        return len(queue.pending) + (1 if queue.running is not None else 0)

    async def acquire(self, ticket: Ticket) -> None:
        queue = self._queues[ticket.key]
        while not (queue.running is None and queue.pending and queue.pending[0] == ticket):
            waiter = asyncio.get_running_loop().create_future()
            queue.waiters[ticket] = waiter
            try:
                await waiter
            except asyncio.CancelledError:
                queue.waiters.pop(ticket, None)
                self.cancel(ticket)
                raise
        heapq.heappop(queue.pending)
        queue.running = ticket

    def release(self, ticket: Ticket) -> None:
        queue = self._queues.get(ticket.key)
        if queue is None or queue.running != ticket:
            raise RuntimeError(f"Ticket {ticket} is not running")
        queue.running = None
        self._wake_head(ticket.key)

    @asynccontextmanager
    async def turn(self, ticket: Ticket) -> AsyncIterator[Ticket]:
        await self.acquire(ticket)
        try:
            yield ticket
        finally:
            self.release(ticket)

    def cancel(self, ticket: Ticket) -> None:
        """Withdraw a ticket that will never be acquired."""

        queue = self._queues.get(ticket.key)
        if queue is None or ticket not in queue.pending:
            return
        queue.pending.remove(ticket)
        heapq.heapify(queue.pending)
        if queue.running is None:
            self._wake_head(ticket.key)

    def _wake_head(self, key: Hashable) -> None:
        queue = self._queues[key]
        if not queue.pending:
            if queue.running is None:
                del self._queues[key]
            return
        waiter = queue.waiters.pop(queue.pending[0], None)
        if waiter is not None and not waiter.done():
            waiter.set_result(None)
