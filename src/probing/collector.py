#!/usr/bin/env -S python3 -B -u
"""
Reconciliation Collector

Gathers per-TTL probe results from the parallel strategy and decides
which hop is the real destination.

The destination answers every probe whose TTL is at or beyond its true
distance, so several concurrently probed TTLs can each look final. The
lowest TTL that reached the destination is the authoritative final hop;
every higher TTL is discarded.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Container, List, Optional

from hoptrace.core.models import Hop
from hoptrace.core.structured_logging import get_logger
from hoptrace.probing.supervisor import RunCancelled, wait_or_cancel


class ResultSlots:
    """
    Results buffer with one write-once slot per TTL.

    Each probe task owns exactly one slot, so writes need no locking.
    """

    def __init__(self, max_hops: int):
        self.max_hops = max_hops
        self._hops: List[Optional[Hop]] = [None] * max_hops
        self._filled: List[bool] = [False] * max_hops

    def store(self, ttl: int, hop: Hop) -> None:
        if not 1 <= ttl <= self.max_hops:
            raise ValueError(f"TTL {ttl} outside 1..{self.max_hops}")
        if hop.ttl != ttl:
            raise ValueError(f"Hop for TTL {hop.ttl} stored in slot {ttl}")
        if self._filled[ttl - 1]:
            raise ValueError(f"Slot for TTL {ttl} already filled")
        self._hops[ttl - 1] = hop
        self._filled[ttl - 1] = True

    def is_filled(self, ttl: int) -> bool:
        return self._filled[ttl - 1]

    @property
    def filled_count(self) -> int:
        return sum(self._filled)

    def is_complete(self) -> bool:
        return all(self._filled)

    def hops(self) -> List[Hop]:
        """Filled slots in ascending TTL order."""
        return [hop for hop, filled in zip(self._hops, self._filled) if filled]


@dataclass
class Reconciliation:
    """Result of reconciling one run's slots."""
    hops: List[Hop] = field(default_factory=list)
    final_ttl: Optional[int] = None
    discarded: int = 0

    @property
    def reached(self) -> bool:
        return self.final_ttl is not None


class ReconciliationCollector:
    """Determines the true final hop and delivers hops in TTL order."""

    def __init__(self):
        self.logger = get_logger(__name__)

    def find_final_ttl(self, hops: List[Hop], destination: Container[str]) -> Optional[int]:
        """
        Lowest TTL whose hop succeeded and reached the destination.

        hops must be in ascending TTL order; the first match is the answer.
        """
        for hop in hops:
            if hop.succeeded and (hop.is_final or hop.address in destination):
                return hop.ttl
        return None

    def reconcile(self, slots: ResultSlots, destination: Container[str]) -> Reconciliation:
        """
        Correct every hop's is_final flag and truncate after the final hop.

        Returns:
            Reconciliation with the hops to deliver
        """
        collected = slots.hops()
        final_ttl = self.find_final_ttl(collected, destination)

        kept = []
        for hop in collected:
            if final_ttl is not None and hop.ttl > final_ttl:
                break
            hop.is_final = hop.ttl == final_ttl
            kept.append(hop)

        result = Reconciliation(hops=kept, final_ttl=final_ttl,
                                discarded=len(collected) - len(kept))
        if final_ttl is not None:
            self.logger.debug(f"Final hop at TTL {final_ttl}",
                              kept=len(kept), discarded=result.discarded)
        else:
            self.logger.debug("Destination not reached", collected=len(collected))
        return result

    async def emit(self, hops: List[Hop], queue: "asyncio.Queue[Hop]",
                   cancel: Optional[asyncio.Event] = None,
                   delivered: Optional[List[Hop]] = None) -> List[Hop]:
        """
        Hand hops to the caller's queue in order.

        Each handoff blocks while the queue is full but gives up as soon as
        cancel fires.

        Args:
            delivered: list that receives each hop once it is delivered

        Raises:
            RunCancelled: cancel fired before every hop was delivered
        """
        if delivered is None:
            delivered = []
        for hop in hops:
            if cancel is not None and cancel.is_set():
                raise RunCancelled()
            await wait_or_cancel(queue.put(hop), cancel)
            delivered.append(hop)
        return delivered
