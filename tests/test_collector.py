#!/usr/bin/env -S python3 -B -u
"""
Test Suite for the reconciliation collector

Covers write-once result slots, final-hop correction when several
concurrently probed TTLs reach the destination, truncation, and ordered
delivery to a bounded queue.
"""

import asyncio
import unittest

from hoptrace.core.models import DestinationAddresses, Hop
from hoptrace.probing.collector import ReconciliationCollector, ResultSlots
from hoptrace.probing.supervisor import RunCancelled


DEST_IP = "93.184.216.34"
DEST = DestinationAddresses.of("example.com", [DEST_IP])


def reply(ttl, address, final=False):
    return Hop(ttl=ttl, address=address, rtt_ms=float(ttl), succeeded=True, is_final=final)


def fill(max_hops, final_ttls):
    """Slots where TTLs in final_ttls reached the destination and the rest timed out."""
    slots = ResultSlots(max_hops)
    for ttl in range(1, max_hops + 1):
        if ttl in final_ttls:
            slots.store(ttl, reply(ttl, DEST_IP, final=True))
        elif ttl < min(final_ttls, default=max_hops + 1):
            slots.store(ttl, reply(ttl, f"10.0.0.{ttl}"))
        else:
            slots.store(ttl, Hop.timeout(ttl))
    return slots


class TestResultSlots(unittest.TestCase):

    def test_write_once(self):
        slots = ResultSlots(3)
        slots.store(2, Hop.timeout(2))
        self.assertTrue(slots.is_filled(2))
        with self.assertRaises(ValueError):
            slots.store(2, Hop.timeout(2))

    def test_rejects_out_of_range_and_mismatched(self):
        slots = ResultSlots(3)
        with self.assertRaises(ValueError):
            slots.store(0, Hop.timeout(0))
        with self.assertRaises(ValueError):
            slots.store(4, Hop.timeout(4))
        with self.assertRaises(ValueError):
            slots.store(1, Hop.timeout(2))

    def test_hops_in_ttl_order(self):
        slots = ResultSlots(4)
        for ttl in (3, 1, 4, 2):
            slots.store(ttl, Hop.timeout(ttl))
        self.assertEqual([hop.ttl for hop in slots.hops()], [1, 2, 3, 4])
        self.assertTrue(slots.is_complete())
        self.assertEqual(slots.filled_count, 4)


class TestReconcile(unittest.TestCase):
    """Test the lowest destination TTL wins."""

    def setUp(self):
        self.collector = ReconciliationCollector()

    def test_lowest_final_wins_and_higher_are_truncated(self):
        """Test destination seen at TTL 6 and 9 yields hops 1..6."""
        result = self.collector.reconcile(fill(30, {6, 9}), DEST)

        self.assertEqual(result.final_ttl, 6)
        self.assertTrue(result.reached)
        self.assertEqual([hop.ttl for hop in result.hops], [1, 2, 3, 4, 5, 6])
        self.assertEqual([hop.is_final for hop in result.hops], [False] * 5 + [True])
        self.assertEqual(result.discarded, 24)

    def test_k_and_k_plus_three(self):
        for k in (1, 4, 10):
            with self.subTest(k=k):
                result = self.collector.reconcile(fill(20, {k, k + 3}), DEST)
                self.assertEqual(result.final_ttl, k)
                self.assertEqual(len(result.hops), k)
                self.assertEqual(sum(hop.is_final for hop in result.hops), 1)

    def test_parser_final_flag_is_honoured(self):
        """Test a hop the parser flagged as final counts as reaching the destination."""
        slots = ResultSlots(3)
        slots.store(1, reply(1, "10.0.0.1", final=True))
        slots.store(2, reply(2, DEST_IP, final=True))
        slots.store(3, reply(3, DEST_IP, final=True))
        result = self.collector.reconcile(slots, DEST)
        self.assertEqual(result.final_ttl, 1)
        self.assertEqual(len(result.hops), 1)

    def test_address_match_without_flag(self):
        slots = ResultSlots(3)
        slots.store(1, reply(1, "10.0.0.1"))
        slots.store(2, reply(2, DEST_IP))
        slots.store(3, Hop.timeout(3))
        result = self.collector.reconcile(slots, DEST)
        self.assertEqual(result.final_ttl, 2)
        self.assertTrue(result.hops[-1].is_final)

    def test_not_reached_keeps_everything(self):
        slots = ResultSlots(3)
        for ttl in range(1, 4):
            slots.store(ttl, Hop.timeout(ttl))
        result = self.collector.reconcile(slots, DEST)

        self.assertIsNone(result.final_ttl)
        self.assertFalse(result.reached)
        self.assertEqual(len(result.hops), 3)
        self.assertFalse(any(hop.is_final for hop in result.hops))

    def test_timeout_never_final(self):
        self.assertIsNone(self.collector.find_final_ttl([Hop.timeout(1)], DEST))


class TestEmit(unittest.IsolatedAsyncioTestCase):
    """Test ordered, cancellable delivery."""

    async def test_emits_in_order(self):
        collector = ReconciliationCollector()
        queue = asyncio.Queue(maxsize=5)
        hops = [Hop.timeout(ttl) for ttl in range(1, 6)]

        delivered = await collector.emit(hops, queue)

        self.assertEqual(delivered, hops)
        self.assertEqual([queue.get_nowait().ttl for _ in range(5)], [1, 2, 3, 4, 5])

    async def test_blocks_on_full_queue_until_cancelled(self):
        collector = ReconciliationCollector()
        queue = asyncio.Queue(maxsize=1)
        cancel = asyncio.Event()
        delivered = []

        task = asyncio.ensure_future(
            collector.emit([Hop.timeout(1), Hop.timeout(2)], queue, cancel, delivered)
        )
        await asyncio.sleep(0.05)
        self.assertFalse(task.done())
        self.assertEqual([hop.ttl for hop in delivered], [1])

        cancel.set()
        with self.assertRaises(RunCancelled):
            await asyncio.wait_for(task, 1.0)
        self.assertEqual(queue.qsize(), 1)
        self.assertEqual(len(delivered), 1)

    async def test_nothing_emitted_after_cancel(self):
        collector = ReconciliationCollector()
        queue = asyncio.Queue()
        cancel = asyncio.Event()
        cancel.set()

        with self.assertRaises(RunCancelled):
            await collector.emit([Hop.timeout(1)], queue, cancel)
        self.assertTrue(queue.empty())


if __name__ == '__main__':
    unittest.main()
