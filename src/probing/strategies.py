#!/usr/bin/env -S python3 -B -u
"""
Probe Strategies

Two ways of driving the probing utility, chosen once per run:

- ParallelStrategy: one single-hop invocation per TTL, all running at
  once, reconciled after every invocation finished.
- SequentialStrategy: one invocation covering every TTL, whose output is
  parsed and forwarded line by line as it streams.
"""

import asyncio
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from typing import List, Optional

from hoptrace.core.exceptions import ProbeProcessError
from hoptrace.core.models import DestinationAddresses, Hop, RunOptions, RunState
from hoptrace.core.structured_logging import get_logger
from hoptrace.probing.collector import ReconciliationCollector, ResultSlots
from hoptrace.probing.parser import (
    LineParser, find_destination_header, parse_destination_header
)
from hoptrace.probing.platforms import ProbePlatform
from hoptrace.probing.resolver import DestinationResolver
from hoptrace.probing.supervisor import ProbeProcessRunner, RunCancelled, wait_or_cancel


@dataclass
class ProbeRun:
    """State shared by the engine and a strategy for the duration of one run."""
    target: str
    destination: DestinationAddresses
    options: RunOptions
    queue: "asyncio.Queue[Hop]"
    cancel: asyncio.Event
    delivered: List[Hop] = field(default_factory=list)
    states: List[RunState] = field(default_factory=list)

    @property
    def state(self) -> RunState:
        return self.states[-1] if self.states else RunState.IDLE

    def enter(self, state: RunState) -> None:
        get_logger(__name__).debug(f"Run {self.target}: {self.state.value} -> {state.value}")
        self.states.append(state)

    def check_cancelled(self) -> None:
        if self.cancel.is_set():
            raise RunCancelled()


class ProbeStrategy(ABC):
    """
    Drives the probing utility for one run and delivers hops to run.queue.

    execute() returns the final TTL, or None when the destination was not
    reached within max_hops. It raises RunCancelled on cancellation and
    HoptraceError subclasses when probing cannot proceed.
    """

    name: str = ""

    def __init__(self, platform: ProbePlatform, runner: ProbeProcessRunner,
                 resolver: DestinationResolver,
                 collector: Optional[ReconciliationCollector] = None,
                 process_grace: float = 1.0):
        self.platform = platform
        self.runner = runner
        self.resolver = resolver
        self.collector = collector or ReconciliationCollector()
        self.parser = LineParser(platform.flavor)
        self.process_grace = process_grace
        self.logger = get_logger(__name__)

    @abstractmethod
    async def execute(self, run: ProbeRun) -> Optional[int]:
        """Probe the path and deliver hops; return the final TTL or None."""

    async def _with_hostname(self, run: ProbeRun, hop: Hop) -> Hop:
        """Fill in the hop's name by reverse lookup; a miss leaves it empty."""
        if not hop.succeeded or hop.hostname:
            return hop
        hostname = await wait_or_cancel(self.resolver.reverse(hop.address), run.cancel)
        return replace(hop, hostname=hostname) if hostname else hop


class ParallelStrategy(ProbeStrategy):
    """
    One single-hop invocation per TTL, all in flight at once.

    Every TTL ends with exactly one hop in its slot: a parsed reply, or a
    timed-out hop when the invocation failed, printed nothing usable, or
    ran out of time.
    """

    name = "parallel"

    def __init__(self, *args, max_concurrency: Optional[int] = None, **kwargs):
        super().__init__(*args, **kwargs)
        self.max_concurrency = max_concurrency

    def invocation_timeout(self, options: RunOptions) -> float:
        return options.wait_seconds + self.process_grace

    async def execute(self, run: ProbeRun) -> Optional[int]:
        options = run.options
        slots = ResultSlots(options.max_hops)
        limit = self.max_concurrency or options.max_hops
        semaphore = asyncio.Semaphore(max(1, limit))

        self.logger.info(f"Probing {run.target} with {options.max_hops} parallel invocations",
                         timeout_s=self.invocation_timeout(options), concurrency=limit)

        tasks = [
            asyncio.ensure_future(self._probe_ttl(run, ttl, slots, semaphore))
            for ttl in range(1, options.max_hops + 1)
        ]
        try:
            await asyncio.gather(*tasks)
        finally:
            # Only reached with pending tasks when gather itself failed
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

        run.check_cancelled()
        if not slots.is_complete():
            self.logger.warning(
                f"Only {slots.filled_count} of {options.max_hops} hop distances reported"
            )

        run.enter(RunState.RECONCILING)
        reconciliation = self.collector.reconcile(slots, run.destination)

        run.enter(RunState.EMITTING)
        await self.collector.emit(reconciliation.hops, run.queue, run.cancel, run.delivered)
        return reconciliation.final_ttl

    async def _probe_ttl(self, run: ProbeRun, ttl: int, slots: ResultSlots,
                         semaphore: asyncio.Semaphore) -> None:
        try:
            await wait_or_cancel(semaphore.acquire(), run.cancel)
        except RunCancelled:
            return
        try:
            hop = await self._probe_once(run, ttl)
        except RunCancelled:
            return
        finally:
            semaphore.release()

        if hop is not None:
            slots.store(ttl, hop)
            self.logger.log_hop(hop.ttl, hop.address, rtt_ms=hop.rtt_ms,
                                looks_final=hop.is_final, timed_out=hop.timed_out)

    async def _probe_once(self, run: ProbeRun, ttl: int) -> Optional[Hop]:
        command = self.platform.single_hop_command(run.target, ttl, run.options)
        try:
            output = await self.runner.run(command, self.invocation_timeout(run.options), run.cancel)
        except ProbeProcessError as e:
            self.logger.warning(f"TTL {ttl}: {e.message}")
            return Hop.timeout(ttl)

        if output.cancelled:
            raise RunCancelled()

        # The utility names the address it resolved; forward resolution may have failed
        header_address = find_destination_header(output.output)
        if header_address:
            run.destination = run.destination.with_address(header_address)

        hop = self.parser.parse_output(output.output, ttl, run.destination)
        if hop is None:
            if not output.timed_out and output.returncode != 0:
                self.logger.debug(f"TTL {ttl}: probe exited with {output.returncode}",
                                  output=output.output.strip()[:200])
            return Hop.timeout(ttl)
        return await self._with_hostname(run, hop)


class SequentialStrategy(ProbeStrategy):
    """
    One invocation covering TTL 1..max_hops, forwarded line by line.

    Stops reading, and kills the utility, as soon as a hop is recognized
    as the destination.
    """

    name = "sequential"

    def run_timeout(self, options: RunOptions) -> float:
        return (options.max_hops * options.wait_seconds * self.platform.probes_per_hop
                + self.process_grace)

    async def execute(self, run: ProbeRun) -> Optional[int]:
        options = run.options
        command = self.platform.full_trace_command(run.target, options)
        deadline = time.monotonic() + self.run_timeout(options)
        seen = set()

        self.logger.info(f"Probing {run.target} with one streaming invocation",
                         timeout_s=self.run_timeout(options))

        async with self.runner.stream(command, run.cancel) as stream:
            lines = stream.lines(deadline)
            try:
                async for line in lines:
                    header_address = parse_destination_header(line)
                    if header_address:
                        run.destination = run.destination.with_address(header_address)
                        continue

                    hop = self.parser.parse(line, run.destination)
                    if hop is None or hop.ttl in seen or hop.ttl > options.max_hops:
                        continue
                    seen.add(hop.ttl)

                    hop = await self._with_hostname(run, hop)
                    self.logger.log_hop(hop.ttl, hop.address, rtt_ms=hop.rtt_ms,
                                        final=hop.is_final, timed_out=hop.timed_out)
                    await self.collector.emit([hop], run.queue, run.cancel, run.delivered)
                    if hop.is_final:
                        return hop.ttl
            except asyncio.TimeoutError:
                self.logger.warning(
                    f"Probe output for {run.target} stopped short after "
                    f"{self.run_timeout(options):.0f}s"
                )
            finally:
                await lines.aclose()

        run.check_cancelled()
        return None
