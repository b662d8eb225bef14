#!/usr/bin/env -S python3 -B -u
"""
Traceroute Engine

Entry point of the probing engine. A run resolves the destination,
selects a probe strategy for the platform, streams hops to the caller's
queue in ascending TTL order, and finishes with a RunResult whose outcome
is one of reached, max_hops_exhausted, cancelled or failed.

Callers own the hop queue; the engine only puts hops on it. Cancellation
is requested through an asyncio.Event and is reported as an outcome,
never raised.

Typical use:

    engine = TracerouteEngine()
    controller = RunController(engine)
    handle = controller.start("example.com", RunOptions(max_hops=20))
    async for hop in handle.hops_iter():
        print(hop.ttl, hop.address, hop.rtt_ms)
    result = await handle.wait()
"""

import asyncio
import time
import traceback
from typing import Any, AsyncIterator, Dict, Optional

from hoptrace.core.config_loader import get_probe_config, load_config
from hoptrace.core.exceptions import HoptraceError
from hoptrace.core.models import (
    DEFAULT_MAX_HOPS, DestinationAddresses, Hop, RunOptions, RunOutcome, RunResult, RunState
)
from hoptrace.core.structured_logging import get_logger
from hoptrace.probing.collector import ReconciliationCollector
from hoptrace.probing.platforms import ProbePlatform, detect_platform
from hoptrace.probing.resolver import DestinationResolver
from hoptrace.probing.strategies import (
    ParallelStrategy, ProbeRun, ProbeStrategy, SequentialStrategy
)
from hoptrace.probing.supervisor import ProbeProcessRunner, RunCancelled, wait_or_cancel


class TracerouteEngine:
    """
    Orchestrates resolution, probing, reconciliation and emission.

    Attributes:
        config (dict): loaded hoptrace configuration
        resolver (DestinationResolver): forward/reverse name resolution
        runner (ProbeProcessRunner): probe process supervisor
    """

    def __init__(self, platform: Optional[ProbePlatform] = None,
                 resolver: Optional[DestinationResolver] = None,
                 runner: Optional[ProbeProcessRunner] = None,
                 config: Optional[Dict[str, Any]] = None):
        """
        Initialize the engine.

        Args:
            platform: Probing utility platform; detected at run start if omitted
            resolver: Destination resolver; built from configuration if omitted
            runner: Process runner; built from configuration if omitted
            config: Configuration dictionary; loaded from hoptrace.yaml if omitted
        """
        self.config = config if config is not None else load_config()
        self.probe_config = get_probe_config(self.config)
        self._platform = platform
        self.resolver = resolver or DestinationResolver(
            resolve_timeout=self.probe_config['resolve_timeout'],
            reverse_dns=self.probe_config['reverse_dns'],
            reverse_timeout=self.probe_config['reverse_dns_timeout'],
        )
        self.runner = runner or ProbeProcessRunner(kill_grace=self.probe_config['kill_grace'])
        self.collector = ReconciliationCollector()
        self.logger = get_logger(__name__)

    def default_options(self) -> RunOptions:
        return RunOptions.from_config(self.config)

    def platform(self) -> ProbePlatform:
        """
        The probing utility platform, detected on first use.

        Raises:
            ConfigurationError: unsupported platform or missing binary
        """
        if self._platform is None:
            self._platform = detect_platform(config=self.config)
            self.logger.debug(f"Using {self._platform!r}")
        return self._platform

    def select_strategy(self, platform: ProbePlatform) -> ProbeStrategy:
        """Pick parallel where the platform can target one exact TTL."""
        requested = self.probe_config['strategy']
        common = dict(
            platform=platform,
            runner=self.runner,
            resolver=self.resolver,
            collector=self.collector,
            process_grace=self.probe_config['process_grace'],
        )

        if requested == 'sequential':
            return SequentialStrategy(**common)

        if not platform.supports_single_hop:
            if requested == 'parallel':
                self.logger.warning(
                    f"{platform.name} probing utility cannot target a single hop; "
                    "falling back to sequential probing"
                )
            return SequentialStrategy(**common)

        return ParallelStrategy(max_concurrency=self.probe_config['max_concurrency'], **common)

    async def run(self, destination: str, options: Optional[RunOptions] = None,
                  hops: Optional["asyncio.Queue[Hop]"] = None,
                  cancel: Optional[asyncio.Event] = None) -> RunResult:
        """
        Trace the path to destination.

        Args:
            destination: Host name or IPv4 address
            options: Run options; configuration defaults if omitted
            hops: Queue receiving hops in ascending TTL order; a queue
                bounded to max_hops is created if omitted
            cancel: Event that aborts the run when set

        Returns:
            RunResult; hops delivered before any failure stay in result.hops
        """
        cancel = cancel or asyncio.Event()
        start = time.monotonic()

        probe_run = ProbeRun(
            target=destination,
            destination=DestinationAddresses.of(destination, []),
            options=options,
            queue=hops,
            cancel=cancel,
        )
        result = RunResult(
            destination=destination,
            outcome=RunOutcome.FAILED,
            hops=probe_run.delivered,
            states=probe_run.states,
        )

        try:
            # Invalid configured defaults fail the run like any other setup error
            options = probe_run.options = options or self.default_options()
            if probe_run.queue is None:
                probe_run.queue = asyncio.Queue(maxsize=options.max_hops)
            probe_run.target = self.resolver.validate(destination)
            strategy = self.select_strategy(self.platform())
            result.strategy = strategy.name

            probe_run.check_cancelled()
            probe_run.enter(RunState.RESOLVING)
            with self.logger.timer(f"resolving {probe_run.target}"):
                probe_run.destination = await wait_or_cancel(
                    self.resolver.resolve(probe_run.target), cancel
                )
            shown = self.resolver.display_name(probe_run.destination)
            self.logger.info(f"Tracing {probe_run.target}" + (f" ({shown})" if shown else ""),
                             strategy=strategy.name, max_hops=options.max_hops)

            probe_run.enter(RunState.PROBING)
            result.final_ttl = await strategy.execute(probe_run)
            result.outcome = (RunOutcome.REACHED if result.final_ttl is not None
                              else RunOutcome.MAX_HOPS_EXHAUSTED)
        except RunCancelled:
            result.outcome = RunOutcome.CANCELLED
        except HoptraceError as e:
            result.outcome = RunOutcome.FAILED
            result.error = e
            self.logger.error(e.message, destination=destination, state=probe_run.state.value)
        except Exception as e:
            # Hops delivered so far stay in the result
            result.outcome = RunOutcome.FAILED
            result.error = HoptraceError(
                f"Unexpected error while tracing {destination}: {e}",
                suggestion="This might be a bug. Please report it with the output of -vvv.",
                details={"state": probe_run.state.value, "hops_delivered": len(probe_run.delivered)},
                cause=e,
            )
            self.logger.error(result.error.message, state=probe_run.state.value)
            self.logger.trace(traceback.format_exc())

        if cancel.is_set():
            result.outcome = RunOutcome.CANCELLED
            result.error = None

        probe_run.enter(RunState.TERMINAL)
        result.elapsed_ms = (time.monotonic() - start) * 1000
        self.logger.info(
            f"Trace to {destination} finished: {result.outcome.value}",
            hops=len(result.hops), final_ttl=result.final_ttl,
            elapsed_ms=f"{result.elapsed_ms:.0f}",
        )
        return result


class RunHandle:
    """
    An owned, cancellable run.

    Holds the run's task, its bounded hop queue and its cancel event.
    """

    def __init__(self, destination: str, options: Optional[RunOptions],
                 hops: "asyncio.Queue[Hop]", cancel: asyncio.Event,
                 task: "asyncio.Future[RunResult]"):
        self.destination = destination
        self.options = options
        self.hops = hops
        self._cancel = cancel
        self._task = task

    @classmethod
    def start(cls, engine: TracerouteEngine, destination: str,
              options: Optional[RunOptions] = None) -> "RunHandle":
        """Start a run on the current event loop."""
        try:
            options = options or engine.default_options()
        except HoptraceError:
            # engine.run reports the invalid configuration as a failed result
            options = None
        hops: "asyncio.Queue[Hop]" = asyncio.Queue(
            maxsize=options.max_hops if options else DEFAULT_MAX_HOPS
        )
        cancel = asyncio.Event()
        task = asyncio.ensure_future(engine.run(destination, options, hops, cancel))
        return cls(destination, options, hops, cancel, task)

    def cancel(self) -> None:
        self._cancel.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    def done(self) -> bool:
        return self._task.done()

    async def wait(self) -> RunResult:
        """Wait for the run to finish and return its result."""
        return await asyncio.shield(self._task)

    async def hops_iter(self) -> AsyncIterator[Hop]:
        """Yield hops as they are delivered until the run finishes."""
        while True:
            if self._task.done():
                while not self.hops.empty():
                    yield self.hops.get_nowait()
                return

            getter = asyncio.ensure_future(self.hops.get())
            try:
                await asyncio.wait({getter, self._task}, return_when=asyncio.FIRST_COMPLETED)
            finally:
                if not getter.done():
                    getter.cancel()
            if getter.done() and not getter.cancelled():
                yield getter.result()


class RunController:
    """
    Keeps at most one active run.

    Starting a run cancels and replaces the previous one.
    """

    def __init__(self, engine: TracerouteEngine):
        self.engine = engine
        self._current: Optional[RunHandle] = None

    @property
    def current(self) -> Optional[RunHandle]:
        return self._current

    def start(self, destination: str, options: Optional[RunOptions] = None) -> RunHandle:
        previous = self._current
        if previous is not None and not previous.done():
            previous.cancel()
        self._current = RunHandle.start(self.engine, destination, options)
        return self._current

    def stop(self) -> None:
        if self._current is not None:
            self._current.cancel()
            self._current = None
