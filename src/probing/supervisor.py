#!/usr/bin/env -S python3 -B -u
"""
Probe Process Supervisor

Runs probing utility invocations as asyncio subprocesses with hard
timeouts, observes the run's cancellation event, and guarantees that
every started process is terminated on every exit path.

Processes are started in their own session so that the whole process
group can be signalled; traceroute implementations fork helpers on some
platforms.
"""

import asyncio
import os
import signal
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Awaitable, List, Optional, TypeVar

from hoptrace.core.exceptions import ProbeProcessError
from hoptrace.core.structured_logging import get_logger


T = TypeVar('T')

READ_LIMIT = 64 * 1024


class RunCancelled(Exception):
    """Raised inside the engine when the run's cancel event fired."""


async def wait_or_cancel(aw: Awaitable[T], cancel: Optional[asyncio.Event],
                         timeout: Optional[float] = None) -> T:
    """
    Await aw unless the cancel event fires or the timeout expires first.

    Raises:
        RunCancelled: cancel was set before aw completed
        asyncio.TimeoutError: timeout expired before aw completed
    """
    task = asyncio.ensure_future(aw)
    if cancel is None:
        return await asyncio.wait_for(task, timeout)
    if cancel.is_set():
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        raise RunCancelled()

    cancel_waiter = asyncio.ensure_future(cancel.wait())
    try:
        done, _ = await asyncio.wait({task, cancel_waiter}, timeout=timeout,
                                     return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        task.cancel()
        raise
    finally:
        cancel_waiter.cancel()

    if task in done:
        return task.result()

    task.cancel()
    await asyncio.gather(task, return_exceptions=True)
    if cancel_waiter in done and not cancel_waiter.cancelled():
        raise RunCancelled()
    raise asyncio.TimeoutError()


@dataclass
class ProcessOutput:
    """Outcome of one completed (or abandoned) invocation."""
    command: List[str]
    returncode: Optional[int]
    output: str
    timed_out: bool = False
    cancelled: bool = False
    elapsed: float = 0.0

    @property
    def ok(self) -> bool:
        return self.returncode == 0 and not self.timed_out and not self.cancelled


class ProbeStream:
    """Line reader over a running invocation's combined output."""

    def __init__(self, process: asyncio.subprocess.Process, cancel: Optional[asyncio.Event]):
        self.process = process
        self.cancel = cancel

    async def lines(self, deadline: Optional[float] = None) -> AsyncIterator[str]:
        """
        Yield decoded output lines until EOF.

        Args:
            deadline: time.monotonic() value after which reading stops
                with asyncio.TimeoutError

        Raises:
            RunCancelled: the cancel event fired while waiting for output
        """
        while True:
            remaining = None
            if deadline is not None:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise asyncio.TimeoutError()
            raw = await wait_or_cancel(self.process.stdout.readline(), self.cancel, remaining)
            if not raw:
                return
            yield raw.decode('utf-8', errors='replace').rstrip('\r\n')


class ProbeProcessRunner:
    """
    Starts, bounds and cleans up probing utility processes.

    Attributes:
        kill_grace (float): seconds between SIGTERM and SIGKILL
    """

    def __init__(self, kill_grace: float = 2.0):
        self.kill_grace = kill_grace
        self.logger = get_logger(__name__)

    async def _spawn(self, command: List[str]) -> asyncio.subprocess.Process:
        self.logger.log_command_execution(command)
        try:
            return await asyncio.create_subprocess_exec(
                *command,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
                start_new_session=hasattr(os, 'killpg'),
                limit=READ_LIMIT,
            )
        except (OSError, ValueError) as e:
            raise ProbeProcessError(command, str(e), cause=e)

    async def run(self, command: List[str], timeout: float,
                  cancel: Optional[asyncio.Event] = None) -> ProcessOutput:
        """
        Run one invocation to completion, bounded by timeout and cancel.

        Output collected before a timeout or cancellation is kept.

        Raises:
            ProbeProcessError: the process could not be started
        """
        start = time.monotonic()
        proc = await self._spawn(command)
        chunks: List[bytes] = []

        async def _collect() -> None:
            while True:
                chunk = await proc.stdout.read(4096)
                if not chunk:
                    break
                chunks.append(chunk)
            await proc.wait()

        timed_out = cancelled = False
        try:
            await wait_or_cancel(_collect(), cancel, timeout)
        except asyncio.TimeoutError:
            timed_out = True
            self.logger.debug(f"TIMEOUT after {timeout:.1f}s: {' '.join(command)}")
        except RunCancelled:
            cancelled = True
        finally:
            await self.terminate(proc)

        return ProcessOutput(
            command=command,
            returncode=None if (timed_out or cancelled) else proc.returncode,
            output=b''.join(chunks).decode('utf-8', errors='replace'),
            timed_out=timed_out,
            cancelled=cancelled,
            elapsed=time.monotonic() - start,
        )

    @asynccontextmanager
    async def stream(self, command: List[str],
                     cancel: Optional[asyncio.Event] = None) -> AsyncIterator[ProbeStream]:
        """
        Start a long-running invocation and yield a line stream over it.

        The process is terminated when the block exits, however it exits.

        Raises:
            ProbeProcessError: the process could not be started
        """
        proc = await self._spawn(command)
        try:
            yield ProbeStream(proc, cancel)
        finally:
            await self.terminate(proc)

    async def terminate(self, proc: asyncio.subprocess.Process) -> None:
        """Terminate the process group: SIGTERM, then SIGKILL after kill_grace."""
        if proc.returncode is not None:
            return

        if hasattr(os, 'killpg'):
            try:
                os.killpg(proc.pid, signal.SIGTERM)
            except (ProcessLookupError, PermissionError) as e:
                # Group already gone or not ours; fall through to kill()
                self.logger.trace(f"killpg({proc.pid}) failed: {e}")
            else:
                try:
                    await asyncio.wait_for(proc.wait(), timeout=self.kill_grace)
                    return
                except asyncio.TimeoutError:
                    try:
                        os.killpg(proc.pid, signal.SIGKILL)
                    except (ProcessLookupError, PermissionError):
                        pass

        if proc.returncode is None:
            try:
                proc.kill()
            except ProcessLookupError:
                pass
            except OSError as kill_error:
                self.logger.debug(f"Error during process cleanup: {kill_error}")
            try:
                await asyncio.wait_for(proc.wait(), timeout=self.kill_grace)
            except asyncio.TimeoutError:
                self.logger.warning(f"Probe process {proc.pid} did not exit after SIGKILL")
