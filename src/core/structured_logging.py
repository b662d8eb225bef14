#!/usr/bin/env -S python3 -B -u
"""
Structured Logging for hoptrace

Thin layer over the standard logging module. Every message may carry
key=value context; how much reaches stderr is decided by the -v count:

    0   errors only
    1   progress: warnings and info
    2   debug: per-hop results, spawned commands, timings, context
    3   trace: timestamps, context as JSON, tracebacks
"""

import json
import logging as std_logging
import sys
import time
from contextlib import contextmanager
from typing import Any, Dict, List, Optional, Union


# Lowest -v count at which each level is written
_MIN_VERBOSITY = {
    std_logging.ERROR: 0,
    std_logging.WARNING: 1,
    std_logging.INFO: 1,
    std_logging.DEBUG: 2,
}
TRACE_VERBOSITY = 3

_loggers: Dict[str, "StructuredLogger"] = {}
_verbose_level = 0


class StructuredLogger:
    """
    Verbosity-gated logger writing one line per message to stderr.

    Context is appended to the message as "| key=value ..." from
    verbosity 2 on; None values are left out, floats are shown with
    three decimals and argument lists are joined with spaces.
    """

    def __init__(self, name: str, verbose_level: int = 0):
        self.name = name
        self.verbose_level = verbose_level
        self.logger = std_logging.getLogger(name)

        self.logger.setLevel(std_logging.DEBUG)
        self.logger.propagate = False
        self.logger.handlers.clear()

        handler = std_logging.StreamHandler(sys.stderr)
        handler.setFormatter(self._create_formatter())
        self.logger.addHandler(handler)

    def _create_formatter(self) -> std_logging.Formatter:
        if self.verbose_level >= TRACE_VERBOSITY:
            return std_logging.Formatter(
                '%(asctime)s.%(msecs)03d [%(name)s] %(levelname)s: %(message)s',
                datefmt='%H:%M:%S'
            )
        if self.verbose_level >= 2:
            return std_logging.Formatter('[%(name)s] %(levelname)s: %(message)s')
        return std_logging.Formatter('%(message)s')

    def enabled(self, level: int) -> bool:
        return self.verbose_level >= _MIN_VERBOSITY.get(level, TRACE_VERBOSITY)

    def _emit(self, level: int, message: str, context: Dict[str, Any]) -> None:
        if not self.enabled(level):
            return
        if context and self.verbose_level >= 2:
            message = f"{message} | {self._format_context(context)}"
        self.logger.log(level, message)

    def error(self, message: str, **context: Any) -> None:
        self._emit(std_logging.ERROR, message, context)

    def warning(self, message: str, **context: Any) -> None:
        self._emit(std_logging.WARNING, message, context)

    def info(self, message: str, **context: Any) -> None:
        self._emit(std_logging.INFO, message, context)

    def debug(self, message: str, **context: Any) -> None:
        self._emit(std_logging.DEBUG, message, context)

    def trace(self, message: str, **context: Any) -> None:
        """Log at verbosity 3 only (tracebacks, failed cleanups, lookup misses)."""
        if self.verbose_level >= TRACE_VERBOSITY:
            self._emit(std_logging.DEBUG, f"[TRACE] {message}", context)

    def _format_context(self, context: Dict[str, Any]) -> str:
        values = {key: _context_value(value) for key, value in context.items()
                  if value is not None}
        if self.verbose_level >= TRACE_VERBOSITY:
            return json.dumps(values, default=str)
        return " ".join(f"{key}={value}" for key, value in values.items())

    @contextmanager
    def timer(self, operation: str):
        """Log how long the enclosed block took, also when it raises."""
        start = time.monotonic()
        self.debug(f"Starting {operation}")
        try:
            yield
        finally:
            self.debug(f"Completed {operation}",
                       elapsed_ms=(time.monotonic() - start) * 1000)

    def log_hop(self, ttl: int, address: str, **details: Any) -> None:
        """Log one hop result; an empty address is a timed-out hop."""
        self.debug(f"TTL {ttl:>2}: {address or '*'}", **details)

    def log_command_execution(self, command: Union[str, List[str]], **details: Any) -> None:
        """Log a probing utility invocation as a copy-pasteable command line."""
        self.debug(f"Running: {_context_value(command)}", **details)


def _context_value(value: Any) -> Any:
    if isinstance(value, bool):
        return value
    if isinstance(value, float):
        return f"{value:.3f}"
    if isinstance(value, (list, tuple)):
        return " ".join(str(item) for item in value)
    return value


def get_logger(name: str, verbose_level: Optional[int] = None) -> StructuredLogger:
    """
    Get the logger for name at the given verbosity.

    Args:
        name: Logger name (usually __name__)
        verbose_level: Verbosity level (0-3), defaults to the level set by setup_logging

    Returns:
        StructuredLogger instance, shared per name and verbosity
    """
    if verbose_level is None:
        verbose_level = get_verbose_level()

    cache_key = f"{name}:{verbose_level}"
    if cache_key not in _loggers:
        _loggers[cache_key] = StructuredLogger(name, verbose_level)
    return _loggers[cache_key]


def setup_logging(verbose_level: int = 0) -> None:
    """Set the process-wide verbosity used by get_logger."""
    global _verbose_level
    _verbose_level = verbose_level

    std_logging.getLogger().setLevel(std_logging.WARNING)

    # asyncio reports every killed subprocess at debug level
    std_logging.getLogger('asyncio').setLevel(std_logging.ERROR)


def get_verbose_level() -> int:
    return _verbose_level
