#!/usr/bin/env -S python3 -B -u
"""
hoptrace command-line interface

Runs one trace and prints hops as they arrive.

Exit codes:
    0   destination reached
    1   destination not reached within max hops
    10  invalid input
    11  configuration error (unsupported platform, missing traceroute)
    130 cancelled (Ctrl-C)
"""

import argparse
import asyncio
import json
import signal
import sys
from typing import List, Optional

from hoptrace.core.config_loader import load_config
from hoptrace.core.exceptions import ErrorCode, ErrorHandler, HoptraceError
from hoptrace.core.models import Hop, RunOptions, RunOutcome, RunResult
from hoptrace.core.structured_logging import setup_logging
from hoptrace.probing.engine import RunController, TracerouteEngine


def format_hop(hop: Hop) -> str:
    """Human-readable line for one hop."""
    if not hop.succeeded:
        return f"{hop.ttl:>3}  *"
    name = f"{hop.hostname} ({hop.address})" if hop.hostname else hop.address
    marker = "  <- destination" if hop.is_final else ""
    return f"{hop.ttl:>3}  {name}  {hop.rtt_ms:.3f} ms{marker}"


def format_summary(result: RunResult) -> str:
    if result.outcome == RunOutcome.REACHED:
        return f"Reached {result.destination} in {result.final_ttl} hops"
    if result.outcome == RunOutcome.MAX_HOPS_EXHAUSTED:
        return f"{result.destination} not reached within {len(result.hops)} hops"
    if result.outcome == RunOutcome.CANCELLED:
        return "Trace cancelled"
    return f"Trace to {result.destination} failed"


def exit_code_for(result: RunResult) -> int:
    if result.outcome == RunOutcome.REACHED:
        return ErrorCode.SUCCESS
    if result.outcome == RunOutcome.MAX_HOPS_EXHAUSTED:
        return ErrorCode.MAX_HOPS_EXHAUSTED
    if result.outcome == RunOutcome.CANCELLED:
        return ErrorCode.CANCELLED
    if result.error is not None:
        return result.error.error_code
    return ErrorCode.INTERNAL_ERROR


async def trace(engine: TracerouteEngine, destination: str, options: RunOptions,
                json_output: bool = False) -> RunResult:
    """Run one trace, printing each hop as soon as it is delivered."""
    controller = RunController(engine)
    handle = controller.start(destination, options)

    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, handle.cancel)
    except (NotImplementedError, RuntimeError):
        # Windows event loops: Ctrl-C arrives as KeyboardInterrupt instead
        pass

    try:
        async for hop in handle.hops_iter():
            print(hop.to_json() if json_output else format_hop(hop), flush=True)
        return await handle.wait()
    finally:
        try:
            loop.remove_signal_handler(signal.SIGINT)
        except (NotImplementedError, RuntimeError):
            pass


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='hoptrace',
        description='Trace the network path to a host using parallel per-hop probes',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog='Exit codes:' + __doc__.split('Exit codes:', 1)[1],
    )
    parser.add_argument('destination', help='Destination host name or IPv4 address')
    parser.add_argument('-m', '--max-hops', type=int, default=None,
                        help='Maximum number of hops to probe (default: 30)')
    parser.add_argument('-w', '--timeout-ms', type=int, default=None,
                        help='Per-hop wait in milliseconds, at least 1000 (default: 3000)')
    parser.add_argument('--strategy', choices=['auto', 'parallel', 'sequential'], default=None,
                        help='Probe strategy (default: auto)')
    parser.add_argument('--no-dns', action='store_true',
                        help='Do not look up hop host names')
    parser.add_argument('-c', '--config', default=None,
                        help='Configuration file (default: $HOPTRACE_CONF, ~/hoptrace.yaml, ./hoptrace.yaml)')
    parser.add_argument('-j', '--json', action='store_true',
                        help='Print one JSON object per hop and a JSON summary')
    parser.add_argument('-v', '--verbose', action='count', default=0,
                        help='Increase verbosity (-v, -vv, -vvv)')
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.verbose)

    try:
        config = load_config(args.config)
        if args.strategy:
            config['strategy'] = args.strategy
        if args.no_dns:
            config['reverse_dns'] = False

        defaults = RunOptions.from_config(config)
        options = RunOptions(
            max_hops=args.max_hops if args.max_hops is not None else defaults.max_hops,
            timeout_ms=args.timeout_ms if args.timeout_ms is not None else defaults.timeout_ms,
        )
        engine = TracerouteEngine(config=config)
        result = asyncio.run(trace(engine, args.destination, options, args.json))
    except KeyboardInterrupt:
        print("\nOperation cancelled by user", file=sys.stderr)
        return ErrorCode.CANCELLED
    except HoptraceError as e:
        return ErrorHandler.handle_error(e, args.verbose)

    if result.error is not None:
        ErrorHandler.handle_error(result.error, args.verbose)

    if args.json:
        summary = result.to_dict()
        summary.pop('hops')
        print(json.dumps(summary))
    else:
        print(format_summary(result), file=sys.stderr)

    return exit_code_for(result)


if __name__ == '__main__':
    sys.exit(main())
