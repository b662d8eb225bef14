#!/usr/bin/env -S python3 -B -u
"""
Probing Engine Module

Runs the system traceroute utility per hop distance, parses its output
and reconciles the results into one ordered path.
"""

from hoptrace.probing.engine import TracerouteEngine, RunHandle, RunController
from hoptrace.probing.parser import (
    LineParser, ToolFlavor, find_destination_header, parse_destination_header
)
from hoptrace.probing.platforms import (
    ProbePlatform,
    LinuxPlatform,
    DarwinPlatform,
    WindowsPlatform,
    detect_platform
)
from hoptrace.probing.resolver import DestinationResolver
from hoptrace.probing.collector import ResultSlots, Reconciliation, ReconciliationCollector
from hoptrace.probing.strategies import ProbeStrategy, ParallelStrategy, SequentialStrategy
from hoptrace.probing.supervisor import ProbeProcessRunner, ProcessOutput

__all__ = [
    'TracerouteEngine',
    'RunHandle',
    'RunController',
    'LineParser',
    'ToolFlavor',
    'parse_destination_header',
    'find_destination_header',
    'ProbePlatform',
    'LinuxPlatform',
    'DarwinPlatform',
    'WindowsPlatform',
    'detect_platform',
    'DestinationResolver',
    'ResultSlots',
    'Reconciliation',
    'ReconciliationCollector',
    'ProbeStrategy',
    'ParallelStrategy',
    'SequentialStrategy',
    'ProbeProcessRunner',
    'ProcessOutput',
]
