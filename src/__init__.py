#!/usr/bin/env -S python3 -B -u
"""
hoptrace - Parallel Traceroute Engine

Drives the system traceroute utility to discover the network path to a
destination, one concurrent probe per hop distance.
"""

__version__ = '1.0.0'
__author__ = 'Network Analysis Tool'
__license__ = 'MIT'

# Package metadata
__all__ = [
    'core',
    'probing',
    'cli',
]
