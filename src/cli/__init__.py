#!/usr/bin/env -S python3 -B -u
"""
Command-line entry point for hoptrace.
"""
