#!/usr/bin/env -S python3 -B -u
"""
Core building blocks: data models, exceptions, configuration and logging.
"""
