#!/usr/bin/env -S python3 -B -u
"""
Configuration loader for hoptrace.

Provides centralized configuration loading for all components.

Configuration file location precedence:
1. Environment variable HOPTRACE_CONF (if set)
2. ~/hoptrace.yaml (user's home directory)
3. ./hoptrace.yaml (current directory)

Individual values can be overridden by HOPTRACE_* environment variables.
"""

import copy
import os
import yaml
from pathlib import Path
from typing import Dict, Any, Optional

from hoptrace.core.exceptions import ConfigFileError
from hoptrace.core.structured_logging import get_logger


DEFAULT_CONFIG: Dict[str, Any] = {
    'max_hops': 30,
    'timeout_ms': 3000,
    'strategy': 'auto',
    'max_concurrency': None,
    'process_grace_ms': 1000,
    'kill_grace_ms': 2000,
    'resolve_timeout_ms': 2000,
    'reverse_dns': True,
    'reverse_dns_timeout_ms': 1000,
    'binaries': {
        'linux': None,
        'darwin': None,
        'windows': None,
    },
}

STRATEGIES = ('auto', 'parallel', 'sequential')


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


# env var -> (config key, converter)
ENV_OVERRIDES = {
    'HOPTRACE_MAX_HOPS': ('max_hops', int),
    'HOPTRACE_TIMEOUT_MS': ('timeout_ms', int),
    'HOPTRACE_STRATEGY': ('strategy', str),
    'HOPTRACE_REVERSE_DNS': ('reverse_dns', _parse_bool),
}


def _config_locations() -> list:
    locations = []
    env_config = os.environ.get('HOPTRACE_CONF')
    if env_config:
        locations.append(Path(env_config))
    locations.extend([
        Path.home() / 'hoptrace.yaml',
        Path('./hoptrace.yaml'),
    ])
    return locations


def _merge_config(base: Dict[str, Any], update: Dict[str, Any]) -> None:
    """Recursively merge update into base."""
    for key, value in update.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _merge_config(base[key], value)
        else:
            base[key] = value


def _read_yaml(path: Path) -> Dict[str, Any]:
    with open(path, 'r', encoding='utf-8') as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise yaml.YAMLError(f"top level of {path} must be a mapping")
    return data


def _apply_env_overrides(config: Dict[str, Any]) -> None:
    logger = get_logger(__name__)
    for env_name, (key, convert) in ENV_OVERRIDES.items():
        raw = os.environ.get(env_name)
        if raw is None:
            continue
        try:
            config[key] = convert(raw)
        except ValueError:
            logger.warning(f"Ignoring invalid {env_name}={raw!r}")


def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """
    Load hoptrace configuration with proper precedence.

    Args:
        config_path: Explicit configuration file. When given it must exist
            and parse, otherwise ConfigFileError is raised.

    Returns:
        Dictionary containing configuration values
    """
    logger = get_logger(__name__)
    config = copy.deepcopy(DEFAULT_CONFIG)

    if config_path:
        path = Path(config_path)
        if not path.exists():
            raise ConfigFileError(config_path, "file does not exist")
        try:
            _merge_config(config, _read_yaml(path))
        except (yaml.YAMLError, OSError) as e:
            raise ConfigFileError(config_path, str(e), cause=e)
        logger.debug(f"Loaded configuration from {config_path}")
    else:
        for candidate in _config_locations():
            if not candidate.exists():
                continue
            try:
                _merge_config(config, _read_yaml(candidate))
            except (yaml.YAMLError, OSError) as e:
                # Continue to next file if current one fails
                logger.warning(f"Skipping unreadable config {candidate}: {e}")
                continue
            logger.debug(f"Loaded configuration from {candidate}")
            break

    _apply_env_overrides(config)

    if config.get('strategy') not in STRATEGIES:
        logger.warning(f"Unknown strategy {config.get('strategy')!r}, using 'auto'")
        config['strategy'] = 'auto'

    return config


def get_probe_config(config: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """
    Get the probing engine settings, converted to seconds where the
    engine works in seconds.

    Returns:
        Dictionary with strategy, max_concurrency, process_grace,
        kill_grace, resolve_timeout, reverse_dns and reverse_dns_timeout
    """
    if config is None:
        config = load_config()

    return {
        'strategy': config.get('strategy', 'auto'),
        'max_concurrency': config.get('max_concurrency'),
        'process_grace': config.get('process_grace_ms', 1000) / 1000.0,
        'kill_grace': config.get('kill_grace_ms', 2000) / 1000.0,
        'resolve_timeout': config.get('resolve_timeout_ms', 2000) / 1000.0,
        'reverse_dns': bool(config.get('reverse_dns', True)),
        'reverse_dns_timeout': config.get('reverse_dns_timeout_ms', 1000) / 1000.0,
    }


def get_binary_override(system: str, config: Optional[Dict[str, Any]] = None) -> Optional[str]:
    """
    Get the configured probing utility path for a platform.

    HOPTRACE_TRACEROUTE_BIN wins over the configuration file.

    Args:
        system: Platform name (linux, darwin, windows)

    Returns:
        Binary path or None if not configured
    """
    env_binary = os.environ.get('HOPTRACE_TRACEROUTE_BIN')
    if env_binary:
        return env_binary

    if config is None:
        config = load_config()

    binaries = config.get('binaries') or {}
    return binaries.get(system)
