#!/usr/bin/env -S python3 -B -u
"""
Data Models for hoptrace

This module provides the data structures exchanged between the probing
engine and its callers.

Key Features:
- Hop records with JSON transport
- Immutable, validated run options
- Terminal run classification and result record
- Destination address sets for final-hop detection
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Any, FrozenSet, Iterable
from enum import Enum
import json

from hoptrace.core.exceptions import ValidationError, HoptraceError


DEFAULT_MAX_HOPS = 30
DEFAULT_TIMEOUT_MS = 3000
MIN_WAIT_SECONDS = 1


@dataclass
class Hop:
    """
    One probe outcome for a single TTL.

    Only is_final may change after construction, and only during
    reconciliation.
    """
    ttl: int
    address: str = ""
    hostname: str = ""
    rtt_ms: float = 0.0
    succeeded: bool = False
    is_final: bool = False
    timed_out: bool = False

    @classmethod
    def timeout(cls, ttl: int) -> "Hop":
        """Hop for a TTL that produced no response."""
        return cls(ttl=ttl, timed_out=True)

    def to_dict(self) -> Dict[str, Any]:
        """Convert Hop to its wire representation."""
        return {
            'ttl': self.ttl,
            'ip': self.address,
            'hostname': self.hostname,
            'rtt': self.rtt_ms,
            'success': self.succeeded,
            'isFinal': self.is_final,
            'isTimeout': self.timed_out,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Hop":
        """Create Hop from its wire representation."""
        return cls(
            ttl=int(data['ttl']),
            address=data.get('ip') or "",
            hostname=data.get('hostname') or "",
            rtt_ms=float(data.get('rtt', 0.0)),
            succeeded=bool(data.get('success', False)),
            is_final=bool(data.get('isFinal', False)),
            timed_out=bool(data.get('isTimeout', False)),
        )

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_json(cls, text: str) -> "Hop":
        return cls.from_dict(json.loads(text))


@dataclass(frozen=True)
class RunOptions:
    """
    Per-run configuration.

    Both values must be positive. The per-hop wait handed to the probing
    utility is clamped to at least one second.
    """
    max_hops: int = DEFAULT_MAX_HOPS
    timeout_ms: int = DEFAULT_TIMEOUT_MS

    def __post_init__(self):
        """Validate options after initialization."""
        for name in ('max_hops', 'timeout_ms'):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
                raise ValidationError(name, value, "be a positive integer")

    @property
    def wait_seconds(self) -> int:
        """Per-hop wait in whole seconds, as probing utilities accept it."""
        return max(MIN_WAIT_SECONDS, self.timeout_ms // 1000)

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "RunOptions":
        """Create RunOptions from a loaded configuration dictionary."""
        return cls(
            max_hops=config.get('max_hops', DEFAULT_MAX_HOPS),
            timeout_ms=config.get('timeout_ms', DEFAULT_TIMEOUT_MS),
        )


class RunOutcome(str, Enum):
    """Terminal classification of a run."""
    REACHED = "reached"
    MAX_HOPS_EXHAUSTED = "max_hops_exhausted"
    CANCELLED = "cancelled"
    FAILED = "failed"


class RunState(str, Enum):
    """Engine state machine for a single run."""
    IDLE = "idle"
    RESOLVING = "resolving"
    PROBING = "probing"
    RECONCILING = "reconciling"
    EMITTING = "emitting"
    TERMINAL = "terminal"


@dataclass(frozen=True)
class DestinationAddresses:
    """
    The set of IPv4 addresses that identify a destination.

    display_address is the single address shown to users; when resolution
    failed it holds the destination text and addresses is empty.
    """
    destination: str
    display_address: str
    addresses: FrozenSet[str] = frozenset()

    def matches(self, address: str) -> bool:
        """Check whether a responding address is the destination."""
        if not address:
            return False
        return address in self.addresses or address == self.display_address

    def __contains__(self, address: object) -> bool:
        return isinstance(address, str) and self.matches(address)

    def with_address(self, address: str) -> "DestinationAddresses":
        """Copy of this set extended with one more address."""
        if not address or address in self.addresses:
            return self
        display = self.display_address if self.addresses else address
        return DestinationAddresses(
            destination=self.destination,
            display_address=display,
            addresses=self.addresses | {address},
        )

    @classmethod
    def of(cls, destination: str, addresses: Iterable[str]) -> "DestinationAddresses":
        ordered = list(dict.fromkeys(addresses))
        display = ordered[0] if ordered else destination
        return cls(destination=destination, display_address=display, addresses=frozenset(ordered))


@dataclass
class RunResult:
    """Terminal record of one run."""
    destination: str
    outcome: RunOutcome
    hops: List[Hop] = field(default_factory=list)
    final_ttl: Optional[int] = None
    strategy: Optional[str] = None
    error: Optional[HoptraceError] = None
    elapsed_ms: float = 0.0
    states: List[RunState] = field(default_factory=list)

    @property
    def reached(self) -> bool:
        return self.outcome == RunOutcome.REACHED

    @property
    def succeeded(self) -> bool:
        """True when probing ran to completion, whether or not it reached."""
        return self.outcome in (RunOutcome.REACHED, RunOutcome.MAX_HOPS_EXHAUSTED)

    def to_dict(self) -> Dict[str, Any]:
        """Convert RunResult to dictionary representation."""
        return {
            'destination': self.destination,
            'outcome': self.outcome.value,
            'final_ttl': self.final_ttl,
            'strategy': self.strategy,
            'elapsed_ms': round(self.elapsed_ms, 3),
            'hops': [hop.to_dict() for hop in self.hops],
            'error': self.error.to_dict() if self.error else None,
        }
