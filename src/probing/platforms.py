#!/usr/bin/env -S python3 -B -u
"""
Probing Utility Platforms

Knows where the system traceroute utility lives on each supported
platform and how to invoke it, either for one exact hop distance or for
a complete trace.

The utility carries its own privileges (setuid traceroute on Linux and
macOS, tracert on Windows), so hoptrace never needs elevation itself.
"""

import os
import platform as host_platform
import shutil
from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Type

from hoptrace.core.config_loader import get_binary_override
from hoptrace.core.exceptions import (
    ProbeBinaryNotFoundError, SingleHopUnsupportedError, UnsupportedPlatformError
)
from hoptrace.core.models import RunOptions
from hoptrace.probing.parser import ToolFlavor


class ProbePlatform(ABC):
    """Command-line knowledge for one platform's probing utility."""

    name: str = ""
    flavor: ToolFlavor = ToolFlavor.UNIX
    default_binaries: List[str] = []
    path_name: str = "traceroute"
    supports_single_hop: bool = False
    probes_per_hop: int = 1

    def __init__(self, binary: str):
        self.binary = binary

    @classmethod
    def locate(cls, override: Optional[str] = None) -> "ProbePlatform":
        """
        Find the probing utility and return a platform bound to it.

        Search order: explicit override, the platform's default paths,
        then PATH.

        Raises:
            ProbeBinaryNotFoundError: if nothing executable was found
        """
        searched = []
        candidates = ([override] if override else []) + list(cls.default_binaries)
        for candidate in candidates:
            searched.append(candidate)
            if os.path.isfile(candidate) and os.access(candidate, os.X_OK):
                return cls(candidate)

        found = shutil.which(override or cls.path_name)
        searched.append(f"PATH:{override or cls.path_name}")
        if found:
            return cls(found)

        raise ProbeBinaryNotFoundError(override or cls.path_name, searched=searched)

    def single_hop_command(self, destination: str, ttl: int, options: RunOptions) -> List[str]:
        """Command emitting exactly one probe at exactly one hop distance."""
        raise SingleHopUnsupportedError(self.name)

    @abstractmethod
    def full_trace_command(self, destination: str, options: RunOptions) -> List[str]:
        """Command covering hop distances 1..max_hops in one invocation."""

    def __repr__(self) -> str:
        return f"{type(self).__name__}(binary={self.binary!r})"


class _UnixTraceroutePlatform(ProbePlatform):
    flavor = ToolFlavor.UNIX
    supports_single_hop = True

    def _base_args(self, options: RunOptions) -> List[str]:
        # -n numeric only, -q 1 one probe per hop, -w per-hop wait in seconds
        return [self.binary, '-n', '-q', '1', '-w', str(options.wait_seconds)]

    def single_hop_command(self, destination: str, ttl: int, options: RunOptions) -> List[str]:
        return self._base_args(options) + ['-f', str(ttl), '-m', str(ttl), destination]

    def full_trace_command(self, destination: str, options: RunOptions) -> List[str]:
        return self._base_args(options) + ['-m', str(options.max_hops), destination]


class LinuxPlatform(_UnixTraceroutePlatform):
    name = "linux"
    default_binaries = ['/usr/bin/traceroute', '/usr/sbin/traceroute', '/bin/traceroute']


class DarwinPlatform(_UnixTraceroutePlatform):
    name = "darwin"
    default_binaries = ['/usr/sbin/traceroute']


class WindowsPlatform(ProbePlatform):
    """tracert has no first-TTL option, so it only supports full traces."""

    name = "windows"
    flavor = ToolFlavor.WINDOWS
    default_binaries = [r'C:\Windows\System32\tracert.exe']
    path_name = "tracert"
    supports_single_hop = False
    probes_per_hop = 3

    def full_trace_command(self, destination: str, options: RunOptions) -> List[str]:
        # -d numeric only, -h max hops, -w per-reply wait in milliseconds
        wait_ms = options.wait_seconds * 1000
        return [self.binary, '-d', '-h', str(options.max_hops), '-w', str(wait_ms), destination]


PLATFORMS: Dict[str, Type[ProbePlatform]] = {
    'linux': LinuxPlatform,
    'darwin': DarwinPlatform,
    'windows': WindowsPlatform,
}


def detect_platform(system: Optional[str] = None, binary: Optional[str] = None,
                    config: Optional[Dict] = None) -> ProbePlatform:
    """
    Select and locate the probing utility for a platform.

    Args:
        system: Platform name, defaults to the running system
        binary: Explicit binary path, defaults to the configured override

    Raises:
        UnsupportedPlatformError: no utility is known for the platform
        ProbeBinaryNotFoundError: the utility is not installed
    """
    system = (system or host_platform.system()).lower()
    platform_cls = PLATFORMS.get(system)
    if platform_cls is None:
        raise UnsupportedPlatformError(system, supported=sorted(PLATFORMS))

    if binary is None:
        binary = get_binary_override(system, config)
    return platform_cls.locate(binary)
