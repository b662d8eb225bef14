#!/usr/bin/env -S python3 -B -u
"""
Destination Resolver

Resolves a destination name to every IPv4 address it is known by, so
that a probe answered by any address of a multi-homed or round-robin
destination is recognized as the final hop. Also performs the
best-effort reverse lookups used to name hops found in numeric mode.

Neither lookup is ever fatal to a run.
"""

import asyncio
import ipaddress
import socket
from typing import Optional

from hoptrace.core.exceptions import InvalidDestinationError
from hoptrace.core.models import DestinationAddresses
from hoptrace.core.structured_logging import get_logger


class DestinationResolver:
    """
    Forward and reverse name resolution bounded by timeouts.

    Attributes:
        resolve_timeout (float): seconds allowed for forward resolution
        reverse_dns (bool): whether reverse lookups are performed at all
        reverse_timeout (float): seconds allowed for one reverse lookup
    """

    def __init__(self, resolve_timeout: float = 2.0, reverse_dns: bool = True,
                 reverse_timeout: float = 1.0):
        self.resolve_timeout = resolve_timeout
        self.reverse_dns = reverse_dns
        self.reverse_timeout = reverse_timeout
        self.logger = get_logger(__name__)

    @staticmethod
    def validate(destination: str) -> str:
        """
        Normalize a destination string.

        Raises:
            InvalidDestinationError: empty or contains whitespace
        """
        if not isinstance(destination, str):
            raise InvalidDestinationError(str(destination))
        cleaned = destination.strip()
        if not cleaned or any(ch.isspace() for ch in cleaned) or cleaned.startswith('-'):
            raise InvalidDestinationError(destination)
        return cleaned

    async def resolve(self, destination: str) -> DestinationAddresses:
        """
        Resolve destination to its full set of IPv4 addresses.

        A literal IPv4 address resolves to itself. Failure or timeout
        yields an empty set whose display address is the destination text.
        """
        try:
            return DestinationAddresses.of(destination, [str(ipaddress.IPv4Address(destination))])
        except ValueError:
            pass

        loop = asyncio.get_running_loop()
        try:
            infos = await asyncio.wait_for(
                loop.getaddrinfo(destination, None, family=socket.AF_INET,
                                 type=socket.SOCK_DGRAM),
                timeout=self.resolve_timeout,
            )
        except asyncio.TimeoutError:
            self.logger.warning(f"Resolving {destination} timed out after {self.resolve_timeout}s")
            return DestinationAddresses.of(destination, [])
        except (socket.gaierror, OSError, UnicodeError) as e:
            self.logger.warning(f"Cannot resolve {destination}: {e}")
            return DestinationAddresses.of(destination, [])

        addresses = [info[4][0] for info in infos]
        resolved = DestinationAddresses.of(destination, addresses)
        self.logger.debug(f"Resolved {destination}",
                          addresses=",".join(sorted(resolved.addresses)))
        return resolved

    async def reverse(self, address: str) -> str:
        """
        Best-effort reverse lookup.

        Returns:
            The host name, or "" when disabled, unresolvable or too slow
        """
        if not self.reverse_dns or not address:
            return ""

        loop = asyncio.get_running_loop()
        try:
            host, _ = await asyncio.wait_for(
                loop.getnameinfo((address, 0), socket.NI_NAMEREQD),
                timeout=self.reverse_timeout,
            )
        except (asyncio.TimeoutError, socket.gaierror, socket.herror, OSError, UnicodeError) as e:
            self.logger.trace(f"No reverse name for {address}: {e!r}")
            return ""
        return host if host != address else ""

    def display_name(self, resolved: DestinationAddresses) -> Optional[str]:
        """Address to show next to the destination, if it differs from it."""
        if resolved.display_address and resolved.display_address != resolved.destination:
            return resolved.display_address
        return None
