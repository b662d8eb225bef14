#!/usr/bin/env -S python3 -B -u
"""
Probe Output Parser

Translates single lines of traceroute/tracert output into Hop records.

Unix (Linux/macOS traceroute, one probe per hop):
     1  192.168.1.1  3.224 ms
     1  router.local (192.168.1.1)  3.224 ms
     2  *
     2  * 10.0.0.2  5.112 ms

Windows (tracert -d):
      1    <1 ms    <1 ms    <1 ms  192.168.1.1
      2     3 ms     *        4 ms  core.example.net [10.0.0.2]
      3     *        *        *     Request timed out.

Anything else (headers, banners, warnings, blank lines) is not a data line.
Parsing never raises on unexpected input.
"""

import re
from enum import Enum
from typing import Container, Optional

from hoptrace.core.models import Hop


class ToolFlavor(Enum):
    """Output dialect of the probing utility."""
    UNIX = "unix"
    WINDOWS = "windows"


_IPV4 = r'\d{1,3}\.\d{1,3}\.\d{1,3}\.\d{1,3}'

# Header lines:
# "traceroute to google.com (142.251.30.138), 30 hops max, 60 byte packets"
# "Tracing route to google.com [142.251.30.138]"
_HEADER_PREFIXES = ('traceroute to ', 'tracing route to ')
_RE_HEADER_ADDRESS = re.compile(r'[(\[](' + _IPV4 + r')[)\]]')

# Unix hop: TTL, optional leading asterisks, then "name (ip)" or "ip", then RTT
_RE_UNIX_HOP = re.compile(
    r'^\s*(?P<ttl>\d+)\s+(?:\*\s+)*'
    r'(?:(?P<name>\S+)\s+\((?P<named_ip>' + _IPV4 + r')\)|(?P<ip>' + _IPV4 + r'))'
    r'\s+(?P<rtt>\d+(?:\.\d+)?)\s*ms'
)
_RE_UNIX_TIMEOUT = re.compile(r'^\s*(?P<ttl>\d+)(?:\s+\*)+\s*$')

# Windows hop: TTL, one to three "N ms"/"<N ms"/"*" columns, then host
_RE_WIN_HOP = re.compile(
    r'^\s*(?P<ttl>\d+)\s+(?P<rtts>(?:(?:<?\d+\s*ms|\*)\s+){1,3})'
    r'(?:(?P<name>[^\s\[]+)\s+\[(?P<named_ip>' + _IPV4 + r')\]|(?P<ip>' + _IPV4 + r'))\s*$'
)
_RE_WIN_RTT = re.compile(r'<?(\d+)\s*ms')
_RE_WIN_TIMEOUT = re.compile(r'^\s*(?P<ttl>\d+)(?:\s+\*){1,3}(?:\s+\D.*)?$')


def parse_destination_header(line: str) -> Optional[str]:
    """
    Extract the destination address from a traceroute/tracert header line.

    Returns:
        The IPv4 address in the header, or None if the line is not a header
    """
    stripped = line.strip()
    if not stripped.lower().startswith(_HEADER_PREFIXES):
        return None
    match = _RE_HEADER_ADDRESS.search(stripped)
    return match.group(1) if match else None


def find_destination_header(output: str) -> Optional[str]:
    """Destination address from the first header line in a complete output."""
    for line in output.splitlines():
        address = parse_destination_header(line)
        if address:
            return address
    return None


def _valid_ipv4(address: str) -> bool:
    return all(int(octet) <= 255 for octet in address.split('.'))


class LineParser:
    """
    Stateless line-to-Hop translator for one output dialect.

    The destination argument is any container of address strings,
    typically a DestinationAddresses; hops whose address is in it are
    marked final.
    """

    def __init__(self, flavor: ToolFlavor = ToolFlavor.UNIX):
        self.flavor = flavor

    def parse(self, line: str, destination: Container[str] = frozenset()) -> Optional[Hop]:
        """
        Parse one line of probe output.

        Returns:
            A Hop, or None when the line is not a hop line
        """
        if not line or not line.strip():
            return None
        if self.flavor == ToolFlavor.WINDOWS:
            return self._parse_windows(line, destination)
        return self._parse_unix(line, destination)

    def parse_output(self, output: str, ttl: int,
                     destination: Container[str] = frozenset()) -> Optional[Hop]:
        """
        Find the hop for one TTL in a complete invocation's output.

        A hop line wins over a timeout line for the same TTL.
        """
        timeout_hop = None
        for line in output.splitlines():
            hop = self.parse(line, destination)
            if hop is None or hop.ttl != ttl:
                continue
            if hop.succeeded:
                return hop
            timeout_hop = timeout_hop or hop
        return timeout_hop

    def _parse_unix(self, line: str, destination: Container[str]) -> Optional[Hop]:
        # Hop patterns are tried first so that "* 10.0.0.1 3 ms" is a hop
        match = _RE_UNIX_HOP.match(line)
        if match:
            address = match.group('named_ip') or match.group('ip')
            hostname = match.group('name') or ""
            if hostname == address:
                hostname = ""
            return self._hop(match.group('ttl'), address, hostname,
                             float(match.group('rtt')), destination)

        match = _RE_UNIX_TIMEOUT.match(line)
        if match:
            return self._timeout(match.group('ttl'))
        return None

    def _parse_windows(self, line: str, destination: Container[str]) -> Optional[Hop]:
        match = _RE_WIN_HOP.match(line)
        if match:
            address = match.group('named_ip') or match.group('ip')
            rtts = _RE_WIN_RTT.findall(match.group('rtts'))
            rtt = float(rtts[0]) if rtts else 0.0
            return self._hop(match.group('ttl'), address, match.group('name') or "",
                             rtt, destination)

        match = _RE_WIN_TIMEOUT.match(line)
        if match:
            return self._timeout(match.group('ttl'))
        return None

    @staticmethod
    def _hop(ttl_text: str, address: str, hostname: str, rtt: float,
             destination: Container[str]) -> Optional[Hop]:
        ttl = int(ttl_text)
        if ttl <= 0 or not _valid_ipv4(address):
            return None
        return Hop(
            ttl=ttl,
            address=address,
            hostname=hostname,
            rtt_ms=rtt,
            succeeded=True,
            is_final=address in destination,
        )

    @staticmethod
    def _timeout(ttl_text: str) -> Optional[Hop]:
        ttl = int(ttl_text)
        if ttl <= 0:
            return None
        return Hop.timeout(ttl)
