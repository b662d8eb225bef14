#!/usr/bin/env -S python3 -B -u
"""
Test Suite for destination resolution

Forward and reverse lookups are patched on the event loop so that no
test touches the network.
"""

import asyncio
import socket
import unittest
from unittest.mock import patch

from hoptrace.core.exceptions import InvalidDestinationError
from hoptrace.probing.resolver import DestinationResolver


def addrinfo(*addresses):
    return [(socket.AF_INET, socket.SOCK_DGRAM, 17, '', (address, 0)) for address in addresses]


class TestValidate(unittest.TestCase):

    def test_valid(self):
        self.assertEqual(DestinationResolver.validate(" example.com "), "example.com")
        self.assertEqual(DestinationResolver.validate("93.184.216.34"), "93.184.216.34")

    def test_invalid(self):
        for destination in ("", "  ", "exa mple.com", "-m", None):
            with self.subTest(destination=destination):
                with self.assertRaises(InvalidDestinationError):
                    DestinationResolver.validate(destination)


class TestResolve(unittest.IsolatedAsyncioTestCase):

    async def test_literal_address_needs_no_lookup(self):
        resolver = DestinationResolver()
        loop = asyncio.get_running_loop()
        with patch.object(loop, 'getaddrinfo') as getaddrinfo:
            resolved = await resolver.resolve("93.184.216.34")

        getaddrinfo.assert_not_called()
        self.assertEqual(resolved.addresses, frozenset({"93.184.216.34"}))
        self.assertIsNone(resolver.display_name(resolved))

    async def test_all_addresses_collected(self):
        resolver = DestinationResolver()
        loop = asyncio.get_running_loop()

        async def fake_getaddrinfo(*args, **kwargs):
            return addrinfo("198.51.100.1", "198.51.100.2", "198.51.100.1")

        with patch.object(loop, 'getaddrinfo', side_effect=fake_getaddrinfo):
            resolved = await resolver.resolve("example.com")

        self.assertEqual(resolved.addresses, frozenset({"198.51.100.1", "198.51.100.2"}))
        self.assertEqual(resolved.display_address, "198.51.100.1")
        self.assertEqual(resolver.display_name(resolved), "198.51.100.1")

    async def test_failure_degrades_to_empty_set(self):
        resolver = DestinationResolver()
        loop = asyncio.get_running_loop()

        async def fake_getaddrinfo(*args, **kwargs):
            raise socket.gaierror(socket.EAI_NONAME, "Name or service not known")

        with patch.object(loop, 'getaddrinfo', side_effect=fake_getaddrinfo):
            resolved = await resolver.resolve("nowhere.invalid")

        self.assertEqual(resolved.addresses, frozenset())
        self.assertEqual(resolved.display_address, "nowhere.invalid")

    async def test_slow_lookup_times_out(self):
        resolver = DestinationResolver(resolve_timeout=0.05)
        loop = asyncio.get_running_loop()

        async def fake_getaddrinfo(*args, **kwargs):
            await asyncio.sleep(10)

        with patch.object(loop, 'getaddrinfo', side_effect=fake_getaddrinfo):
            resolved = await resolver.resolve("slow.example")

        self.assertEqual(resolved.addresses, frozenset())


class TestReverse(unittest.IsolatedAsyncioTestCase):

    async def test_disabled(self):
        resolver = DestinationResolver(reverse_dns=False)
        loop = asyncio.get_running_loop()
        with patch.object(loop, 'getnameinfo') as getnameinfo:
            self.assertEqual(await resolver.reverse("10.0.0.1"), "")
        getnameinfo.assert_not_called()

    async def test_name_found(self):
        resolver = DestinationResolver()
        loop = asyncio.get_running_loop()

        async def fake_getnameinfo(*args, **kwargs):
            return ("gw.example.net", "0")

        with patch.object(loop, 'getnameinfo', side_effect=fake_getnameinfo):
            self.assertEqual(await resolver.reverse("10.0.0.1"), "gw.example.net")

    async def test_miss_is_empty(self):
        resolver = DestinationResolver(reverse_timeout=0.05)
        loop = asyncio.get_running_loop()

        async def unknown(*args, **kwargs):
            raise socket.herror(1, "Unknown host")

        async def slow(*args, **kwargs):
            await asyncio.sleep(10)

        for fake in (unknown, slow):
            with self.subTest(fake=fake.__name__):
                with patch.object(loop, 'getnameinfo', side_effect=fake):
                    self.assertEqual(await resolver.reverse("10.0.0.1"), "")

    async def test_empty_address(self):
        self.assertEqual(await DestinationResolver().reverse(""), "")


if __name__ == '__main__':
    unittest.main()
