#!/usr/bin/env -S python3 -B -u
"""
Test suite for structured logging.

Covers verbosity gating, context rendering for hop and command records,
and the per-verbosity logger cache.
"""

import json
import unittest

from hoptrace.core.structured_logging import (
    StructuredLogger, get_logger, get_verbose_level, setup_logging
)


class TestVerbosity(unittest.TestCase):
    """Test which messages each -v count lets through."""

    def test_quiet_shows_errors_only(self):
        logger = StructuredLogger("hoptrace.test.quiet", verbose_level=0)
        with self.assertNoLogs("hoptrace.test.quiet"):
            logger.warning("slow hop")
            logger.info("tracing")
            logger.debug("details")
        with self.assertLogs("hoptrace.test.quiet", level="ERROR") as captured:
            logger.error("probing failed", state="probing")
        self.assertEqual(captured.records[0].getMessage(), "probing failed")

    def test_debug_appends_context(self):
        logger = StructuredLogger("hoptrace.test.debug", verbose_level=2)
        with self.assertLogs("hoptrace.test.debug", level="DEBUG") as captured:
            logger.info("Tracing example.com", strategy="parallel", max_hops=30)
            logger.trace("not shown below verbosity 3")
        self.assertEqual(len(captured.records), 1)
        self.assertEqual(captured.records[0].getMessage(),
                         "Tracing example.com | strategy=parallel max_hops=30")

    def test_trace_renders_context_as_json(self):
        logger = StructuredLogger("hoptrace.test.trace", verbose_level=3)
        with self.assertLogs("hoptrace.test.trace", level="DEBUG") as captured:
            logger.trace("killpg failed", pid=4242)
        message = captured.records[0].getMessage()
        self.assertTrue(message.startswith("[TRACE] killpg failed | "))
        self.assertEqual(json.loads(message.split(" | ", 1)[1]), {"pid": 4242})


class TestProbeRecords(unittest.TestCase):
    """Test hop and command log lines."""

    def setUp(self):
        self.logger = StructuredLogger("hoptrace.test.records", verbose_level=2)

    def test_hop_line(self):
        with self.assertLogs("hoptrace.test.records", level="DEBUG") as captured:
            self.logger.log_hop(3, "10.0.0.3", rtt_ms=1.5, final=False, hostname=None)
            self.logger.log_hop(12, "", timed_out=True)
        self.assertEqual(captured.records[0].getMessage(),
                         "TTL  3: 10.0.0.3 | rtt_ms=1.500 final=False")
        self.assertEqual(captured.records[1].getMessage(), "TTL 12: * | timed_out=True")

    def test_command_line(self):
        with self.assertLogs("hoptrace.test.records", level="DEBUG") as captured:
            self.logger.log_command_execution(
                ['/usr/bin/traceroute', '-n', '-f', '4', '-m', '4', 'example.com'], timeout_s=2.0
            )
        self.assertEqual(
            captured.records[0].getMessage(),
            "Running: /usr/bin/traceroute -n -f 4 -m 4 example.com | timeout_s=2.000"
        )

    def test_timer_reports_on_error(self):
        with self.assertLogs("hoptrace.test.records", level="DEBUG") as captured:
            with self.assertRaises(RuntimeError):
                with self.logger.timer("resolving example.com"):
                    raise RuntimeError("resolver gone")
        messages = [record.getMessage() for record in captured.records]
        self.assertEqual(messages[0], "Starting resolving example.com")
        self.assertTrue(messages[1].startswith("Completed resolving example.com | elapsed_ms="))


class TestLoggerCache(unittest.TestCase):

    def setUp(self):
        self.addCleanup(setup_logging, get_verbose_level())

    def test_shared_per_name_and_level(self):
        setup_logging(1)
        first = get_logger("hoptrace.test.cache")
        self.assertIs(first, get_logger("hoptrace.test.cache"))
        self.assertEqual(first.verbose_level, 1)

        setup_logging(2)
        second = get_logger("hoptrace.test.cache")
        self.assertIsNot(first, second)
        self.assertEqual(second.verbose_level, 2)


if __name__ == '__main__':
    unittest.main()
