#!/usr/bin/env -S python3 -B -u
"""
Test Suite for the hoptrace command-line interface

Runs main() end to end against scripted probe runners and checks
output formats and exit codes.
"""

import json
import unittest
from contextlib import redirect_stderr, redirect_stdout
from io import StringIO
from unittest.mock import patch

from hoptrace.cli.trace_cli import exit_code_for, format_hop, format_summary, main
from hoptrace.core.exceptions import ConfigFileError, ErrorCode, InvalidDestinationError
from hoptrace.core.models import Hop, RunOutcome, RunResult
from hoptrace.probing.engine import TracerouteEngine

from probe_fakes import (
    DEST_IP, ScriptedRunner, StaticResolver, hop_output, linux_platform, make_config
)


class TestFormatting(unittest.TestCase):

    def test_format_hop(self):
        self.assertEqual(format_hop(Hop.timeout(4)), "  4  *")
        self.assertEqual(
            format_hop(Hop(ttl=1, address="10.0.0.1", rtt_ms=1.5, succeeded=True)),
            "  1  10.0.0.1  1.500 ms",
        )
        line = format_hop(Hop(ttl=12, address=DEST_IP, hostname="example.com", rtt_ms=20.0,
                              succeeded=True, is_final=True))
        self.assertEqual(line, f" 12  example.com ({DEST_IP})  20.000 ms  <- destination")

    def test_summary_and_exit_codes(self):
        cases = [
            (RunResult("example.com", RunOutcome.REACHED, final_ttl=6), ErrorCode.SUCCESS, "in 6 hops"),
            (RunResult("example.com", RunOutcome.MAX_HOPS_EXHAUSTED, hops=[Hop.timeout(1)]),
             ErrorCode.MAX_HOPS_EXHAUSTED, "not reached within 1 hops"),
            (RunResult("example.com", RunOutcome.CANCELLED), ErrorCode.CANCELLED, "cancelled"),
            (RunResult("", RunOutcome.FAILED, error=InvalidDestinationError("")),
             ErrorCode.INVALID_INPUT, "failed"),
            (RunResult("example.com", RunOutcome.FAILED), ErrorCode.INTERNAL_ERROR, "failed"),
        ]
        for result, code, text in cases:
            with self.subTest(outcome=result.outcome):
                self.assertEqual(exit_code_for(result), code)
                self.assertIn(text, format_summary(result))


class TestMain(unittest.TestCase):
    """Test main() with the engine wired to scripted probes."""

    def setUp(self):
        self.runner = ScriptedRunner({
            1: hop_output(1, "10.0.0.1"),
            2: hop_output(2, DEST_IP),
        })
        self.configs = []

        def build_engine(config):
            self.configs.append(config)
            return TracerouteEngine(platform=linux_platform(),
                                    resolver=StaticResolver({"example.com": [DEST_IP]}),
                                    runner=self.runner, config=config)

        engine_patch = patch('hoptrace.cli.trace_cli.TracerouteEngine', side_effect=build_engine)
        engine_patch.start()
        self.addCleanup(engine_patch.stop)
        config_patch = patch('hoptrace.cli.trace_cli.load_config', return_value=make_config())
        self.load_config = config_patch.start()
        self.addCleanup(config_patch.stop)

    def run_main(self, *argv):
        stdout, stderr = StringIO(), StringIO()
        with redirect_stdout(stdout), redirect_stderr(stderr):
            code = main(list(argv))
        return code, stdout.getvalue(), stderr.getvalue()

    def test_reached(self):
        code, out, err = self.run_main("example.com", "-m", "5", "-w", "1000")

        self.assertEqual(code, ErrorCode.SUCCESS)
        self.assertEqual(out.splitlines(), [
            "  1  10.0.0.1  1.500 ms",
            f"  2  {DEST_IP}  1.500 ms  <- destination",
        ])
        self.assertIn("Reached example.com in 2 hops", err)
        self.assertEqual(len(self.runner.commands), 5)

    def test_json_output(self):
        code, out, _ = self.run_main("example.com", "-m", "3", "-w", "1000", "--json")

        records = [json.loads(line) for line in out.splitlines()]
        self.assertEqual(code, ErrorCode.SUCCESS)
        self.assertEqual([r['ttl'] for r in records[:-1]], [1, 2])
        self.assertTrue(records[1]['isFinal'])
        self.assertEqual(records[-1]['outcome'], "reached")
        self.assertNotIn('hops', records[-1])

    def test_not_reached(self):
        self.runner.outputs = {}
        code, out, _ = self.run_main("example.com", "-m", "2", "-w", "1000")

        self.assertEqual(code, ErrorCode.MAX_HOPS_EXHAUSTED)
        self.assertEqual(out.splitlines(), ["  1  *", "  2  *"])

    def test_options_flow_into_config(self):
        self.run_main("example.com", "-m", "2", "--strategy", "parallel", "--no-dns")
        self.assertEqual(self.configs[0]['strategy'], "parallel")
        self.assertFalse(self.configs[0]['reverse_dns'])

    def test_invalid_max_hops(self):
        code, _, err = self.run_main("example.com", "-m", "0")
        self.assertEqual(code, ErrorCode.INVALID_INPUT)
        self.assertIn("Invalid max_hops", err)

    def test_invalid_destination(self):
        code, out, err = self.run_main("bad host")
        self.assertEqual(code, ErrorCode.INVALID_INPUT)
        self.assertEqual(out, "")
        self.assertIn("Invalid destination", err)
        self.assertEqual(self.runner.commands, [])

    def test_configuration_error(self):
        self.load_config.side_effect = ConfigFileError("/etc/hoptrace.yaml", "file does not exist")
        code, _, err = self.run_main("example.com", "-c", "/etc/hoptrace.yaml")
        self.assertEqual(code, ErrorCode.CONFIGURATION_ERROR)
        self.assertIn("Cannot load configuration file", err)


if __name__ == '__main__':
    unittest.main()
