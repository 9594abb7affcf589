#!/usr/bin/env python3
"""
Command Line Integration Tests

Runs parkwise.main.main against a temporary SQLite file and checks exit codes
and JSON output.
"""

import io
import json
import logging
import shutil
import tempfile
import unittest
from contextlib import redirect_stdout, redirect_stderr
from pathlib import Path

from parkwise.main import main, build_parser


class TestCommandLine(unittest.TestCase):
    """End-to-end CLI scenarios"""

    def setUp(self):
        """Set up a scratch database and settings file"""
        self.temp_dir = tempfile.mkdtemp()
        self.database = f"sqlite:///{Path(self.temp_dir) / 'cli.db'}"
        self.config = Path(self.temp_dir) / "parkwise.yaml"
        self.config.write_text("events:\n  backend: none\nlogging:\n  level: ERROR\n")

    def tearDown(self):
        """Clean up"""
        logging.getLogger().handlers.clear()
        shutil.rmtree(self.temp_dir)

    def cli(self, *argv):
        out, err = io.StringIO(), io.StringIO()
        with redirect_stdout(out), redirect_stderr(err):
            code = main(["--config", str(self.config), "--database", self.database, *argv])
        text = out.getvalue()
        return code, json.loads(text) if text.strip() else None

    def test_full_visit(self):
        """init, allocate, simulate, release, stats"""
        code, stats = self.cli("init", "--levels", "1", "--sections", "A",
                               "--spots-per-section", "3", "--electric", "1")
        self.assertEqual(code, 0)
        self.assertEqual(stats["total_spots"], 3)
        self.assertEqual(stats["available"], 3)

        code, allocation = self.cli("allocate", "ev-42", "electric", "--rate-type", "daily")
        self.assertEqual(code, 0)
        self.assertTrue(allocation["success"])
        self.assertEqual(allocation["spot"]["label"], "L1-A-001")

        code, again = self.cli("allocate", "EV-42", "electric")
        self.assertEqual(code, 1)
        self.assertEqual(again["error_code"], "ALREADY_PARKED")

        code, preview = self.cli("simulate", "EV-42", "--release")
        self.assertEqual(code, 0)
        self.assertTrue(preview["simulated"])

        code, stats = self.cli("stats", "--vehicle-class", "electric", "--sessions")
        self.assertEqual(code, 0)
        self.assertEqual(stats["occupancy"]["occupied"], 1)
        self.assertEqual(stats["availability"]["by_spot_class"]["electric"], 0)
        self.assertEqual(len(stats["active_sessions"]), 1)

        code, release = self.cli("release", "EV-42", "--grace")
        self.assertEqual(code, 0)
        self.assertTrue(release["success"])
        self.assertTrue(release["settlement"]["breakdown"]["grace_period_applied"])
        self.assertEqual(release["settlement"]["total_amount"], "0.00")

        code, missing = self.cli("release", "EV-42")
        self.assertEqual(code, 1)
        self.assertEqual(missing["error_code"], "NOT_PARKED")

    def test_fee_estimate(self):
        code, fee = self.cli("fee", "61", "--vehicle-class", "oversized", "--feature", "ev_charging")

        self.assertEqual(code, 0)
        self.assertEqual(fee["billable_hours"], 2)
        self.assertEqual(fee["total_amount"], "20.00")

    def test_invalid_fee(self):
        code, error = self.cli("fee", "-5")

        self.assertEqual(code, 1)
        self.assertEqual(error["error_code"], "INVALID_INPUT")

    def test_simulate_needs_class(self):
        code, error = self.cli("simulate", "ABC123")

        self.assertEqual(code, 1)
        self.assertEqual(error["error_code"], "INVALID_INPUT")

    def test_forced_release(self):
        self.cli("init", "--levels", "1", "--spots-per-section", "1")
        self.cli("allocate", "TOW-1", "standard")

        code, release = self.cli("release", "TOW-1", "--force", "blocking exit")

        self.assertEqual(code, 0)
        self.assertTrue(release["forced"])
        self.assertTrue(release["vehicle_removed"])

    def test_missing_config(self):
        err = io.StringIO()
        with redirect_stderr(err):
            code = main(["--config", str(Path(self.temp_dir) / "nope.yaml"), "fee", "60"])

        self.assertEqual(code, 2)
        self.assertIn("Configuration error", err.getvalue())

    def test_parser_requires_command(self):
        with redirect_stderr(io.StringIO()):
            with self.assertRaises(SystemExit):
                build_parser().parse_args([])


if __name__ == '__main__':
    unittest.main()
