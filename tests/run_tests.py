#!/usr/bin/env python3
"""
Test runner for the parking allocation engine.

    python tests/run_tests.py                      # everything
    python tests/run_tests.py unit                 # one suite
    python tests/run_tests.py unit.test_pricing    # one module
"""

import unittest
import sys
from pathlib import Path

TESTS_DIR = Path(__file__).parent
PROJECT_ROOT = TESTS_DIR.parent

# Make the project importable when run as a script
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))


def run_all_tests(start_dir: Path = TESTS_DIR):
    """Run all test suites below start_dir"""
    test_loader = unittest.TestLoader()
    test_suite = test_loader.discover(
        str(start_dir), pattern='test_*.py', top_level_dir=str(PROJECT_ROOT)
    )

    test_runner = unittest.TextTestRunner(verbosity=2)
    return test_runner.run(test_suite)


def run_specific_test(test_name):
    """Run a suite directory (unit, integration) or a dotted test module"""
    if (TESTS_DIR / test_name).is_dir():
        return run_all_tests(TESTS_DIR / test_name)

    test_suite = unittest.TestLoader().loadTestsFromName(f'tests.{test_name}')
    test_runner = unittest.TextTestRunner(verbosity=2)
    return test_runner.run(test_suite)


if __name__ == "__main__":
    if len(sys.argv) > 1:
        result = run_specific_test(sys.argv[1])
    else:
        result = run_all_tests()

    sys.exit(0 if result.wasSuccessful() else 1)
