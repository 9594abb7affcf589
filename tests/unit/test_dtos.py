#!/usr/bin/env python3
"""
Application DTO Unit Tests

Option structs validate their fields when built.
"""

import unittest
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from pydantic import ValidationError

from parkwise.application.dtos import AllocationOptions, ReleaseOptions, FeeOptions


class TestAllocationOptions(unittest.TestCase):
    """Unit tests for AllocationOptions"""

    def test_defaults(self):
        options = AllocationOptions()

        self.assertIsNone(options.preferred_level)
        self.assertEqual(options.rate_type, "hourly")
        self.assertIsNone(options.base_rate)
        self.assertIsNone(options.start_time)

    def test_unknown_rate_type_rejected(self):
        """Rate types outside hourly, daily and monthly fail on construction"""
        with self.assertRaises(ValidationError):
            AllocationOptions(rate_type="weekly")

    def test_level_and_rate_bounds(self):
        with self.assertRaises(ValidationError):
            AllocationOptions(preferred_level=0)
        with self.assertRaises(ValidationError):
            AllocationOptions(base_rate=Decimal('-1'))

    def test_start_time_normalized_to_utc(self):
        start = datetime(2024, 3, 1, 10, 0, tzinfo=timezone(timedelta(hours=1)))

        options = AllocationOptions(start_time=start)

        self.assertEqual(options.start_time, datetime(2024, 3, 1, 9, 0))
        self.assertIsNone(options.start_time.tzinfo)


class TestReleaseAndFeeOptions(unittest.TestCase):
    """Unit tests for ReleaseOptions and FeeOptions"""

    def test_release_defaults(self):
        options = ReleaseOptions()

        self.assertIsNone(options.checkout_time)
        self.assertFalse(options.apply_grace_period)
        self.assertFalse(options.remove_record)

    def test_fee_unknown_rate_type_rejected(self):
        with self.assertRaises(ValidationError):
            FeeOptions(rate_type="weekly")

    def test_fee_options_keep_features(self):
        options = FeeOptions(rate_type="daily", spot_features=["ev_charging"])

        self.assertEqual(options.rate_type, "daily")
        self.assertEqual(options.spot_features, ["ev_charging"])
        self.assertIsNone(options.vehicle_class)


if __name__ == '__main__':
    unittest.main()
