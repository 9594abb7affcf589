#!/usr/bin/env python3
"""
Configuration Unit Tests

Tests for YAML loading, environment references and conversion of settings into
domain value objects.
"""

import os
import shutil
import tempfile
import unittest
from decimal import Decimal
from pathlib import Path
from unittest.mock import patch

from parkwise.domain.models import RateType, VehicleClass
from parkwise.domain.strategies import ScoringWeights, PricingPolicy
from parkwise.infrastructure.config import (
    ParkwiseSettings, AllocationConfig, BillingConfig, EventsConfig,
    load_settings, resolve_env_refs, DATABASE_URL_ENV
)


class TestSettingsDefaults(unittest.TestCase):
    """Defaults match the engine's built-in tuning"""

    def test_defaults(self):
        settings = ParkwiseSettings()

        self.assertEqual(settings.database.url, "sqlite:///parkwise.db")
        self.assertEqual(settings.allocation.candidate_limit, 10)
        self.assertEqual(settings.billing.grace_period_minutes, 5)
        self.assertEqual(settings.events.backend, "memory")
        self.assertEqual(settings.logging.level, "INFO")

    def test_weights_round_trip(self):
        """AllocationConfig builds the default scoring weights"""
        self.assertEqual(AllocationConfig().to_weights(), ScoringWeights())

    def test_policy_round_trip(self):
        """BillingConfig builds the default pricing policy"""
        self.assertEqual(BillingConfig().to_policy(), PricingPolicy())


class TestSettingsValidation(unittest.TestCase):
    """Invalid values are rejected by pydantic"""

    def test_negative_rate_rejected(self):
        with self.assertRaises(ValueError):
            BillingConfig(base_rates={"compact": "-1"})

    def test_partial_rates_keep_defaults(self):
        """Classes missing from the file keep their default rate"""
        config = BillingConfig(base_rates={"compact": "4.50"})

        self.assertEqual(config.base_rates[VehicleClass.COMPACT], Decimal('4.50'))
        self.assertEqual(config.base_rates[VehicleClass.OVERSIZED], Decimal('7.00'))

    def test_unknown_events_backend(self):
        with self.assertRaises(ValueError):
            EventsConfig(backend="kafka")

    def test_candidate_limit_positive(self):
        with self.assertRaises(ValueError):
            AllocationConfig(candidate_limit=0)


class TestLoadSettings(unittest.TestCase):
    """Unit tests for load_settings"""

    def setUp(self):
        """Set up a scratch directory"""
        self.temp_dir = tempfile.mkdtemp()
        self.env = patch.dict(os.environ)
        self.env.start()
        os.environ.pop(DATABASE_URL_ENV, None)

    def tearDown(self):
        """Clean up"""
        self.env.stop()
        shutil.rmtree(self.temp_dir)

    def _write(self, text: str) -> Path:
        path = Path(self.temp_dir) / "parkwise.yaml"
        path.write_text(text)
        return path

    def test_load_yaml(self):
        """Values from the file override defaults section by section"""
        path = self._write(
            "database:\n"
            "  url: memory\n"
            "allocation:\n"
            "  preferred_level_bonus: 30\n"
            "billing:\n"
            "  rate_multipliers:\n"
            "    daily: '0.5'\n"
        )

        settings = load_settings(path)

        self.assertEqual(settings.database.url, "memory")
        self.assertEqual(settings.allocation.to_weights().preferred_level_bonus, 30)
        self.assertEqual(settings.billing.to_policy().rate_multipliers[RateType.DAILY], Decimal('0.5'))
        self.assertEqual(settings.allocation.candidate_limit, 10)

    def test_env_reference(self):
        """${VAR} references resolve from the environment"""
        os.environ["PARKWISE_TEST_DB"] = "sqlite:///from-env.db"
        path = self._write("database:\n  url: ${PARKWISE_TEST_DB}\n")

        self.assertEqual(load_settings(path).database.url, "sqlite:///from-env.db")

    def test_env_override(self):
        """PARKWISE_DATABASE_URL wins over the file"""
        os.environ[DATABASE_URL_ENV] = "memory"
        path = self._write("database:\n  url: sqlite:///file.db\n")

        self.assertEqual(load_settings(path).database.url, "memory")
        self.assertEqual(load_settings().database.url, "memory")

    def test_empty_file(self):
        """An empty file gives the defaults"""
        path = self._write("")
        self.assertEqual(load_settings(path), ParkwiseSettings())

    def test_missing_file(self):
        with self.assertRaises(FileNotFoundError):
            load_settings(Path(self.temp_dir) / "missing.yaml")

    def test_invalid_yaml(self):
        path = self._write("database: [unclosed\n")
        with self.assertRaises(ValueError):
            load_settings(path)

    def test_non_mapping_root(self):
        path = self._write("- just\n- a list\n")
        with self.assertRaises(ValueError):
            load_settings(path)

    def test_invalid_value(self):
        path = self._write("allocation:\n  max_claim_rounds: 0\n")
        with self.assertRaises(ValueError):
            load_settings(path)


class TestEnvReferences(unittest.TestCase):
    """Unit tests for resolve_env_refs"""

    def test_nested_resolution(self):
        with patch.dict(os.environ, {"PW_HOST": "cache", "PW_PORT": "6380"}):
            resolved = resolve_env_refs({
                "events": {"redis_url": "redis://${PW_HOST}:${PW_PORT}/0"},
                "list": ["${PW_HOST}", 3],
            })

        self.assertEqual(resolved["events"]["redis_url"], "redis://cache:6380/0")
        self.assertEqual(resolved["list"], ["cache", 3])

    def test_missing_variable_is_empty(self):
        with patch.dict(os.environ, {}, clear=True):
            self.assertEqual(resolve_env_refs("${PW_UNSET}"), "")


if __name__ == '__main__':
    unittest.main()
