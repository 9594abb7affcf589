#!/usr/bin/env python3
"""
Factory Unit Tests

Tests for spot creation, garage layouts and strategy wiring from settings.
"""

import unittest
from collections import Counter

from parkwise.domain.models import SpotClass, OccupancyState, VehicleClass
from parkwise.domain.strategies import PreferenceScoringStrategy, StandardPricingStrategy
from parkwise.infrastructure.config import AllocationConfig, BillingConfig, ParkwiseSettings, EventsConfig
from parkwise.infrastructure.factories import (
    SpotFactory, GarageLayoutBuilder, StrategyFactory, ServiceFactory
)


class TestSpotFactory(unittest.TestCase):
    """Unit tests for SpotFactory"""

    def setUp(self):
        self.factory = SpotFactory()

    def test_class_default_features(self):
        """Electric bays carry a charger, handicap bays the handicap tag"""
        electric = self.factory.create(1, "A", 1, SpotClass.ELECTRIC)
        handicap = self.factory.create(1, "A", 2, "handicap")
        standard = self.factory.create(1, "A", 3)

        self.assertEqual(electric.features, ["ev_charging"])
        self.assertEqual(handicap.features, ["handicap"])
        self.assertEqual(standard.features, [])

    def test_explicit_features(self):
        spot = self.factory.create(1, "A", 1, SpotClass.ELECTRIC, features=["covered"])
        self.assertEqual(spot.features, ["covered"])

    def test_initial_state(self):
        spot = self.factory.create(1, "A", 1, state=OccupancyState.MAINTENANCE, is_active=False)

        self.assertEqual(spot.state, OccupancyState.MAINTENANCE)
        self.assertFalse(spot.is_active)


class TestGarageLayoutBuilder(unittest.TestCase):
    """Unit tests for GarageLayoutBuilder"""

    def test_default_layout(self):
        """One level, section A, ten standard spots"""
        spots = GarageLayoutBuilder().build()

        self.assertEqual(len(spots), 10)
        self.assertEqual(spots[0].label, "L1-A-001")
        self.assertEqual(spots[-1].label, "L1-A-010")
        self.assertTrue(all(s.spot_class == SpotClass.STANDARD for s in spots))

    def test_class_rules_take_leading_sequences(self):
        """Rules fill each section in call order, the rest is default class"""
        spots = (GarageLayoutBuilder()
                 .levels(2)
                 .sections("A", "B")
                 .spots_per_section(5)
                 .with_class(SpotClass.ELECTRIC, 1)
                 .with_class(SpotClass.OVERSIZED, 2, sections=["B"])
                 .build())

        self.assertEqual(len(spots), 20)
        by_label = {s.label: s.spot_class for s in spots}
        self.assertEqual(by_label["L1-A-001"], SpotClass.ELECTRIC)
        self.assertEqual(by_label["L1-A-002"], SpotClass.STANDARD)
        self.assertEqual(by_label["L2-B-002"], SpotClass.OVERSIZED)
        self.assertEqual(by_label["L2-B-003"], SpotClass.OVERSIZED)
        self.assertEqual(by_label["L2-B-004"], SpotClass.STANDARD)

        counts = Counter(s.spot_class for s in spots)
        self.assertEqual(counts[SpotClass.ELECTRIC], 4)
        self.assertEqual(counts[SpotClass.OVERSIZED], 4)
        self.assertEqual(counts[SpotClass.STANDARD], 12)

    def test_rules_limited_to_levels(self):
        spots = (GarageLayoutBuilder()
                 .levels(3)
                 .spots_per_section(2)
                 .with_class(SpotClass.MOTORCYCLE, levels=[3])
                 .build())

        motorcycle = [s.label for s in spots if s.spot_class == SpotClass.MOTORCYCLE]
        self.assertEqual(motorcycle, ["L3-A-001", "L3-A-002"])

    def test_rule_counts_capped_by_section_size(self):
        spots = GarageLayoutBuilder().spots_per_section(3).with_class(SpotClass.COMPACT, 10).build()
        self.assertEqual([s.spot_class for s in spots], [SpotClass.COMPACT] * 3)

    def test_with_feature(self):
        """Features can tag a whole class"""
        spots = (GarageLayoutBuilder()
                 .spots_per_section(3)
                 .with_class(SpotClass.ELECTRIC, 1)
                 .with_feature("covered", SpotClass.ELECTRIC)
                 .build())

        self.assertEqual(spots[0].features, ["covered", "ev_charging"])
        self.assertEqual(spots[1].features, [])

    def test_invalid_dimensions(self):
        with self.assertRaises(ValueError):
            GarageLayoutBuilder().levels(0)
        with self.assertRaises(ValueError):
            GarageLayoutBuilder().sections()
        with self.assertRaises(ValueError):
            GarageLayoutBuilder().spots_per_section(0)


class TestStrategyFactory(unittest.TestCase):
    """Strategies are built from settings"""

    def test_scoring_uses_configured_weights(self):
        strategy = StrategyFactory.create_scoring_strategy(AllocationConfig(exact_class_bonus=40))

        self.assertIsInstance(strategy, PreferenceScoringStrategy)
        self.assertEqual(strategy.weights.exact_class_bonus, 40)

    def test_pricing_uses_configured_policy(self):
        strategy = StrategyFactory.create_pricing_strategy(BillingConfig(grace_period_minutes=10))

        self.assertIsInstance(strategy, StandardPricingStrategy)
        self.assertEqual(strategy.policy.grace_period_minutes, 10)


class TestServiceFactory(unittest.TestCase):
    """Composition root wiring"""

    def test_memory_service(self):
        settings = ParkwiseSettings(
            database={"url": "memory"},
            allocation={"candidate_limit": 3},
            events=EventsConfig(backend="none")
        )
        service = ServiceFactory(settings).create_parking_service()

        self.assertIsNone(service.event_publisher)
        self.assertEqual(service.config.candidate_limit, 3)
        self.assertFalse(service.get_availability(VehicleClass.STANDARD).has_available)

    def test_event_publisher_backend(self):
        factory = ServiceFactory(ParkwiseSettings(database={"url": "memory"}))
        self.assertIsNotNone(factory.create_event_publisher())


if __name__ == '__main__':
    unittest.main()
