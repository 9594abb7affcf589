#!/usr/bin/env python3
"""
Compatibility Rules Unit Tests

Tests for the vehicle/spot compatibility table and vehicle class resolution.
"""

import unittest

from parkwise.domain.models import SpotClass, VehicleClass
from parkwise.domain.errors import InvalidInputError, ErrorCode
from parkwise.domain.compatibility import (
    COMPATIBILITY_TABLE,
    compatible_spot_classes,
    is_compatible,
    is_fallback,
    resolve_vehicle_class,
)


class TestCompatibilityTable(unittest.TestCase):
    """Unit tests for the fixed compatibility table"""

    def test_table_order(self):
        """Each vehicle class lists its spot classes from exact match to last fallback"""
        expected = {
            VehicleClass.COMPACT: [SpotClass.COMPACT, SpotClass.STANDARD, SpotClass.OVERSIZED],
            VehicleClass.STANDARD: [SpotClass.STANDARD, SpotClass.OVERSIZED],
            VehicleClass.OVERSIZED: [SpotClass.OVERSIZED],
            VehicleClass.MOTORCYCLE: [SpotClass.MOTORCYCLE, SpotClass.COMPACT, SpotClass.STANDARD],
            VehicleClass.ELECTRIC: [SpotClass.ELECTRIC, SpotClass.STANDARD, SpotClass.OVERSIZED],
            VehicleClass.HANDICAP: [SpotClass.HANDICAP, SpotClass.STANDARD, SpotClass.OVERSIZED],
        }

        for vehicle_class, spot_classes in expected.items():
            self.assertEqual(list(compatible_spot_classes(vehicle_class)), spot_classes)

    def test_every_class_accepts_its_own_spot_class(self):
        """A vehicle always fits the spot class of the same name"""
        for vehicle_class in VehicleClass:
            self.assertTrue(is_compatible(vehicle_class, vehicle_class.exact_spot_class))
            self.assertEqual(compatible_spot_classes(vehicle_class)[0], vehicle_class.exact_spot_class)

    def test_table_covers_every_vehicle_class(self):
        """No vehicle class is missing from the table"""
        self.assertEqual(set(COMPATIBILITY_TABLE), set(VehicleClass))

    def test_rules_are_asymmetric(self):
        """Small vehicles may use big spots, never the other way round"""
        self.assertTrue(is_compatible(VehicleClass.COMPACT, SpotClass.OVERSIZED))
        self.assertFalse(is_compatible(VehicleClass.OVERSIZED, SpotClass.COMPACT))
        self.assertTrue(is_compatible(VehicleClass.MOTORCYCLE, SpotClass.COMPACT))
        self.assertFalse(is_compatible(VehicleClass.COMPACT, SpotClass.MOTORCYCLE))

    def test_reserved_classes_not_shared(self):
        """Electric and handicap bays are only for their own class"""
        for vehicle_class in (VehicleClass.COMPACT, VehicleClass.STANDARD,
                              VehicleClass.OVERSIZED, VehicleClass.MOTORCYCLE):
            self.assertFalse(is_compatible(vehicle_class, SpotClass.ELECTRIC))
            self.assertFalse(is_compatible(vehicle_class, SpotClass.HANDICAP))

        self.assertFalse(is_compatible(VehicleClass.ELECTRIC, SpotClass.HANDICAP))
        self.assertFalse(is_compatible(VehicleClass.HANDICAP, SpotClass.ELECTRIC))

    def test_oversized_only_fits_oversized(self):
        """Oversized vehicles have no fallback"""
        for spot_class in SpotClass:
            self.assertEqual(
                is_compatible(VehicleClass.OVERSIZED, spot_class),
                spot_class == SpotClass.OVERSIZED
            )

    def test_string_names_accepted(self):
        """Class names work as well as enum members"""
        self.assertTrue(is_compatible("electric", "standard"))
        self.assertFalse(is_compatible("standard", "compact"))

    def test_unknown_spot_class_is_incompatible(self):
        """An unknown spot class never matches"""
        self.assertFalse(is_compatible(VehicleClass.STANDARD, "helipad"))

    def test_is_fallback(self):
        """Only a non-exact class is a fallback"""
        self.assertFalse(is_fallback(VehicleClass.COMPACT, SpotClass.COMPACT))
        self.assertTrue(is_fallback(VehicleClass.COMPACT, SpotClass.STANDARD))
        self.assertTrue(is_fallback(VehicleClass.ELECTRIC, SpotClass.OVERSIZED))


class TestVehicleClassResolution(unittest.TestCase):
    """Unit tests for resolve_vehicle_class"""

    def test_names_are_case_insensitive(self):
        """Names are trimmed and lowercased before lookup"""
        self.assertEqual(resolve_vehicle_class("  Electric "), VehicleClass.ELECTRIC)
        self.assertEqual(resolve_vehicle_class(VehicleClass.HANDICAP), VehicleClass.HANDICAP)

    def test_unknown_class_falls_back_to_standard(self):
        """Unknown names degrade to the standard rules with a warning"""
        with self.assertLogs(level='WARNING') as captured:
            resolved = resolve_vehicle_class("hovercraft")

        self.assertEqual(resolved, VehicleClass.STANDARD)
        self.assertIn("hovercraft", captured.output[0])
        self.assertEqual(
            compatible_spot_classes("hovercraft"),
            compatible_spot_classes(VehicleClass.STANDARD)
        )

    def test_unknown_class_rejected_in_strict_mode(self):
        """Strict resolution raises InvalidInputError"""
        with self.assertRaises(InvalidInputError) as ctx:
            resolve_vehicle_class("hovercraft", strict=True)

        self.assertEqual(ctx.exception.code, ErrorCode.INVALID_INPUT)


if __name__ == '__main__':
    unittest.main()
