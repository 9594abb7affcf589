# File: parkwise/domain/compatibility.py
"""
Vehicle/spot compatibility rules

A fixed, asymmetric table: each vehicle class maps to the spot classes it may
occupy, ordered from the exact match to the least preferred fallback.
"""

import logging
from typing import Tuple, Union

from .models import SpotClass, VehicleClass
from .errors import InvalidInputError


logger = logging.getLogger(__name__)


COMPATIBILITY_TABLE = {
    VehicleClass.COMPACT: (SpotClass.COMPACT, SpotClass.STANDARD, SpotClass.OVERSIZED),
    VehicleClass.STANDARD: (SpotClass.STANDARD, SpotClass.OVERSIZED),
    VehicleClass.OVERSIZED: (SpotClass.OVERSIZED,),
    VehicleClass.MOTORCYCLE: (SpotClass.MOTORCYCLE, SpotClass.COMPACT, SpotClass.STANDARD),
    VehicleClass.ELECTRIC: (SpotClass.ELECTRIC, SpotClass.STANDARD, SpotClass.OVERSIZED),
    VehicleClass.HANDICAP: (SpotClass.HANDICAP, SpotClass.STANDARD, SpotClass.OVERSIZED),
}

FALLBACK_VEHICLE_CLASS = VehicleClass.STANDARD


def resolve_vehicle_class(
    vehicle_class: Union[VehicleClass, str],
    strict: bool = False
) -> VehicleClass:
    """
    Resolve a vehicle class name to the enum

    Unknown names resolve to STANDARD with a warning, or raise
    InvalidInputError when strict is set.
    """
    if isinstance(vehicle_class, VehicleClass):
        return vehicle_class

    name = str(vehicle_class or "").strip().lower()
    try:
        return VehicleClass(name)
    except ValueError:
        if strict:
            raise InvalidInputError(f"Unknown vehicle class: {vehicle_class!r}")
        logger.warning(
            f"Unknown vehicle class {vehicle_class!r}, using {FALLBACK_VEHICLE_CLASS.value} rules"
        )
        return FALLBACK_VEHICLE_CLASS


def compatible_spot_classes(
    vehicle_class: Union[VehicleClass, str],
    strict: bool = False
) -> Tuple[SpotClass, ...]:
    """Spot classes a vehicle class may occupy, most preferred first"""
    return COMPATIBILITY_TABLE[resolve_vehicle_class(vehicle_class, strict)]


def is_compatible(
    vehicle_class: Union[VehicleClass, str],
    spot_class: Union[SpotClass, str],
    strict: bool = False
) -> bool:
    try:
        spot_class = SpotClass(spot_class)
    except ValueError:
        return False
    return spot_class in compatible_spot_classes(vehicle_class, strict)


def is_fallback(vehicle_class: Union[VehicleClass, str], spot_class: Union[SpotClass, str]) -> bool:
    """True when the spot is compatible but not the exact-match class"""
    resolved = resolve_vehicle_class(vehicle_class)
    return SpotClass(spot_class) != resolved.exact_spot_class
