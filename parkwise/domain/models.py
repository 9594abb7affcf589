# File: parkwise/domain/models.py
"""
Domain Models for the Parking Allocation Engine
Following Domain-Driven Design (DDD) principles with rich domain models

This module contains:
1. Enums: spot classes, vehicle classes, occupancy and lifecycle states, rate types
2. Value Objects: immutable objects with no identity (LicensePlate, FeeBreakdown, Settlement)
3. Entities: objects with identity and lifecycle (Spot, Vehicle, ParkingSession)

Entities validate themselves on construction. State transitions that touch more
than one entity (claiming a spot, closing a session) are driven by the
application service inside a unit of work, never by the entities alone.
"""

from dataclasses import dataclass, field
from typing import Optional, List, Dict, Any, Tuple
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
import re
import uuid
from enum import Enum


CENT = Decimal('0.01')


def utcnow() -> datetime:
    """Current UTC time as a naive datetime (the store keeps naive UTC)"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    """Normalize an aware datetime to naive UTC; naive values are assumed UTC"""
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def round_money(amount: Decimal) -> Decimal:
    """Round a monetary amount to cents, half up"""
    return Decimal(amount).quantize(CENT, rounding=ROUND_HALF_UP)


# ============================================================================
# ENUMS FOR DOMAIN TYPES
# ============================================================================

class SpotClass(str, Enum):
    """
    Category of parking space
    Each class accepts a fixed set of vehicle classes (see compatibility rules)
    """
    COMPACT = "compact"
    STANDARD = "standard"
    OVERSIZED = "oversized"
    ELECTRIC = "electric"
    HANDICAP = "handicap"
    MOTORCYCLE = "motorcycle"

    def __str__(self) -> str:
        return self.value


class VehicleClass(str, Enum):
    """
    Category of vehicle
    Mirrors the spot classes: every vehicle class has an exact-match spot class
    """
    COMPACT = "compact"
    STANDARD = "standard"
    OVERSIZED = "oversized"
    ELECTRIC = "electric"
    HANDICAP = "handicap"
    MOTORCYCLE = "motorcycle"

    @property
    def exact_spot_class(self) -> SpotClass:
        """Spot class that is an exact match for this vehicle class"""
        return SpotClass(self.value)

    def __str__(self) -> str:
        return self.value


class OccupancyState(str, Enum):
    """Occupancy state of a spot"""
    AVAILABLE = "AVAILABLE"
    OCCUPIED = "OCCUPIED"
    RESERVED = "RESERVED"
    MAINTENANCE = "MAINTENANCE"
    OUT_OF_ORDER = "OUT_OF_ORDER"


class VehicleState(str, Enum):
    """Lifecycle state of a vehicle record"""
    ACTIVE = "ACTIVE"        # Known to the facility, not parked
    PARKED = "PARKED"        # Holds an active session
    DEPARTED = "DEPARTED"    # Left after a completed session


class SessionState(str, Enum):
    """Lifecycle state of a parking session"""
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"


class RateType(str, Enum):
    """
    Billing plan of a vehicle
    Daily and monthly plans get a multiplier and an hour cap at settlement
    """
    HOURLY = "hourly"
    DAILY = "daily"
    MONTHLY = "monthly"


class SpotFeature(str, Enum):
    """Known feature tags; spots may carry other free-form tags too"""
    EV_CHARGING = "ev_charging"
    HANDICAP = "handicap"


# ============================================================================
# DOMAIN PRIMITIVES / VALUE OBJECTS
# ============================================================================

@dataclass(frozen=True)  # Value objects are immutable
class LicensePlate:
    """
    Value Object: License plate number with validation
    Normalized to uppercase; unique identity of a vehicle
    """
    value: str

    def __post_init__(self):
        """Validate license plate after initialization"""
        if not self.value or not isinstance(self.value, str):
            raise ValueError("License plate cannot be empty")

        # Collapse surrounding whitespace and convert to uppercase
        object.__setattr__(self, 'value', self.value.strip().upper())

        if len(self.value) < 2 or len(self.value) > 10:
            raise ValueError(f"License plate must be 2-10 characters, got: {self.value}")

        # Alphanumeric with possible spaces and hyphens
        if not re.match(r'^[A-Z0-9\s\-]+$', self.value):
            raise ValueError(f"License plate can only contain letters, numbers, spaces, and hyphens: {self.value}")

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class FeeBreakdown:
    """
    Value Object: auditable result of a fee computation
    Every intermediate figure is kept, never just the total
    """
    duration_minutes: int
    billable_hours: int
    base_rate_per_hour: Decimal
    feature_premiums: Dict[str, Decimal]
    feature_premium_per_hour: Decimal
    effective_rate_per_hour: Decimal
    subtotal: Decimal
    rate_type: RateType
    rate_multiplier: Decimal
    rate_cap_hours: Optional[int]
    adjustment: Decimal          # Discount granted by the rate plan (>= 0)
    total_amount: Decimal
    grace_period_applied: bool = False
    currency: str = "USD"

    @property
    def total_hours(self) -> Decimal:
        """Raw duration in hours, two decimals"""
        return round_money(Decimal(self.duration_minutes) / Decimal(60))

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization"""
        return {
            "duration_minutes": self.duration_minutes,
            "total_hours": str(self.total_hours),
            "billable_hours": self.billable_hours,
            "base_rate_per_hour": str(self.base_rate_per_hour),
            "feature_premiums": {k: str(v) for k, v in self.feature_premiums.items()},
            "feature_premium_per_hour": str(self.feature_premium_per_hour),
            "effective_rate_per_hour": str(self.effective_rate_per_hour),
            "subtotal": str(self.subtotal),
            "rate_type": self.rate_type.value,
            "rate_multiplier": str(self.rate_multiplier),
            "rate_cap_hours": self.rate_cap_hours,
            "adjustment": str(self.adjustment),
            "total_amount": str(self.total_amount),
            "grace_period_applied": self.grace_period_applied,
            "currency": self.currency,
        }


@dataclass(frozen=True)
class Settlement:
    """
    Value Object: final outcome of a released session
    Duration and amount plus the identifiers needed to trace it
    """
    session_id: str
    spot_id: str
    vehicle_id: Optional[str]
    license_plate: str
    check_in_time: datetime
    check_out_time: datetime
    breakdown: FeeBreakdown

    @property
    def duration_minutes(self) -> int:
        return self.breakdown.duration_minutes

    @property
    def total_amount(self) -> Decimal:
        return self.breakdown.total_amount


# ============================================================================
# DOMAIN ENTITIES
# ============================================================================

class Entity:
    """
    Base class for all domain entities
    Provides common functionality for entities with identity
    """

    def __init__(self, id: Optional[str] = None):
        self._id = id or str(uuid.uuid4())

    @property
    def id(self) -> str:
        """Get entity ID"""
        return self._id

    def __eq__(self, other: object) -> bool:
        """Entities are equal if they have the same ID and type"""
        if not isinstance(other, Entity):
            return False
        return self.id == other.id and type(self) == type(other)

    def __hash__(self) -> int:
        return hash((self.id, type(self).__name__))

    def __repr__(self) -> str:
        return f"{type(self).__name__}(id={self.id})"


class Spot(Entity):
    """
    Entity: individual parking space
    Invariant: state is OCCUPIED iff exactly one active session references it
    """

    def __init__(
        self,
        level: int,
        section: str,
        sequence: int,
        spot_class: SpotClass,
        state: OccupancyState = OccupancyState.AVAILABLE,
        is_active: bool = True,
        features: Optional[List[str]] = None,
        id: Optional[str] = None
    ):
        super().__init__(id)
        self.level = level
        self.section = section
        self.sequence = sequence
        self.spot_class = SpotClass(spot_class)
        self.state = OccupancyState(state)
        self.is_active = is_active
        self.features = sorted(set(features or []))
        self._validate()

    def _validate(self) -> None:
        """Validate spot attributes"""
        if self.level < 1:
            raise ValueError(f"Spot level must be >= 1, got {self.level}")

        if not self.section or not str(self.section).strip():
            raise ValueError("Spot section cannot be empty")

        if self.sequence < 1:
            raise ValueError(f"Spot sequence must be >= 1, got {self.sequence}")

    @property
    def label(self) -> str:
        """Human-readable location, e.g. L2-B-014"""
        return f"L{self.level}-{self.section}-{self.sequence:03d}"

    @property
    def sort_key(self) -> Tuple[int, str, int]:
        """Canonical candidate ordering: level, section, sequence"""
        return (self.level, self.section, self.sequence)

    def has_feature(self, feature: str) -> bool:
        return feature in self.features

    @property
    def has_charging(self) -> bool:
        """Charging-equipped: tagged ev_charging or an electric-class bay"""
        return self.has_feature(SpotFeature.EV_CHARGING.value) or self.spot_class == SpotClass.ELECTRIC

    @property
    def is_handicap_designated(self) -> bool:
        return self.has_feature(SpotFeature.HANDICAP.value) or self.spot_class == SpotClass.HANDICAP

    def is_claimable(self) -> bool:
        """Available and active: a candidate for allocation"""
        return self.is_active and self.state == OccupancyState.AVAILABLE

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization"""
        return {
            "id": self.id,
            "label": self.label,
            "level": self.level,
            "section": self.section,
            "sequence": self.sequence,
            "spot_class": self.spot_class.value,
            "state": self.state.value,
            "is_active": self.is_active,
            "features": list(self.features),
        }

    def __str__(self) -> str:
        return f"Spot {self.label} ({self.spot_class.value}, {self.state.value})"


class Vehicle(Entity):
    """
    Entity: a vehicle known to the facility, identified by its plate
    assigned_spot_id is a lookup reference only; the active session owns the spot
    """

    def __init__(
        self,
        license_plate: LicensePlate,
        vehicle_class: VehicleClass,
        rate_type: RateType = RateType.HOURLY,
        base_rate: Decimal = Decimal('5.00'),
        state: VehicleState = VehicleState.ACTIVE,
        assigned_spot_id: Optional[str] = None,
        id: Optional[str] = None
    ):
        super().__init__(id)
        if not isinstance(license_plate, LicensePlate):
            license_plate = LicensePlate(license_plate)
        self.license_plate = license_plate
        self.vehicle_class = VehicleClass(vehicle_class)
        self.rate_type = RateType(rate_type)
        self.base_rate = Decimal(base_rate)
        self.state = VehicleState(state)
        self.assigned_spot_id = assigned_spot_id
        self._validate()

    def _validate(self) -> None:
        if self.base_rate < Decimal('0'):
            raise ValueError("Base rate cannot be negative")

    @property
    def is_parked(self) -> bool:
        return self.state == VehicleState.PARKED

    def park_in(self, spot_id: str) -> None:
        """Mark the vehicle as parked in the given spot"""
        self.state = VehicleState.PARKED
        self.assigned_spot_id = spot_id

    def depart(self) -> None:
        """Mark the vehicle as departed and drop the spot reference"""
        self.state = VehicleState.DEPARTED
        self.assigned_spot_id = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "license_plate": self.license_plate.value,
            "vehicle_class": self.vehicle_class.value,
            "rate_type": self.rate_type.value,
            "base_rate": str(self.base_rate),
            "state": self.state.value,
            "assigned_spot_id": self.assigned_spot_id,
        }

    def __str__(self) -> str:
        return f"{self.vehicle_class.value} [{self.license_plate}]"


class ParkingSession(Entity):
    """
    Entity: one stay of one vehicle in one spot
    Created only by a successful allocation, closed only by a release
    """

    def __init__(
        self,
        vehicle_id: Optional[str],
        spot_id: str,
        license_plate: str,
        vehicle_class: VehicleClass,
        start_time: Optional[datetime] = None,
        end_time: Optional[datetime] = None,
        state: SessionState = SessionState.ACTIVE,
        duration_minutes: Optional[int] = None,
        total_amount: Optional[Decimal] = None,
        id: Optional[str] = None
    ):
        super().__init__(id)
        self.vehicle_id = vehicle_id
        self.spot_id = spot_id
        self.license_plate = str(license_plate)
        self.vehicle_class = VehicleClass(vehicle_class)
        self.start_time = to_naive_utc(start_time) if start_time else utcnow()
        self.end_time = to_naive_utc(end_time) if end_time else None
        self.state = SessionState(state)
        self.duration_minutes = duration_minutes
        self.total_amount = Decimal(total_amount) if total_amount is not None else None

    @property
    def is_active(self) -> bool:
        return self.state == SessionState.ACTIVE

    def close(self, end_time: datetime, duration_minutes: int, total_amount: Decimal) -> None:
        """Close the session with its settlement figures"""
        if not self.is_active:
            raise ValueError(f"Session {self.id} is already {self.state.value}")
        self.end_time = end_time
        self.duration_minutes = duration_minutes
        self.total_amount = total_amount
        self.state = SessionState.COMPLETED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "vehicle_id": self.vehicle_id,
            "spot_id": self.spot_id,
            "license_plate": self.license_plate,
            "vehicle_class": self.vehicle_class.value,
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "state": self.state.value,
            "duration_minutes": self.duration_minutes,
            "total_amount": str(self.total_amount) if self.total_amount is not None else None,
        }
