# File: parkwise/application/dtos.py
"""
Data Transfer Objects (DTOs) for the Parking Engine

This module defines DTOs for data transfer between layers:
1. Option DTOs - every recognized option of an operation, with its default
2. Output DTOs - results returned to calling layers (CLI, HTTP controllers)

DTO Principles:
- Validation at creation
- No business logic, only data
- Serialization support (to_dict)
"""

from typing import Dict, List, Optional, Any
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field, ConfigDict, field_validator

from ..domain.models import (
    RateType, Spot, ParkingSession, FeeBreakdown, Settlement, to_naive_utc
)


# ============================================================================
# BASE DTO CLASSES
# ============================================================================

class BaseDTO(BaseModel):
    """Base DTO with common functionality"""

    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
        arbitrary_types_allowed=True,
        use_enum_values=True,
    )

    def to_dict(self, exclude_none: bool = False, **kwargs) -> Dict[str, Any]:
        """Convert DTO to a JSON-compatible dictionary"""
        return self.model_dump(mode="json", exclude_none=exclude_none, **kwargs)


# ============================================================================
# OPTION DTOs
# ============================================================================

class AllocationOptions(BaseDTO):
    """
    Options of allocate / simulate_allocation

    Field values are validated on construction; an unknown rate type raises
    pydantic.ValidationError here rather than reaching the service.
    """
    preferred_level: Optional[int] = Field(default=None, ge=1, description="Floor to favour")
    rate_type: RateType = Field(default=RateType.HOURLY, description="Billing plan of a new vehicle")
    base_rate: Optional[Decimal] = Field(default=None, ge=0, description="Hourly rate; None uses the class rate")
    start_time: Optional[datetime] = Field(default=None, description="Session start; None means now")

    @field_validator('start_time')
    @classmethod
    def normalize_start(cls, v: Optional[datetime]) -> Optional[datetime]:
        return to_naive_utc(v) if v is not None else None


class ReleaseOptions(BaseDTO):
    """Options of release / simulate_release"""
    checkout_time: Optional[datetime] = Field(default=None, description="Checkout time; None means now")
    apply_grace_period: bool = False
    remove_record: bool = False

    @field_validator('checkout_time')
    @classmethod
    def normalize_checkout(cls, v: Optional[datetime]) -> Optional[datetime]:
        return to_naive_utc(v) if v is not None else None


class FeeOptions(BaseDTO):
    """Options of a standalone fee estimate (compute_fee); validated on construction like AllocationOptions"""
    rate_type: RateType = RateType.HOURLY
    base_rate: Optional[Decimal] = Field(default=None, description="Hourly rate; None uses the class rate")
    vehicle_class: Optional[str] = Field(default=None, description="Class whose rate applies; None means standard")
    spot_features: List[str] = Field(default_factory=list)
    apply_grace_period: bool = False


# ============================================================================
# OUTPUT DTOs
# ============================================================================

class SpotDTO(BaseDTO):
    """Spot as seen by callers"""
    id: str
    label: str
    level: int
    section: str
    sequence: int
    spot_class: str
    state: str
    is_active: bool
    features: List[str] = Field(default_factory=list)

    @classmethod
    def from_domain(cls, spot: Spot) -> 'SpotDTO':
        return cls(**spot.to_dict())


class SessionDTO(BaseDTO):
    """Parking session as seen by callers"""
    id: str
    vehicle_id: Optional[str] = None
    spot_id: str
    license_plate: str
    vehicle_class: str
    start_time: datetime
    end_time: Optional[datetime] = None
    state: str
    duration_minutes: Optional[int] = None
    total_amount: Optional[Decimal] = None

    @classmethod
    def from_domain(cls, session: ParkingSession) -> 'SessionDTO':
        return cls(
            id=session.id,
            vehicle_id=session.vehicle_id,
            spot_id=session.spot_id,
            license_plate=session.license_plate,
            vehicle_class=session.vehicle_class.value,
            start_time=session.start_time,
            end_time=session.end_time,
            state=session.state.value,
            duration_minutes=session.duration_minutes,
            total_amount=session.total_amount,
        )


class FeeBreakdownDTO(BaseDTO):
    """Auditable fee computation"""
    duration_minutes: int
    total_hours: Decimal
    billable_hours: int
    base_rate_per_hour: Decimal
    feature_premiums: Dict[str, Decimal] = Field(default_factory=dict)
    feature_premium_per_hour: Decimal
    effective_rate_per_hour: Decimal
    subtotal: Decimal
    rate_type: RateType
    rate_multiplier: Decimal
    rate_cap_hours: Optional[int] = None
    adjustment: Decimal
    total_amount: Decimal
    grace_period_applied: bool = False
    currency: str = "USD"

    @classmethod
    def from_domain(cls, breakdown: FeeBreakdown) -> 'FeeBreakdownDTO':
        return cls(
            duration_minutes=breakdown.duration_minutes,
            total_hours=breakdown.total_hours,
            billable_hours=breakdown.billable_hours,
            base_rate_per_hour=breakdown.base_rate_per_hour,
            feature_premiums=dict(breakdown.feature_premiums),
            feature_premium_per_hour=breakdown.feature_premium_per_hour,
            effective_rate_per_hour=breakdown.effective_rate_per_hour,
            subtotal=breakdown.subtotal,
            rate_type=breakdown.rate_type,
            rate_multiplier=breakdown.rate_multiplier,
            rate_cap_hours=breakdown.rate_cap_hours,
            adjustment=breakdown.adjustment,
            total_amount=breakdown.total_amount,
            grace_period_applied=breakdown.grace_period_applied,
            currency=breakdown.currency,
        )


class SettlementDTO(BaseDTO):
    """Final outcome of a released session"""
    session_id: str
    spot_id: str
    vehicle_id: Optional[str] = None
    license_plate: str
    check_in_time: datetime
    check_out_time: datetime
    duration_minutes: int
    total_amount: Decimal
    breakdown: FeeBreakdownDTO

    @classmethod
    def from_domain(cls, settlement: Settlement) -> 'SettlementDTO':
        return cls(
            session_id=settlement.session_id,
            spot_id=settlement.spot_id,
            vehicle_id=settlement.vehicle_id,
            license_plate=settlement.license_plate,
            check_in_time=settlement.check_in_time,
            check_out_time=settlement.check_out_time,
            duration_minutes=settlement.duration_minutes,
            total_amount=settlement.total_amount,
            breakdown=FeeBreakdownDTO.from_domain(settlement.breakdown),
        )


class OperationResultDTO(BaseDTO):
    """Common fields of every operation result"""
    success: bool
    message: str = ""
    error_code: Optional[str] = None


class AllocationResultDTO(OperationResultDTO):
    """Result of allocate"""
    license_plate: Optional[str] = None
    vehicle_id: Optional[str] = None
    spot: Optional[SpotDTO] = None
    session: Optional[SessionDTO] = None
    score: Optional[int] = None
    attempts: int = 0


class ReleaseResultDTO(OperationResultDTO):
    """Result of release / force_release / simulate_release"""
    license_plate: Optional[str] = None
    settlement: Optional[SettlementDTO] = None
    spot: Optional[SpotDTO] = None
    vehicle_removed: bool = False
    forced: bool = False
    reason: Optional[str] = None
    simulated: bool = False


class AllocationPreviewDTO(OperationResultDTO):
    """Result of simulate_allocation: what allocate would pick right now"""
    license_plate: Optional[str] = None
    vehicle_class: Optional[str] = None
    compatible_spot_classes: List[str] = Field(default_factory=list)
    spot: Optional[SpotDTO] = None
    score: Optional[int] = None
    candidates_considered: int = 0
    estimated_hourly_rate: Optional[Decimal] = None


class AvailabilityDTO(BaseDTO):
    """Available spots per compatible class for one vehicle class"""
    vehicle_class: str
    by_spot_class: Dict[str, int] = Field(default_factory=dict)
    total_available: int = 0
    has_available: bool = False


class OccupancyStatsDTO(BaseDTO):
    """Facility-wide occupancy snapshot"""
    total_spots: int
    available: int
    occupied: int
    reserved: int
    maintenance: int
    out_of_order: int
    occupancy_rate: Decimal  # percent of active spots occupied
    active_sessions: int
    completed_sessions: int
    average_duration_minutes: Optional[Decimal] = None


class ActiveSessionDTO(BaseDTO):
    """A parked vehicle with its running cost"""
    session: SessionDTO
    elapsed_minutes: int
    current_estimate: Decimal
    rate_type: RateType
