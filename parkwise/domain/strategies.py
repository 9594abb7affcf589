# File: parkwise/domain/strategies.py
"""
Strategy Pattern Implementation for the Parking Engine

This module encapsulates the two pure algorithms of the engine behind strategy
interfaces so they can be swapped or tuned without touching the transactions:

1. Scoring Strategies - rank candidate spots for an arriving vehicle
2. Pricing Strategies - turn a session duration into an auditable fee

Both are free of I/O: same inputs, same outputs. Weights and tariffs come in as
plain value objects (ScoringWeights, PricingPolicy) built from configuration.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Optional, List, Dict, Iterable, Tuple, Union
from decimal import Decimal, InvalidOperation
import logging
import math

from .models import (
    Spot, SpotClass, VehicleClass, RateType, FeeBreakdown, round_money
)
from .compatibility import resolve_vehicle_class, is_fallback
from .errors import InvalidInputError


# ============================================================================
# TUNING PARAMETERS
# ============================================================================

DEFAULT_FEATURE_PREMIUMS = {
    "ev_charging": Decimal('3.00'),
    "handicap": Decimal('0.00'),
}

DEFAULT_RATE_MULTIPLIERS = {
    RateType.HOURLY: Decimal('1.0'),
    RateType.DAILY: Decimal('0.8'),
    RateType.MONTHLY: Decimal('0.6'),
}

DEFAULT_RATE_CAPS_HOURS = {
    RateType.DAILY: 8,
    RateType.MONTHLY: 24,
}

DEFAULT_BASE_RATES = {
    VehicleClass.COMPACT: Decimal('4.00'),
    VehicleClass.STANDARD: Decimal('5.00'),
    VehicleClass.OVERSIZED: Decimal('7.00'),
    VehicleClass.MOTORCYCLE: Decimal('3.00'),
    VehicleClass.ELECTRIC: Decimal('5.00'),
    VehicleClass.HANDICAP: Decimal('5.00'),
}


@dataclass(frozen=True)
class ScoringWeights:
    """Additive adjustments applied on top of the base score"""
    base_score: int = 100
    level_penalty: int = 5
    preferred_level_bonus: int = 20
    exact_class_bonus: int = 15
    oversized_waste_penalty: int = 20
    first_section: str = "A"
    first_section_bonus: int = 5
    charging_bonus: int = 10
    handicap_penalty: int = 5


@dataclass(frozen=True)
class PricingPolicy:
    """Tariff used by pricing strategies"""
    grace_period_minutes: int = 5
    feature_premiums: Dict[str, Decimal] = field(default_factory=lambda: dict(DEFAULT_FEATURE_PREMIUMS))
    rate_multipliers: Dict[RateType, Decimal] = field(default_factory=lambda: dict(DEFAULT_RATE_MULTIPLIERS))
    rate_caps_hours: Dict[RateType, int] = field(default_factory=lambda: dict(DEFAULT_RATE_CAPS_HOURS))
    base_rates: Dict[VehicleClass, Decimal] = field(default_factory=lambda: dict(DEFAULT_BASE_RATES))
    currency: str = "USD"

    def base_rate_for(self, vehicle_class: VehicleClass) -> Decimal:
        return self.base_rates.get(vehicle_class, DEFAULT_BASE_RATES[VehicleClass.STANDARD])


# ============================================================================
# STRATEGY INTERFACES
# ============================================================================

class ScoringStrategy(ABC):
    """
    Abstract base class for spot scoring strategies
    Defines the interface for ranking allocation candidates
    """

    def __init__(self):
        self.logger = logging.getLogger(self.__class__.__name__)

    @abstractmethod
    def score(
        self,
        spot: Spot,
        vehicle_class: VehicleClass,
        preferred_level: Optional[int] = None
    ) -> int:
        """
        Score a spot for the given vehicle class
        Returns: non-negative score, higher is better
        """
        pass

    def select_best(
        self,
        candidates: List[Spot],
        vehicle_class: VehicleClass,
        preferred_level: Optional[int] = None
    ) -> Optional[Tuple[Spot, int]]:
        """
        Pick the highest-scoring candidate
        Ties keep the earlier candidate, so the query ordering breaks them.
        Returns: (spot, score) or None for an empty list
        """
        best: Optional[Tuple[Spot, int]] = None
        for spot in candidates:
            value = self.score(spot, vehicle_class, preferred_level)
            if best is None or value > best[1]:
                best = (spot, value)

        if best is not None:
            self.logger.debug(
                f"Best of {len(candidates)} candidates for {vehicle_class.value}: "
                f"{best[0].label} (score {best[1]})"
            )
        return best

    def get_strategy_name(self) -> str:
        """Get human-readable strategy name"""
        return self.__class__.__name__.replace("Strategy", "")

    def __str__(self) -> str:
        return f"{self.get_strategy_name()} Strategy"


class PricingStrategy(ABC):
    """
    Abstract base class for pricing strategies
    Defines the interface for fee calculation algorithms
    """

    def __init__(self, policy: Optional[PricingPolicy] = None):
        self.logger = logging.getLogger(self.__class__.__name__)
        self.policy = policy or PricingPolicy()

    @abstractmethod
    def compute_fee(
        self,
        duration_minutes: int,
        rate_type: Union[RateType, str],
        base_rate: Decimal,
        spot_features: Iterable[str] = (),
        apply_grace_period: bool = False
    ) -> FeeBreakdown:
        """
        Calculate the fee for a stay of the given length
        Returns: full fee breakdown
        """
        pass


# ============================================================================
# SCORING STRATEGIES
# ============================================================================

class PreferenceScoringStrategy(ScoringStrategy):
    """
    Strategy: multi-factor preference score
    - Lower floors score higher
    - The requested floor gets a bonus
    - Exact class matches win over fallbacks, large spots are kept for large vehicles
    - First section and charging bays get small bonuses
    - Handicap bays reached through a fallback are discouraged
    """

    def __init__(self, weights: Optional[ScoringWeights] = None):
        super().__init__()
        self.weights = weights or ScoringWeights()

    def score(
        self,
        spot: Spot,
        vehicle_class: VehicleClass,
        preferred_level: Optional[int] = None
    ) -> int:
        w = self.weights
        vehicle_class = resolve_vehicle_class(vehicle_class)
        fallback = is_fallback(vehicle_class, spot.spot_class)

        value = w.base_score
        value -= w.level_penalty * (spot.level - 1)

        if preferred_level is not None and spot.level == preferred_level:
            value += w.preferred_level_bonus

        if not fallback:
            value += w.exact_class_bonus
        elif vehicle_class != VehicleClass.OVERSIZED and spot.spot_class == SpotClass.OVERSIZED:
            value -= w.oversized_waste_penalty

        if spot.section == w.first_section:
            value += w.first_section_bonus

        if spot.has_charging:
            value += w.charging_bonus

        if (spot.is_handicap_designated
                and vehicle_class != VehicleClass.HANDICAP
                and fallback):
            value -= w.handicap_penalty

        value = max(0, value)
        self.logger.debug(f"Score {spot.label} for {vehicle_class.value}: {value}")
        return value


# ============================================================================
# PRICING STRATEGIES
# ============================================================================

class StandardPricingStrategy(PricingStrategy):
    """
    Standard pricing strategy
    - Grace period for very short stays
    - Any started hour is billed in full, one hour minimum
    - Per-hour premiums for spot features
    - Daily/monthly plans: hour cap, then plan multiplier
    """

    def compute_fee(
        self,
        duration_minutes: int,
        rate_type: Union[RateType, str],
        base_rate: Decimal,
        spot_features: Iterable[str] = (),
        apply_grace_period: bool = False
    ) -> FeeBreakdown:
        if duration_minutes is None or duration_minutes < 0:
            raise InvalidInputError(f"Duration must be a non-negative number of minutes, got {duration_minutes}")

        try:
            rate_type = RateType(rate_type)
        except ValueError:
            raise InvalidInputError(f"Unknown rate type: {rate_type!r}")

        try:
            base_rate = Decimal(str(base_rate))
        except InvalidOperation:
            raise InvalidInputError(f"Invalid base rate: {base_rate!r}")
        if base_rate < 0:
            raise InvalidInputError("Base rate cannot be negative")

        policy = self.policy
        premiums = {
            feature: policy.feature_premiums[feature]
            for feature in sorted(set(spot_features))
            if feature in policy.feature_premiums
        }
        premium_per_hour = sum(premiums.values(), Decimal('0'))
        effective_rate = base_rate + premium_per_hour
        multiplier = policy.rate_multipliers.get(rate_type, Decimal('1.0'))
        cap_hours = policy.rate_caps_hours.get(rate_type)

        if apply_grace_period and duration_minutes <= policy.grace_period_minutes:
            self.logger.debug(f"Grace period applied to {duration_minutes} minute stay")
            zero = round_money(Decimal('0'))
            return FeeBreakdown(
                duration_minutes=duration_minutes,
                billable_hours=0,
                base_rate_per_hour=round_money(base_rate),
                feature_premiums=premiums,
                feature_premium_per_hour=round_money(premium_per_hour),
                effective_rate_per_hour=round_money(effective_rate),
                subtotal=zero,
                rate_type=rate_type,
                rate_multiplier=multiplier,
                rate_cap_hours=cap_hours,
                adjustment=zero,
                total_amount=zero,
                grace_period_applied=True,
                currency=policy.currency,
            )

        billable_hours = max(1, math.ceil(duration_minutes / 60))
        subtotal = effective_rate * billable_hours

        if cap_hours is not None and billable_hours > cap_hours:
            capped = effective_rate * cap_hours
        else:
            capped = subtotal
        adjusted = round_money(capped * multiplier)
        subtotal = round_money(subtotal)

        breakdown = FeeBreakdown(
            duration_minutes=duration_minutes,
            billable_hours=billable_hours,
            base_rate_per_hour=round_money(base_rate),
            feature_premiums=premiums,
            feature_premium_per_hour=round_money(premium_per_hour),
            effective_rate_per_hour=round_money(effective_rate),
            subtotal=subtotal,
            rate_type=rate_type,
            rate_multiplier=multiplier,
            rate_cap_hours=cap_hours,
            adjustment=subtotal - adjusted,
            total_amount=adjusted,
            grace_period_applied=False,
            currency=policy.currency,
        )
        self.logger.debug(
            f"Fee for {duration_minutes} min ({rate_type.value}): "
            f"{billable_hours}h x {breakdown.effective_rate_per_hour} -> {breakdown.total_amount}"
        )
        return breakdown
