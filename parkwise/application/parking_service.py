# File: parkwise/application/parking_service.py
"""
Parking Allocation Application Service

This module implements the application service layer of the engine. It
orchestrates the domain rules (compatibility, scoring, pricing) against the
store through units of work.

Responsibilities:
1. Candidate query: bounded, ordered list of claimable compatible spots
2. Allocation transaction: score, then claim with a conditional update, retrying
   the next candidate when a concurrent request wins the spot
3. Release transaction: settle the fee, close the session and free the spot
4. Read-only use cases: previews, availability, occupancy, running costs

Key Principles:
- No lock is held while candidates are scored; the claim re-validates
- Each transaction is all-or-nothing
- Business failures come back as typed results, storage failures propagate
"""

from typing import Callable, Dict, Iterable, List, Optional, Union
from datetime import datetime
from decimal import Decimal
import logging
import math

from ..domain.models import (
    Spot, Vehicle, ParkingSession, LicensePlate, Settlement,
    VehicleClass, OccupancyState, RateType,
    utcnow, to_naive_utc, round_money
)
from ..domain.compatibility import compatible_spot_classes, resolve_vehicle_class
from ..domain.strategies import (
    ScoringStrategy, PricingStrategy,
    PreferenceScoringStrategy, StandardPricingStrategy
)
from ..domain.errors import (
    ParkingError, InvalidInputError, AlreadyParkedError, NoAvailableSpotError,
    NotFoundError, NotParkedError, InvalidCheckoutTimeError,
    ConflictRetryExhaustedError, DataIntegrityError
)
from ..infrastructure.repositories import UnitOfWork, ClaimOutcome
from ..infrastructure.messaging import EventPublisher, DomainEvent, EventType
from ..infrastructure.config import AllocationConfig
from .dtos import (
    AllocationOptions, ReleaseOptions, FeeOptions,
    AllocationResultDTO, ReleaseResultDTO, AllocationPreviewDTO,
    AvailabilityDTO, OccupancyStatsDTO, ActiveSessionDTO,
    SpotDTO, SessionDTO, SettlementDTO, FeeBreakdownDTO
)


def elapsed_minutes(start: datetime, end: datetime) -> int:
    """Whole minutes between two instants, any started minute counts"""
    seconds = (end - start).total_seconds()
    return max(0, math.ceil(seconds / 60))


class ParkingService:
    """
    Main application service for spot allocation and fee settlement

    Use cases:
    1. allocate / simulate_allocation
    2. release / simulate_release / force_release
    3. compute_fee / estimate_current_fee / list_active_sessions
    4. get_availability / get_occupancy_stats
    5. spot administration (add_spot, set_spot_state)
    """

    def __init__(
        self,
        uow_factory: Callable[[], UnitOfWork],
        scoring_strategy: Optional[ScoringStrategy] = None,
        pricing_strategy: Optional[PricingStrategy] = None,
        event_publisher: Optional[EventPublisher] = None,
        config: Optional[AllocationConfig] = None
    ):
        """
        Initialize the parking service

        Args:
            uow_factory: Returns a fresh unit of work per transaction
            scoring_strategy: Ranks candidates (defaults to PreferenceScoringStrategy)
            pricing_strategy: Computes fees (defaults to StandardPricingStrategy)
            event_publisher: Receives events after commits; None disables events
            config: Allocation settings (defaults to AllocationConfig())
        """
        self.logger = logging.getLogger(self.__class__.__name__)
        self.uow_factory = uow_factory
        self.config = config or AllocationConfig()
        self.scoring_strategy = scoring_strategy or PreferenceScoringStrategy(self.config.to_weights())
        self.pricing_strategy = pricing_strategy or StandardPricingStrategy()
        self.event_publisher = event_publisher

        self.logger.info("ParkingService initialized")

    # ------------------------------------------------------------------
    # Input parsing
    # ------------------------------------------------------------------

    @staticmethod
    def _parse_plate(plate: Union[str, LicensePlate]) -> LicensePlate:
        if isinstance(plate, LicensePlate):
            return plate
        try:
            return LicensePlate(plate)
        except ValueError as e:
            raise InvalidInputError(str(e))

    def _parse_vehicle_class(self, vehicle_class: Union[str, VehicleClass]) -> VehicleClass:
        return resolve_vehicle_class(vehicle_class, strict=self.config.strict_vehicle_classes)

    def _publish(self, event_type: EventType, aggregate_id: str, data: Dict) -> None:
        if self.event_publisher is None:
            return
        self.event_publisher.publish(DomainEvent(event_type=event_type, aggregate_id=aggregate_id, data=data))

    # ------------------------------------------------------------------
    # Candidate query
    # ------------------------------------------------------------------

    def _query_candidates(
        self,
        uow: UnitOfWork,
        vehicle_class: VehicleClass,
        preferred_level: Optional[int]
    ) -> List[Spot]:
        levels = [preferred_level]
        if preferred_level is not None and self.config.level_fallback:
            levels.append(None)

        for level in levels:
            for spot_class in compatible_spot_classes(vehicle_class):
                spots = uow.spots.find_available(spot_class, level, self.config.candidate_limit)
                if spots:
                    self.logger.debug(
                        f"{len(spots)} {spot_class.value} candidates for {vehicle_class.value}"
                        f"{f' on level {level}' if level is not None else ''}"
                    )
                    return spots
        return []

    def find_candidates(
        self,
        vehicle_class: Union[str, VehicleClass],
        preferred_level: Optional[int] = None
    ) -> List[Spot]:
        """
        Bounded list of available, active, compatible spots

        Classes are tried in compatibility order and the first class with any
        match wins; spots come ordered by (level, section, sequence).
        """
        vehicle_class = self._parse_vehicle_class(vehicle_class)
        with self.uow_factory() as uow:
            return self._query_candidates(uow, vehicle_class, preferred_level)

    # ------------------------------------------------------------------
    # Allocation
    # ------------------------------------------------------------------

    def allocate(
        self,
        license_plate: str,
        vehicle_class: Union[str, VehicleClass],
        options: Optional[AllocationOptions] = None
    ) -> AllocationResultDTO:
        """
        Allocate the best spot to an arriving vehicle

        Use Case: Vehicle Entry
        1. Reject vehicles that already hold an active session
        2. Query and score candidates
        3. Claim the best one; on a lost race drop it and claim the next
        4. Requery (bounded) when every candidate of a round was lost

        Returns: Allocation result
        """
        options = options or AllocationOptions()
        self.logger.info(f"Processing allocation request for {license_plate}")

        try:
            plate = self._parse_plate(license_plate)
            result = self._allocate(
                plate,
                self._parse_vehicle_class(vehicle_class),
                RateType(options.rate_type),
                options
            )
        except ParkingError as e:
            self.logger.info(f"Allocation for {license_plate} failed: {e.code.value} {e.message}")
            return AllocationResultDTO(
                success=False,
                message=e.message,
                error_code=e.code.value,
                license_plate=str(license_plate)
            )

        spot, session, vehicle, score, attempts = result
        self._publish(EventType.SPOT_ALLOCATED, session.id, {
            "license_plate": plate.value,
            "vehicle_id": vehicle.id,
            "vehicle_class": vehicle.vehicle_class.value,
            "spot_id": spot.id,
            "spot_label": spot.label,
            "session_id": session.id,
            "start_time": session.start_time.isoformat(),
            "score": score,
        })

        return AllocationResultDTO(
            success=True,
            message=f"Vehicle {plate} parked at {spot.label}",
            license_plate=plate.value,
            vehicle_id=vehicle.id,
            spot=SpotDTO.from_domain(spot),
            session=SessionDTO.from_domain(session),
            score=score,
            attempts=attempts
        )

    def _ensure_not_parked(self, uow: UnitOfWork, plate: LicensePlate) -> Optional[Vehicle]:
        vehicle = uow.vehicles.find_by_license_plate(plate.value)
        if vehicle is not None and (vehicle.is_parked or uow.sessions.find_active_by_vehicle(vehicle.id)):
            raise AlreadyParkedError(f"Vehicle {plate} is already parked")
        return vehicle

    def _allocate(
        self,
        plate: LicensePlate,
        vehicle_class: VehicleClass,
        rate_type: RateType,
        options: AllocationOptions
    ):
        preferred_level = options.preferred_level
        attempts = 0
        rounds = 0

        while True:
            with self.uow_factory() as uow:
                existing = self._ensure_not_parked(uow, plate)
                candidates = self._query_candidates(uow, vehicle_class, preferred_level)

            if not candidates:
                raise NoAvailableSpotError(f"No available spot for {vehicle_class.value} vehicle {plate}")

            while candidates:
                spot, score = self.scoring_strategy.select_best(candidates, vehicle_class, preferred_level)
                attempts += 1

                vehicle = self._vehicle_for_claim(existing, plate, vehicle_class, rate_type, options)
                vehicle.park_in(spot.id)
                session = ParkingSession(
                    vehicle_id=vehicle.id,
                    spot_id=spot.id,
                    license_plate=plate.value,
                    vehicle_class=vehicle_class,
                    start_time=options.start_time or utcnow()
                )

                with self.uow_factory() as uow:
                    outcome = uow.claim_spot(spot.id, vehicle, session)

                if outcome == ClaimOutcome.CLAIMED:
                    spot.state = OccupancyState.OCCUPIED
                    self.logger.info(
                        f"Allocated {spot.label} to {plate} ({vehicle_class.value}, score {score}, "
                        f"attempt {attempts})"
                    )
                    return spot, session, vehicle, score, attempts

                if outcome == ClaimOutcome.VEHICLE_BUSY:
                    raise AlreadyParkedError(f"Vehicle {plate} is already parked")

                self.logger.warning(f"Lost claim on {spot.label} for {plate}, trying next candidate")
                candidates = [c for c in candidates if c.id != spot.id]

            rounds += 1
            if rounds >= self.config.max_claim_rounds:
                raise ConflictRetryExhaustedError(
                    f"Every claim for {plate} lost to concurrent allocations ({attempts} attempts)"
                )
            self.logger.debug(f"All candidates lost for {plate}, requerying (round {rounds + 1})")

    def _vehicle_for_claim(
        self,
        existing: Optional[Vehicle],
        plate: LicensePlate,
        vehicle_class: VehicleClass,
        rate_type: RateType,
        options: AllocationOptions
    ) -> Vehicle:
        base_rate = options.base_rate
        if base_rate is None:
            base_rate = self.pricing_strategy.policy.base_rate_for(vehicle_class)

        if existing is None:
            return Vehicle(
                license_plate=plate,
                vehicle_class=vehicle_class,
                rate_type=rate_type,
                base_rate=base_rate
            )

        return Vehicle(
            id=existing.id,
            license_plate=existing.license_plate,
            vehicle_class=vehicle_class,
            rate_type=rate_type,
            base_rate=base_rate,
            state=existing.state
        )

    def simulate_allocation(
        self,
        license_plate: str,
        vehicle_class: Union[str, VehicleClass],
        options: Optional[AllocationOptions] = None
    ) -> AllocationPreviewDTO:
        """Preview what allocate would pick right now, without writing anything"""
        options = options or AllocationOptions()

        try:
            plate = self._parse_plate(license_plate)
            resolved = self._parse_vehicle_class(vehicle_class)
            with self.uow_factory() as uow:
                self._ensure_not_parked(uow, plate)
                candidates = self._query_candidates(uow, resolved, options.preferred_level)
        except ParkingError as e:
            return AllocationPreviewDTO(
                success=False, message=e.message, error_code=e.code.value,
                license_plate=str(license_plate)
            )

        preview = AllocationPreviewDTO(
            success=False,
            license_plate=plate.value,
            vehicle_class=resolved.value,
            compatible_spot_classes=[c.value for c in compatible_spot_classes(resolved)],
            candidates_considered=len(candidates),
            estimated_hourly_rate=round_money(
                options.base_rate if options.base_rate is not None
                else self.pricing_strategy.policy.base_rate_for(resolved)
            )
        )

        if not candidates:
            preview.message = f"No available spot for {resolved.value} vehicle {plate}"
            preview.error_code = NoAvailableSpotError.code.value
            return preview

        spot, score = self.scoring_strategy.select_best(candidates, resolved, options.preferred_level)
        preview.success = True
        preview.spot = SpotDTO.from_domain(spot)
        preview.score = score
        preview.message = f"Would assign {spot.label}"
        return preview

    # ------------------------------------------------------------------
    # Release
    # ------------------------------------------------------------------

    def _settle(self, uow: UnitOfWork, plate: LicensePlate, options: ReleaseOptions):
        """Load the active session and price it; no writes"""
        vehicle = uow.vehicles.find_by_license_plate(plate.value)
        if vehicle is None:
            raise NotFoundError(f"Vehicle {plate} not found")

        session = uow.sessions.find_active_by_vehicle(vehicle.id)
        if session is None:
            raise NotParkedError(f"Vehicle {plate} is not parked")

        spot = uow.spots.get(session.spot_id)
        if spot is None:
            raise DataIntegrityError(f"Session {session.id} references missing spot {session.spot_id}")

        checkout_time = options.checkout_time or utcnow()
        if checkout_time < session.start_time:
            raise InvalidCheckoutTimeError(
                f"Checkout {checkout_time.isoformat()} is before check-in {session.start_time.isoformat()}"
            )

        breakdown = self.pricing_strategy.compute_fee(
            elapsed_minutes(session.start_time, checkout_time),
            vehicle.rate_type,
            vehicle.base_rate,
            spot.features,
            apply_grace_period=options.apply_grace_period
        )
        settlement = Settlement(
            session_id=session.id,
            spot_id=spot.id,
            vehicle_id=vehicle.id,
            license_plate=plate.value,
            check_in_time=session.start_time,
            check_out_time=checkout_time,
            breakdown=breakdown
        )
        return vehicle, session, spot, settlement

    def _release(self, plate: LicensePlate, options: ReleaseOptions):
        with self.uow_factory() as uow:
            vehicle, session, spot, settlement = self._settle(uow, plate, options)

            if not uow.sessions.close(
                session.id, settlement.check_out_time,
                settlement.duration_minutes, settlement.total_amount
            ):
                raise NotParkedError(f"Vehicle {plate} is not parked")

            if not uow.spots.release(spot.id):
                raise DataIntegrityError(f"Spot {spot.label} held an active session but was not occupied")

            if options.remove_record:
                uow.remove_vehicle(vehicle.id)
            else:
                vehicle.depart()
                uow.vehicles.update(vehicle)

        spot.state = OccupancyState.AVAILABLE
        return spot, settlement

    def release(
        self,
        license_plate: str,
        options: Optional[ReleaseOptions] = None
    ) -> ReleaseResultDTO:
        """
        Release a vehicle's spot and settle its session

        Use Case: Vehicle Exit
        1. Find the active session of the vehicle
        2. Compute the fee for start -> checkout
        3. Close the session, free the spot, mark the vehicle departed (or remove it)

        Returns: Release result with settlement
        """
        return self._run_release(license_plate, options or ReleaseOptions())

    def force_release(self, license_plate: str, reason: str = "administrative release") -> ReleaseResultDTO:
        """Administrative release: settles at current time and removes the vehicle record"""
        self.logger.warning(f"Forced release of {license_plate}: {reason}")
        return self._run_release(
            license_plate,
            ReleaseOptions(remove_record=True),
            forced=True,
            reason=reason
        )

    def _run_release(
        self,
        license_plate: str,
        options: ReleaseOptions,
        forced: bool = False,
        reason: Optional[str] = None
    ) -> ReleaseResultDTO:
        self.logger.info(f"Processing release request for {license_plate}")

        try:
            plate = self._parse_plate(license_plate)
            spot, settlement = self._release(plate, options)
        except ParkingError as e:
            self.logger.info(f"Release for {license_plate} failed: {e.code.value} {e.message}")
            return ReleaseResultDTO(
                success=False,
                message=e.message,
                error_code=e.code.value,
                license_plate=str(license_plate),
                forced=forced,
                reason=reason
            )

        self.logger.info(
            f"Released {spot.label} from {plate}: {settlement.duration_minutes} min, "
            f"{settlement.total_amount} {settlement.breakdown.currency}"
        )
        self._publish(EventType.SPOT_RELEASED, settlement.session_id, {
            "license_plate": plate.value,
            "vehicle_id": settlement.vehicle_id,
            "spot_id": spot.id,
            "spot_label": spot.label,
            "session_id": settlement.session_id,
            "duration_minutes": settlement.duration_minutes,
            "total_amount": str(settlement.total_amount),
            "forced": forced,
        })

        return ReleaseResultDTO(
            success=True,
            message=f"Vehicle {plate} released from {spot.label}",
            license_plate=plate.value,
            settlement=SettlementDTO.from_domain(settlement),
            spot=SpotDTO.from_domain(spot),
            vehicle_removed=options.remove_record,
            forced=forced,
            reason=reason
        )

    def simulate_release(
        self,
        license_plate: str,
        options: Optional[ReleaseOptions] = None
    ) -> ReleaseResultDTO:
        """Preview the settlement of a release without writing anything"""
        options = options or ReleaseOptions()

        try:
            plate = self._parse_plate(license_plate)
            with self.uow_factory() as uow:
                _, _, spot, settlement = self._settle(uow, plate, options)
        except ParkingError as e:
            return ReleaseResultDTO(
                success=False, message=e.message, error_code=e.code.value,
                license_plate=str(license_plate), simulated=True
            )

        return ReleaseResultDTO(
            success=True,
            message=f"Release of {plate} from {spot.label} would cost {settlement.total_amount}",
            license_plate=plate.value,
            settlement=SettlementDTO.from_domain(settlement),
            spot=SpotDTO.from_domain(spot),
            simulated=True
        )

    # ------------------------------------------------------------------
    # Fees
    # ------------------------------------------------------------------

    def compute_fee(self, duration_minutes: int, options: Optional[FeeOptions] = None) -> FeeBreakdownDTO:
        """
        Standalone fee estimate

        The base rate defaults to the configured rate of options.vehicle_class
        (standard when neither is given). Raises InvalidInputError on bad input.
        """
        options = options or FeeOptions()
        base_rate = options.base_rate
        if base_rate is None:
            resolved = self._parse_vehicle_class(options.vehicle_class or VehicleClass.STANDARD)
            base_rate = self.pricing_strategy.policy.base_rate_for(resolved)

        breakdown = self.pricing_strategy.compute_fee(
            duration_minutes, options.rate_type, base_rate,
            options.spot_features, options.apply_grace_period
        )
        return FeeBreakdownDTO.from_domain(breakdown)

    def _running_estimate(self, uow: UnitOfWork, session: ParkingSession, now: datetime) -> ActiveSessionDTO:
        vehicle = uow.vehicles.get(session.vehicle_id) if session.vehicle_id else None
        spot = uow.spots.get(session.spot_id)
        rate_type = vehicle.rate_type if vehicle else RateType.HOURLY
        base_rate = vehicle.base_rate if vehicle else self.pricing_strategy.policy.base_rate_for(session.vehicle_class)

        minutes = elapsed_minutes(session.start_time, max(now, session.start_time))
        breakdown = self.pricing_strategy.compute_fee(
            minutes, rate_type, base_rate, spot.features if spot else ()
        )
        return ActiveSessionDTO(
            session=SessionDTO.from_domain(session),
            elapsed_minutes=minutes,
            current_estimate=breakdown.total_amount,
            rate_type=rate_type
        )

    def estimate_current_fee(self, license_plate: str, now: Optional[datetime] = None) -> ActiveSessionDTO:
        """Running cost of a parked vehicle; raises NotFoundError / NotParkedError"""
        plate = self._parse_plate(license_plate)
        now = to_naive_utc(now) if now else utcnow()

        with self.uow_factory() as uow:
            vehicle = uow.vehicles.find_by_license_plate(plate.value)
            if vehicle is None:
                raise NotFoundError(f"Vehicle {plate} not found")
            session = uow.sessions.find_active_by_vehicle(vehicle.id)
            if session is None:
                raise NotParkedError(f"Vehicle {plate} is not parked")
            return self._running_estimate(uow, session, now)

    def list_active_sessions(self, min_minutes: int = 0, now: Optional[datetime] = None) -> List[ActiveSessionDTO]:
        """Parked vehicles whose stay is at least min_minutes, oldest first"""
        now = to_naive_utc(now) if now else utcnow()

        with self.uow_factory() as uow:
            return [
                self._running_estimate(uow, session, now)
                for session in uow.sessions.find_active()
                if elapsed_minutes(session.start_time, max(now, session.start_time)) >= min_minutes
            ]

    # ------------------------------------------------------------------
    # Availability and statistics
    # ------------------------------------------------------------------

    def get_availability(self, vehicle_class: Union[str, VehicleClass]) -> AvailabilityDTO:
        """Available spots per compatible class for a vehicle class"""
        resolved = self._parse_vehicle_class(vehicle_class)

        with self.uow_factory() as uow:
            counts = {
                spot_class.value: uow.spots.count_available(spot_class)
                for spot_class in compatible_spot_classes(resolved)
            }

        total = sum(counts.values())
        return AvailabilityDTO(
            vehicle_class=resolved.value,
            by_spot_class=counts,
            total_available=total,
            has_available=total > 0
        )

    def get_occupancy_stats(self) -> OccupancyStatsDTO:
        """Facility-wide occupancy and session counts"""
        with self.uow_factory() as uow:
            spots = uow.spots.count_by_state()
            sessions = uow.sessions.count_by_state()
            average = uow.sessions.average_completed_duration()

        total = sum(spots.values())
        occupied = spots[OccupancyState.OCCUPIED.value]
        rate = Decimal(occupied * 100) / Decimal(total) if total else Decimal('0')

        return OccupancyStatsDTO(
            total_spots=total,
            available=spots[OccupancyState.AVAILABLE.value],
            occupied=occupied,
            reserved=spots[OccupancyState.RESERVED.value],
            maintenance=spots[OccupancyState.MAINTENANCE.value],
            out_of_order=spots[OccupancyState.OUT_OF_ORDER.value],
            occupancy_rate=round_money(rate),
            active_sessions=sessions.get("ACTIVE", 0),
            completed_sessions=sessions.get("COMPLETED", 0),
            average_duration_minutes=round_money(Decimal(str(average))) if average is not None else None
        )

    # ------------------------------------------------------------------
    # Spot administration
    # ------------------------------------------------------------------

    def add_spots(self, spots: Iterable[Spot]) -> int:
        """Add spots to the facility in one transaction"""
        added = 0
        with self.uow_factory() as uow:
            for spot in spots:
                if spot.state == OccupancyState.OCCUPIED:
                    raise InvalidInputError(f"Spot {spot.label} cannot be created occupied")
                uow.spots.add(spot)
                added += 1
        self.logger.info(f"Added {added} spots")
        return added

    def add_spot(self, spot: Spot) -> SpotDTO:
        self.add_spots([spot])
        return SpotDTO.from_domain(spot)

    def set_spot_state(self, spot_id: str, state: Union[str, OccupancyState]) -> SpotDTO:
        """Move a spot between AVAILABLE, RESERVED, MAINTENANCE and OUT_OF_ORDER"""
        try:
            state = OccupancyState(state)
        except ValueError:
            raise InvalidInputError(f"Unknown spot state: {state!r}")
        if state == OccupancyState.OCCUPIED:
            raise InvalidInputError("Spots become occupied only through allocation")

        with self.uow_factory() as uow:
            spot = uow.spots.get(spot_id)
            if spot is None:
                raise NotFoundError(f"Spot {spot_id} not found")
            if spot.state == OccupancyState.OCCUPIED:
                raise InvalidInputError(f"Spot {spot.label} is occupied; release it first")
            if not uow.spots.set_state(spot_id, state):
                raise InvalidInputError(f"Spot {spot.label} changed concurrently")
            previous = spot.state
            spot.state = state

        self._publish(EventType.SPOT_STATE_CHANGED, spot.id, {
            "spot_id": spot.id,
            "spot_label": spot.label,
            "previous_state": previous.value,
            "state": state.value,
        })
        return SpotDTO.from_domain(spot)
