# File: parkwise/infrastructure/repositories.py
"""
Repository Pattern Implementation for the Parking Engine

This module implements the store capability the engine depends on.
Repositories provide a collection-like interface over spots, vehicles and
sessions; a Unit of Work groups their writes into one atomic transaction.

Key Points:
- The only contended write is the conditional claim of a spot
  ("set OCCUPIED where state = AVAILABLE"); its row count decides the winner
- Session and vehicle writes happen inside the same unit of work as the claim
- At most one ACTIVE session per vehicle and per spot is enforced by the store
  (unique partial indexes in SQL, explicit checks in memory)

Storage Implementations:
- InMemoryStore / InMemoryUnitOfWork - For testing and development
- SQLAlchemyUnitOfWork - For relational databases (SQLite, PostgreSQL)
"""

from abc import ABC, abstractmethod
from typing import (
    Type, TypeVar, Generic, Optional, List, Dict, Any, Callable
)
from datetime import datetime
from decimal import Decimal
from enum import Enum
import copy
import logging
import threading

from sqlalchemy import (
    create_engine, Column, Integer, String, Boolean, DateTime, ForeignKey,
    Numeric, JSON, UniqueConstraint, Index, func, text
)
from sqlalchemy.orm import declarative_base, sessionmaker, Session
from sqlalchemy.exc import SQLAlchemyError, IntegrityError
from sqlalchemy.pool import StaticPool

from ..domain.models import (
    Spot, Vehicle, ParkingSession, LicensePlate,
    SpotClass, VehicleClass, OccupancyState, VehicleState, SessionState, RateType,
    utcnow
)
from ..domain.errors import StorageError


T = TypeVar('T')
ID = TypeVar('ID')


class ClaimOutcome(str, Enum):
    """Result of the conditional claim primitive"""
    CLAIMED = "CLAIMED"            # Spot, vehicle and session written
    SPOT_TAKEN = "SPOT_TAKEN"      # Another request occupied the spot first
    VEHICLE_BUSY = "VEHICLE_BUSY"  # Another request parked this vehicle first


class UniquenessConflict(StorageError):
    """
    A write violates a uniqueness rule: a second active session for a vehicle
    or spot, a duplicate plate, a duplicate spot location
    """
    pass


# ============================================================================
# REPOSITORY INTERFACES
# ============================================================================

class Repository(ABC, Generic[T, ID]):
    """Generic repository interface"""

    @abstractmethod
    def add(self, entity: T) -> T:
        """Add a new entity"""
        pass

    @abstractmethod
    def get(self, id: ID) -> Optional[T]:
        """Get entity by ID"""
        pass

    @abstractmethod
    def update(self, entity: T) -> T:
        """Update an existing entity"""
        pass

    @abstractmethod
    def delete(self, id: ID) -> bool:
        """Delete entity by ID"""
        pass

    @abstractmethod
    def count(self) -> int:
        """Count all entities"""
        pass

    def exists(self, id: ID) -> bool:
        """Check if entity exists"""
        return self.get(id) is not None


class SpotRepository(Repository[Spot, str], ABC):
    """Spot storage, including the conditional occupancy transitions"""

    @abstractmethod
    def find_available(
        self,
        spot_class: SpotClass,
        level: Optional[int] = None,
        limit: int = 10
    ) -> List[Spot]:
        """Available, active spots of one class ordered by (level, section, sequence)"""
        pass

    @abstractmethod
    def occupy(self, spot_id: str) -> bool:
        """Atomically set OCCUPIED if still AVAILABLE and active; True for the winner"""
        pass

    @abstractmethod
    def release(self, spot_id: str) -> bool:
        """Atomically set AVAILABLE if currently OCCUPIED"""
        pass

    @abstractmethod
    def set_state(self, spot_id: str, state: OccupancyState) -> bool:
        """Administrative state change; never to or from OCCUPIED"""
        pass

    @abstractmethod
    def count_by_state(self) -> Dict[str, int]:
        """Active spots per occupancy state"""
        pass

    @abstractmethod
    def count_available(self, spot_class: SpotClass) -> int:
        pass


class VehicleRepository(Repository[Vehicle, str], ABC):
    """Vehicle storage"""

    @abstractmethod
    def find_by_license_plate(self, license_plate: str) -> Optional[Vehicle]:
        """Find vehicle by normalized license plate"""
        pass

    def save(self, vehicle: Vehicle) -> Vehicle:
        """Insert or update"""
        if self.exists(vehicle.id):
            return self.update(vehicle)
        return self.add(vehicle)


class SessionRepository(Repository[ParkingSession, str], ABC):
    """Parking session storage"""

    @abstractmethod
    def find_active_by_vehicle(self, vehicle_id: str) -> Optional[ParkingSession]:
        pass

    @abstractmethod
    def find_active(self) -> List[ParkingSession]:
        """All active sessions, oldest first"""
        pass

    @abstractmethod
    def close(
        self,
        session_id: str,
        end_time: datetime,
        duration_minutes: int,
        total_amount: Decimal
    ) -> bool:
        """Atomically complete a session if it is still ACTIVE"""
        pass

    @abstractmethod
    def detach_vehicle(self, vehicle_id: str) -> int:
        """Clear the vehicle reference of its sessions before the vehicle is removed"""
        pass

    @abstractmethod
    def count_by_state(self) -> Dict[str, int]:
        pass

    @abstractmethod
    def average_completed_duration(self) -> Optional[float]:
        """Mean duration in minutes of completed sessions"""
        pass


# ============================================================================
# UNIT OF WORK PATTERN
# ============================================================================

class UnitOfWork(ABC):
    """
    Unit of Work pattern for transaction management

    Use as a context manager: leaving the block normally commits, an exception
    rolls everything back.
    """

    @abstractmethod
    def __enter__(self):
        pass

    @abstractmethod
    def __exit__(self, exc_type, exc_val, exc_tb):
        pass

    @abstractmethod
    def commit(self):
        """Commit the transaction"""
        pass

    @abstractmethod
    def rollback(self):
        """Rollback the transaction"""
        pass

    @property
    @abstractmethod
    def spots(self) -> SpotRepository:
        pass

    @property
    @abstractmethod
    def vehicles(self) -> VehicleRepository:
        pass

    @property
    @abstractmethod
    def sessions(self) -> SessionRepository:
        pass

    def claim_spot(self, spot_id: str, vehicle: Vehicle, session: ParkingSession) -> ClaimOutcome:
        """
        Conditional claim: occupy the spot, park the vehicle and open the session

        Returns SPOT_TAKEN without writing anything when the spot is no longer
        available. VEHICLE_BUSY means a concurrent request already parked the
        vehicle; the unit of work is rolled back in that case.
        """
        if not self.spots.occupy(spot_id):
            return ClaimOutcome.SPOT_TAKEN

        try:
            self.vehicles.save(vehicle)
            self.sessions.add(session)
        except UniquenessConflict:
            self.rollback()
            return ClaimOutcome.VEHICLE_BUSY

        return ClaimOutcome.CLAIMED

    def remove_vehicle(self, vehicle_id: str) -> bool:
        """Delete a vehicle record while keeping its session history"""
        self.sessions.detach_vehicle(vehicle_id)
        return self.vehicles.delete(vehicle_id)


# ============================================================================
# IN-MEMORY IMPLEMENTATIONS
# ============================================================================

class InMemoryStore:
    """
    Shared in-memory tables

    Holds the lock a unit of work keeps for its own duration, which makes each
    transaction (and therefore the conditional claim) atomic across threads.
    """

    def __init__(self):
        self.lock = threading.RLock()
        self.spots: Dict[str, Spot] = {}
        self.vehicles: Dict[str, Vehicle] = {}
        self.sessions: Dict[str, ParkingSession] = {}

    def snapshot(self) -> Dict[str, Dict[str, Any]]:
        # Stored entities are never mutated in place, so shallow copies suffice
        return {
            "spots": dict(self.spots),
            "vehicles": dict(self.vehicles),
            "sessions": dict(self.sessions),
        }

    def restore(self, snapshot: Dict[str, Dict[str, Any]]) -> None:
        self.spots = dict(snapshot["spots"])
        self.vehicles = dict(snapshot["vehicles"])
        self.sessions = dict(snapshot["sessions"])


class InMemoryRepository(Repository[T, str]):
    """In-memory repository over one table of an InMemoryStore"""

    table_name = ""

    def __init__(self, store: InMemoryStore):
        self._store = store
        self._logger = logging.getLogger(self.__class__.__name__)

    @property
    def _storage(self) -> Dict[str, T]:
        return getattr(self._store, self.table_name)

    def _put(self, entity: T) -> None:
        self._storage[entity.id] = copy.deepcopy(entity)

    def add(self, entity: T) -> T:
        if entity.id in self._storage:
            raise StorageError(f"Entity {entity.id} already exists")
        self._put(entity)
        self._logger.debug(f"Added entity {entity.id}")
        return entity

    def get(self, id: str) -> Optional[T]:
        entity = self._storage.get(id)
        return copy.deepcopy(entity) if entity is not None else None

    def update(self, entity: T) -> T:
        if entity.id not in self._storage:
            raise StorageError(f"Entity {entity.id} not found")
        self._put(entity)
        self._logger.debug(f"Updated entity {entity.id}")
        return entity

    def delete(self, id: str) -> bool:
        if id in self._storage:
            del self._storage[id]
            self._logger.debug(f"Deleted entity {id}")
            return True
        return False

    def exists(self, id: str) -> bool:
        return id in self._storage

    def count(self) -> int:
        return len(self._storage)


class InMemorySpotRepository(InMemoryRepository[Spot], SpotRepository):
    """In-memory repository for spots"""

    table_name = "spots"

    def _put(self, entity: Spot) -> None:
        for other in self._storage.values():
            if other.id != entity.id and other.sort_key == entity.sort_key:
                raise UniquenessConflict(f"Spot location {entity.label} already exists")
        super()._put(entity)

    def find_available(
        self,
        spot_class: SpotClass,
        level: Optional[int] = None,
        limit: int = 10
    ) -> List[Spot]:
        matches = [
            s for s in self._storage.values()
            if s.is_claimable() and s.spot_class == spot_class
            and (level is None or s.level == level)
        ]
        matches.sort(key=lambda s: s.sort_key)
        return [copy.deepcopy(s) for s in matches[:limit]]

    def _transition(self, spot_id: str, expected: OccupancyState, new: OccupancyState) -> bool:
        spot = self._storage.get(spot_id)
        if spot is None or spot.state != expected:
            return False
        if expected == OccupancyState.AVAILABLE and not spot.is_active:
            return False
        changed = copy.deepcopy(spot)
        changed.state = new
        self._storage[spot_id] = changed
        return True

    def occupy(self, spot_id: str) -> bool:
        return self._transition(spot_id, OccupancyState.AVAILABLE, OccupancyState.OCCUPIED)

    def release(self, spot_id: str) -> bool:
        return self._transition(spot_id, OccupancyState.OCCUPIED, OccupancyState.AVAILABLE)

    def set_state(self, spot_id: str, state: OccupancyState) -> bool:
        spot = self._storage.get(spot_id)
        if spot is None or OccupancyState.OCCUPIED in (spot.state, state):
            return False
        changed = copy.deepcopy(spot)
        changed.state = state
        self._storage[spot_id] = changed
        return True

    def count_by_state(self) -> Dict[str, int]:
        counts = {state.value: 0 for state in OccupancyState}
        for spot in self._storage.values():
            if spot.is_active:
                counts[spot.state.value] += 1
        return counts

    def count_available(self, spot_class: SpotClass) -> int:
        return sum(
            1 for s in self._storage.values()
            if s.is_claimable() and s.spot_class == spot_class
        )


class InMemoryVehicleRepository(InMemoryRepository[Vehicle], VehicleRepository):
    """In-memory repository for vehicles"""

    table_name = "vehicles"

    def _put(self, entity: Vehicle) -> None:
        for other in self._storage.values():
            if other.id != entity.id and other.license_plate == entity.license_plate:
                raise UniquenessConflict(f"Plate {entity.license_plate} already registered")
        super()._put(entity)

    def find_by_license_plate(self, license_plate: str) -> Optional[Vehicle]:
        """Find vehicle by license plate"""
        for vehicle in self._storage.values():
            if vehicle.license_plate.value == license_plate:
                return copy.deepcopy(vehicle)
        return None


class InMemorySessionRepository(InMemoryRepository[ParkingSession], SessionRepository):
    """In-memory repository for parking sessions"""

    table_name = "sessions"

    def add(self, entity: ParkingSession) -> ParkingSession:
        if entity.is_active:
            for other in self._storage.values():
                if not other.is_active:
                    continue
                if other.spot_id == entity.spot_id:
                    raise UniquenessConflict(f"Spot {entity.spot_id} already has an active session")
                if entity.vehicle_id and other.vehicle_id == entity.vehicle_id:
                    raise UniquenessConflict(f"Vehicle {entity.vehicle_id} already has an active session")
        return super().add(entity)

    def _first_active(self, predicate: Callable[[ParkingSession], bool]) -> Optional[ParkingSession]:
        for s in self._storage.values():
            if s.is_active and predicate(s):
                return copy.deepcopy(s)
        return None

    def find_active_by_vehicle(self, vehicle_id: str) -> Optional[ParkingSession]:
        return self._first_active(lambda s: s.vehicle_id == vehicle_id)

    def find_active(self) -> List[ParkingSession]:
        active = [s for s in self._storage.values() if s.is_active]
        active.sort(key=lambda s: s.start_time)
        return [copy.deepcopy(s) for s in active]

    def close(
        self,
        session_id: str,
        end_time: datetime,
        duration_minutes: int,
        total_amount: Decimal
    ) -> bool:
        current = self._storage.get(session_id)
        if current is None or not current.is_active:
            return False
        closed = copy.deepcopy(current)
        closed.close(end_time, duration_minutes, total_amount)
        self._storage[session_id] = closed
        return True

    def detach_vehicle(self, vehicle_id: str) -> int:
        detached = 0
        for session_id, s in list(self._storage.items()):
            if s.vehicle_id == vehicle_id:
                changed = copy.deepcopy(s)
                changed.vehicle_id = None
                self._storage[session_id] = changed
                detached += 1
        return detached

    def count_by_state(self) -> Dict[str, int]:
        counts = {state.value: 0 for state in SessionState}
        for s in self._storage.values():
            counts[s.state.value] += 1
        return counts

    def average_completed_duration(self) -> Optional[float]:
        durations = [
            s.duration_minutes for s in self._storage.values()
            if s.state == SessionState.COMPLETED and s.duration_minutes is not None
        ]
        if not durations:
            return None
        return sum(durations) / len(durations)


class InMemoryUnitOfWork(UnitOfWork):
    """
    Unit of Work over an InMemoryStore

    Holds the store lock from __enter__ to __exit__; rollback restores the
    snapshot taken at the start (or at the last commit).
    """

    def __init__(self, store: InMemoryStore):
        self.store = store
        self._logger = logging.getLogger(self.__class__.__name__)
        self._spots = InMemorySpotRepository(store)
        self._vehicles = InMemoryVehicleRepository(store)
        self._sessions = InMemorySessionRepository(store)
        self._snapshot = None

    def __enter__(self):
        self.store.lock.acquire()
        self._snapshot = self.store.snapshot()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        try:
            if exc_type is not None:
                self._logger.error(f"Exception in unit of work: {exc_val}")
                self.rollback()
            else:
                self.commit()
        finally:
            self._snapshot = None
            self.store.lock.release()

    def commit(self):
        """Commit the transaction"""
        self._snapshot = self.store.snapshot()
        self._logger.debug("Transaction committed")

    def rollback(self):
        """Rollback the transaction"""
        if self._snapshot is not None:
            self.store.restore(self._snapshot)
        self._logger.debug("Transaction rolled back")

    @property
    def spots(self) -> InMemorySpotRepository:
        return self._spots

    @property
    def vehicles(self) -> InMemoryVehicleRepository:
        return self._vehicles

    @property
    def sessions(self) -> InMemorySessionRepository:
        return self._sessions


# ============================================================================
# SQLALCHEMY ORM MODELS
# ============================================================================

Base = declarative_base()


class SpotModel(Base):
    """SQLAlchemy model for Spot"""
    __tablename__ = 'parking_spots'

    id = Column(String(36), primary_key=True)
    level = Column(Integer, nullable=False)
    section = Column(String(10), nullable=False)
    sequence = Column(Integer, nullable=False)
    spot_class = Column(String(20), nullable=False)
    state = Column(String(20), nullable=False, default=OccupancyState.AVAILABLE.value)
    is_active = Column(Boolean, nullable=False, default=True)
    features = Column(JSON, default=list)

    # Timestamps
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint('level', 'section', 'sequence', name='uq_spot_location'),
        Index('idx_spot_candidates', 'state', 'spot_class', 'level', 'section', 'sequence'),
    )


class VehicleModel(Base):
    """SQLAlchemy model for Vehicle"""
    __tablename__ = 'vehicles'

    id = Column(String(36), primary_key=True)
    license_plate = Column(String(20), nullable=False, index=True)
    vehicle_class = Column(String(20), nullable=False)
    rate_type = Column(String(20), nullable=False, default=RateType.HOURLY.value)
    base_rate = Column(Numeric(10, 2), nullable=False)
    state = Column(String(20), nullable=False, default=VehicleState.ACTIVE.value)
    assigned_spot_id = Column(String(36), ForeignKey('parking_spots.id'), nullable=True)

    # Timestamps
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint('license_plate', name='uq_vehicle_license_plate'),
    )


class SessionModel(Base):
    """SQLAlchemy model for ParkingSession"""
    __tablename__ = 'parking_sessions'

    id = Column(String(36), primary_key=True)
    vehicle_id = Column(String(36), ForeignKey('vehicles.id', ondelete='SET NULL'), nullable=True)
    spot_id = Column(String(36), ForeignKey('parking_spots.id'), nullable=False)
    license_plate = Column(String(20), nullable=False, index=True)
    vehicle_class = Column(String(20), nullable=False)
    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime)
    status = Column(String(20), nullable=False, default=SessionState.ACTIVE.value)
    duration_minutes = Column(Integer)
    total_amount = Column(Numeric(10, 2))

    created_at = Column(DateTime, default=utcnow)

    __table_args__ = (
        Index(
            'idx_unique_active_vehicle_session', 'vehicle_id', unique=True,
            sqlite_where=text("status = 'ACTIVE'"),
            postgresql_where=text("status = 'ACTIVE'"),
        ),
        Index(
            'idx_unique_active_spot_session', 'spot_id', unique=True,
            sqlite_where=text("status = 'ACTIVE'"),
            postgresql_where=text("status = 'ACTIVE'"),
        ),
    )


# ============================================================================
# DOMAIN <-> ORM MAPPING
# ============================================================================

class Mapper:
    """Maps between domain models and ORM models"""

    @staticmethod
    def spot_to_orm(spot: Spot) -> SpotModel:
        return SpotModel(
            id=spot.id,
            level=spot.level,
            section=spot.section,
            sequence=spot.sequence,
            spot_class=spot.spot_class.value,
            state=spot.state.value,
            is_active=spot.is_active,
            features=list(spot.features),
        )

    @staticmethod
    def spot_to_domain(model: SpotModel) -> Spot:
        return Spot(
            id=model.id,
            level=model.level,
            section=model.section,
            sequence=model.sequence,
            spot_class=SpotClass(model.spot_class),
            state=OccupancyState(model.state),
            is_active=model.is_active,
            features=list(model.features or []),
        )

    @staticmethod
    def vehicle_to_orm(vehicle: Vehicle) -> VehicleModel:
        return VehicleModel(
            id=vehicle.id,
            license_plate=vehicle.license_plate.value,
            vehicle_class=vehicle.vehicle_class.value,
            rate_type=vehicle.rate_type.value,
            base_rate=vehicle.base_rate,
            state=vehicle.state.value,
            assigned_spot_id=vehicle.assigned_spot_id,
        )

    @staticmethod
    def vehicle_to_domain(model: VehicleModel) -> Vehicle:
        return Vehicle(
            id=model.id,
            license_plate=LicensePlate(model.license_plate),
            vehicle_class=VehicleClass(model.vehicle_class),
            rate_type=RateType(model.rate_type),
            base_rate=Decimal(model.base_rate),
            state=VehicleState(model.state),
            assigned_spot_id=model.assigned_spot_id,
        )

    @staticmethod
    def session_to_orm(session: ParkingSession) -> SessionModel:
        return SessionModel(
            id=session.id,
            vehicle_id=session.vehicle_id,
            spot_id=session.spot_id,
            license_plate=session.license_plate,
            vehicle_class=session.vehicle_class.value,
            start_time=session.start_time,
            end_time=session.end_time,
            status=session.state.value,
            duration_minutes=session.duration_minutes,
            total_amount=session.total_amount,
        )

    @staticmethod
    def session_to_domain(model: SessionModel) -> ParkingSession:
        return ParkingSession(
            id=model.id,
            vehicle_id=model.vehicle_id,
            spot_id=model.spot_id,
            license_plate=model.license_plate,
            vehicle_class=VehicleClass(model.vehicle_class),
            start_time=model.start_time,
            end_time=model.end_time,
            state=SessionState(model.status),
            duration_minutes=model.duration_minutes,
            total_amount=Decimal(model.total_amount) if model.total_amount is not None else None,
        )


# ============================================================================
# SQLALCHEMY REPOSITORIES
# ============================================================================

class SQLAlchemyRepository(Repository[T, str], ABC):
    """Base SQLAlchemy repository"""

    def __init__(self, session: Session):
        self.session = session
        self._logger = logging.getLogger(self.__class__.__name__)

    @property
    @abstractmethod
    def model_class(self) -> Type[Base]:
        """Return SQLAlchemy model class"""
        pass

    @abstractmethod
    def to_domain(self, model: Base) -> T:
        """Convert ORM model to domain model"""
        pass

    @abstractmethod
    def to_orm(self, entity: T) -> Base:
        """Convert domain model to ORM model"""
        pass

    def _fail(self, action: str, error: SQLAlchemyError) -> StorageError:
        self.session.rollback()
        self._logger.error(f"Database error {action}: {error}")
        return StorageError(f"Database error {action}: {error}")

    def add(self, entity: T) -> T:
        try:
            self.session.add(self.to_orm(entity))
            self.session.flush()
            self._logger.debug(f"Added entity: {entity.id}")
            return entity
        except IntegrityError as e:
            self.session.rollback()
            self._logger.warning(f"Integrity error adding entity: {e.orig}")
            raise UniquenessConflict(str(e.orig)) from e
        except SQLAlchemyError as e:
            raise self._fail("adding entity", e) from e

    def get(self, id: str) -> Optional[T]:
        try:
            model = self.session.get(self.model_class, id)
            if model:
                return self.to_domain(model)
            return None
        except SQLAlchemyError as e:
            raise self._fail(f"getting entity {id}", e) from e

    def update(self, entity: T) -> T:
        try:
            model = self.session.get(self.model_class, entity.id)
            if not model:
                raise StorageError(f"Entity {entity.id} not found")

            updated_model = self.to_orm(entity)
            for column in self.model_class.__table__.columns:
                if column.name not in ('id', 'created_at', 'updated_at'):
                    setattr(model, column.name, getattr(updated_model, column.name))

            self.session.flush()
            self._logger.debug(f"Updated entity: {entity.id}")
            return entity
        except IntegrityError as e:
            self.session.rollback()
            self._logger.warning(f"Integrity error updating entity: {e.orig}")
            raise UniquenessConflict(str(e.orig)) from e
        except SQLAlchemyError as e:
            raise self._fail("updating entity", e) from e

    def delete(self, id: str) -> bool:
        try:
            model = self.session.get(self.model_class, id)
            if model:
                self.session.delete(model)
                self.session.flush()
                self._logger.debug(f"Deleted entity: {id}")
                return True
            return False
        except SQLAlchemyError as e:
            raise self._fail("deleting entity", e) from e

    def count(self) -> int:
        try:
            return self.session.query(func.count(self.model_class.id)).scalar() or 0
        except SQLAlchemyError as e:
            raise self._fail("counting entities", e) from e


class SQLAlchemySpotRepository(SQLAlchemyRepository[Spot], SpotRepository):
    """SQLAlchemy repository for spots"""

    @property
    def model_class(self) -> Type[Base]:
        return SpotModel

    def to_domain(self, model: SpotModel) -> Spot:
        return Mapper.spot_to_domain(model)

    def to_orm(self, entity: Spot) -> SpotModel:
        return Mapper.spot_to_orm(entity)

    def find_available(
        self,
        spot_class: SpotClass,
        level: Optional[int] = None,
        limit: int = 10
    ) -> List[Spot]:
        try:
            query = self.session.query(SpotModel).filter(
                SpotModel.state == OccupancyState.AVAILABLE.value,
                SpotModel.is_active == True,
                SpotModel.spot_class == SpotClass(spot_class).value
            )
            if level is not None:
                query = query.filter(SpotModel.level == level)

            models = query.order_by(
                SpotModel.level, SpotModel.section, SpotModel.sequence
            ).limit(limit).all()
            return [self.to_domain(m) for m in models]
        except SQLAlchemyError as e:
            raise self._fail("finding available spots", e) from e

    def _transition(self, spot_id: str, expected: OccupancyState, new: OccupancyState) -> bool:
        try:
            query = self.session.query(SpotModel).filter(
                SpotModel.id == spot_id,
                SpotModel.state == expected.value
            )
            if expected == OccupancyState.AVAILABLE:
                query = query.filter(SpotModel.is_active == True)

            result = query.update(
                {'state': new.value, 'updated_at': utcnow()},
                synchronize_session=False
            )
            self.session.flush()
            return result > 0
        except SQLAlchemyError as e:
            raise self._fail(f"changing spot {spot_id} to {new.value}", e) from e

    def occupy(self, spot_id: str) -> bool:
        """Mark spot as occupied"""
        return self._transition(spot_id, OccupancyState.AVAILABLE, OccupancyState.OCCUPIED)

    def release(self, spot_id: str) -> bool:
        """Mark spot as available"""
        return self._transition(spot_id, OccupancyState.OCCUPIED, OccupancyState.AVAILABLE)

    def set_state(self, spot_id: str, state: OccupancyState) -> bool:
        if state == OccupancyState.OCCUPIED:
            return False
        try:
            result = self.session.query(SpotModel).filter(
                SpotModel.id == spot_id,
                SpotModel.state != OccupancyState.OCCUPIED.value
            ).update({'state': state.value, 'updated_at': utcnow()}, synchronize_session=False)
            self.session.flush()
            return result > 0
        except SQLAlchemyError as e:
            raise self._fail(f"setting spot {spot_id} state", e) from e

    def count_by_state(self) -> Dict[str, int]:
        try:
            rows = self.session.query(SpotModel.state, func.count(SpotModel.id)).filter(
                SpotModel.is_active == True
            ).group_by(SpotModel.state).all()
        except SQLAlchemyError as e:
            raise self._fail("getting occupancy stats", e) from e

        counts = {state.value: 0 for state in OccupancyState}
        for state, count in rows:
            counts[state] = count
        return counts

    def count_available(self, spot_class: SpotClass) -> int:
        try:
            return self.session.query(func.count(SpotModel.id)).filter(
                SpotModel.state == OccupancyState.AVAILABLE.value,
                SpotModel.is_active == True,
                SpotModel.spot_class == SpotClass(spot_class).value
            ).scalar() or 0
        except SQLAlchemyError as e:
            raise self._fail("counting available spots", e) from e


class SQLAlchemyVehicleRepository(SQLAlchemyRepository[Vehicle], VehicleRepository):
    """SQLAlchemy repository for vehicles"""

    @property
    def model_class(self) -> Type[Base]:
        return VehicleModel

    def to_domain(self, model: VehicleModel) -> Vehicle:
        return Mapper.vehicle_to_domain(model)

    def to_orm(self, entity: Vehicle) -> VehicleModel:
        return Mapper.vehicle_to_orm(entity)

    def find_by_license_plate(self, license_plate: str) -> Optional[Vehicle]:
        """Find vehicle by license plate"""
        try:
            model = self.session.query(VehicleModel).filter(
                VehicleModel.license_plate == license_plate
            ).first()
            return self.to_domain(model) if model else None
        except SQLAlchemyError as e:
            raise self._fail(f"finding vehicle {license_plate}", e) from e


class SQLAlchemySessionRepository(SQLAlchemyRepository[ParkingSession], SessionRepository):
    """SQLAlchemy repository for parking sessions"""

    @property
    def model_class(self) -> Type[Base]:
        return SessionModel

    def to_domain(self, model: SessionModel) -> ParkingSession:
        return Mapper.session_to_domain(model)

    def to_orm(self, entity: ParkingSession) -> SessionModel:
        return Mapper.session_to_orm(entity)

    def _active_query(self):
        return self.session.query(SessionModel).filter(
            SessionModel.status == SessionState.ACTIVE.value
        )

    def find_active_by_vehicle(self, vehicle_id: str) -> Optional[ParkingSession]:
        try:
            model = self._active_query().filter(SessionModel.vehicle_id == vehicle_id).first()
            return self.to_domain(model) if model else None
        except SQLAlchemyError as e:
            raise self._fail("finding active session", e) from e

    def find_active(self) -> List[ParkingSession]:
        try:
            models = self._active_query().order_by(SessionModel.start_time).all()
            return [self.to_domain(m) for m in models]
        except SQLAlchemyError as e:
            raise self._fail("listing active sessions", e) from e

    def close(
        self,
        session_id: str,
        end_time: datetime,
        duration_minutes: int,
        total_amount: Decimal
    ) -> bool:
        try:
            result = self._active_query().filter(SessionModel.id == session_id).update({
                'end_time': end_time,
                'duration_minutes': duration_minutes,
                'total_amount': total_amount,
                'status': SessionState.COMPLETED.value,
            }, synchronize_session=False)
            self.session.flush()
            return result > 0
        except SQLAlchemyError as e:
            raise self._fail(f"closing session {session_id}", e) from e

    def detach_vehicle(self, vehicle_id: str) -> int:
        # Done explicitly: SQLite does not enforce ON DELETE unless foreign keys are enabled
        try:
            result = self.session.query(SessionModel).filter(
                SessionModel.vehicle_id == vehicle_id
            ).update({'vehicle_id': None}, synchronize_session=False)
            self.session.flush()
            return result
        except SQLAlchemyError as e:
            raise self._fail(f"detaching vehicle {vehicle_id}", e) from e

    def count_by_state(self) -> Dict[str, int]:
        try:
            rows = self.session.query(SessionModel.status, func.count(SessionModel.id)).group_by(
                SessionModel.status
            ).all()
        except SQLAlchemyError as e:
            raise self._fail("counting sessions", e) from e

        counts = {state.value: 0 for state in SessionState}
        for status, count in rows:
            counts[status] = count
        return counts

    def average_completed_duration(self) -> Optional[float]:
        try:
            value = self.session.query(func.avg(SessionModel.duration_minutes)).filter(
                SessionModel.status == SessionState.COMPLETED.value
            ).scalar()
        except SQLAlchemyError as e:
            raise self._fail("averaging session duration", e) from e
        return float(value) if value is not None else None


# ============================================================================
# SQLALCHEMY UNIT OF WORK
# ============================================================================

class SQLAlchemyUnitOfWork(UnitOfWork):
    """Unit of Work implementation with SQLAlchemy"""

    def __init__(self, session_factory: Callable[[], Session]):
        self.session_factory = session_factory
        self._logger = logging.getLogger(self.__class__.__name__)

    def __enter__(self):
        self.session = self.session_factory()

        # Initialize repositories
        self._spots = SQLAlchemySpotRepository(self.session)
        self._vehicles = SQLAlchemyVehicleRepository(self.session)
        self._sessions = SQLAlchemySessionRepository(self.session)

        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        try:
            if exc_type is not None:
                self._logger.error(f"Exception in unit of work: {exc_val}")
                self.rollback()
            else:
                self.commit()
        finally:
            self.session.close()

    def commit(self):
        """Commit the transaction"""
        try:
            self.session.commit()
            self._logger.debug("Transaction committed")
        except IntegrityError as e:
            self.session.rollback()
            self._logger.warning(f"Integrity error on commit: {e.orig}")
            raise UniquenessConflict(str(e.orig)) from e
        except SQLAlchemyError as e:
            self._logger.error(f"Error committing transaction: {e}")
            self.session.rollback()
            raise StorageError(f"Error committing transaction: {e}") from e

    def rollback(self):
        """Rollback the transaction"""
        self.session.rollback()
        self._logger.debug("Transaction rolled back")

    @property
    def spots(self) -> SQLAlchemySpotRepository:
        return self._spots

    @property
    def vehicles(self) -> SQLAlchemyVehicleRepository:
        return self._vehicles

    @property
    def sessions(self) -> SQLAlchemySessionRepository:
        return self._sessions


# ============================================================================
# REPOSITORY FACTORY
# ============================================================================

class RepositoryFactory:
    """Factory for creating units of work"""

    @staticmethod
    def create_engine(database_url: str, echo: bool = False):
        """Create an engine and make sure the schema exists"""
        kwargs: Dict[str, Any] = {"echo": echo}
        if database_url == "sqlite://" or (database_url.startswith("sqlite") and ":memory:" in database_url):
            # One shared connection, otherwise every session sees its own empty database
            kwargs.update(poolclass=StaticPool, connect_args={"check_same_thread": False})
        elif database_url.startswith("sqlite"):
            kwargs.update(connect_args={"check_same_thread": False})

        try:
            engine = create_engine(database_url, **kwargs)
            Base.metadata.create_all(engine)
        except SQLAlchemyError as e:
            raise StorageError(f"Cannot open database {database_url}: {e}") from e

        logging.getLogger("RepositoryFactory").info(f"Store ready at {engine.url.render_as_string(hide_password=True)}")
        return engine

    @staticmethod
    def create_sqlalchemy_uow_factory(
        database_url: str,
        echo: bool = False
    ) -> Callable[[], SQLAlchemyUnitOfWork]:
        """Create a factory producing one unit of work per transaction"""
        engine = RepositoryFactory.create_engine(database_url, echo)
        session_factory = sessionmaker(bind=engine, expire_on_commit=False)
        return lambda: SQLAlchemyUnitOfWork(session_factory)

    @staticmethod
    def create_in_memory_uow_factory(
        store: Optional[InMemoryStore] = None
    ) -> Callable[[], InMemoryUnitOfWork]:
        store = store or InMemoryStore()
        return lambda: InMemoryUnitOfWork(store)
