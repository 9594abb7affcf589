# File: parkwise/infrastructure/factories.py
"""
Factory Pattern Implementation for the Parking Engine

This module centralizes object creation:
1. Domain Object Factories - spots with class-appropriate feature tags
2. Builders - whole garage layouts (levels x sections x spots)
3. Strategy Factories - scoring and pricing strategies from settings
4. Service Factories - the fully wired ParkingService (composition root)

Services are built explicitly from a settings object and handed to callers;
nothing here keeps process-wide instances.
"""

from typing import Optional, Dict, List, Any, Union, Callable, Iterable, Tuple
import logging

from ..domain.models import Spot, SpotClass, SpotFeature, OccupancyState
from ..domain.strategies import (
    ScoringStrategy, PricingStrategy,
    PreferenceScoringStrategy, StandardPricingStrategy
)
from .config import ParkwiseSettings, AllocationConfig, BillingConfig, EventsConfig
from .repositories import RepositoryFactory, UnitOfWork, InMemoryStore
from .messaging import EventPublisher, MessageBrokerFactory


# ============================================================================
# DOMAIN OBJECT FACTORIES
# ============================================================================

class SpotFactory:
    """Factory for creating Spot domain objects"""

    DEFAULT_FEATURES = {
        SpotClass.ELECTRIC: [SpotFeature.EV_CHARGING.value],
        SpotClass.HANDICAP: [SpotFeature.HANDICAP.value],
    }

    def create(
        self,
        level: int,
        section: str,
        sequence: int,
        spot_class: Union[SpotClass, str] = SpotClass.STANDARD,
        features: Optional[List[str]] = None,
        state: Union[OccupancyState, str] = OccupancyState.AVAILABLE,
        is_active: bool = True
    ) -> Spot:
        """
        Create a Spot

        Electric bays get the ev_charging tag and handicap bays the handicap
        tag unless features are given explicitly.
        """
        spot_class = SpotClass(spot_class)
        if features is None:
            features = list(self.DEFAULT_FEATURES.get(spot_class, []))

        return Spot(
            level=level,
            section=section,
            sequence=sequence,
            spot_class=spot_class,
            state=state,
            is_active=is_active,
            features=features
        )


class GarageLayoutBuilder:
    """
    Builder for a complete garage layout

    Example:
        spots = (GarageLayoutBuilder()
                 .levels(3)
                 .sections("A", "B")
                 .spots_per_section(20)
                 .with_class(SpotClass.ELECTRIC, 2)
                 .with_class(SpotClass.OVERSIZED, 3, sections=["B"])
                 .build())

    Class rules are applied in call order to each matching (level, section):
    each takes the next `count` sequence numbers (all remaining if None).
    Whatever is left becomes the default class.
    """

    def __init__(self, spot_factory: Optional[SpotFactory] = None):
        self._spot_factory = spot_factory or SpotFactory()
        self._levels = 1
        self._sections: Tuple[str, ...] = ("A",)
        self._per_section = 10
        self._default_class = SpotClass.STANDARD
        self._class_rules: List[Dict[str, Any]] = []
        self._extra_features: List[Tuple[str, Optional[SpotClass]]] = []

    def levels(self, count: int) -> 'GarageLayoutBuilder':
        if count < 1:
            raise ValueError("A garage needs at least one level")
        self._levels = count
        return self

    def sections(self, *names: str) -> 'GarageLayoutBuilder':
        if not names:
            raise ValueError("A level needs at least one section")
        self._sections = tuple(names)
        return self

    def spots_per_section(self, count: int) -> 'GarageLayoutBuilder':
        if count < 1:
            raise ValueError("A section needs at least one spot")
        self._per_section = count
        return self

    def default_class(self, spot_class: Union[SpotClass, str]) -> 'GarageLayoutBuilder':
        self._default_class = SpotClass(spot_class)
        return self

    def with_class(
        self,
        spot_class: Union[SpotClass, str],
        count: Optional[int] = None,
        levels: Optional[Iterable[int]] = None,
        sections: Optional[Iterable[str]] = None
    ) -> 'GarageLayoutBuilder':
        self._class_rules.append({
            "spot_class": SpotClass(spot_class),
            "count": count,
            "levels": set(levels) if levels is not None else None,
            "sections": set(sections) if sections is not None else None,
        })
        return self

    def with_feature(self, feature: str, spot_class: Union[SpotClass, str, None] = None) -> 'GarageLayoutBuilder':
        """Tag every spot (or every spot of one class) with a feature"""
        self._extra_features.append((feature, SpotClass(spot_class) if spot_class else None))
        return self

    def _classes_for(self, level: int, section: str) -> List[SpotClass]:
        classes: List[SpotClass] = []
        for rule in self._class_rules:
            if rule["levels"] is not None and level not in rule["levels"]:
                continue
            if rule["sections"] is not None and section not in rule["sections"]:
                continue
            remaining = self._per_section - len(classes)
            take = remaining if rule["count"] is None else min(rule["count"], remaining)
            classes.extend([rule["spot_class"]] * take)
        classes.extend([self._default_class] * (self._per_section - len(classes)))
        return classes

    def build(self) -> List[Spot]:
        spots = []
        for level in range(1, self._levels + 1):
            for section in self._sections:
                for sequence, spot_class in enumerate(self._classes_for(level, section), start=1):
                    spot = self._spot_factory.create(level, section, sequence, spot_class)
                    for feature, only_class in self._extra_features:
                        if only_class is None or only_class == spot_class:
                            spot.features = sorted(set(spot.features) | {feature})
                    spots.append(spot)
        return spots


# ============================================================================
# STRATEGY FACTORIES
# ============================================================================

class StrategyFactory:
    """Factory for scoring and pricing strategies"""

    @staticmethod
    def create_scoring_strategy(config: Optional[AllocationConfig] = None) -> ScoringStrategy:
        config = config or AllocationConfig()
        return PreferenceScoringStrategy(config.to_weights())

    @staticmethod
    def create_pricing_strategy(config: Optional[BillingConfig] = None) -> PricingStrategy:
        config = config or BillingConfig()
        return StandardPricingStrategy(config.to_policy())


# ============================================================================
# SERVICE FACTORY
# ============================================================================

class ServiceFactory:
    """Factory for creating application services"""

    def __init__(self, settings: Optional[ParkwiseSettings] = None):
        self.settings = settings or ParkwiseSettings()
        self._logger = logging.getLogger(self.__class__.__name__)

    def create_uow_factory(self, store: Optional[InMemoryStore] = None) -> Callable[[], UnitOfWork]:
        """Units of work for the configured database ("memory" selects the in-memory store)"""
        database = self.settings.database
        if database.url == "memory":
            return RepositoryFactory.create_in_memory_uow_factory(store)
        return RepositoryFactory.create_sqlalchemy_uow_factory(database.url, database.echo)

    def create_event_publisher(self, events: Optional[EventsConfig] = None) -> Optional[EventPublisher]:
        events = events or self.settings.events
        if events.backend == "none":
            return None
        return MessageBrokerFactory.create_publisher(events.backend, events.redis_url, events.topic)

    def create_parking_service(
        self,
        uow_factory: Optional[Callable[[], UnitOfWork]] = None,
        event_publisher: Optional[EventPublisher] = None
    ) -> 'ParkingService':
        """Create ParkingService with dependencies"""
        from ..application.parking_service import ParkingService

        service = ParkingService(
            uow_factory=uow_factory or self.create_uow_factory(),
            scoring_strategy=StrategyFactory.create_scoring_strategy(self.settings.allocation),
            pricing_strategy=StrategyFactory.create_pricing_strategy(self.settings.billing),
            event_publisher=event_publisher if event_publisher is not None else self.create_event_publisher(),
            config=self.settings.allocation
        )
        self._logger.debug(f"Parking service created for {self.settings.database.url}")
        return service
