# File: parkwise/main.py
"""
Main application entry point for the parking allocation engine
Command line front end over ParkingService
"""

import argparse
import json
import logging
import os
import sys
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from .domain.models import SpotClass, RateType
from .domain.errors import ParkingError, InvalidInputError, StorageError
from .infrastructure.config import load_settings, get_config_path, ParkwiseSettings
from .infrastructure.factories import ServiceFactory, GarageLayoutBuilder
from .application.dtos import AllocationOptions, ReleaseOptions, FeeOptions


def setup_logging(level: str = "INFO", log_file: Optional[str] = None):
    """Setup application logging configuration"""
    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if log_file:
        log_dir = os.path.dirname(log_file)
        if log_dir and not os.path.exists(log_dir):
            os.makedirs(log_dir)
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers,
        force=True
    )
    return logging.getLogger("parkwise")


def _emit(payload) -> None:
    if hasattr(payload, "to_dict"):
        payload = payload.to_dict()
    print(json.dumps(payload, indent=2, default=str))


def _parse_time(value: str) -> datetime:
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"Not an ISO-8601 timestamp: {value}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="parkwise", description="Parking spot allocation and fee settlement")
    parser.add_argument('--config', help='YAML settings file (default: config/parkwise.yaml when present)')
    parser.add_argument('--database', help='Database URL, or "memory" (overrides the settings file)')
    parser.add_argument('--log-level', help='Logging level (overrides the settings file)')

    sub = parser.add_subparsers(dest="command", required=True)

    init = sub.add_parser("init", help="Create tables and optionally lay out a garage")
    init.add_argument('--levels', type=int, default=0, help='Number of levels to create (0 = schema only)')
    init.add_argument('--sections', nargs='+', default=["A", "B"], help='Section labels per level')
    init.add_argument('--spots-per-section', type=int, default=10)
    for spot_class in (SpotClass.ELECTRIC, SpotClass.HANDICAP, SpotClass.OVERSIZED,
                       SpotClass.COMPACT, SpotClass.MOTORCYCLE):
        init.add_argument(f'--{spot_class.value}', type=int, default=0,
                          help=f'{spot_class.value} spots at the start of every section')

    allocate = sub.add_parser("allocate", help="Park a vehicle")
    allocate.add_argument('plate')
    allocate.add_argument('vehicle_class')
    allocate.add_argument('--level', type=int, help='Preferred level')
    allocate.add_argument('--rate-type', choices=[r.value for r in RateType], default=RateType.HOURLY.value)
    allocate.add_argument('--base-rate', type=Decimal)

    release = sub.add_parser("release", help="Check a vehicle out")
    release.add_argument('plate')
    release.add_argument('--at', type=_parse_time, help='Checkout time (ISO-8601, UTC)')
    release.add_argument('--grace', action='store_true', help='Apply the grace period')
    release.add_argument('--remove', action='store_true', help='Delete the vehicle record')
    release.add_argument('--force', metavar='REASON', help='Administrative release with a reason')

    simulate = sub.add_parser("simulate", help="Preview an allocation or a release")
    simulate.add_argument('plate')
    simulate.add_argument('vehicle_class', nargs='?')
    simulate.add_argument('--release', action='store_true', help='Preview the release instead')
    simulate.add_argument('--level', type=int)
    simulate.add_argument('--at', type=_parse_time)
    simulate.add_argument('--grace', action='store_true')

    fee = sub.add_parser("fee", help="Estimate a fee")
    fee.add_argument('minutes', type=int)
    fee.add_argument('--rate-type', choices=[r.value for r in RateType], default=RateType.HOURLY.value)
    fee.add_argument('--base-rate', type=Decimal)
    fee.add_argument('--vehicle-class')
    fee.add_argument('--feature', action='append', default=[], help='Spot feature (repeatable)')
    fee.add_argument('--grace', action='store_true')

    stats = sub.add_parser("stats", help="Occupancy, availability and active sessions")
    stats.add_argument('--vehicle-class', help='Show availability for this vehicle class')
    stats.add_argument('--sessions', action='store_true', help='List active sessions')
    stats.add_argument('--min-minutes', type=int, default=0)

    return parser


def load_cli_settings(args) -> ParkwiseSettings:
    path = args.config
    if path is None and get_config_path().exists():
        path = get_config_path()
    settings = load_settings(path)

    if args.database:
        settings = settings.model_copy(
            update={"database": settings.database.model_copy(update={"url": args.database})}
        )
    if args.log_level:
        settings = settings.model_copy(
            update={"logging": settings.logging.model_copy(update={"level": args.log_level})}
        )
    return settings


def run(args, service, logger) -> int:
    if args.command == "init":
        if args.levels > 0:
            builder = (GarageLayoutBuilder()
                       .levels(args.levels)
                       .sections(*args.sections)
                       .spots_per_section(args.spots_per_section))
            for spot_class in (SpotClass.ELECTRIC, SpotClass.HANDICAP, SpotClass.OVERSIZED,
                               SpotClass.COMPACT, SpotClass.MOTORCYCLE):
                count = getattr(args, spot_class.value)
                if count:
                    builder.with_class(spot_class, count)
            added = service.add_spots(builder.build())
            logger.info(f"Garage laid out with {added} spots")
        _emit(service.get_occupancy_stats())
        return 0

    if args.command == "allocate":
        result = service.allocate(args.plate, args.vehicle_class, AllocationOptions(
            preferred_level=args.level, rate_type=args.rate_type, base_rate=args.base_rate
        ))
        _emit(result)
        return 0 if result.success else 1

    if args.command == "release":
        if args.force:
            result = service.force_release(args.plate, args.force)
        else:
            result = service.release(args.plate, ReleaseOptions(
                checkout_time=args.at, apply_grace_period=args.grace, remove_record=args.remove
            ))
        _emit(result)
        return 0 if result.success else 1

    if args.command == "simulate":
        if args.release:
            result = service.simulate_release(args.plate, ReleaseOptions(
                checkout_time=args.at, apply_grace_period=args.grace
            ))
        else:
            if not args.vehicle_class:
                raise InvalidInputError("simulate needs a vehicle class unless --release is given")
            result = service.simulate_allocation(args.plate, args.vehicle_class, AllocationOptions(
                preferred_level=args.level
            ))
        _emit(result)
        return 0 if result.success else 1

    if args.command == "fee":
        _emit(service.compute_fee(args.minutes, FeeOptions(
            rate_type=args.rate_type,
            base_rate=args.base_rate,
            vehicle_class=args.vehicle_class,
            spot_features=args.feature,
            apply_grace_period=args.grace
        )))
        return 0

    if args.command == "stats":
        payload = {"occupancy": service.get_occupancy_stats().to_dict()}
        if args.vehicle_class:
            payload["availability"] = service.get_availability(args.vehicle_class).to_dict()
        if args.sessions:
            payload["active_sessions"] = [
                s.to_dict() for s in service.list_active_sessions(args.min_minutes)
            ]
        _emit(payload)
        return 0

    return 2


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the application"""
    args = build_parser().parse_args(argv)

    try:
        settings = load_cli_settings(args)
    except (FileNotFoundError, ValueError) as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2

    logger = setup_logging(settings.logging.level, settings.logging.file)
    service = None

    try:
        service = ServiceFactory(settings).create_parking_service()
        return run(args, service, logger)
    except ParkingError as e:
        logger.error(f"{e.code.value}: {e.message}")
        _emit({"success": False, "error_code": e.code.value, "message": e.message})
        return 1
    except StorageError as e:
        logger.error(f"Storage failure: {e}")
        return 3
    finally:
        if service is not None and service.event_publisher is not None:
            service.event_publisher.close()


if __name__ == "__main__":
    sys.exit(main())
