# File: parkwise/domain/errors.py
"""
Error taxonomy for the parking engine

Business errors describe definitive outcomes of a request (the vehicle is already
parked, no spot fits, ...). They carry an ErrorCode so calling layers can map them
without string matching.

StorageError is kept apart from the business errors: it signals an infrastructure
failure that a caller may retry.
"""

from enum import Enum
from typing import Optional


class ErrorCode(str, Enum):
    """Machine-readable error codes for failed operations"""
    INVALID_INPUT = "INVALID_INPUT"
    ALREADY_PARKED = "ALREADY_PARKED"
    NO_AVAILABLE_SPOT = "NO_AVAILABLE_SPOT"
    NOT_PARKED = "NOT_PARKED"
    NOT_FOUND = "NOT_FOUND"
    INVALID_CHECKOUT_TIME = "INVALID_CHECKOUT_TIME"
    CONFLICT_RETRY_EXHAUSTED = "CONFLICT_RETRY_EXHAUSTED"


class ParkingError(Exception):
    """Base exception for business-rule failures"""
    code: ErrorCode = ErrorCode.INVALID_INPUT

    def __init__(self, message: str, code: Optional[ErrorCode] = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code


class InvalidInputError(ParkingError):
    """Bad plate format, unknown vehicle class or rate type, negative duration"""
    code = ErrorCode.INVALID_INPUT


class AlreadyParkedError(ParkingError):
    """The vehicle already holds an active session"""
    code = ErrorCode.ALREADY_PARKED


class NoAvailableSpotError(ParkingError):
    """No compatible spot is available"""
    code = ErrorCode.NO_AVAILABLE_SPOT


class NotFoundError(ParkingError):
    """The referenced vehicle or spot does not exist"""
    code = ErrorCode.NOT_FOUND


class NotParkedError(ParkingError):
    """The vehicle exists but has no active session"""
    code = ErrorCode.NOT_PARKED


class InvalidCheckoutTimeError(ParkingError):
    """Checkout time lies before the session start"""
    code = ErrorCode.INVALID_CHECKOUT_TIME


class ConflictRetryExhaustedError(ParkingError):
    """Every claim attempt lost the race to a concurrent allocation"""
    code = ErrorCode.CONFLICT_RETRY_EXHAUSTED


class StorageError(Exception):
    """Unexpected failure of the persistence layer"""
    pass


class DataIntegrityError(StorageError):
    """The store contradicts an invariant (e.g. active session on a free spot)"""
    pass
