"""Error taxonomy for the coordination engine.

Each class carries the HTTP status the API layer renders it with.
"""


class EngineError(Exception):
    status_code = 500
    code = "engine_error"


# Validation: rejected immediately, never retried

class RideValidationError(EngineError):
    status_code = 422
    code = "validation_error"


class InvalidCoordinatesError(RideValidationError):
    code = "invalid_coordinates"


# Not found

class NotFoundError(EngineError):
    status_code = 404
    code = "not_found"


class RideNotFoundError(NotFoundError):
    code = "ride_not_found"


class DriverNotFoundError(NotFoundError):
    code = "driver_not_found"


class WalletNotFoundError(NotFoundError):
    code = "wallet_not_found"


class HoldNotFoundError(NotFoundError):
    code = "hold_not_found"


class ShareGroupNotFoundError(NotFoundError):
    code = "share_group_not_found"


class NotParticipantError(EngineError):
    """Raised when the caller is not a rider (or driver) of the ride."""
    status_code = 403
    code = "not_participant"


# Resource contention: recovered locally by moving to the next candidate or re-reading

class ContentionError(EngineError):
    status_code = 409
    code = "contention"


class DriverAlreadyBusyError(ContentionError):
    code = "driver_already_busy"


class ConcurrentUpdateError(ContentionError):
    code = "concurrent_update"


# Business rules: recoverable, the ride stays in a waiting state

class BusinessRuleError(EngineError):
    status_code = 409
    code = "business_rule"


class InsufficientFundsError(BusinessRuleError):
    status_code = 402
    code = "insufficient_funds"


class ActiveRideExistsError(BusinessRuleError):
    code = "active_ride_exists"


# Invalid state: fatal for the call

class InvalidStateError(EngineError):
    status_code = 409
    code = "invalid_state"
