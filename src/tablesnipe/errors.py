"""Exception hierarchy for tablesnipe."""


class TablesnipeError(Exception):
    """Base exception."""


class ConfigError(TablesnipeError):
    """Invalid configuration."""


class AuthError(TablesnipeError):
    """Platform credentials missing or rejected."""


class SnipeValidationError(TablesnipeError):
    """Snipe parameters rejected at the creation/cancellation boundary."""


class SnipeNotFoundError(TablesnipeError):
    """No snipe with the given id."""


class SnipeStateError(TablesnipeError):
    """Requested operation is not allowed in the snipe's current status."""


class BookingError(TablesnipeError):
    """Booking submission failed after a slot was found."""
