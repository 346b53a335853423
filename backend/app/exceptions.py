"""Error taxonomy shared by the availability services."""


class AvailabilityError(Exception):
    """Base class for errors raised by the availability core."""


class InvalidRange(AvailabilityError, ValueError):
    """A time window or interval is malformed (start must be before end)."""


class UpstreamUnavailable(AvailabilityError):
    """The device-inventory API is unreachable or the account has no valid credential."""


class NotFound(AvailabilityError):
    """A requested record does not exist."""
