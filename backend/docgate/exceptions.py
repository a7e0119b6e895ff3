from pymongo.errors import AutoReconnect, ConnectionFailure, ServerSelectionTimeoutError


class GatewayError(Exception):
    """Base class for errors raised by the gateway itself."""


class InvalidTarget(GatewayError):
    """Database or collection name is missing or not usable by MongoDB."""


class MalformedQuery(GatewayError):
    """The driver rejected the shape of a filter, update, document or pipeline."""


class DriverUnavailable(GatewayError):
    """Connection-level failure talking to MongoDB."""


def classify_driver_error(exc: Exception) -> GatewayError:
    """Wrap a raw driver exception, keeping its message verbatim."""
    if isinstance(exc, (ServerSelectionTimeoutError, ConnectionFailure, AutoReconnect)):
        return DriverUnavailable(str(exc))
    return MalformedQuery(str(exc))
