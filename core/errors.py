class MonitorError(Exception):
    """Base class for wallet monitor errors."""


class TransportError(MonitorError):
    """RPC transport failed (subscribe, unsubscribe, HTTP call, JSON-RPC error)."""


class NotFound(MonitorError):
    """Transaction record is not available (pruned, not yet confirmed)."""


class MalformedRecord(MonitorError):
    """Transaction payload is missing the fields we need to diff it."""
