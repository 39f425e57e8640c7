class WatcherError(Exception):
    """Base class for all errors raised by the watcher."""


class ConfigError(WatcherError, ValueError):
    """The configuration file is missing, malformed or fails validation."""


class QueryFailed(WatcherError):
    """A read-only query against a chain endpoint did not produce a result."""

    def __init__(self, operation: str, endpoint: str, reason):
        self.operation = operation
        self.endpoint = endpoint
        self.reason = reason
        super().__init__(f"{operation} on {endpoint} failed: {reason}")
