"""Exception types raised by the game engine."""


class EngineError(Exception):
    """Base class for engine errors."""


class EventTimeoutError(EngineError, TimeoutError):
    """Raised when waiting for an event takes longer than the timeout."""

    def __init__(self, topic, timeout_ms):
        super().__init__(f"Timeout waiting for event: {topic}")
        self.topic = topic
        self.timeout_ms = timeout_ms


class MigrationError(EngineError):
    """Raised for invalid migration registrations."""


class MissingMigrationError(MigrationError):
    """Raised when a step in the migration chain is not registered."""

    def __init__(self, version, from_version, to_version):
        super().__init__(
            f"Missing migration for version {version}. "
            f"Cannot migrate from {from_version} to {to_version}."
        )
        self.version = version
        self.from_version = from_version
        self.to_version = to_version


class InvalidSaveError(EngineError):
    """Raised when save data cannot be decoded or has the wrong shape."""
