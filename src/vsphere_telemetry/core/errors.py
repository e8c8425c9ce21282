"""
Error taxonomy.

We separate error types so callers can react correctly.
Example:
ServiceUnavailable aborts the current cycle, the next scheduled cycle retries.
TagServiceError degrades to an empty tag index, collection goes on.
InvalidConfiguration should stop the process before anything is collected.
EntityCreationError and MetricWriteError are local to one object or one metric,
they are logged and skipped.
"""


class TelemetryError(Exception):
    """Base class for all telemetry agent exceptions."""


class ServiceUnavailable(TelemetryError):
    """Raised when the inventory, tag or performance service cannot be reached."""


class TagServiceError(ServiceUnavailable):
    """Raised when the tag snapshot cannot be retrieved."""


class InvalidConfiguration(TelemetryError):
    """Raised when a configuration value is out of range or malformed."""


class EntityCreationError(TelemetryError):
    """Raised when the output system rejects an entity name or id."""


class MetricWriteError(TelemetryError):
    """Raised when a single metric cannot be written into a metric set."""
