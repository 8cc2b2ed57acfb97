"""
Error Taxonomy Module

Exceptions raised by the collection pipeline, the source adapters, the metric
store and the query layer.
"""


class ProxmonError(Exception):
    """Base class for all application errors."""


class ValidationError(ProxmonError):
    """Malformed input. Never retried."""


class QueryValidationError(ValidationError):
    """Malformed query parameters."""


class RecordValidationError(ValidationError):
    """A metric record that violates the schema."""


class SourceError(ProxmonError):
    """Generic failure talking to the virtualization platform."""


class SourceUnreachableError(SourceError):
    """The platform could not be reached (connection refused, timeout, DNS)."""


class SourceRejectedError(SourceError):
    """The platform answered with an explicit error."""

    def __init__(self, status_code: int, message: str):
        super().__init__(f"{status_code}: {message}")
        self.status_code = status_code
        self.message = message


class UnknownClusterError(SourceRejectedError):
    """No connection is configured for the requested cluster id."""

    def __init__(self, cluster_id: int):
        super().__init__(404, f"Cluster with ID {cluster_id} not found or not connected")
        self.cluster_id = cluster_id


class StoreError(ProxmonError):
    """Persistence failure on write or read."""


class CollectionError(ProxmonError):
    """Cycle-level collection failure."""


class CollectionFailedError(CollectionError):
    """Every attempted branch of a cycle failed."""

    def __init__(self, message: str, result=None):
        super().__init__(message)
        self.result = result


class CollectionInProgressError(CollectionError):
    """Another collection cycle is still running."""


class CollectionTimeoutError(CollectionError):
    """A cycle did not complete before its deadline."""
