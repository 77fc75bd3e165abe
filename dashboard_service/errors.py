"""
Error taxonomy for the dashboard core.

The HTTP layer folds every ``DashboardError`` into the ``error`` field of its
response body, so the message text is what the user ends up reading.
"""


class DashboardError(Exception):
    """Base class for every error the core raises on purpose."""


class ConnectionFailure(DashboardError):
    """The cluster could not be reached or the handshake failed."""


class InvalidIdentifier(DashboardError):
    """A value that should be an ObjectId is not a 24-character hex string."""


class InvalidQueryFormat(DashboardError):
    """Query text is not JSON, or not a JSON object."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Invalid query format: {reason}")


class InvalidUpdateDocument(DashboardError):
    """An update body mixes update operators with plain fields."""


class QueryExecutionFailed(DashboardError):
    """MongoDB rejected a query that parsed fine."""

    def __init__(self, message: str = "Failed to execute query."):
        super().__init__(message)


class OperationNotAcknowledged(DashboardError):
    """The write was accepted but never acknowledged by the server."""


class QueryGenerationFailed(DashboardError):
    """The AI model did not produce usable query text."""
