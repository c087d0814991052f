"""Domain-specific exceptions for tracker-sync."""

from __future__ import annotations

import uuid


class UserNotFoundError(Exception):
    """Raised when a rate is assigned to a user that does not exist."""

    def __init__(self, user_id: uuid.UUID) -> None:
        self.user_id = user_id
        super().__init__(f"User with id {user_id} not found")


class TrackerTransportError(Exception):
    """HTTP call to the tracker failed (network error or non-2xx status).

    Attributes:
        status_code: HTTP status of the response, if one was received.
        operation: Name of the client operation that issued the request.
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        operation: str | None = None,
    ) -> None:
        self.status_code = status_code
        self.operation = operation
        super().__init__(message)


class PaginationExhaustedError(Exception):
    """Iteration bound reached while the server kept signalling more data."""

    def __init__(self, operation: str, strategy: str, iterations: int) -> None:
        self.operation = operation
        self.strategy = strategy
        self.iterations = iterations
        super().__init__(
            f"Max iterations ({iterations}) exceeded in {strategy} request "
            f"'{operation}'"
        )


class StrategyDetectionError(Exception):
    """Detection response carried neither a scroll id nor a total-pages header."""

    def __init__(self, operation: str) -> None:
        self.operation = operation
        super().__init__(
            f"Unable to determine pagination strategy for operation: {operation}"
        )


class CredentialError(Exception):
    """Bearer token could not be issued and no static token is configured."""
