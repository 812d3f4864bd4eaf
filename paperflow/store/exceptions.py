class StoreError(Exception):
    """Raised when a document store request fails."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class StoreConflictError(StoreError):
    """Raised when a create collides with an entity that already exists."""


class StoreNotFoundError(StoreError):
    """Raised when the requested document or entity does not exist."""


class StoreAuthError(StoreError):
    """Raised when the store rejects the configured credentials."""


class StoreTransientError(StoreError):
    """Raised on network failures, rate limiting and server errors."""
