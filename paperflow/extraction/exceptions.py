class ExtractionError(Exception):
    """Raised when structured data extraction fails."""


class ExtractionValidationError(ExtractionError):
    """Raised when extracted items do not match the workflow schema."""


class ExtractionNetworkError(ExtractionError):
    """Raised when the AI provider call fails due to network/infrastructure issues."""
