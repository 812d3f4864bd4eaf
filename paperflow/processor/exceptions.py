class ProcessingError(Exception):
    """Raised when a document cannot be prepared for extraction."""


class UnsupportedFileTypeError(ProcessingError):
    """Raised when neither the thumbnail nor the original is an image or PDF."""
