"""
Exception types for pdpkit.

Strategy and transport failures are raised with these classes and caught at
the router boundary, where they become the per-tab error string.
"""


class PdpKitError(Exception):
    """Base exception for pdpkit errors."""


class GeneratorError(PdpKitError):
    """Raised when a generator backend call fails."""

    def __init__(self, message: str, operation: str | None = None):
        self.operation = operation
        super().__init__(message)


class PlanValidationError(GeneratorError):
    """Raised when a backend response is not a usable Plan."""

    def __init__(self, message: str):
        super().__init__(message, operation="analyze")


class PageContextError(PdpKitError):
    """Raised when a tab has no page to execute against."""

    def __init__(self, message: str, tab_id: int | None = None):
        self.tab_id = tab_id
        super().__init__(message)


class CaptureError(PdpKitError):
    """Raised when a screen capture cannot be produced."""
