"""
Exception hierarchy for the quote orchestrator.

Exception Hierarchy:
    QuoteOrchestratorError (base)
    ├── ValidationError
    ├── TransportError
    │   └── StreamingOnlyError
    ├── AdvisoryError
    └── StoreError

Advisory failures never leave the advisory clients: they are converted into
a fallback AdvisoryOutcome. Store failures are swallowed by the callers that
treat persistence as best-effort. TransportError is the only error that ends
a run in the ERROR state.

Usage:
    from exceptions import TransportError

    raise TransportError("Probe stream failed", detail={"status": 502})
"""

from typing import Any, Dict, Optional


class QuoteOrchestratorError(Exception):
    """
    Base exception for all orchestrator errors.

    Attributes:
        message: Human-readable error message
        detail: Optional dict with additional error context
        status_code: Suggested HTTP status code (for API errors)
    """

    def __init__(
        self,
        message: str,
        *,
        detail: Optional[Dict[str, Any]] = None,
        status_code: int = 500,
    ):
        super().__init__(message)
        self.message = message
        self.detail = detail
        self.status_code = status_code

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to a dictionary for JSON serialization."""
        result = {
            "error": self.__class__.__name__,
            "message": self.message,
        }
        if self.detail:
            result["detail"] = self.detail
        return result


class ValidationError(QuoteOrchestratorError):
    """
    Raised when a quote request cannot be run.

    Examples:
        raise ValidationError("No valid items in request")
    """

    def __init__(self, message: str, *, detail: Optional[Dict[str, Any]] = None):
        super().__init__(message, detail=detail, status_code=400)


class TransportError(QuoteOrchestratorError):
    """
    Raised when a scrape transport (probe stream or expansion bulk call) fails.

    Fatal to the run: the orchestrator moves to ERROR and emits an error event.
    """

    def __init__(
        self,
        message: str,
        *,
        transport: str = "stream",
        detail: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, detail=detail, status_code=502)
        self.transport = transport


class StreamingOnlyError(TransportError):
    """
    The bulk transport answered "method not allowed".

    A routing hint rather than a failure: the caller retries the same request
    on the streaming transport.
    """

    def __init__(self, message: str = "Bulk transport only accepts streaming requests", *, detail: Optional[Dict[str, Any]] = None):
        super().__init__(message, transport="bulk", detail=detail)


class AdvisoryError(QuoteOrchestratorError):
    """
    Raised inside advisory clients on timeout, non-2xx or schema mismatch.

    Examples:
        raise AdvisoryError("classifier returned unknown category", detail={"service": "classifier"})
    """

    def __init__(self, message: str, *, service: str = "advisory", detail: Optional[Dict[str, Any]] = None):
        super().__init__(message, detail=detail, status_code=502)
        self.service = service


class StoreError(QuoteOrchestratorError):
    """Raised by QuoteStore implementations when a read or write fails."""

    def __init__(self, message: str, *, detail: Optional[Dict[str, Any]] = None):
        super().__init__(message, detail=detail, status_code=500)
