"""
Error taxonomy for the NAV calculator.
Every error carries a human-readable message, the HTTP status the web server
answers with, and structured context fields (date ranges, failing parameter).
"""
from __future__ import annotations


class CalculatorError(Exception):
    """Base exception for all calculator errors."""
    status = 500

    def __init__(self, message: str = "An unspecified error occurred in the calculator.", **context):
        self.message = message
        self.context = context
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"error": self.message, **self.context}


class ValidationError(CalculatorError):
    """Raised for malformed or missing parameters, before any provider call."""
    status = 400

    def __init__(self, message: str = "Validation Failed: invalid request parameters.", **context):
        super().__init__(message, **context)


class DataUnavailableError(CalculatorError):
    """Raised when the provider has no usable NAV data for a scheme."""
    status = 404

    def __init__(self, message: str = "NAV Data Error: No valid NAV data available for this scheme.", **context):
        super().__init__(message, **context)


class RangeError(CalculatorError):
    """Raised when requested dates fall outside the scheme's NAV history."""
    status = 400

    def __init__(self, message: str = "Date Range Error: Requested dates are outside the scheme's NAV history.", **context):
        super().__init__(message, **context)


class ComputationError(CalculatorError):
    """Raised when a required NAV lookup fails in the middle of a calculation."""
    status = 404

    def __init__(self, message: str = "Calculation Error: a required NAV could not be resolved.", status: int | None = None, **context):
        if status is not None:
            self.status = status
        super().__init__(message, **context)


class UpstreamError(CalculatorError):
    """Raised when the NAV provider times out or fails at the transport level.

    Transient: the caller may retry.
    """
    status = 502
    retryable = True

    def __init__(self, message: str = "Upstream Error: the NAV provider could not be reached.", timeout: bool = False, **context):
        self.timeout = timeout
        if timeout:
            self.status = 504
        super().__init__(message, **context)
