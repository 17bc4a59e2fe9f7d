"""Exception hierarchy for the loan engine.

Every error is a ValueError: all failures are local validation failures
raised synchronously to the caller.
"""


class LoanEngineError(ValueError):
    """Base exception for all loan engine errors."""


class InvalidTermsError(LoanEngineError):
    """Raised when loan terms cannot produce a schedule."""


class AllocationStrategyUnknownError(LoanEngineError):
    """Raised by strict parsing when an allocation strategy code is not recognised."""

    def __init__(self, code):
        self.code = code
        super().__init__(f"Unknown allocation strategy: {code!r}")


class InvalidPaymentError(LoanEngineError):
    """Raised when a payment amount or record is malformed."""


class InvalidChargeError(LoanEngineError):
    """Raised when a fee or charge definition is malformed."""


class InvalidLoanStateError(LoanEngineError):
    """Raised when a loan state supplied by a collaborator is inconsistent."""
