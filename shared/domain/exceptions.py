"""
Domain Error Taxonomy

Every caller-facing operation returns a result or raises exactly one of
these errors:

- ValidationError: bad input, rejected synchronously, never retried
- NotFoundError: referenced booking/escrow/dispute/space does not exist
- ConflictError: availability lost between check and commit
- InvalidStateError: aggregate is not in the state the operation requires
- InvariantViolation: the operation would break a ledger invariant
- PaymentProcessorError: transient payment failure, retried with backoff
- InvalidRequest: payment request rejected by the processor, never retried
"""


class BookingEngineError(Exception):
    """Base exception for the reservation and escrow engine."""


class ValidationError(BookingEngineError, ValueError):
    """Raised when inputs fail validation (bad interval, non-positive amount)."""


class NotFoundError(BookingEngineError, LookupError):
    """Raised when a referenced record does not exist."""


class ConflictError(BookingEngineError):
    """Raised when the requested spot is no longer available."""

    def __init__(self, message: str = "Spot no longer available", conflicting_ids=()):
        super().__init__(message)
        self.conflicting_ids = tuple(conflicting_ids)


class ConcurrencyError(ConflictError):
    """Raised when a compare-and-swap write loses against a concurrent writer."""


class InvalidStateError(BookingEngineError):
    """Raised when an operation is attempted in the wrong lifecycle state."""


class AlreadyProcessedError(InvalidStateError):
    """Raised when a booking is no longer Pending and cannot be confirmed."""


class InvariantViolation(BookingEngineError):
    """Raised when an operation would break an escrow or dispute invariant."""


class PaymentError(BookingEngineError):
    """Base class for failures reported by the payment capability."""


class PaymentProcessorError(PaymentError):
    """Transient failure (network, timeout, processor outage). Retryable."""


class RefundPendingRetry(PaymentProcessorError):
    """
    Raised when refund retries are exhausted.

    The triggering operation stays in its pre-completion state with the
    refund intent recorded, so calling it again resumes the same refund.
    """

    def __init__(self, message: str, idempotency_key: str | None = None, attempts: int = 0):
        super().__init__(message)
        self.idempotency_key = idempotency_key
        self.attempts = attempts


class InvalidRequest(PaymentError):
    """Non-retryable rejection (e.g. amount exceeds captured amount)."""
