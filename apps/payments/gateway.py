"""
Payment Gateway Integration

Contract of the external payment capability:
    authorize(amount, payer_reference) -> payment_reference
    create_refund(payment_reference, amount) -> RefundResult(id, status)

Both calls carry an idempotency key. Failures are split into
PaymentProcessorError (network, timeout, 5xx, 429 - retryable) and
InvalidRequest (any other 4xx - never retried).
"""

import logging
import threading
import uuid
from abc import ABC, abstractmethod
from decimal import Decimal

import requests
from django.conf import settings

from shared.domain.exceptions import InvalidRequest, PaymentProcessorError
from shared.domain.value_objects import Money

from apps.payments.domain.entities import RefundResult

logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = frozenset({408, 409, 425, 429})


def to_minor_units(amount: Money) -> int:
    """Processor amounts are integers in cents"""
    return int((amount.amount * 100).to_integral_value())


class PaymentGateway(ABC):
    """External payment capability"""

    @abstractmethod
    def authorize(self, amount: Money, payer_reference: str, *, idempotency_key: str) -> str:
        """Authorize `amount` from the payer; returns the payment reference"""

    @abstractmethod
    def create_refund(self, payment_reference: str, amount: Money, *, idempotency_key: str) -> RefundResult:
        """Refund part or all of a captured payment"""


class HttpPaymentGateway(PaymentGateway):
    """
    JSON-over-HTTP payment processor client

    Every request sends the Idempotency-Key header so the processor
    collapses retries of the same operation into one effect.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        *,
        timeout: float = 10.0,
        session: requests.Session | None = None,
    ):
        if not base_url:
            raise ValueError("Payment API base URL is required")
        self.base_url = base_url.rstrip('/') + '/'
        self.api_key = api_key
        self.timeout = timeout
        self.session = session or requests.Session()

    def authorize(self, amount: Money, payer_reference: str, *, idempotency_key: str) -> str:
        logger.info(f"Authorizing {amount} for payer {payer_reference} (key {idempotency_key})")
        result = self._post('authorizations', {
            'amount': to_minor_units(amount),
            'currency': amount.currency.lower(),
            'payer_reference': payer_reference,
            'capture_method': 'manual',
        }, idempotency_key)
        payment_reference = result.get('payment_reference') or result.get('id')
        if not payment_reference:
            raise PaymentProcessorError("Authorization response has no payment reference")
        return payment_reference

    def create_refund(self, payment_reference: str, amount: Money, *, idempotency_key: str) -> RefundResult:
        logger.info(f"Creating refund of {amount} on {payment_reference} (key {idempotency_key})")
        result = self._post('refunds', {
            'payment_reference': payment_reference,
            'amount': to_minor_units(amount),
            'currency': amount.currency.lower(),
            'reason': 'requested_by_customer',
        }, idempotency_key)
        refund_id = result.get('id')
        if not refund_id:
            raise PaymentProcessorError("Refund response has no refund id")
        return RefundResult(id=refund_id, status=result.get('status', 'succeeded'))

    def _post(self, path: str, payload: dict, idempotency_key: str) -> dict:
        headers = {
            'Authorization': f"Bearer {self.api_key}",
            'Content-Type': 'application/json',
            'Accept': 'application/json',
            'Idempotency-Key': idempotency_key,
        }
        try:
            response = self.session.post(
                f"{self.base_url}{path}",
                json=payload,
                headers=headers,
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            logger.warning(f"Network error calling payment API {path}: {e}")
            raise PaymentProcessorError(f"Payment API unreachable: {e}") from e

        if response.status_code >= 500 or response.status_code in RETRYABLE_STATUS_CODES:
            logger.warning(f"Payment API {path} returned {response.status_code}")
            raise PaymentProcessorError(
                f"Payment API error {response.status_code}: {self._error_message(response)}"
            )
        if response.status_code >= 400:
            logger.error(f"Payment API {path} rejected request: {response.status_code}")
            raise InvalidRequest(
                f"Payment API rejected request ({response.status_code}): {self._error_message(response)}"
            )

        try:
            return response.json()
        except ValueError as e:
            raise PaymentProcessorError(f"Payment API returned invalid JSON: {e}") from e

    @staticmethod
    def _error_message(response) -> str:
        try:
            body = response.json()
        except ValueError:
            return response.text[:200]
        error = body.get('error') if isinstance(body, dict) else None
        if isinstance(error, dict):
            return error.get('message', 'Unknown error')
        return str(error or body)


class SandboxPaymentGateway(PaymentGateway):
    """
    Emulated processor for development and tests

    Used when no API key is configured. Honors idempotency keys and
    rejects refunds larger than what is left on the payment.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._authorizations: dict[str, tuple[str, Money]] = {}
        self._refunds: dict[str, RefundResult] = {}
        self._refunded: dict[str, Decimal] = {}
        self.calls: list[tuple[str, str]] = []

    def authorize(self, amount: Money, payer_reference: str, *, idempotency_key: str) -> str:
        with self._lock:
            self.calls.append(('authorize', idempotency_key))
            existing = self._authorizations.get(idempotency_key)
            if existing is not None:
                return existing[0]
            if amount.is_zero:
                raise InvalidRequest("Cannot authorize a zero amount")
            payment_reference = f"pay_{uuid.uuid4().hex[:16]}"
            self._authorizations[idempotency_key] = (payment_reference, amount)
            logger.warning(f"Sandbox authorization {payment_reference} for {amount}")
            return payment_reference

    def create_refund(self, payment_reference: str, amount: Money, *, idempotency_key: str) -> RefundResult:
        with self._lock:
            self.calls.append(('refund', idempotency_key))
            existing = self._refunds.get(idempotency_key)
            if existing is not None:
                return existing
            captured = self._captured(payment_reference)
            if captured is None:
                raise InvalidRequest(f"Unknown payment {payment_reference}")
            already = self._refunded.get(payment_reference, Decimal('0'))
            if amount.amount + already > captured.amount:
                raise InvalidRequest(
                    f"Refund {amount} exceeds captured amount {captured} on {payment_reference}"
                )
            self._refunded[payment_reference] = already + amount.amount
            result = RefundResult(id=f"re_{uuid.uuid4().hex[:16]}", status='succeeded')
            self._refunds[idempotency_key] = result
            logger.warning(f"Sandbox refund {result.id} of {amount} on {payment_reference}")
            return result

    def refunded_total(self, payment_reference: str) -> Decimal:
        return self._refunded.get(payment_reference, Decimal('0'))

    def _captured(self, payment_reference: str) -> Money | None:
        for reference, amount in self._authorizations.values():
            if reference == payment_reference:
                return amount
        return None


def get_payment_gateway() -> PaymentGateway:
    """Gateway configured in settings; the sandbox when no API key is set"""
    api_key = getattr(settings, 'PAYMENT_API_KEY', '')
    if not api_key:
        logger.warning("PAYMENT_API_KEY is not set, using the sandbox payment gateway")
        return SandboxPaymentGateway()
    return HttpPaymentGateway(
        getattr(settings, 'PAYMENT_API_BASE_URL', ''),
        api_key,
        timeout=float(getattr(settings, 'PAYMENT_API_TIMEOUT', 10)),
    )
