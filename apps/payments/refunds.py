"""
Refund Executor

Calls the payment capability idempotently:

1. Look up the RefundRecord for the idempotency key. A succeeded record
   returns its stored result without calling out again.
2. Write the record (status REQUESTED) before the first external call.
3. Call create_refund with bounded retries and exponential backoff on
   PaymentProcessorError. InvalidRequest fails immediately.
4. Store the external refund id before reporting success.

Exhausted retries raise RefundPendingRetry; the record stays REQUESTED so
the next call with the same key resumes it.
"""

import logging
import time
from typing import Callable

from shared.domain.exceptions import InvalidRequest, PaymentProcessorError, RefundPendingRetry
from shared.domain.value_objects import Money

from apps.payments.domain.entities import RefundRecord, RefundResult, RefundStatus
from apps.payments.gateway import PaymentGateway

logger = logging.getLogger(__name__)


class RefundExecutor:

    def __init__(
        self,
        uow_factory: Callable,
        gateway: PaymentGateway,
        max_attempts: int = 3,
        backoff_seconds: float = 0.5,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.uow_factory = uow_factory
        self.gateway = gateway
        self.max_attempts = max_attempts
        self.backoff_seconds = backoff_seconds
        self.sleep = sleep

    def execute_refund(self, payment_reference: str, amount: Money, idempotency_key: str) -> RefundResult:
        """
        Refund `amount` on `payment_reference` at most once per key

        Raises:
            InvalidRequest: processor rejected the refund (now or on an earlier call)
            RefundPendingRetry: transient failures exhausted the attempts
        """
        existing = self._begin(payment_reference, amount, idempotency_key)
        if existing is not None:
            logger.info(f"Refund {idempotency_key} already applied as {existing.id}")
            return existing

        for attempt in range(1, self.max_attempts + 1):
            try:
                result = self.gateway.create_refund(
                    payment_reference, amount, idempotency_key=idempotency_key,
                )
            except InvalidRequest as e:
                logger.error(f"Refund {idempotency_key} rejected by processor: {e}")
                self._update(idempotency_key, lambda record: record.mark_failed(str(e)))
                raise
            except PaymentProcessorError as e:
                logger.warning(
                    f"Refund {idempotency_key} attempt {attempt}/{self.max_attempts} failed: {e}"
                )
                self._update(idempotency_key, lambda record: record.record_attempt_failure(str(e)))
                if attempt < self.max_attempts:
                    self.sleep(self.backoff_seconds * 2 ** (attempt - 1))
                continue

            self._update(idempotency_key, lambda record: record.mark_succeeded(result))
            logger.info(f"Refund {idempotency_key} succeeded as {result.id} ({result.status})")
            return result

        raise RefundPendingRetry(
            f"Refund {idempotency_key} of {amount} is pending retry "
            f"after {self.max_attempts} failed attempts",
            idempotency_key=idempotency_key,
            attempts=self.max_attempts,
        )

    def _begin(self, payment_reference: str, amount: Money, idempotency_key: str) -> RefundResult | None:
        """Write the durable intent, or return the stored result"""
        with self.uow_factory() as uow:
            record = uow.refunds.get(idempotency_key, lock=True)
            if record is None:
                record = RefundRecord(
                    idempotency_key=idempotency_key,
                    payment_reference=payment_reference,
                    amount=amount,
                )
                uow.refunds.save(record)
                return None

            record.ensure_matches(payment_reference, amount)
            if record.status == RefundStatus.SUCCEEDED:
                return record.result
            if record.status == RefundStatus.FAILED:
                raise InvalidRequest(
                    f"Refund {idempotency_key} was rejected earlier: {record.last_error}"
                )
            return None

    def _update(self, idempotency_key: str, change: Callable[[RefundRecord], None]):
        with self.uow_factory() as uow:
            record = uow.refunds.get(idempotency_key, lock=True)
            change(record)
            uow.refunds.save(record)
