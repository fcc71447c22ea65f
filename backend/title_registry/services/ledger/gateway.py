"""
Ledger Gateway

Wraps a LedgerClient with the registry's error taxonomy:

    submit()              -> submission_id        | LedgerUnavailableError
    await_confirmation()  -> LedgerReceipt        | LedgerTimeoutError | LedgerUnavailableError
    lookup()              -> LedgerRecord | None  | LedgerUnavailableError

Confirmation polling is the only blocking loop in the core and is always
bounded by the configured timeout.
"""
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from ...config import LEDGER_CONFIRM_TIMEOUT_SECONDS, LEDGER_POLL_INTERVAL_SECONDS
from ...exceptions import LedgerTimeoutError, LedgerUnavailableError
from .client import ConfirmationStatus, LedgerClient, LedgerClientError, LedgerRecord

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LedgerReceipt:
    """A confirmed ledger write."""
    submission_id: str
    tx_hash: str
    block_ref: str


class LedgerGateway:
    """Submit, confirm and look up ledger transactions."""

    def __init__(
        self,
        client: LedgerClient,
        poll_interval: float = LEDGER_POLL_INTERVAL_SECONDS,
        timeout: float = LEDGER_CONFIRM_TIMEOUT_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.client = client
        self.poll_interval = poll_interval
        self.timeout = timeout
        self._sleep = sleep
        self._clock = clock

    def submit(self, payload: Dict[str, Any], idempotency_key: str) -> str:
        """Send a payload. Resubmitting under the same key returns the same submission."""
        try:
            submission_id = self.client.submit(payload, idempotency_key)
        except LedgerClientError as e:
            logger.warning(f"Ledger submit failed for {idempotency_key}: {e}")
            raise LedgerUnavailableError(
                f"Ledger submission failed: {e}",
                details={"idempotency_key": idempotency_key},
            ) from e

        logger.info(f"Ledger submission {submission_id} accepted for {idempotency_key}")
        return submission_id

    def await_confirmation(self, submission_id: str, timeout: Optional[float] = None) -> LedgerReceipt:
        """
        Poll until the submission is confirmed, failed, or the deadline passes.

        Raises:
            LedgerTimeoutError: still pending at the deadline (retryable; the
                submission stays valid and may be polled again)
            LedgerUnavailableError: the ledger reported failure or could not
                be reached
        """
        deadline = self._clock() + (self.timeout if timeout is None else timeout)
        attempts = 0

        while True:
            attempts += 1
            try:
                confirmation = self.client.confirm(submission_id)
            except LedgerClientError as e:
                logger.warning(f"Ledger confirm failed for {submission_id}: {e}")
                raise LedgerUnavailableError(
                    f"Ledger confirmation failed: {e}",
                    details={"submission_id": submission_id},
                ) from e

            if confirmation.status == ConfirmationStatus.CONFIRMED:
                logger.info(
                    f"Ledger submission {submission_id} confirmed as {confirmation.tx_hash} "
                    f"after {attempts} poll(s)"
                )
                return LedgerReceipt(
                    submission_id=submission_id,
                    tx_hash=confirmation.tx_hash,
                    block_ref=confirmation.block_ref,
                )

            if confirmation.status == ConfirmationStatus.FAILED:
                raise LedgerUnavailableError(
                    "Ledger reported the transaction failed",
                    details={"submission_id": submission_id, "reason": confirmation.error},
                )

            if self._clock() >= deadline:
                raise LedgerTimeoutError(
                    "Ledger confirmation timed out",
                    details={"submission_id": submission_id, "attempts": attempts},
                )
            self._sleep(self.poll_interval)

    def lookup(self, tx_hash: str) -> Optional[LedgerRecord]:
        try:
            return self.client.get_transaction(tx_hash)
        except LedgerClientError as e:
            raise LedgerUnavailableError(
                f"Ledger lookup failed: {e}",
                details={"tx_hash": tx_hash},
            ) from e
