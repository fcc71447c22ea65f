"""
Ledger Client

The raw ledger boundary. Any backend exposing submit / confirm /
get_transaction can stand behind the gateway.

InMemoryLedger is the in-process reference ledger: hash-chained blocks,
idempotent per logical key, with switches for outages and slow confirmation
so local runs and tests can exercise every saga branch.
"""
import json
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from hashlib import sha256
from typing import Any, Dict, List, Optional, Protocol
from uuid import uuid4


class LedgerClientError(Exception):
    """Transport or availability failure raised by a ledger client."""
    pass


class ConfirmationStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"


@dataclass(frozen=True)
class LedgerConfirmation:
    status: ConfirmationStatus
    tx_hash: Optional[str] = None
    block_ref: Optional[str] = None
    error: Optional[str] = None


@dataclass(frozen=True)
class LedgerRecord:
    """An on-chain transaction as read back from the ledger."""
    tx_hash: str
    block_ref: str
    idempotency_key: str
    payload: Dict[str, Any]
    recorded_at: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tx_hash": self.tx_hash,
            "block_ref": self.block_ref,
            "idempotency_key": self.idempotency_key,
            "payload": dict(self.payload),
            "recorded_at": self.recorded_at,
        }


class LedgerClient(Protocol):
    def submit(self, payload: Dict[str, Any], idempotency_key: str) -> str:
        ...

    def confirm(self, submission_id: str) -> LedgerConfirmation:
        ...

    def get_transaction(self, tx_hash: str) -> Optional[LedgerRecord]:
        ...


class DocumentStore(Protocol):
    """Off-ledger document storage. The core only keeps the refs it returns."""

    def store(self, content: bytes, filename: str) -> str:
        ...


# =============================================================================
# IN-PROCESS REFERENCE LEDGER
# =============================================================================

@dataclass
class _Submission:
    submission_id: str
    idempotency_key: str
    payload: Dict[str, Any]
    polls: int = 0
    status: ConfirmationStatus = ConfirmationStatus.PENDING
    tx_hash: Optional[str] = None
    block_ref: Optional[str] = None


@dataclass
class _Block:
    number: int
    prev_hash: str
    block_hash: str
    tx_hashes: List[str] = field(default_factory=list)


GENESIS_HASH = "0" * 64


class InMemoryLedger:
    """
    Append-only ledger held in process memory.

    Switches:
        available: when False every call raises LedgerClientError
        hold_confirmations: when True confirm() keeps answering PENDING
        confirmations_required: confirm() polls before a submission is sealed
    """

    def __init__(self, confirmations_required: int = 1):
        self.available = True
        self.hold_confirmations = False
        self.confirmations_required = max(confirmations_required, 1)
        self._lock = threading.Lock()
        self._submissions: Dict[str, _Submission] = {}
        self._by_key: Dict[str, str] = {}
        self._transactions: Dict[str, LedgerRecord] = {}
        self._blocks: List[_Block] = []

    # -------------------------------------------------------------------------
    # LedgerClient
    # -------------------------------------------------------------------------

    def submit(self, payload: Dict[str, Any], idempotency_key: str) -> str:
        with self._lock:
            self._check_available()
            existing_id = self._by_key.get(idempotency_key)
            if existing_id:
                existing = self._submissions[existing_id]
                if existing.status != ConfirmationStatus.FAILED:
                    return existing_id

            submission = _Submission(
                submission_id=f"sub-{uuid4().hex}",
                idempotency_key=idempotency_key,
                payload=json.loads(json.dumps(payload, sort_keys=True)),
            )
            self._submissions[submission.submission_id] = submission
            self._by_key[idempotency_key] = submission.submission_id
            return submission.submission_id

    def confirm(self, submission_id: str) -> LedgerConfirmation:
        with self._lock:
            self._check_available()
            submission = self._submissions.get(submission_id)
            if submission is None:
                return LedgerConfirmation(ConfirmationStatus.FAILED, error="UNKNOWN_SUBMISSION")

            if submission.status == ConfirmationStatus.PENDING and not self.hold_confirmations:
                submission.polls += 1
                if submission.polls >= self.confirmations_required:
                    self._seal(submission)

            return LedgerConfirmation(
                status=submission.status,
                tx_hash=submission.tx_hash,
                block_ref=submission.block_ref,
                error="REVERTED" if submission.status == ConfirmationStatus.FAILED else None,
            )

    def get_transaction(self, tx_hash: str) -> Optional[LedgerRecord]:
        with self._lock:
            self._check_available()
            return self._transactions.get(tx_hash)

    # -------------------------------------------------------------------------
    # Inspection & test switches
    # -------------------------------------------------------------------------

    @property
    def submission_count(self) -> int:
        """Distinct submissions accepted (resubmits under one key not counted)."""
        with self._lock:
            return len(self._submissions)

    @property
    def height(self) -> int:
        with self._lock:
            return len(self._blocks)

    def fail_submission(self, submission_id: str) -> None:
        """Mark a pending submission as reverted by the ledger."""
        with self._lock:
            submission = self._submissions[submission_id]
            if submission.status == ConfirmationStatus.PENDING:
                submission.status = ConfirmationStatus.FAILED

    def verify_chain(self) -> bool:
        """Recompute every block hash from its predecessor."""
        with self._lock:
            prev = GENESIS_HASH
            for block in self._blocks:
                if block.prev_hash != prev:
                    return False
                if block.block_hash != self._block_hash(block.number, prev, block.tx_hashes):
                    return False
                prev = block.block_hash
            return True

    # -------------------------------------------------------------------------
    # Internals (lock held)
    # -------------------------------------------------------------------------

    def _check_available(self) -> None:
        if not self.available:
            raise LedgerClientError("ledger endpoint unavailable")

    def _seal(self, submission: _Submission) -> None:
        prev_hash = self._blocks[-1].block_hash if self._blocks else GENESIS_HASH
        number = len(self._blocks) + 1
        body = json.dumps(
            {"key": submission.idempotency_key, "payload": submission.payload, "prev": prev_hash},
            sort_keys=True,
        )
        tx_hash = "0x" + sha256(body.encode()).hexdigest()
        block = _Block(
            number=number,
            prev_hash=prev_hash,
            block_hash=self._block_hash(number, prev_hash, [tx_hash]),
            tx_hashes=[tx_hash],
        )
        self._blocks.append(block)

        submission.status = ConfirmationStatus.CONFIRMED
        submission.tx_hash = tx_hash
        submission.block_ref = f"block-{number}"
        self._transactions[tx_hash] = LedgerRecord(
            tx_hash=tx_hash,
            block_ref=submission.block_ref,
            idempotency_key=submission.idempotency_key,
            payload=submission.payload,
            recorded_at=datetime.now(timezone.utc).isoformat(),
        )

    @staticmethod
    def _block_hash(number: int, prev_hash: str, tx_hashes: List[str]) -> str:
        content = json.dumps({"number": number, "prev": prev_hash, "txs": tx_hashes}, sort_keys=True)
        return sha256(content.encode()).hexdigest()
