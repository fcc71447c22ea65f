"""Ledger boundary: client protocol, reference ledger, gateway."""
from .client import (
    ConfirmationStatus,
    DocumentStore,
    InMemoryLedger,
    LedgerClient,
    LedgerClientError,
    LedgerConfirmation,
    LedgerRecord,
)
from .gateway import LedgerGateway, LedgerReceipt

__all__ = [
    "ConfirmationStatus",
    "DocumentStore",
    "InMemoryLedger",
    "LedgerClient",
    "LedgerClientError",
    "LedgerConfirmation",
    "LedgerRecord",
    "LedgerGateway",
    "LedgerReceipt",
]
