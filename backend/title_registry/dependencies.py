"""
Title Registry - Shared FastAPI Dependencies

The ledger gateway is process-wide. Tests override get_ledger_gateway with a
gateway around their own InMemoryLedger.
"""
from functools import lru_cache

from .config import LEDGER_CONFIRMATIONS_REQUIRED
from .services.ledger import InMemoryLedger, LedgerGateway


@lru_cache(maxsize=1)
def get_ledger_gateway() -> LedgerGateway:
    return LedgerGateway(InMemoryLedger(confirmations_required=LEDGER_CONFIRMATIONS_REQUIRED))
