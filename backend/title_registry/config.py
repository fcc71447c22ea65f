"""
Title Registry - Runtime Configuration

Environment-driven settings. Values are read once at import time; tests and
embedding code pass explicit values to the services instead.
"""
import os

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# Ledger confirmation polling (bounded, never an unbounded daemon)
LEDGER_POLL_INTERVAL_SECONDS = float(os.getenv("LEDGER_POLL_INTERVAL_SECONDS", "0.5"))
LEDGER_CONFIRM_TIMEOUT_SECONDS = float(os.getenv("LEDGER_CONFIRM_TIMEOUT_SECONDS", "30"))

# A reservation older than this may be taken over by a retrying operator
CERTIFICATION_RESERVATION_TTL_SECONDS = float(
    os.getenv("CERTIFICATION_RESERVATION_TTL_SECONDS", "300")
)

# In-process reference ledger: number of confirm polls before a block is sealed
LEDGER_CONFIRMATIONS_REQUIRED = int(os.getenv("LEDGER_CONFIRMATIONS_REQUIRED", "1"))

# Defaults for the approval settings row created on first load
DEFAULT_REQUIRED_APPROVALS = int(os.getenv("DEFAULT_REQUIRED_APPROVALS", "2"))
DEFAULT_APPROVAL_TYPE = os.getenv("DEFAULT_APPROVAL_TYPE", "parallel")
