# registry/constants.py

# --- Anchoring lifecycle (Project.chain_status, Submission.mint_status) ---
CHAIN_NOT_ATTEMPTED = "not_attempted"
CHAIN_PENDING = "pending"
CHAIN_CONFIRMED = "confirmed"
CHAIN_FAILED = "failed"
CHAIN_SKIPPED = "skipped"

CHAIN_STATUS_CHOICES = [
    (CHAIN_NOT_ATTEMPTED, "Not attempted"),
    (CHAIN_PENDING, "Pending"),
    (CHAIN_CONFIRMED, "Confirmed"),
    (CHAIN_FAILED, "Failed"),
    (CHAIN_SKIPPED, "Skipped"),
]

# States from which an explicit retry may re-enter the machine
CHAIN_RETRYABLE = (CHAIN_FAILED, CHAIN_SKIPPED)

# --- Transaction ledger ---
TX_KIND_PROJECT_REGISTRATION = "project_registration"
TX_KIND_SUBMISSION_MINT = "submission_mint"

TX_STATUS_PENDING = "pending"
TX_STATUS_CONFIRMED = "confirmed"
TX_STATUS_FAILED = "failed"

TX_FINAL_STATUSES = (TX_STATUS_CONFIRMED, TX_STATUS_FAILED)

# error_kind values stored in Transaction.metadata
ERROR_KIND_UNAVAILABLE = "unavailable"  # client/endpoint unreachable, timeout
ERROR_KIND_FAILED = "failed"  # call executed but rejected or reverted

ANCHOR_UNAVAILABLE = "anchor unavailable"

# --- Record id prefixes ---
PROJECT_ID_PREFIX = "proj"
SUBMISSION_ID_PREFIX = "sub"
TRANSACTION_ID_PREFIX = "tx"
