# registry/state_machine.py
"""
Anchoring state machine shared by Project.chain_status and
Submission.mint_status.

not_attempted → pending | failed | skipped
pending       → confirmed | failed
failed        → pending | failed            (explicit retry)
skipped       → pending | failed | skipped  (explicit retry only)
confirmed     → (terminal)

Any transition not in VALID_TRANSITIONS is rejected.
"""
from typing import Tuple
import logging

from django.utils import timezone

from .constants import (
    CHAIN_NOT_ATTEMPTED,
    CHAIN_PENDING,
    CHAIN_CONFIRMED,
    CHAIN_FAILED,
    CHAIN_SKIPPED,
    CHAIN_STATUS_CHOICES,
    CHAIN_RETRYABLE,
)

logger = logging.getLogger("scribe.registry")


VALID_TRANSITIONS = {
    CHAIN_NOT_ATTEMPTED: [CHAIN_PENDING, CHAIN_FAILED, CHAIN_SKIPPED],
    CHAIN_PENDING: [CHAIN_CONFIRMED, CHAIN_FAILED],
    CHAIN_FAILED: [CHAIN_PENDING, CHAIN_FAILED],
    CHAIN_SKIPPED: [CHAIN_PENDING, CHAIN_FAILED, CHAIN_SKIPPED],
    CHAIN_CONFIRMED: [],
}


def can_transition(current_status: str, new_status: str) -> Tuple[bool, str]:
    """
    Check if an anchoring status can move to a new status.

    Returns (can_transition: bool, reason: str)
    """
    if new_status not in dict(CHAIN_STATUS_CHOICES):
        return False, f"Invalid status: {new_status}"

    allowed = VALID_TRANSITIONS.get(current_status, [])

    if new_status not in allowed:
        return False, f"Cannot transition from '{current_status}' to '{new_status}'"

    return True, ""


def transition(record, field: str, new_status: str, **extra_fields) -> Tuple[bool, str]:
    """
    Move `record.<field>` to `new_status` and persist it together with
    `extra_fields` in a single UPDATE.

    The write is conditional on the status still being the one we read, so
    two concurrent reconcilers cannot both apply a transition.
    """
    current_status = getattr(record, field)
    can, reason = can_transition(current_status, new_status)

    if not can:
        logger.warning(
            f"Invalid anchoring transition attempted: {record.__class__.__name__}={record.pk}, "
            f"{field}: {current_status} -> {new_status}. Reason: {reason}"
        )
        return False, reason

    updates = {field: new_status, **extra_fields}
    updated = (
        record.__class__.objects
        .filter(pk=record.pk, **{field: current_status})
        .update(updated_at=timezone.now(), **updates)
    )
    if not updated:
        logger.warning(
            f"Anchoring transition lost a race: {record.__class__.__name__}={record.pk}, "
            f"{field} no longer '{current_status}'"
        )
        return False, "Status changed concurrently"

    for name, value in updates.items():
        setattr(record, name, value)

    logger.info(
        f"Anchoring transition: {record.__class__.__name__}={record.pk}, "
        f"{field}: {current_status} -> {new_status}"
    )
    return True, f"Transitioned from '{current_status}' to '{new_status}'"


def write_fields(record, field: str, **extra_fields) -> Tuple[bool, str]:
    """
    Persist `extra_fields` without moving `record.<field>`.

    Applies only while the stored status still matches the one on `record`.
    """
    current_status = getattr(record, field)
    updated = (
        record.__class__.objects
        .filter(pk=record.pk, **{field: current_status})
        .update(updated_at=timezone.now(), **extra_fields)
    )
    if not updated:
        logger.warning(
            f"Anchoring update lost a race: {record.__class__.__name__}={record.pk}, "
            f"{field} no longer '{current_status}'"
        )
        return False, "Status changed concurrently"

    for name, value in extra_fields.items():
        setattr(record, name, value)
    return True, ""


def is_retryable(status: str) -> bool:
    return status in CHAIN_RETRYABLE
