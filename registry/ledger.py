# registry/ledger.py
"""
Transaction ledger: append attempts, reconcile finality.

record_attempt() is a pure append whose only failure is StoreUnavailable.
reconcile() moves a pending Transaction to confirmed/failed and propagates the
outcome to its subject, but only while the subject still points at that
attempt's transaction hash (a newer retry is never overwritten by an older one).
"""
import logging
from typing import Optional

from django.db import DatabaseError, transaction as db_transaction
from rest_framework.exceptions import NotFound, ValidationError

from projects.models import Project
from submissions.models import Submission

from . import state_machine
from .constants import (
    CHAIN_PENDING,
    TRANSACTION_ID_PREFIX,
    TX_FINAL_STATUSES,
    TX_STATUS_CONFIRMED,
    TX_STATUS_FAILED,
)
from .exceptions import InconsistentReconciliation, StoreUnavailable
from .models import Transaction
from .records import InsertOutcome, create_with_fresh_id

logger = logging.getLogger("scribe.registry.ledger")


def record_attempt(
    kind: str,
    subject_id: str,
    transaction_hash: Optional[str],
    status: str,
    metadata: Optional[dict] = None,
) -> Transaction:
    """Append one Transaction row for an anchoring / minting attempt."""
    outcome = create_with_fresh_id(
        Transaction,
        TRANSACTION_ID_PREFIX,
        {
            "kind": kind,
            "subject_id": subject_id,
            "transaction_hash": transaction_hash,
            "status": status,
            "metadata": metadata or {},
        },
    )
    if outcome.kind != InsertOutcome.CREATED:
        logger.error(f"Unexpected ledger insert outcome {outcome.kind} for {subject_id}: {outcome.error}")
        raise StoreUnavailable()

    tx = outcome.instance
    logger.info(
        f"Ledger append: {tx.id} kind={kind} subject={subject_id} "
        f"status={status} hash={transaction_hash or '-'}"
    )
    return tx


def transactions_for_subject(subject_id: str):
    return Transaction.objects.filter(subject_id=subject_id).order_by("-created_at")


def reconcile(transaction_id: str, final_status: str) -> Transaction:
    """
    Settle a Transaction once finality is known.

    - same status as recorded: no-op
    - a different terminal status than recorded: InconsistentReconciliation
    - pending -> final: update and propagate to the subject
    """
    if final_status not in TX_FINAL_STATUSES:
        raise ValidationError({"status": f"Must be one of: {', '.join(TX_FINAL_STATUSES)}"})

    try:
        with db_transaction.atomic():
            try:
                tx = Transaction.objects.select_for_update().get(pk=transaction_id)
            except Transaction.DoesNotExist:
                raise NotFound(f"Transaction {transaction_id} not found")

            if tx.status == final_status:
                logger.info(f"Reconcile no-op: {tx.id} already {final_status}")
                return tx

            if tx.status != Transaction.STATUS_PENDING:
                logger.error(
                    f"Inconsistent reconciliation for {tx.id}: recorded={tx.status}, "
                    f"requested={final_status}, hash={tx.transaction_hash}"
                )
                raise InconsistentReconciliation(tx.id, tx.status, final_status)

            tx.status = final_status
            tx.save(update_fields=["status", "updated_at"])
            logger.info(f"Reconciled {tx.id} ({tx.kind} {tx.subject_id}) -> {final_status}")

            _propagate(tx)
    except DatabaseError as e:
        logger.error(f"Record store unavailable reconciling {transaction_id}: {e}")
        raise StoreUnavailable()

    return tx


def _propagate(tx: Transaction) -> None:
    if tx.kind == Transaction.KIND_PROJECT_REGISTRATION:
        _propagate_to_project(tx)
    elif tx.kind == Transaction.KIND_SUBMISSION_MINT:
        _propagate_to_submission(tx)


def _propagate_to_project(tx: Transaction) -> None:
    project = Project.objects.filter(pk=tx.subject_id).first()
    if project is None:
        logger.warning(f"Reconciled {tx.id} but project {tx.subject_id} does not exist")
        return

    current_hash = (project.chain_ref or {}).get("transaction_hash")
    if project.chain_status != CHAIN_PENDING or current_hash != tx.transaction_hash:
        logger.info(
            f"Project {project.id} no longer tracks {tx.id} "
            f"(chain_status={project.chain_status}); subject left unchanged"
        )
        return

    state_machine.transition(project, "chain_status", tx.status)


def _propagate_to_submission(tx: Transaction) -> None:
    submission = Submission.objects.filter(pk=tx.subject_id).first()
    if submission is None:
        logger.warning(f"Reconciled {tx.id} but submission {tx.subject_id} does not exist")
        return

    current_hash = (submission.token_ref or {}).get("transaction_hash")
    if submission.mint_status != CHAIN_PENDING or current_hash != tx.transaction_hash:
        logger.info(
            f"Submission {submission.id} no longer tracks {tx.id} "
            f"(mint_status={submission.mint_status}); subject left unchanged"
        )
        return

    if tx.status == TX_STATUS_CONFIRMED:
        state_machine.transition(submission, "mint_status", TX_STATUS_CONFIRMED)
    elif tx.status == TX_STATUS_FAILED:
        # A reverted mint produced no token
        state_machine.transition(submission, "mint_status", TX_STATUS_FAILED, token_ref=None)
